"""IncrementalPoller: process items newer than a per-entity cursor.

Shared by the mail forwarder and the deposit tracker. A pass walks every
active entity independently. The per-entity watermark only ever moves to
the ordering key of a successfully processed item, and never past an item
that failed, so an interrupted pass resumes without losing work.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from loguru import logger

EntityT = TypeVar("EntityT")
CandidateT = TypeVar("CandidateT")
ItemT = TypeVar("ItemT")
KeyT = TypeVar("KeyT")


@dataclass
class PassStats:
    """Counters for one poller pass."""

    entities: int = 0
    entity_failures: int = 0
    processed: int = 0
    skipped: int = 0
    item_failures: int = 0
    advanced: int = 0


class IncrementalPoller(ABC, Generic[EntityT, CandidateT, ItemT, KeyT]):
    """Generic cursor-based polling pass.

    Subclasses supply the entity listing, candidate fetching, ordering key
    and domain action. Pollers whose state lives in the items themselves
    set ``track_watermark = False``.
    """

    name: str = "poller"
    track_watermark: bool = True

    # ── Hooks ────────────────────────────────────────────────

    @abstractmethod
    async def list_entities(self) -> list[EntityT]: ...

    @abstractmethod
    def entity_id(self, entity: EntityT) -> str: ...

    @abstractmethod
    async def fetch_candidates(self, entity: EntityT) -> list[CandidateT]: ...

    @abstractmethod
    def ordering_key(self, item: ItemT) -> KeyT: ...

    @abstractmethod
    async def process(self, entity: EntityT, item: ItemT) -> None: ...

    async def resolve(self, entity: EntityT, candidate: CandidateT) -> ItemT:
        """Load the full item for a candidate. Default: the candidate itself."""
        return candidate  # type: ignore[return-value]

    def item_id(self, item: Any) -> str:
        return str(getattr(item, "id", item))

    async def get_watermark(self, entity: EntityT) -> KeyT | None:
        return None

    async def set_watermark(self, entity: EntityT, key: KeyT) -> None:
        return None

    async def release(self, entity: EntityT) -> None:
        """Called after every entity attempt (e.g. close connections)."""

    # ── Algorithm ────────────────────────────────────────────

    async def run(self) -> PassStats:
        """One full pass over every active entity."""
        stats = PassStats()
        entities = await self.list_entities()
        logger.info(f"{self.name}: {len(entities)} entities to process")

        for entity in entities:
            stats.entities += 1
            eid = self.entity_id(entity)
            try:
                await self._process_entity(entity, stats)
            except Exception as e:
                stats.entity_failures += 1
                logger.error(f"{self.name}: error processing {eid}: {e}")
            finally:
                try:
                    await self.release(entity)
                except Exception as e:
                    logger.warning(f"{self.name}: error releasing {eid}: {e}")

        logger.info(
            f"{self.name}: pass complete: processed={stats.processed} "
            f"skipped={stats.skipped} failures={stats.item_failures + stats.entity_failures}"
        )
        return stats

    async def _process_entity(self, entity: EntityT, stats: PassStats) -> None:
        eid = self.entity_id(entity)
        watermark = await self.get_watermark(entity) if self.track_watermark else None
        candidates = await self.fetch_candidates(entity)
        logger.debug(f"{self.name}: {eid} has {len(candidates)} candidates")

        done: list[KeyT] = []
        ceiling: KeyT | None = None  # lowest key that failed
        blocked = False  # a candidate failed before its key was known
        for candidate in candidates:
            key = None
            try:
                item = await self.resolve(entity, candidate)
                key = self.ordering_key(item)
                if watermark is not None and not key > watermark:
                    stats.skipped += 1
                    continue
                await self.process(entity, item)
            except Exception as e:
                stats.item_failures += 1
                logger.error(
                    f"{self.name}: error processing item {self.item_id(candidate)} "
                    f"for {eid}: {e}"
                )
                if key is None:
                    blocked = True
                elif ceiling is None or key < ceiling:
                    ceiling = key
                continue
            stats.processed += 1
            if not blocked:
                done.append(key)

        if not self.track_watermark:
            return
        eligible = [k for k in done if ceiling is None or k < ceiling]
        if not eligible:
            return
        latest = max(eligible)
        if watermark is None or latest > watermark:
            await self.set_watermark(entity, latest)
            stats.advanced += 1
            logger.info(f"{self.name}: {eid} watermark advanced to {latest}")
