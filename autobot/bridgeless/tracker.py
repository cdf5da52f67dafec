"""DepositTracker — waits for confirmations, then submits deposits to the bridge.

Per record, keyed by (chain_id, tx_hash):

    Pending      confirmed_height == 0; ask the chain for the tx height
    HeightKnown  confirmed_height persisted; wait for enough blocks on top
    Submitting   submit to the bridge ("already exists" counts as success)
    Deleted      record removed; terminal
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from autobot.bridgeless.chains import ChainAdapter
from autobot.core.errors import DepositAlreadyExists
from autobot.core.models import ConfirmationRecord
from autobot.core.poller import IncrementalPoller

if TYPE_CHECKING:
    from autobot.store import DocumentStore


class DepositSubmitter(Protocol):
    async def get_required_confirmations(self, chain_id: str) -> int: ...
    async def submit(self, chain_id: str, tx_hash: str, tx_nonce: str) -> None: ...


@dataclass
class ChainBatch:
    """Pending records of one chain plus the heights fetched for this pass."""

    chain_id: str
    records: list[ConfirmationRecord] = field(default_factory=list)
    chain_height: int = 0
    required_confirmations: int = 0


def is_confirmed(confirmed_height: int, required: int, chain_height: int) -> bool:
    """True once ``required`` blocks (counting the tx block) exist."""
    if confirmed_height <= 0:
        return False
    return confirmed_height + (required - 1) <= chain_height


class DepositTracker(IncrementalPoller[ChainBatch, ConfirmationRecord, ConfirmationRecord, int]):
    """One pass over every chain with pending deposits.

    State lives in the records themselves, so no watermark is kept. A
    failure fetching a chain's heights skips only that chain.
    """

    name = "bridgeless"
    track_watermark = False

    def __init__(
        self,
        store: DocumentStore,
        chains: dict[str, ChainAdapter],
        bridge: DepositSubmitter,
    ):
        self.store = store
        self.chains = chains
        self.bridge = bridge

    async def list_entities(self) -> list[ChainBatch]:
        batches = []
        for chain_id, records in self.store.list_pending_deposits().items():
            if chain_id not in self.chains:
                logger.warning(f"{self.name}: chain {chain_id} not supported")
                continue
            logger.info(f"{self.name}: {len(records)} txids pending on chain {chain_id}")
            batches.append(ChainBatch(chain_id=chain_id, records=records))
        return batches

    def entity_id(self, entity: ChainBatch) -> str:
        return f"chain {entity.chain_id}"

    async def fetch_candidates(self, entity: ChainBatch) -> list[ConfirmationRecord]:
        entity.chain_height = await self.chains[entity.chain_id].get_chain_height()
        entity.required_confirmations = await self.bridge.get_required_confirmations(
            entity.chain_id
        )
        logger.debug(
            f"{self.name}: chain {entity.chain_id} height={entity.chain_height} "
            f"confirmations={entity.required_confirmations}"
        )
        return entity.records

    def ordering_key(self, item: ConfirmationRecord) -> int:
        return item.confirmed_height

    def item_id(self, item: ConfirmationRecord) -> str:
        return item.tx_hash

    async def process(self, entity: ChainBatch, item: ConfirmationRecord) -> None:
        record = item
        if record.confirmed_height == 0:
            tx_height = await self.chains[entity.chain_id].get_tx_height(record.tx_hash)
            if tx_height == 0:
                logger.debug(f"{self.name}: {record.tx_hash} not in a block yet")
                return
            record = record.model_copy(update={"confirmed_height": tx_height})
            self.store.upsert_deposit(record)
            logger.info(f"{self.name}: {record.tx_hash} confirmed at height {tx_height}")

        if not is_confirmed(
            record.confirmed_height, entity.required_confirmations, entity.chain_height
        ):
            return

        try:
            await self.bridge.submit(record.chain_id, record.tx_hash, record.tx_nonce)
            logger.info(f"{self.name}: submitted deposit for txid {record.tx_hash}")
        except DepositAlreadyExists:
            logger.info(f"{self.name}: deposit for txid {record.tx_hash} already exists")
        self.store.delete_deposit(record.id)
