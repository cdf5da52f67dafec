"""MailForwarder — forwards new messages that match a mailbox's rules."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from autobot.core.errors import ValidationError
from autobot.core.models import EmailConfig, EmailMessage
from autobot.core.poller import IncrementalPoller
from autobot.mail.rules import (
    check_destination,
    format_forward_body,
    forward_subject,
    matching_rules,
)

if TYPE_CHECKING:
    from autobot.core.config.schema import MailConfig
    from autobot.store import DocumentStore


class MessageSource(Protocol):
    async def connect(self) -> None: ...
    async def list_recent_message_ids(self, max_count: int = 30) -> list[str]: ...
    async def fetch_message(self, message_id: str) -> EmailMessage: ...
    async def close(self) -> None: ...


class MessageSink(Protocol):
    async def send(self, sender: str, to: str, subject: str, body: str) -> None: ...


SourceFactory = Callable[[EmailConfig], MessageSource]
SinkFactory = Callable[[EmailConfig], MessageSink]


class MailForwarder(IncrementalPoller[EmailConfig, str, EmailMessage, datetime]):
    """One pass over every active mailbox.

    The watermark is the date of the newest forwarded-or-ignored message;
    anything dated at or before it is never looked at again.
    """

    name = "mailForwarder"

    def __init__(
        self,
        store: DocumentStore,
        source_factory: SourceFactory,
        sink_factory: SinkFactory,
        recent_limit: int = 30,
    ):
        self.store = store
        self.source_factory = source_factory
        self.sink_factory = sink_factory
        self.recent_limit = recent_limit
        self._sources: dict[str, MessageSource] = {}
        self._sinks: dict[str, MessageSink] = {}

    @classmethod
    def from_config(cls, store: DocumentStore, mail: MailConfig) -> MailForwarder:
        """Forwarder wired to real IMAP/SMTP adapters."""
        from autobot.mail.imap import ImapSource, SmtpSink

        return cls(
            store,
            source_factory=lambda c: ImapSource(
                c, mailbox=mail.mailbox, timeout=mail.connect_timeout_s
            ),
            sink_factory=lambda c: SmtpSink(c, timeout=mail.send_timeout_s),
            recent_limit=mail.recent_limit,
        )

    async def list_entities(self) -> list[EmailConfig]:
        return self.store.list_active_entities()

    def entity_id(self, entity: EmailConfig) -> str:
        return entity.email

    async def get_watermark(self, entity: EmailConfig) -> datetime | None:
        return self.store.get_watermark(entity.email)

    async def set_watermark(self, entity: EmailConfig, key: datetime) -> None:
        self.store.set_watermark(entity.email, key)

    async def fetch_candidates(self, entity: EmailConfig) -> list[str]:
        source = self.source_factory(entity)
        self._sources[entity.email] = source
        self._sinks[entity.email] = self.sink_factory(entity)
        await source.connect()
        return await source.list_recent_message_ids(self.recent_limit)

    async def resolve(self, entity: EmailConfig, candidate: str) -> EmailMessage:
        return await self._sources[entity.email].fetch_message(candidate)

    def ordering_key(self, item: EmailMessage) -> datetime:
        return item.date

    async def process(self, entity: EmailConfig, item: EmailMessage) -> None:
        logger.debug(f"{self.name}: {entity.email} processing {item.subject!r} ({item.date})")
        sink = self._sinks[entity.email]
        for rule in matching_rules(item, entity.forward_rules):
            logger.debug(f"{self.name}: subject matches rule {rule.subject_search!r}")
            try:
                check_destination(rule)
            except ValidationError as e:
                logger.warning(f"{self.name}: {entity.email} message {item.id}: {e}")
                continue
            await sink.send(
                entity.email,
                rule.destination_email,
                forward_subject(item.subject),
                format_forward_body(item.body, item.sender, item.subject),
            )
            logger.info(f"{self.name}: {entity.email} message {item.id} forwarded to {rule.destination_email}")

    async def release(self, entity: EmailConfig) -> None:
        self._sinks.pop(entity.email, None)
        source = self._sources.pop(entity.email, None)
        if source is not None:
            await source.close()
