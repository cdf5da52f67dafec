"""IMAP message source and SMTP sink (aioimaplib + aiosmtplib)."""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from email import message_from_bytes, policy
from email.message import EmailMessage as MimeMessage
from email.utils import parsedate_to_datetime

import aioimaplib
import aiosmtplib
from loguru import logger

from autobot.core.errors import FatalStartupError, TransientIOError
from autobot.core.models import EmailConfig, EmailMessage

_EXISTS_RE = re.compile(rb"^(\d+)\s+EXISTS", re.IGNORECASE)
UNKNOWN_DATE = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ImapSource:
    """Reads the most recent messages of one mailbox.

    ``connect()`` resolves once the server greeted us and the login
    succeeded, or fails with TransientIOError after ``timeout`` seconds.
    """

    def __init__(self, config: EmailConfig, mailbox: str = "INBOX", timeout: float = 60.0):
        if not config.password:
            raise FatalStartupError(f"No password configured for {config.email}")
        self.config = config
        self.mailbox = mailbox
        self.timeout = timeout
        self._client: aioimaplib.IMAP4 | None = None
        self._total = 0

    async def connect(self) -> None:
        cfg = self.config
        if cfg.tls == "implicit":
            client = aioimaplib.IMAP4_SSL(host=cfg.host, port=cfg.port, timeout=self.timeout)
        else:
            client = aioimaplib.IMAP4(host=cfg.host, port=cfg.port, timeout=self.timeout)
        try:
            resp = await self._handshake(client)
        except Exception:
            await _logout_quietly(client, self.timeout)
            raise

        self._client = client
        self._total = _parse_exists(resp.lines)
        logger.debug(f"IMAP connection ready for {cfg.email} ({self._total} messages)")

    async def _handshake(self, client: aioimaplib.IMAP4):
        """Greeting, login and mailbox select. Returns the SELECT response."""
        cfg = self.config
        try:
            await asyncio.wait_for(client.wait_hello_from_server(), timeout=self.timeout)
            resp = await client.login(cfg.email, cfg.password)
            if resp.result != "OK":
                raise TransientIOError(f"IMAP login failed for {cfg.email}: {resp.result}")
            resp = await client.select(self.mailbox)
            if resp.result != "OK":
                raise TransientIOError(f"IMAP select {self.mailbox} failed: {resp.result}")
        except (asyncio.TimeoutError, OSError) as e:
            raise TransientIOError(f"IMAP connection failed for {cfg.email}: {e}") from e
        return resp

    async def list_recent_message_ids(self, max_count: int = 30) -> list[str]:
        """Sequence numbers of the last ``max_count`` messages, oldest first."""
        if self._total == 0:
            return []
        start = max(1, self._total - max_count + 1)
        return [str(n) for n in range(start, self._total + 1)]

    async def fetch_message(self, message_id: str) -> EmailMessage:
        client = self._require_client()
        try:
            resp = await client.fetch(message_id, "(RFC822)")
        except (asyncio.TimeoutError, OSError) as e:
            raise TransientIOError(f"IMAP fetch {message_id} failed: {e}") from e
        if resp.result != "OK":
            raise TransientIOError(f"IMAP fetch {message_id} failed: {resp.result}")

        raw = next((line for line in resp.lines if isinstance(line, bytearray)), None)
        if raw is None:
            raise TransientIOError(f"IMAP fetch {message_id} returned no body")
        return parse_message(message_id, bytes(raw))

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.logout()

    def _require_client(self) -> aioimaplib.IMAP4:
        if self._client is None:
            raise TransientIOError("IMAP source is not connected")
        return self._client


class SmtpSink:
    """Sends plain-text mail through the account's SMTP server."""

    def __init__(self, config: EmailConfig, timeout: float = 30.0):
        if not config.password:
            raise FatalStartupError(f"No password configured for {config.email}")
        self.config = config
        self.timeout = timeout

    async def send(self, sender: str, to: str, subject: str, body: str) -> None:
        msg = MimeMessage()
        msg["From"] = sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        implicit_tls = self.config.smtp_port == 465
        try:
            await aiosmtplib.send(
                msg,
                hostname=self.config.smtp_host,
                port=self.config.smtp_port,
                username=self.config.email,
                password=self.config.password,
                use_tls=implicit_tls,
                start_tls=not implicit_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            raise TransientIOError(f"SMTP send to {to} failed: {e}") from e


def parse_message(message_id: str, raw: bytes) -> EmailMessage:
    """Parse an RFC 822 message into the fields the forwarder needs."""
    msg = message_from_bytes(raw, policy=policy.default)

    body_part = msg.get_body(preferencelist=("plain", "html"))
    body = _body_text(body_part) if body_part is not None else ""

    return EmailMessage(
        id=message_id,
        subject=_header(msg, "subject"),
        sender=_header(msg, "from"),
        to=_header(msg, "to"),
        body=body,
        date=_parse_date(_header(msg, "date")),
    )


def _body_text(part: MimeMessage) -> str:
    """Decoded text of a MIME part. Unknown or broken charsets decode as UTF-8."""
    try:
        return part.get_content()
    except (LookupError, ValueError) as e:
        logger.debug(f"Body decode failed ({e}), falling back to utf-8")
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def _header(msg: MimeMessage, name: str) -> str:
    try:
        return str(msg.get(name, ""))
    except (LookupError, ValueError) as e:
        logger.debug(f"Unreadable {name} header: {e}")
        return ""


async def _logout_quietly(client: aioimaplib.IMAP4, timeout: float) -> None:
    """Best-effort logout of a half-open session after a failed connect."""
    try:
        await asyncio.wait_for(client.logout(), timeout=timeout)
    except Exception as e:
        logger.debug(f"IMAP logout after failed connect: {e}")


def _parse_date(value: str | None) -> datetime:
    """Message date as an aware datetime.

    Missing or invalid dates map to the epoch, so such a message is only new
    to a mailbox that has no watermark yet.
    """
    if not value:
        return UNKNOWN_DATE
    try:
        parsed = parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        return UNKNOWN_DATE
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_exists(lines: list) -> int:
    for line in lines:
        if isinstance(line, (bytes, bytearray)):
            m = _EXISTS_RE.match(bytes(line).strip())
            if m:
                return int(m.group(1))
    return 0
