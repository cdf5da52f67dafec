"""Tests for the email forwarder: rules, IMAP parsing, MailForwarder passes."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from autobot.core.errors import FatalStartupError, TransientIOError, ValidationError
from autobot.core.models import EmailConfig, EmailMessage, ForwardRule
from autobot.mail.forwarder import MailForwarder
from autobot.mail.imap import UNKNOWN_DATE, ImapSource, SmtpSink, parse_message
from autobot.mail.rules import (
    check_destination,
    format_forward_body,
    forward_subject,
    is_valid_email,
    matches_subject,
    matching_rules,
)
from autobot.store import DocumentStore

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _msg(mid: str, subject: str, date: datetime, body: str = "hello") -> EmailMessage:
    return EmailMessage(id=mid, subject=subject, sender="alice@example.com", to="me@x.com", body=body, date=date)


class FakeSource:
    def __init__(self, messages: list[EmailMessage], fail_connect: bool = False):
        self.messages = {m.id: m for m in messages}
        self.fail_connect = fail_connect
        self.closed = False

    async def connect(self) -> None:
        if self.fail_connect:
            raise TransientIOError("IMAP connection failed")

    async def list_recent_message_ids(self, max_count: int = 30) -> list[str]:
        return list(self.messages)[-max_count:]

    async def fetch_message(self, message_id: str) -> EmailMessage:
        return self.messages[message_id]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def store(tmp_path):
    return DocumentStore(str(tmp_path / "test.db"))


def _forwarder(store, sources: dict[str, FakeSource], sink) -> MailForwarder:
    return MailForwarder(
        store,
        source_factory=lambda c: sources[c.email],
        sink_factory=lambda c: sink,
    )


def _config(email: str, rules: list[tuple[str, str]]) -> EmailConfig:
    return EmailConfig(
        email=email,
        password="app-pass",
        active=True,
        forward_rules=[ForwardRule(subject_search=s, destination_email=d) for s, d in rules],
    )


# ── Rules ───────────────────────────────────────────────────


@pytest.mark.parametrize(
    "email, ok",
    [
        ("x@y.com", True),
        ("first.last@sub.example.org", True),
        ("not-an-email", False),
        ("a b@c.com", False),
        ("a@b", False),
        ("", False),
    ],
)
def test_is_valid_email(email, ok):
    assert is_valid_email(email) is ok


def test_matches_subject_case_insensitive():
    assert matches_subject("URGENT: server down", "urgent")
    assert matches_subject("re: Invoice 42", "INVOICE")
    assert not matches_subject("weekly digest", "urgent")


def test_forward_formatting():
    assert forward_subject("Hi") == "FWD: Hi"
    assert format_forward_body("body", "bob@x.com", "Hi") == (
        "Forwarded from: bob@x.com\nOriginal subject: Hi\n\nbody"
    )


def test_matching_rules_evaluates_every_rule():
    rules = [
        ForwardRule(subject_search="invoice", destination_email="a@x.com"),
        ForwardRule(subject_search="urgent", destination_email="b@x.com"),
        ForwardRule(subject_search="digest", destination_email="c@x.com"),
    ]
    msg = _msg("1", "Urgent invoice", T0)
    assert [r.destination_email for r in matching_rules(msg, rules)] == ["a@x.com", "b@x.com"]


def test_check_destination_rejects_invalid():
    with pytest.raises(ValidationError):
        check_destination(ForwardRule(subject_search="x", destination_email="not-an-email"))


# ── Message parsing ─────────────────────────────────────────


def test_parse_message_plain():
    raw = (
        b"From: Alice <alice@example.com>\r\n"
        b"To: me@example.com\r\n"
        b"Subject: Urgent: disk full\r\n"
        b"Date: Wed, 01 May 2024 12:00:00 +0000\r\n"
        b"Content-Type: text/plain; charset=utf-8\r\n"
        b"\r\n"
        b"Please check the server.\r\n"
    )
    msg = parse_message("7", raw)
    assert msg.id == "7"
    assert msg.subject == "Urgent: disk full"
    assert "alice@example.com" in msg.sender
    assert msg.date == T0
    assert "Please check the server." in msg.body


def test_parse_message_missing_date_is_epoch():
    """An undated message must not look new on every pass."""
    raw = b"Subject: no date\r\n\r\nbody\r\n"
    msg = parse_message("1", raw)
    assert msg.date == UNKNOWN_DATE


def test_parse_message_unknown_charset():
    raw = (
        b"Subject: urgent spam\r\n"
        b"Date: Wed, 01 May 2024 12:00:00 +0000\r\n"
        b"Content-Type: text/plain; charset=x-bogus\r\n"
        b"\r\n"
        b"caf\xc3\xa9 \xff\r\n"
    )
    msg = parse_message("9", raw)
    assert msg.subject == "urgent spam"
    assert msg.date == T0
    assert msg.body.startswith("caf\u00e9 \ufffd")


def test_adapters_require_password():
    cfg = EmailConfig(email="me@x.com", password="")
    with pytest.raises(FatalStartupError):
        ImapSource(cfg)
    with pytest.raises(FatalStartupError):
        SmtpSink(cfg)


@pytest.mark.asyncio
async def test_recent_ids_are_last_n_oldest_first():
    source = ImapSource(EmailConfig(email="me@x.com", password="p"))
    source._total = 45
    ids = await source.list_recent_message_ids(30)
    assert ids[0] == "16"
    assert ids[-1] == "45"
    assert len(ids) == 30


# ── MailForwarder ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_forwards_only_new_matching_messages(store):
    """Watermark T0; only T0+2 is new and matches ⇒ one send, watermark T0+2."""
    store.save_email_config(_config("me@x.com", [("urgent", "x@y.com")]))
    store.set_watermark("me@x.com", T0)
    source = FakeSource([
        _msg("1", "urgent old", T0 - timedelta(minutes=1)),
        _msg("2", "newsletter", T0 + timedelta(minutes=1)),
        _msg("3", "URGENT new", T0 + timedelta(minutes=2)),
    ])
    sink = AsyncMock()

    stats = await _forwarder(store, {"me@x.com": source}, sink).run()

    sink.send.assert_awaited_once_with(
        "me@x.com",
        "x@y.com",
        "FWD: URGENT new",
        "Forwarded from: alice@example.com\nOriginal subject: URGENT new\n\nhello",
    )
    assert store.get_watermark("me@x.com") == T0 + timedelta(minutes=2)
    assert stats.skipped == 1
    assert source.closed


@pytest.mark.asyncio
async def test_second_pass_does_not_reforward(store):
    store.save_email_config(_config("me@x.com", [("urgent", "x@y.com")]))
    source = FakeSource([_msg("1", "urgent", T0), _msg("2", "urgent again", T0 + timedelta(seconds=5))])
    sink = AsyncMock()
    forwarder = _forwarder(store, {"me@x.com": source}, sink)

    await forwarder.run()
    await forwarder.run()

    assert sink.send.await_count == 2
    assert store.get_watermark("me@x.com") == T0 + timedelta(seconds=5)


@pytest.mark.asyncio
async def test_invalid_destination_skips_rule_only(store):
    store.save_email_config(
        _config("me@x.com", [("alert", "not-an-email"), ("alert", "ops@x.com")])
    )
    source = FakeSource([_msg("1", "alert: cpu", T0)])
    sink = AsyncMock()

    await _forwarder(store, {"me@x.com": source}, sink).run()

    sink.send.assert_awaited_once()
    assert sink.send.await_args.args[1] == "ops@x.com"
    assert store.get_watermark("me@x.com") == T0


@pytest.mark.asyncio
async def test_message_forwarded_once_per_matching_rule(store):
    store.save_email_config(_config("me@x.com", [("invoice", "a@x.com"), ("due", "b@x.com")]))
    source = FakeSource([_msg("1", "Invoice due tomorrow", T0)])
    sink = AsyncMock()

    await _forwarder(store, {"me@x.com": source}, sink).run()

    assert [c.args[1] for c in sink.send.await_args_list] == ["a@x.com", "b@x.com"]


@pytest.mark.asyncio
async def test_send_failure_holds_watermark(store):
    store.save_email_config(_config("me@x.com", [("urgent", "x@y.com")]))
    source = FakeSource([
        _msg("1", "urgent a", T0),
        _msg("2", "urgent b", T0 + timedelta(minutes=1)),
        _msg("3", "urgent c", T0 + timedelta(minutes=2)),
    ])
    sink = AsyncMock()
    sink.send.side_effect = [None, TransientIOError("SMTP down"), None]

    stats = await _forwarder(store, {"me@x.com": source}, sink).run()

    assert stats.item_failures == 1
    assert store.get_watermark("me@x.com") == T0


@pytest.mark.asyncio
async def test_connect_failure_isolated_per_mailbox(store):
    store.save_email_config(_config("a@x.com", [("urgent", "x@y.com")]))
    store.save_email_config(_config("b@x.com", [("urgent", "x@y.com")]))
    sources = {
        "a@x.com": FakeSource([_msg("1", "urgent", T0)], fail_connect=True),
        "b@x.com": FakeSource([_msg("1", "urgent", T0)]),
    }
    sink = AsyncMock()

    stats = await _forwarder(store, sources, sink).run()

    assert stats.entity_failures == 1
    assert store.get_watermark("a@x.com") is None
    assert store.get_watermark("b@x.com") == T0
    assert sources["a@x.com"].closed


@pytest.mark.asyncio
async def test_inactive_configs_are_not_polled(store):
    cfg = _config("me@x.com", [("urgent", "x@y.com")])
    cfg.active = False
    store.save_email_config(cfg)
    factory = AsyncMock()

    forwarder = MailForwarder(store, source_factory=factory, sink_factory=factory)
    stats = await forwarder.run()

    assert stats.entities == 0
    factory.assert_not_called()


@pytest.mark.asyncio
async def test_undecodable_message_not_reforwarded(store):
    """A message with a broken charset must not hold back later messages."""
    raws = {
        "1": (
            b"Subject: urgent: bogus charset\r\n"
            b"Date: Wed, 01 May 2024 12:00:00 +0000\r\n"
            b"Content-Type: text/plain; charset=x-bogus\r\n"
            b"\r\n"
            b"\xff\xfe\r\n"
        ),
        "2": (
            b"Subject: urgent: disk full\r\n"
            b"Date: Wed, 01 May 2024 12:01:00 +0000\r\n"
            b"\r\n"
            b"check it\r\n"
        ),
    }
    source = FakeSource([])
    source.list_recent_message_ids = AsyncMock(return_value=["1", "2"])
    source.fetch_message = AsyncMock(side_effect=lambda mid: parse_message(mid, raws[mid]))
    store.save_email_config(_config("me@x.com", [("urgent", "x@y.com")]))
    sink = AsyncMock()
    forwarder = _forwarder(store, {"me@x.com": source}, sink)

    for _ in range(3):
        await forwarder.run()

    assert sink.send.await_count == 2
    assert store.get_watermark("me@x.com") == T0 + timedelta(minutes=1)


# ── IMAP connection handling ────────────────────────────────


def _imap_client(login_result: str = "OK") -> MagicMock:
    client = MagicMock()
    client.wait_hello_from_server = AsyncMock()
    client.login = AsyncMock(return_value=MagicMock(result=login_result, lines=[]))
    client.select = AsyncMock(return_value=MagicMock(result="OK", lines=[b"12 EXISTS"]))
    client.logout = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_rejected_login_logs_out():
    client = _imap_client(login_result="NO")
    source = ImapSource(EmailConfig(email="me@x.com", password="wrong"))

    with patch("autobot.mail.imap.aioimaplib.IMAP4_SSL", return_value=client):
        with pytest.raises(TransientIOError, match="login failed"):
            await source.connect()
    await source.close()

    client.logout.assert_awaited_once()


@pytest.mark.asyncio
async def test_connect_reads_mailbox_size():
    client = _imap_client()
    source = ImapSource(EmailConfig(email="me@x.com", password="p"))

    with patch("autobot.mail.imap.aioimaplib.IMAP4_SSL", return_value=client):
        await source.connect()

    assert source._total == 12
    client.logout.assert_not_awaited()
    await source.close()
    client.logout.assert_awaited_once()
