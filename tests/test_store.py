"""Tests for autobot.store.DocumentStore."""

from datetime import datetime, timedelta, timezone

import pytest

from autobot.core.models import DepositSubmission, EmailConfig, ForwardRule
from autobot.store import DocumentStore


@pytest.fixture
def store(tmp_path):
    return DocumentStore(str(tmp_path / "test.db"))


def _cfg(email="Me@X.com ", active=True, **kw):
    return EmailConfig(
        email=email,
        password="pw",
        active=active,
        forward_rules=[ForwardRule(subject_search="urgent", destination_email="ops@x.com")],
        **kw,
    )


# ── Email configs ───────────────────────────────────────────


def test_email_config_roundtrip(store):
    store.save_email_config(_cfg(smtp_port=587))
    cfg = store.get_email_config("ME@x.com")
    assert cfg.email == "me@x.com"
    assert cfg.active is True
    assert cfg.host == "imap.gmail.com"
    assert cfg.smtp_port == 587
    assert cfg.forward_rules[0].destination_email == "ops@x.com"


def test_save_overwrites(store):
    store.save_email_config(_cfg())
    store.save_email_config(_cfg(active=False))
    assert len(store.list_email_configs()) == 1
    assert store.get_email_config("me@x.com").active is False


def test_list_active_entities(store):
    store.save_email_config(_cfg("a@x.com"))
    store.save_email_config(_cfg("b@x.com", active=False))
    assert [c.email for c in store.list_active_entities()] == ["a@x.com"]


def test_corrupt_row_skipped(store):
    store.save_email_config(_cfg("a@x.com"))
    store.save_email_config(_cfg("b@x.com"))
    with store._get_conn() as conn:
        conn.execute("UPDATE email_configs SET forward_rules = '[{\"bad\": 1}]' WHERE email = 'a@x.com'")
        conn.commit()
    assert [c.email for c in store.list_active_entities()] == ["b@x.com"]


def test_update_forward_rules(store):
    store.save_email_config(_cfg())
    rules = [ForwardRule(subject_search="invoice", destination_email="acct@x.com")]
    assert store.update_forward_rules("me@x.com", rules) is True
    assert store.get_email_config("me@x.com").forward_rules == rules
    assert store.update_forward_rules("nobody@x.com", rules) is False


def test_delete_removes_watermark(store):
    store.save_email_config(_cfg())
    store.set_watermark("me@x.com", datetime(2024, 1, 1, tzinfo=timezone.utc))
    assert store.delete_email_config("me@x.com") is True
    assert store.get_watermark("me@x.com") is None
    assert store.delete_email_config("me@x.com") is False


# ── Watermarks ──────────────────────────────────────────────


def test_watermark_roundtrip(store):
    assert store.get_watermark("me@x.com") is None
    t = datetime(2024, 5, 1, 9, 30, tzinfo=timezone(timedelta(hours=3)))
    store.set_watermark("me@x.com", t)
    assert store.get_watermark("me@x.com") == t
    store.set_watermark("me@x.com", t + timedelta(hours=1))
    assert store.get_watermark("me@x.com") == t + timedelta(hours=1)
    assert store.counts()["watermarks"] == 1


# ── Deposits ────────────────────────────────────────────────


def test_create_deposit(store):
    record = store.create_deposit(DepositSubmission(chain_id="0", tx_hash="abc", tx_nonce="2"))
    assert record.id == "0_abc"
    assert record.confirmed_height == 0
    assert store.get_deposit("0_abc") == record


def test_create_deposit_idempotent(store):
    sub = DepositSubmission(chain_id="0", tx_hash="abc", tx_nonce="2")
    record = store.create_deposit(sub)
    store.upsert_deposit(record.model_copy(update={"confirmed_height": 77}))

    again = store.create_deposit(sub)

    assert again.confirmed_height == 77
    assert store.counts()["deposits"] == 1


def test_pending_grouped_by_chain(store):
    store.create_deposit(DepositSubmission(chain_id="0", tx_hash="a", tx_nonce="0"))
    store.create_deposit(DepositSubmission(chain_id="2", tx_hash="b", tx_nonce="0"))
    store.create_deposit(DepositSubmission(chain_id="0", tx_hash="c", tx_nonce="1"))

    pending = store.list_pending_deposits()

    assert sorted(pending) == ["0", "2"]
    assert [r.tx_hash for r in pending["0"]] == ["a", "c"]


def test_delete_deposit(store):
    store.create_deposit(DepositSubmission(chain_id="0", tx_hash="a", tx_nonce="0"))
    assert store.delete_deposit("0_a") is True
    assert store.delete_deposit("0_a") is False
    assert store.list_pending_deposits() == {}
