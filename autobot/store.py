"""SQLite document store for autobot.

Three tables:
    email_configs  — mailboxes to poll and their forward rules
    watermarks     — per-entity cursor (last processed message date)
    deposits       — bridge deposits waiting for confirmations

Writes are last-write-wins; the single running engine is the only writer
of watermarks and deposit state.
"""

from __future__ import annotations

import json
import sqlite3
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import pydantic
from loguru import logger

from autobot.core.models import (
    ConfirmationRecord,
    DepositSubmission,
    EmailConfig,
    ForwardRule,
    sanitize_email,
)


class DocumentStore:
    """SQLite store — configs, watermarks and pending deposits."""

    def __init__(self, db_path: str = "data/autobot.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"DocumentStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # EMAIL CONFIGS
    # ════════════════════════════════════════════════════════════

    def save_email_config(self, config: EmailConfig) -> None:
        """Insert or replace the configuration for ``config.email``."""
        rules = json.dumps([r.model_dump() for r in config.forward_rules])
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO email_configs
                   (email, password, active, host, port, tls, smtp_host, smtp_port, forward_rules)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(email) DO UPDATE SET
                     password = excluded.password,
                     active = excluded.active,
                     host = excluded.host,
                     port = excluded.port,
                     tls = excluded.tls,
                     smtp_host = excluded.smtp_host,
                     smtp_port = excluded.smtp_port,
                     forward_rules = excluded.forward_rules,
                     updated_at = CURRENT_TIMESTAMP""",
                (
                    config.email, config.password, int(config.active),
                    config.host, config.port, config.tls,
                    config.smtp_host, config.smtp_port, rules,
                ),
            )
            conn.commit()
        logger.info(f"Saved email config for {config.email}")

    def get_email_config(self, email: str) -> EmailConfig | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM email_configs WHERE email = ?", (sanitize_email(email),)
            ).fetchone()
        return _row_to_config(row) if row else None

    def list_email_configs(self) -> list[EmailConfig]:
        with self._get_conn() as conn:
            rows = conn.execute("SELECT * FROM email_configs ORDER BY email").fetchall()
        return [_row_to_config(r) for r in rows]

    def list_active_entities(self) -> list[EmailConfig]:
        """Active configs only. Rows that fail to parse are logged and skipped."""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM email_configs WHERE active = 1 ORDER BY email"
            ).fetchall()
        configs = []
        for row in rows:
            try:
                configs.append(_row_to_config(row))
            except (pydantic.ValidationError, ValueError) as e:
                logger.error(f"Error parsing config for {row['email']}: {e}")
        return configs

    def update_forward_rules(self, email: str, rules: list[ForwardRule]) -> bool:
        """Replace the rules of an existing config. Returns False if unknown."""
        payload = json.dumps([r.model_dump() for r in rules])
        with self._get_conn() as conn:
            cursor = conn.execute(
                "UPDATE email_configs SET forward_rules = ?, updated_at = CURRENT_TIMESTAMP "
                "WHERE email = ?",
                (payload, sanitize_email(email)),
            )
            conn.commit()
        return cursor.rowcount > 0

    def delete_email_config(self, email: str) -> bool:
        """Delete a config and its watermark. Returns True if it existed."""
        email = sanitize_email(email)
        with self._get_conn() as conn:
            conn.execute("DELETE FROM watermarks WHERE entity_id = ?", (email,))
            cursor = conn.execute("DELETE FROM email_configs WHERE email = ?", (email,))
            conn.commit()
        return cursor.rowcount > 0

    # ════════════════════════════════════════════════════════════
    # WATERMARKS
    # ════════════════════════════════════════════════════════════

    def get_watermark(self, entity_id: str) -> datetime | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT cursor FROM watermarks WHERE entity_id = ?", (entity_id,)
            ).fetchone()
        return datetime.fromisoformat(row["cursor"]) if row else None

    def set_watermark(self, entity_id: str, cursor: datetime) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO watermarks (entity_id, cursor) VALUES (?, ?)
                   ON CONFLICT(entity_id) DO UPDATE SET
                     cursor = excluded.cursor, updated_at = CURRENT_TIMESTAMP""",
                (entity_id, cursor.isoformat()),
            )
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # DEPOSITS
    # ════════════════════════════════════════════════════════════

    def create_deposit(self, submission: DepositSubmission) -> ConfirmationRecord:
        """Start tracking a deposit. Re-submitting a known deposit keeps its state."""
        record = ConfirmationRecord.from_submission(submission)
        with self._get_conn() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO deposits
                   (id, chain_id, tx_hash, tx_nonce, confirmed_height)
                   VALUES (?, ?, ?, ?, 0)""",
                (record.id, record.chain_id, record.tx_hash, record.tx_nonce),
            )
            conn.commit()
        logger.info(f"Deposit intake: {record.id}")
        return self.get_deposit(record.id) or record

    def get_deposit(self, record_id: str) -> ConfirmationRecord | None:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM deposits WHERE id = ?", (record_id,)).fetchone()
        return _row_to_record(row) if row else None

    def list_pending_deposits(self) -> dict[str, list[ConfirmationRecord]]:
        """Pending deposits grouped by chain id, oldest first."""
        with self._get_conn() as conn:
            rows = conn.execute("SELECT * FROM deposits ORDER BY created_at, id").fetchall()
        out: dict[str, list[ConfirmationRecord]] = defaultdict(list)
        for row in rows:
            out[row["chain_id"]].append(_row_to_record(row))
        return dict(out)

    def upsert_deposit(self, record: ConfirmationRecord) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO deposits (id, chain_id, tx_hash, tx_nonce, confirmed_height)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                     confirmed_height = excluded.confirmed_height,
                     tx_nonce = excluded.tx_nonce""",
                (
                    record.id, record.chain_id, record.tx_hash,
                    record.tx_nonce, record.confirmed_height,
                ),
            )
            conn.commit()

    def delete_deposit(self, record_id: str) -> bool:
        with self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM deposits WHERE id = ?", (record_id,))
            conn.commit()
        return cursor.rowcount > 0

    def counts(self) -> dict[str, int]:
        """Row counts per table (status command)."""
        with self._get_conn() as conn:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("email_configs", "watermarks", "deposits")
            }


def _row_to_config(row: sqlite3.Row) -> EmailConfig:
    data: dict[str, Any] = dict(row)
    data.pop("updated_at", None)
    data["active"] = bool(data["active"])
    data["forward_rules"] = json.loads(data["forward_rules"] or "[]")
    return EmailConfig(**data)


def _row_to_record(row: sqlite3.Row) -> ConfirmationRecord:
    return ConfirmationRecord(
        id=row["id"],
        chain_id=row["chain_id"],
        tx_hash=row["tx_hash"],
        tx_nonce=row["tx_nonce"],
        confirmed_height=row["confirmed_height"] or 0,
    )


# ════════════════════════════════════════════════════════════
# SCHEMA
# ════════════════════════════════════════════════════════════

_SCHEMA = """
CREATE TABLE IF NOT EXISTS email_configs (
    email TEXT PRIMARY KEY,
    password TEXT NOT NULL DEFAULT '',
    active INTEGER NOT NULL DEFAULT 0,
    host TEXT NOT NULL DEFAULT 'imap.gmail.com',
    port INTEGER NOT NULL DEFAULT 993,
    tls TEXT NOT NULL DEFAULT 'implicit',
    smtp_host TEXT NOT NULL DEFAULT 'smtp.gmail.com',
    smtp_port INTEGER NOT NULL DEFAULT 465,
    forward_rules TEXT NOT NULL DEFAULT '[]',
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS watermarks (
    entity_id TEXT PRIMARY KEY,
    cursor TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS deposits (
    id TEXT PRIMARY KEY,
    chain_id TEXT NOT NULL,
    tx_hash TEXT NOT NULL,
    tx_nonce TEXT NOT NULL,
    confirmed_height INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_deposits_chain ON deposits(chain_id);
"""
