"""Domain models: email configurations, messages and deposit records."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


def sanitize_email(email: str) -> str:
    return email.lower().strip()


class ForwardRule(BaseModel):
    """Subject substring → destination address."""

    subject_search: str
    destination_email: str


class EmailConfig(BaseModel):
    """A mailbox to poll, with its forwarding rules.

    Defaults are applied here, when the document leaves the store, so the
    forwarder always sees a fully populated config.
    """

    email: str
    password: str = ""
    active: bool = False
    host: str = "imap.gmail.com"
    port: int = 993
    tls: str = "implicit"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    forward_rules: list[ForwardRule] = Field(default_factory=list)

    @field_validator("email")
    @classmethod
    def _sanitize(cls, v: str) -> str:
        return sanitize_email(v)


class EmailMessage(BaseModel):
    id: str
    subject: str = ""
    sender: str = ""
    to: str = ""
    body: str = ""
    date: datetime


class DepositSubmission(BaseModel):
    """Deposit intake body (POST /api/bridgeless/deposits)."""

    chain_id: str
    tx_hash: str
    tx_nonce: str


class ConfirmationRecord(BaseModel):
    """A deposit waiting for confirmations.

    confirmed_height == 0 means the transaction's block is not known yet.
    """

    id: str
    chain_id: str
    tx_hash: str
    tx_nonce: str
    confirmed_height: int = 0

    @classmethod
    def from_submission(cls, submission: DepositSubmission) -> ConfirmationRecord:
        return cls(
            id=f"{submission.chain_id}_{submission.tx_hash}",
            chain_id=submission.chain_id,
            tx_hash=submission.tx_hash,
            tx_nonce=submission.tx_nonce,
        )
