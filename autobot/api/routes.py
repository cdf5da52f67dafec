"""Admin API — health, job status, email configs, deposit intake."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger
from pydantic import BaseModel, Field

from autobot import __version__
from autobot.api.deps import get_config, get_registry, get_store
from autobot.core.config.schema import Config
from autobot.core.engine.registry import SchedulerRegistry
from autobot.core.models import DepositSubmission, EmailConfig, ForwardRule, sanitize_email
from autobot.mail.rules import is_valid_email
from autobot.store import DocumentStore

router = APIRouter()


class EmailConfigBody(BaseModel):
    """Request body for PUT /api/emails/{email}. Omitted fields take defaults."""

    password: str
    active: bool = False
    host: str = "imap.gmail.com"
    port: int = 993
    tls: str = "implicit"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    forward_rules: list[ForwardRule] = Field(default_factory=list)


class RulesBody(BaseModel):
    forward_rules: list[ForwardRule]


def _public(config: EmailConfig) -> dict:
    """Config as returned by the API, password masked."""
    data = config.model_dump()
    data["password"] = "***" if config.password else ""
    return data


def _check_rules(rules: list[ForwardRule]) -> None:
    bad = [r.destination_email for r in rules if not is_valid_email(r.destination_email)]
    if bad:
        raise HTTPException(status_code=400, detail=f"Invalid destination email: {', '.join(bad)}")


# ── Health / status ─────────────────────────────────────────


@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/api/info")
async def info(
    config: Config = Depends(get_config),
    registry: SchedulerRegistry | None = Depends(get_registry),
):
    return {
        "version": __version__,
        "plugins": config.enabled_plugins,
        "active_jobs": registry.active_count if registry else 0,
    }


@router.get("/api/jobs")
async def jobs(registry: SchedulerRegistry | None = Depends(get_registry)):
    return registry.status() if registry else []


# ── Email configs ───────────────────────────────────────────


@router.get("/api/emails")
async def list_emails(store: DocumentStore = Depends(get_store)):
    return [_public(c) for c in store.list_email_configs()]


@router.get("/api/emails/{email}")
async def get_email(email: str, store: DocumentStore = Depends(get_store)):
    config = store.get_email_config(email)
    if config is None:
        raise HTTPException(status_code=404, detail="Email config not found")
    return _public(config)


@router.put("/api/emails/{email}")
async def put_email(email: str, body: EmailConfigBody, store: DocumentStore = Depends(get_store)):
    email = sanitize_email(email)
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email address")
    _check_rules(body.forward_rules)
    config = EmailConfig(email=email, **body.model_dump())
    store.save_email_config(config)
    return _public(config)


@router.put("/api/emails/{email}/rules")
async def put_rules(email: str, body: RulesBody, store: DocumentStore = Depends(get_store)):
    _check_rules(body.forward_rules)
    if not store.update_forward_rules(email, body.forward_rules):
        raise HTTPException(status_code=404, detail="Email config not found")
    return {"success": True, "rules": len(body.forward_rules)}


@router.delete("/api/emails/{email}")
async def delete_email(email: str, store: DocumentStore = Depends(get_store)):
    if not store.delete_email_config(email):
        raise HTTPException(status_code=404, detail="Email config not found")
    return {"success": True}


# ── Bridgeless deposit intake ───────────────────────────────


@router.post("/api/bridgeless/deposits")
async def create_deposit(body: DepositSubmission, store: DocumentStore = Depends(get_store)):
    try:
        record = store.create_deposit(body)
    except Exception as e:
        logger.error(f"Error creating deposit {body.chain_id}_{body.tx_hash}: {e}")
        raise HTTPException(status_code=500, detail="Server Error") from e
    return record.model_dump()
