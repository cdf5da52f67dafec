"""Autobot configuration schema — YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class HttpConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8008


class DatabaseConfig(BaseModel):
    path: str = "data/autobot.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str | None = None  # optional rotating file sink


# Mail forwarder
class MailConfig(BaseModel):
    recent_limit: int = 30
    mailbox: str = "INBOX"
    connect_timeout_s: float = 60.0
    send_timeout_s: float = 30.0
    frequency: str = "minute"


# Bridgeless deposits
class ChainConfig(BaseModel):
    """One chain the tracker can query."""

    kind: Literal["blockbook", "zano"]
    url: str


def _default_chains() -> dict[str, ChainConfig]:
    return {
        "0": ChainConfig(kind="blockbook", url="https://btc-wusa1.edge.app/api/v2"),
        "2": ChainConfig(kind="zano", url="http://37.27.100.59:10500"),
    }


class BridgelessConfig(BaseModel):
    rpc_url: str = "https://rpc-api.node0.mainnet.bridgeless.com"
    submit_url: str = "https://tss1.mainnet.bridgeless.com/submit"
    timeout_s: float = 30.0
    frequency: str = "minute"
    chains: dict[str, ChainConfig] = Field(default_factory=_default_chains)


# Edge tester branch mirror
class EdgeTesterConfig(BaseModel):
    repo_url: str = "git@github.com:EdgeApp/edge-tester.git"
    cron: str = "5 0 * * *"  # every day at 00:05
    branch_suffixes: list[str] = Field(default_factory=lambda: ["/ios", "/android"])
    mirror_suffix: str = "-mirror"
    delay_s: float = 600.0


def _default_plugins() -> dict[str, bool]:
    return {"mailForwarder": True, "bridgeless": True, "edgeTester": True}


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings — env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        AUTOBOT_DATABASE__PATH=data/prod.db
        AUTOBOT_EDGE_TESTER__DELAY_S=60
        AUTOBOT_PLUGINS='{"edgeTester": false}'
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTOBOT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    http: HttpConfig = Field(default_factory=HttpConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    plugins: dict[str, bool] = Field(default_factory=_default_plugins)
    mail: MailConfig = Field(default_factory=MailConfig)
    bridgeless: BridgelessConfig = Field(default_factory=BridgelessConfig)
    edge_tester: EdgeTesterConfig = Field(default_factory=EdgeTesterConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML arrives as init kwargs; env must still win over it
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)

    def is_enabled(self, job_id: str) -> bool:
        """A job runs only when explicitly enabled."""
        return bool(self.plugins.get(job_id, False))

    @property
    def enabled_plugins(self) -> list[str]:
        return [name for name, on in self.plugins.items() if on]
