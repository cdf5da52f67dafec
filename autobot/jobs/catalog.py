"""Job catalog — the explicit list of autobots, built at startup."""

from __future__ import annotations

import shutil
from typing import TYPE_CHECKING

from autobot.bridgeless.chains import BridgelessClient, build_chain_adapters
from autobot.bridgeless.tracker import DepositTracker
from autobot.core.engine.registry import JobBuilder
from autobot.core.engine.types import Frequency, JobDefinition
from autobot.core.errors import FatalStartupError
from autobot.mail.forwarder import MailForwarder
from autobot.mirror.mirror import BranchMirror

if TYPE_CHECKING:
    from autobot.core.config.schema import Config
    from autobot.store import DocumentStore


def build_mail_forwarder(config: Config, store: DocumentStore) -> JobDefinition:
    forwarder = MailForwarder.from_config(store, config.mail)
    return JobDefinition(
        id="mailForwarder",
        frequency=Frequency(config.mail.frequency),
        run=forwarder.run,
    )


def build_bridgeless(config: Config, store: DocumentStore) -> JobDefinition:
    cfg = config.bridgeless
    if not cfg.rpc_url or not cfg.submit_url:
        raise FatalStartupError("bridgeless.rpc_url and bridgeless.submit_url are required")
    tracker = DepositTracker(
        store,
        chains=build_chain_adapters(cfg),
        bridge=BridgelessClient.from_config(cfg),
    )
    return JobDefinition(
        id="bridgeless",
        frequency=Frequency(cfg.frequency),
        run=tracker.run,
    )


def build_edge_tester(config: Config, store: DocumentStore) -> JobDefinition:
    cfg = config.edge_tester
    if not cfg.repo_url:
        raise FatalStartupError("edge_tester.repo_url is required")
    if shutil.which("git") is None:
        raise FatalStartupError("git executable not found on PATH")
    mirror = BranchMirror.from_config(cfg)
    return JobDefinition(id="edgeTester", cron=cfg.cron, run=mirror.run)


JOB_BUILDERS: dict[str, JobBuilder] = {
    "edgeTester": build_edge_tester,
    "mailForwarder": build_mail_forwarder,
    "bridgeless": build_bridgeless,
}
