"""Autobot CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio
import signal

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from autobot import __version__

app = typer.Typer(
    name="autobot",
    help="autobot - scheduled polling automation jobs",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"autobot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """autobot - scheduled polling automation jobs."""


# ════════════════════════════════════════════════════════════
# run — API server + engine
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int | None = typer.Option(None, "--port", "-p", help="Port number (default: config http.port)"),
    host: str | None = typer.Option(None, "--host", "-h", help="Host address"),
) -> None:
    """Start the API server (uvicorn) with the engine in-process."""
    import uvicorn

    from autobot.core.config.loader import load_config

    config = load_config()
    host = host or config.http.host
    port = port or config.http.port
    console.print(f"[green]Starting autobot API on {host}:{port}[/green]")
    uvicorn.run("autobot.api.app:app", host=host, port=port)


# ════════════════════════════════════════════════════════════
# engine — scheduler only
# ════════════════════════════════════════════════════════════


async def serve_engine() -> None:
    """Run every enabled job until SIGINT/SIGTERM, then stop the runners."""
    from autobot.core.config.loader import load_config
    from autobot.core.engine.registry import SchedulerRegistry
    from autobot.core.log import setup_logging
    from autobot.jobs import JOB_BUILDERS
    from autobot.store import DocumentStore

    config = load_config()
    setup_logging(config)
    store = DocumentStore(str(config.db_path))

    registry = SchedulerRegistry()
    registry.load(JOB_BUILDERS, config, store)
    registry.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Autobot engine is running")
    await stop.wait()
    logger.info("Shutting down autobot engine")
    await registry.stop()


@app.command()
def engine() -> None:
    """Run the job engine without the API server."""
    asyncio.run(serve_engine())


# ════════════════════════════════════════════════════════════
# status — config + DB info
# ════════════════════════════════════════════════════════════


@app.command()
def status() -> None:
    """Show configuration and database status."""
    from autobot.core.config.loader import load_config
    from autobot.store import DocumentStore

    config = load_config()
    store = DocumentStore(config.database.path)
    counts = store.counts()

    table = Table(title="autobot status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("DB Path", config.database.path)
    table.add_row("Enabled jobs", ", ".join(config.enabled_plugins) or "-")
    table.add_row("Email configs", str(counts["email_configs"]))
    table.add_row("Watermarks", str(counts["watermarks"]))
    table.add_row("Pending deposits", str(counts["deposits"]))

    console.print(table)


# ════════════════════════════════════════════════════════════
# email — forwarding configs (sub-command group)
# ════════════════════════════════════════════════════════════

email_app = typer.Typer(help="Manage email forwarding configs")
app.add_typer(email_app, name="email")


@email_app.command("add")
def email_add() -> None:
    """Interactively create an IMAP forwarding config.

    Gmail needs IMAP enabled (Settings > Forwarding and POP/IMAP) and an
    App Password (Google Account > Security > App Passwords).
    """
    from autobot.core.config.loader import load_config
    from autobot.core.models import EmailConfig, ForwardRule
    from autobot.mail.rules import is_valid_email
    from autobot.store import DocumentStore

    if not typer.confirm("Do you have IMAP enabled and an App Password ready?"):
        console.print("Complete the prerequisites first, then run this command again.")
        raise typer.Exit()

    email = typer.prompt("Gmail address").strip().lower()
    if not is_valid_email(email):
        console.print(f"[red]Invalid email address:[/red] {email}")
        raise typer.Exit(code=1)
    password = typer.prompt("App password", hide_input=True)

    rules: list[ForwardRule] = []
    while typer.confirm("Add a forward rule?", default=not rules):
        search = typer.prompt("  Subject contains")
        dest = typer.prompt("  Forward to").strip()
        if not is_valid_email(dest):
            console.print(f"  [yellow]Skipped, invalid destination:[/yellow] {dest}")
            continue
        rules.append(ForwardRule(subject_search=search, destination_email=dest))

    config = load_config()
    store = DocumentStore(config.database.path)
    store.save_email_config(
        EmailConfig(email=email, password=password, active=True, forward_rules=rules)
    )
    console.print(f"[green]Saved config for[/green] {email} ({len(rules)} rules)")


@email_app.command("list")
def email_list() -> None:
    """List email configs and their rules."""
    from autobot.core.config.loader import load_config
    from autobot.store import DocumentStore

    config = load_config()
    store = DocumentStore(config.database.path)

    configs = store.list_email_configs()
    if not configs:
        console.print("[dim]No email configs found.[/dim]")
        return

    table = Table(title="Email configs")
    table.add_column("Email", style="cyan")
    table.add_column("Active", style="green")
    table.add_column("Rules", style="yellow")
    table.add_column("Watermark", style="dim")

    for c in configs:
        rules = "\n".join(f"{r.subject_search} → {r.destination_email}" for r in c.forward_rules)
        mark = store.get_watermark(c.email)
        table.add_row(c.email, str(c.active), rules or "-", mark.isoformat() if mark else "-")

    console.print(table)


@email_app.command("remove")
def email_remove(
    email: str = typer.Argument(help="Email address to remove"),
) -> None:
    """Remove an email config and its watermark."""
    from autobot.core.config.loader import load_config
    from autobot.store import DocumentStore

    config = load_config()
    store = DocumentStore(config.database.path)

    if store.delete_email_config(email):
        console.print(f"[green]Removed email config:[/green] {email}")
    else:
        console.print(f"[red]Email config not found:[/red] {email}")
