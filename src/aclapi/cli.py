"""
CLI entry point for aclapi.

This module provides the Typer-based command-line interface for aclapi.

Commands:
    init-db     Create the database schema
    worker      Run the periodic sync loop until SIGINT/SIGTERM
    sync        Run a single pass over some or all active rules
    add-rules   Validate and store rules from a YAML file
    list-rules  List stored rules
    delete-rule Flag a rule as removed
    syncs       Show sync lock records and their latest outcome

Every command reads the YAML configuration given by --config (or
ACL_CONFIG); command-line options and their ACL_* environment variables
override the file.

Architecture Note:
    The CLI is intentionally thin - it wires the stores, the directory
    client and the strategies together and delegates to the sync package.
"""

import signal
import threading
import traceback
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from aclapi import __version__
from aclapi.config import AclConfig, apply_overrides, load_config
from aclapi.directory import TsuruClient
from aclapi.errors import AclApiError, ShutdownTimeoutError
from aclapi.log import configure_logging, get_logger
from aclapi.metrics import start_metrics_server
from aclapi.resolver import LogicCache
from aclapi.schema import Rule, load_rules
from aclapi.service import RuleService
from aclapi.store import AclDB, RuleStore, SyncStore
from aclapi.strategies import registry_from_config
from aclapi.sync import (
    LockKeepAlive,
    PeriodicDriver,
    SyncCoordinator,
    SyncService,
)

app = typer.Typer(
    name="aclapi",
    help="Reconcile network access rules with the workloads they govern.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
logger = get_logger(__name__)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        envvar="ACL_CONFIG",
        help="Path to the YAML configuration file.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
DbOption = Annotated[
    Optional[str],
    typer.Option("--db", envvar="ACL_STORAGE_PATH", help="Path to the SQLite database."),
]
DebugOption = Annotated[
    bool,
    typer.Option("--debug", envvar="ACL_DEBUG", help="Enable debug logging."),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]aclapi[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    aclapi - keep workloads in step with their access rules.

    Stores network access rules and periodically triggers the operators
    that apply them to tsuru apps and jobs.
    """
    pass


# =============================================================================
# Wiring
# =============================================================================


@dataclass
class Runtime:
    """Objects shared by the commands that run passes."""

    config: AclConfig
    db: AclDB
    rules: RuleService
    sync_service: SyncService
    keepalive: LockKeepAlive
    coordinator: SyncCoordinator

    def close(self) -> None:
        self.keepalive.stop()
        self.db.close()


def _exit_with_error(message: str, debug: bool = False) -> NoReturn:
    console.print(f"[red]{escape(message)}[/red]")
    if debug:
        console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")
    raise typer.Exit(code=1)


def _load_config(config_path: Path | None, overrides: dict[str, Any]) -> AclConfig:
    try:
        config = apply_overrides(load_config(config_path), overrides)
    except (OSError, ValidationError) as e:
        _exit_with_error(f"Error loading configuration: {e}")
    configure_logging(config.log_level, json_output=config.log.json_output)
    return config


def _open_db(config: AclConfig) -> AclDB:
    """Open the configured database, which must already be initialized."""
    try:
        db = AclDB(config.storage.path)
        version = db.schema_version()
    except AclApiError as e:
        _exit_with_error(f"Error opening database: {e}", config.debug)
    if version is None:
        db.close()
        _exit_with_error(
            f"Database {config.storage.path} is not initialized. Run 'aclapi init-db' first."
        )
    return db


def _build_runtime(config: AclConfig) -> Runtime:
    try:
        registry = registry_from_config(config)
    except AclApiError as e:
        _exit_with_error(str(e), config.debug)

    db = _open_db(config)
    rule_store = RuleStore(db)
    sync_store = SyncStore(db, lock_expire=timedelta(seconds=config.sync.lock_expire))
    keepalive = LockKeepAlive(sync_store.ping_syncs, interval=config.sync.keepalive_interval)
    sync_service = SyncService(rule_store, sync_store, keepalive)

    def cache_factory() -> LogicCache:
        directory = TsuruClient(
            config.tsuru.host,
            token=config.tsuru.token,
            timeout=config.http.timeout,
            insecure=config.tls.insecure,
        )
        return LogicCache(directory)

    coordinator = SyncCoordinator(
        sync_service,
        registry,
        cache_factory,
        interval=timedelta(seconds=config.sync.interval),
    )
    return Runtime(
        config=config,
        db=db,
        rules=RuleService(rule_store, sync_store),
        sync_service=sync_service,
        keepalive=keepalive,
        coordinator=coordinator,
    )


# =============================================================================
# Commands
# =============================================================================


@app.command("init-db")
def init_db(
    config_path: ConfigOption = None,
    db: DbOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Create the database schema.

    Safe to run more than once; existing data is kept.

    Example:
        $ aclapi init-db --db acl.db
    """
    config = _load_config(config_path, {"storage.path": db, "debug": debug or None})
    try:
        with AclDB(config.storage.path) as acl_db:
            acl_db.init_schema()
            version = acl_db.schema_version()
    except AclApiError as e:
        _exit_with_error(f"Error initializing database: {e}", config.debug)
    console.print(f"[green]✓[/green] Database {config.storage.path} ready (schema version {version})")


@app.command()
def worker(
    config_path: ConfigOption = None,
    db: DbOption = None,
    debug: DebugOption = False,
    interval: Annotated[
        Optional[float],
        typer.Option("--interval", envvar="ACL_SYNC_INTERVAL", help="Seconds between passes."),
    ] = None,
    disabled: Annotated[
        bool,
        typer.Option(
            "--sync-disabled",
            envvar="ACL_SYNC_DISABLED",
            help="Start without the periodic sync loop.",
        ),
    ] = False,
    metrics_port: Annotated[
        Optional[int],
        typer.Option("--metrics-port", envvar="ACL_METRICS_PORT", help="Prometheus port, 0 disables."),
    ] = None,
    tsuru_host: Annotated[
        Optional[str],
        typer.Option("--tsuru-host", envvar="ACL_TSURU_HOST", help="tsuru API address."),
    ] = None,
    tsuru_token: Annotated[
        Optional[str],
        typer.Option("--tsuru-token", envvar="ACL_TSURU_TOKEN", help="tsuru API token."),
    ] = None,
) -> None:
    """
    Run the periodic sync loop.

    Passes run every --interval seconds until SIGINT or SIGTERM. A pass in
    progress is allowed to finish before the worker exits.

    Example:
        $ aclapi worker --config acl.yaml --metrics-port 9090
    """
    config = _load_config(
        config_path,
        {
            "storage.path": db,
            "debug": debug or None,
            "sync.interval": interval,
            "sync.disabled": disabled or None,
            "metrics.port": metrics_port,
            "tsuru.host": tsuru_host,
            "tsuru.token": tsuru_token,
        },
    )
    runtime = _build_runtime(config)
    start_metrics_server(config.metrics.port)

    stop = threading.Event()

    def handle_signal(signum: int, frame: Any) -> None:
        logger.info("received signal, shutting down", signal=signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    runtime.keepalive.run()
    driver = PeriodicDriver(
        runtime.coordinator,
        runtime.sync_service,
        interval=config.sync.interval,
        disabled=config.sync.disabled,
    )
    driver.start()
    console.print(f"[dim]Worker started, engines: {', '.join(config.engines)}[/dim]")

    try:
        stop.wait()
        driver.shutdown_periodic_sync(config.sync.shutdown_timeout)
    except ShutdownTimeoutError as e:
        _exit_with_error(str(e), config.debug)
    finally:
        runtime.close()
    console.print("[dim]Worker stopped[/dim]")


@app.command()
def sync(
    rule_ids: Annotated[
        Optional[list[str]],
        typer.Argument(help="Rule IDs or names to sync. Defaults to every active rule."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Sync even if the rule was synced recently."),
    ] = False,
    config_path: ConfigOption = None,
    db: DbOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Run a single pass.

    Example:
        $ aclapi sync 6f1c... --force
    """
    config = _load_config(config_path, {"storage.path": db, "debug": debug or None})
    runtime = _build_runtime(config)
    try:
        if rule_ids:
            rules = [runtime.rules.find_by_id(rule_id) for rule_id in rule_ids]
        else:
            rules = runtime.rules.find_active()
        runtime.keepalive.run()
        result = runtime.coordinator.sync_rules(rules, force=force)
    except AclApiError as e:
        _exit_with_error(str(e), config.debug)
    finally:
        runtime.close()

    console.print(f"Synced {result.rules_considered} rules")


@app.command("add-rules")
def add_rules(
    rules_path: Annotated[
        Path,
        typer.Argument(
            help="Path to a YAML file with a list of rules.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    upsert: Annotated[
        bool,
        typer.Option("--upsert", help="Replace rules whose ID already exists."),
    ] = False,
    config_path: ConfigOption = None,
    db: DbOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Validate and store rules.

    Example:
        $ aclapi add-rules rules.yaml
    """
    config = _load_config(config_path, {"storage.path": db, "debug": debug or None})
    try:
        rules = load_rules(rules_path)
    except (OSError, ValidationError) as e:
        _exit_with_error(f"Error loading rules: {e}", config.debug)

    acl_db = _open_db(config)
    try:
        saved = RuleService(RuleStore(acl_db), SyncStore(acl_db)).save(rules, upsert=upsert)
    except AclApiError as e:
        _exit_with_error(f"Error saving rules: {e}", config.debug)
    finally:
        acl_db.close()

    console.print(f"[green]✓[/green] Added {len(saved)} rules")
    for rule in saved:
        console.print(f"  [cyan]{rule.rule_id}[/cyan] {rule.source} -> {rule.destination}")


@app.command("list-rules")
def list_rules(
    include_removed: Annotated[
        bool,
        typer.Option("--all", "-a", help="Include removed rules."),
    ] = False,
    source_app: Annotated[
        Optional[str],
        typer.Option("--app", help="Only rules whose source is this tsuru app."),
    ] = None,
    config_path: ConfigOption = None,
    db: DbOption = None,
    debug: DebugOption = False,
) -> None:
    """
    List stored rules.

    Example:
        $ aclapi list-rules --app myapp
    """
    config = _load_config(config_path, {"storage.path": db, "debug": debug or None})
    acl_db = _open_db(config)
    try:
        service = RuleService(RuleStore(acl_db), SyncStore(acl_db))
        rules = service.find_by_source_app(source_app) if source_app else service.find_all()
    except AclApiError as e:
        _exit_with_error(str(e), config.debug)
    finally:
        acl_db.close()

    if not include_removed:
        rules = [rule for rule in rules if not rule.removed]
    if not rules:
        console.print("[dim]No rules found.[/dim]")
        raise typer.Exit(code=0)

    console.print(_rules_table(rules))


def _rules_table(rules: list[Rule]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Rule ID", style="cyan")
    table.add_column("Name")
    table.add_column("Source")
    table.add_column("Destination")
    table.add_column("Creator")
    table.add_column("Created")
    table.add_column("Removed", width=7)

    for rule in rules:
        table.add_row(
            rule.rule_id,
            rule.rule_name,
            str(rule.source),
            str(rule.destination),
            rule.creator,
            rule.created.isoformat()[:19],
            "[yellow]yes[/yellow]" if rule.removed else "",
        )
    return table


@app.command("delete-rule")
def delete_rule(
    rule_id: Annotated[str, typer.Argument(help="The rule ID to remove.")],
    config_path: ConfigOption = None,
    db: DbOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Flag a rule as removed.

    The rule stays in the database; the next pass records its removal.

    Example:
        $ aclapi delete-rule 6f1c...
    """
    config = _load_config(config_path, {"storage.path": db, "debug": debug or None})
    acl_db = _open_db(config)
    try:
        RuleService(RuleStore(acl_db), SyncStore(acl_db)).delete(rule_id)
    except AclApiError as e:
        _exit_with_error(str(e), config.debug)
    finally:
        acl_db.close()
    console.print(f"[green]✓[/green] Rule {rule_id} removed")


@app.command()
def syncs(
    rule_ids: Annotated[
        Optional[list[str]],
        typer.Argument(help="Only show records of these rule IDs."),
    ] = None,
    config_path: ConfigOption = None,
    db: DbOption = None,
    debug: DebugOption = False,
) -> None:
    """
    Show sync lock records and their latest outcome.

    Example:
        $ aclapi syncs 6f1c...
    """
    config = _load_config(config_path, {"storage.path": db, "debug": debug or None})
    acl_db = _open_db(config)
    try:
        records = RuleService(RuleStore(acl_db), SyncStore(acl_db)).find_syncs(rule_ids or None)
    except AclApiError as e:
        _exit_with_error(str(e), config.debug)
    finally:
        acl_db.close()

    if not records:
        console.print("[dim]No syncs found.[/dim]")
        raise typer.Exit(code=0)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Rule ID", style="cyan")
    table.add_column("Engine")
    table.add_column("Running", width=7)
    table.add_column("Started")
    table.add_column("Last ping")
    table.add_column("Latest", width=8)
    table.add_column("Details")

    for info in records:
        latest = info.latest_sync()
        if latest is None:
            outcome, details = "[dim]-[/dim]", ""
        elif latest.successful:
            outcome, details = "[green]ok[/green]", latest.sync_result
        else:
            outcome, details = "[red]failed[/red]", latest.error
        if len(details) > 60:
            details = details[:57] + "..."
        table.add_row(
            info.rule_id,
            info.engine,
            "[yellow]yes[/yellow]" if info.running else "",
            _format_time(info.start_time),
            _format_time(info.ping_time),
            outcome,
            details,
        )

    console.print(table)


def _format_time(value: datetime | None) -> str:
    return value.isoformat()[:19] if value is not None else ""


if __name__ == "__main__":
    app()
