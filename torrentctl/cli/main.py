"""Command line entry point for torrentctl.

Runs an interactive session: torrents given on the command line, the
monitored directory and the resume store are all fed to the engine, alerts
are shown in a live view, and on quit every torrent's resume data is saved
before the process exits.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.live import Live
from rich.markup import escape

from torrentctl.cli.interactive import CommandProcessor, Prompter
from torrentctl.cli.keyboard import TerminalKeyReader
from torrentctl.cli.view import LiveView
from torrentctl.config.config import init_config, set_config
from torrentctl.core.ip_filter import load_ip_filter
from torrentctl.models import AddTorrentOptions, Config, LogLevel, StorageMode
from torrentctl.session.controller import SessionController
from torrentctl.session.dispatcher import AlertDispatcher
from torrentctl.session.ingestion import IngestionPipeline
from torrentctl.session.state import ControllerState
from torrentctl.storage.resume_store import ResumeStore
from torrentctl.storage.spool import SpoolDirectory
from torrentctl.utils.exceptions import (
    ConfigurationError,
    EngineUnavailableError,
    IPFilterError,
)
from torrentctl.utils.logging_config import get_logger, log_exception

if TYPE_CHECKING:  # pragma: no cover
    from torrentctl.session.engine import Engine
    from torrentctl.session.shutdown import ShutdownPhase

logger = get_logger(__name__)

ENGINE_INSTALL_HINT = (
    "libtorrent module not found. Install the Python bindings with: "
    "pip install torrentctl[libtorrent]"
)


def _apply_torrent_overrides(cfg: Config, options: dict[str, Any]) -> None:
    """Apply per-torrent CLI overrides."""
    if options.get("save_path") is not None:
        cfg.torrent.save_path = options["save_path"]
    if options.get("upload_limit") is not None:
        cfg.torrent.upload_limit_kib = int(options["upload_limit"])
    if options.get("download_limit") is not None:
        cfg.torrent.download_limit_kib = int(options["download_limit"])
    if options.get("max_connections") is not None:
        cfg.torrent.max_connections = int(options["max_connections"])
    if options.get("seed_mode"):
        cfg.torrent.seed_mode = True
    if options.get("share_mode"):
        cfg.torrent.share_mode = True
    if options.get("allocation_mode") is not None:
        cfg.torrent.storage_mode = StorageMode(options["allocation_mode"])
    if options.get("peer") is not None:
        cfg.torrent.peer = options["peer"]


def _apply_monitor_overrides(cfg: Config, options: dict[str, Any]) -> None:
    """Apply monitored directory CLI overrides."""
    if options.get("monitor_dir") is not None:
        cfg.monitor.directory = options["monitor_dir"]
    if options.get("poll_interval") is not None:
        cfg.monitor.poll_interval = float(options["poll_interval"])


def _apply_session_overrides(cfg: Config, options: dict[str, Any]) -> None:
    """Apply session loop CLI overrides."""
    if options.get("refresh_ms") is not None:
        cfg.session.refresh_interval_ms = int(options["refresh_ms"])
    if options.get("high_performance"):
        cfg.session.high_performance = True


def _apply_network_overrides(cfg: Config, options: dict[str, Any]) -> None:
    """Apply network-related CLI overrides."""
    if options.get("ip_filter") is not None:
        cfg.network.ip_filter_file = options["ip_filter"]
    if options.get("rate_limit_local"):
        cfg.network.rate_limit_local_peers = True


def _apply_observability_overrides(cfg: Config, options: dict[str, Any]) -> None:
    """Apply observability-related CLI overrides."""
    if options.get("log_file") is not None:
        cfg.observability.log_file = options["log_file"]
    verbose = options.get("verbose") or 0
    if verbose >= 2:
        cfg.observability.log_level = LogLevel.DEBUG
    elif verbose == 1:
        cfg.observability.log_level = LogLevel.INFO


def _apply_cli_overrides(cfg: Config, options: dict[str, Any]) -> None:
    """Apply all CLI overrides to configuration."""
    _apply_torrent_overrides(cfg, options)
    _apply_monitor_overrides(cfg, options)
    _apply_session_overrides(cfg, options)
    _apply_network_overrides(cfg, options)
    _apply_observability_overrides(cfg, options)


def _create_engine(config: Config) -> Engine:
    """Create the libtorrent-backed engine.

    Raises:
        EngineUnavailableError: If the libtorrent bindings are not installed

    """
    try:
        from torrentctl.engine.libtorrent_engine import LibtorrentEngine
    except ImportError as e:
        raise EngineUnavailableError(ENGINE_INSTALL_HINT) from e
    return LibtorrentEngine(config)


def _install_ip_filter(engine: Engine, path: str, state: ControllerState) -> None:
    """Load an IP filter file into the engine; failures are not fatal."""
    try:
        rules, errors = load_ip_filter(path)
    except IPFilterError as e:
        logger.warning("%s", e)
        state.events.add(f"failed to load IP filter: {path}")
        return
    if errors:
        logger.warning("Skipped %d malformed lines in IP filter %s", errors, path)
    engine.set_ip_filter(rules)
    logger.info("Loaded %d IP filter rules from %s", len(rules), path)


def _shutdown_reporter(console: Console):
    """Print shutdown progress so a long drain is visible."""

    def report(phase: ShutdownPhase, outstanding: int) -> None:
        console.print(
            f"[dim]shutdown: {phase.value} (outstanding saves: {outstanding})[/dim]"
        )

    return report


def run_session(config: Config, sources: list[str], console: Console) -> int:
    """Wire up the session components and run until quit.

    Returns:
        Process exit code

    """
    engine = _create_engine(config)
    state = ControllerState()

    resume_store = ResumeStore.for_save_path(config.torrent.save_path)
    if config.network.ip_filter_file:
        _install_ip_filter(engine, config.network.ip_filter_file, state)

    dispatcher = AlertDispatcher(
        engine,
        state,
        resume_store,
        max_connections=config.torrent.max_connections,
        peer=config.torrent.peer,
    )
    ingestion = IngestionPipeline(
        engine,
        resume_store,
        AddTorrentOptions.from_config(config.torrent),
        events=state.events,
    )
    spool = None
    if config.monitor.directory:
        spool = SpoolDirectory(config.monitor.directory, config.monitor.suffix)

    with Live(console=console, auto_refresh=False, transient=True) as live, TerminalKeyReader() as keys:
        commands = CommandProcessor(
            engine,
            state,
            ingestion,
            dispatcher,
            resume_store,
            prompter=Prompter(console, live),
        )
        controller = SessionController(
            config,
            engine,
            state,
            dispatcher,
            ingestion,
            commands,
            keys,
            spool=spool,
            render=LiveView(live),
            shutdown_progress=_shutdown_reporter(console),
        )
        return controller.run(sources)


@click.command()
@click.argument("sources", nargs=-1)
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file path")
@click.option("--verbose", "-v", count=True, help="Increase verbosity (-v: info, -vv: debug)")
@click.option("--save-path", "-s", type=click.Path(), help="Download directory")
@click.option("--monitor-dir", "-m", type=click.Path(), help="Directory to watch for .torrent files")
@click.option("--poll-interval", "-t", type=float, help="Monitor scan interval (s)")
@click.option("--refresh-ms", "-F", type=int, help="Screen refresh interval (ms)")
@click.option("--high-performance", "-k", is_flag=True, help="Use the high-performance seed preset")
@click.option("--seed-mode", "-G", is_flag=True, help="Add torrents in seed mode")
@click.option("--share-mode", "-Q", is_flag=True, help="Add torrents in share mode")
@click.option("--max-connections", "-T", type=int, help="Maximum connections per torrent")
@click.option("--upload-limit", "-U", type=int, help="Per-torrent upload limit (kB/s)")
@click.option("--download-limit", "-D", type=int, help="Per-torrent download limit (kB/s)")
@click.option("--peer", "-r", help="host:port of a peer to connect every torrent to")
@click.option("--ip-filter", "-x", type=click.Path(), help="eMule-style IP filter file")
@click.option("--rate-limit-local", "-Y", is_flag=True, help="Rate limit peers on the local network")
@click.option(
    "--allocation-mode",
    "-a",
    type=click.Choice([m.value for m in StorageMode]),
    help="File allocation mode",
)
@click.option("--log-file", "-f", type=click.Path(), help="Write log records to this file")
def cli(sources, config, **options):
    """Interactive torrent client.

    SOURCES are .torrent files or magnet links to add on startup.
    """
    console = Console()
    try:
        config_manager = init_config(config)
        cfg = config_manager.config.model_copy(deep=True)
        _apply_cli_overrides(cfg, options)
        # Assignment skips validation; re-check the merged result
        cfg = Config.model_validate(cfg.model_dump())
        set_config(cfg)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid option: {escape(str(e))}[/red]")
        sys.exit(1)

    try:
        rc = run_session(cfg, list(sources), console)
    except EngineUnavailableError as e:
        log_exception(logger, e, "Cannot start engine")
        console.print(f"[red]{escape(e.message)}[/red]")
        sys.exit(1)
    sys.exit(rc)


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
