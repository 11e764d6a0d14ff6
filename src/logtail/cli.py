"""``logtail`` console script.

Subcommands:
  logtail run           tail the configured source until SIGTERM / SIGINT
  logtail scan          list the files the directory reader would pick up
  logtail health        check liveness / readiness of a running daemon
  logtail config show   print resolved configuration
"""

import re
import signal
import threading
from contextlib import ExitStack
from datetime import UTC, datetime

import typer
from pydantic import ValidationError

from logtail import __version__
from logtail.logging import get_logger

app = typer.Typer(
    name="logtail",
    help="Rotation-aware log tailer: extract records from log lines and forward them.",
    no_args_is_help=True,
)

_log = get_logger(__name__)

# Exit code contributed by each health status; the worst one wins.
_SEVERITY = {"pass": 0, "warn": 1, "fail": 2}


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"logtail {__version__}")
        raise typer.Exit()


@app.callback()
def _main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Print version and exit.",
    ),
) -> None:
    """Rotation-aware log tailer: extract records from log lines and forward them."""
    from logtail.logging import configure_logging

    try:
        configure_logging()
    except (ValidationError, FileNotFoundError) as exc:
        typer.echo(f"Error: invalid configuration\n{exc}", err=True)
        raise typer.Exit(2) from exc


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handle(signum: int, _frame: object) -> None:
        _log.info("shutdown requested", signal=signal.Signals(signum).name)
        stop.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, _handle)


@app.command("run")
def run(
    once: bool = typer.Option(
        False,
        "--once",
        help="Process everything available now, release the final held line, and exit.",
    ),
) -> None:
    """Tail the configured log file or directory and publish extracted records.

    Resources are acquired in order (run lock, publisher, reader) and
    released in reverse on shutdown.  Readiness is signalled once the reader
    is open.  Exit codes: 0 = clean shutdown, 1 = lock held or unrecoverable
    read failure, 2 = configuration error.
    """
    from logtail.config import get_settings
    from logtail.driver import Driver
    from logtail.extractor import RegexExtractor
    from logtail.health import HealthProbe
    from logtail.lock import LockError, RunLock
    from logtail.logging import source_logger
    from logtail.paths import ProjectPaths
    from logtail.publisher import open_publisher
    from logtail.reader import ReaderSetupError, open_reader

    settings = get_settings()
    paths = ProjectPaths.from_settings(settings)
    paths.ensure_output_dirs()
    log = source_logger("logtail.run", paths.source or "")

    stop = threading.Event()
    if not once:
        _install_signal_handlers(stop)
    probe = HealthProbe(paths.state_dir)

    try:
        with ExitStack() as resources:
            resources.enter_context(RunLock(paths.state_dir))
            probe.set_alive(True)
            resources.callback(probe.set_alive, False)

            extractor = RegexExtractor.from_settings(settings)
            publisher = open_publisher(settings, paths)
            resources.callback(publisher.close)

            reader = open_reader(settings, log=log)
            resources.callback(reader.close)

            probe.set_ready(True)
            resources.callback(probe.set_ready, False)
            log.info("reader ready", channel=publisher.channel)

            driver = Driver(
                reader,
                extractor,
                publisher,
                idle_seconds=settings.poll.idle_seconds,
                log=log,
            )
            if once:
                driver.drain()
                reader.flush()
                driver.drain()
                stats = driver.stats
            else:
                stats = driver.run(stop)

    except LockError as exc:
        log.error("logtail already running", detail=str(exc))
        raise typer.Exit(1) from exc
    except ReaderSetupError as exc:
        log.error("configuration error", detail=str(exc))
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc
    except OSError as exc:
        log.error("unrecoverable read failure, shutting down", error=str(exc))
        raise typer.Exit(1) from exc

    log.info("shutdown complete", lines=stats.lines, records=stats.records)


@app.command("scan")
def scan() -> None:
    """List the files the directory reader would process, oldest first.

    Applies the same name filter and modification-time ordering as
    ``logtail run``.  In single-file mode prints that one file.
    """
    from logtail.config import get_settings
    from logtail.discovery import FileInfo, FileSetScanner

    source = get_settings().source

    if source.log_directory is None:
        if source.log_file is None:
            typer.echo("Error: no log source configured", err=True)
            raise typer.Exit(2)
        try:
            files = [FileInfo.from_path(source.log_file)]
        except OSError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(1) from exc
    else:
        scanner = FileSetScanner(source.log_directory, re.compile(source.file_filter))
        found = scanner.scan()
        if found is None:
            typer.echo(f"Error: cannot list {source.log_directory}", err=True)
            raise typer.Exit(1)
        files = found

    for f in files:
        mtime = datetime.fromtimestamp(f.mtime_ns / 1e9, UTC).isoformat(timespec="seconds")
        typer.echo(f"  {mtime}  {f.size:>12}  {f.path}")
    typer.echo(f"\n  {len(files)} file(s)")
    _log.info("scan complete", total=len(files))


@app.command("health")
def health(
    check: str = typer.Option(
        "",
        "--check",
        "-c",
        help="Name of a single check to run (process, liveness, readiness); default runs all.",
    ),
) -> None:
    """Report whether a logtail daemon is alive and ready.

    Exits 0 when every check passes, 1 on a warning and 2 on a failure.
    """
    from logtail.config import get_settings
    from logtail.health import check_health
    from logtail.paths import ProjectPaths

    paths = ProjectPaths.from_settings(get_settings())

    try:
        results = check_health(paths.state_dir, only=check)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(2) from exc

    width = max(len(r.name) for r in results)
    for r in results:
        typer.echo(f"  {r.status.upper():<4}  {r.name:<{width}}  {r.message}")
        if r.hint:
            typer.echo(f"        {'':<{width}}  -> {r.hint}")

    worst = max(_SEVERITY[r.status] for r in results)
    if worst:
        raise typer.Exit(worst)


_config_app = typer.Typer(help="Show settings after file and environment merging.")
app.add_typer(_config_app, name="config")


@_config_app.command("show")
def config_show() -> None:
    """Print every setting as ``run`` would see it, grouped by section."""
    from logtail.config import _config_file, get_settings

    dumped = get_settings().model_dump(mode="json")
    lines = [f"# file: {_config_file()}"]
    for name, values in dumped.items():
        lines.append(f"\n[{name}]")
        lines.extend(f"{key} = {value}" for key, value in values.items())
    typer.echo("\n".join(lines))
