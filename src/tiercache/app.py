"""Typer application and CLI entry point for tiercache.

A thin command line over :class:`~tiercache.engine.CacheEngine` for
inspecting and maintaining a cache directory from the shell::

    tiercache set greeting '"hello"' --ttl 60
    tiercache get greeting
    tiercache purge
    tiercache --json stats

Values are parsed as JSON when possible and stored as plain strings
otherwise.  The cache location comes from :func:`~tiercache.config.resolve_config`
(``--dir`` / ``--name`` flags, ``TIERCACHE_*`` variables, config files).

:func:`main` is the console-script entry point declared in
``pyproject.toml``.  Errors derived from
:class:`~tiercache.exceptions.TierCacheError` exit with their ``exit_code``;
unexpected exceptions are written to a crash log under the data directory.
"""

from __future__ import annotations

import json
import logging
import signal
import sys
import traceback
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

import typer
from rich.logging import RichHandler

from tiercache import __version__
from tiercache.exceptions import CacheMissError, TierCacheError
from tiercache.exit_codes import EXIT_GENERIC_FAILURE, EXIT_NOT_FOUND


app = typer.Typer(
    name="tiercache",
    help="Inspect and maintain a two-tier object cache.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

config_app = typer.Typer(no_args_is_help=True)
app.add_typer(config_app, name="config", help="Show or save the resolved configuration.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"tiercache {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    directory: Optional[str] = typer.Option(
        None, "--dir", "-d", help="Storage location (parent of the cache folder)."
    ),
    name: Optional[str] = typer.Option(
        None, "--name", help="Cache folder name under the storage location."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmations."),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~tiercache.output.OutputManager`, routes
    library logging to stderr when ``--verbose`` is given, and stores the
    location overrides in ``ctx.obj``.
    """
    from tiercache.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    if verbose:
        _enable_debug_logging(output.stderr_console)

    ctx.ensure_object(dict)
    ctx.obj["directory"] = directory
    ctx.obj["name"] = name
    ctx.obj["force"] = force


def _enable_debug_logging(console: Any) -> None:
    logger = logging.getLogger("tiercache")
    logger.handlers = [RichHandler(console=console, show_path=False)]
    logger.setLevel(logging.DEBUG)


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


@contextmanager
def _open_engine(ctx: typer.Context) -> Iterator[Any]:
    """Resolve the configuration from *ctx* and yield an open engine.

    Any :class:`TierCacheError` raised inside the block is reported on
    stderr and converted into ``typer.Exit`` with the error's exit code.
    """
    from tiercache.config import resolve_config
    from tiercache.engine import CacheEngine
    from tiercache.output import debug, error

    obj = ctx.obj or {}
    try:
        config = resolve_config(cli_dir=obj.get("directory"), cli_name=obj.get("name"))
        debug(f"Using cache directory {config.directory}")
        with CacheEngine(config) as engine:
            yield engine
    except TierCacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _parse_value(raw: str) -> Any:  # noqa: ANN401
    """Parse *raw* as JSON if possible, returning the raw string on failure."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


@app.command("get")
def get_command(
    ctx: typer.Context,
    key: str = typer.Argument(help="Cache key."),
) -> None:
    """Print the value stored under KEY.  Exits with 4 when there is none."""
    from tiercache.output import format_value

    with _open_engine(ctx) as engine:
        result = engine.fetch(key)
        if result.is_missing:
            raise CacheMissError(f"No entry for key {key!r}")
        format_value(result.unwrap())


@app.command("set")
def set_command(
    ctx: typer.Context,
    key: str = typer.Argument(help="Cache key."),
    value: str = typer.Argument(help="Value (JSON, or a plain string)."),
    ttl: Optional[float] = typer.Option(
        None, "--ttl", help="Lifetime in seconds (default: configured default_expiry)."
    ),
    never: bool = typer.Option(False, "--never", help="Never expire."),
) -> None:
    """Store VALUE under KEY."""
    from tiercache.models import Expiry
    from tiercache.output import error, success

    if never and ttl is not None:
        error("--ttl and --never are mutually exclusive")
        raise typer.Exit(code=2)

    expiry: Optional[Expiry] = None
    if never:
        expiry = Expiry.never()
    elif ttl is not None:
        expiry = Expiry.seconds(ttl)

    with _open_engine(ctx) as engine:
        engine.set(key, _parse_value(value), expiry)
    success(f"Stored {key}")


@app.command("exists")
def exists_command(
    ctx: typer.Context,
    key: str = typer.Argument(help="Cache key."),
) -> None:
    """Print whether KEY has a live entry.  Exits with 4 when it does not."""
    from tiercache.output import get_output

    with _open_engine(ctx) as engine:
        found = engine.exists(key)
    get_output().print_data("true" if found else "false")
    if not found:
        raise typer.Exit(code=EXIT_NOT_FOUND)


@app.command("rm")
def remove_command(
    ctx: typer.Context,
    key: str = typer.Argument(help="Cache key."),
) -> None:
    """Remove KEY from the cache."""
    from tiercache.output import info, success

    with _open_engine(ctx) as engine:
        removed = engine.remove(key)
    if removed:
        success(f"Removed {key}")
    else:
        info(f"No entry for {key}")


@app.command("clear")
def clear_command(ctx: typer.Context) -> None:
    """Delete every entry in the cache."""
    from tiercache.output import success

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        typer.confirm("Delete every cache entry?", abort=True)

    with _open_engine(ctx) as engine:
        report = engine.remove_all()
    success(f"Cleared cache ({report.removed} files removed)")


@app.command("purge")
def purge_command(ctx: typer.Context) -> None:
    """Delete expired entries from disk."""
    from tiercache.output import success, warning

    with _open_engine(ctx) as engine:
        report = engine.remove_expired()
    success(f"Removed {report.removed} expired entries")
    if report.failed:
        warning(f"{report.failed} expired entries could not be removed")


@app.command("stats")
def stats_command(ctx: typer.Context) -> None:
    """Show entry counts and sizes."""
    from tiercache.output import print_table

    with _open_engine(ctx) as engine:
        stats = engine.stats()
    print_table(
        ["field", "value"],
        [[name, str(value)] for name, value in stats.items()],
        title="tiercache",
    )


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the resolved configuration and where it is read from."""
    from tiercache.config import get_config_dir, resolve_config
    from tiercache.output import error, format_value, info

    obj = ctx.obj or {}
    try:
        config = resolve_config(cli_dir=obj.get("directory"), cli_name=obj.get("name"))
    except TierCacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    info(f"Config directory: {get_config_dir()}")
    format_value(config.model_dump(mode="json"))


@config_app.command("save")
def config_save(ctx: typer.Context) -> None:
    """Save the resolved configuration as the user default.

    Combine with ``--dir`` / ``--name`` to make them stick::

        tiercache --dir /var/cache/myapp --name api config save
    """
    from tiercache.config import resolve_config, save_user_config
    from tiercache.output import error, success

    obj = ctx.obj or {}
    try:
        config = resolve_config(cli_dir=obj.get("directory"), cli_name=obj.get("name"))
    except TierCacheError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    path = save_user_config(config)
    success(f"Saved configuration to {path}")


# ------------------------------------------------------------------ #
# Entry point
# ------------------------------------------------------------------ #


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from tiercache.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``tiercache`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except TierCacheError as exc:
        from tiercache.output import error

        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception as exc:
        log_path = _write_crash_log(exc)
        sys.stderr.write(f"Unexpected error: {exc}\nCrash log written to {log_path}\n")
        sys.exit(EXIT_GENERIC_FAILURE)
