"""Shared utilities for schedsync CLI commands."""
import asyncio
import sys
from datetime import date
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click

from ..config import DEFAULT_BASE_PATH, ConfigError, SyncConfig, load_config
from ..config import get_base_path as _config_base_path
from ..errors import SyncError
from ..models import LogicalKey, MonthKey
from ..store import create_store
from ..sync.codec import RecordCodec
from ..sync.gateway import RemoteGateway

DEFAULT_CONFIG_PATH = DEFAULT_BASE_PATH / "config.yaml"

# Verbosity levels
VERBOSITY_QUIET = 0
VERBOSITY_NORMAL = 1
VERBOSITY_VERBOSE = 2

T = TypeVar("T")


def get_base_path(ctx_data_dir: Optional[Path] = None) -> Path:
    """Get the base path for schedsync data.

    Priority: --data-dir flag > SCHEDSYNC_BASE_PATH env var > default path.

    Args:
        ctx_data_dir: Value from --data-dir CLI option, if provided.
    """
    return _config_base_path(ctx_data_dir)


def should_print(verbosity: int, message_level: int) -> bool:
    return verbosity >= message_level


def echo_verbose(message: str, verbosity: int) -> None:
    """Print a message only in verbose mode."""
    if should_print(verbosity, VERBOSITY_VERBOSE):
        click.echo(message)


def echo_normal(message: str, verbosity: int) -> None:
    """Print a message in normal and verbose modes."""
    if should_print(verbosity, VERBOSITY_NORMAL):
        click.echo(message)


def echo_quiet(message: str, verbosity: int) -> None:
    """Print a message that is shown even in quiet mode."""
    click.echo(message)


def fail(message: str) -> None:
    """Print an error in red to stderr and exit with status 1."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


def load_cli_config(ctx: click.Context) -> SyncConfig:
    """Load config.yaml for the --data-dir in ctx, exiting on invalid config."""
    try:
        return load_config(ctx.obj.get('data_dir'))
    except ConfigError as e:
        fail(str(e))


def parse_logical_key(value: str) -> LogicalKey:
    """Parse 'YYYY-MM-DD' into a day key or 'YYYY-MM' into a month key.

    Raises:
        click.BadParameter: If value is neither
    """
    text = value.strip()
    try:
        if len(text) == 7:
            return MonthKey.parse(text)
        return date.fromisoformat(text)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a date (YYYY-MM-DD) or month (YYYY-MM)")


def parse_date_option(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a date (YYYY-MM-DD)")


def run_with_gateway(config: SyncConfig, job: Callable[[RemoteGateway], Awaitable[T]]) -> T:
    """Open the configured store, run job(gateway) on a fresh event loop, close the store.

    SyncError failures are printed and exit with status 1.
    """
    async def _run() -> Any:
        store = create_store(config)
        try:
            gateway = RemoteGateway(store, RecordCodec(config.field_specs, config.timezone))
            return await job(gateway)
        finally:
            await store.close()

    try:
        return asyncio.run(_run())
    except SyncError as e:
        fail(f"{type(e).__name__}: {e}")
