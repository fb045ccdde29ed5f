"""Workspace commands for schedsync CLI: init, status."""
import click

from ..config import CONFIG_FILENAME, write_default_config
from ..models import RecordKind
from ..store import AccountStatus
from .common import (
    echo_normal,
    echo_quiet,
    echo_verbose,
    get_base_path,
    load_cli_config,
    run_with_gateway,
)


@click.group()
def workspace_group():
    """Workspace commands."""
    pass


@workspace_group.command("init")
@click.pass_context
def init(ctx) -> None:
    """Initialize schedsync.

    Creates the base directory, config.yaml with default settings, and the
    configured partition in the record store.
    """
    base_path = get_base_path(ctx.obj.get('data_dir'))
    verbosity = ctx.obj.get('verbosity', 1)

    echo_normal(click.style("Initializing schedsync...", fg="cyan", bold=True), verbosity)

    config_path = base_path / CONFIG_FILENAME
    if not config_path.exists():
        write_default_config(base_path)
        echo_normal(f" ✓ Created config: {config_path}", verbosity)
    else:
        echo_normal(f" ⚠ Config exists: {config_path}", verbosity)

    config = load_cli_config(ctx)

    async def _prepare(gateway):
        return await gateway.ensure_partition(config.partition.name)

    handle = run_with_gateway(config, _prepare)
    state = "created" if handle.created else "exists"
    echo_normal(f" ✓ Partition '{handle.name}' {state} ({config.store.backend} store)", verbosity)
    echo_normal(click.style("✓ schedsync initialized", fg="green"), verbosity)


@workspace_group.command("status")
@click.option('--partition', '-p', default=None, help='Partition to inspect (default: from config)')
@click.pass_context
def status(ctx, partition) -> None:
    """Show account status, partitions and record counts."""
    verbosity = ctx.obj.get('verbosity', 1)
    config = load_cli_config(ctx)
    partition = partition or config.partition.name

    async def _status(gateway):
        account = await gateway.account_status()
        if account is not AccountStatus.AVAILABLE:
            return account, [], {}
        partitions = await gateway.list_partitions()
        counts = {}
        if partition in partitions:
            for kind in RecordKind:
                records = await gateway.collect_all(kind, partition)
                keys = {r.key for r in records if r.key is not None}
                counts[kind] = (len(records), len(keys))
        return account, partitions, counts

    account, partitions, counts = run_with_gateway(config, _status)

    echo_normal(click.style("=== schedsync Status ===", fg="cyan", bold=True), verbosity)
    echo_normal(f"Store: {config.store.backend}", verbosity)
    if config.store.backend == "sqlite":
        echo_verbose(f"Path: {config.store_path}", verbosity)
    elif config.store.backend == "http":
        echo_verbose(f"Endpoint: {config.store.endpoint}", verbosity)
    echo_verbose(f"Reference timezone: {config.sync.reference_timezone}", verbosity)

    color = "green" if account is AccountStatus.AVAILABLE else "red"
    echo_quiet(f"Account: {click.style(account.value, fg=color)}", verbosity)
    if account is not AccountStatus.AVAILABLE:
        return

    echo_normal(f"Partitions: {', '.join(partitions) if partitions else '(none)'}", verbosity)
    if partition not in partitions:
        echo_quiet(click.style(f"Partition '{partition}' does not exist", fg="yellow"), verbosity)
        return

    echo_normal(f"\nPartition '{partition}':", verbosity)
    for kind, (total, unique) in counts.items():
        line = f"  {kind.label}: {total} records"
        if total > unique:
            line += click.style(f" ({total - unique} duplicates, run 'schedsync dedupe')", fg="yellow")
        echo_quiet(line, verbosity)
