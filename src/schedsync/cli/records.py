"""Record commands for schedsync CLI: list, set, clear."""
import json
from datetime import date

import click

from ..models import RecordKind, kind_for_key
from ..sync.engine import ReconciliationEngine
from ..sync.operation_tracker import OperationTracker
from .common import (
    echo_normal,
    echo_quiet,
    echo_verbose,
    load_cli_config,
    parse_date_option,
    parse_logical_key,
    run_with_gateway,
)


def _engine(config, gateway, partition: str) -> ReconciliationEngine:
    tracker = OperationTracker(
        save_window=config.sync.save_protection_seconds,
        delete_window=config.sync.delete_protection_seconds,
    )
    return ReconciliationEngine(gateway, partition, tracker=tracker)


@click.group()
def records_group():
    """Record commands."""
    pass


@records_group.command('list')
@click.argument('kind', type=click.Choice(['schedule', 'notes']), default='schedule')
@click.option('--partition', '-p', default=None, help='Partition to read (default: from config)')
@click.option('--from', 'date_from', default=None, help='First day to show (YYYY-MM-DD)')
@click.option('--to', 'date_to', default=None, help='Last day to show (YYYY-MM-DD)')
@click.option('--json', 'json_output', is_flag=True, help='Output as JSON')
@click.pass_context
def list_records(ctx, kind, partition, date_from, date_to, json_output) -> None:
    """List schedule entries or monthly notes.

    \b
    Examples:
        schedsync list
        schedsync list notes --partition shared_schedule
        schedsync list schedule --from 2025-09-01 --to 2025-09-30
    """
    verbosity = ctx.obj.get('verbosity', 1)
    config = load_cli_config(ctx)
    record_kind = RecordKind.from_string(kind)
    partition = partition or config.partition.name
    start, end = parse_date_option(date_from), parse_date_option(date_to)

    async def _list(gateway):
        engine = _engine(config, gateway, partition)
        await engine.refresh_all()
        return engine.entries(record_kind), engine.last_merge

    records, merge = run_with_gateway(config, _list)

    def _in_range(record) -> bool:
        day = record.key if isinstance(record.key, date) else date(record.key.year, record.key.month, 1)
        return (start is None or day >= start) and (end is None or day <= end)

    records = [r for r in records if _in_range(r)]

    if json_output:
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return

    if merge is not None and merge.skipped:
        echo_verbose(f"Skipped {merge.skipped} record(s) without a readable key", verbosity)
    if not records:
        echo_normal(click.style(f"No {record_kind.label} entries in '{partition}'", fg="yellow"), verbosity)
        return

    echo_normal(click.style(f"{record_kind.label.title()} entries in '{partition}' ({len(records)})",
                            fg="cyan", bold=True), verbosity)
    for record in records:
        lines = " | ".join(record.fields)
        echo_quiet(f"{record.key}  {lines}", verbosity)
        echo_verbose(f"    id={record.storage_id} modified={record.modified_at}", verbosity)


@records_group.command('set')
@click.argument('key')
@click.argument('lines', nargs=-1)
@click.option('--partition', '-p', default=None, help='Partition to write (default: from config)')
@click.pass_context
def set_record(ctx, key, lines, partition) -> None:
    """Set the text lines of a day (YYYY-MM-DD) or month (YYYY-MM).

    Missing lines are stored empty; setting every line empty deletes the entry.

    \b
    Examples:
        schedsync set 2025-09-05 OR Clinic ""
        schedsync set 2025-09 "Vacation 22-26"
    """
    verbosity = ctx.obj.get('verbosity', 1)
    config = load_cli_config(ctx)
    logical_key = parse_logical_key(key)
    partition = partition or config.partition.name

    kind = kind_for_key(logical_key)
    spec = config.field_specs[kind]
    if len(lines) > spec.field_count:
        raise click.BadParameter(f"{kind.label} entries take at most {spec.field_count} lines")

    async def _set(gateway):
        engine = _engine(config, gateway, partition)
        return await engine.upsert(logical_key, list(lines))

    saved = run_with_gateway(config, _set)
    if saved is None:
        echo_normal(click.style(f"✓ Cleared {kind.label} {logical_key}", fg="green"), verbosity)
    else:
        echo_normal(click.style(f"✓ Saved {kind.label} {logical_key}", fg="green"), verbosity)
        echo_verbose(f"  id={saved.storage_id} tag={saved.change_tag}", verbosity)


@records_group.command('clear')
@click.argument('key')
@click.option('--partition', '-p', default=None, help='Partition to write (default: from config)')
@click.pass_context
def clear_record(ctx, key, partition) -> None:
    """Delete the entry for a day (YYYY-MM-DD) or month (YYYY-MM), duplicates included."""
    verbosity = ctx.obj.get('verbosity', 1)
    config = load_cli_config(ctx)
    logical_key = parse_logical_key(key)
    partition = partition or config.partition.name
    kind = kind_for_key(logical_key)

    async def _clear(gateway):
        return await _engine(config, gateway, partition).delete(logical_key)

    removed = run_with_gateway(config, _clear)
    if removed:
        echo_normal(click.style(f"✓ Deleted {kind.label} {logical_key} ({removed} record(s))", fg="green"),
                    verbosity)
    else:
        echo_normal(click.style(f"Nothing stored for {kind.label} {logical_key}", fg="yellow"), verbosity)
