"""Maintenance commands for schedsync CLI: dedupe, migrate, export."""
import sys
from pathlib import Path

import click

from ..event_bus import EventBus
from ..export import EXPORT_FORMATS, ScheduleExporter
from ..models import RecordKind
from ..sync.dedup import Deduplicator
from ..sync.migration import PartitionMigrator
from .common import (
    echo_normal,
    echo_quiet,
    echo_verbose,
    load_cli_config,
    parse_date_option,
    run_with_gateway,
)

KIND_CHOICES = ['schedule', 'notes', 'all']


def _kinds(kind: str):
    return list(RecordKind) if kind == 'all' else [RecordKind.from_string(kind)]


@click.group()
def maintenance_group():
    """Maintenance commands."""
    pass


@maintenance_group.command('dedupe')
@click.option('--kind', '-k', type=click.Choice(KIND_CHOICES), default='all',
              help='Record kind to deduplicate (default: all)')
@click.option('--partition', '-p', default=None, help='Partition to clean (default: from config)')
@click.pass_context
def dedupe(ctx, kind, partition) -> None:
    """Remove duplicate records, keeping the most recently modified copy."""
    verbosity = ctx.obj.get('verbosity', 1)
    config = load_cli_config(ctx)
    partition = partition or config.partition.name

    async def _dedupe(gateway):
        return await Deduplicator(gateway).dedupe_all(partition, _kinds(kind))

    reports = run_with_gateway(config, _dedupe)

    failed = 0
    for record_kind, report in reports.items():
        failed += report.failed
        line = (f"{record_kind.label}: {report.scanned} scanned, {report.duplicate_groups} duplicate group(s), "
                f"{report.removed} removed")
        color = "red" if report.failed else "green"
        echo_quiet(click.style(f"✓ {line}" if not report.failed else f"✗ {line}, {report.failed} failed",
                               fg=color), verbosity)
        for storage_id, error in report.errors.items():
            echo_normal(f"  {storage_id}: {error}", verbosity)
        if report.skipped:
            echo_verbose(f"  skipped {report.skipped} record(s) without a readable key", verbosity)

    if failed:
        sys.exit(1)


@maintenance_group.command('migrate')
@click.argument('source')
@click.argument('destination')
@click.option('--batch-size', type=int, default=None, help='Records per batch (default: from config)')
@click.option('--delay', type=float, default=None, help='Seconds between batches (default: from config)')
@click.pass_context
def migrate(ctx, source, destination, batch_size, delay) -> None:
    """Copy every record from SOURCE partition into DESTINATION and verify.

    Re-running is safe; duplicates it produces are removed by 'schedsync dedupe'.

    \b
    Examples:
        schedsync migrate user_schedule shared_schedule
        schedsync migrate user_schedule shared_schedule --batch-size 25
    """
    verbosity = ctx.obj.get('verbosity', 1)
    config = load_cli_config(ctx)
    if source == destination:
        raise click.BadParameter("SOURCE and DESTINATION must differ")

    bus = EventBus()
    bus.subscribe('maintenance.migration_progress',
                  lambda event: echo_verbose(f"  [{event.status}] {event.step}", verbosity))

    async def _migrate(gateway):
        migrator = PartitionMigrator(
            gateway,
            batch_size=batch_size or config.migration.batch_size,
            batch_delay=config.migration.batch_delay_seconds if delay is None else delay,
            event_bus=bus,
            entity_marker=config.migration.entity_marker,
        )
        return await migrator.migrate(source, destination)

    echo_normal(click.style(f"Migrating '{source}' -> '{destination}'...", fg="cyan", bold=True), verbosity)
    report = run_with_gateway(config, _migrate)

    for label, count in report.per_kind.items():
        echo_normal(f"  {label}: {count} discovered", verbosity)
    echo_quiet(f"Discovered: {report.discovered}  Migrated: {report.migrated}  Verified: {report.verified}",
               verbosity)

    if report.succeeded:
        echo_normal(click.style("✓ Migration completed", fg="green"), verbosity)
    else:
        echo_quiet(click.style(f"✗ Migration failed: {report.error}", fg="red"), verbosity)
        sys.exit(1)


@maintenance_group.command('export')
@click.argument('output', type=click.Path(dir_okay=False))
@click.option('--format', 'fmt', type=click.Choice(EXPORT_FORMATS), default='csv', help='Output format')
@click.option('--kind', '-k', type=click.Choice(KIND_CHOICES), default='all', help='Record kind (default: all)')
@click.option('--partition', '-p', default=None, help='Partition to export (default: from config)')
@click.option('--from', 'date_from', default=None, help='First day to include (YYYY-MM-DD)')
@click.option('--to', 'date_to', default=None, help='Last day to include (YYYY-MM-DD)')
@click.pass_context
def export(ctx, output, fmt, kind, partition, date_from, date_to) -> None:
    """Export schedule entries and notes to CSV, JSON or YAML.

    \b
    Examples:
        schedsync export schedule.csv --kind schedule
        schedsync export backup.json --format json
    """
    verbosity = ctx.obj.get('verbosity', 1)
    config = load_cli_config(ctx)
    partition = partition or config.partition.name
    start, end = parse_date_option(date_from), parse_date_option(date_to)
    kinds = _kinds(kind)

    async def _export(gateway):
        return await ScheduleExporter(gateway).export_to_file(
            Path(output), partition, fmt=fmt,
            kind=kinds[0] if len(kinds) == 1 else None,
            date_from=start, date_to=end,
        )

    written = run_with_gateway(config, _export)
    for path in written:
        echo_normal(click.style(f"✓ Wrote {path}", fg="green"), verbosity)
