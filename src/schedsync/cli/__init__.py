"""schedsync CLI - maintenance and ops tool for the schedule record store

Command groups are organized into separate modules:
- workspace.py: init, status
- records.py: list, set, clear
- maintenance.py: dedupe, migrate, export
- config.py: config set, get, show
- common.py: shared utilities
"""
import logging
from pathlib import Path

import click

from .common import get_base_path, VERBOSITY_QUIET, VERBOSITY_NORMAL, VERBOSITY_VERBOSE
from .workspace import workspace_group
from .records import records_group
from .maintenance import maintenance_group
from .config import config_group
from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="schedsync")
@click.option('--data-dir', type=click.Path(), default=None, envvar='SCHEDSYNC_BASE_PATH',
              help='Base directory for schedsync data (default: ~/.schedsync)')
@click.option('--verbose', '-v', is_flag=True, default=False,
              help='Enable verbose output and debug logging')
@click.option('--quiet', '-q', is_flag=True, default=False,
              help='Suppress non-essential output')
@click.pass_context
def cli(ctx, data_dir, verbose, quiet):
    """schedsync - schedule sync maintenance

    Inspect and repair the record store behind the provider-schedule calendar.

    \b
    Key Commands:
        init              Create config and the working partition
        status            Account, partitions and record counts
        list              Show schedule entries or monthly notes
        set / clear       Write or delete a day or month entry
        dedupe            Remove duplicate records
        migrate           Copy a dataset into another partition
        export            Dump a partition to CSV, JSON or YAML
        config            Configuration management

    \b
    Examples:
        schedsync init
        schedsync set 2025-09-05 OR Clinic
        schedsync list schedule --from 2025-09-01
        schedsync migrate user_schedule shared_schedule
        schedsync dedupe --partition shared_schedule
    """
    ctx.ensure_object(dict)

    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    if quiet:
        ctx.obj['verbosity'] = VERBOSITY_QUIET
    elif verbose:
        ctx.obj['verbosity'] = VERBOSITY_VERBOSE
    else:
        ctx.obj['verbosity'] = VERBOSITY_NORMAL

    ctx.obj['data_dir'] = Path(data_dir) if data_dir else None

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


cli.add_command(workspace_group.commands['init'])
cli.add_command(workspace_group.commands['status'])

cli.add_command(records_group.commands['list'])
cli.add_command(records_group.commands['set'])
cli.add_command(records_group.commands['clear'])

cli.add_command(maintenance_group.commands['dedupe'])
cli.add_command(maintenance_group.commands['migrate'])
cli.add_command(maintenance_group.commands['export'])

cli.add_command(config_group, name='config')


def main():
    """Entry point for the CLI."""
    cli()


__all__ = [
    '__version__',
    'cli',
    'main',
    'get_base_path',
]
