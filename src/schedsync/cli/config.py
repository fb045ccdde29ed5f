"""Configuration management commands for schedsync CLI."""
import sys

import click
import yaml

from ..config import CONFIG_FILENAME, ConfigError, config_from_dict
from .common import get_base_path, echo_quiet, echo_normal, fail


def _coerce(value: str):
    """Interpret a command-line value the way YAML would ('5' -> 5, 'true' -> True)."""
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value


@click.group()
def config_group():
    """Configuration management commands."""
    pass


@config_group.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key: str, value: str) -> None:
    """Set a configuration value.

    \b
    Examples:
        schedsync config set store.backend http
        schedsync config set store.endpoint https://records.example.com/v1
        schedsync config set partition.name shared_schedule
        schedsync config set migration.batch_size 25
    """
    base_path = get_base_path(ctx.obj.get('data_dir'))
    config_path = base_path / CONFIG_FILENAME
    verbosity = ctx.obj.get('verbosity', 1)

    if not config_path.exists():
        fail("schedsync not initialized. Run 'schedsync init' first.")

    config_data = yaml.safe_load(config_path.read_text()) or {}

    keys = key.split('.')
    current = config_data
    for k in keys[:-1]:
        if not isinstance(current.get(k), dict):
            current[k] = {}
        current = current[k]
    current[keys[-1]] = _coerce(value)

    # refuse to write a file that would no longer load
    try:
        config_from_dict(config_data, base_path)
    except ConfigError as e:
        fail(f"Invalid value for {key}: {e}")

    config_path.write_text(yaml.safe_dump(config_data, default_flow_style=False, sort_keys=False))
    echo_normal(click.style(f"✓ Set {key} = {value}", fg="green"), verbosity)


@config_group.command('get')
@click.argument('key')
@click.pass_context
def config_get(ctx, key: str) -> None:
    """Get a configuration value.

    Values not present in config.yaml are reported from the defaults.

    \b
    Examples:
        schedsync config get store.backend
        schedsync config get sync.reference_timezone
    """
    base_path = get_base_path(ctx.obj.get('data_dir'))
    config_path = base_path / CONFIG_FILENAME
    verbosity = ctx.obj.get('verbosity', 1)

    config_data = yaml.safe_load(config_path.read_text()) if config_path.exists() else {}
    try:
        current = config_from_dict(config_data or {}, base_path).to_dict()
    except ConfigError as e:
        fail(str(e))

    for k in key.split('.'):
        if not isinstance(current, dict) or k not in current:
            echo_quiet(click.style(f"Key '{key}' not found", fg="yellow"), verbosity)
            sys.exit(1)
        current = current[k]

    echo_quiet(str(current), verbosity)


@config_group.command('show')
@click.pass_context
def config_show(ctx) -> None:
    """Display full configuration."""
    base_path = get_base_path(ctx.obj.get('data_dir'))
    config_path = base_path / CONFIG_FILENAME
    verbosity = ctx.obj.get('verbosity', 1)

    if not config_path.exists():
        fail("schedsync not initialized. Run 'schedsync init' first.")

    echo_normal(click.style("Current configuration:", fg="cyan", bold=True), verbosity)
    echo_quiet(config_path.read_text(), verbosity)
