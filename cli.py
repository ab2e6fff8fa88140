# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Gram-Optic CLI

    gram-optic start [SIZE]     Activate the three tiers and the daemon
    gram-optic stop             Deactivate everything
    gram-optic restart [SIZE]   stop + start
    gram-optic status           Show current status (default)

Exit codes: 0 success, 1 a tier or the daemon failed, 2 usage/config error.
"""

import json
from pathlib import Path
from typing import Optional

import click

from gramoptic import __version__
from gramoptic.core.config import GramOpticConfig, load_config
from gramoptic.core.exceptions import ConfigError, InvalidSizeError
from gramoptic.core.logger import setup_logging_from_config
from gramoptic.core.resources import format_size, parse_size
from gramoptic.core.tiers import Tier
from gramoptic.runtime.supervisor import LifecycleReport, StatusReport, Supervisor

EXIT_FAILURE = 1
EXIT_USAGE = 2


class CliContext:
    """Lazily loaded configuration and supervisor shared by subcommands"""

    def __init__(self, config_file: Optional[Path], log_level: Optional[str]):
        self.config_file = config_file
        self.log_level = log_level
        self._config: Optional[GramOpticConfig] = None
        self._supervisor: Optional[Supervisor] = None

    @property
    def config(self) -> GramOpticConfig:
        if self._config is None:
            try:
                config = load_config(self.config_file)
                if self.log_level:
                    config.observability.log_level = self.log_level.upper()
            except ConfigError as e:
                click.echo(f"Error: {e}", err=True)
                raise click.exceptions.Exit(EXIT_USAGE)
            self._config = config
        return self._config

    @property
    def supervisor(self) -> Supervisor:
        if self._supervisor is None:
            setup_logging_from_config(self.config)
            self._supervisor = Supervisor(self.config, config_file=self.config_file)
        return self._supervisor


def _check_size(ctx, param, value):
    if value is None:
        return None
    try:
        parse_size(value)
    except InvalidSizeError as e:
        raise click.BadParameter(e.message)
    return value


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (YAML)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx, config_file: Optional[Path], log_level: Optional[str]):
    """Gram-Optic - workspace-based memory management.

    Three tiers for Hyprland workspaces:

    \b
      1-3  pure RAM (no compression, highest performance)
      4-6  disk swap (low compression)
      7-9  zram (medium compression in RAM)

    SIZE is an optional capacity such as 2G or 512M, applied to both the
    disk swap file and the zram device.
    """
    ctx.obj = CliContext(config_file, log_level)
    if ctx.invoked_subcommand is None:
        ctx.invoke(status)


# =============================================================================
# Output
# =============================================================================


def _mark(ok: bool) -> str:
    return "✓" if ok else "✗"


def _echo_report(report: LifecycleReport):
    for outcome in report.outcomes:
        if not outcome.ok:
            click.echo(
                f"{_mark(False)} {outcome.tier.label} ({report.action}): {outcome.error}",
                err=True,
            )
    if report.daemon_error:
        click.echo(f"{_mark(False)} Monitoring daemon: {report.daemon_error}", err=True)


def _echo_status(report: StatusReport):
    click.echo("Gram-Optic System Status:")
    click.echo("=========================")

    zram = report.resources[Tier.COMPRESSED_RAM]
    if zram.is_active:
        click.echo(
            f"{_mark(True)} ZRAM device {zram.identifier} for workspaces "
            f"{Tier.COMPRESSED_RAM.workspaces}: {zram.compression_algorithm}"
        )
        click.echo(f"  Size: {zram.capacity} bytes ({format_size(zram.capacity)})")
        used = "-" if zram.usage is None else f"{zram.usage} bytes"
        click.echo(f"  Used: {used}")
        click.echo(f"  Priority: {zram.priority}")
    else:
        click.echo(
            f"{_mark(False)} ZRAM device for workspaces "
            f"{Tier.COMPRESSED_RAM.workspaces}: Not active ({zram.state.value})"
        )

    disk = report.resources[Tier.DISK_SWAP]
    if disk.is_active:
        click.echo(
            f"{_mark(True)} Disk swap for workspaces {Tier.DISK_SWAP.workspaces}: Active"
        )
        click.echo(f"  File: {disk.identifier} ({format_size(disk.capacity)})")
        click.echo(f"  Priority: {disk.priority}")
    else:
        click.echo(
            f"{_mark(False)} Disk swap for workspaces "
            f"{Tier.DISK_SWAP.workspaces}: Not active ({disk.state.value})"
        )

    ram = report.resources[Tier.RAM]
    click.echo(
        f"{_mark(ram.is_active)} Pure RAM for workspaces {Tier.RAM.workspaces}: "
        f"{'Active' if ram.is_active else 'Not active'}"
    )

    daemon = report.daemon
    if daemon.running:
        click.echo(f"{_mark(True)} Monitoring daemon: Running (PID: {daemon.pid})")
    elif daemon.stale_record:
        click.echo(
            f"{_mark(False)} Monitoring daemon: PID {daemon.pid} recorded but process not running"
        )
    else:
        click.echo(f"{_mark(False)} Monitoring daemon: Not running")

    if report.memory:
        memory = report.memory
        click.echo("")
        click.echo("System Memory Status:")
        click.echo(
            f"  Memory: {format_size(memory.get('memory_available'))} available "
            f"of {format_size(memory.get('memory_total'))}"
        )
        click.echo(
            f"  Swap:   {format_size(memory.get('swap_used'))} used "
            f"of {format_size(memory.get('swap_total'))}"
        )

    for name, error in report.errors.items():
        click.echo(f"  ({name}: {error})", err=True)


# =============================================================================
# Commands
# =============================================================================


@cli.command()
@click.argument("size", required=False, callback=_check_size)
@click.pass_obj
def start(obj: CliContext, size: Optional[str]):
    """Activate gram-optic system."""
    report = obj.supervisor.start(size)
    _echo_report(report)
    if not report.ok:
        raise click.exceptions.Exit(EXIT_FAILURE)


@cli.command()
@click.pass_obj
def stop(obj: CliContext):
    """Deactivate gram-optic system."""
    report = obj.supervisor.stop()
    _echo_report(report)
    if not report.ok:
        raise click.exceptions.Exit(EXIT_FAILURE)


@cli.command()
@click.argument("size", required=False, callback=_check_size)
@click.pass_obj
def restart(obj: CliContext, size: Optional[str]):
    """Restart gram-optic system."""
    report = obj.supervisor.restart(size)
    _echo_report(report)
    if not report.ok:
        raise click.exceptions.Exit(EXIT_FAILURE)


@cli.command()
@click.option("--format", "-f", "fmt", type=click.Choice(["text", "json"]), default="text")
@click.pass_obj
def status(obj: CliContext, fmt: str = "text"):
    """Show current status."""
    obj.config.observability.console = False
    report = obj.supervisor.status()
    if fmt == "json":
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        _echo_status(report)


@cli.command(hidden=True)
@click.pass_obj
def daemon(obj: CliContext):
    """Run the workspace monitoring daemon in the foreground."""
    from gramoptic.runtime.daemon import run_daemon

    run_daemon(obj.config)


if __name__ == "__main__":
    cli()
