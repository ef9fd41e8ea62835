"""
Dispersion CLI

Quote purchases, preview currency spends and inspect vesting schedules
against the configured distribution.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
import yaml
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..blockchain.distribution_manager import DistributionManager
from ..blockchain.vesting_manager import SECONDS_PER_DAY, Grant
from ..config_manager import DEFAULT_CONFIG_DIR, ConfigManager
from ..core.defi.safe_math import from_wad, to_wad
from ..core.exceptions import DispersionError
from ..core.logging_config import configure_from_config
from ..core.metrics import DistributionMetrics

logger = logging.getLogger("dispersion.cli.main")

console = Console()


def _cli_fail(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _fmt(value: int) -> str:
    """Render a WAD integer as a plain decimal string."""
    return format(from_wad(value).normalize(), "f")


def _parse_overrides(values: Tuple[str, ...]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for item in values:
        key, sep, raw = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected section.key=value, got '{item}'", param_hint="--set")
        overrides[key.strip()] = yaml.safe_load(raw)
    return overrides


def _parse_amount(value: str, name: str) -> int:
    try:
        return to_wad(value)
    except DispersionError as exc:
        raise click.BadParameter(str(exc), param_hint=name) from exc


def _emit(ctx: click.Context, payload: Dict[str, Any], title: str) -> None:
    if ctx.obj["json_output"]:
        click.echo(json.dumps(payload, indent=2))
        return

    table = Table(show_header=False, box=box.ROUNDED)
    for key, value in payload.items():
        table.add_row(f"[bold cyan]{key.replace('_', ' ').title()}", str(value))
    console.print(Panel(table, title=f"[bold green]{title}", border_style="green"))


def _manager(ctx: click.Context) -> DistributionManager:
    config: ConfigManager = ctx.obj["config"]
    return DistributionManager.from_config(
        config.distribution,
        config.vesting,
        metrics=DistributionMetrics.from_config(config.metrics),
    )


@click.group()
@click.option(
    "--environment",
    type=click.Choice(["development", "staging", "production"]),
    default=None,
    help="Configuration environment (defaults to DISPERSION_ENVIRONMENT or development).",
)
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help=f"Directory containing config files (default {DEFAULT_CONFIG_DIR}).",
)
@click.option(
    "--set",
    "overrides",
    multiple=True,
    metavar="SECTION.KEY=VALUE",
    help="Override a configuration value, e.g. --set distribution.k=25",
)
@click.option("--json-output", is_flag=True, help="Output raw JSON")
@click.option("--verbose", is_flag=True, help="Emit structured logs to stderr")
@click.pass_context
def cli(
    ctx: click.Context,
    environment: Optional[str],
    config_dir: Optional[Path],
    overrides: Tuple[str, ...],
    json_output: bool,
    verbose: bool,
):
    """Dispersion - supply-driven pricing and vesting calculator."""
    ctx.ensure_object(dict)
    cli_overrides = _parse_overrides(overrides)
    try:
        config = ConfigManager(
            environment=environment,
            config_dir=str(config_dir) if config_dir else None,
            cli_overrides=cli_overrides,
        )
    except (DispersionError, TypeError, ValueError, yaml.YAMLError) as exc:
        _cli_fail(exc)

    if verbose:
        configure_from_config(config.logging, environment=config.environment.value)

    ctx.obj["config"] = config
    ctx.obj["json_output"] = json_output


@cli.command("quote")
@click.argument("amount")
@click.pass_context
def quote(ctx: click.Context, amount: str):
    """Price a purchase of AMOUNT whole tokens."""
    token_amount = _parse_amount(amount, "AMOUNT")
    try:
        manager = _manager(ctx)
        breakdown = manager.calculate_purchase_cost(token_amount)
        _, total_with_fee = manager.calculate_total_cost(token_amount)
        duration = manager.calculate_vesting_duration()
    except DispersionError as exc:
        _cli_fail(exc)

    _emit(
        ctx,
        {
            "amount": _fmt(token_amount),
            "base_price": _fmt(breakdown.base_price),
            "premium": _fmt(breakdown.premium),
            "base_cost": _fmt(breakdown.base_cost),
            "final_cost": _fmt(breakdown.final_cost),
            "total_with_fee": _fmt(total_with_fee),
            "vesting_duration": duration,
        },
        "Purchase Quote",
    )


@cli.command("preview")
@click.argument("payment")
@click.pass_context
def preview(ctx: click.Context, payment: str):
    """Show what PAYMENT (fee included) would buy."""
    payment_wad = _parse_amount(payment, "PAYMENT")
    try:
        manager = _manager(ctx)
        result = manager.preview_purchase_with_currency(payment_wad)
    except DispersionError as exc:
        _cli_fail(exc)

    refund = payment_wad - result.total_cost if result.token_amount else payment_wad
    _emit(
        ctx,
        {
            "payment": _fmt(payment_wad),
            "token_amount": _fmt(result.token_amount),
            "total_cost": _fmt(result.total_cost),
            "base_price": _fmt(result.base_price),
            "premium": _fmt(result.premium),
            "refund": _fmt(refund),
        },
        "Purchase Preview",
    )


@cli.command("duration")
@click.pass_context
def duration(ctx: click.Context):
    """Vesting duration a purchase would receive right now."""
    try:
        manager = _manager(ctx)
        seconds = manager.calculate_vesting_duration()
        state = manager.pricing_state
    except DispersionError as exc:
        _cli_fail(exc)

    _emit(
        ctx,
        {
            "remaining_supply": _fmt(state.remaining_supply),
            "total_supply": _fmt(state.total_supply),
            "duration_seconds": seconds,
            "duration_days": f"{seconds / SECONDS_PER_DAY:.2f}",
        },
        "Vesting Duration",
    )


@cli.command("vesting")
@click.argument("amount")
@click.option("--duration", "duration_days", type=click.IntRange(min=1), required=True, help="Schedule length in days")
@click.option("--cliff", "cliff_days", type=click.IntRange(min=0), default=0, show_default=True, help="Cliff in days")
@click.option("--at", "at_days", type=click.IntRange(min=0), required=True, help="Days since start")
@click.pass_context
def vesting(ctx: click.Context, amount: str, duration_days: int, cliff_days: int, at_days: int):
    """Unlocked portion of a grant of AMOUNT tokens after --at days."""
    total = _parse_amount(amount, "AMOUNT")
    if cliff_days > duration_days:
        raise click.BadParameter("Cliff cannot exceed duration", param_hint="--cliff")

    grant = Grant(
        id=0,
        asset=ctx.obj["config"].distribution.asset,
        beneficiary="preview",
        start_time=0,
        cliff_end_time=cliff_days * SECONDS_PER_DAY,
        end_time=duration_days * SECONDS_PER_DAY,
        total_amount=total,
    )
    vested = grant.vested_amount(at_days * SECONDS_PER_DAY)
    _emit(
        ctx,
        {
            "total_amount": _fmt(total),
            "vested": _fmt(vested),
            "locked": _fmt(total - vested),
            "duration_days": duration_days,
            "cliff_days": cliff_days,
            "at_day": at_days,
        },
        "Vesting Schedule",
    )


@cli.command("metrics")
@click.pass_context
def metrics(ctx: click.Context):
    """Print the Prometheus exposition for the configured distribution."""
    config: ConfigManager = ctx.obj["config"]
    if not config.metrics.enabled:
        _cli_fail(DispersionError("Metrics are disabled; set metrics.enabled=true"))
    try:
        manager = _manager(ctx)
    except DispersionError as exc:
        _cli_fail(exc)

    click.echo(manager.metrics.export_prometheus(), nl=False)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
