"""
Shared plumbing for drainpay CLI commands.

Exit codes (POSIX-standard, shell-scriptable):
    0  success
    1  business failure (e.g. invalid voucher, nothing claimed with --strict)
    2  error (bad config, unreadable ledger, chain unreachable)
"""

import sys
from pathlib import Path
from typing import Optional

import click

from drainpay.core.config import USDC_DECIMALS, ProviderConfig
from drainpay.core.exceptions import DrainError
from drainpay.ledger.ledger import ChannelLedger, RetentionPolicy
from drainpay.runtime.context import ProviderContext


EXIT_OK      = 0
EXIT_FAILURE = 1
EXIT_ERROR   = 2

config_option = click.option(
    "--config", "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    envvar="DRAINPAY_CONFIG",
    metavar="FILE",
    help="YAML config file. Environment variables override its values.",
)

format_option = click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format.",
)


def format_units(amount: int, decimals: int = USDC_DECIMALS) -> str:
    """Integer base units → decimal string, e.g. 1500000 → '1.5'."""
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10 ** decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_str}" if frac_str else f"{sign}{whole}"


def fail(message: str, code: int = EXIT_ERROR) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def load_config(config_file: Optional[Path]) -> ProviderConfig:
    try:
        if config_file is not None:
            return ProviderConfig.from_yaml(config_file)
        return ProviderConfig.from_env()
    except DrainError as exc:
        fail(str(exc))


def open_ledger(config_file: Optional[Path]) -> ChannelLedger:
    """Ledger only, no chain connection. Enough for read-only commands."""
    config = load_config(config_file)
    try:
        return ChannelLedger(config.storage_path, RetentionPolicy(config.retention))
    except DrainError as exc:
        fail(str(exc))


def load_context(config_file: Optional[Path]) -> ProviderContext:
    config = load_config(config_file)
    try:
        return ProviderContext.from_config(config)
    except (DrainError, ValueError) as exc:
        fail(str(exc))
