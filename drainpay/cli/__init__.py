"""
drainpay/cli/__init__.py

drainpay CLI: root Click command group.

This file is the sole entry point for the `drainpay` terminal command.
It is registered in pyproject.toml as:

    [project.scripts]
    drainpay = "drainpay.cli:cli"

Adding a new command:
    1. Create drainpay/cli/your_command.py with a @click.command()
    2. Import it here
    3. cli.add_command(your_command)
"""

import click

from drainpay.cli.admin import (
    auto_claim_command,
    claim_command,
    stats_command,
    vouchers_command,
)
from drainpay.cli.voucher import parse_voucher_command
from drainpay.core.observability import setup_logging


@click.group()
@click.version_option(package_name="drainpay")
@click.option("--log-level", default="WARNING", show_default=True,
              envvar="LOG_LEVEL", help="Logging level.")
@click.option("--log-format", type=click.Choice(["text", "json"]), default="text",
              show_default=True, envvar="LOG_FORMAT", help="Log line format.")
def cli(log_level: str, log_format: str) -> None:
    """
    drainpay: DRAIN payment channel provider tools.

    \b
    Commands:
      stats          Ledger statistics.
      vouchers       Highest unclaimed voucher per channel.
      claim          Claim pending vouchers on-chain.
      auto-claim     Run the expiry claim loop.
      parse-voucher  Check an X-DRAIN-Voucher header offline.

    \b
    Quick start:
      export PROVIDER_PRIVATE_KEY=0x...
      drainpay stats
      drainpay claim --force
      drainpay auto-claim --interval 600 --buffer 3600
    """
    setup_logging(log_level, log_format)


cli.add_command(stats_command)
cli.add_command(vouchers_command)
cli.add_command(claim_command)
cli.add_command(auto_claim_command)
cli.add_command(parse_voucher_command)
