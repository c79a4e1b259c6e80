"""
drainpay admin commands: ledger inspection and claiming.

Usage:
    drainpay stats                       Ledger statistics
    drainpay stats --format json         Machine-readable
    drainpay vouchers                    Highest unclaimed voucher per channel
    drainpay claim                       Claim channels above the threshold
    drainpay claim --force               Claim every channel with a voucher
    drainpay claim --expiring 3600       Claim channels expiring within 1h
    drainpay auto-claim                  Run the expiry claim loop until Ctrl-C
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click

from drainpay.cli.common import (
    EXIT_FAILURE,
    config_option,
    format_option,
    format_units,
    load_context,
    open_ledger,
)


@click.command(name="stats")
@config_option
@format_option
def stats_command(config_file: Optional[Path], fmt: str) -> None:
    """Show voucher and channel statistics from the local ledger."""
    ledger = open_ledger(config_file)
    stats = ledger.stats()
    unclaimed_total = ledger.total_unclaimed()

    if fmt == "json":
        data = stats.to_dict()
        data["totalUnclaimed"] = str(unclaimed_total)
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(f"Ledger:           {ledger.ledger_path}")
    click.echo(f"Vouchers:         {stats.total_vouchers} ({stats.unclaimed_count} unclaimed)")
    click.echo(f"Channels:         {stats.active_channels}")
    click.echo(f"Total earned:     {format_units(stats.total_earned)} USDC")
    click.echo(f"Total claimed:    {format_units(stats.total_claimed)} USDC")
    click.echo(f"Pending claims:   {format_units(unclaimed_total)} USDC")


@click.command(name="vouchers")
@config_option
@format_option
def vouchers_command(config_file: Optional[Path], fmt: str) -> None:
    """List the claim candidate (highest unclaimed voucher) per channel."""
    ledger = open_ledger(config_file)
    highest = ledger.highest_unclaimed_per_channel()

    rows = []
    for channel_id, voucher in highest.items():
        channel = ledger.get_channel(channel_id)
        rows.append({
            "channelId":  channel_id,
            "amount":     format_units(voucher.amount) + " USDC",
            "amountRaw":  str(voucher.amount),
            "nonce":      str(voucher.nonce),
            "consumer":   voucher.consumer,
            "claimed":    voucher.claimed,
            "expiry":     channel.expiry if channel else None,
            "receivedAt": datetime.fromtimestamp(
                voucher.received_at / 1000, tz=timezone.utc,
            ).isoformat(),
        })

    if fmt == "json":
        click.echo(json.dumps({
            "unclaimedCount": len(ledger.unclaimed_vouchers()),
            "channels":       rows,
        }, indent=2))
        return

    if not rows:
        click.echo("No unclaimed vouchers.")
        return
    for row in rows:
        click.echo(f"{row['channelId']}")
        click.echo(f"    amount    {row['amount']}  (nonce {row['nonce']})")
        click.echo(f"    consumer  {row['consumer']}")
        click.echo(f"    expiry    {row['expiry']}")


@click.command(name="claim")
@config_option
@click.option("--force", is_flag=True, default=False,
              help="Ignore the claim threshold.")
@click.option("--expiring", "buffer_seconds", type=int, default=None, metavar="SECONDS",
              help="Only claim channels expiring within SECONDS (threshold ignored).")
@click.option("--strict", is_flag=True, default=False,
              help="Exit 1 when nothing was claimed.")
def claim_command(
    config_file:    Optional[Path],
    force:          bool,
    buffer_seconds: Optional[int],
    strict:         bool,
) -> None:
    """Claim pending vouchers on-chain."""
    context = load_context(config_file)
    if buffer_seconds is not None:
        tx_hashes = context.scheduler.claim_expiring(buffer_seconds)
    else:
        tx_hashes = context.scheduler.claim_due(force_all=force)

    click.echo(json.dumps({
        "success":      True,
        "claimed":      len(tx_hashes),
        "transactions": tx_hashes,
        "forced":       force,
    }, indent=2))
    if strict and not tx_hashes:
        raise SystemExit(EXIT_FAILURE)


@click.command(name="auto-claim")
@config_option
@click.option("--interval", type=int, default=None, metavar="SECONDS",
              help="Seconds between checks (default from config).")
@click.option("--buffer", "buffer_seconds", type=int, default=None, metavar="SECONDS",
              help="Claim channels expiring within this window (default from config).")
def auto_claim_command(
    config_file:    Optional[Path],
    interval:       Optional[int],
    buffer_seconds: Optional[int],
) -> None:
    """Run the expiry safety-net claim loop in the foreground."""
    context = load_context(config_file)
    interval = interval or context.config.auto_claim_interval
    buffer_seconds = buffer_seconds or context.config.auto_claim_buffer

    context.scheduler.start(interval, buffer_seconds)
    click.echo(
        f"auto-claim running for {context.gateway.provider_address} "
        f"(every {interval}s, buffer {buffer_seconds}s). Ctrl-C to stop."
    )
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        context.shutdown()
