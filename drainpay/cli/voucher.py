"""
drainpay parse-voucher: offline check of an X-DRAIN-Voucher header value.

Usage:
    drainpay parse-voucher '{"channelId":"0x…","amount":"100000","nonce":"1","signature":"0x…"}'
    echo "$HEADER" | drainpay parse-voucher -

Checks format only. No chain access, no signature recovery.
"""

import json

import click

from drainpay.cli.common import EXIT_FAILURE
from drainpay.core.models import RejectReason
from drainpay.validation.validator import parse_voucher_header


@click.command(name="parse-voucher")
@click.argument("header")
def parse_voucher_command(header: str) -> None:
    """Parse HEADER ('-' reads stdin) and print the normalized voucher."""
    if header == "-":
        header = click.get_text_stream("stdin").read().strip()

    voucher = parse_voucher_header(header)
    if voucher is None:
        click.echo(json.dumps({"valid": False, "error": RejectReason.INVALID_VOUCHER_FORMAT}))
        raise SystemExit(EXIT_FAILURE)

    click.echo(json.dumps({"valid": True, "voucher": voucher.to_dict()}, indent=2))
