"""
drainpay: Provider Request Flow Example

Demonstrates:
- Building a ProviderContext from environment / YAML
- Pre-call voucher validation
- Post-call commit with the measured cost
- Response headers for success and 402 rejections
- Starting the expiry auto-claim loop

Run:
    export PROVIDER_PRIVATE_KEY=0x...
    export CHAIN_ID=80002
    python examples/provider_flow.py '<X-DRAIN-Voucher header value>'
"""

import json
import sys

from drainpay import (
    ProviderContext,
    parse_voucher_header,
    payment_error_headers,
)
from drainpay.core.observability import setup_logging


ESTIMATED_COST = 2_000   # 0.002 USDC
ACTUAL_COST    = 1_750   # measured after the backend call


def handle_request(context, raw_header):
    """What an HTTP handler does around one paid backend call."""

    # 1️⃣ Parse the header
    voucher = parse_voucher_header(raw_header)
    if voucher is None:
        return 402, {"X-DRAIN-Error": "invalid_voucher_format"}
    print(f"  ✅ Voucher: channel {voucher.channel_id[:18]}... amount {voucher.amount} nonce {voucher.nonce}")

    # 2️⃣ Pre-authorize against the estimate
    result = context.validator.validate(voucher, ESTIMATED_COST)
    if not result:
        return 402, payment_error_headers(result, voucher, ESTIMATED_COST)
    print(f"  ✅ Pre-auth OK (channel charged so far: {result.channel.total_charged})")

    # 3️⃣ ... call the backend here ...

    # 4️⃣ Commit the actual cost
    outcome = context.validator.commit(voucher, ACTUAL_COST)
    if not outcome:
        return 402, payment_error_headers(outcome.rejection, voucher, ACTUAL_COST)
    return 200, outcome.receipt.headers()


def main():
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)

    setup_logging("INFO")

    print("=" * 60)
    print("drainpay: Provider Request Flow")
    print("=" * 60)
    print()

    context = ProviderContext.from_files()
    print(f"Provider: {context.gateway.provider_address}")
    print(f"Ledger:   {context.ledger.ledger_path}")
    print()

    context.start_auto_claim()
    try:
        status, headers = handle_request(context, sys.argv[1])
        print()
        print(f"HTTP {status}")
        print(json.dumps(headers, indent=2))
        print()
        print(json.dumps(context.ledger.stats().to_dict(), indent=2))
    finally:
        context.shutdown()


if __name__ == "__main__":
    main()
