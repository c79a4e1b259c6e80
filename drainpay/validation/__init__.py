"""
drainpay Validation - voucher parsing, accept/reject decisions, commit.
"""

from drainpay.validation.validator import (
    VOUCHER_HEADER,
    CommitResult,
    VoucherValidator,
    parse_voucher_header,
    parse_voucher_or_raise,
)

__all__ = [
    "VOUCHER_HEADER",
    "CommitResult",
    "VoucherValidator",
    "parse_voucher_header",
    "parse_voucher_or_raise",
]
