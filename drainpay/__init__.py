"""
drainpay/__init__.py

drainpay: DRAIN payment channel voucher validation and claim engine

Sits between an inference backend and the DrainChannel escrow contract:
validates signed cumulative vouchers, tracks what each channel has paid,
and claims the best voucher per channel on-chain before it expires.
"""

__version__ = "0.3.0"

from drainpay.chain.gateway import ChainGateway, Web3ChainGateway
from drainpay.chain.typed_data import VoucherDomain, sign_voucher
from drainpay.core.config import ProviderConfig
from drainpay.core.exceptions import (
    ChainError,
    ClaimError,
    ConfigError,
    DrainError,
    LedgerError,
    VoucherFormatError,
)
from drainpay.core.models import (
    Channel,
    OnChainChannel,
    PaymentReceipt,
    RejectReason,
    StoredVoucher,
    ValidationResult,
    VoucherHeader,
    payment_error_headers,
)
from drainpay.ledger.ledger import ChannelLedger, RetentionPolicy
from drainpay.runtime.context import ProviderContext
from drainpay.settlement.scheduler import ClaimScheduler
from drainpay.validation.validator import (
    CommitResult,
    VoucherValidator,
    parse_voucher_header,
)

__all__ = [
    # Components
    "ChainGateway",
    "Web3ChainGateway",
    "ChannelLedger",
    "VoucherValidator",
    "ClaimScheduler",
    "ProviderContext",
    "ProviderConfig",
    # Types
    "Channel",
    "OnChainChannel",
    "StoredVoucher",
    "VoucherHeader",
    "VoucherDomain",
    "ValidationResult",
    "CommitResult",
    "PaymentReceipt",
    "RejectReason",
    "RetentionPolicy",
    # Errors
    "DrainError",
    "ConfigError",
    "VoucherFormatError",
    "ChainError",
    "ClaimError",
    "LedgerError",
    # Helpers
    "parse_voucher_header",
    "payment_error_headers",
    "sign_voucher",
]
