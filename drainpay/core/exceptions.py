"""
drainpay Exception Hierarchy

All exceptions inherit from DrainError for easy catching.

Voucher rejections are NOT exceptions. VoucherValidator returns them as
ValidationResult values. These classes cover faults only.
"""


class DrainError(Exception):
    """Base exception for all drainpay errors"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigError(DrainError):
    """Raised when provider configuration is missing or invalid"""
    pass


class VoucherFormatError(DrainError):
    """Raised when a voucher header cannot be parsed"""
    pass


class ChainError(DrainError):
    """Raised when a settlement contract read or write fails"""
    pass


class ClaimError(ChainError):
    """Raised when a claim transaction is rejected or reverts"""
    pass


class LedgerError(DrainError):
    """Raised when ledger operations fail"""
    pass
