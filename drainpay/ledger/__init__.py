"""
drainpay Ledger - channel state and received vouchers.

The ledger is the source of truth for what each channel has paid.
"""

from drainpay.ledger.ledger import ChannelLedger, RetentionPolicy

__all__ = ["ChannelLedger", "RetentionPolicy"]
