"""
drainpay Settlement - on-chain claims of accepted vouchers.

Critical Invariants:
- Only the highest unclaimed voucher per channel is ever claimed
- A voucher is marked claimed only after the claim transaction succeeds
- One channel's failure never blocks another channel's claim
"""

from drainpay.settlement.scheduler import ClaimScheduler

__all__ = ["ClaimScheduler"]
