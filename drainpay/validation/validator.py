"""
Voucher validation and commit.

Two-phase use per request:

    result = validator.validate(voucher, estimated_min_cost)   # pre-auth
    if not result: → 402
    ... call the backend, measure actual_cost ...
    outcome = validator.commit(voucher, actual_cost)          # post-auth + store
    if not outcome: → 402, nothing was charged

validate() never commits and never raises for business outcomes.
commit() re-validates and stores under the channel lock, so two requests
racing on the same channel cannot both spend the same voucher headroom.
"""

import json
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from drainpay.chain.gateway import ChainGateway
from drainpay.core.exceptions import ChainError, LedgerError, VoucherFormatError
from drainpay.core.locks import ChannelLocks
from drainpay.core.models import (
    CHANNEL_ID_RE,
    DECIMAL_RE,
    Channel,
    PaymentReceipt,
    RejectReason,
    StoredVoucher,
    ValidationResult,
    VoucherHeader,
)
from drainpay.core.time import now_ms
from drainpay.ledger.ledger import ChannelLedger


logger = logging.getLogger(__name__)

VOUCHER_HEADER = "X-DRAIN-Voucher"

_VOUCHER_FIELDS = frozenset({"channelId", "amount", "nonce", "signature"})
_SIGNATURE_RE = re.compile(r"^0x(?:[0-9a-fA-F]{2})+$")


# ─────────────────────────────────────────────────────────────
# Header parsing
# ─────────────────────────────────────────────────────────────

def parse_voucher_header(raw: Optional[str]) -> Optional[VoucherHeader]:
    """
    Parse an X-DRAIN-Voucher header value.

    Requires a JSON object with exactly channelId, amount, nonce and
    signature. amount and nonce are decimal strings of unbounded size.
    Returns None for anything else; the caller answers
    invalid_voucher_format.
    """
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(parsed, dict) or set(parsed) != _VOUCHER_FIELDS:
        return None

    channel_id = parsed["channelId"]
    amount     = parsed["amount"]
    nonce      = parsed["nonce"]
    signature  = parsed["signature"]

    if not all(isinstance(v, str) for v in (channel_id, amount, nonce, signature)):
        return None
    if not CHANNEL_ID_RE.match(channel_id):
        return None
    if not DECIMAL_RE.match(amount) or not DECIMAL_RE.match(nonce):
        return None
    if not _SIGNATURE_RE.match(signature):
        return None

    return VoucherHeader(
        channel_id= channel_id.lower(),
        amount=     int(amount),
        nonce=      int(nonce),
        signature=  signature,
    )


def parse_voucher_or_raise(raw: Optional[str]) -> VoucherHeader:
    """parse_voucher_header() for callers that prefer an exception."""
    voucher = parse_voucher_header(raw)
    if voucher is None:
        raise VoucherFormatError(
            f"Invalid {VOUCHER_HEADER} format",
            {"reason": RejectReason.INVALID_VOUCHER_FORMAT},
        )
    return voucher


# ─────────────────────────────────────────────────────────────
# Commit outcome
# ─────────────────────────────────────────────────────────────

@dataclass
class CommitResult:
    """
    Outcome of VoucherValidator.commit().

    Exactly one of `receipt` (charged) or `rejection` (nothing charged) is set.
    """
    receipt:   Optional[PaymentReceipt] = None
    rejection: Optional[ValidationResult] = None

    def __bool__(self) -> bool:
        return self.receipt is not None

    @property
    def reason(self) -> Optional[str]:
        return self.rejection.reason if self.rejection else None


# ─────────────────────────────────────────────────────────────
# Validator
# ─────────────────────────────────────────────────────────────

class VoucherValidator:
    """
    Accept/reject decisions for vouchers against one provider identity.

    Checks, in order:
        channel exists on chain         → channel_not_found
        channel is ours                 → wrong_provider
        amount >= charged + required    → insufficient_funds
        amount <= deposit               → exceeds_deposit
        nonce > last accepted nonce     → invalid_nonce
        EIP-712 signature by consumer   → invalid_signature
    Any lower-level fault               → validation_error
    """

    def __init__(
        self,
        gateway: ChainGateway,
        ledger:  ChannelLedger,
        locks:   Optional[ChannelLocks] = None,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.locks = locks or ChannelLocks()

    @contextmanager
    def channel_lock(self, channel_id: str) -> Iterator[None]:
        with self.locks.hold(channel_id):
            yield

    def validate(self, voucher: VoucherHeader, required_amount: int) -> ValidationResult:
        """Decide whether `voucher` covers `required_amount` more spend."""
        try:
            return self._validate(voucher, required_amount)
        except ChainError as exc:
            logger.warning(
                "voucher validation failed on chain read: %s", exc,
                extra={"channel_id": voucher.channel_id, "reason": RejectReason.VALIDATION_ERROR},
            )
        except Exception:
            logger.exception(
                "unexpected voucher validation error",
                extra={"channel_id": voucher.channel_id, "reason": RejectReason.VALIDATION_ERROR},
            )
        return ValidationResult.reject(RejectReason.VALIDATION_ERROR)

    def _validate(self, voucher: VoucherHeader, required_amount: int) -> ValidationResult:
        on_chain = self.gateway.get_channel(voucher.channel_id)

        if not on_chain.exists:
            return ValidationResult.reject(RejectReason.CHANNEL_NOT_FOUND)

        if on_chain.provider.lower() != self.gateway.provider_address.lower():
            return ValidationResult.reject(RejectReason.WRONG_PROVIDER)

        channel = self.ledger.get_channel(voucher.channel_id)
        if channel is None:
            channel = Channel.open(voucher.channel_id, on_chain, now_ms())
        else:
            if not channel.expiry:
                # Legacy record created before expiry was mirrored.
                channel.expiry = on_chain.expiry
            if not channel.provider:
                channel.provider = on_chain.provider

        expected_total = channel.total_charged + required_amount
        if voucher.amount < expected_total:
            return ValidationResult.reject(RejectReason.INSUFFICIENT_FUNDS, channel)

        if voucher.amount > on_chain.deposit:
            return ValidationResult.reject(RejectReason.EXCEEDS_DEPOSIT, channel)

        if channel.last_voucher is not None and voucher.nonce <= channel.last_voucher.nonce:
            return ValidationResult.reject(RejectReason.INVALID_NONCE, channel)

        if not self.gateway.verify_voucher_signature(voucher, channel.consumer):
            return ValidationResult.reject(RejectReason.INVALID_SIGNATURE)

        return ValidationResult.accept(channel, new_total=voucher.amount)

    def store_voucher(self, voucher: VoucherHeader, channel: Channel, cost: int) -> Channel:
        """
        Commit `cost` against `channel` and remember `voucher` as the latest.

        Call only after a successful post-call validate(). Voucher and
        channel are persisted in one ledger snapshot. Returns the updated
        channel; the argument is updated in place as well.

        Raises LedgerError if the ledger record moved on since `channel` was
        read (another request stored first), or if the voucher's nonce is
        not above the last accepted one. Nothing is written in that case.
        """
        if cost < 0:
            raise LedgerError("cost must be non-negative", {"cost": cost})

        with self.channel_lock(voucher.channel_id):
            self._check_snapshot(voucher, channel)

            new_total = channel.total_charged + cost
            if new_total > channel.deposit:
                raise LedgerError(
                    "charge would exceed channel deposit",
                    {
                        "channel_id": channel.channel_id,
                        "new_total":  new_total,
                        "deposit":    channel.deposit,
                    },
                )

            stamp = now_ms()
            stored = StoredVoucher.from_header(voucher, channel.consumer, stamp)

            channel.total_charged = new_total
            channel.last_voucher = stored
            channel.last_activity_at = stamp

            self.ledger.record_charge(stored, channel, cost)

        logger.debug(
            "charged %d on %s (total %d)", cost, channel.channel_id, channel.total_charged,
            extra={"channel_id": channel.channel_id, "amount": cost},
        )
        return channel

    def _check_snapshot(self, voucher: VoucherHeader, channel: Channel) -> None:
        """Caller holds the channel lock."""
        seen_nonce = channel.last_voucher.nonce if channel.last_voucher else None

        stored = self.ledger.get_channel(voucher.channel_id)
        if stored is not None:
            stored_nonce = stored.last_voucher.nonce if stored.last_voucher else None
            if stored.total_charged != channel.total_charged or stored_nonce != seen_nonce:
                raise LedgerError(
                    "channel changed since validation",
                    {
                        "channel_id":     voucher.channel_id,
                        "stored_total":   stored.total_charged,
                        "snapshot_total": channel.total_charged,
                        "stored_nonce":   stored_nonce,
                    },
                )

        if seen_nonce is not None and voucher.nonce <= seen_nonce:
            raise LedgerError(
                "voucher nonce not above last accepted nonce",
                {"channel_id": voucher.channel_id, "nonce": voucher.nonce, "last": seen_nonce},
            )

    def commit(self, voucher: VoucherHeader, actual_cost: int) -> CommitResult:
        """
        Post-call validation with the measured cost, then store.

        Holds the channel lock across both steps. A funds failure here is
        reported as insufficient_funds_post; nothing is charged.
        """
        with self.channel_lock(voucher.channel_id):
            result = self.validate(voucher, actual_cost)
            if not result:
                if result.reason == RejectReason.INSUFFICIENT_FUNDS:
                    result = ValidationResult.reject(
                        RejectReason.INSUFFICIENT_FUNDS_POST, result.channel,
                    )
                return CommitResult(rejection=result)

            channel = self.store_voucher(voucher, result.channel, actual_cost)

        return CommitResult(receipt=PaymentReceipt(
            channel_id= channel.channel_id,
            cost=       actual_cost,
            total=      channel.total_charged,
            remaining=  channel.remaining,
        ))
