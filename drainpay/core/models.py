"""
drainpay/core/models.py

DRAIN Data Model

═══════════════════════════════════════════════════════════════════
CONTRACTS
═══════════════════════════════════════════════════════════════════

CONTRACT 1: Amounts
    amount, nonce, deposit, total_charged are Python ints (unbounded).
    On disk and on the wire they are DECIMAL STRINGS. Never floats.

CONTRACT 2: Cumulative vouchers
    voucher.amount is the cumulative ceiling for the channel, not an
    increment. A voucher with higher amount and higher nonce dominates
    every earlier one.

CONTRACT 3: Channel
    total_charged <= deposit, always.
    total_charged only increases.
    expiry is immutable once read from chain (None only for legacy records).

CONTRACT 4: Claim
    StoredVoucher.claimed flips False → True exactly once.

CONTRACT 5: Units
    expiry                                        unix seconds (on-chain)
    created_at, last_activity_at, received_at,
    claimed_at                                    unix milliseconds
═══════════════════════════════════════════════════════════════════
"""

import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

CHANNEL_ID_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
DECIMAL_RE    = re.compile(r"^[0-9]+$")


def normalize_channel_id(channel_id: str) -> str:
    """Lower-case a 0x-prefixed 32-byte hex id. Raises ValueError if malformed."""
    if not isinstance(channel_id, str) or not CHANNEL_ID_RE.match(channel_id):
        raise ValueError(f"channel id must be 0x + 64 hex chars, got {channel_id!r}")
    return channel_id.lower()


def parse_uint(value: Any, field_name: str) -> int:
    """
    Parse a non-negative integer persisted as a decimal string.

    Strict: no sign, no whitespace, no exponent, no float. A ledger
    loader relying on this fails closed rather than rounding.
    """
    if isinstance(value, bool):
        raise ValueError(f"{field_name}: expected decimal string, got bool")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"{field_name}: negative value {value}")
        return value
    if not isinstance(value, str) or not DECIMAL_RE.match(value):
        raise ValueError(f"{field_name}: expected decimal string, got {value!r}")
    return int(value)


def optional_uint(value: Any, field_name: str) -> Optional[int]:
    """parse_uint() that passes None through."""
    return None if value is None else parse_uint(value, field_name)


# ─────────────────────────────────────────────────────────────
# Reject reasons
# ─────────────────────────────────────────────────────────────

class RejectReason:
    """
    Validation outcome codes.

    Returned by VoucherValidator as values. Also the X-DRAIN-Error header.
    """
    INVALID_VOUCHER_FORMAT  = "invalid_voucher_format"
    CHANNEL_NOT_FOUND       = "channel_not_found"
    WRONG_PROVIDER          = "wrong_provider"
    INSUFFICIENT_FUNDS      = "insufficient_funds"
    EXCEEDS_DEPOSIT         = "exceeds_deposit"
    INVALID_NONCE           = "invalid_nonce"
    INVALID_SIGNATURE       = "invalid_signature"
    VALIDATION_ERROR        = "validation_error"
    INSUFFICIENT_FUNDS_POST = "insufficient_funds_post"


# ─────────────────────────────────────────────────────────────
# Voucher
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class VoucherHeader:
    """A parsed X-DRAIN-Voucher header. Produced by parse_voucher_header()."""

    channel_id: str
    amount:     int
    nonce:      int
    signature:  str

    def to_dict(self) -> Dict[str, str]:
        return {
            "channelId": self.channel_id,
            "amount":    str(self.amount),
            "nonce":     str(self.nonce),
            "signature": self.signature,
        }


@dataclass
class StoredVoucher:
    """A voucher accepted and committed to the ledger."""

    channel_id:    str
    amount:        int
    nonce:         int
    signature:     str
    consumer:      str
    received_at:   int
    claimed:       bool = False
    claimed_at:    Optional[int] = None
    claim_tx_hash: Optional[str] = None

    @classmethod
    def from_header(
        cls,
        voucher:     VoucherHeader,
        consumer:    str,
        received_at: int,
    ) -> "StoredVoucher":
        return cls(
            channel_id=  voucher.channel_id,
            amount=      voucher.amount,
            nonce=       voucher.nonce,
            signature=   voucher.signature,
            consumer=    consumer,
            received_at= received_at,
        )

    def dominates(self, other: "StoredVoucher") -> bool:
        """True if this voucher is the better claim candidate of the two."""
        return (self.amount, self.nonce) > (other.amount, other.nonce)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "channelId":  self.channel_id,
            "amount":     str(self.amount),
            "nonce":      str(self.nonce),
            "signature":  self.signature,
            "consumer":   self.consumer,
            "receivedAt": self.received_at,
            "claimed":    self.claimed,
        }
        if self.claimed_at is not None:
            data["claimedAt"] = self.claimed_at
        if self.claim_tx_hash is not None:
            data["claimTxHash"] = self.claim_tx_hash
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredVoucher":
        """Strict deserialization. Raises KeyError/ValueError on any bad field."""
        claimed = data["claimed"]
        if not isinstance(claimed, bool):
            raise ValueError(f"claimed: expected bool, got {claimed!r}")
        return cls(
            channel_id=    normalize_channel_id(data["channelId"]),
            amount=        parse_uint(data["amount"], "amount"),
            nonce=         parse_uint(data["nonce"], "nonce"),
            signature=     data["signature"],
            consumer=      data["consumer"],
            received_at=   parse_uint(data["receivedAt"], "receivedAt"),
            claimed=       claimed,
            claimed_at=    optional_uint(data.get("claimedAt"), "claimedAt"),
            claim_tx_hash= data.get("claimTxHash"),
        )


# ─────────────────────────────────────────────────────────────
# Channel
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OnChainChannel:
    """Typed result of the settlement contract's getChannel(channelId)."""

    consumer: str
    provider: str
    deposit:  int
    claimed:  int
    expiry:   int

    @property
    def exists(self) -> bool:
        return self.consumer.lower() != ZERO_ADDRESS


@dataclass
class Channel:
    """Local mirror of an on-chain escrow channel."""

    channel_id:       str
    consumer:         str
    provider:         str
    deposit:          int
    total_charged:    int
    expiry:           Optional[int]
    created_at:       int
    last_activity_at: int
    last_voucher:     Optional[StoredVoucher] = None

    @classmethod
    def open(
        cls,
        channel_id: str,
        on_chain:   OnChainChannel,
        now_ms:     int,
    ) -> "Channel":
        """First sight of a channel: mirror the chain read, nothing charged."""
        return cls(
            channel_id=       channel_id,
            consumer=         on_chain.consumer,
            provider=         on_chain.provider,
            deposit=          on_chain.deposit,
            total_charged=    0,
            expiry=           on_chain.expiry,
            created_at=       now_ms,
            last_activity_at= now_ms,
        )

    @property
    def remaining(self) -> int:
        return self.deposit - self.total_charged

    def copy(self) -> "Channel":
        last = replace(self.last_voucher) if self.last_voucher else None
        return replace(self, last_voucher=last)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "channelId":      self.channel_id,
            "consumer":       self.consumer,
            "provider":       self.provider,
            "deposit":        str(self.deposit),
            "totalCharged":   str(self.total_charged),
            "expiry":         self.expiry,
            "createdAt":      self.created_at,
            "lastActivityAt": self.last_activity_at,
        }
        if self.last_voucher is not None:
            data["lastVoucher"] = self.last_voucher.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Channel":
        """Strict deserialization. Raises KeyError/ValueError on any bad field."""
        last = data.get("lastVoucher")
        # 0 or missing expiry marks a record written before expiry was mirrored.
        expiry = data.get("expiry")
        return cls(
            channel_id=       normalize_channel_id(data["channelId"]),
            consumer=         data["consumer"],
            # Records written before provider was mirrored have no provider.
            provider=         data.get("provider", ""),
            deposit=          parse_uint(data["deposit"], "deposit"),
            total_charged=    parse_uint(data["totalCharged"], "totalCharged"),
            expiry=           optional_uint(expiry, "expiry") or None,
            created_at=       parse_uint(data["createdAt"], "createdAt"),
            last_activity_at= parse_uint(data["lastActivityAt"], "lastActivityAt"),
            last_voucher=     StoredVoucher.from_dict(last) if last else None,
        )


# ─────────────────────────────────────────────────────────────
# Validation outcome
# ─────────────────────────────────────────────────────────────

@dataclass
class ValidationResult:
    """
    Result of VoucherValidator.validate().

    Returned, not raised, because rejections are routine business
    outcomes. bool(result) is True iff valid.
    """
    valid:     bool
    reason:    Optional[str] = None
    channel:   Optional[Channel] = None
    new_total: Optional[int] = None

    def __bool__(self) -> bool:
        return self.valid

    @classmethod
    def accept(cls, channel: Channel, new_total: int) -> "ValidationResult":
        return cls(valid=True, channel=channel, new_total=new_total)

    @classmethod
    def reject(
        cls,
        reason:  str,
        channel: Optional[Channel] = None,
    ) -> "ValidationResult":
        return cls(valid=False, reason=reason, channel=channel)

    def __repr__(self) -> str:
        if self.valid:
            return f"ValidationResult(VALID, new_total={self.new_total})"
        return f"ValidationResult(REJECTED, reason={self.reason!r})"


@dataclass(frozen=True)
class PaymentReceipt:
    """Metadata surfaced to the client after a committed charge."""

    channel_id: str
    cost:       int
    total:      int
    remaining:  int

    def headers(self) -> Dict[str, str]:
        return {
            "X-DRAIN-Cost":      str(self.cost),
            "X-DRAIN-Total":     str(self.total),
            "X-DRAIN-Remaining": str(self.remaining),
            "X-DRAIN-Channel":   self.channel_id,
        }


def payment_error_headers(
    result:   ValidationResult,
    voucher:  Optional[VoucherHeader] = None,
    required: Optional[int] = None,
) -> Dict[str, str]:
    """
    Headers for a 402 response built from a rejected ValidationResult.

    For insufficient funds, also reports what was required and how much
    headroom the voucher actually provides over the running total.
    """
    headers = {"X-DRAIN-Error": result.reason or RejectReason.VALIDATION_ERROR}
    if required is None:
        return headers
    if result.reason == RejectReason.INSUFFICIENT_FUNDS and result.channel and voucher:
        headers["X-DRAIN-Required"] = str(required)
        headers["X-DRAIN-Provided"] = str(voucher.amount - result.channel.total_charged)
    elif result.reason == RejectReason.INSUFFICIENT_FUNDS_POST:
        headers["X-DRAIN-Required"] = str(required)
    return headers


@dataclass(frozen=True)
class LedgerStats:
    total_vouchers: int
    unclaimed_count: int
    active_channels: int
    total_earned: int
    total_claimed: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalVouchers":  self.total_vouchers,
            "unclaimedCount": self.unclaimed_count,
            "activeChannels": self.active_channels,
            "totalEarned":    str(self.total_earned),
            "totalClaimed":   str(self.total_claimed),
        }
