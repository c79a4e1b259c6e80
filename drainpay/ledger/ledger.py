"""
ChannelLedger: the single source of truth for what each channel has paid.

Persistence contract:
    Every mutation rewrites the WHOLE snapshot:
        1. serialize body, compute digest over its RFC 8785 canonical form
        2. write to <file>.tmp, flush, fsync
        3. os.replace(<file>.tmp, <file>)
    A crash leaves the pre- or post-mutation file, never a partial one.

Load contract:
    Missing file              → empty ledger
    Any unparseable record,
    unknown format or digest
    mismatch                  → file moved to <file>.corrupt-<ms>, empty ledger

Thread-safe via internal RLock (single-process only). Per-channel
check-then-update sequences are serialized by ChannelLocks, one level up.
"""

import json
import logging
import os
import threading
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from drainpay.core.canonical import canonical_hash
from drainpay.core.exceptions import LedgerError
from drainpay.core.models import (
    Channel,
    LedgerStats,
    StoredVoucher,
    normalize_channel_id,
    parse_uint,
)
from drainpay.core.time import now_ms


logger = logging.getLogger(__name__)

LEDGER_FORMAT = "drainpay-ledger/1"


class RetentionPolicy(str, Enum):
    """What happens to unclaimed vouchers once a newer one dominates them."""

    RETAIN           = "retain"
    PRUNE_SUPERSEDED = "prune"


class ChannelLedger:
    """
    Durable store of Channel and StoredVoucher records.

    get_channel() returns copies. Callers mutate the copy and hand it back
    through upsert_channel() or record_charge().
    """

    def __init__(
        self,
        ledger_path: Path,
        retention:   RetentionPolicy = RetentionPolicy.RETAIN,
    ) -> None:
        self.ledger_path = Path(ledger_path)
        self.retention = RetentionPolicy(retention)

        self._lock = threading.RLock()
        self._vouchers: List[StoredVoucher] = []
        self._channels: Dict[str, Channel] = {}
        self._total_earned: int = 0
        self._total_claimed: int = 0

        self._load()

    # ── Channels ──────────────────────────────────────────────

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        with self._lock:
            channel = self._channels.get(channel_id.lower())
            return channel.copy() if channel else None

    def upsert_channel(self, channel_id: str, channel: Channel) -> None:
        """Replace or create. Callers merge new fields before calling."""
        key = normalize_channel_id(channel_id)
        with self._lock:
            self._check_channel(channel)
            self._channels[key] = _normalized(channel, key)
            self._save()

    def channels(self) -> List[Channel]:
        with self._lock:
            return [c.copy() for c in self._channels.values()]

    # ── Vouchers ──────────────────────────────────────────────

    def record_voucher(self, voucher: StoredVoucher) -> None:
        """Append a voucher record. Does not touch the Channel."""
        with self._lock:
            self._append_voucher(voucher)
            self._save()

    def record_charge(self, voucher: StoredVoucher, channel: Channel, cost: int) -> None:
        """
        Append `voucher`, replace `channel` and add `cost` to total earned,
        in ONE persisted snapshot.
        """
        key = normalize_channel_id(channel.channel_id)
        with self._lock:
            self._check_channel(channel)
            self._append_voucher(voucher)
            self._channels[key] = _normalized(channel, key)
            self._total_earned += cost
            self._save()

    def unclaimed_vouchers(self) -> List[StoredVoucher]:
        with self._lock:
            return [_copy(v) for v in self._vouchers if not v.claimed]

    def highest_unclaimed_per_channel(self) -> Dict[str, StoredVoucher]:
        """
        For each channel, the unclaimed voucher with the highest amount.
        Ties go to the higher nonce. Insertion order of first sighting.
        """
        with self._lock:
            highest: Dict[str, StoredVoucher] = {}
            for voucher in self._vouchers:
                if voucher.claimed:
                    continue
                existing = highest.get(voucher.channel_id)
                if existing is None or voucher.dominates(existing):
                    highest[voucher.channel_id] = voucher
            return {cid: _copy(v) for cid, v in highest.items()}

    def total_unclaimed(self) -> int:
        return sum(v.amount for v in self.highest_unclaimed_per_channel().values())

    def mark_claimed(self, channel_id: str, tx_hash: str) -> int:
        """
        Mark every unclaimed voucher of `channel_id` as claimed by `tx_hash`.

        Idempotent: once a channel has nothing unclaimed, this is a no-op
        and does not rewrite the file. Returns the number of vouchers flipped.
        """
        key = channel_id.lower()
        with self._lock:
            stamp = now_ms()
            flipped = [v for v in self._vouchers if v.channel_id == key and not v.claimed]
            if not flipped:
                return 0

            for voucher in flipped:
                voucher.claimed = True
                voucher.claimed_at = stamp
                voucher.claim_tx_hash = tx_hash

            # The claim settles the cumulative amount, not the sum of vouchers.
            best = max(flipped, key=lambda v: (v.amount, v.nonce))
            previously_settled = self._settled_amount(key, exclude=flipped)
            self._total_claimed += max(0, best.amount - previously_settled)

            # last_voucher keeps its nonce; only its claim fields change.
            channel = self._channels.get(key)
            if channel is not None and channel.last_voucher is not None:
                last_nonce = channel.last_voucher.nonce
                for voucher in flipped:
                    if voucher.nonce == last_nonce:
                        channel.last_voucher = _copy(voucher)
                        break

            self._save()
            logger.info(
                "marked %d voucher(s) claimed on %s", len(flipped), key,
                extra={"channel_id": key, "tx_hash": tx_hash},
            )
            return len(flipped)

    # ── Stats ─────────────────────────────────────────────────

    def stats(self) -> LedgerStats:
        with self._lock:
            return LedgerStats(
                total_vouchers=  len(self._vouchers),
                unclaimed_count= sum(1 for v in self._vouchers if not v.claimed),
                active_channels= len(self._channels),
                total_earned=    self._total_earned,
                total_claimed=   self._total_claimed,
            )

    # ── Internal ──────────────────────────────────────────────

    def _check_channel(self, channel: Channel) -> None:
        if channel.total_charged > channel.deposit:
            raise LedgerError(
                "total_charged exceeds deposit",
                {
                    "channel_id":    channel.channel_id,
                    "total_charged": channel.total_charged,
                    "deposit":       channel.deposit,
                },
            )
        existing = self._channels.get(channel.channel_id.lower())
        if existing is not None and channel.total_charged < existing.total_charged:
            raise LedgerError(
                "total_charged may not decrease",
                {
                    "channel_id": channel.channel_id,
                    "stored":     existing.total_charged,
                    "proposed":   channel.total_charged,
                },
            )

    def _append_voucher(self, voucher: StoredVoucher) -> None:
        voucher = replace(voucher, channel_id=normalize_channel_id(voucher.channel_id))
        if self.retention is RetentionPolicy.PRUNE_SUPERSEDED:
            self._vouchers = [
                v for v in self._vouchers
                if v.claimed
                or v.channel_id != voucher.channel_id
                or not voucher.dominates(v)
            ]
        self._vouchers.append(voucher)

    def _settled_amount(self, channel_id: str, exclude: List[StoredVoucher]) -> int:
        excluded = {id(v) for v in exclude}
        amounts = [
            v.amount for v in self._vouchers
            if v.channel_id == channel_id and v.claimed and id(v) not in excluded
        ]
        return max(amounts, default=0)

    def _body(self) -> Dict[str, Any]:
        return {
            "format":       LEDGER_FORMAT,
            "vouchers":     [v.to_dict() for v in self._vouchers],
            "channels":     {cid: c.to_dict() for cid, c in self._channels.items()},
            "totalEarned":  str(self._total_earned),
            "totalClaimed": str(self._total_claimed),
        }

    def _save(self) -> None:
        """Write the full snapshot atomically."""
        body = self._body()
        document = dict(body, digest=canonical_hash(body))

        self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.ledger_path.with_name(self.ledger_path.name + ".tmp")

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.ledger_path)
        except OSError as exc:
            if temp_path.exists():
                temp_path.unlink()
            raise LedgerError(f"Failed to write ledger: {exc}") from exc

    def _load(self) -> None:
        if not self.ledger_path.exists():
            return

        try:
            with open(self.ledger_path, "r", encoding="utf-8") as f:
                document = json.load(f)
            self._restore(document)
        except (OSError, ValueError, KeyError, TypeError, AttributeError, LedgerError) as exc:
            self._vouchers = []
            self._channels = {}
            self._total_earned = 0
            self._total_claimed = 0
            quarantine = self.ledger_path.with_name(
                f"{self.ledger_path.name}.corrupt-{now_ms()}"
            )
            logger.error(
                "could not load ledger %s (%s); moved to %s and starting empty",
                self.ledger_path, exc, quarantine,
            )
            try:
                os.replace(self.ledger_path, quarantine)
            except OSError as move_exc:
                raise LedgerError(
                    f"Ledger {self.ledger_path} is unreadable and could not be "
                    f"moved aside: {move_exc}"
                ) from move_exc

    def _restore(self, document: Dict[str, Any]) -> None:
        if not isinstance(document, dict):
            raise LedgerError("ledger document is not an object")

        fmt = document.get("format")
        digest = document.get("digest")
        body = {k: v for k, v in document.items() if k != "digest"}

        if fmt is None:
            # Snapshot written before format/digest were introduced.
            body = {
                "vouchers":     document.get("vouchers", []),
                "channels":     document.get("channels", {}),
                "totalEarned":  document.get("totalEarned", "0"),
                "totalClaimed": document.get("totalClaimed", "0"),
            }
        elif fmt != LEDGER_FORMAT:
            raise LedgerError(f"unknown ledger format {fmt!r}")
        elif digest != canonical_hash(body):
            raise LedgerError("ledger digest mismatch")

        vouchers = [StoredVoucher.from_dict(v) for v in body["vouchers"]]
        channels: Dict[str, Channel] = {}
        for cid, raw in body["channels"].items():
            channel = Channel.from_dict(raw)
            if channel.channel_id != normalize_channel_id(cid):
                raise LedgerError(f"channel key {cid} does not match record")
            channels[channel.channel_id] = channel

        self._vouchers = vouchers
        self._channels = channels
        self._total_earned = parse_uint(body["totalEarned"], "totalEarned")
        self._total_claimed = parse_uint(body["totalClaimed"], "totalClaimed")

    def __repr__(self) -> str:
        return (
            f"ChannelLedger(path={str(self.ledger_path)!r}, "
            f"vouchers={len(self._vouchers)}, channels={len(self._channels)})"
        )


def _copy(voucher: StoredVoucher) -> StoredVoucher:
    return replace(voucher)


def _normalized(channel: Channel, key: str) -> Channel:
    """Copy of `channel` with its own and its last voucher's id set to `key`."""
    stored = channel.copy()
    stored.channel_id = key
    if stored.last_voucher is not None:
        stored.last_voucher.channel_id = key
    return stored
