"""
ClaimScheduler: turns accepted vouchers into on-chain claims.

Two selection rules over ChannelLedger.highest_unclaimed_per_channel():

    claim_due(force_all)       amount >= claim_threshold (or force_all)
    claim_expiring(buffer)     expiry - now <= buffer and amount > 0,
                               threshold ignored. After expiry the consumer
                               can reclaim whatever was not claimed.

Per-channel isolation: a failed claim is logged, the channel stays
unclaimed and is picked up again on the next tick. One failure never
aborts the batch.

Each channel's claim + mark_claimed runs under that channel's lock, the
same lock the request path commits under.
"""

import logging
import threading
from typing import Callable, List, Optional

from drainpay.chain.gateway import ChainGateway
from drainpay.core.locks import ChannelLocks
from drainpay.core.models import StoredVoucher
from drainpay.core.time import now_unix
from drainpay.ledger.ledger import ChannelLedger


logger = logging.getLogger(__name__)


class ClaimScheduler:
    """Threshold claims, expiry claims and the periodic auto-claim loop."""

    def __init__(
        self,
        gateway:         ChainGateway,
        ledger:          ChannelLedger,
        claim_threshold: int,
        locks:           Optional[ChannelLocks] = None,
        clock:           Callable[[], int] = now_unix,
    ) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.claim_threshold = claim_threshold
        self.locks = locks or ChannelLocks()
        self._clock = clock

        self._lifecycle = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._buffer_seconds = 3600

    # ── Claiming ──────────────────────────────────────────────

    def claim_due(self, force_all: bool = False) -> List[str]:
        """Claim every channel whose highest voucher reaches the threshold."""
        tx_hashes: List[str] = []
        for channel_id, voucher in self.ledger.highest_unclaimed_per_channel().items():
            if not force_all and voucher.amount < self.claim_threshold:
                logger.debug(
                    "skipping %s: amount %d below threshold %d",
                    channel_id, voucher.amount, self.claim_threshold,
                    extra={"channel_id": channel_id, "amount": voucher.amount},
                )
                continue
            tx_hash = self._claim_one(channel_id, voucher, label="claim")
            if tx_hash:
                tx_hashes.append(tx_hash)
        return tx_hashes

    def claim_expiring(self, buffer_seconds: int = 3600) -> List[str]:
        """Claim every channel expiring within `buffer_seconds`, any amount > 0."""
        tx_hashes: List[str] = []
        now = self._clock()
        for channel_id, voucher in self.ledger.highest_unclaimed_per_channel().items():
            channel = self.ledger.get_channel(channel_id)
            if channel is None or not channel.expiry:
                continue

            time_left = channel.expiry - now
            if time_left > buffer_seconds:
                continue
            if voucher.amount <= 0:
                continue

            status = "EXPIRED" if time_left <= 0 else f"expiring in {time_left // 60}min"
            logger.info(
                "channel %s %s, claiming %d", channel_id, status, voucher.amount,
                extra={"channel_id": channel_id, "amount": voucher.amount},
            )
            tx_hash = self._claim_one(channel_id, voucher, label="auto-claim")
            if tx_hash:
                tx_hashes.append(tx_hash)
        return tx_hashes

    def _claim_one(self, channel_id: str, voucher: StoredVoucher, label: str) -> Optional[str]:
        with self.locks.hold(channel_id):
            # A request may have committed a better voucher since the scan.
            current = self.ledger.highest_unclaimed_per_channel().get(channel_id)
            if current is None:
                return None
            if current.dominates(voucher):
                voucher = current

            try:
                tx_hash = self.gateway.claim(
                    voucher.channel_id, voucher.amount, voucher.nonce, voucher.signature,
                )
            except Exception:
                logger.exception(
                    "[%s] failed to claim %s", label, channel_id,
                    extra={"channel_id": channel_id, "amount": voucher.amount},
                )
                return None

            self.ledger.mark_claimed(channel_id, tx_hash)

        logger.info(
            "[%s] claimed %d from %s: %s", label, voucher.amount, channel_id, tx_hash,
            extra={"channel_id": channel_id, "tx_hash": tx_hash, "amount": voucher.amount},
        )
        return tx_hash

    # ── Periodic loop ─────────────────────────────────────────

    def tick(self) -> List[str]:
        """One scheduled pass. Never raises."""
        try:
            claimed = self.claim_expiring(self._buffer_seconds)
        except Exception:
            logger.exception("[auto-claim] error during auto-claim check")
            return []
        if claimed:
            logger.info("[auto-claim] claimed %d expiring channel(s)", len(claimed))
        return claimed

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval_seconds: float = 600, buffer_seconds: int = 3600) -> bool:
        """
        Run tick() now and then every `interval_seconds` on a daemon thread.

        Idempotent: returns False without starting a second loop if one is
        already running.
        """
        with self._lifecycle:
            if self.running:
                return False
            self._buffer_seconds = buffer_seconds
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run,
                args=(interval_seconds, stop_event),
                name="drainpay-auto-claim",
                daemon=True,
            )
            self._thread.start()

        logger.info(
            "[auto-claim] started: checking every %ss, claiming channels expiring within %ss",
            interval_seconds, buffer_seconds,
        )
        return True

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Cancel the loop and wait for the current tick to finish."""
        with self._lifecycle:
            thread, stop_event = self._thread, self._stop_event
            self._thread = None
            self._stop_event = None
        if thread is None:
            return
        stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("[auto-claim] stopped")

    def _run(self, interval_seconds: float, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.tick()
            if stop_event.wait(interval_seconds):
                break
