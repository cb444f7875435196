"""
stakepool/protocol/announcements.py

Publishes epoch credits and settlements to the network.

Accounting runs synchronously; notifications are queued by manager callbacks
and broadcast later from an async context. Without a peers object the
announcer runs in local-only mode and keeps only the newest announcements.
"""

import time
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional

import trio

from ..config import (
    DEFAULT_ANNOUNCE_INTERVAL,
    MAX_QUEUED_ANNOUNCEMENTS,
    REWARD_CREDITED_TOPIC,
    SETTLEMENT_TOPIC,
)
from .epoch_creditor import CreditResult
from .rewards import SettlementReceipt

if TYPE_CHECKING:
    from .manager import StakingPoolManager

logger = logging.getLogger("stakepool.protocol.announcements")


@dataclass
class Announcement:
    """A queued network message."""
    topic: str
    message: Dict[str, Any]
    queued_at: int = field(default_factory=lambda: int(time.time()))


class RewardAnnouncer:
    """
    Broadcasts reward accounting events over PubSub.

    Usage:
        announcer = RewardAnnouncer(peers)
        announcer.attach(manager)

        async with trio.open_nursery() as nursery:
            await nursery.start(announcer.run_announce_loop)
    """

    def __init__(
        self,
        peers=None,
        announce_interval: float = DEFAULT_ANNOUNCE_INTERVAL,
        max_queued: int = MAX_QUEUED_ANNOUNCEMENTS,
    ):
        """
        Initialize RewardAnnouncer.

        Args:
            peers: Object with `async broadcast(topic, message)`, or None
            announce_interval: Seconds between flushes in the loop
            max_queued: Queue size; the oldest announcement is dropped when full
        """
        self.peers = peers
        self.announce_interval = announce_interval
        self._queue: Deque[Announcement] = deque(maxlen=max_queued)
        self._cancel_scope: Optional[trio.CancelScope] = None
        self.sent_count = 0
        self.failed_count = 0
        self.dropped_count = 0

    def attach(self, manager: "StakingPoolManager") -> None:
        """Queue announcements for the manager's credits and settlements."""
        manager.on_reward_credited(self.queue_credit)
        manager.on_settlement(self.queue_settlement)

    def queue_credit(self, result: CreditResult) -> None:
        if not result.recorded:
            return
        self._enqueue(Announcement(REWARD_CREDITED_TOPIC, {
            "type": "reward_credited",
            **result.to_dict(),
        }))

    def queue_settlement(self, receipt: SettlementReceipt) -> None:
        self._enqueue(Announcement(SETTLEMENT_TOPIC, {
            "type": "settlement",
            **receipt.to_dict(),
        }))

    def _enqueue(self, announcement: Announcement) -> None:
        if len(self._queue) == self._queue.maxlen:
            self.dropped_count += 1
            logger.debug(f"Announcement queue full, dropping oldest ({self.dropped_count} dropped)")
        self._queue.append(announcement)

    @property
    def pending(self) -> List[Announcement]:
        return list(self._queue)

    async def flush(self) -> int:
        """
        Broadcast queued announcements in order.

        Stops at the first failure and keeps the rest queued.

        Returns:
            Number of announcements sent
        """
        if not self.peers:
            if self._queue:
                logger.debug(f"Local-only mode, {len(self._queue)} announcements queued")
            return 0

        sent = 0
        while self._queue:
            announcement = self._queue[0]
            try:
                await self.peers.broadcast(announcement.topic, announcement.message)
            except Exception as e:
                self.failed_count += 1
                logger.warning(f"Failed to broadcast on {announcement.topic}: {e}")
                break
            self._queue.popleft()
            sent += 1

        self.sent_count += sent
        if sent:
            logger.debug(f"Broadcast {sent} reward announcements")
        return sent

    async def run_announce_loop(self, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """Flush every announce_interval seconds until stop() is called."""
        self._cancel_scope = trio.CancelScope()
        task_status.started()

        with self._cancel_scope:
            while True:
                await trio.sleep(self.announce_interval)
                await self.flush()
        self._cancel_scope = None

    def stop(self) -> None:
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()
