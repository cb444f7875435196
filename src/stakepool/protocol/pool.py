"""
stakepool/protocol/pool.py

A single staking pool: ratio ledger, delegation tracker, reward accountant
and epoch creditor wired together.

The pool is the only entry point that should be used to mutate accounting
state. It enforces that epochs never move backwards across operations, so a
cumulative ratio read by one call can never be rewritten by a later one.

Usage:
    sink = InMemoryPayoutSink()
    pool = StakingPool("pool-1", payout_sink=sink)

    pool.delegate("alice", 100, epoch=1)
    pool.credit_reward(1000, epoch=2)
    pool.withdraw_rewards("alice", epoch=3)   # 1000
"""

import logging
from typing import Any, Callable, Dict, List

from .delegation import DelegationTracker, MemberStakeRecord, PoolAggregate
from .epoch_creditor import CreditResult, EpochCreditor
from .errors import EpochRegressionError
from .payout import PayoutSink
from .ratio_ledger import RatioLedger
from .rewards import RewardAccountant, RewardBreakdown, SettlementReceipt

logger = logging.getLogger("stakepool.protocol.pool")


class StakingPool:
    """Reward accounting for one pool."""

    def __init__(self, pool_id: str, payout_sink: PayoutSink, origin_epoch: int = 0):
        """
        Initialize StakingPool.

        Args:
            pool_id: Pool identifier
            payout_sink: Receives settled member rewards
            origin_epoch: Epoch the pool was created
        """
        self.pool_id = pool_id
        self.origin_epoch = origin_epoch
        self.ledger = RatioLedger(origin_epoch=origin_epoch)
        self.tracker = DelegationTracker(pool_id, origin_epoch=origin_epoch)
        self.accountant = RewardAccountant(self.ledger, self.tracker, payout_sink)
        self.creditor = EpochCreditor(self.ledger, self.tracker)
        self.tracker.set_settlement_hook(self._settle)
        self._last_epoch = origin_epoch
        self._settlement_callbacks: List[Callable[[SettlementReceipt], None]] = []

    @property
    def payout_sink(self) -> PayoutSink:
        return self.accountant.payout_sink

    @property
    def last_epoch(self) -> int:
        """Latest epoch any operation has been called with."""
        return self._last_epoch

    def _observe_epoch(self, epoch: int) -> None:
        if epoch < self._last_epoch:
            raise EpochRegressionError(epoch, self._last_epoch)
        self._last_epoch = epoch

    def add_settlement_callback(self, callback: Callable[[SettlementReceipt], None]) -> None:
        """Register a callback for every non-zero settlement, explicit or implicit."""
        self._settlement_callbacks.append(callback)

    def _settle(self, member: str, epoch: int) -> int:
        return self._settle_with_receipt(member, epoch).amount

    def _settle_with_receipt(self, member: str, epoch: int) -> SettlementReceipt:
        receipt = self.accountant.settle_with_receipt(member, epoch)
        if receipt.paid:
            for callback in self._settlement_callbacks:
                try:
                    callback(receipt)
                except Exception as e:
                    logger.error(f"Settlement callback failed for pool {self.pool_id}: {e}")
        return receipt

    # ========================================================================
    # MEMBER OPERATIONS
    # ========================================================================

    def delegate(self, member: str, amount: int, epoch: int) -> MemberStakeRecord:
        """Settle, then add stake that starts earning next epoch."""
        self._observe_epoch(epoch)
        return self.tracker.delegate(member, amount, epoch)

    def undelegate(self, member: str, amount: int, epoch: int) -> MemberStakeRecord:
        """
        Settle, then remove stake that stops earning after this epoch.

        Raises:
            InsufficientStakeError: amount exceeds the member's stake
        """
        self._observe_epoch(epoch)
        return self.tracker.undelegate(member, amount, epoch)

    def withdraw_rewards(self, member: str, epoch: int) -> int:
        """Pay out a member's unsettled reward. Returns the amount paid."""
        self._observe_epoch(epoch)
        return self._settle(member, epoch)

    settle = withdraw_rewards

    def settle_with_receipt(self, member: str, epoch: int) -> SettlementReceipt:
        self._observe_epoch(epoch)
        return self._settle_with_receipt(member, epoch)

    def compute_unsettled_reward(self, member: str, epoch: int) -> int:
        """Reward a member could withdraw at `epoch`."""
        self._observe_epoch(epoch)
        return self.accountant.compute_unsettled_reward(member, epoch)

    def reward_breakdown(self, member: str, epoch: int) -> RewardBreakdown:
        self._observe_epoch(epoch)
        record = self.tracker.get_record(member)
        if record is None:
            return RewardBreakdown(0, 0)
        return self.accountant.breakdown(record, epoch)

    # ========================================================================
    # POOL OPERATIONS
    # ========================================================================

    def credit_reward(self, reward: int, epoch: int) -> CreditResult:
        """Credit the members' share of this epoch's pool reward."""
        self._observe_epoch(epoch)
        return self.creditor.credit_reward(reward, epoch)

    def stake_of(self, member: str, epoch: int) -> int:
        self._observe_epoch(epoch)
        return self.tracker.stake_of(member, epoch)

    def active_stake_of(self, member: str, epoch: int) -> int:
        self._observe_epoch(epoch)
        return self.tracker.active_stake_of(member, epoch)

    def total_delegated_stake(self, epoch: int) -> int:
        """Stake earning rewards during `epoch`."""
        self._observe_epoch(epoch)
        return self.tracker.total_delegated_stake(epoch)

    @property
    def aggregate(self) -> PoolAggregate:
        return self.tracker.aggregate

    def members(self) -> List[str]:
        return list(self.tracker.members())

    # ========================================================================
    # SERIALIZATION
    # ========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """Full accounting state of the pool."""
        return {
            "pool_id": self.pool_id,
            "origin_epoch": self.origin_epoch,
            "last_epoch": self._last_epoch,
            "ledger": self.ledger.to_dict(),
            "aggregate": self.aggregate.to_dict(),
            "members": [record.to_dict() for record in self.tracker.records()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], payout_sink: PayoutSink) -> "StakingPool":
        """Restore a pool from to_dict() output."""
        pool = cls(
            pool_id=data["pool_id"],
            payout_sink=payout_sink,
            origin_epoch=int(data.get("origin_epoch", 0)),
        )
        pool.ledger = RatioLedger.from_dict(data.get("ledger", {"origin_epoch": pool.origin_epoch}))
        pool.accountant.ledger = pool.ledger
        pool.creditor.ledger = pool.ledger
        pool.tracker.store_aggregate(PoolAggregate.from_dict(data.get("aggregate", {"pool_id": pool.pool_id})))
        for record_data in data.get("members", []):
            pool.tracker.store_record(MemberStakeRecord.from_dict(record_data))
        pool._last_epoch = int(data.get("last_epoch", pool.origin_epoch))
        return pool
