"""
stakepool/protocol/manager.py

Multi-pool front end: pool registry, epoch clock and payout sink shared by
every StakingPool.

Rewards earned by a pool during an epoch are accumulated with
add_pool_reward() and credited once, when close_epoch() ends the epoch:
1. The operator share is split off through the registry and paid directly
2. The member share is credited to the pool's ratio ledger
3. If no member stake was active, the operator receives everything

Usage:
    manager = StakingPoolManager()
    info = manager.create_pool("operator-addr")

    manager.delegate(info.pool_id, "alice", 100)
    manager.close_epoch()

    manager.add_pool_reward(info.pool_id, 1000)
    manager.close_epoch()

    manager.withdraw_rewards(info.pool_id, "alice")   # 850
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..config import StakingConfig
from .epoch_creditor import CreditResult
from .epochs import EpochClock
from .errors import UnknownPoolError
from .payout import InMemoryPayoutSink, PayoutSink
from .pool import StakingPool
from .registry import PoolInfo, PoolRegistry
from .rewards import SettlementReceipt

logger = logging.getLogger("stakepool.protocol.manager")


class StakingPoolManager:
    """
    Manages staking pools and drives their epochs.

    Every operation is stamped with the clock's current epoch, so callers
    never pass epochs themselves.
    """

    def __init__(
        self,
        registry: Optional[PoolRegistry] = None,
        payout_sink: Optional[PayoutSink] = None,
        clock: Optional[EpochClock] = None,
        config: Optional[StakingConfig] = None,
    ):
        """
        Initialize StakingPoolManager.

        Args:
            registry: Pool registry (new one using config's default share if None)
            payout_sink: Receives operator and member payouts (in-memory if None)
            clock: Epoch clock (starts at epoch 0 if None)
            config: Runtime settings (defaults if None)
        """
        self.config = config or StakingConfig()
        self.registry = registry or PoolRegistry(default_share_ppm=self.config.default_operator_share_ppm)
        self.payout_sink = payout_sink if payout_sink is not None else InMemoryPayoutSink()
        self.clock = clock or EpochClock()

        self._pools: Dict[str, StakingPool] = {}
        self._pending_rewards: Dict[str, int] = defaultdict(int)
        self._operator_paid: Dict[str, int] = defaultdict(int)
        self._split_rewards: Dict[str, Tuple[int, int]] = {}

        self._on_reward_credited: List[Callable[[CreditResult], None]] = []
        self._on_settlement: List[Callable[[SettlementReceipt], None]] = []

    @property
    def current_epoch(self) -> int:
        return self.clock.current_epoch()

    # ========================================================================
    # POOLS
    # ========================================================================

    def create_pool(self, operator: str, operator_share_ppm: Optional[int] = None) -> PoolInfo:
        """Register a pool that starts accounting at the current epoch."""
        info = self.registry.create_pool(
            operator,
            operator_share_ppm=operator_share_ppm,
            created_epoch=self.current_epoch,
        )
        self._attach(StakingPool(info.pool_id, self.payout_sink, origin_epoch=info.created_epoch))
        return info

    def add_pool(self, pool: StakingPool) -> None:
        """
        Attach an existing pool (e.g. restored from storage).

        Raises:
            UnknownPoolError: the pool is not in the registry
        """
        self.registry.get_pool(pool.pool_id)
        self._attach(pool)

    def _attach(self, pool: StakingPool) -> None:
        pool.add_settlement_callback(self._notify_settlement)
        self._pools[pool.pool_id] = pool

    def get_pool(self, pool_id: str) -> StakingPool:
        """
        Raises:
            UnknownPoolError: no such pool
        """
        pool = self._pools.get(pool_id)
        if pool is None:
            raise UnknownPoolError(pool_id)
        return pool

    def pools(self) -> Iterator[StakingPool]:
        return iter(list(self._pools.values()))

    def __len__(self) -> int:
        return len(self._pools)

    # ========================================================================
    # MEMBER OPERATIONS
    # ========================================================================

    def delegate(self, pool_id: str, member: str, amount: int) -> int:
        """Delegate stake; returns the member's stake after the change."""
        record = self.get_pool(pool_id).delegate(member, amount, self.current_epoch)
        return record.next_stake

    def undelegate(self, pool_id: str, member: str, amount: int) -> int:
        """Undelegate stake; returns the member's stake after the change."""
        record = self.get_pool(pool_id).undelegate(member, amount, self.current_epoch)
        return record.next_stake

    def withdraw_rewards(self, pool_id: str, member: str) -> int:
        return self.get_pool(pool_id).withdraw_rewards(member, self.current_epoch)

    def compute_unsettled_reward(self, pool_id: str, member: str) -> int:
        return self.get_pool(pool_id).compute_unsettled_reward(member, self.current_epoch)

    def stake_of(self, pool_id: str, member: str) -> int:
        return self.get_pool(pool_id).stake_of(member, self.current_epoch)

    def total_delegated_stake(self, pool_id: str) -> int:
        return self.get_pool(pool_id).total_delegated_stake(self.current_epoch)

    # ========================================================================
    # EPOCHS
    # ========================================================================

    def add_pool_reward(self, pool_id: str, amount: int) -> int:
        """
        Accumulate reward earned by a pool during the current epoch.

        Returns:
            Pool's pending reward for this epoch
        """
        if amount < 0:
            raise ValueError(f"Reward must be non-negative, got {amount}")
        self.get_pool(pool_id)
        self._pending_rewards[pool_id] += amount
        return self._pending_rewards[pool_id]

    def pending_reward(self, pool_id: str) -> int:
        return self._pending_rewards.get(pool_id, 0)

    def close_epoch(self) -> List[CreditResult]:
        """
        Credit every pool's pending reward and advance the clock.

        A pool is removed from the pending set only after it has been fully
        processed, so a failing payout or credit can be retried by calling
        again. The operator share of a reward is paid at most once.

        Returns:
            CreditResult per pool that had a pending reward
        """
        epoch = self.current_epoch
        results = []

        for pool_id in list(self._pending_rewards):
            amount = self._pending_rewards[pool_id]
            pool = self.get_pool(pool_id)
            info = self.registry.get_pool(pool_id)

            # (amount already split, member share of it) from an earlier failed close
            split_amount, member_reward = self._split_rewards.get(pool_id, (0, 0))
            if amount > split_amount:
                fresh = amount - split_amount
                operator_reward, fresh_member = self.registry.split_reward(pool_id, fresh)
                if fresh_member > 0 and pool.total_delegated_stake(epoch) == 0:
                    logger.info(f"Pool {pool_id} has no active stake at epoch {epoch}, operator takes {fresh}")
                    operator_reward, fresh_member = fresh, 0

                if operator_reward > 0:
                    self.payout_sink.transfer_member_balance(pool_id, info.operator, operator_reward)
                    self._operator_paid[pool_id] += operator_reward
                member_reward += fresh_member
                self._split_rewards[pool_id] = (amount, member_reward)

            result = pool.credit_reward(member_reward, epoch)
            del self._pending_rewards[pool_id]
            self._split_rewards.pop(pool_id, None)
            results.append(result)
            self._notify_credited(result)

        new_epoch = self.clock.advance()
        logger.info(f"Closed epoch {epoch} ({len(results)} pools credited), now at epoch {new_epoch}")
        return results

    # ========================================================================
    # CALLBACKS
    # ========================================================================

    def on_reward_credited(self, callback: Callable[[CreditResult], None]) -> None:
        """Register callback for epoch credits."""
        self._on_reward_credited.append(callback)

    def on_settlement(self, callback: Callable[[SettlementReceipt], None]) -> None:
        """Register callback for non-zero settlements."""
        self._on_settlement.append(callback)

    def _notify_credited(self, result: CreditResult) -> None:
        for callback in self._on_reward_credited:
            try:
                callback(result)
            except Exception as e:
                logger.error(f"Reward credited callback error: {e}")

    def _notify_settlement(self, receipt: SettlementReceipt) -> None:
        for callback in self._on_settlement:
            try:
                callback(receipt)
            except Exception as e:
                logger.error(f"Settlement callback error: {e}")

    # ========================================================================
    # STATISTICS
    # ========================================================================

    def operator_paid(self, pool_id: str) -> int:
        return self._operator_paid.get(pool_id, 0)

    def get_stats(self) -> Dict[str, Any]:
        """Get manager statistics."""
        epoch = self.current_epoch
        pools = {}
        for pool in self._pools.values():
            aggregate = pool.aggregate
            pools[pool.pool_id] = {
                "operator": self.registry.get_pool(pool.pool_id).operator,
                "members": len(pool.tracker),
                "total_delegated_stake": aggregate.synced(max(epoch, aggregate.last_stored_epoch)).current_total,
                "rewards_credited": aggregate.rewards_credited,
                "rewards_paid": aggregate.rewards_paid,
                "reward_balance": aggregate.reward_balance,
                "rewards_unallocated": aggregate.rewards_unallocated,
                "operator_paid": self._operator_paid.get(pool.pool_id, 0),
                "pending_reward": self._pending_rewards.get(pool.pool_id, 0),
            }
        return {
            "current_epoch": epoch,
            "pool_count": len(self._pools),
            "pools": pools,
        }
