"""
stakepool/protocol/epoch_creditor.py

Closes an epoch's reward into the pool's cumulative ratio ledger.

The member share of a pool's reward for epoch E is spread over the stake
active during E:

    ratio[E] = ratio[E-1] + reward / total_active_stake

No entry is written when the reward is zero or no stake is active; the
ledger then carries the previous ratio forward.
"""

import time
import logging
from dataclasses import dataclass, field, asdict, replace
from typing import Optional

from .delegation import DelegationTracker
from .ratio_ledger import RatioLedger, RatioSnapshot

logger = logging.getLogger("stakepool.protocol.epoch_creditor")


@dataclass
class CreditResult:
    """Outcome of crediting a pool's reward for one epoch."""
    pool_id: str
    epoch: int
    reward: int
    total_stake: int
    ratio: Optional[RatioSnapshot] = None  # None when no entry was written
    timestamp: int = field(default_factory=lambda: int(time.time()))

    @property
    def recorded(self) -> bool:
        return self.ratio is not None

    def to_dict(self) -> dict:
        result = asdict(self)
        result["ratio"] = self.ratio.to_dict() if self.ratio else None
        return result


class EpochCreditor:
    """Writes new cumulative ratios as rewards are credited to a pool."""

    def __init__(self, ledger: RatioLedger, tracker: DelegationTracker):
        self.ledger = ledger
        self.tracker = tracker

    def credit_reward(self, reward: int, epoch: int) -> CreditResult:
        """
        Credit the members' reward for `epoch`.

        Args:
            reward: Member share of the pool's reward (operator share
                already removed)
            epoch: Epoch being closed

        Returns:
            CreditResult; result.ratio is None if nothing was recorded

        Raises:
            DuplicateEpochWriteError: epoch was already credited
        """
        if reward < 0:
            raise ValueError(f"Reward must be non-negative, got {reward}")

        pool_id = self.tracker.pool_id
        aggregate = self.tracker.aggregate.synced(epoch)
        total_stake = aggregate.current_total
        result = CreditResult(pool_id=pool_id, epoch=epoch, reward=reward, total_stake=total_stake)

        if reward == 0:
            logger.debug(f"No reward for pool {pool_id} at epoch {epoch}")
            return result

        if total_stake == 0:
            self.tracker.store_aggregate(
                replace(aggregate, rewards_unallocated=aggregate.rewards_unallocated + reward)
            )
            logger.warning(
                f"Pool {pool_id} has no active stake at epoch {epoch}, "
                f"{reward} left unallocated"
            )
            return result

        ratio = self.ledger.ratio_at(epoch).plus(reward, total_stake)
        self.ledger.record(epoch, ratio)
        self.tracker.store_aggregate(
            replace(aggregate, rewards_credited=aggregate.rewards_credited + reward)
        )

        result.ratio = ratio
        logger.info(
            f"Credited {reward} to pool {pool_id} at epoch {epoch} "
            f"over stake {total_stake} (ratio {ratio.numerator}/{ratio.denominator})"
        )
        return result
