"""
stakepool/protocol/ratio_ledger.py

Epoch-indexed ledger of cumulative reward-to-stake ratios.

Each pool keeps one append-only ledger. When rewards are credited during an
epoch, the cumulative ratio (total reward paid into the pool per unit of
stake, since the pool was created) is frozen for that epoch. The reward owed
to a member for a span of epochs is their stake times the difference of the
ratios at the span's boundaries.

Ratios are exact fractions of unbounded integers, never floats:
- Adding reward / stake cross-multiplies and reduces by the gcd
- Differences are scaled by a stake and truncated once, toward zero

Epochs in which nothing was credited have no entry. Lookups carry the most
recent earlier ratio forward; before the first credit the ratio is zero.
"""

import bisect
import logging
import math
from dataclasses import dataclass, asdict
from typing import ClassVar, Dict, List, Optional

from .errors import (
    DuplicateEpochWriteError,
    EpochRegressionError,
    UnresolvedEpochGapError,
)

logger = logging.getLogger("stakepool.protocol.ratio_ledger")


# ============================================================================
# RATIO SNAPSHOT
# ============================================================================

@dataclass(frozen=True)
class RatioSnapshot:
    """
    Cumulative reward-per-stake ratio as numerator / denominator.

    Always stored reduced, with a positive denominator.
    """
    numerator: int
    denominator: int

    ZERO: ClassVar["RatioSnapshot"]

    def __post_init__(self):
        if self.denominator <= 0:
            raise ValueError(f"Ratio denominator must be positive, got {self.denominator}")
        if self.numerator < 0:
            raise ValueError(f"Ratio numerator must be non-negative, got {self.numerator}")

    @classmethod
    def reduced(cls, numerator: int, denominator: int) -> "RatioSnapshot":
        """Create a ratio reduced to lowest terms."""
        divisor = math.gcd(numerator, denominator) or 1
        return cls(numerator // divisor, denominator // divisor)

    def plus(self, reward: int, stake: int) -> "RatioSnapshot":
        """
        Return this ratio plus reward / stake.

        Args:
            reward: Reward credited to the pool
            stake: Total stake the reward is shared over (must be positive)
        """
        if stake <= 0:
            raise ValueError(f"Cannot add a reward over non-positive stake {stake}")
        if reward < 0:
            raise ValueError(f"Reward must be non-negative, got {reward}")
        return RatioSnapshot.reduced(
            self.numerator * stake + reward * self.denominator,
            self.denominator * stake,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RatioSnapshot":
        """Create from dictionary."""
        return cls(
            numerator=int(data["numerator"]),
            denominator=int(data["denominator"]),
        )


RatioSnapshot.ZERO = RatioSnapshot(0, 1)


def scale_difference(begin: RatioSnapshot, end: RatioSnapshot, stake: int) -> int:
    """
    Reward earned by `stake` between two cumulative ratios.

    The delta is cross-multiplied so no intermediate fraction is rounded;
    the single division truncates toward zero. This deliberately truncates
    less than flooring the delta by the begin denominator and then the end
    denominator, e.g. begin=1/2, end=1/1, stake=5 yields 2 instead of 0.

    Args:
        begin: Ratio at the start of the span
        end: Ratio at the end of the span
        stake: Stake held throughout the span

    Returns:
        Reward amount (never more than the exact value)
    """
    if stake == 0:
        return 0
    delta = end.numerator * begin.denominator - begin.numerator * end.denominator
    if delta < 0:
        raise ValueError(f"Cumulative ratio decreased from {begin} to {end}")
    return stake * delta // (begin.denominator * end.denominator)


# ============================================================================
# RATIO LEDGER
# ============================================================================

class RatioLedger:
    """
    Append-only record of cumulative ratios, one entry per credited epoch.

    Entries are write-once. Epochs must be recorded in increasing order so
    that a carried-forward value, once read, never changes.

    Usage:
        ledger = RatioLedger(origin_epoch=0)
        ledger.record(2, RatioSnapshot(10, 1))

        ledger.get(1)        # None, nothing stored for epoch 1
        ledger.ratio_at(1)   # RatioSnapshot.ZERO, carried from the origin
        ledger.ratio_at(5)   # RatioSnapshot(10, 1), carried from epoch 2
    """

    def __init__(self, origin_epoch: int = 0):
        """
        Initialize RatioLedger.

        Args:
            origin_epoch: Epoch the pool was created; the cumulative ratio
                is zero from here until the first recorded entry
        """
        self.origin_epoch = origin_epoch
        self._snapshots: Dict[int, RatioSnapshot] = {}
        self._epochs: List[int] = []  # sorted, mirrors _snapshots keys

    def __len__(self) -> int:
        return len(self._epochs)

    def __contains__(self, epoch: int) -> bool:
        return epoch in self._snapshots

    @property
    def latest_epoch(self) -> Optional[int]:
        """Most recent epoch with a stored ratio, or None."""
        return self._epochs[-1] if self._epochs else None

    def record(self, epoch: int, ratio: RatioSnapshot) -> None:
        """
        Freeze the cumulative ratio for an epoch.

        Raises:
            DuplicateEpochWriteError: epoch already has a stored ratio
            EpochRegressionError: epoch precedes the origin or the latest entry
        """
        if epoch in self._snapshots:
            raise DuplicateEpochWriteError(epoch)
        if epoch < self.origin_epoch:
            raise EpochRegressionError(epoch, self.origin_epoch)
        if self._epochs and epoch < self._epochs[-1]:
            raise EpochRegressionError(epoch, self._epochs[-1])

        self._snapshots[epoch] = ratio
        self._epochs.append(epoch)
        logger.debug(f"Recorded ratio {ratio.numerator}/{ratio.denominator} for epoch {epoch}")

    def get(self, epoch: int) -> Optional[RatioSnapshot]:
        """Stored ratio for exactly this epoch, or None if unset."""
        return self._snapshots.get(epoch)

    def ratio_at(self, epoch: int) -> RatioSnapshot:
        """
        Cumulative ratio in effect at the end of an epoch.

        Returns the entry at the greatest recorded epoch <= epoch, or the
        zero ratio if nothing was recorded yet.

        Raises:
            UnresolvedEpochGapError: epoch precedes the ledger's origin
        """
        if epoch < self.origin_epoch:
            raise UnresolvedEpochGapError(epoch, self.origin_epoch)

        index = bisect.bisect_right(self._epochs, epoch)
        if index == 0:
            return RatioSnapshot.ZERO
        return self._snapshots[self._epochs[index - 1]]

    def latest_ratio(self) -> RatioSnapshot:
        """Most recent cumulative ratio (zero if none recorded)."""
        if not self._epochs:
            return RatioSnapshot.ZERO
        return self._snapshots[self._epochs[-1]]

    def items(self) -> List[tuple]:
        """All (epoch, ratio) entries in epoch order."""
        return [(epoch, self._snapshots[epoch]) for epoch in self._epochs]

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "origin_epoch": self.origin_epoch,
            "snapshots": {str(epoch): ratio.to_dict() for epoch, ratio in self.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RatioLedger":
        """Create from dictionary."""
        ledger = cls(origin_epoch=int(data.get("origin_epoch", 0)))
        snapshots = data.get("snapshots", {})
        for epoch in sorted(int(e) for e in snapshots):
            ledger.record(epoch, RatioSnapshot.from_dict(snapshots[str(epoch)]))
        return ledger
