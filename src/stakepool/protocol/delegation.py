"""
stakepool/protocol/delegation.py

Delegated stake bookkeeping for a single pool.

Stake changes are epoch-aligned: a delegation made during epoch E starts
earning from epoch E+1, so every balance is kept as a pair:
- current: stake active during the epoch it was last stored in
- next: stake active from the following epoch onward

The same shape is kept for the pool-wide total, so the total used when an
epoch's reward is credited is exactly the sum of the members' active stake.

Every delegate/undelegate first settles the member's unsettled reward, so a
reward span is never computed with a stake amount that was not in effect.
"""

import logging
from dataclasses import dataclass, asdict, replace
from typing import Callable, Dict, Iterator, Optional

from .errors import EpochRegressionError, InsufficientStakeError

logger = logging.getLogger("stakepool.protocol.delegation")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class MemberStakeRecord:
    """
    A member's stake in a pool.

    Never deleted: a member who fully undelegates keeps a zero record so
    rewards for past epochs remain computable.
    """
    pool_id: str
    member: str
    current_stake: int = 0      # Active during last_stored_epoch
    next_stake: int = 0         # Active from last_stored_epoch + 1
    last_stored_epoch: int = 0  # Epoch of the last sync/settlement

    def synced(self, epoch: int) -> "MemberStakeRecord":
        """Roll the record forward so that last_stored_epoch == epoch."""
        if epoch < self.last_stored_epoch:
            raise EpochRegressionError(epoch, self.last_stored_epoch)
        if epoch == self.last_stored_epoch:
            return self
        return replace(self, current_stake=self.next_stake, last_stored_epoch=epoch)

    def is_empty(self) -> bool:
        """True if the record holds no stake at all."""
        return self.current_stake == 0 and self.next_stake == 0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MemberStakeRecord":
        """Create from dictionary."""
        return cls(
            pool_id=data.get("pool_id", ""),
            member=data.get("member", ""),
            current_stake=int(data.get("current_stake", 0)),
            next_stake=int(data.get("next_stake", 0)),
            last_stored_epoch=int(data.get("last_stored_epoch", 0)),
        )


@dataclass(frozen=True)
class PoolAggregate:
    """
    Pool-wide stake totals and reward tallies.

    The reward tallies form the pool's shadow balance: rewards credited to
    members through the ratio ledger but not yet realized by settlement.
    """
    pool_id: str
    current_total: int = 0
    next_total: int = 0
    last_stored_epoch: int = 0
    rewards_credited: int = 0     # Allocated to members via the ratio ledger
    rewards_unallocated: int = 0  # Credited while no stake was active
    rewards_paid: int = 0         # Settled to members

    @property
    def reward_balance(self) -> int:
        """Rewards credited but not yet paid out."""
        return self.rewards_credited - self.rewards_paid

    def synced(self, epoch: int) -> "PoolAggregate":
        """Roll the totals forward so that last_stored_epoch == epoch."""
        if epoch < self.last_stored_epoch:
            raise EpochRegressionError(epoch, self.last_stored_epoch)
        if epoch == self.last_stored_epoch:
            return self
        return replace(self, current_total=self.next_total, last_stored_epoch=epoch)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PoolAggregate":
        """Create from dictionary."""
        return cls(
            pool_id=data.get("pool_id", ""),
            current_total=int(data.get("current_total", 0)),
            next_total=int(data.get("next_total", 0)),
            last_stored_epoch=int(data.get("last_stored_epoch", 0)),
            rewards_credited=int(data.get("rewards_credited", 0)),
            rewards_unallocated=int(data.get("rewards_unallocated", 0)),
            rewards_paid=int(data.get("rewards_paid", 0)),
        )


# ============================================================================
# DELEGATION TRACKER
# ============================================================================

class DelegationTracker:
    """
    Tracks member stake records and the pool aggregate for one pool.

    Holds two fixed-shape records (member, aggregate) per operation; nothing
    here iterates over members.

    Usage:
        tracker = DelegationTracker("pool-1")
        tracker.set_settlement_hook(accountant.settle)

        tracker.delegate("alice", 100, epoch=1)
        tracker.undelegate("alice", 40, epoch=3)
        tracker.stake_of("alice", epoch=3)   # 60
    """

    def __init__(
        self,
        pool_id: str,
        origin_epoch: int = 0,
        settlement_hook: Optional[Callable[[str, int], int]] = None,
    ):
        """
        Initialize DelegationTracker.

        Args:
            pool_id: Pool this tracker belongs to
            origin_epoch: Epoch the pool was created
            settlement_hook: Called as hook(member, epoch) before any stake
                change; normally RewardAccountant.settle
        """
        self.pool_id = pool_id
        self._records: Dict[str, MemberStakeRecord] = {}
        self._aggregate = PoolAggregate(pool_id=pool_id, last_stored_epoch=origin_epoch)
        self._settlement_hook = settlement_hook

    def set_settlement_hook(self, hook: Callable[[str, int], int]) -> None:
        """Set the settlement function invoked before stake changes."""
        self._settlement_hook = hook

    # ========================================================================
    # RECORD ACCESS
    # ========================================================================

    def get_record(self, member: str) -> Optional[MemberStakeRecord]:
        """Stored record for a member, or None if they never delegated."""
        return self._records.get(member)

    def load_record(self, member: str, epoch: int) -> MemberStakeRecord:
        """Stored record, or a zero record anchored at `epoch`."""
        record = self._records.get(member)
        if record is None:
            return MemberStakeRecord(pool_id=self.pool_id, member=member, last_stored_epoch=epoch)
        return record

    def store_record(self, record: MemberStakeRecord) -> None:
        """Replace a member's record."""
        self._records[record.member] = record

    @property
    def aggregate(self) -> PoolAggregate:
        return self._aggregate

    def store_aggregate(self, aggregate: PoolAggregate) -> None:
        """Replace the pool aggregate."""
        self._aggregate = aggregate

    def members(self) -> Iterator[str]:
        """Members with a stored record (for persistence and reporting)."""
        return iter(list(self._records))

    def records(self) -> Iterator[MemberStakeRecord]:
        return iter(list(self._records.values()))

    def __len__(self) -> int:
        return len(self._records)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def stake_of(self, member: str, epoch: int) -> int:
        """Member's delegated stake (active from the next epoch)."""
        record = self._records.get(member)
        if record is None:
            return 0
        return record.synced(epoch).next_stake

    def active_stake_of(self, member: str, epoch: int) -> int:
        """Member's stake earning rewards during `epoch`."""
        record = self._records.get(member)
        if record is None:
            return 0
        return record.synced(epoch).current_stake

    def total_delegated_stake(self, epoch: int) -> int:
        """Pool stake earning rewards during `epoch`."""
        return self._aggregate.synced(epoch).current_total

    # ========================================================================
    # STAKE CHANGES
    # ========================================================================

    def delegate(self, member: str, amount: int, epoch: int) -> MemberStakeRecord:
        """
        Add stake for a member; it becomes active next epoch.

        Args:
            member: Member address
            amount: Stake to add (0 only forces settlement)
            epoch: Current epoch

        Returns:
            The member's record after the change
        """
        if amount < 0:
            raise ValueError(f"Delegation amount must be non-negative, got {amount}")
        return self._change_stake(member, amount, epoch)

    def undelegate(self, member: str, amount: int, epoch: int) -> MemberStakeRecord:
        """
        Remove stake from a member; it stops earning after this epoch.

        Raises:
            InsufficientStakeError: amount exceeds the delegated stake;
                raised before anything is settled or mutated
        """
        if amount < 0:
            raise ValueError(f"Undelegation amount must be non-negative, got {amount}")

        available = self.stake_of(member, epoch)
        if amount > available:
            raise InsufficientStakeError(self.pool_id, member, amount, available)

        return self._change_stake(member, -amount, epoch)

    def _change_stake(self, member: str, delta: int, epoch: int) -> MemberStakeRecord:
        """Settle, then apply a signed stake change to member and pool."""
        if self._settlement_hook is not None:
            self._settlement_hook(member, epoch)

        if delta == 0:
            logger.debug(f"Zero stake change for {member} in pool {self.pool_id}, settled only")
            return self.load_record(member, epoch)

        record = self.load_record(member, epoch).synced(epoch)
        record = replace(record, next_stake=record.next_stake + delta)

        aggregate = self._aggregate.synced(epoch)
        aggregate = replace(aggregate, next_total=aggregate.next_total + delta)

        self._records[member] = record
        self._aggregate = aggregate

        action = "delegated" if delta > 0 else "undelegated"
        logger.info(
            f"{member} {action} {abs(delta)} in pool {self.pool_id} at epoch {epoch} "
            f"(stake {record.next_stake}, pool {aggregate.next_total})"
        )
        return record
