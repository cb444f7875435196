"""
stakepool/protocol/rewards.py

Lazy per-member reward computation and settlement.

A member's unsettled reward is derived from two legs, using only their
stake record and the pool's cumulative ratio ledger:

    current leg: current_stake * (ratio[L] - ratio[L-1])
                 reward for epoch L, the epoch of the last settlement
    next leg:    next_stake * (ratio[C-1] - ratio[L])
                 reward for epochs L+1 .. C-1

where L is the record's last stored epoch and C the current epoch. The
current epoch is never included, its ratio is not final until it closes.

Settlement pays the sum through the payout sink and rolls the record
forward to C, so the same span can never be paid twice.

Usage:
    accountant = RewardAccountant(ledger, tracker, payout_sink)

    owed = accountant.compute_unsettled_reward("alice", epoch=3)
    receipt = accountant.settle_with_receipt("alice", epoch=3)
"""

import time
import logging
from dataclasses import dataclass, field, asdict, replace
from typing import TYPE_CHECKING

from .delegation import DelegationTracker, MemberStakeRecord
from .errors import EpochRegressionError
from .ratio_ledger import RatioLedger, scale_difference

if TYPE_CHECKING:
    from .payout import PayoutSink

logger = logging.getLogger("stakepool.protocol.rewards")


@dataclass
class RewardBreakdown:
    """Unsettled reward split by leg."""
    current_leg: int
    next_leg: int

    @property
    def total(self) -> int:
        return self.current_leg + self.next_leg


@dataclass
class SettlementReceipt:
    """Result of settling a member's reward."""
    pool_id: str
    member: str
    amount: int
    epoch: int
    previous_stored_epoch: int
    timestamp: int = field(default_factory=lambda: int(time.time()))

    @property
    def paid(self) -> bool:
        return self.amount > 0

    def to_dict(self) -> dict:
        return asdict(self)


class RewardAccountant:
    """
    Computes and settles members' accrued rewards for one pool.

    Cost per call is independent of the number of members: one record, at
    most four ratio lookups.
    """

    def __init__(
        self,
        ledger: RatioLedger,
        tracker: DelegationTracker,
        payout_sink: "PayoutSink",
    ):
        self.ledger = ledger
        self.tracker = tracker
        self.payout_sink = payout_sink

    @property
    def pool_id(self) -> str:
        return self.tracker.pool_id

    def breakdown(self, record: MemberStakeRecord, epoch: int) -> RewardBreakdown:
        """
        Unsettled reward of a stake record at `epoch`, per leg.

        Raises:
            EpochRegressionError: epoch precedes the record's last stored epoch
            UnresolvedEpochGapError: a leg boundary precedes the ledger origin
        """
        last = record.last_stored_epoch
        if epoch < last:
            raise EpochRegressionError(epoch, last)
        if epoch == 0 or last == epoch:
            return RewardBreakdown(0, 0)

        current_leg = 0
        if record.current_stake != 0:
            current_leg = scale_difference(
                self.ledger.ratio_at(last - 1),
                self.ledger.ratio_at(last),
                record.current_stake,
            )

        next_leg = 0
        if record.next_stake != 0 and last < epoch - 1:
            next_leg = scale_difference(
                self.ledger.ratio_at(last),
                self.ledger.ratio_at(epoch - 1),
                record.next_stake,
            )

        return RewardBreakdown(current_leg, next_leg)

    def compute_unsettled_reward(self, member: str, epoch: int) -> int:
        """Reward accrued by a member and not yet settled."""
        record = self.tracker.get_record(member)
        if record is None:
            return 0
        return self.breakdown(record, epoch).total

    def settle(self, member: str, epoch: int) -> int:
        """
        Pay a member's unsettled reward.

        Returns:
            Amount paid (0 means nothing was changed)
        """
        return self.settle_with_receipt(member, epoch).amount

    def settle_with_receipt(self, member: str, epoch: int) -> SettlementReceipt:
        """
        Pay a member's unsettled reward and describe the settlement.

        The payout happens before any bookkeeping is written; if the sink
        raises, the record and the pool tallies are left untouched.
        """
        record = self.tracker.get_record(member)
        previous = record.last_stored_epoch if record else epoch
        receipt = SettlementReceipt(
            pool_id=self.pool_id,
            member=member,
            amount=0,
            epoch=epoch,
            previous_stored_epoch=previous,
        )
        if record is None:
            return receipt

        amount = self.breakdown(record, epoch).total
        if amount == 0:
            logger.debug(f"Nothing to settle for {member} in pool {self.pool_id} at epoch {epoch}")
            return receipt

        settled_record = record.synced(epoch)
        aggregate = self.tracker.aggregate
        settled_aggregate = replace(aggregate, rewards_paid=aggregate.rewards_paid + amount)

        self.payout_sink.transfer_member_balance(self.pool_id, member, amount)

        self.tracker.store_record(settled_record)
        self.tracker.store_aggregate(settled_aggregate)

        receipt.amount = amount
        logger.info(
            f"Settled {amount} to {member} in pool {self.pool_id} "
            f"(epochs {previous}..{epoch - 1})"
        )
        return receipt
