"""
Tests for stakepool/protocol/epoch_creditor.py
"""

import pytest

from stakepool.protocol.delegation import DelegationTracker
from stakepool.protocol.epoch_creditor import EpochCreditor
from stakepool.protocol.errors import DuplicateEpochWriteError
from stakepool.protocol.ratio_ledger import RatioLedger, RatioSnapshot


def create_test_creditor():
    ledger = RatioLedger()
    tracker = DelegationTracker("pool-test")
    return EpochCreditor(ledger, tracker)


class TestEpochCreditor:
    """Tests for EpochCreditor.credit_reward."""

    def test_credit_writes_ratio(self):
        """Test a credit adds reward / active stake to the cumulative ratio."""
        creditor = create_test_creditor()
        creditor.tracker.delegate("alice", 100, epoch=1)

        result = creditor.credit_reward(1000, epoch=2)

        assert result.recorded
        assert result.total_stake == 100
        assert result.ratio == RatioSnapshot(10, 1)
        assert creditor.ledger.get(2) == RatioSnapshot(10, 1)
        assert creditor.tracker.aggregate.rewards_credited == 1000

    def test_credits_accumulate(self):
        creditor = create_test_creditor()
        creditor.tracker.delegate("alice", 100, epoch=1)
        creditor.credit_reward(1000, epoch=2)
        creditor.credit_reward(50, epoch=4)

        assert creditor.ledger.get(4) == RatioSnapshot(21, 2)
        assert creditor.ledger.ratio_at(3) == RatioSnapshot(10, 1)

    def test_stake_delegated_this_epoch_not_counted(self):
        """Test only stake active during the epoch shares its reward."""
        creditor = create_test_creditor()
        creditor.tracker.delegate("alice", 100, epoch=1)
        creditor.tracker.delegate("bob", 900, epoch=2)

        result = creditor.credit_reward(1000, epoch=2)

        assert result.total_stake == 100

    def test_zero_reward_writes_nothing(self):
        creditor = create_test_creditor()
        creditor.tracker.delegate("alice", 100, epoch=1)

        result = creditor.credit_reward(0, epoch=2)

        assert not result.recorded
        assert len(creditor.ledger) == 0

    def test_no_active_stake(self):
        """Test a credit with no active stake is counted as unallocated."""
        creditor = create_test_creditor()
        creditor.tracker.delegate("alice", 100, epoch=1)

        result = creditor.credit_reward(500, epoch=1)

        assert not result.recorded
        assert len(creditor.ledger) == 0
        assert creditor.tracker.aggregate.rewards_unallocated == 500
        assert creditor.tracker.aggregate.rewards_credited == 0

    def test_duplicate_credit_rejected(self):
        creditor = create_test_creditor()
        creditor.tracker.delegate("alice", 100, epoch=1)
        creditor.credit_reward(1000, epoch=2)

        with pytest.raises(DuplicateEpochWriteError):
            creditor.credit_reward(1000, epoch=2)
        assert creditor.tracker.aggregate.rewards_credited == 1000

    def test_negative_reward_rejected(self):
        creditor = create_test_creditor()
        with pytest.raises(ValueError):
            creditor.credit_reward(-5, epoch=1)

    def test_result_to_dict(self):
        creditor = create_test_creditor()
        creditor.tracker.delegate("alice", 3, epoch=1)
        data = creditor.credit_reward(1, epoch=2).to_dict()
        assert data['ratio'] == {'numerator': 1, 'denominator': 3}
        assert data['pool_id'] == "pool-test"
