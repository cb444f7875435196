"""
Tests for stakepool/protocol/manager.py
"""

import pytest
from unittest.mock import Mock

from stakepool.protocol.epochs import EpochClock
from stakepool.protocol.errors import DuplicateEpochWriteError, UnknownPoolError
from stakepool.protocol.manager import StakingPoolManager
from stakepool.protocol.payout import InMemoryPayoutSink
from stakepool.protocol.pool import StakingPool


# ============================================================================
# TEST DATA
# ============================================================================

def create_test_manager(share_ppm: int = 150_000):
    """Create a manager with one pool and an in-memory sink."""
    sink = InMemoryPayoutSink()
    manager = StakingPoolManager(payout_sink=sink)
    info = manager.create_pool("EOperator1", operator_share_ppm=share_ppm)
    return manager, sink, info.pool_id


# ============================================================================
# POOL MANAGEMENT TESTS
# ============================================================================

class TestPoolManagement:
    """Tests for creating and looking up pools."""

    def test_create_pool(self):
        manager, sink, pool_id = create_test_manager()
        pool = manager.get_pool(pool_id)
        assert isinstance(pool, StakingPool)
        assert pool.origin_epoch == 0
        assert len(manager) == 1

    def test_pool_created_later_starts_at_current_epoch(self):
        manager = StakingPoolManager(clock=EpochClock(start_epoch=7))
        info = manager.create_pool("EOperator2")
        assert info.created_epoch == 7
        assert manager.get_pool(info.pool_id).origin_epoch == 7

    def test_unknown_pool(self):
        manager = StakingPoolManager()
        with pytest.raises(UnknownPoolError):
            manager.delegate("missing", "alice", 10)
        with pytest.raises(UnknownPoolError):
            manager.add_pool_reward("missing", 10)

    def test_add_pool_requires_registration(self):
        manager = StakingPoolManager()
        with pytest.raises(UnknownPoolError):
            manager.add_pool(StakingPool("unregistered", payout_sink=manager.payout_sink))


# ============================================================================
# EPOCH CLOSE TESTS
# ============================================================================

class TestCloseEpoch:
    """Tests for reward accumulation and close_epoch."""

    def test_operator_share_split(self):
        """Test the operator is paid its share and members the rest."""
        manager, sink, pool_id = create_test_manager()
        manager.delegate(pool_id, "alice", 100)
        manager.close_epoch()

        manager.add_pool_reward(pool_id, 600)
        manager.add_pool_reward(pool_id, 400)
        results = manager.close_epoch()

        assert len(results) == 1
        assert results[0].reward == 850
        assert sink.balance_of("EOperator1") == 150
        assert manager.operator_paid(pool_id) == 150
        assert manager.withdraw_rewards(pool_id, "alice") == 850

    def test_operator_takes_all_without_stake(self):
        """Test no member reward is credited when no stake is active."""
        manager, sink, pool_id = create_test_manager()
        manager.delegate(pool_id, "alice", 100)
        manager.add_pool_reward(pool_id, 1000)

        results = manager.close_epoch()

        assert not results[0].recorded
        assert sink.balance_of("EOperator1") == 1000
        assert manager.get_pool(pool_id).aggregate.rewards_unallocated == 0

    def test_close_advances_clock(self):
        manager, sink, pool_id = create_test_manager()
        assert manager.close_epoch() == []
        assert manager.current_epoch == 1
        assert manager.pending_reward(pool_id) == 0

    def test_failed_operator_payout_can_be_retried(self):
        """Test a failed close leaves the epoch open and the reward pending."""
        sink = Mock()
        sink.transfer_member_balance.side_effect = [RuntimeError("offline"), None]
        manager = StakingPoolManager(payout_sink=sink)
        pool_id = manager.create_pool("EOperator1").pool_id
        manager.delegate(pool_id, "alice", 100)
        manager.close_epoch()
        manager.add_pool_reward(pool_id, 1000)

        with pytest.raises(RuntimeError):
            manager.close_epoch()

        assert manager.current_epoch == 1
        assert manager.pending_reward(pool_id) == 1000

        results = manager.close_epoch()
        assert results[0].recorded
        assert manager.current_epoch == 2

    def test_failed_credit_does_not_repay_operator(self):
        """Test retrying a close after a failed credit pays the operator once."""
        manager, sink, pool_id = create_test_manager(share_ppm=100_000)
        manager.delegate(pool_id, "alice", 100)
        manager.close_epoch()
        manager.add_pool_reward(pool_id, 1000)
        # Occupy the epoch's ratio slot so the manager's credit is rejected
        manager.get_pool(pool_id).credit_reward(5, manager.current_epoch)

        for _ in range(3):
            with pytest.raises(DuplicateEpochWriteError):
                manager.close_epoch()

        assert sink.balance_of("EOperator1") == 100
        assert manager.operator_paid(pool_id) == 100
        assert manager.pending_reward(pool_id) == 1000
        assert manager.current_epoch == 1

    def test_reward_added_between_retries_is_split(self):
        sink = Mock()
        sink.transfer_member_balance.side_effect = [None, RuntimeError("offline")]
        manager = StakingPoolManager(payout_sink=sink)
        pool_id = manager.create_pool("EOperator1", operator_share_ppm=100_000).pool_id
        manager.delegate(pool_id, "alice", 100)
        manager.close_epoch()
        manager.add_pool_reward(pool_id, 1000)
        manager.get_pool(pool_id).credit_reward(5, manager.current_epoch)

        with pytest.raises(DuplicateEpochWriteError):
            manager.close_epoch()
        manager.add_pool_reward(pool_id, 500)
        with pytest.raises(RuntimeError):
            manager.close_epoch()

        sink.transfer_member_balance.assert_called_with(pool_id, "EOperator1", 50)
        assert manager.operator_paid(pool_id) == 100
        assert manager.pending_reward(pool_id) == 1500

    def test_zero_reward_close(self):
        manager, sink, pool_id = create_test_manager()
        manager.add_pool_reward(pool_id, 0)

        results = manager.close_epoch()

        assert not results[0].recorded
        assert manager.pending_reward(pool_id) == 0

    def test_negative_reward_rejected(self):
        manager, sink, pool_id = create_test_manager()
        with pytest.raises(ValueError):
            manager.add_pool_reward(pool_id, -1)


# ============================================================================
# MEMBER OPERATION TESTS
# ============================================================================

class TestMemberOperations:
    """Tests for member operations stamped with the clock."""

    def test_delegate_undelegate(self):
        manager, sink, pool_id = create_test_manager()
        assert manager.delegate(pool_id, "alice", 100) == 100
        assert manager.undelegate(pool_id, "alice", 30) == 70
        assert manager.stake_of(pool_id, "alice") == 70
        assert manager.total_delegated_stake(pool_id) == 0

        manager.close_epoch()
        assert manager.total_delegated_stake(pool_id) == 70

    def test_rewards_across_epochs(self):
        manager, sink, pool_id = create_test_manager(share_ppm=0)
        manager.delegate(pool_id, "alice", 300)
        manager.delegate(pool_id, "bob", 100)
        manager.close_epoch()

        manager.add_pool_reward(pool_id, 400)
        manager.close_epoch()

        assert manager.compute_unsettled_reward(pool_id, "alice") == 300
        assert manager.compute_unsettled_reward(pool_id, "bob") == 100


# ============================================================================
# CALLBACK TESTS
# ============================================================================

class TestCallbacks:
    """Tests for manager callbacks."""

    def test_reward_credited_callback(self):
        manager, sink, pool_id = create_test_manager()
        callback = Mock()
        manager.on_reward_credited(callback)
        manager.delegate(pool_id, "alice", 100)
        manager.close_epoch()
        manager.add_pool_reward(pool_id, 100)

        manager.close_epoch()

        callback.assert_called_once()
        assert callback.call_args[0][0].pool_id == pool_id

    def test_settlement_callback_includes_implicit_settlements(self):
        manager, sink, pool_id = create_test_manager(share_ppm=0)
        callback = Mock()
        manager.on_settlement(callback)
        manager.delegate(pool_id, "alice", 100)
        manager.close_epoch()
        manager.add_pool_reward(pool_id, 100)
        manager.close_epoch()

        manager.undelegate(pool_id, "alice", 100)

        callback.assert_called_once()
        assert callback.call_args[0][0].amount == 100

    def test_callback_error_does_not_break_accounting(self):
        manager, sink, pool_id = create_test_manager(share_ppm=0)
        manager.on_reward_credited(Mock(side_effect=RuntimeError("boom")))
        manager.delegate(pool_id, "alice", 100)
        manager.close_epoch()
        manager.add_pool_reward(pool_id, 100)

        manager.close_epoch()

        assert manager.withdraw_rewards(pool_id, "alice") == 100


# ============================================================================
# STATISTICS TESTS
# ============================================================================

class TestStats:
    """Tests for get_stats."""

    def test_get_stats(self):
        manager, sink, pool_id = create_test_manager()
        manager.delegate(pool_id, "alice", 100)
        manager.close_epoch()
        manager.add_pool_reward(pool_id, 1000)
        manager.close_epoch()
        manager.withdraw_rewards(pool_id, "alice")

        stats = manager.get_stats()

        assert stats['current_epoch'] == 2
        assert stats['pool_count'] == 1
        pool_stats = stats['pools'][pool_id]
        assert pool_stats['members'] == 1
        assert pool_stats['total_delegated_stake'] == 100
        assert pool_stats['rewards_credited'] == 850
        assert pool_stats['rewards_paid'] == 850
        assert pool_stats['reward_balance'] == 0
        assert pool_stats['operator_paid'] == 150
