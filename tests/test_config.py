"""
Tests for stakepool/config.py and stakepool/protocol/payout.py
"""

from pathlib import Path

import pytest

from stakepool.config import (
    DEFAULT_EPOCH_DURATION,
    DEFAULT_OPERATOR_SHARE_PPM,
    StakingConfig,
)
from stakepool.protocol.payout import InMemoryPayoutSink, PayoutSink


# ============================================================================
# CONFIG TESTS
# ============================================================================

class TestStakingConfig:
    """Tests for StakingConfig."""

    def test_defaults(self):
        config = StakingConfig()
        assert config.epoch_duration == DEFAULT_EPOCH_DURATION
        assert config.default_operator_share_ppm == DEFAULT_OPERATOR_SHARE_PPM
        assert config.enable_dht is False

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            StakingConfig(epoch_duration=0)
        with pytest.raises(ValueError):
            StakingConfig(default_operator_share_ppm=500_000)

    def test_from_env(self, monkeypatch, tmp_path):
        """Test reading settings from the environment."""
        monkeypatch.setenv("STAKEPOOL_EPOCH_DURATION", "60")
        monkeypatch.setenv("STAKEPOOL_OPERATOR_SHARE_PPM", "100000")
        monkeypatch.setenv("STAKEPOOL_STORAGE_DIR", str(tmp_path))
        monkeypatch.setenv("STAKEPOOL_ENABLE_DHT", "true")
        monkeypatch.setenv("STAKEPOOL_ANNOUNCE_INTERVAL", "5")

        config = StakingConfig.from_env()

        assert config.epoch_duration == 60
        assert config.default_operator_share_ppm == 100_000
        assert config.storage_dir == Path(tmp_path)
        assert config.enable_dht is True
        assert config.announce_interval == 5

    def test_from_env_invalid_values_keep_defaults(self, monkeypatch):
        """Test unparsable values are ignored."""
        monkeypatch.setenv("STAKEPOOL_EPOCH_DURATION", "soon")
        monkeypatch.setenv("STAKEPOOL_OPERATOR_SHARE_PPM", "999999")

        config = StakingConfig.from_env()

        assert config.epoch_duration == DEFAULT_EPOCH_DURATION
        assert config.default_operator_share_ppm == DEFAULT_OPERATOR_SHARE_PPM


# ============================================================================
# PAYOUT SINK TESTS
# ============================================================================

class TestInMemoryPayoutSink:
    """Tests for InMemoryPayoutSink."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryPayoutSink(), PayoutSink)

    def test_balances(self):
        sink = InMemoryPayoutSink()
        sink.transfer_member_balance("pool-a", "alice", 100)
        sink.transfer_member_balance("pool-b", "alice", 50)
        sink.transfer_member_balance("pool-a", "bob", 10)

        assert sink.balance_of("alice") == 150
        assert sink.balance_of("alice", pool_id="pool-a") == 100
        assert sink.pool_total("pool-a") == 110
        assert sink.total_paid == 160
        assert sink.transfer_count == 3

    def test_non_positive_transfer_rejected(self):
        sink = InMemoryPayoutSink()
        with pytest.raises(ValueError):
            sink.transfer_member_balance("pool-a", "alice", 0)
        assert sink.total_paid == 0
