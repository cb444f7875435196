"""
stakepool - Reward accounting for delegated staking pools

Members delegate stake to a pool; each epoch's reward is recorded as a
cumulative reward-per-stake ratio, and every member's share is computed
lazily from that ratio when they settle.

Usage:
    from stakepool import StakingPoolManager

    manager = StakingPoolManager()
    info = manager.create_pool("operator-addr")

    manager.delegate(info.pool_id, "alice", 100)
    manager.close_epoch()

    manager.add_pool_reward(info.pool_id, 1000)
    manager.close_epoch()

    manager.withdraw_rewards(info.pool_id, "alice")

Background loops (trio):
    from stakepool.protocol import EpochDriver, RewardAnnouncer

    async with trio.open_nursery() as nursery:
        await nursery.start(EpochDriver(manager).run)
        await nursery.start(announcer.run_announce_loop)

Metrics Usage:
    from stakepool.metrics import PoolMetricsCollector

    metrics = PoolMetricsCollector(manager)
    prometheus_output = metrics.collect()
"""

from .config import StakingConfig
from .protocol.pool import StakingPool
from .protocol.manager import StakingPoolManager
from .protocol.payout import PayoutSink, InMemoryPayoutSink
from .protocol.registry import PoolRegistry, PoolInfo
from .protocol.storage import AccountingStorage
from .metrics import PoolMetricsCollector

__version__ = "0.1.0"

__all__ = [
    "StakingConfig",
    "StakingPool",
    "StakingPoolManager",
    "PayoutSink",
    "InMemoryPayoutSink",
    "PoolRegistry",
    "PoolInfo",
    "AccountingStorage",
    "PoolMetricsCollector",
]
