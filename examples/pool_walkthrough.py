"""
stakepool/examples/pool_walkthrough.py

Example run of a staking pool through a few epochs.

This shows how an operator node uses stakepool to:
1. Create a pool and accept delegations
2. Accumulate rewards and close epochs on a timer
3. Let members withdraw their share
4. Persist the pool and expose metrics

Usage:
    python examples/pool_walkthrough.py
"""

import logging
import tempfile

import trio

from stakepool import AccountingStorage, PoolMetricsCollector, StakingConfig, StakingPoolManager
from stakepool.protocol import EpochDriver, RewardAnnouncer

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [POOL] %(levelname)s: %(message)s'
)
logger = logging.getLogger(__name__)


class PrintingPeers:
    """Stand-in for a P2P node: prints broadcasts instead of sending them."""

    async def broadcast(self, topic: str, message: dict) -> None:
        logger.info(f"broadcast {topic}: {message}")


async def main():
    config = StakingConfig(epoch_duration=1.0, announce_interval=0.5, storage_dir=tempfile.mkdtemp())
    manager = StakingPoolManager(config=config)
    metrics = PoolMetricsCollector(manager)
    announcer = RewardAnnouncer(PrintingPeers(), announce_interval=config.announce_interval)
    announcer.attach(manager)

    info = manager.create_pool("EOperatorAddress", operator_share_ppm=100_000)
    manager.delegate(info.pool_id, "EAlice", 2_000)
    manager.delegate(info.pool_id, "EBob", 1_000)

    driver = EpochDriver(manager)
    async with trio.open_nursery() as nursery:
        await nursery.start(driver.run)
        await nursery.start(announcer.run_announce_loop)

        for reward in (0, 1_110, 2_220):
            manager.add_pool_reward(info.pool_id, reward)
            await trio.sleep(config.epoch_duration)

        # Give the last epoch time to close
        await trio.sleep(config.epoch_duration)
        driver.stop()

        for member in ("EAlice", "EBob"):
            paid = manager.withdraw_rewards(info.pool_id, member)
            logger.info(f"{member} withdrew {paid}")

        await trio.sleep(config.announce_interval)
        announcer.stop()

    storage = AccountingStorage.from_config(config)
    await storage.save_pool(manager.get_pool(info.pool_id))
    logger.info(f"Saved pools: {await storage.list_pools()}")

    print(metrics.collect())


if __name__ == "__main__":
    trio.run(main)
