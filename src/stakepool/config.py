"""
stakepool/config.py

Configuration constants and data classes for stakepool.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("stakepool.config")


# Operator share is expressed in parts-per-million of a pool's reward
PPM_DENOMINATOR = 1_000_000

# Default operator share (15%), the pool operator keeps this before members
DEFAULT_OPERATOR_SHARE_PPM = 150_000

# Maximum operator share allowed (30%)
MAX_OPERATOR_SHARE_PPM = 300_000

# One epoch per day, aligned with the reward round cadence
DEFAULT_EPOCH_DURATION = 24 * 60 * 60

# Announcement flush interval (seconds)
DEFAULT_ANNOUNCE_INTERVAL = 30.0

# Announcements kept while peers are unreachable; oldest are dropped first
MAX_QUEUED_ANNOUNCEMENTS = 1000

# PubSub topics
REWARD_CREDITED_TOPIC = "stakepool/epochs/credited"
SETTLEMENT_TOPIC = "stakepool/settlements"

# Storage key prefixes for the three logical tables
RATIO_KEY_PREFIX = "ratio:"
MEMBER_KEY_PREFIX = "member:"
POOL_KEY_PREFIX = "pool:"

# DHT namespace for mirrored accounting rows
DHT_ACCOUNTING_PREFIX = "stakepool:accounting:"

# Default storage paths
DEFAULT_STORAGE_DIR = Path.home() / ".stakepool" / "storage"


@dataclass
class StakingConfig:
    """
    Runtime settings for a StakingPoolManager and its helpers.

    Usage:
        config = StakingConfig.from_env()
        manager = StakingPoolManager(config=config)
    """
    epoch_duration: float = DEFAULT_EPOCH_DURATION
    default_operator_share_ppm: int = DEFAULT_OPERATOR_SHARE_PPM
    storage_dir: Path = field(default_factory=lambda: DEFAULT_STORAGE_DIR)
    enable_dht: bool = False
    announce_interval: float = DEFAULT_ANNOUNCE_INTERVAL

    def __post_init__(self):
        if self.epoch_duration <= 0:
            raise ValueError(f"epoch_duration must be positive, got {self.epoch_duration}")
        if not 0 <= self.default_operator_share_ppm <= MAX_OPERATOR_SHARE_PPM:
            raise ValueError(
                f"default_operator_share_ppm must be 0-{MAX_OPERATOR_SHARE_PPM}, "
                f"got {self.default_operator_share_ppm}"
            )
        self.storage_dir = Path(self.storage_dir)

    @classmethod
    def from_env(cls) -> "StakingConfig":
        """
        Build a config from STAKEPOOL_* environment variables.

        Unparsable values are logged and the default is kept.
        """
        config = cls()

        epoch_duration = os.environ.get("STAKEPOOL_EPOCH_DURATION")
        if epoch_duration:
            try:
                value = float(epoch_duration)
                if value <= 0:
                    raise ValueError("must be positive")
                config.epoch_duration = value
            except ValueError as e:
                logger.warning(f"Invalid STAKEPOOL_EPOCH_DURATION {epoch_duration!r}: {e}")

        share = os.environ.get("STAKEPOOL_OPERATOR_SHARE_PPM")
        if share:
            try:
                value = int(share)
                if not 0 <= value <= MAX_OPERATOR_SHARE_PPM:
                    raise ValueError(f"must be 0-{MAX_OPERATOR_SHARE_PPM}")
                config.default_operator_share_ppm = value
            except ValueError as e:
                logger.warning(f"Invalid STAKEPOOL_OPERATOR_SHARE_PPM {share!r}: {e}")

        storage_dir = os.environ.get("STAKEPOOL_STORAGE_DIR")
        if storage_dir:
            config.storage_dir = Path(storage_dir)

        enable_dht = os.environ.get("STAKEPOOL_ENABLE_DHT")
        if enable_dht:
            config.enable_dht = enable_dht.strip().lower() in ("1", "true", "yes", "on")

        interval = os.environ.get("STAKEPOOL_ANNOUNCE_INTERVAL")
        if interval:
            try:
                config.announce_interval = float(interval)
            except ValueError as e:
                logger.warning(f"Invalid STAKEPOOL_ANNOUNCE_INTERVAL {interval!r}: {e}")

        return config
