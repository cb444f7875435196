"""
stakepool/protocol/

Reward accounting for delegated staking pools.
"""

from .errors import (
    StakingError,
    InsufficientStakeError,
    DuplicateEpochWriteError,
    UnresolvedEpochGapError,
    EpochRegressionError,
    UnknownPoolError,
    StorageError,
)
from .ratio_ledger import RatioLedger, RatioSnapshot, scale_difference
from .delegation import DelegationTracker, MemberStakeRecord, PoolAggregate
from .rewards import RewardAccountant, RewardBreakdown, SettlementReceipt
from .epoch_creditor import EpochCreditor, CreditResult
from .payout import PayoutSink, InMemoryPayoutSink
from .pool import StakingPool
from .registry import PoolRegistry, PoolInfo
from .epochs import EpochClock, EpochDriver, epoch_from_timestamp
from .manager import StakingPoolManager
from .announcements import RewardAnnouncer
from .storage import (
    AccountingStorage,
    StorageBackend,
    MemoryBackend,
    FileBackend,
    DHTBackend,
)

__all__ = [
    # Errors
    "StakingError",
    "InsufficientStakeError",
    "DuplicateEpochWriteError",
    "UnresolvedEpochGapError",
    "EpochRegressionError",
    "UnknownPoolError",
    "StorageError",
    # Core accounting
    "RatioLedger",
    "RatioSnapshot",
    "scale_difference",
    "DelegationTracker",
    "MemberStakeRecord",
    "PoolAggregate",
    "RewardAccountant",
    "RewardBreakdown",
    "SettlementReceipt",
    "EpochCreditor",
    "CreditResult",
    "PayoutSink",
    "InMemoryPayoutSink",
    "StakingPool",
    # Pools and epochs
    "PoolRegistry",
    "PoolInfo",
    "EpochClock",
    "EpochDriver",
    "epoch_from_timestamp",
    "StakingPoolManager",
    # Network and persistence
    "RewardAnnouncer",
    "AccountingStorage",
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "DHTBackend",
]
