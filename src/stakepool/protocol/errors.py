"""
stakepool/protocol/errors.py

Exceptions raised by the reward accounting core.
"""


class StakingError(Exception):
    """Base class for reward accounting errors."""
    pass


class InsufficientStakeError(StakingError):
    """Undelegation amount exceeds the member's delegated stake."""

    def __init__(self, pool_id: str, member: str, requested: int, available: int):
        self.pool_id = pool_id
        self.member = member
        self.requested = requested
        self.available = available
        super().__init__(
            f"{member} cannot undelegate {requested} from pool {pool_id}: "
            f"only {available} delegated"
        )


class DuplicateEpochWriteError(StakingError):
    """A cumulative ratio was already recorded for this epoch."""

    def __init__(self, epoch: int):
        self.epoch = epoch
        super().__init__(f"Cumulative ratio for epoch {epoch} is already recorded")


class UnresolvedEpochGapError(StakingError):
    """A ratio lookup has no stored or carried-forward value."""

    def __init__(self, epoch: int, origin_epoch: int):
        self.epoch = epoch
        self.origin_epoch = origin_epoch
        super().__init__(
            f"No cumulative ratio resolvable for epoch {epoch} "
            f"(ledger starts at epoch {origin_epoch})"
        )


class EpochRegressionError(StakingError):
    """An operation referenced an epoch older than one already observed."""

    def __init__(self, epoch: int, latest_epoch: int):
        self.epoch = epoch
        self.latest_epoch = latest_epoch
        super().__init__(f"Epoch {epoch} is behind latest observed epoch {latest_epoch}")


class UnknownPoolError(StakingError):
    """No pool is registered under this id."""

    def __init__(self, pool_id: str):
        self.pool_id = pool_id
        super().__init__(f"Unknown pool: {pool_id}")


class StorageError(StakingError):
    """A storage backend failed to persist accounting state."""
    pass
