"""
stakepool/protocol/epochs.py

Epoch clock and the background loop that closes epochs.

The accounting core never reads the clock itself; every operation is passed
the current epoch explicitly. The clock and driver live here so the manager
has a single, monotonic source for that number.
"""

import logging
from typing import TYPE_CHECKING, Optional

import trio

from ..config import DEFAULT_EPOCH_DURATION
from .errors import EpochRegressionError

if TYPE_CHECKING:
    from .manager import StakingPoolManager

logger = logging.getLogger("stakepool.protocol.epochs")


def epoch_from_timestamp(
    timestamp: float,
    genesis: float = 0,
    epoch_duration: float = DEFAULT_EPOCH_DURATION,
) -> int:
    """
    Calculate epoch number from a Unix timestamp.

    Args:
        timestamp: Unix timestamp
        genesis: Timestamp at which epoch 0 starts
        epoch_duration: Epoch length in seconds

    Returns:
        Epoch number (0 for timestamps before genesis)
    """
    if epoch_duration <= 0:
        raise ValueError(f"epoch_duration must be positive, got {epoch_duration}")
    if timestamp < genesis:
        return 0
    return int((timestamp - genesis) // epoch_duration)


class EpochClock:
    """Monotonic epoch counter."""

    def __init__(self, start_epoch: int = 0):
        if start_epoch < 0:
            raise ValueError(f"start_epoch must be non-negative, got {start_epoch}")
        self._epoch = start_epoch

    def current_epoch(self) -> int:
        return self._epoch

    def advance(self) -> int:
        """Move to the next epoch and return it."""
        self._epoch += 1
        logger.debug(f"Epoch advanced to {self._epoch}")
        return self._epoch

    def set_epoch(self, epoch: int) -> None:
        """
        Jump forward to `epoch`.

        Raises:
            EpochRegressionError: epoch is behind the current epoch
        """
        if epoch < self._epoch:
            raise EpochRegressionError(epoch, self._epoch)
        self._epoch = epoch


class EpochDriver:
    """
    Closes the manager's epoch on a fixed interval.

    Usage:
        driver = EpochDriver(manager, interval=config.epoch_duration)
        async with trio.open_nursery() as nursery:
            await nursery.start(driver.run)
            ...
            driver.stop()
    """

    def __init__(self, manager: "StakingPoolManager", interval: Optional[float] = None):
        self.manager = manager
        self.interval = interval if interval is not None else manager.config.epoch_duration
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}")
        self._cancel_scope: Optional[trio.CancelScope] = None
        self.epochs_closed = 0

    @property
    def is_running(self) -> bool:
        return self._cancel_scope is not None

    async def run(self, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """Run the epoch loop until stop() is called."""
        self._cancel_scope = trio.CancelScope()
        task_status.started()

        logger.info(f"Epoch driver started (interval {self.interval}s)")
        with self._cancel_scope:
            while True:
                await trio.sleep(self.interval)
                try:
                    self.manager.close_epoch()
                    self.epochs_closed += 1
                except Exception as e:
                    logger.error(f"Failed to close epoch {self.manager.current_epoch}: {e}")
        self._cancel_scope = None
        logger.info("Epoch driver stopped")

    def stop(self) -> None:
        """Cancel the running loop."""
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()
