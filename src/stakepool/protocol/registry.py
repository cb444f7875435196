"""
stakepool/protocol/registry.py

Pool registry: which pools exist, who operates them and what share of each
epoch's reward the operator keeps.

Operator shares are in parts per million of the pool's reward. An operator
may lower their share at any time but never raise it, so members who joined
under one share are never charged more later.
"""

import time
import hashlib
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple

from ..config import DEFAULT_OPERATOR_SHARE_PPM, MAX_OPERATOR_SHARE_PPM, PPM_DENOMINATOR
from .errors import UnknownPoolError

logger = logging.getLogger("stakepool.protocol.registry")


@dataclass
class PoolInfo:
    """Registered pool."""
    pool_id: str
    operator: str
    operator_share_ppm: int
    created_epoch: int = 0
    created_at: int = field(default_factory=lambda: int(time.time()))

    @property
    def operator_share(self) -> float:
        """Operator share as a fraction (display only)."""
        return self.operator_share_ppm / PPM_DENOMINATOR

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PoolInfo":
        return cls(
            pool_id=data["pool_id"],
            operator=data["operator"],
            operator_share_ppm=int(data.get("operator_share_ppm", DEFAULT_OPERATOR_SHARE_PPM)),
            created_epoch=int(data.get("created_epoch", 0)),
            created_at=int(data.get("created_at", 0)),
        )


class PoolRegistry:
    """
    Registry of pools and their operator shares.

    Usage:
        registry = PoolRegistry()
        info = registry.create_pool("operator-addr", operator_share_ppm=100_000)

        operator_reward, member_reward = registry.split_reward(info.pool_id, 1000)
        # (100, 900)
    """

    def __init__(self, default_share_ppm: int = DEFAULT_OPERATOR_SHARE_PPM):
        """
        Initialize PoolRegistry.

        Args:
            default_share_ppm: Operator share for pools created without one
                (capped at MAX_OPERATOR_SHARE_PPM)
        """
        self.default_share_ppm = min(max(default_share_ppm, 0), MAX_OPERATOR_SHARE_PPM)
        self._pools: Dict[str, PoolInfo] = {}
        self._created_count = 0

    def _make_pool_id(self, operator: str) -> str:
        seed = f"{operator}:{self._created_count}"
        return hashlib.sha256(seed.encode()).hexdigest()[:16]

    def create_pool(
        self,
        operator: str,
        operator_share_ppm: Optional[int] = None,
        created_epoch: int = 0,
    ) -> PoolInfo:
        """
        Register a new pool.

        Args:
            operator: Operator address
            operator_share_ppm: Operator share, default if None
            created_epoch: Epoch the pool starts accounting from

        Returns:
            PoolInfo for the new pool

        Raises:
            ValueError: share outside 0..MAX_OPERATOR_SHARE_PPM
        """
        share = self.default_share_ppm if operator_share_ppm is None else operator_share_ppm
        if share < 0 or share > MAX_OPERATOR_SHARE_PPM:
            raise ValueError(f"Operator share {share} ppm must be 0-{MAX_OPERATOR_SHARE_PPM}")

        pool_id = self._make_pool_id(operator)
        while pool_id in self._pools:
            self._created_count += 1
            pool_id = self._make_pool_id(operator)
        self._created_count += 1

        info = PoolInfo(
            pool_id=pool_id,
            operator=operator,
            operator_share_ppm=share,
            created_epoch=created_epoch,
        )
        self._pools[pool_id] = info
        logger.info(f"Created pool {pool_id} for operator {operator} (share {share} ppm)")
        return info

    def register(self, info: PoolInfo) -> None:
        """Add an existing pool (e.g. restored from storage)."""
        self._pools[info.pool_id] = info

    def get_pool(self, pool_id: str) -> PoolInfo:
        """
        Raises:
            UnknownPoolError: pool_id is not registered
        """
        info = self._pools.get(pool_id)
        if info is None:
            raise UnknownPoolError(pool_id)
        return info

    def is_valid_pool(self, pool_id: str) -> bool:
        return pool_id in self._pools

    def list_pools(self) -> List[PoolInfo]:
        return list(self._pools.values())

    def pools_for_operator(self, operator: str) -> List[PoolInfo]:
        return [info for info in self._pools.values() if info.operator == operator]

    def __len__(self) -> int:
        return len(self._pools)

    def set_operator_share(self, pool_id: str, share_ppm: int) -> bool:
        """
        Lower a pool's operator share.

        Returns:
            True if changed, False if the new share was rejected
        """
        info = self.get_pool(pool_id)
        if share_ppm < 0 or share_ppm > MAX_OPERATOR_SHARE_PPM:
            logger.warning(f"Invalid operator share {share_ppm} ppm, must be 0-{MAX_OPERATOR_SHARE_PPM}")
            return False
        if share_ppm > info.operator_share_ppm:
            logger.warning(
                f"Operator share for pool {pool_id} can only decrease "
                f"({info.operator_share_ppm} -> {share_ppm} ppm rejected)"
            )
            return False

        info.operator_share_ppm = share_ppm
        logger.info(f"Operator share for pool {pool_id} set to {share_ppm} ppm")
        return True

    def get_operator_share(self, pool_id: str) -> int:
        return self.get_pool(pool_id).operator_share_ppm

    def split_reward(self, pool_id: str, amount: int) -> Tuple[int, int]:
        """
        Split a pool reward between operator and members.

        The operator part is rounded down; the members get the remainder,
        so the two parts always add up to `amount`.

        Returns:
            (operator_reward, member_reward)
        """
        if amount < 0:
            raise ValueError(f"Reward must be non-negative, got {amount}")
        share = self.get_pool(pool_id).operator_share_ppm
        operator_reward = amount * share // PPM_DENOMINATOR
        return operator_reward, amount - operator_reward

    def to_dict(self) -> dict:
        return {
            "default_share_ppm": self.default_share_ppm,
            "created_count": self._created_count,
            "pools": [info.to_dict() for info in self._pools.values()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PoolRegistry":
        registry = cls(default_share_ppm=int(data.get("default_share_ppm", DEFAULT_OPERATOR_SHARE_PPM)))
        registry._created_count = int(data.get("created_count", 0))
        for info_data in data.get("pools", []):
            registry.register(PoolInfo.from_dict(info_data))
        return registry
