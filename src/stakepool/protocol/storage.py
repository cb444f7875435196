"""
stakepool/protocol/storage.py

Persistence for pool accounting state.

Three logical tables are kept under one key space:
- ratio:{pool_id}:{epoch}   -> RatioSnapshot (write-once)
- member:{pool_id}:{member} -> MemberStakeRecord
- pool:{pool_id}            -> PoolAggregate, ledger origin, last observed
                               epoch and the index of the other two tables

Rows are written to a local backend (memory or disk) and, when enabled,
queued for mirroring to the DHT. Reads fall back to the DHT if a row is
missing locally, which lets a node rebuild a pool from the network.
"""

import json
import time
import logging
import hashlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import (
    DEFAULT_STORAGE_DIR,
    DHT_ACCOUNTING_PREFIX,
    MEMBER_KEY_PREFIX,
    POOL_KEY_PREFIX,
    RATIO_KEY_PREFIX,
    StakingConfig,
)
from .delegation import MemberStakeRecord
from .errors import DuplicateEpochWriteError, StorageError, UnknownPoolError
from .payout import PayoutSink
from .pool import StakingPool
from .ratio_ledger import RatioSnapshot

logger = logging.getLogger("stakepool.protocol.storage")


def ratio_key(pool_id: str, epoch: int) -> str:
    return f"{RATIO_KEY_PREFIX}{pool_id}:{epoch}"


def member_key(pool_id: str, member: str) -> str:
    return f"{MEMBER_KEY_PREFIX}{pool_id}:{member}"


def pool_key(pool_id: str) -> str:
    return f"{POOL_KEY_PREFIX}{pool_id}"


def _encode(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, sort_keys=True).encode()


def _decode(data: bytes) -> Dict[str, Any]:
    return json.loads(data.decode())


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StorageBackend(ABC):
    """Abstract base class for key/value backends."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def put(self, key: str, value: bytes) -> bool:
        """Store a value; False if it could not be written."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value."""
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """List keys with optional prefix filter."""
        pass


class MemoryBackend(StorageBackend):
    """In-memory backend."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> bool:
        self._data[key] = value
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._data if key.startswith(prefix)]


class FileBackend(StorageBackend):
    """
    One file per key under a directory.

    File names are hashes of the keys (member addresses may contain any
    character); metadata.json maps keys back to their files.
    """

    def __init__(self, storage_dir: Optional[Path] = None):
        self.storage_dir = Path(storage_dir) if storage_dir else DEFAULT_STORAGE_DIR
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._metadata_file = self.storage_dir / "metadata.json"
        self._metadata: Dict[str, dict] = self._load_metadata()

    def _load_metadata(self) -> Dict[str, dict]:
        if not self._metadata_file.exists():
            return {}
        try:
            with open(self._metadata_file, "r") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load storage metadata from {self._metadata_file}: {e}")
            return {}

    def _save_metadata(self) -> None:
        with open(self._metadata_file, "w") as f:
            json.dump(self._metadata, f)

    def _key_to_path(self, key: str) -> Path:
        hash_name = hashlib.sha256(key.encode()).hexdigest()[:32]
        return self.storage_dir / f"{hash_name}.json"

    async def get(self, key: str) -> Optional[bytes]:
        if key not in self._metadata:
            return None
        path = self._key_to_path(key)
        try:
            return path.read_bytes()
        except OSError as e:
            logger.error(f"Failed to read {key}: {e}")
            return None

    async def put(self, key: str, value: bytes) -> bool:
        path = self._key_to_path(key)
        try:
            path.write_bytes(value)
            self._metadata[key] = {
                "file": path.name,
                "updated_at": int(time.time()),
            }
            self._save_metadata()
            return True
        except OSError as e:
            logger.error(f"Failed to write {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        if key not in self._metadata:
            return False
        path = self._key_to_path(key)
        try:
            if path.exists():
                path.unlink()
            del self._metadata[key]
            self._save_metadata()
            return True
        except OSError as e:
            logger.error(f"Failed to delete {key}: {e}")
            return False

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [key for key in self._metadata if key.startswith(prefix)]


class DHTBackend(StorageBackend):
    """Backend over the P2P DHT (`peers.get_dht` / `peers.put_dht`)."""

    def __init__(self, peers=None):
        self._peers = peers

    def set_peers(self, peers) -> None:
        self._peers = peers

    def _dht_key(self, key: str) -> str:
        return f"{DHT_ACCOUNTING_PREFIX}{key}"

    async def get(self, key: str) -> Optional[bytes]:
        if not self._peers:
            return None
        try:
            data = await self._peers.get_dht(self._dht_key(key))
        except Exception as e:
            logger.debug(f"DHT get failed for {key}: {e}")
            return None
        if not data:
            return None
        return data if isinstance(data, bytes) else data.encode()

    async def put(self, key: str, value: bytes) -> bool:
        if not self._peers:
            return False
        try:
            await self._peers.put_dht(self._dht_key(key), value)
            return True
        except Exception as e:
            logger.debug(f"DHT put failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        # DHT entries are never deleted, only superseded
        return False

    async def list_keys(self, prefix: str = "") -> List[str]:
        # DHT doesn't support key listing
        return []


# ============================================================================
# ACCOUNTING STORAGE
# ============================================================================

class AccountingStorage:
    """
    Saves and restores StakingPools.

    Usage:
        storage = AccountingStorage.from_config(config, peers=peers)
        await storage.save_pool(pool)

        pool = await storage.load_pool(pool_id, payout_sink)
        await storage.sync_to_dht()
    """

    def __init__(
        self,
        backend: Optional[StorageBackend] = None,
        peers=None,
        enable_dht: bool = False,
    ):
        """
        Initialize AccountingStorage.

        Args:
            backend: Local backend (in-memory if None)
            peers: P2P peers instance for DHT mirroring
            enable_dht: Whether to mirror rows to the DHT
        """
        self._backend = backend or MemoryBackend()
        self._dht = DHTBackend(peers) if enable_dht else None
        self._pending_dht_sync: Dict[str, bytes] = {}
        self._last_sync = 0.0

    @classmethod
    def from_config(cls, config: StakingConfig, peers=None) -> "AccountingStorage":
        """Disk-backed storage in config.storage_dir."""
        return cls(
            backend=FileBackend(config.storage_dir),
            peers=peers,
            enable_dht=config.enable_dht,
        )

    def set_peers(self, peers) -> None:
        if self._dht:
            self._dht.set_peers(peers)

    async def _get(self, key: str) -> Optional[Dict[str, Any]]:
        data = await self._backend.get(key)
        if data is None and self._dht:
            data = await self._dht.get(key)
            if data is not None:
                await self._backend.put(key, data)
        return _decode(data) if data is not None else None

    async def _put(self, key: str, row: Dict[str, Any]) -> None:
        data = _encode(row)
        if not await self._backend.put(key, data):
            raise StorageError(f"Failed to store {key}")
        if self._dht:
            self._pending_dht_sync[key] = data

    # ========================================================================
    # POOLS
    # ========================================================================

    async def save_pool(self, pool: StakingPool) -> int:
        """
        Persist a pool's full accounting state.

        Ratio rows already stored are left alone; a stored row that differs
        from the pool's ledger is refused.

        Returns:
            Number of rows written

        Raises:
            DuplicateEpochWriteError: a stored ratio row conflicts with the ledger
            StorageError: the local backend refused a write
        """
        written = 0
        ratio_epochs = []
        for epoch, ratio in pool.ledger.items():
            ratio_epochs.append(epoch)
            key = ratio_key(pool.pool_id, epoch)
            stored = await self._backend.get(key)
            if stored is not None:
                if RatioSnapshot.from_dict(_decode(stored)) != ratio:
                    raise DuplicateEpochWriteError(epoch)
                continue
            await self._put(key, ratio.to_dict())
            written += 1

        members = []
        for record in pool.tracker.records():
            members.append(record.member)
            await self._put(member_key(pool.pool_id, record.member), record.to_dict())
            written += 1

        await self._put(pool_key(pool.pool_id), {
            "pool_id": pool.pool_id,
            "origin_epoch": pool.origin_epoch,
            "last_epoch": pool.last_epoch,
            "aggregate": pool.aggregate.to_dict(),
            "ratio_epochs": ratio_epochs,
            "members": members,
        })
        written += 1

        logger.debug(f"Saved pool {pool.pool_id} ({written} rows written)")
        return written

    async def load_pool(self, pool_id: str, payout_sink: PayoutSink) -> StakingPool:
        """
        Restore a pool.

        Raises:
            UnknownPoolError: no pool row stored (locally or in the DHT)
            StorageError: an indexed row is missing
        """
        row = await self._get(pool_key(pool_id))
        if row is None:
            raise UnknownPoolError(pool_id)

        snapshots = {}
        for epoch in row.get("ratio_epochs", []):
            ratio = await self._get(ratio_key(pool_id, epoch))
            if ratio is None:
                raise StorageError(f"Missing ratio row for pool {pool_id} epoch {epoch}")
            snapshots[str(epoch)] = ratio

        members = []
        for member in row.get("members", []):
            record = await self._get(member_key(pool_id, member))
            if record is None:
                raise StorageError(f"Missing member row for {member} in pool {pool_id}")
            members.append(MemberStakeRecord.from_dict(record).to_dict())

        pool = StakingPool.from_dict({
            "pool_id": pool_id,
            "origin_epoch": row.get("origin_epoch", 0),
            "last_epoch": row.get("last_epoch", 0),
            "ledger": {"origin_epoch": row.get("origin_epoch", 0), "snapshots": snapshots},
            "aggregate": row.get("aggregate", {"pool_id": pool_id}),
            "members": members,
        }, payout_sink)
        logger.info(f"Loaded pool {pool_id} ({len(snapshots)} ratios, {len(members)} members)")
        return pool

    async def list_pools(self) -> List[str]:
        """Pool ids stored in the local backend."""
        keys = await self._backend.list_keys(POOL_KEY_PREFIX)
        return sorted(key[len(POOL_KEY_PREFIX):] for key in keys)

    async def get_ratio(self, pool_id: str, epoch: int) -> Optional[RatioSnapshot]:
        row = await self._get(ratio_key(pool_id, epoch))
        return RatioSnapshot.from_dict(row) if row is not None else None

    async def get_member_record(self, pool_id: str, member: str) -> Optional[MemberStakeRecord]:
        row = await self._get(member_key(pool_id, member))
        return MemberStakeRecord.from_dict(row) if row is not None else None

    # ========================================================================
    # DHT MIRRORING
    # ========================================================================

    async def sync_to_dht(self) -> int:
        """
        Push queued rows to the DHT.

        Rows that fail stay queued for the next call.

        Returns:
            Number of rows synced
        """
        if not self._dht or not self._pending_dht_sync:
            return 0

        synced = 0
        for key, data in list(self._pending_dht_sync.items()):
            if await self._dht.put(key, data):
                del self._pending_dht_sync[key]
                synced += 1

        if synced:
            logger.debug(f"Synced {synced} accounting rows to DHT")
        self._last_sync = time.time()
        return synced

    def get_pending_sync_count(self) -> int:
        return len(self._pending_dht_sync)

    def get_stats(self) -> dict:
        return {
            "backend": type(self._backend).__name__,
            "dht_enabled": self._dht is not None,
            "pending_dht_sync": len(self._pending_dht_sync),
            "last_sync": self._last_sync,
        }
