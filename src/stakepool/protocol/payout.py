"""
stakepool/protocol/payout.py

Payout sink: where settled rewards leave the accounting core.

The core only requires transfer_member_balance to be all-or-nothing and to
never call back into the pool that invoked it.
"""

import logging
from collections import defaultdict
from typing import Dict, Protocol, Tuple, runtime_checkable

logger = logging.getLogger("stakepool.protocol.payout")


@runtime_checkable
class PayoutSink(Protocol):
    """Receives settled member balances."""

    def transfer_member_balance(self, pool_id: str, member: str, amount: int) -> None:
        """Credit `amount` to `member` on behalf of `pool_id`; raise on failure."""
        ...


class InMemoryPayoutSink:
    """
    Balance-holding ledger kept in memory.

    Usage:
        sink = InMemoryPayoutSink()
        pool = StakingPool("pool-1", payout_sink=sink)
        ...
        sink.balance_of("alice")
    """

    def __init__(self):
        self._balances: Dict[Tuple[str, str], int] = defaultdict(int)  # (pool, member) -> amount
        self._total_paid = 0
        self._transfer_count = 0

    def transfer_member_balance(self, pool_id: str, member: str, amount: int) -> None:
        if amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {amount}")
        self._balances[(pool_id, member)] += amount
        self._total_paid += amount
        self._transfer_count += 1
        logger.debug(f"Transferred {amount} to {member} from pool {pool_id}")

    def balance_of(self, member: str, pool_id: str = "") -> int:
        """Balance received by a member, from one pool or from all pools."""
        if pool_id:
            return self._balances.get((pool_id, member), 0)
        return sum(amount for (_, m), amount in self._balances.items() if m == member)

    def pool_total(self, pool_id: str) -> int:
        """Total transferred out of one pool."""
        return sum(amount for (p, _), amount in self._balances.items() if p == pool_id)

    @property
    def total_paid(self) -> int:
        return self._total_paid

    @property
    def transfer_count(self) -> int:
        return self._transfer_count
