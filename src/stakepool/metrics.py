"""
stakepool/metrics.py

Prometheus metrics for pool reward accounting.

Exposes per-pool stake and reward tallies plus settlement counters in the
Prometheus text format.
"""

import time
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .protocol.manager import StakingPoolManager
    from .protocol.rewards import SettlementReceipt

logger = logging.getLogger("stakepool.metrics")


class PoolMetricsCollector:
    """
    Prometheus metrics collector for a StakingPoolManager.

    Usage:
        manager = StakingPoolManager()
        metrics = PoolMetricsCollector(manager)

        prometheus_output = metrics.collect()
    """

    METRICS = {
        "stakepool_current_epoch": {
            "type": "gauge",
            "help": "Current accounting epoch",
        },
        "stakepool_pools": {
            "type": "gauge",
            "help": "Number of managed pools",
        },
        "stakepool_total_delegated_stake": {
            "type": "gauge",
            "help": "Stake earning rewards in the current epoch",
        },
        "stakepool_members": {
            "type": "gauge",
            "help": "Members with a stake record",
        },
        "stakepool_rewards_credited_total": {
            "type": "counter",
            "help": "Member rewards credited through the ratio ledger",
        },
        "stakepool_rewards_paid_total": {
            "type": "counter",
            "help": "Member rewards settled to the payout sink",
        },
        "stakepool_reward_balance": {
            "type": "gauge",
            "help": "Rewards credited but not yet settled",
        },
        "stakepool_rewards_unallocated_total": {
            "type": "counter",
            "help": "Rewards credited while no stake was active",
        },
        "stakepool_operator_paid_total": {
            "type": "counter",
            "help": "Operator share paid to the pool operator",
        },
        "stakepool_settlements_total": {
            "type": "counter",
            "help": "Non-zero settlements since start",
        },
        "stakepool_settled_amount_total": {
            "type": "counter",
            "help": "Amount settled since start",
        },
        "stakepool_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    def __init__(self, manager: "StakingPoolManager", track_settlements: bool = True):
        """
        Initialize metrics collector.

        Args:
            manager: Manager to collect metrics from
            track_settlements: Register on the manager's settlement callback
        """
        self.manager = manager
        self._start_time = time.time()
        self._settlements = 0
        self._settled_amount = 0
        if track_settlements:
            manager.on_settlement(self.record_settlement)

    def record_settlement(self, receipt: "SettlementReceipt") -> None:
        """Count a settlement."""
        if receipt.amount <= 0:
            return
        self._settlements += 1
        self._settled_amount += receipt.amount

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []
        described = set()

        def add_metric(name: str, value: float, labels: Optional[Dict[str, str]] = None):
            if name not in described:
                metric_def = self.METRICS.get(name, {})
                lines.append(f"# HELP {name} {metric_def.get('help', '')}")
                lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")
                described.add(name)

            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        try:
            stats = self.manager.get_stats()
            add_metric("stakepool_current_epoch", stats["current_epoch"])
            add_metric("stakepool_pools", stats["pool_count"])

            per_pool = [
                ("stakepool_total_delegated_stake", "total_delegated_stake"),
                ("stakepool_members", "members"),
                ("stakepool_rewards_credited_total", "rewards_credited"),
                ("stakepool_rewards_paid_total", "rewards_paid"),
                ("stakepool_reward_balance", "reward_balance"),
                ("stakepool_rewards_unallocated_total", "rewards_unallocated"),
                ("stakepool_operator_paid_total", "operator_paid"),
            ]
            for metric_name, stat_name in per_pool:
                for pool_id, pool_stats in stats["pools"].items():
                    add_metric(metric_name, pool_stats[stat_name], {"pool_id": pool_id})

            add_metric("stakepool_settlements_total", self._settlements)
            add_metric("stakepool_settled_amount_total", self._settled_amount)
            add_metric("stakepool_uptime_seconds", time.time() - self._start_time)

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON API).

        Returns:
            Dictionary of metric values
        """
        stats = self.manager.get_stats()
        stats["settlements"] = self._settlements
        stats["settled_amount"] = self._settled_amount
        stats["uptime_seconds"] = time.time() - self._start_time
        return stats

    def reset_counters(self) -> None:
        """Reset settlement counters (useful for testing)."""
        self._settlements = 0
        self._settled_amount = 0
