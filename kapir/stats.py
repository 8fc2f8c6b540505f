"""Running key performance indicators kept in memory."""

from __future__ import annotations

import logging
import threading
from enum import Enum

logger = logging.getLogger(__name__)


class StatKey(Enum):
    AVG_ORDER_PICKUP_TIME = "AvgOrderPickupTime"
    AVG_ORDER_COMPLETE_TIME = "AvgOrderCompleteTime"

    def __str__(self) -> str:
        return self.value


def _truncating_mean(values: list[int]) -> int:
    total = sum(values)
    quotient = abs(total) // len(values)
    return quotient if total >= 0 else -quotient


class StatsCollector:
    """Collects timing samples and turns them into stored statistics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.values: dict[StatKey, int] = {key: 0 for key in StatKey}
        self._elements: dict[StatKey, list[int]] = {key: [] for key in StatKey}

    def update_val(self, key: StatKey, value: int) -> None:
        with self._lock:
            self.values[key] = value

    def add_avg_element(self, key: StatKey, value: int) -> None:
        with self._lock:
            self._elements[key].append(value)

    def count_average(self, key: StatKey) -> int:
        """Integer mean of the samples, truncated toward zero; 0 without samples."""
        with self._lock:
            samples = list(self._elements[key])
        if not samples:
            return 0
        return _truncating_mean(samples)

    def save_status(self) -> str:
        """Refresh the averages and return SQL that stores every statistic."""
        for key in StatKey:
            self.update_val(key, self.count_average(key))
        with self._lock:
            return "".join(
                f"UPDATE stat SET int_val={self.values[key]} WHERE UPPER(name)=UPPER('{key}');"
                for key in StatKey
            )

    def add_avg_pickup(self, value: int) -> None:
        if value == -1:
            logger.info("add_avg_pickup called with -1")
        else:
            self.add_avg_element(StatKey.AVG_ORDER_PICKUP_TIME, value)

    def add_avg_complete(self, value: int) -> None:
        if value == -1:
            logger.info("add_avg_complete called with -1")
        else:
            self.add_avg_element(StatKey.AVG_ORDER_COMPLETE_TIME, value)