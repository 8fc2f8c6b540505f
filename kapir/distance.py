"""Great-circle distances between stops and the travel-time table."""

from __future__ import annotations

import math
from typing import Iterable, Optional

from kapir.model import Stop

MAX_STOPS = 5200
CAB_SPEED = 30  # km/h
_I16_MAX = 32767


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in kilometres between two points given in degrees."""
    theta = lon1 - lon2
    cosine = math.sin(math.radians(lat1)) * math.sin(math.radians(lat2)) + math.cos(
        math.radians(lat1)
    ) * math.cos(math.radians(lat2)) * math.cos(math.radians(theta))
    angle = math.degrees(math.acos(max(-1.0, min(1.0, cosine))))
    return angle * 60.0 * 1.1515 * 1.609344


def travel_minutes(lat1: float, lon1: float, lat2: float, lon2: float) -> int:
    """Whole minutes a cab needs between two points; a transfer takes at least one."""
    minutes = int(distance_km(lat1, lon1, lat2, lon2) * (60.0 / CAB_SPEED))
    return max(1, min(minutes, _I16_MAX))


class DistanceTable:
    """Travel minutes between every pair of known stops."""

    def __init__(self, stops: Iterable[Stop]) -> None:
        self.stops: tuple[Stop, ...] = tuple(stops)
        self._by_id: dict[int, Stop] = {}
        self._order: dict[int, int] = {}
        for index, stop in enumerate(self.stops):
            if not 0 <= stop.id < MAX_STOPS:
                raise ValueError(f"stop id {stop.id} outside 0..{MAX_STOPS - 1}")
            self._by_id[stop.id] = stop
            self._order[stop.id] = index
        self._cache: dict[tuple[int, int], int] = {}

    def distance(self, from_stop: int, to_stop: int) -> int:
        """Minutes from one stop to another; 0 for the same or an unknown stop."""
        for stop_id in (from_stop, to_stop):
            if not 0 <= stop_id < MAX_STOPS:
                raise IndexError(f"stop id {stop_id} outside 0..{MAX_STOPS - 1}")
        if from_stop == to_stop:
            return 0
        first = self._by_id.get(from_stop)
        second = self._by_id.get(to_stop)
        if first is None or second is None:
            return 0
        if self._order[first.id] > self._order[second.id]:
            first, second = second, first
        key = (first.id, second.id)
        cached = self._cache.get(key)
        if cached is None:
            cached = travel_minutes(first.latitude, first.longitude, second.latitude, second.longitude)
            self._cache[key] = cached
        return cached

    def find_stop(self, stop_id: int) -> Optional[Stop]:
        return self._by_id.get(stop_id)