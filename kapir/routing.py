"""Pure route calculations: seats, legs at a stop and arrival estimates."""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from itertools import groupby
from typing import Iterable, Optional, Sequence

from kapir.model import Leg, Route, RouteStatus

logger = logging.getLogger(__name__)

STOP_WAIT = 1  # minutes a cab waits at a stop
_NO_STOP_PLACE = 2000  # place beyond any real leg


def _truncated_seconds(delta: timedelta) -> int:
    """Whole seconds in a duration, truncated toward zero."""
    micros = (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds
    seconds = abs(micros) // 1_000_000
    return seconds if micros >= 0 else -seconds


def _truncated_div(value: int, divisor: int) -> int:
    quotient = abs(value) // divisor
    return quotient if value >= 0 else -quotient


def _seconds_of_day(moment: time) -> timedelta:
    return timedelta(
        hours=moment.hour,
        minutes=moment.minute,
        seconds=moment.second,
        microseconds=moment.microsecond,
    )


def find_leg_at_stop(legs: Sequence[Leg], stop: int) -> int:
    """Id of the first unfinished leg leaving ``stop``, or -1."""
    return next(
        (leg.id for leg in legs if leg.from_stop == stop and leg.status != RouteStatus.COMPLETED),
        -1,
    )


def _is_boardable_start(leg: Leg, from_stop: int) -> bool:
    return leg.from_stop == from_stop and leg.status not in (
        RouteStatus.COMPLETED,
        RouteStatus.STARTED,
    )


def enough_place(
    legs: Sequence[Leg], from_stop: int, to_stop: int, seats: int, place_needed: int
) -> bool:
    """Whether ``place_needed`` more passengers fit between two stops of a route."""
    if not legs:
        return False
    start_found = False
    for leg in legs:
        if _is_boardable_start(leg, from_stop):
            start_found = True
        if start_found and leg.passengers + place_needed > seats:
            return False
        if start_found and leg.to_stop == to_stop:
            return True
    if not start_found:
        return False
    logger.warning("Checking enough place - 'to' not found")
    return True


def seat_range(
    legs: Sequence[Leg], from_stop: int, to_stop: int
) -> Optional[tuple[int, int]]:
    """Places of the first and last leg a passenger rides, or None without a start.

    When the destination is not found the last place is an arbitrary large one.
    """
    start_found = False
    start = 0
    stop = _NO_STOP_PLACE
    for leg in legs:
        if _is_boardable_start(leg, from_stop):
            start_found = True
            start = leg.place
        if start_found and leg.to_stop == to_stop:
            stop = leg.place
            break
    if not start_found:
        return None
    return start, stop


def get_elapsed(value: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Seconds since ``value``, or -1 when there is no value."""
    if value is None:
        return -1
    current = datetime.now() if now is None else now
    return _truncated_seconds(current - value)


def get_elapsed_dt(value: Optional[datetime], now: Optional[datetime] = None) -> int:
    """Seconds between the times of day of ``value`` and now, or -1 without a value."""
    if value is None:
        return -1
    current = datetime.now() if now is None else now
    return _truncated_seconds(_seconds_of_day(current.time()) - _seconds_of_day(value.time()))


def calculate_eta(stand_id: int, route: Route, now: Optional[datetime] = None) -> int:
    """Minutes until the route's cab reaches ``stand_id``; -1 for no route."""
    if route.id == -1:
        return -1
    current = datetime.now() if now is None else now
    eta = 0
    for leg in route.legs:
        if leg.from_stop == stand_id:
            break
        if leg.status == RouteStatus.STARTED:
            if leg.started is None:
                eta += leg.dist + STOP_WAIT
            else:
                minutes = _truncated_div(get_elapsed(leg.started, current), 60)
                if minutes != -1:
                    # a leg that has taken longer than planned adds nothing
                    eta += max(leg.dist - minutes, 0)
        elif leg.status == RouteStatus.ASSIGNED:
            eta += leg.dist + STOP_WAIT
    return eta - STOP_WAIT


def group_legs_by_route(legs: Iterable[Leg]) -> list[tuple[int, list[Leg]]]:
    """Split legs into runs sharing a route id, keeping their order."""
    return [(route_id, list(run)) for route_id, run in groupby(legs, key=lambda leg: leg.route_id)]