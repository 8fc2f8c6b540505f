"""Domain objects exchanged with cab and customer clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Mapping, Optional, TypeVar

_E = TypeVar("_E", bound="_NamedStatus")


class _NamedStatus(IntEnum):
    """Integer-backed status shown and serialised by its name."""

    def __str__(self) -> str:
        return self.name

    def __format__(self, spec: str) -> str:
        return format(self.name, spec)

    @classmethod
    def parse(cls: type[_E], value: Any) -> _E:
        """Accept a member, its name or its integer code."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value]
            except KeyError:
                raise ValueError(f"unknown {cls.__name__}: {value!r}") from None
        return cls(value)


class CabStatus(_NamedStatus):
    ASSIGNED = 0
    FREE = 1
    CHARGING = 2  # out of order and the like


class OrderStatus(_NamedStatus):
    RECEIVED = 0
    ASSIGNED = 1
    ACCEPTED = 2
    CANCELLED = 3
    REJECTED = 4
    ABANDONED = 5
    REFUSED = 6
    PICKEDUP = 7
    COMPLETED = 8


class RouteStatus(_NamedStatus):
    PLANNED = 0  # proposed by the pool
    ASSIGNED = 1  # not confirmed, initial status
    ACCEPTED = 2  # accepted by the customer, waiting for the cab
    REJECTED = 3  # rejected by the customer(s)
    ABANDONED = 4  # cancelled after assignment but before pick-up
    STARTED = 5  # used by legs
    COMPLETED = 6


def _required(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"missing field {key!r}") from None


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    head, dot, fraction = text.partition(".")
    if dot:
        # sub-microsecond digits are dropped, missing ones padded
        text = f"{head}.{fraction[:6].ljust(6, '0')}"
    return datetime.fromisoformat(text)


@dataclass
class Cab:
    id: int = -1
    location: int = -1
    status: CabStatus = CabStatus.CHARGING
    seats: int = -1

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "Location": self.location,
            "Status": self.status.name,
            "Seats": self.seats,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Cab":
        return cls(
            id=int(_required(data, "Id")),
            location=int(_required(data, "Location")),
            status=CabStatus.parse(_required(data, "Status")),
            seats=int(_required(data, "Seats")),
        )


@dataclass
class CabAssign:
    cust_id: int
    from_stop: int
    to_stop: int
    loss: int
    shared: bool

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CabAssign":
        return cls(
            cust_id=int(_required(data, "CustId")),
            from_stop=int(_required(data, "From")),
            to_stop=int(_required(data, "To")),
            loss=int(_required(data, "Loss")),
            shared=bool(_required(data, "Shared")),
        )


@dataclass
class Order:
    id: int = -1
    from_stop: int = -1
    to_stop: int = -1
    wait: int = 0
    loss: int = 0
    distance: int = 0
    shared: bool = False
    in_pool: bool = False
    status: OrderStatus = OrderStatus.REFUSED
    received: Optional[datetime] = None
    started: Optional[datetime] = None
    completed: Optional[datetime] = None
    at_time: Optional[datetime] = None
    eta: int = 0
    cab: Cab = field(default_factory=Cab)
    cust_id: int = -1
    route_id: int = -1
    leg_id: int = -1

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "From": self.from_stop,
            "To": self.to_stop,
            "Wait": self.wait,
            "Loss": self.loss,
            "Distance": self.distance,
            "Shared": self.shared,
            "InPool": self.in_pool,
            "Status": self.status.name,
            "Received": _format_dt(self.received),
            "Started": _format_dt(self.started),
            "Completed": _format_dt(self.completed),
            "AtTime": _format_dt(self.at_time),
            "Eta": self.eta,
            "Cab": self.cab.to_dict(),
            "CustId": self.cust_id,
            "RouteId": self.route_id,
            "LegId": self.leg_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Order":
        """Build an order; absent optional fields take their type's default."""
        cab = data.get("Cab")
        return cls(
            id=int(data.get("Id", 0)),
            from_stop=int(_required(data, "From")),
            to_stop=int(_required(data, "To")),
            wait=int(_required(data, "Wait")),
            loss=int(_required(data, "Loss")),
            distance=int(data.get("Distance", 0)),
            shared=bool(data.get("Shared", False)),
            in_pool=bool(data.get("InPool", False)),
            status=OrderStatus.parse(data.get("Status", OrderStatus.REFUSED)),
            received=_parse_dt(data.get("Received")),
            started=_parse_dt(data.get("Started")),
            completed=_parse_dt(data.get("Completed")),
            at_time=_parse_dt(data.get("AtTime")),
            eta=int(data.get("Eta", 0)),
            cab=Cab() if cab is None else Cab.from_dict(cab),
            cust_id=int(data.get("CustId", 0)),
            route_id=int(data.get("RouteId", 0)),
            leg_id=int(data.get("LegId", 0)),
        )


@dataclass
class Stop:
    id: int
    bearing: int
    latitude: float
    longitude: float
    name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "bearing": self.bearing,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "name": self.name,
        }


@dataclass
class Leg:
    id: int = 0
    route_id: int = 0
    from_stop: int = 0
    to_stop: int = 0
    place: int = 0
    dist: int = 0
    started: Optional[datetime] = None
    completed: Optional[datetime] = None
    status: RouteStatus = RouteStatus.REJECTED
    passengers: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "RouteId": self.route_id,
            "From": self.from_stop,
            "To": self.to_stop,
            "Place": self.place,
            "Dist": self.dist,
            "Started": _format_dt(self.started),
            "Completed": _format_dt(self.completed),
            "Status": self.status.name,
            "Passengers": self.passengers,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Leg":
        return cls(
            id=int(_required(data, "Id")),
            route_id=int(data.get("RouteId", 0)),
            from_stop=int(data.get("From", 0)),
            to_stop=int(data.get("To", 0)),
            place=int(data.get("Place", 0)),
            dist=int(data.get("Dist", 0)),
            started=_parse_dt(data.get("Started")),
            completed=_parse_dt(data.get("Completed")),
            status=RouteStatus.parse(_required(data, "Status")),
            passengers=int(_required(data, "Passengers")),
        )


@dataclass
class Route:
    id: int = -1
    status: RouteStatus = RouteStatus.REJECTED
    legs: list[Leg] = field(default_factory=list)
    cab: Cab = field(default_factory=Cab)

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "Status": self.status.name,
            "Legs": [leg.to_dict() for leg in self.legs],
            "Cab": self.cab.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Route":
        cab = data.get("Cab")
        return cls(
            id=int(_required(data, "Id")),
            status=RouteStatus.parse(_required(data, "Status")),
            legs=[Leg.from_dict(leg) for leg in data.get("Legs", [])],
            cab=Cab() if cab is None else Cab.from_dict(cab),
        )


@dataclass
class RouteWithOrders:
    route: Route
    orders: list[Order]
    cab: Cab

    def to_dict(self) -> dict[str, Any]:
        return {
            "route": self.route.to_dict(),
            "orders": [order.to_dict() for order in self.orders],
            "cab": self.cab.to_dict(),
        }


@dataclass
class RouteWithEta:
    eta: int
    route: Route

    def to_dict(self) -> dict[str, Any]:
        return {"eta": self.eta, "route": self.route.to_dict()}


@dataclass
class StopTraffic:
    stop: Optional[Stop]
    routes: list[RouteWithEta] = field(default_factory=list)
    cabs: list[Cab] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stop": None if self.stop is None else self.stop.to_dict(),
            "routes": [route.to_dict() for route in self.routes],
            "cabs": [cab.to_dict() for cab in self.cabs],
        }


@dataclass
class Stat:
    name: str
    int_val: int

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "int_val": self.int_val}


@dataclass
class Stats:
    kpis: list[Stat] = field(default_factory=list)
    orders: list[Stat] = field(default_factory=list)
    cabs: list[Stat] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kpis": [stat.to_dict() for stat in self.kpis],
            "orders": [stat.to_dict() for stat in self.orders],
            "cabs": [stat.to_dict() for stat in self.cabs],
        }