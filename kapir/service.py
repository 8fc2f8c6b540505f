"""Request handling for cabs and customers on top of a relational database."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from kapir.distance import DistanceTable
from kapir.model import (
    Cab,
    CabAssign,
    CabStatus,
    Leg,
    Order,
    OrderStatus,
    Route,
    RouteStatus,
    RouteWithEta,
    RouteWithOrders,
    Stat,
    Stats,
    Stop,
    StopTraffic,
)
from kapir.routing import (
    calculate_eta,
    enough_place,
    find_leg_at_stop,
    get_elapsed_dt,
    group_legs_by_route,
    seat_range,
)
from kapir.stats import StatsCollector

logger = logging.getLogger(__name__)

_ORDER_COLUMNS = (
    "SELECT from_stand, to_stand, max_wait, max_loss, distance, shared, in_pool, received, "
    "started, completed, at_time, eta, o.status, cab_id, customer_id, o.id, c.location, "
    "c.status, route_id, leg_id, c.seats "
    "FROM taxi_order as o LEFT JOIN cab as c ON o.cab_id = c.id WHERE "
)

_LEG_COLUMNS = (
    "SELECT id, from_stand, to_stand, place, distance, started, completed, status, passengers "
    "FROM leg WHERE route_id=? ORDER BY place"
)

_TRAFFIC_LEGS = (
    "SELECT l.id, l.from_stand, l.to_stand, l.place, l.distance, l.started, l.completed, "
    "l.status, l.route_id, l.passengers FROM leg l WHERE l.route_id IN ("
    "SELECT route_id FROM leg WHERE (from_stand=? AND status IN (1,2)) "
    "OR (to_stand=? AND status IN (1,2,5))) "
    "AND l.status IN (1,2,5) ORDER BY l.route_id, l.place"
)


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _db_time(moment: datetime) -> str:
    return moment.isoformat(sep=" ")


def _id_or_missing(value: Any) -> int:
    return -1 if value is None else int(value)


def _leg_from_row(row: Sequence[Any], route_id: int) -> Leg:
    leg_id, from_stand, to_stand, place, dist, started, completed, status, passengers = row
    return Leg(
        id=int(leg_id),
        route_id=route_id,
        from_stop=int(from_stand),
        to_stop=int(to_stand),
        place=int(place),
        dist=int(dist),
        started=_to_datetime(started),
        completed=_to_datetime(completed),
        status=RouteStatus(int(status)),
        passengers=int(passengers),
    )


def _order_from_row(row: Sequence[Any]) -> Order:
    (
        from_stand, to_stand, wait, loss, distance, shared, in_pool, received, started,
        completed, at_time, eta, status, cab_id, cust_id, order_id, cab_location,
        cab_status, route_id, leg_id, cab_seats,
    ) = row
    if cab_id is None:
        cab = Cab()  # not assigned yet
    else:
        cab = Cab(
            id=int(cab_id),
            location=int(cab_location),
            status=CabStatus(int(cab_status)),
            seats=int(cab_seats),
        )
    return Order(
        id=int(order_id),
        from_stop=int(from_stand),
        to_stop=int(to_stand),
        wait=int(wait),
        loss=int(loss),
        distance=int(distance),
        shared=bool(shared),
        in_pool=bool(in_pool),
        status=OrderStatus(int(status)),
        received=_to_datetime(received),
        started=_to_datetime(started),
        completed=_to_datetime(completed),
        at_time=_to_datetime(at_time),
        eta=int(eta),
        cab=cab,
        cust_id=int(cust_id),
        route_id=_id_or_missing(route_id),
        leg_id=_id_or_missing(leg_id),
    )


class KapirService:
    """Operations behind the cab and customer endpoints.

    ``conn`` is a DB-API connection; statements are written with ``?``
    placeholders, replaced by :attr:`placeholder` before execution.
    """

    placeholder = "?"

    def __init__(
        self,
        conn: Any,
        distances: Optional[DistanceTable] = None,
        stats: Optional[StatsCollector] = None,
    ) -> None:
        self.conn = conn
        self.distances = distances if distances is not None else DistanceTable(())
        self.stats = stats if stats is not None else StatsCollector()
        self.clock: Callable[[], datetime] = datetime.now
        self._db_error: type[BaseException] = getattr(conn, "Error", Exception)

    # -- database helpers -------------------------------------------------

    def _run(self, sql: str, params: Sequence[Any] = ()) -> Any:
        cursor = self.conn.cursor()
        cursor.execute(sql.replace("?", self.placeholder), tuple(params))
        return cursor

    def _query(self, sql: str, params: Sequence[Any] = ()) -> list[Sequence[Any]]:
        cursor = self._run(sql, params)
        try:
            return list(cursor.fetchall())
        finally:
            cursor.close()

    def _write(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run an update and return the number of affected rows, 0 on failure."""
        try:
            cursor = self._run(sql, params)
            count = cursor.rowcount
            cursor.close()
            self.conn.commit()
        except self._db_error as err:
            logger.warning("update failed: %s", err)
            return 0
        logger.debug("Updated rows: %s", count)
        return count

    def _insert(self, sql: str, params: Sequence[Any]) -> int:
        cursor = self._run(sql, params)
        new_id = cursor.lastrowid
        cursor.close()
        self.conn.commit()
        return int(new_id)

    # -- stops ------------------------------------------------------------

    def read_stops(self) -> tuple[Stop, ...]:
        """Load every stop and rebuild the distance table from them."""
        try:
            rows = self._query("SELECT id, latitude, longitude, bearing, name FROM stop")
        except self._db_error as err:
            logger.warning("reading stops failed: %s", err)
            return self.distances.stops
        stops = [
            Stop(
                id=int(stop_id),
                latitude=float(latitude),
                longitude=float(longitude),
                bearing=int(bearing),
                name=name,
            )
            for stop_id, latitude, longitude, bearing, name in rows
        ]
        self.distances = DistanceTable(stops)
        return self.distances.stops

    # -- cabs -------------------------------------------------------------

    def select_cab(self, user_id: int, cab_id: int) -> Cab:
        logger.debug("select_cab, user_id=%s", user_id)
        try:
            rows = self._query("SELECT location, status, seats FROM cab WHERE id=?", (cab_id,))
        except self._db_error:
            return Cab()
        if not rows:
            raise LookupError(f"cab {cab_id} not found")
        location, status, seats = rows[0]
        return Cab(id=cab_id, location=int(location), status=CabStatus(int(status)), seats=int(seats))

    def select_cabs_by_stop(self, user_id: int, stop_id: int) -> list[Cab]:
        logger.debug("select_cabs_by_stop, user_id=%s", user_id)
        try:
            rows = self._query(
                "SELECT id, seats FROM cab WHERE location=? AND status=1", (stop_id,)
            )
        except self._db_error:
            return []
        return [
            Cab(id=int(cab_id), location=stop_id, status=CabStatus.FREE, seats=int(seats))
            for cab_id, seats in rows
        ]

    def update_cab(self, user_id: int, cab: Cab) -> Cab:
        if user_id == cab.id:
            self._write(
                "UPDATE cab SET status=?, location=? WHERE id=?",
                (int(cab.status), cab.location, cab.id),
            )
        else:
            logger.info("update_cab not authorised, user_id=%s, cab_id=%s", user_id, cab.id)
        return replace(cab)

    def select_cab_by_route_id(self, route_id: int) -> Cab:
        try:
            rows = self._query(
                "SELECT c.id, c.location, c.status, c.seats FROM cab c, route r "
                "WHERE r.id=? AND c.id = r.cab_id",
                (route_id,),
            )
        except self._db_error:
            return Cab()
        if not rows:
            raise LookupError(f"no cab for route {route_id}")
        cab_id, location, status, seats = rows[0]
        return Cab(
            id=int(cab_id), location=int(location), status=CabStatus(int(status)), seats=int(seats)
        )

    # -- assignments ------------------------------------------------------

    def assign_free_cab(self, user_id: int, assign: CabAssign) -> bool:
        if assign.from_stop == assign.to_stop:
            logger.warning("from == to, the client shouldn't allow this")
            return False
        try:
            self._insert(
                "INSERT INTO freetaxi_order (from_stand, to_stand, shared, max_loss, cab_id, "
                "customer_id, received) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    assign.from_stop,
                    assign.to_stop,
                    assign.shared,
                    assign.loss,
                    user_id,
                    assign.cust_id,
                    _db_time(self.clock()),
                ),
            )
        except self._db_error as err:
            logger.warning("free cab assignment failed: %s", err)
            return False
        return True

    def assign_to_route(self, user_id: int, assign: CabAssign) -> bool:
        """Put a passenger picked up on the way onto the cab's current route."""
        order = Order(
            id=-1,
            from_stop=assign.from_stop,
            to_stop=assign.to_stop,
            wait=-1,
            loss=assign.loss,
            distance=self.distances.distance(assign.from_stop, assign.to_stop),
            shared=assign.shared,
            in_pool=True,
            status=OrderStatus.PICKEDUP,
            received=self.clock(),
            cab=Cab(id=user_id, location=assign.from_stop, status=CabStatus.ASSIGNED, seats=-1),
            cust_id=assign.cust_id,
            route_id=-1,
            leg_id=-1,
        )
        route = self.select_route_by_cab(user_id, user_id)
        if not enough_place(route.legs, order.from_stop, order.to_stop, route.cab.seats, 1):
            logger.warning(
                "Not enough seats for route extension: user_id:%s, from: %s, to: %s",
                user_id, order.from_stop, order.to_stop,
            )
            return False
        leg_id = find_leg_at_stop(route.legs, order.from_stop)
        inserted = self.insert_order(order.cust_id, order)
        if inserted.id == -1:
            return False
        count = self._write(
            "UPDATE taxi_order SET cab_id=?, route_id=?, leg_id=?, status=?, in_pool=? WHERE id=?",
            (user_id, route.id, leg_id, int(OrderStatus.PICKEDUP), True, inserted.id),
        )
        if count != 1:
            logger.warning(
                "Update taxi_order went wrong, cab_id=%s, route_id=%s, leg_id=%s, id=%s",
                user_id, route.id, leg_id, inserted.id,
            )
            return False
        self._update_avail_seats(route.id, route.legs, order.from_stop, order.to_stop, 1)
        return True

    def _update_avail_seats(
        self, route_id: int, legs: Sequence[Leg], from_stop: int, to_stop: int, place_needed: int
    ) -> int:
        if not legs:
            return 0
        places = seat_range(legs, from_stop, to_stop)
        if places is None:
            return 0
        start, stop = places
        self._write(
            "UPDATE leg SET passengers = passengers - ? WHERE route_id = ? AND place >= ? AND place <= ?",
            (place_needed, route_id, start, stop),
        )
        return stop - start + 1

    # -- legs and routes --------------------------------------------------

    def update_leg(self, user_id: int, leg: Leg) -> Leg:
        """Change a leg's status, only on a route driven by ``user_id``."""
        owned = "WHERE id=? AND route_id IN (SELECT id FROM route WHERE cab_id=?)"
        if leg.status == RouteStatus.STARTED:
            self._write(
                f"UPDATE leg SET status=?, started=? {owned}",
                (int(leg.status), _db_time(self.clock()), leg.id, user_id),
            )
        elif leg.status == RouteStatus.COMPLETED:
            logger.debug("update_leg COMPLETED, user_id=%s leg_id=%s", user_id, leg.id)
            self._write(
                f"UPDATE leg SET status=?, completed=? {owned}",
                (int(leg.status), _db_time(self.clock()), leg.id, user_id),
            )
        else:
            logger.debug(
                "update_leg with other status, user_id=%s leg_id=%s, status=%s",
                user_id, leg.id, leg.status,
            )
            self._write(f"UPDATE leg SET status=? {owned}", (int(leg.status), leg.id, user_id))
        return replace(leg)

    def update_route(self, user_id: int, route: Route) -> Route:
        self._write(
            "UPDATE route SET status=? WHERE id=? AND cab_id=?",
            (int(route.status), route.id, user_id),
        )
        return replace(route)

    def select_route_by_cab(self, user_id: int, cab_id: int) -> Route:
        logger.debug("select_route_by_cab, user=%s", user_id)
        return self._route_by_cab(cab_id)

    def _route_by_cab(self, cab_id: int) -> Route:
        try:
            rows = self._query(
                "SELECT id FROM route WHERE cab_id=? AND (status=1 OR status=5) ORDER BY id LIMIT 1",
                (cab_id,),
            )
        except self._db_error:
            return Route()
        if not rows:
            return Route()
        return self._route(int(rows[0][0]))

    def select_route_by_id(self, user_id: int, route_id: int) -> Route:
        logger.debug("select_route_by_id, user=%s", user_id)
        return self._route(route_id)

    def _route(self, route_id: int) -> Route:
        try:
            rows = self._query(_LEG_COLUMNS, (route_id,))
        except self._db_error:
            rows = []
        legs = [_leg_from_row(row, route_id) for row in rows]
        return Route(
            id=route_id,
            status=RouteStatus.ASSIGNED,
            legs=legs,
            cab=self.select_cab_by_route_id(route_id),
        )

    def select_route_with_orders(self, user_id: int, cab_id: int) -> RouteWithOrders:
        route = self._route_by_cab(cab_id)
        orders = self.select_orders_by_route(user_id, route.id)
        cab = self.select_cab(user_id, cab_id)
        return RouteWithOrders(route=route, orders=orders, cab=cab)

    # -- orders -----------------------------------------------------------

    def _orders_where(self, key: int, clause: str) -> list[Order]:
        sql = _ORDER_COLUMNS + clause + " ORDER BY received DESC"
        try:
            rows = self._query(sql, (key,))
        except self._db_error as err:
            logger.warning("Problem reading row: %s", err)
            return []
        return [_order_from_row(row) for row in rows]

    def select_order(self, user_id: int, order_id: int) -> Order:
        logger.debug("select_order, user_id=%s", user_id)
        orders = self._orders_where(order_id, "o.id=?")
        if not orders:
            raise LookupError(f"order {order_id} not found")
        return orders[0]

    def select_orders(self, user_id: int, customer_id: int) -> list[Order]:
        logger.debug("select_orders, user_id=%s", user_id)
        return self._orders_where(customer_id, "customer_id=? AND (o.status<3 OR o.status>6)")

    def select_orders_by_route(self, user_id: int, route_id: int) -> list[Order]:
        logger.debug("select_orders_by_route, user_id=%s", user_id)
        return self._orders_where(route_id, "route_id=? AND (o.status<3 OR o.status>6)")

    def update_order(self, user_id: int, order: Order) -> Order:
        """Change an order's status on behalf of its customer and record timings."""
        now = self.clock()
        owned = "WHERE id=? AND customer_id=?"
        if order.status == OrderStatus.PICKEDUP:
            self._write(
                f"UPDATE taxi_order SET status=?, started=? {owned}",
                (int(order.status), _db_time(now), order.id, user_id),
            )
            self.stats.add_avg_pickup(get_elapsed_dt(order.received, now))
        elif order.status == OrderStatus.COMPLETED:
            self._write(
                f"UPDATE taxi_order SET status=?, completed=? {owned}",
                (int(order.status), _db_time(now), order.id, user_id),
            )
            self.stats.add_avg_complete(get_elapsed_dt(order.received, now))
        else:
            self._write(
                f"UPDATE taxi_order SET status=? {owned}", (int(order.status), order.id, user_id)
            )
        return replace(order)

    def insert_order(self, user_id: int, order: Order) -> Order:
        """Store a new order; a default order (id -1) signals refusal."""
        if order.from_stop == order.to_stop:
            logger.info("order refused: same origin and destination")
            return Order()
        if order.cust_id != user_id:
            logger.info("order refused: customer %s is not user %s", order.cust_id, user_id)
            return Order()
        active = self._orders_where(order.cust_id, "customer_id=? AND (o.status<3 OR o.status = 7)")
        if active:
            logger.info("POST order failed for usr_id=%s, orders exist", order.cust_id)
            return Order()
        dist = self.distances.distance(order.from_stop, order.to_stop)
        now = self.clock()
        try:
            new_id = self._insert(
                "INSERT INTO taxi_order (from_stand, to_stand, max_loss, max_wait, shared, in_pool, "
                "eta, status, received, distance, customer_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    order.from_stop,
                    order.to_stop,
                    order.loss,
                    order.wait,
                    order.shared,
                    False,
                    -1,
                    int(OrderStatus.RECEIVED),
                    _db_time(now),
                    dist,
                    order.cust_id,
                ),
            )
        except self._db_error as err:
            logger.warning("inserting order failed: %s", err)
            return Order()
        return replace(order, distance=dist, id=new_id, received=now)

    # -- traffic at a stop --------------------------------------------------

    def select_traffic(self, user_id: int, stand_id: int) -> StopTraffic:
        """Routes that will visit a stop, nearest first, and free cabs standing there."""
        try:
            rows = self._query(_TRAFFIC_LEGS, (stand_id, stand_id))
        except self._db_error:
            rows = []
        legs = [
            Leg(
                id=int(leg_id),
                from_stop=int(from_stand),
                to_stop=int(to_stand),
                place=int(place),
                dist=int(dist),
                started=_to_datetime(started),
                completed=_to_datetime(completed),
                status=RouteStatus(int(status)),
                route_id=int(route_id),
                passengers=int(passengers),
            )
            for leg_id, from_stand, to_stand, place, dist, started, completed, status, route_id, passengers in rows
        ]
        routes = [
            self.get_route_with_eta(route_id, stand_id, route_legs)
            for route_id, route_legs in group_legs_by_route(legs)
        ]
        routes.sort(key=lambda item: item.eta)
        stop = self.distances.find_stop(stand_id)
        if stop is None:
            logger.info("Stop ID not found: %s", stand_id)
        cabs = self.select_cabs_by_stop(user_id, stand_id)
        return StopTraffic(stop=stop, routes=routes, cabs=cabs)

    def get_route_with_eta(self, route_id: int, stop_id: int, legs: list[Leg]) -> RouteWithEta:
        route = Route(
            id=route_id,
            status=RouteStatus.ASSIGNED,
            legs=legs,
            cab=self.select_cab_by_route_id(route_id),
        )
        return RouteWithEta(eta=calculate_eta(stop_id, route, self.clock()), route=route)

    # -- statistics -------------------------------------------------------

    def select_stats(self, user_id: int, usr_id: int) -> Stats:
        logger.debug("select_stats, user_id=%s", user_id)
        if usr_id < 0:
            return Stats()
        for statement in self.stats.save_status().split(";"):
            if not statement.strip():
                continue
            try:
                cursor = self._run(statement)
                cursor.close()
            except self._db_error as err:
                logger.warning("SQL failed to run, err: %s", err)
        try:
            self.conn.commit()
        except self._db_error as err:
            logger.warning("commit failed, err: %s", err)
        return Stats(
            kpis=self.select_stats_kpis(),
            orders=self.select_stats_orders(),
            cabs=self.select_stats_cabs(),
        )

    def select_stats_kpis(self) -> list[Stat]:
        try:
            rows = self._query("SELECT name, int_val FROM stat")
        except self._db_error:
            return []
        return [Stat(name=str(name), int_val=int(value)) for name, value in rows]

    def select_stats_orders(self) -> list[Stat]:
        try:
            rows = self._query("SELECT status, count(*) FROM taxi_order GROUP BY status")
        except self._db_error:
            return []
        return [Stat(name=str(OrderStatus(int(status))), int_val=int(count)) for status, count in rows]

    def select_stats_cabs(self) -> list[Stat]:
        try:
            rows = self._query("SELECT status, count(*) FROM cab GROUP BY status")
        except self._db_error:
            return []
        return [Stat(name=str(CabStatus(int(status))), int_val=int(count)) for status, count in rows]