import sqlite3
from datetime import datetime, timedelta

import pytest

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
    Stat,
    Stop,
)
from kapir.service import KapirService
from kapir.stats import StatKey, StatsCollector

NOW = datetime(2024, 5, 1, 12, 0, 0)

SCHEMA = """
CREATE TABLE cab (id INTEGER PRIMARY KEY, location INTEGER, status INTEGER, seats INTEGER);
CREATE TABLE route (id INTEGER PRIMARY KEY, status INTEGER, cab_id INTEGER);
CREATE TABLE leg (id INTEGER PRIMARY KEY, route_id INTEGER, from_stand INTEGER,
    to_stand INTEGER, place INTEGER, distance INTEGER, started TEXT, completed TEXT,
    status INTEGER, passengers INTEGER);
CREATE TABLE taxi_order (id INTEGER PRIMARY KEY AUTOINCREMENT, from_stand INTEGER,
    to_stand INTEGER, max_wait INTEGER, max_loss INTEGER, distance INTEGER, shared INTEGER,
    in_pool INTEGER, received TEXT, started TEXT, completed TEXT, at_time TEXT, eta INTEGER,
    status INTEGER, cab_id INTEGER, customer_id INTEGER, route_id INTEGER, leg_id INTEGER);
CREATE TABLE freetaxi_order (id INTEGER PRIMARY KEY AUTOINCREMENT, from_stand INTEGER,
    to_stand INTEGER, shared INTEGER, max_loss INTEGER, cab_id INTEGER, customer_id INTEGER,
    received TEXT);
CREATE TABLE stop (id INTEGER PRIMARY KEY, latitude REAL, longitude REAL, bearing INTEGER,
    name TEXT);
CREATE TABLE stat (name TEXT, int_val INTEGER);
INSERT INTO stop VALUES (1, 0.0, 0.0, 0, 'A'), (2, 0.0, 0.1, 0, 'B'), (3, 0.0, 0.2, 0, 'C');
INSERT INTO stat VALUES ('AvgOrderPickupTime', 0), ('AvgOrderCompleteTime', 0);
"""

STOPS = [
    Stop(id=1, bearing=0, latitude=0.0, longitude=0.0, name="A"),
    Stop(id=2, bearing=0, latitude=0.0, longitude=0.1, name="B"),
    Stop(id=3, bearing=0, latitude=0.0, longitude=0.2, name="C"),
]


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    connection.executescript(SCHEMA)
    yield connection
    connection.close()


@pytest.fixture
def service(conn):
    svc = KapirService(conn, DistanceTable(STOPS), StatsCollector())
    svc.clock = lambda: NOW
    return svc


def _route_setup(conn, seats=4):
    conn.execute("INSERT INTO cab VALUES (10, 1, 0, ?)", (seats,))
    conn.execute("INSERT INTO route VALUES (100, 1, 10)")
    conn.execute(
        "INSERT INTO leg (id, route_id, from_stand, to_stand, place, distance, status, passengers) "
        "VALUES (1001, 100, 2, 3, 1, 7, 1, 1), (1000, 100, 1, 2, 0, 7, 1, 1)"
    )
    conn.commit()


def test_read_stops_rebuilds_table(conn):
    svc = KapirService(conn, DistanceTable(()), StatsCollector())
    stops = svc.read_stops()
    assert [stop.id for stop in stops] == [1, 2, 3]
    assert svc.distances.find_stop(2).name == "B"
    assert svc.distances.distance(1, 2) >= 1


def test_select_cab_found_and_missing(conn, service):
    conn.execute("INSERT INTO cab VALUES (7, 2, 1, 4)")
    conn.commit()
    assert service.select_cab(7, 7) == Cab(id=7, location=2, status=CabStatus.FREE, seats=4)
    with pytest.raises(LookupError):
        service.select_cab(7, 8)


def test_select_cabs_by_stop_only_free(conn, service):
    conn.execute("INSERT INTO cab VALUES (1, 2, 1, 4), (2, 2, 0, 4), (3, 1, 1, 4)")
    conn.commit()
    cabs = service.select_cabs_by_stop(0, 2)
    assert [cab.id for cab in cabs] == [1]
    assert cabs[0].status == CabStatus.FREE


def test_update_cab_authorised_and_not(conn, service):
    conn.execute("INSERT INTO cab VALUES (5, 1, 1, 4)")
    conn.commit()
    service.update_cab(5, Cab(id=5, location=3, status=CabStatus.CHARGING, seats=4))
    assert conn.execute("SELECT location, status FROM cab WHERE id=5").fetchone() == (3, 2)
    result = service.update_cab(6, Cab(id=5, location=1, status=CabStatus.FREE, seats=4))
    assert result.location == 1
    assert conn.execute("SELECT location, status FROM cab WHERE id=5").fetchone() == (3, 2)


def test_assign_free_cab(conn, service):
    same = CabAssign(cust_id=1, from_stop=2, to_stop=2, loss=10, shared=True)
    assert service.assign_free_cab(5, same) is False
    ok = CabAssign(cust_id=1, from_stop=1, to_stop=2, loss=10, shared=True)
    assert service.assign_free_cab(5, ok) is True
    row = conn.execute("SELECT from_stand, to_stand, cab_id, customer_id FROM freetaxi_order").fetchall()
    assert row == [(1, 2, 5, 1)]


def test_insert_order_refusals(service):
    assert service.insert_order(1, Order(from_stop=1, to_stop=1, cust_id=1)).id == -1
    assert service.insert_order(2, Order(from_stop=1, to_stop=2, cust_id=1)).id == -1


def test_insert_order_success_and_duplicate(conn, service):
    order = Order(id=0, from_stop=1, to_stop=2, wait=10, loss=30, cust_id=3)
    inserted = service.insert_order(3, order)
    assert inserted.id > 0
    assert inserted.distance == service.distances.distance(1, 2)
    assert inserted.received == NOW
    status, received = conn.execute(
        "SELECT status, received FROM taxi_order WHERE id=?", (inserted.id,)
    ).fetchone()
    assert status == int(OrderStatus.RECEIVED)
    assert datetime.fromisoformat(received) == NOW
    assert service.insert_order(3, order).id == -1


def test_select_order_round_trip(service):
    inserted = service.insert_order(3, Order(from_stop=1, to_stop=3, wait=5, loss=20, cust_id=3))
    fetched = service.select_order(3, inserted.id)
    assert (fetched.from_stop, fetched.to_stop, fetched.wait, fetched.loss) == (1, 3, 5, 20)
    assert fetched.cab == Cab()
    assert fetched.route_id == -1 and fetched.leg_id == -1
    assert fetched.received == NOW
    with pytest.raises(LookupError):
        service.select_order(3, inserted.id + 100)


def test_select_orders_filters_status(conn, service):
    inserted = service.insert_order(3, Order(from_stop=1, to_stop=2, cust_id=3))
    assert [o.id for o in service.select_orders(3, 3)] == [inserted.id]
    service.update_order(3, replace_status(inserted, OrderStatus.CANCELLED))
    assert service.select_orders(3, 3) == []


def replace_status(order, status):
    return Order(**{**order.__dict__, "status": status})


def test_update_order_pickup_records_elapsed(conn, service):
    inserted = service.insert_order(3, Order(from_stop=1, to_stop=2, cust_id=3))
    picked = Order(
        **{**inserted.__dict__, "status": OrderStatus.PICKEDUP, "received": NOW - timedelta(minutes=10)}
    )
    service.update_order(3, picked)
    status, started = conn.execute(
        "SELECT status, started FROM taxi_order WHERE id=?", (inserted.id,)
    ).fetchone()
    assert status == int(OrderStatus.PICKEDUP)
    assert datetime.fromisoformat(started) == NOW
    assert service.stats.count_average(StatKey.AVG_ORDER_PICKUP_TIME) == 600


def test_update_order_other_customer_ignored(conn, service):
    inserted = service.insert_order(3, Order(from_stop=1, to_stop=2, cust_id=3))
    service.update_order(4, replace_status(inserted, OrderStatus.COMPLETED))
    status = conn.execute("SELECT status FROM taxi_order WHERE id=?", (inserted.id,)).fetchone()[0]
    assert status == int(OrderStatus.RECEIVED)
    assert service.stats.count_average(StatKey.AVG_ORDER_COMPLETE_TIME) == 0


def test_select_route_by_cab(conn, service):
    _route_setup(conn)
    route = service.select_route_by_cab(10, 10)
    assert route.id == 100
    assert route.status == RouteStatus.ASSIGNED
    assert [leg.id for leg in route.legs] == [1000, 1001]
    assert route.cab.id == 10
    assert service.select_route_by_cab(11, 11) == Route()


def test_update_leg_started_only_for_own_cab(conn, service):
    _route_setup(conn)
    service.update_leg(10, Leg(id=1000, status=RouteStatus.STARTED))
    service.update_leg(11, Leg(id=1001, status=RouteStatus.STARTED))
    route = service.select_route_by_id(10, 100)
    assert route.legs[0].status == RouteStatus.STARTED
    assert route.legs[0].started == NOW
    assert route.legs[1].status == RouteStatus.ASSIGNED
    assert route.legs[1].started is None


def test_update_leg_completed_sets_time(conn, service):
    _route_setup(conn)
    service.update_leg(10, Leg(id=1001, status=RouteStatus.COMPLETED))
    leg = service.select_route_by_id(10, 100).legs[1]
    assert leg.status == RouteStatus.COMPLETED
    assert leg.completed == NOW


def test_update_route(conn, service):
    _route_setup(conn)
    service.update_route(10, Route(id=100, status=RouteStatus.COMPLETED))
    assert conn.execute("SELECT status FROM route WHERE id=100").fetchone()[0] == int(
        RouteStatus.COMPLETED
    )
    assert service.select_route_by_cab(10, 10) == Route()


def test_assign_to_route(conn, service):
    _route_setup(conn)
    assign = CabAssign(cust_id=55, from_stop=1, to_stop=2, loss=10, shared=True)
    assert service.assign_to_route(10, assign) is True
    row = conn.execute(
        "SELECT cab_id, route_id, leg_id, status, in_pool, customer_id FROM taxi_order"
    ).fetchone()
    assert row == (10, 100, 1000, int(OrderStatus.PICKEDUP), 1, 55)
    passengers = dict(conn.execute("SELECT id, passengers FROM leg").fetchall())
    assert passengers == {1000: 0, 1001: 1}


def test_assign_to_route_without_seats(conn, service):
    _route_setup(conn, seats=1)
    assign = CabAssign(cust_id=55, from_stop=1, to_stop=2, loss=10, shared=True)
    assert service.assign_to_route(10, assign) is False
    assert conn.execute("SELECT count(*) FROM taxi_order").fetchone()[0] == 0


def test_select_route_with_orders(conn, service):
    _route_setup(conn)
    conn.execute(
        "INSERT INTO taxi_order (from_stand, to_stand, max_wait, max_loss, distance, shared, "
        "in_pool, received, eta, status, cab_id, customer_id, route_id, leg_id) "
        "VALUES (1, 2, 5, 10, 7, 1, 1, '2024-05-01 11:00:00', 3, 1, 10, 9, 100, 1000)"
    )
    conn.commit()
    result = service.select_route_with_orders(10, 10)
    assert result.route.id == 100
    assert result.cab.id == 10
    assert len(result.orders) == 1
    order = result.orders[0]
    assert (order.route_id, order.leg_id, order.cab.id) == (100, 1000, 10)
    assert order.received == datetime(2024, 5, 1, 11, 0, 0)


def test_select_traffic(conn, service):
    _route_setup(conn)
    conn.execute("INSERT INTO cab VALUES (20, 3, 0, 4), (30, 1, 1, 4)")
    conn.execute("INSERT INTO route VALUES (200, 1, 20)")
    conn.execute(
        "INSERT INTO leg (id, route_id, from_stand, to_stand, place, distance, status, passengers) "
        "VALUES (2000, 200, 3, 1, 0, 5, 1, 0), (2001, 200, 1, 2, 1, 5, 1, 0)"
    )
    conn.commit()
    traffic = service.select_traffic(0, 1)
    assert [item.route.id for item in traffic.routes] == [100, 200]
    etas = [item.eta for item in traffic.routes]
    assert etas == sorted(etas)
    assert traffic.routes[0].eta == -1
    assert [item.route.cab.id for item in traffic.routes] == [10, 20]
    assert traffic.stop == STOPS[0]
    assert [cab.id for cab in traffic.cabs] == [30]


def test_select_traffic_unknown_stop(service):
    traffic = service.select_traffic(0, 42)
    assert traffic.stop is None
    assert traffic.routes == [] and traffic.cabs == []


def test_select_stats_negative_user(service):
    stats = service.select_stats(0, -1)
    assert (stats.kpis, stats.orders, stats.cabs) == ([], [], [])


def test_select_stats_saves_averages(conn, service):
    service.stats.add_avg_pickup(100)
    service.stats.add_avg_pickup(200)
    conn.execute("INSERT INTO cab VALUES (1, 1, 1, 4), (2, 1, 1, 4), (3, 1, 2, 4)")
    conn.commit()
    service.insert_order(3, Order(from_stop=1, to_stop=2, cust_id=3))
    stats = service.select_stats(0, 1)
    assert Stat("AvgOrderPickupTime", 150) in stats.kpis
    assert Stat("AvgOrderCompleteTime", 0) in stats.kpis
    assert stats.orders == [Stat("RECEIVED", 1)]
    assert sorted((s.name, s.int_val) for s in stats.cabs) == [("CHARGING", 1), ("FREE", 2)]