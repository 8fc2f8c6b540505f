# kapir

kapir is the service layer of a shared-cab dispatch API. It handles cabs,
customer orders, planned routes and their legs, and the traffic expected at a
stop. It also keeps running KPIs such as the average pickup time and the
average completion time.

## Installation

```
pip install kapir
```

The package depends only on the standard library.

## Modules

### `kapir.model`

This module holds the data types that are exchanged with clients.

- Status enums: `CabStatus`, `OrderStatus` and `RouteStatus`. They are integer
  enums. Printed or serialised, they show their name.
- Data types: `Cab`, `CabAssign`, `Order`, `Stop`, `Leg`, `Route`,
  `RouteWithOrders`, `RouteWithEta`, `StopTraffic`, `Stat` and `Stats`.

Types that are sent to clients have `to_dict()`. `Cab`, `Order`, `Leg` and
`Route` use PascalCase keys. `Stop`, `RouteWithOrders`, `RouteWithEta`,
`StopTraffic`, `Stat` and `Stats` use lower-case keys.

Types that arrive from clients have a `from_dict()` class method. These are
`Cab`, `CabAssign`, `Order`, `Leg` and `Route`. A status may be given by its
name or by its integer code. A missing required key raises `ValueError`.

### `kapir.distance`

- `distance_km(lat1, lon1, lat2, lon2)` gives the great-circle distance in
  kilometres.
- `travel_minutes(...)` gives whole minutes at a cab speed of 30 km/h. The
  result is never less than 1.
- `DistanceTable(stops)` gives travel minutes between stops.
  - `distance(a, b)` returns 0 when `a` and `b` are the same stop or when either
    stop is unknown.
  - `find_stop(stop_id)` returns the `Stop` with that id, or `None`.
  - Stop ids must lie in `0..5199`. An id outside that range raises
    `ValueError` when the table is built and `IndexError` when it is looked up.

### `kapir.stats`

`StatsCollector` gathers timing samples for each `StatKey`. Its methods are:

- `add_avg_pickup` and `add_avg_complete` record a sample. A value of `-1` is
  ignored.
- `count_average` gives an integer mean, truncated toward zero.
- `save_status()` refreshes the stored averages. It returns SQL `UPDATE`
  statements for the `stat` table.

### `kapir.routing`

This module holds plain functions for route logic:

- `find_leg_at_stop(legs, stop)`
- `enough_place(legs, from_stop, to_stop, seats, place_needed)`
- `seat_range(legs, from_stop, to_stop)`
- `calculate_eta(stand_id, route, now=None)` returns minutes, or `-1` for a
  route whose id is `-1`.
- `get_elapsed(value, now=None)`
- `get_elapsed_dt(value, now=None)`
- `group_legs_by_route(legs)`

### `kapir.service`

`KapirService(conn, distances=None, stats=None)` runs the queries and updates
behind the API on a DB-API connection.

Statements are written with `?` placeholders. Set `service.placeholder`, for
example to `"%s"`, when the driver uses another style. The `clock` attribute
supplies the current time and defaults to `datetime.now`.

The operations are:

- Stops: `read_stops()` loads the stops and rebuilds `service.distances`.
- Cabs:
  - `select_cab`
  - `select_cabs_by_stop`
  - `update_cab`
  - `select_cab_by_route_id`
- Assignments: `assign_free_cab` and `assign_to_route`.
- Legs and routes:
  - `update_leg`
  - `update_route`
  - `select_route_by_cab`
  - `select_route_by_id`
  - `select_route_with_orders`
  - `get_route_with_eta`
- Orders:
  - `select_order`
  - `select_orders`
  - `select_orders_by_route`
  - `insert_order`
  - `update_order`
- Traffic at a stop: `select_traffic` returns the routes that will visit the
  stop, nearest first, and the free cabs standing there.
- Statistics:
  - `select_stats`
  - `select_stats_kpis`
  - `select_stats_orders`
  - `select_stats_cabs`

How failures are reported:

- `select_cab`, `select_cab_by_route_id` and `select_order` raise `LookupError`
  when no row matches.
- `insert_order` returns a default `Order` (id `-1`) when it refuses an order.

## Example

```python
from kapir.model import Stop
from kapir.distance import DistanceTable

stops = [
    Stop(id=0, bearing=0, latitude=52.2297, longitude=21.0122, name="Centre"),
    Stop(id=1, bearing=90, latitude=52.2400, longitude=21.0300, name="North"),
]
table = DistanceTable(stops)
print(table.distance(0, 1))   # minutes by cab, at least 1
print(table.find_stop(1).name)
```

Using the service with an existing database:

```python
import sqlite3
from kapir.service import KapirService

service = KapirService(sqlite3.connect("dispatch.db"))
service.read_stops()
traffic = service.select_traffic(user_id=1, stand_id=0)
print(traffic.to_dict())
```

## What the package does not do

- There is no HTTP server and no command-line program. The web layer that
  routes requests to `KapirService` and checks credentials is not included.
- The package does not create the database schema. It expects the tables
  `cab`, `stop`, `route`, `leg`, `taxi_order`, `freetaxi_order` and `stat` to
  exist already.
- The package does not plan routes or pool orders. It reads and updates routes
  that are stored in the database.

## Running the tests

```
pip install "kapir[test]"
pytest
```