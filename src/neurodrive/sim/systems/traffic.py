from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Sequence

from pygame.math import Vector2

from ..core.car import Car, CarKind
from ..core.network import NeuralNetwork
from ..utils.geometry import Polygon, Segment
from .assists import steering_delta

if TYPE_CHECKING:
    from ..core.evolution import EvolutionEngine

UNSAFE_READING_OFFSET = 0.1


@dataclass
class TrafficRoute:
    lane_index: int
    target: Vector2
    brain: NeuralNetwork | None = None


def spawn_traffic_car(engine: EvolutionEngine, ref_point: Vector2) -> tuple[Car, TrafficRoute]:
    """
    Place a traffic car on one of the lanes closest to `ref_point`.

    Traffic cars carry a sensor but take their controls from `steer_traffic`. When the engine
    holds a saved brain, each car drives with its own copy of it.
    """

    config = engine._config
    rng = engine._traffic_rng
    lanes = engine.track.lane_guides
    if lanes:
        ranked = sorted(range(len(lanes)), key=lambda i: lanes[i].midpoint.distance_to(ref_point))
        pick_from = ranked[: min(config.traffic.nearest_lanes, len(ranked))]
        lane_index = pick_from[rng.next_int(len(pick_from))]
        guide = lanes[lane_index]
        start = guide.point_at(rng.next_range(0.2, 0.8))
        heading = guide.heading()
        target = Vector2(guide.p2)
    else:
        lane_index = -1
        start = Vector2(ref_point.x + rng.next_range(-50.0, 50.0), ref_point.y + rng.next_range(-50.0, 50.0))
        heading = 0.0
        target = start + Vector2(0.0, -200.0)
    car = Car(
        engine._allocate_id(),
        CarKind.PLAYER,
        start,
        heading,
        config,
        max_speed=config.traffic.max_speed,
    )
    brain = engine.traffic_brain.copy() if engine.traffic_brain is not None else None
    return car, TrafficRoute(lane_index=lane_index, target=target, brain=brain)


def spawn_traffic(engine: EvolutionEngine, ref_point: Vector2) -> tuple[List[Car], List[TrafficRoute]]:
    cars: List[Car] = []
    routes: List[TrafficRoute] = []
    for _ in range(engine._config.traffic.count):
        car, route = spawn_traffic_car(engine, ref_point)
        cars.append(car)
        routes.append(route)
    return cars, routes


def _drive_towards_target(car: Car, delta: float) -> None:
    threshold = car.turn_speed * 2
    controls = car.controls
    controls.forward = True
    controls.reverse = False
    controls.left = delta > threshold
    controls.right = delta < -threshold


def steer_traffic(
    engine: EvolutionEngine,
    car: Car,
    route: TrafficRoute,
    borders: Sequence[Segment] = (),
    others: Sequence[Polygon] = (),
) -> None:
    lanes = engine.track.lane_guides
    reached = car.position.distance_to(route.target) < engine._config.traffic.target_reach_distance
    if reached or route.lane_index < 0 or route.lane_index >= len(lanes):
        if lanes:
            route.lane_index = engine._traffic_rng.next_int(len(lanes))
            route.target = Vector2(lanes[route.lane_index].p2)
        else:
            route.lane_index = -1
            route.target = car.position + Vector2(0.0, -100.0)

    delta = steering_delta(car, route.target)
    sensor = car.sensor
    if sensor is None or route.brain is None:
        _drive_towards_target(car, delta)
        return

    sensor.update(borders, others)
    car.controls.apply_outputs(route.brain.feed_forward(sensor.inputs()))
    closest = min((reading.offset for reading in sensor.readings if reading is not None), default=1.0)
    # too close to something, or asking to back up: follow the lane instead
    if closest < UNSAFE_READING_OFFSET or car.controls.reverse:
        _drive_towards_target(car, delta)


def recycle_traffic(engine: EvolutionEngine, ref_point: Vector2) -> int:
    """Replace damaged or far-away traffic cars with fresh spawns near `ref_point`."""

    recycled = 0
    max_distance = engine._config.traffic.recycle_distance
    traffic = engine._traffic
    routes = engine._traffic_routes
    for i, car in enumerate(traffic):
        if car.damaged or car.position.distance_to(ref_point) > max_distance:
            traffic[i], routes[i] = spawn_traffic_car(engine, ref_point)
            recycled += 1
    return recycled
