from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Sequence

from pygame.math import Vector2

from ..core.config import AssistConfig, RecoveryConfig
from ..core.track import LaneProjection, TrafficLight
from ..utils.geometry import Intersection, Polygon, Segment, forward_vector, heading_towards, wrap_angle

if TYPE_CHECKING:
    from ..core.car import Car


def steering_delta(car: Car, target: Vector2) -> float:
    return wrap_angle(heading_towards(target.x - car.position.x, target.y - car.position.y) - car.heading)


def must_stop_for_light(car: Car, lights: Iterable[TrafficLight], assists: AssistConfig) -> bool:
    forward = forward_vector(car.heading)
    px = car.position.x
    py = car.position.y
    for light in lights:
        if not light.is_stopping:
            continue
        dx = light.center.x - px
        dy = light.center.y - py
        dist = (dx * dx + dy * dy) ** 0.5
        if dist > assists.light_stop_distance:
            continue
        dot = (dx * forward.x + dy * forward.y) / (dist or 1.0)
        if dot > assists.light_stop_alignment:
            return True
    return False


def apply_light_stop(car: Car) -> None:
    car.controls.forward = False
    car.controls.reverse = False
    if car.speed > 0:
        car.speed = max(0.0, car.speed - car.friction * 2)


def apply_auto_run(car: Car) -> None:
    if car.speed < 0.1:
        car.controls.forward = True
        car.controls.reverse = False


def apply_lane_assist(car: Car, lane: LaneProjection, assists: AssistConfig) -> None:
    if lane.distance <= assists.lane_assist_threshold:
        return
    delta = steering_delta(car, lane.point)
    threshold = car.turn_speed * 1.5
    car.controls.left = delta > threshold
    car.controls.right = delta < -threshold


def apply_hard_lane_enforcement(car: Car, lane: LaneProjection, assists: AssistConfig) -> bool:
    """
    Pull a car that has wandered far from its lane back towards it.

    Returns True when the deviation was extreme enough to snap the car onto the lane. The snap
    bypasses the physics step entirely.
    """

    max_deviation = assists.hard_lane_max_deviation
    if lane.distance <= max_deviation:
        return False
    delta = steering_delta(car, lane.point)
    controls = car.controls
    controls.forward = True
    controls.reverse = False
    controls.left = delta > 0
    controls.right = delta < 0
    cap = car.max_speed * 0.5
    if car.speed > cap:
        car.speed = max(cap, car.speed - car.friction * 2)
    if lane.distance > max_deviation * 1.8:
        car.position = Vector2(lane.point)
        car.heading = lane.guide.heading()
        car.speed = min(car.speed, cap * 0.5)
        return True
    return False


def _average_offset(readings: Sequence[Intersection | None]) -> float:
    offsets = [reading.offset for reading in readings if reading is not None]
    if not offsets:
        return 1.0
    return sum(offsets) / len(offsets)


def apply_recovery(
    car: Car,
    borders: Sequence[Segment],
    traffic: Sequence[Polygon],
    lane: LaneProjection | None,
    recovery: RecoveryConfig,
) -> None:
    controls = car.controls
    if lane is not None:
        delta = steering_delta(car, lane.point)
        distance_to_lane = lane.distance
    else:
        readings = car.sensor.readings if car.sensor is not None else []
        half = len(readings) // 2
        left_avg = _average_offset(readings[:half])
        right_avg = _average_offset(readings[half:])
        delta = 0.5 if right_avg < left_avg else -0.5
        distance_to_lane = float("inf")

    if car.recover_frames > recovery.reverse_ticks:
        controls.forward = False
        controls.reverse = True
    else:
        controls.reverse = False
        controls.forward = True
    threshold = car.turn_speed * 2
    controls.left = delta > threshold
    controls.right = delta < -threshold

    if car.speed > 0 and controls.reverse:
        car.speed = max(0.0, car.speed - car.friction * 3)
    car.recover_frames -= 1

    still_hit = car.assess_damage(borders, traffic)
    if (not still_hit and car.recover_frames <= 0) or distance_to_lane < recovery.lane_exit_distance:
        car.recovering = False
