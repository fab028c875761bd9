from __future__ import annotations

import pytest
from pygame.math import Vector2

from neurodrive.sim.core.car import Car, CarKind
from neurodrive.sim.core.config import SensorConfig, SimulationConfig


def _player(ray_count: int, heading: float = 0.0) -> Car:
    config = SimulationConfig(sensor=SensorConfig(ray_count=ray_count, ray_length=150.0))
    return Car(0, CarKind.PLAYER, Vector2(0, 0), heading, config)


def test_single_ray_points_straight_ahead():
    car = _player(1)
    car.sensor.cast_rays()
    (start, end), = car.sensor.rays
    assert (start.x, start.y) == pytest.approx((0.0, 0.0))
    assert (end.x, end.y) == pytest.approx((0.0, -150.0))


def test_rays_fan_from_left_to_right():
    car = _player(3)
    car.sensor.cast_rays()
    ends = [end for _, end in car.sensor.rays]
    # first ray is rotated by +spread/2, which turns towards -x
    assert ends[0].x < 0
    assert ends[1].x == pytest.approx(0.0)
    assert ends[2].x > 0
    for end in ends:
        assert end.length() == pytest.approx(150.0)


def test_reading_keeps_closest_hit():
    car = _player(1)
    far = (Vector2(-50, -100), Vector2(50, -100))
    near = (Vector2(-50, -30), Vector2(50, -30))
    car.sensor.update([far, near], [])
    reading = car.sensor.readings[0]
    assert reading is not None
    assert reading.offset == pytest.approx(0.2)
    assert reading.y == pytest.approx(-30.0)
    assert car.sensor.inputs() == pytest.approx([0.8])


def test_traffic_polygons_are_sensed():
    car = _player(1)
    box = [Vector2(-10, -70), Vector2(10, -70), Vector2(10, -90), Vector2(-10, -90)]
    car.sensor.update([], [box])
    reading = car.sensor.readings[0]
    assert reading is not None
    assert reading.offset == pytest.approx(70.0 / 150.0)


def test_missing_reading_maps_to_zero_input():
    car = _player(2)
    car.sensor.update([], [])
    assert car.sensor.readings == [None, None]
    assert car.sensor.inputs() == [0.0, 0.0]
