from __future__ import annotations

from typing import TYPE_CHECKING, List, Sequence

from pygame.math import Vector2

from ..utils.geometry import Intersection, Polygon, Segment, forward_vector, lerp, segment_intersection
from .config import SensorConfig

if TYPE_CHECKING:
    from .car import Car


class Sensor:
    """Fan of rays cast from the owning car; each ray reports its closest hit."""

    def __init__(self, car: "Car", config: SensorConfig):
        self.car = car
        self.ray_count = config.ray_count
        self.ray_length = config.ray_length
        self.ray_spread = config.ray_spread
        self.rays: List[Segment] = []
        self.readings: List[Intersection | None] = []

    def update(self, borders: Sequence[Segment], traffic: Sequence[Polygon]) -> None:
        self.cast_rays()
        self.readings = [self._get_reading(ray, borders, traffic) for ray in self.rays]

    def inputs(self) -> List[float]:
        return [0.0 if reading is None else 1.0 - reading.offset for reading in self.readings]

    def cast_rays(self) -> None:
        car = self.car
        half_spread = self.ray_spread / 2
        self.rays = []
        for i in range(self.ray_count):
            fraction = 0.5 if self.ray_count == 1 else i / (self.ray_count - 1)
            ray_angle = lerp(half_spread, -half_spread, fraction) + car.heading
            start = Vector2(car.position)
            end = start + forward_vector(ray_angle) * self.ray_length
            self.rays.append((start, end))

    @staticmethod
    def _get_reading(
        ray: Segment, borders: Sequence[Segment], traffic: Sequence[Polygon]
    ) -> Intersection | None:
        start, end = ray
        closest: Intersection | None = None
        for a, b in borders:
            touch = segment_intersection(start, end, a, b)
            if touch is not None and (closest is None or touch.offset < closest.offset):
                closest = touch
        for polygon in traffic:
            count = len(polygon)
            for j in range(count):
                touch = segment_intersection(start, end, polygon[j], polygon[(j + 1) % count])
                if touch is not None and (closest is None or touch.offset < closest.offset):
                    closest = touch
        return closest
