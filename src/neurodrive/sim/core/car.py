from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence

from pygame.math import Vector2

from ..systems import assists
from ..utils.geometry import Polygon, Segment, polygons_intersect, rectangle_polygon
from .config import SimulationConfig
from .network import NeuralNetwork
from .sensor import Sensor
from .track import Track


class CarKind(str, Enum):
    SCRIPTED = "Scripted"
    PLAYER = "PlayerControlled"
    LEARNING = "Learning"


class CarStatus(str, Enum):
    ACTIVE = "Active"
    RECOVERING = "Recovering"
    DAMAGED = "Damaged"


@dataclass(slots=True)
class Controls:
    forward: bool = False
    left: bool = False
    right: bool = False
    reverse: bool = False

    @classmethod
    def for_kind(cls, kind: CarKind) -> "Controls":
        return cls(forward=kind is CarKind.SCRIPTED)

    def apply_outputs(self, outputs: Sequence[float], threshold: float = 0.5) -> None:
        self.forward = outputs[0] > threshold
        self.left = outputs[1] > threshold
        self.right = outputs[2] > threshold
        self.reverse = outputs[3] > threshold


class Car:
    def __init__(
        self,
        car_id: int,
        kind: CarKind,
        position: Vector2,
        heading: float,
        config: SimulationConfig,
        brain: NeuralNetwork | None = None,
        max_speed: float | None = None,
    ):
        if kind is CarKind.LEARNING and brain is None:
            raise ValueError("learning cars need a brain")
        if kind is not CarKind.LEARNING and brain is not None:
            raise ValueError(f"{kind.value} cars do not carry a brain")

        car_config = config.car
        self.id = car_id
        self.kind = kind
        self.position = Vector2(position)
        self.heading = heading
        self.width = car_config.width
        self.height = car_config.height
        self.speed = 0.0
        self.acceleration = car_config.acceleration
        self.max_speed = max_speed if max_speed is not None else car_config.max_speed
        self.friction = car_config.friction
        self.turn_speed = car_config.turn_speed
        self.damaged = False
        self.recovering = False
        self.recover_frames = 0
        self.fitness = 0.0
        self.controls = Controls.for_kind(kind)
        self.sensor: Sensor | None = None if kind is CarKind.SCRIPTED else Sensor(self, config.sensor)
        self.brain = brain
        if brain is not None and brain.neuron_counts[0] != config.sensor.ray_count:
            raise ValueError(
                f"brain expects {brain.neuron_counts[0]} inputs but the sensor casts {config.sensor.ray_count} rays"
            )
        self._assists = config.assists
        self._recovery = config.recovery
        self.polygon: List[Vector2] = self._create_polygon()

    @property
    def status(self) -> CarStatus:
        if self.damaged:
            return CarStatus.DAMAGED
        if self.recovering:
            return CarStatus.RECOVERING
        return CarStatus.ACTIVE

    @property
    def half_diagonal(self) -> float:
        return math.hypot(self.width, self.height) / 2

    def update(self, borders: Sequence[Segment], traffic: Sequence[Polygon], track: Track | None = None) -> None:
        """
        Advance the car by one tick.

        `traffic` holds the polygons of every other car this one can hit or see. Lane guides
        and lights come from `track`; without it the assists and the light override are idle.
        """

        if self.damaged:
            return

        self.move()
        self.fitness += max(self.speed, 0.0)
        self.polygon = self._create_polygon()
        if self.assess_damage(borders, traffic):
            if self.kind is CarKind.LEARNING:
                self.recovering = True
                self.recover_frames = self._recovery.duration_ticks
            else:
                self.damaged = True

        if self.sensor is None:
            return
        self.sensor.update(borders, traffic)
        self._derive_controls(borders, traffic, track)

    def _derive_controls(self, borders: Sequence[Segment], traffic: Sequence[Polygon], track: Track | None) -> None:
        kind = self.kind
        if kind is CarKind.LEARNING:
            self.controls.apply_outputs(self.brain.feed_forward(self.sensor.inputs()))
        elif kind is not CarKind.PLAYER:
            raise ValueError(f"{kind.value} cars do not sense")

        config = self._assists
        must_stop = track is not None and assists.must_stop_for_light(self, track.lights, config)
        if must_stop:
            assists.apply_light_stop(self)

        if kind is CarKind.LEARNING and not self.recovering:
            if config.auto_run and not must_stop:
                assists.apply_auto_run(self)
            if config.lane_assist and track is not None:
                lane = track.nearest_lane_projection(self.position)
                if lane is not None:
                    assists.apply_lane_assist(self, lane, config)
                    if config.hard_lane_enforcement:
                        assists.apply_hard_lane_enforcement(self, lane, config)

        if self.recovering:
            lane = track.nearest_lane_projection(self.position) if track is not None else None
            assists.apply_recovery(self, borders, traffic, lane, self._recovery)

    def move(self) -> None:
        controls = self.controls
        if controls.forward:
            self.speed += self.acceleration
        if controls.reverse:
            self.speed -= self.acceleration

        if self.speed > self.max_speed:
            self.speed = self.max_speed
        if self.speed < -self.max_speed / 2:
            self.speed = -self.max_speed / 2

        if self.speed > 0:
            self.speed -= self.friction
        if self.speed < 0:
            self.speed += self.friction
        if abs(self.speed) < self.friction:
            self.speed = 0.0

        if self.speed != 0:
            flip = 1 if self.speed > 0 else -1
            if controls.left:
                self.heading += self.turn_speed * flip
            if controls.right:
                self.heading -= self.turn_speed * flip

        self.position = Vector2(
            self.position.x - math.sin(self.heading) * self.speed,
            self.position.y - math.cos(self.heading) * self.speed,
        )

    def assess_damage(self, borders: Sequence[Segment], traffic: Sequence[Polygon]) -> bool:
        polygon = self.polygon
        for border in borders:
            if polygons_intersect(polygon, border):
                return True
        for other in traffic:
            if other and polygons_intersect(polygon, other):
                return True
        return False

    def _create_polygon(self) -> List[Vector2]:
        return rectangle_polygon(self.position, self.width, self.height, self.heading)
