from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from pygame.math import Vector2

from ..utils.geometry import Segment, heading_towards, nearest_point_on_segment
from .rng import DeterministicRng
from .spatial_grid import SegmentGrid

STOP_STATES = frozenset({"red", "yellow"})


@dataclass
class LaneGuide:
    p1: Vector2
    p2: Vector2

    def direction_vector(self) -> Vector2:
        direction = self.p2 - self.p1
        if direction.length_squared() < 1e-12:
            return Vector2(0.0, -1.0)
        return direction.normalize()

    def heading(self) -> float:
        direction = self.direction_vector()
        return heading_towards(direction.x, direction.y)

    def point_at(self, t: float) -> Vector2:
        return self.p1 + (self.p2 - self.p1) * t

    @property
    def midpoint(self) -> Vector2:
        return self.point_at(0.5)


@dataclass
class TrafficLight:
    center: Vector2
    state: str = "green"

    @property
    def is_stopping(self) -> bool:
        return self.state in STOP_STATES


@dataclass(frozen=True)
class LaneProjection:
    point: Vector2
    t: float
    distance: float
    guide: LaneGuide


class Track:
    """Static road geometry the cars drive against: borders, lane centre lines and lights."""

    def __init__(
        self,
        borders: Iterable[Segment],
        lane_guides: Iterable[LaneGuide] = (),
        lights: Iterable[TrafficLight] = (),
        cell_size: float = 200.0,
    ):
        self._grid = SegmentGrid(cell_size)
        self._grid.extend((Vector2(a), Vector2(b)) for a, b in borders)
        self.lane_guides: List[LaneGuide] = list(lane_guides)
        self.lights: List[TrafficLight] = list(lights)

    @property
    def borders(self) -> List[Segment]:
        return self._grid.segments

    def borders_near(self, position: Vector2, radius: float) -> List[Segment]:
        return self._grid.query(position, radius)

    def nearest_lane_projection(self, position: Vector2) -> LaneProjection | None:
        best: LaneProjection | None = None
        for guide in self.lane_guides:
            point, t = nearest_point_on_segment(position, guide.p1, guide.p2)
            distance = point.distance_to(position)
            if best is None or distance < best.distance:
                best = LaneProjection(point=point, t=t, distance=distance, guide=guide)
        return best

    def spawn_pose(self, rng: DeterministicRng, low: float = 0.1, high: float = 0.9) -> tuple[Vector2, float]:
        if not self.lane_guides:
            return Vector2(100.0, 100.0), 0.0
        guide = self.lane_guides[rng.next_int(len(self.lane_guides))]
        t = rng.next_range(low, high)
        return guide.point_at(t), guide.heading()

    @classmethod
    def corridor(cls, length: float = 2000.0, width: float = 200.0, cell_size: float = 200.0) -> "Track":
        """Straight road from the origin towards -y with one centre lane guide."""

        half = width / 2
        borders = [
            (Vector2(-half, 0.0), Vector2(-half, -length)),
            (Vector2(half, 0.0), Vector2(half, -length)),
        ]
        lanes = [LaneGuide(Vector2(0.0, 0.0), Vector2(0.0, -length))]
        return cls(borders, lanes, cell_size=cell_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "borders": [[[a.x, a.y], [b.x, b.y]] for a, b in self.borders],
            "lanes": [[[g.p1.x, g.p1.y], [g.p2.x, g.p2.y]] for g in self.lane_guides],
            "lights": [{"center": [l.center.x, l.center.y], "state": l.state} for l in self.lights],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], cell_size: float = 200.0) -> "Track":
        borders = [_segment(raw) for raw in data.get("borders", [])]
        lanes = [LaneGuide(*_segment(raw)) for raw in data.get("lanes", [])]
        lights = [
            TrafficLight(center=Vector2(*raw["center"]), state=raw.get("state", "green"))
            for raw in data.get("lights", [])
        ]
        return cls(borders, lanes, lights, cell_size=cell_size)

    @classmethod
    def from_json(cls, path: Path, cell_size: float = 200.0) -> "Track":
        return cls.from_dict(json.loads(Path(path).read_text()), cell_size=cell_size)


def _segment(raw: Sequence[Sequence[float]]) -> Segment:
    if len(raw) != 2:
        raise ValueError(f"segment needs two points, got {len(raw)}")
    return Vector2(*raw[0]), Vector2(*raw[1])
