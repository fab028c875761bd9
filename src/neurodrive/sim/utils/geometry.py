from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

from pygame.math import Vector2

Segment = Tuple[Vector2, Vector2]
Polygon = Sequence[Vector2]


@dataclass(frozen=True, slots=True)
class Intersection:
    x: float
    y: float
    offset: float


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def segment_intersection(a: Vector2, b: Vector2, c: Vector2, d: Vector2) -> Intersection | None:
    """
    Intersect segment AB with segment CD.

    Returns the hit point together with its fractional position along AB, or None when the
    segments are parallel or do not overlap. Touching an endpoint counts as a hit.
    """

    t_top = (d.x - c.x) * (a.y - c.y) - (d.y - c.y) * (a.x - c.x)
    u_top = (c.y - a.y) * (a.x - b.x) - (c.x - a.x) * (a.y - b.y)
    bottom = (d.y - c.y) * (b.x - a.x) - (d.x - c.x) * (b.y - a.y)

    if bottom != 0:
        t = t_top / bottom
        u = u_top / bottom
        if 0 <= t <= 1 and 0 <= u <= 1:
            return Intersection(x=lerp(a.x, b.x, t), y=lerp(a.y, b.y, t), offset=t)
    return None


def polygons_intersect(poly_a: Polygon, poly_b: Polygon) -> bool:
    count_a = len(poly_a)
    count_b = len(poly_b)
    for i in range(count_a):
        a = poly_a[i]
        b = poly_a[(i + 1) % count_a]
        for j in range(count_b):
            if segment_intersection(a, b, poly_b[j], poly_b[(j + 1) % count_b]) is not None:
                return True
    return False


def forward_vector(heading: float) -> Vector2:
    # heading 0 points towards -y
    return Vector2(-math.sin(heading), -math.cos(heading))


def heading_towards(dx: float, dy: float) -> float:
    return math.atan2(-dx, -dy)


def wrap_angle(delta: float) -> float:
    while delta > math.pi:
        delta -= 2 * math.pi
    while delta < -math.pi:
        delta += 2 * math.pi
    return delta


def nearest_point_on_segment(point: Vector2, a: Vector2, b: Vector2) -> tuple[Vector2, float]:
    vx = b.x - a.x
    vy = b.y - a.y
    wx = point.x - a.x
    wy = point.y - a.y
    vv = vx * vx + vy * vy or 1e-6
    t = (vx * wx + vy * wy) / vv
    if t < 0.0:
        t = 0.0
    elif t > 1.0:
        t = 1.0
    return Vector2(a.x + vx * t, a.y + vy * t), t


def rectangle_polygon(center: Vector2, width: float, height: float, heading: float) -> list[Vector2]:
    rad = math.hypot(width, height) / 2
    alpha = math.atan2(width, height)
    corners = (heading - alpha, heading + alpha, math.pi + heading - alpha, math.pi + heading + alpha)
    return [Vector2(center.x - math.sin(angle) * rad, center.y - math.cos(angle) * rad) for angle in corners]
