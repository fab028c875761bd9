from __future__ import annotations

import math
from typing import Dict, Iterable, List, Tuple

from pygame.math import Vector2

from ..utils.geometry import Segment


class SegmentGrid:
    """
    Uniform grid over static segments.

    Each segment is bucketed into every cell its bounding box touches. Queries return the
    segments whose bounding box overlaps the query square, in insertion order, so callers
    that break ties by scan order behave exactly as a full scan would.
    """

    def __init__(self, cell_size: float) -> None:
        if cell_size <= 0:
            raise ValueError("cell_size must be positive")
        self._cell_size = cell_size
        self._cells: Dict[Tuple[int, int], List[int]] = {}
        self._segments: List[Segment] = []

    def __len__(self) -> int:
        return len(self._segments)

    @property
    def segments(self) -> List[Segment]:
        return self._segments

    def clear(self) -> None:
        self._cells.clear()
        self._segments.clear()

    def insert(self, segment: Segment) -> None:
        index = len(self._segments)
        self._segments.append(segment)
        a, b = segment
        min_x, max_x = self._cell_range(min(a.x, b.x), max(a.x, b.x))
        min_y, max_y = self._cell_range(min(a.y, b.y), max(a.y, b.y))
        cells = self._cells
        for cx in range(min_x, max_x + 1):
            for cy in range(min_y, max_y + 1):
                bucket = cells.get((cx, cy))
                if bucket is None:
                    bucket = []
                    cells[(cx, cy)] = bucket
                bucket.append(index)

    def extend(self, segments: Iterable[Segment]) -> None:
        for segment in segments:
            self.insert(segment)

    def query(self, position: Vector2, radius: float) -> List[Segment]:
        min_x, max_x = self._cell_range(position.x - radius, position.x + radius)
        min_y, max_y = self._cell_range(position.y - radius, position.y + radius)
        left = position.x - radius
        right = position.x + radius
        top = position.y - radius
        bottom = position.y + radius

        found: set[int] = set()
        cells = self._cells
        segments = self._segments
        for cx in range(min_x, max_x + 1):
            for cy in range(min_y, max_y + 1):
                bucket = cells.get((cx, cy))
                if not bucket:
                    continue
                for index in bucket:
                    if index in found:
                        continue
                    a, b = segments[index]
                    if max(a.x, b.x) < left or min(a.x, b.x) > right:
                        continue
                    if max(a.y, b.y) < top or min(a.y, b.y) > bottom:
                        continue
                    found.add(index)
        return [segments[index] for index in sorted(found)]

    def _cell_range(self, low: float, high: float) -> Tuple[int, int]:
        return int(math.floor(low / self._cell_size)), int(math.floor(high / self._cell_size))
