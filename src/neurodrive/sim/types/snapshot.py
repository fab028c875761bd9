from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from .metrics import TickStats


@dataclass(slots=True)
class Snapshot:
    tick: int
    generation: int
    stats: TickStats
    cars: List[Dict[str, Any]]
    traffic: List[Dict[str, Any]]
    best_car_id: int | None
    best_brain: Dict[str, Any] | None
    metadata: "SnapshotMetadata"


@dataclass(slots=True)
class SnapshotMetadata:
    seed: int
    config_version: str
    population_size: int
    network_topology: List[int]
