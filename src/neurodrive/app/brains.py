from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..sim.core.config import SimulationConfig
from ..sim.core.network import NeuralNetwork


@dataclass(frozen=True)
class BrainRecord:
    network: NeuralNetwork
    generation: Optional[int]
    fitness: Optional[float]


def should_save(fitness: float, config: SimulationConfig) -> bool:
    return fitness >= config.evolution.min_fitness_for_save


def brain_payload(
    network: NeuralNetwork, generation: int, fitness: float, config: SimulationConfig
) -> Dict[str, Any]:
    return {
        "brain": network.to_dict(),
        "generation": generation,
        "fitness": fitness,
        "config": {
            "population_size": config.evolution.population_size,
            "mutation_rate": config.evolution.mutation_rate,
            "sensor_rays": config.sensor.ray_count,
            "network_topology": config.network_topology,
        },
        "export_date": datetime.now(timezone.utc).isoformat(),
    }


def export_brain(
    path: Path, network: NeuralNetwork, generation: int, fitness: float, config: SimulationConfig
) -> None:
    payload = brain_payload(network, generation, fitness, config)
    path = Path(path)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2))
    tmp_path.replace(path)


def parse_brain(data: Dict[str, Any]) -> BrainRecord:
    if "brain" not in data:
        # bare network dump
        return BrainRecord(network=NeuralNetwork.from_dict(data), generation=None, fitness=None)
    generation = data.get("generation")
    fitness = data.get("fitness")
    return BrainRecord(
        network=NeuralNetwork.from_dict(data["brain"]),
        generation=int(float(generation)) if _is_number(generation) else None,
        fitness=float(fitness) if _is_number(fitness) else None,
    )


def import_brain(path: Path) -> BrainRecord:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a brain object")
    return parse_brain(data)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        try:
            return math.isfinite(float(value))
        except ValueError:
            return False
    return False
