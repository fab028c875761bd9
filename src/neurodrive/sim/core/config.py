from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass(frozen=True)
class CarConfig:
    width: float = 30.0
    height: float = 50.0
    max_speed: float = 3.0
    acceleration: float = 0.2
    friction: float = 0.05
    turn_speed: float = 0.03


@dataclass(frozen=True)
class SensorConfig:
    ray_count: int = 5
    ray_length: float = 150.0
    ray_spread: float = math.pi / 2


@dataclass(frozen=True)
class NetworkConfig:
    hidden_neurons: int = 6
    output_neurons: int = 4  # forward, left, right, reverse


@dataclass(frozen=True)
class RecoveryConfig:
    duration_ticks: int = 90
    reverse_ticks: int = 45
    lane_exit_distance: float = 12.0


@dataclass(frozen=True)
class AssistConfig:
    lane_assist: bool = True
    lane_assist_threshold: float = 20.0
    auto_run: bool = True
    hard_lane_enforcement: bool = True
    hard_lane_max_deviation: float = 35.0
    light_stop_distance: float = 140.0
    light_stop_alignment: float = 0.5


@dataclass(frozen=True)
class EvolutionConfig:
    population_size: int = 50
    mutation_rate: float = 0.1
    elitism_count: int = 5
    tournament_size: int = 3
    # roughly 30 seconds at 60 fps; None runs until every car is damaged
    max_generation_ticks: int | None = 1800
    min_fitness_for_save: float = 1000.0


@dataclass(frozen=True)
class TrafficConfig:
    enabled: bool = False
    count: int = 20
    max_speed: float = 2.0
    continuous: bool = False
    target_reach_distance: float = 25.0
    recycle_distance: float = 2000.0
    nearest_lanes: int = 30


@dataclass(frozen=True)
class SimulationConfig:
    seed: int = 42
    config_version: str = "v1"
    border_cell_size: float = 200.0
    population_collisions: bool = False
    car: CarConfig = field(default_factory=CarConfig)
    sensor: SensorConfig = field(default_factory=SensorConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)
    assists: AssistConfig = field(default_factory=AssistConfig)
    evolution: EvolutionConfig = field(default_factory=EvolutionConfig)
    traffic: TrafficConfig = field(default_factory=TrafficConfig)

    def __post_init__(self) -> None:
        if self.network.output_neurons != 4:
            raise ValueError(f"networks drive 4 controls, got {self.network.output_neurons} output neurons")
        if self.sensor.ray_count < 1:
            raise ValueError("sensor needs at least one ray")
        evolution = self.evolution
        if evolution.population_size < 1:
            raise ValueError("population_size must be positive")
        if not 0 <= evolution.elitism_count <= evolution.population_size:
            raise ValueError("elitism_count must be between 0 and population_size")
        if evolution.tournament_size < 1:
            raise ValueError("tournament_size must be at least 1")
        if not 0.0 <= evolution.mutation_rate <= 1.0:
            raise ValueError("mutation_rate must be within [0, 1]")

    @property
    def network_topology(self) -> list[int]:
        return [self.sensor.ray_count, self.network.hidden_neurons, self.network.output_neurons]

    @staticmethod
    def from_yaml(path: Path) -> "SimulationConfig":
        data = yaml.safe_load(Path(path).read_text()) or {}
        return load_config(data)


_SECTIONS = {
    "car": CarConfig,
    "sensor": SensorConfig,
    "network": NetworkConfig,
    "recovery": RecoveryConfig,
    "assists": AssistConfig,
    "evolution": EvolutionConfig,
    "traffic": TrafficConfig,
}


def load_config(raw: dict) -> SimulationConfig:
    sections = {name: section(**(raw.get(name) or {})) for name, section in _SECTIONS.items()}
    sensor_raw = raw.get("sensor") or {}
    if isinstance(sensor_raw.get("ray_spread"), str):
        # allow "pi / 2" style spreads in hand-written files
        sections["sensor"] = SensorConfig(
            **{**sensor_raw, "ray_spread": _parse_angle(sensor_raw["ray_spread"])},
        )
    sim_values = {k: v for k, v in raw.items() if k not in _SECTIONS}
    return SimulationConfig(**sections, **sim_values)


def _parse_angle(text: str) -> float:
    normalized = text.replace(" ", "").lower()
    if "pi" not in normalized:
        return float(normalized)
    numerator, _, denominator = normalized.partition("/")
    factor = numerator.replace("*", "").replace("pi", "") or "1"
    value = float(factor) * math.pi
    if denominator:
        value /= float(denominator)
    return value
