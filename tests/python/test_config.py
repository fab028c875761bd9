from __future__ import annotations

import math
from pathlib import Path

import pytest

from neurodrive.sim.core.config import EvolutionConfig, NetworkConfig, SensorConfig, SimulationConfig, load_config

DEFAULT_YAML = Path(__file__).resolve().parents[2] / "configs" / "default.yaml"


def test_default_yaml_matches_builtin_defaults():
    assert SimulationConfig.from_yaml(DEFAULT_YAML) == SimulationConfig()


def test_partial_yaml_overrides_only_named_fields(tmp_path):
    path = tmp_path / "fast.yaml"
    path.write_text(
        "seed: 3\n"
        "sensor:\n"
        "  ray_count: 7\n"
        "  ray_spread: pi/3\n"
        "evolution:\n"
        "  population_size: 20\n"
        "  max_generation_ticks: null\n"
    )
    config = SimulationConfig.from_yaml(path)
    assert config.seed == 3
    assert config.sensor.ray_count == 7
    assert config.sensor.ray_spread == pytest.approx(math.pi / 3)
    assert config.sensor.ray_length == 150.0
    assert config.evolution.population_size == 20
    assert config.evolution.max_generation_ticks is None
    assert config.network_topology == [7, 6, 4]


def test_empty_mapping_gives_defaults():
    assert load_config({}) == SimulationConfig()


def test_unknown_field_is_rejected():
    with pytest.raises(TypeError):
        load_config({"car": {"wheels": 4}})


@pytest.mark.parametrize(
    "kwargs",
    [
        {"network": NetworkConfig(output_neurons=3)},
        {"sensor": SensorConfig(ray_count=0)},
        {"evolution": EvolutionConfig(population_size=0, elitism_count=0)},
        {"evolution": EvolutionConfig(population_size=4, elitism_count=5)},
        {"evolution": EvolutionConfig(tournament_size=0)},
        {"evolution": EvolutionConfig(mutation_rate=1.5)},
    ],
)
def test_invalid_settings_raise(kwargs):
    with pytest.raises(ValueError):
        SimulationConfig(**kwargs)


def test_config_is_immutable():
    config = SimulationConfig()
    with pytest.raises(AttributeError):
        config.seed = 5
