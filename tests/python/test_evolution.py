from __future__ import annotations

from dataclasses import replace

import numpy as np
import pytest
from pygame.math import Vector2

from neurodrive.sim.core.car import Car, CarKind
from neurodrive.sim.core.config import EvolutionConfig, SimulationConfig
from neurodrive.sim.core.evolution import EvolutionEngine
from neurodrive.sim.core.network import NeuralNetwork, TopologyMismatchError
from neurodrive.sim.core.rng import DeterministicRng
from neurodrive.sim.core.track import Track


def _weights(network: NeuralNetwork) -> list[np.ndarray]:
    return [array for level in network.levels for array in (level.weights, level.biases)]


def _same_brain(a: NeuralNetwork, b: NeuralNetwork) -> bool:
    return all(np.array_equal(x, y) for x, y in zip(_weights(a), _weights(b)))


class _ScriptedDraws(DeterministicRng):
    def __init__(self, draws: list[int]):
        super().__init__(0)
        self._draws = draws
        self._cursor = 0

    def next_int(self, max_value: int) -> int:
        value = self._draws[self._cursor % len(self._draws)]
        self._cursor += 1
        return value


def test_initial_population_spawns_on_the_lane(small_config: SimulationConfig, corridor: Track):
    engine = EvolutionEngine(small_config, corridor)
    assert len(engine.population) == 10
    assert len({car.id for car in engine.population}) == 10
    for car in engine.population:
        assert car.kind is CarKind.LEARNING
        assert car.brain.neuron_counts == [5, 6, 4]
        assert car.position.x == pytest.approx(0.0)
        assert -1800.0 <= car.position.y <= -200.0


def test_same_seed_gives_same_run(small_config: SimulationConfig, corridor: Track):
    first = EvolutionEngine(small_config, corridor)
    second = EvolutionEngine(small_config, Track.corridor())
    for _ in range(15):
        first.tick()
        second.tick()
    for a, b in zip(first.population, second.population):
        assert a.position == b.position
        assert a.fitness == b.fitness


def test_tournament_picks_best_when_it_samples_everything(corridor: Track):
    config = SimulationConfig(
        seed=3, evolution=EvolutionConfig(population_size=10, elitism_count=2, tournament_size=200)
    )
    engine = EvolutionEngine(config, corridor)
    for index, car in enumerate(engine.population):
        car.fitness = float(index)
    parents = engine.select_parents()
    assert len(parents) == 10
    assert all(parent is engine.population[9] for parent in parents)


def test_tournament_keeps_the_fittest_draw(corridor: Track):
    config = SimulationConfig(seed=5, evolution=EvolutionConfig(population_size=10, elitism_count=2, tournament_size=3))
    engine = EvolutionEngine(config, corridor)
    for index, car in enumerate(engine.population):
        car.fitness = float(index)
    engine._rng = _ScriptedDraws([7, 4, 9])
    parents = engine.select_parents()
    # ranks 7, 4 and 9 hold fitness 2, 5 and 0
    assert [parent.fitness for parent in parents] == [5.0] * 10


def test_elites_survive_bit_for_bit(small_config: SimulationConfig, corridor: Track):
    engine = EvolutionEngine(small_config, corridor)
    for index, car in enumerate(engine.population):
        car.fitness = index * 10.0
    top = [engine.population[9].brain, engine.population[8].brain]

    summary = engine.evolve()

    assert summary.generation == 0
    assert summary.best_fitness == pytest.approx(90.0)
    assert summary.average_fitness == pytest.approx(45.0)
    assert engine.generation == 1
    assert engine.tick_count == 0
    assert len(engine.population) == 10
    assert _same_brain(engine.population[0].brain, top[0])
    assert _same_brain(engine.population[1].brain, top[1])
    assert engine.population[0].brain is not top[0]
    for car in engine.population:
        assert car.fitness == 0.0
        assert not car.damaged
        assert not car.recovering


def test_generation_ends_on_tick_limit(small_config: SimulationConfig, corridor: Track):
    engine = EvolutionEngine(small_config, corridor)
    summary = engine.run_generation()
    assert summary.ticks == small_config.evolution.max_generation_ticks
    assert engine.generation == 1
    assert engine.history == [summary]


def test_corridor_run_ends_when_last_car_crashes(small_config: SimulationConfig, corridor: Track):
    config = replace(small_config, evolution=replace(small_config.evolution, max_generation_ticks=None))
    engine = EvolutionEngine(config, corridor)
    headings = [0.6, -0.6, 0.8, -0.8, 1.0, -1.0, 1.2, -1.2, 1.4, -1.4]
    cars = [
        Car(index, CarKind.SCRIPTED, Vector2(0, -1000 - index * 60), heading, config)
        for index, heading in enumerate(headings)
    ]
    engine.replace_population(cars)

    expected = {car.id: 0.0 for car in cars}
    last_crash = 0
    while not engine.should_end_generation():
        alive = [car for car in cars if not car.damaged]
        engine.tick()
        for car in alive:
            expected[car.id] += car.speed
        if any(car.damaged for car in alive):
            last_crash = engine.tick_count
        assert engine.tick_count < 1000

    assert all(car.damaged for car in cars)
    assert engine.tick_count == last_crash
    for car in cars:
        assert car.fitness == pytest.approx(expected[car.id])
        assert car.fitness > 0


def test_scripted_population_cannot_be_bred(small_config: SimulationConfig, corridor: Track):
    engine = EvolutionEngine(small_config, corridor)
    engine.replace_population([Car(0, CarKind.SCRIPTED, Vector2(0, -500), 0.0, small_config)])
    with pytest.raises(ValueError):
        engine.evolve()


def test_seed_from_brain_keeps_elites_exact(small_config: SimulationConfig, corridor: Track):
    engine = EvolutionEngine(small_config, corridor)
    saved = NeuralNetwork(small_config.network_topology, DeterministicRng(77))
    engine.seed_from_brain(saved)

    assert _same_brain(engine.population[0].brain, saved)
    assert _same_brain(engine.population[1].brain, saved)
    assert not _same_brain(engine.population[2].brain, saved)
    assert engine.population[0].brain is not saved


def test_seed_from_brain_rejects_other_topologies(small_config: SimulationConfig, corridor: Track):
    engine = EvolutionEngine(small_config, corridor)
    with pytest.raises(TopologyMismatchError):
        engine.seed_from_brain(NeuralNetwork([3, 6, 4], DeterministicRng(1)))


def test_snapshot_reports_cars_and_best_brain(small_config: SimulationConfig, corridor: Track):
    engine = EvolutionEngine(small_config, corridor)
    engine.step(3)
    snapshot = engine.snapshot()
    assert snapshot.tick == 3
    assert len(snapshot.cars) == 10
    assert snapshot.metadata.network_topology == [5, 6, 4]
    assert snapshot.metadata.seed == small_config.seed
    assert snapshot.stats.population == 10
    first = snapshot.cars[0]
    assert len(first["rays"]) == 5
    assert len(first["polygon"]) == 4
    assert first["status"] in {"Active", "Recovering", "Damaged"}
    assert snapshot.best_car_id is not None
    assert len(snapshot.best_brain["levels"]) == 2
    assert len(snapshot.best_brain["levels"][-1]["outputs"]) == 4


def test_reset_restores_first_generation(small_config: SimulationConfig, corridor: Track):
    engine = EvolutionEngine(small_config, corridor)
    start = [Vector2(car.position) for car in engine.population]
    engine.run_generation()
    engine.reset()
    assert engine.generation == 0
    assert engine.tick_count == 0
    assert [car.position for car in engine.population] == start


def test_tick_outcome_does_not_depend_on_population_order():
    config = SimulationConfig(
        seed=13,
        population_collisions=True,
        evolution=EvolutionConfig(population_size=10, elitism_count=2, max_generation_ticks=None),
    )
    forward = EvolutionEngine(config, Track.corridor(length=300.0))
    backward = EvolutionEngine(config, Track.corridor(length=300.0))
    backward.replace_population(list(reversed(backward.population)))

    for _ in range(40):
        forward.tick()
        backward.tick()

    by_id = {car.id: car for car in backward.population}
    for car in forward.population:
        twin = by_id[car.id]
        assert car.position == twin.position
        assert car.heading == twin.heading
        assert car.fitness == twin.fitness
        assert car.damaged == twin.damaged
        assert car.recovering == twin.recovering
    # cars packed on a short lane must have touched each other
    assert any(car.recover_frames != 0 for car in forward.population)
