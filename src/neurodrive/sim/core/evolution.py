from __future__ import annotations

import logging
import math
from time import perf_counter
from typing import Any, Dict, Iterable, List, Sequence

from pygame.math import Vector2

from ..systems import metrics as metrics_system, traffic as traffic_system
from ..types.metrics import GenerationSummary, TickStats
from ..types.snapshot import Snapshot, SnapshotMetadata
from ..utils.geometry import Polygon, Segment
from .car import Car, CarKind
from .config import SimulationConfig
from .network import NeuralNetwork, TopologyMismatchError
from .rng import DeterministicRng, derive_stream_seed
from .track import Track

log = logging.getLogger(__name__)

_SPAWN_RNG_SALT = 0x5BA7A5EED0C0FFEE
_GENETICS_RNG_SALT = 0x6E7E71C5DEADBEA7
_TRAFFIC_RNG_SALT = 0x7A4F1CCA12B0A7ED


class EvolutionEngine:
    """
    Owns the population, ticks it, and breeds the next generation once the current one ends.

    Each tick starts by snapshotting every car polygon; all cars then sense and collide
    against that snapshot, so the outcome of a tick does not depend on iteration order.
    """

    def __init__(
        self,
        config: SimulationConfig,
        track: Track,
        rng: DeterministicRng | None = None,
        population: Iterable[Car] | None = None,
    ):
        self._config = config
        self.track = track
        self._rng = rng if rng is not None else DeterministicRng(config.seed)
        self._spawn_rng = DeterministicRng(derive_stream_seed(self._rng.seed, _SPAWN_RNG_SALT))
        self._genetics_rng = DeterministicRng(derive_stream_seed(self._rng.seed, _GENETICS_RNG_SALT))
        self._traffic_rng = DeterministicRng(derive_stream_seed(self._rng.seed, _TRAFFIC_RNG_SALT))
        self._next_id = 0
        self.generation = 0
        self.tick_count = 0
        self.history: List[GenerationSummary] = []
        self._stats: TickStats | None = None
        self._traffic: List[Car] = []
        self._traffic_routes: List[traffic_system.TrafficRoute] = []
        self.traffic_brain: NeuralNetwork | None = None
        car = config.car
        self._border_reach = (
            max(config.sensor.ray_length, math.hypot(car.width, car.height) / 2)
            + max(car.max_speed, config.traffic.max_speed)
            + 1.0
        )
        if population is None:
            self._population = self.generate_cars(config.evolution.population_size)
        else:
            self._population = list(population)
        self._respawn_traffic()

    @property
    def population(self) -> List[Car]:
        return self._population

    @property
    def traffic(self) -> List[Car]:
        return self._traffic

    @property
    def stats(self) -> TickStats | None:
        return self._stats

    @property
    def best_car(self) -> Car | None:
        if not self._population:
            return None
        return max(self._population, key=lambda car: car.fitness)

    def reset(self) -> None:
        self._rng.reset()
        self._spawn_rng.reset()
        self._genetics_rng.reset()
        self._traffic_rng.reset()
        self._next_id = 0
        self.generation = 0
        self.tick_count = 0
        self.history.clear()
        self._stats = None
        self._population = self.generate_cars(self._config.evolution.population_size)
        self._respawn_traffic()

    def generate_cars(self, count: int) -> List[Car]:
        topology = self._config.network_topology
        return [self._spawn_learning_car(NeuralNetwork(topology, self._genetics_rng)) for _ in range(count)]

    def replace_population(self, cars: Iterable[Car]) -> None:
        self._population = list(cars)
        self.tick_count = 0

    def seed_from_brain(self, network: NeuralNetwork) -> None:
        """Give every car a copy of `network`; all but the elite slots are mutated. Traffic drives with it too."""

        topology = self._config.network_topology
        if network.neuron_counts != topology:
            raise TopologyMismatchError(f"saved brain {network.neuron_counts} does not fit {topology}")
        evolution = self._config.evolution
        for index, car in enumerate(self._population):
            if car.kind is not CarKind.LEARNING:
                continue
            car.brain = network.copy()
            if index >= evolution.elitism_count:
                car.brain.mutate(evolution.mutation_rate, self._genetics_rng)
        self.traffic_brain = network.copy()
        for route in self._traffic_routes:
            route.brain = network.copy()
        log.info("Seeded %d cars from a saved brain", len(self._population))

    def step(self, ticks: int = 1) -> TickStats:
        stats = None
        for _ in range(max(1, ticks)):
            stats = self.tick()
            if self.should_end_generation():
                self.evolve()
        return stats

    def tick(self) -> TickStats:
        start = perf_counter()
        config = self._config
        track = self.track

        # polygons are rebuilt each update, never mutated in place, so references form a snapshot
        traffic_polygons = [car.polygon for car in self._traffic]
        population_polygons = (
            [car.polygon for car in self._population] if config.population_collisions else []
        )

        for index, (car, route) in enumerate(zip(self._traffic, self._traffic_routes)):
            if car.damaged:
                continue
            others = traffic_polygons[:index] + traffic_polygons[index + 1 :]
            borders = self._borders_for(car)
            traffic_system.steer_traffic(self, car, route, borders, others)
            car.update(borders, others, track)
        if self._traffic and config.traffic.continuous:
            traffic_system.recycle_traffic(self, self._reference_point())

        for index, car in enumerate(self._population):
            if car.damaged:
                continue
            obstacles = self._obstacles_for(index, traffic_polygons, population_polygons)
            car.update(self._borders_for(car), obstacles, track)

        self.tick_count += 1
        duration_ms = (perf_counter() - start) * 1000.0
        self._stats = metrics_system.create_tick_stats(
            self.tick_count, self.generation, self._population, duration_ms
        )
        log.debug(
            "tick %d gen %d: %d active, %d recovering, %d damaged",
            self.tick_count,
            self.generation,
            self._stats.active,
            self._stats.recovering,
            self._stats.damaged,
        )
        return self._stats

    def should_end_generation(self) -> bool:
        if self._population and all(car.damaged for car in self._population):
            return True
        max_ticks = self._config.evolution.max_generation_ticks
        return max_ticks is not None and self.tick_count >= max_ticks

    def select_parents(self) -> List[Car]:
        """Tournament selection: best of `tournament_size` uniform draws, with replacement."""

        ranked = sorted(self._population, key=lambda car: car.fitness, reverse=True)
        evolution = self._config.evolution
        selected: List[Car] = []
        for _ in range(evolution.population_size):
            tournament = [ranked[self._rng.next_int(len(ranked))] for _ in range(evolution.tournament_size)]
            selected.append(max(tournament, key=lambda car: car.fitness))
        return selected

    def evolve(self) -> GenerationSummary:
        if any(car.kind is not CarKind.LEARNING for car in self._population):
            raise ValueError("only populations of learning cars can be bred")
        evolution = self._config.evolution
        ranked = sorted(self._population, key=lambda car: car.fitness, reverse=True)
        summary = metrics_system.summarize_generation(self.generation, self.tick_count, ranked)
        self.history.append(summary)
        log.info(
            "Generation %d complete - best: %.2f, avg: %.2f after %d ticks",
            summary.generation,
            summary.best_fitness,
            summary.average_fitness,
            summary.ticks,
        )

        next_generation: List[Car] = [
            self._spawn_learning_car(elite.brain.copy()) for elite in ranked[: evolution.elitism_count]
        ]
        if len(next_generation) < evolution.population_size:
            parents = self.select_parents()
            while len(next_generation) < evolution.population_size:
                first = parents[self._rng.next_int(len(parents))]
                second = parents[self._rng.next_int(len(parents))]
                child = NeuralNetwork.crossover(first.brain, second.brain, self._genetics_rng)
                child.mutate(evolution.mutation_rate, self._genetics_rng)
                next_generation.append(self._spawn_learning_car(child))

        self._population = next_generation
        self.generation += 1
        self.tick_count = 0
        self._respawn_traffic()
        log.info("Generation %d started with %d cars", self.generation, len(self._population))
        return summary

    def run_generation(self) -> GenerationSummary:
        """Tick until the generation ends, then breed. Needs `max_generation_ticks` for learning cars."""

        while not self.should_end_generation():
            self.tick()
        return self.evolve()

    def snapshot(self) -> Snapshot:
        stats = self._stats
        if stats is None:
            stats = metrics_system.create_tick_stats(self.tick_count, self.generation, self._population, 0.0)
        best = self.best_car
        return Snapshot(
            tick=self.tick_count,
            generation=self.generation,
            stats=stats,
            cars=[self._car_snapshot(car) for car in self._population],
            traffic=[self._car_snapshot(car) for car in self._traffic if not car.damaged],
            best_car_id=best.id if best is not None else None,
            best_brain=self._brain_snapshot(best.brain) if best is not None and best.brain is not None else None,
            metadata=SnapshotMetadata(
                seed=self._rng.seed,
                config_version=self._config.config_version,
                population_size=self._config.evolution.population_size,
                network_topology=self._config.network_topology,
            ),
        )

    def _spawn_learning_car(self, brain: NeuralNetwork) -> Car:
        position, heading = self.track.spawn_pose(self._spawn_rng)
        return Car(self._allocate_id(), CarKind.LEARNING, position, heading, self._config, brain=brain)

    def _allocate_id(self) -> int:
        car_id = self._next_id
        self._next_id += 1
        return car_id

    def _respawn_traffic(self) -> None:
        if not self._config.traffic.enabled:
            self._traffic = []
            self._traffic_routes = []
            return
        self._traffic, self._traffic_routes = traffic_system.spawn_traffic(self, self._reference_point())

    def _reference_point(self) -> Vector2:
        best = self.best_car
        return Vector2(best.position) if best is not None else Vector2()

    def _borders_for(self, car: Car) -> List[Segment]:
        return self.track.borders_near(car.position, self._border_reach)

    @staticmethod
    def _obstacles_for(
        index: int, traffic_polygons: Sequence[Polygon], population_polygons: Sequence[Polygon]
    ) -> List[Polygon]:
        if not population_polygons:
            return list(traffic_polygons)
        return list(traffic_polygons) + list(population_polygons[:index]) + list(population_polygons[index + 1 :])

    @staticmethod
    def _car_snapshot(car: Car) -> Dict[str, Any]:
        sensor = car.sensor
        return {
            "id": car.id,
            "kind": car.kind.value,
            "x": car.position.x,
            "y": car.position.y,
            "heading": car.heading,
            "speed": car.speed,
            "fitness": car.fitness,
            "status": car.status.value,
            "damaged": car.damaged,
            "recovering": car.recovering,
            "polygon": [[point.x, point.y] for point in car.polygon],
            "rays": [[[a.x, a.y], [b.x, b.y]] for a, b in sensor.rays] if sensor is not None else [],
            "readings": (
                [None if r is None else {"x": r.x, "y": r.y, "offset": r.offset} for r in sensor.readings]
                if sensor is not None
                else []
            ),
        }

    @staticmethod
    def _brain_snapshot(brain: NeuralNetwork) -> Dict[str, Any]:
        payload = brain.to_dict()
        for level_payload, level in zip(payload["levels"], brain.levels):
            level_payload["inputs"] = level.inputs.tolist()
            level_payload["outputs"] = level.outputs.tolist()
        return payload
