from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class TickStats:
    tick: int
    generation: int
    population: int
    active: int
    recovering: int
    damaged: int
    best_fitness: float
    average_fitness: float
    tick_duration_ms: float = 0.0


@dataclass(slots=True)
class GenerationSummary:
    generation: int
    ticks: int
    best_fitness: float
    average_fitness: float
    damaged: int
