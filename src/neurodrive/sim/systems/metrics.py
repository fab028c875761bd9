from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from ..types.metrics import GenerationSummary, TickStats

if TYPE_CHECKING:
    from ..core.car import Car


def _fitness_stats(cars: Sequence[Car]) -> tuple[float, float]:
    if not cars:
        return 0.0, 0.0
    total = 0.0
    best = cars[0].fitness
    for car in cars:
        total += car.fitness
        if car.fitness > best:
            best = car.fitness
    return best, total / len(cars)


def create_tick_stats(tick: int, generation: int, cars: Sequence[Car], duration_ms: float) -> TickStats:
    damaged = sum(1 for car in cars if car.damaged)
    recovering = sum(1 for car in cars if car.recovering and not car.damaged)
    best, average = _fitness_stats(cars)
    return TickStats(
        tick=tick,
        generation=generation,
        population=len(cars),
        active=len(cars) - damaged - recovering,
        recovering=recovering,
        damaged=damaged,
        best_fitness=best,
        average_fitness=average,
        tick_duration_ms=duration_ms,
    )


def summarize_generation(generation: int, ticks: int, cars: Sequence[Car]) -> GenerationSummary:
    best, average = _fitness_stats(cars)
    return GenerationSummary(
        generation=generation,
        ticks=ticks,
        best_fitness=best,
        average_fitness=average,
        damaged=sum(1 for car in cars if car.damaged),
    )
