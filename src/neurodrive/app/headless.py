from __future__ import annotations

import argparse
import csv
import json
import logging
import math
from dataclasses import replace
from pathlib import Path
from typing import Optional

from ..sim.core.config import SimulationConfig
from ..sim.core.evolution import EvolutionEngine
from ..sim.core.track import Track
from ..sim.types.metrics import GenerationSummary
from .brains import export_brain, import_brain, should_save

log = logging.getLogger(__name__)

_HEADER = [
    "generation",
    "ticks",
    "best_fitness",
    "average_fitness",
    "damaged",
    "damaged_ratio",
]


def _format_row(summary: GenerationSummary, population: int) -> list[object]:
    damaged_ratio = 0.0 if population <= 0 else summary.damaged / population
    return [
        summary.generation,
        summary.ticks,
        f"{summary.best_fitness:.4f}",
        f"{summary.average_fitness:.4f}",
        summary.damaged,
        f"{damaged_ratio:.4f}",
    ]


def _summary_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "last": 0.0}
    return {
        "min": float(min(values)),
        "max": float(max(values)),
        "avg": float(sum(values) / len(values)),
        "last": float(values[-1]),
    }


def _improvement_slope(values: list[float]) -> float:
    if len(values) < 2:
        return 0.0
    n = len(values)
    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    num = 0.0
    denom = 0.0
    for x, y in enumerate(values):
        num += (x - mean_x) * (y - mean_y)
        denom += (x - mean_x) ** 2
    if denom == 0.0:
        return 0.0
    return float(num / denom)


def load_track(track_path: Optional[Path], config: SimulationConfig) -> Track:
    if track_path is None:
        return Track.corridor(cell_size=config.border_cell_size)
    return Track.from_json(track_path, cell_size=config.border_cell_size)


def run_headless(
    generations: int,
    seed: Optional[int],
    log_path: Optional[Path],
    config_path: Optional[Path] = None,
    track_path: Optional[Path] = None,
    summary_path: Optional[Path] = None,
    brain_in: Optional[Path] = None,
    brain_out: Optional[Path] = None,
    max_ticks: Optional[int] = None,
) -> list[GenerationSummary]:
    config = SimulationConfig.from_yaml(config_path) if config_path else SimulationConfig()
    if seed is not None:
        config = replace(config, seed=seed)
    if max_ticks is not None:
        config = replace(config, evolution=replace(config.evolution, max_generation_ticks=max_ticks))
    if config.evolution.max_generation_ticks is None:
        raise ValueError("headless runs need max_generation_ticks; learning cars never stop on their own")

    engine = EvolutionEngine(config, load_track(track_path, config))
    if brain_in is not None:
        try:
            record = import_brain(brain_in)
            engine.seed_from_brain(record.network)
            log.info("Loaded brain from generation %s", record.generation if record.generation is not None else "unknown")
        except (OSError, ValueError) as exc:
            log.warning("Could not load brain from %s: %s", brain_in, exc)

    writer = None
    csv_file = None
    if log_path:
        csv_file = Path(log_path).open("w", newline="")
        writer = csv.writer(csv_file)
        writer.writerow(_HEADER)

    summaries: list[GenerationSummary] = []
    global_best = -math.inf
    try:
        for _ in range(generations):
            while not engine.should_end_generation():
                engine.tick()
            best_car = engine.best_car
            summary = engine.evolve()
            summaries.append(summary)
            if writer:
                writer.writerow(_format_row(summary, config.evolution.population_size))
            if summary.best_fitness > global_best:
                global_best = summary.best_fitness
                if brain_out is not None and best_car is not None and should_save(summary.best_fitness, config):
                    try:
                        export_brain(brain_out, best_car.brain, summary.generation, summary.best_fitness, config)
                        log.info("Saved brain from generation %d with fitness %.2f", summary.generation, summary.best_fitness)
                    except OSError as exc:
                        log.warning("Saving brain to %s failed: %s", brain_out, exc)
    finally:
        if csv_file:
            csv_file.close()

    if summary_path:
        best_series = [s.best_fitness for s in summaries]
        average_series = [s.average_fitness for s in summaries]
        payload = {
            "generations": generations,
            "seed": config.seed,
            "population_size": config.evolution.population_size,
            "network_topology": config.network_topology,
            "best_fitness": _summary_stats(best_series),
            "average_fitness": _summary_stats(average_series),
            "ticks": _summary_stats([float(s.ticks) for s in summaries]),
            "best_fitness_slope": _improvement_slope(best_series),
            "peak": {
                "value": max(best_series) if best_series else 0.0,
                "generation": summaries[best_series.index(max(best_series))].generation if best_series else -1,
            },
        }
        Path(summary_path).write_text(json.dumps(payload, indent=2))
    return summaries


def main() -> None:
    parser = argparse.ArgumentParser(description="Headless neuro-evolution of self-driving cars")
    parser.add_argument("--generations", type=int, default=10)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--config", type=Path, default=None, help="YAML simulation config")
    parser.add_argument("--track", type=Path, default=None, help="JSON track file (defaults to a straight corridor)")
    parser.add_argument("--log", type=Path, default=None, help="CSV file to write per-generation stats")
    parser.add_argument("--summary", type=Path, default=None, help="Optional JSON file with run summary stats.")
    parser.add_argument("--brain-in", type=Path, default=None, help="Brain file to seed the first generation")
    parser.add_argument("--brain-out", type=Path, default=None, help="Where to autosave new best brains")
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="Override the per-generation tick limit from the config.",
    )
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args()
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_headless(
        args.generations,
        args.seed,
        args.log,
        config_path=args.config,
        track_path=args.track,
        summary_path=args.summary,
        brain_in=args.brain_in,
        brain_out=args.brain_out,
        max_ticks=args.max_ticks,
    )


if __name__ == "__main__":
    main()
