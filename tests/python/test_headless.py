import csv
import json

import pytest

from neurodrive.app.brains import import_brain
from neurodrive.app.headless import run_headless


def _read_csv(path):
    with path.open(newline="") as handle:
        return list(csv.reader(handle))


@pytest.fixture
def small_yaml(tmp_path):
    path = tmp_path / "small.yaml"
    path.write_text(
        "evolution:\n"
        "  population_size: 6\n"
        "  elitism_count: 1\n"
        "  max_generation_ticks: 8\n"
        "  min_fitness_for_save: 0.0\n"
    )
    return path


def test_headless_log_has_one_row_per_generation(tmp_path, small_yaml):
    log_path = tmp_path / "run.csv"
    summaries = run_headless(generations=3, seed=1, log_path=log_path, config_path=small_yaml)
    rows = _read_csv(log_path)
    assert rows[0] == ["generation", "ticks", "best_fitness", "average_fitness", "damaged", "damaged_ratio"]
    assert len(rows) == 4
    assert [int(row[0]) for row in rows[1:]] == [0, 1, 2]
    assert all(int(row[1]) == 8 for row in rows[1:])
    assert [s.generation for s in summaries] == [0, 1, 2]
    for row, summary in zip(rows[1:], summaries):
        assert float(row[2]) == pytest.approx(summary.best_fitness, abs=1e-4)
        assert float(row[2]) >= float(row[3])


def test_max_ticks_flag_overrides_config(tmp_path, small_yaml):
    summaries = run_headless(generations=1, seed=2, log_path=None, config_path=small_yaml, max_ticks=3)
    assert summaries[0].ticks == 3


def test_headless_summary_output(tmp_path, small_yaml):
    summary_path = tmp_path / "summary.json"
    run_headless(
        generations=2,
        seed=3,
        log_path=tmp_path / "run.csv",
        config_path=small_yaml,
        summary_path=summary_path,
    )
    payload = json.loads(summary_path.read_text())
    assert payload["generations"] == 2
    assert payload["seed"] == 3
    assert payload["population_size"] == 6
    assert payload["network_topology"] == [5, 6, 4]
    assert set(payload["best_fitness"]) == {"min", "max", "avg", "last"}
    assert payload["peak"]["generation"] in (0, 1)


def test_best_brain_is_saved_and_reloaded(tmp_path, small_yaml):
    brain_path = tmp_path / "best.json"
    run_headless(generations=2, seed=4, log_path=None, config_path=small_yaml, brain_out=brain_path)
    record = import_brain(brain_path)
    assert record.network.neuron_counts == [5, 6, 4]
    assert record.generation in (0, 1)

    summaries = run_headless(generations=1, seed=5, log_path=None, config_path=small_yaml, brain_in=brain_path)
    assert len(summaries) == 1


def test_unloadable_brain_is_skipped(tmp_path, small_yaml):
    brain_path = tmp_path / "missing.json"
    summaries = run_headless(generations=1, seed=6, log_path=None, config_path=small_yaml, brain_in=brain_path)
    assert len(summaries) == 1


def test_headless_needs_a_tick_limit(tmp_path):
    path = tmp_path / "endless.yaml"
    path.write_text("evolution:\n  max_generation_ticks: null\n")
    with pytest.raises(ValueError):
        run_headless(generations=1, seed=1, log_path=None, config_path=path)


@pytest.mark.parametrize(
    "payload",
    [
        {"brain": None},
        {"brain": {"levels": [{"biases": [0.0]}]}},
    ],
)
def test_malformed_brain_file_does_not_abort_run(tmp_path, small_yaml, payload):
    brain_path = tmp_path / "malformed.json"
    brain_path.write_text(json.dumps(payload))
    summaries = run_headless(generations=1, seed=7, log_path=None, config_path=small_yaml, brain_in=brain_path)
    assert len(summaries) == 1


def test_negative_seed_runs(tmp_path, small_yaml):
    summaries = run_headless(generations=1, seed=-1, log_path=None, config_path=small_yaml, max_ticks=2)
    assert summaries[0].ticks == 2
