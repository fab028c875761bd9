import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
src_root = ROOT / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

from neurodrive.sim.core.config import EvolutionConfig, SimulationConfig  # noqa: E402
from neurodrive.sim.core.track import Track  # noqa: E402


@pytest.fixture
def small_config() -> SimulationConfig:
    return SimulationConfig(
        seed=7,
        evolution=EvolutionConfig(population_size=10, elitism_count=2, max_generation_ticks=20),
    )


@pytest.fixture
def corridor() -> Track:
    return Track.corridor(length=2000.0, width=200.0)
