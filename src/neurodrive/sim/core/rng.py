from __future__ import annotations

import random
from typing import Sequence, TypeVar

import numpy as np

T = TypeVar("T")


class DeterministicRng:
    def __init__(self, seed: int):
        self._seed = seed
        self._random = random.Random(seed)
        self._generator = np.random.default_rng(_numpy_seed(seed))

    @property
    def seed(self) -> int:
        return self._seed

    def reset(self) -> None:
        self._random.seed(self._seed)
        self._generator = np.random.default_rng(_numpy_seed(self._seed))

    def next_float(self) -> float:
        return self._random.random()

    def next_range(self, low: float, high: float) -> float:
        return self._random.uniform(low, high)

    def next_int(self, max_value: int) -> int:
        return self._random.randrange(max_value)

    def sample_choice(self, items: Sequence[T]) -> T | None:
        if not items:
            return None
        return self._random.choice(items)

    def uniform_array(self, shape: tuple[int, ...], low: float = -1.0, high: float = 1.0) -> np.ndarray:
        return self._generator.uniform(low, high, size=shape)

    def coin_mask(self, shape: tuple[int, ...]) -> np.ndarray:
        return self._generator.random(size=shape) < 0.5


def _numpy_seed(seed: int) -> int:
    # numpy refuses negative seeds
    return int(seed) & 0xFFFFFFFFFFFFFFFF


def derive_stream_seed(seed: int, salt: int) -> int:
    return (int(seed) ^ int(salt)) & 0xFFFFFFFFFFFFFFFF
