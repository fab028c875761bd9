from __future__ import annotations

import random
from typing import Any, Dict, List, Mapping, Sequence

import numpy as np

from .rng import DeterministicRng


class TopologyMismatchError(ValueError):
    """Raised when two networks (or a network and its inputs) disagree on layer widths."""


def _sigmoid(values: np.ndarray) -> np.ndarray:
    # np.exp overflows past ~709
    return 1.0 / (1.0 + np.exp(-np.clip(values, -500.0, 500.0)))


def _default_rng() -> DeterministicRng:
    return DeterministicRng(random.getrandbits(32))


class Level:
    def __init__(self, input_count: int, output_count: int, rng: DeterministicRng | None = None):
        rng = rng if rng is not None else _default_rng()
        self.inputs = np.zeros(input_count)
        self.outputs = np.zeros(output_count)
        self.weights = rng.uniform_array((input_count, output_count))
        self.biases = rng.uniform_array((output_count,))

    @property
    def input_count(self) -> int:
        return self.weights.shape[0]

    @property
    def output_count(self) -> int:
        return self.weights.shape[1]

    def feed_forward(self, given_inputs: Sequence[float]) -> np.ndarray:
        inputs = np.asarray(given_inputs, dtype=float)
        if inputs.shape != (self.input_count,):
            raise TopologyMismatchError(f"level expects {self.input_count} inputs, got {inputs.shape[0]}")
        self.inputs = inputs
        self.outputs = _sigmoid(inputs @ self.weights - self.biases)
        return self.outputs

    def to_dict(self) -> Dict[str, Any]:
        return {"weights": self.weights.tolist(), "biases": self.biases.tolist()}

    @classmethod
    def from_arrays(cls, weights: np.ndarray, biases: np.ndarray) -> "Level":
        level = cls.__new__(cls)
        level.weights = np.array(weights, dtype=float)
        level.biases = np.array(biases, dtype=float)
        level.inputs = np.zeros(level.weights.shape[0])
        level.outputs = np.zeros(level.weights.shape[1])
        return level


class NeuralNetwork:
    """
    Layered feed-forward network with sigmoid activations.

    `neuron_counts` lists the width of every layer, inputs first; a network for 5 rays with
    6 hidden neurons and the 4 driving controls is `[5, 6, 4]`.
    """

    def __init__(self, neuron_counts: Sequence[int], rng: DeterministicRng | None = None):
        if len(neuron_counts) < 2:
            raise TopologyMismatchError("a network needs at least an input and an output layer")
        rng = rng if rng is not None else _default_rng()
        self.levels: List[Level] = [
            Level(neuron_counts[i], neuron_counts[i + 1], rng) for i in range(len(neuron_counts) - 1)
        ]

    @property
    def neuron_counts(self) -> List[int]:
        return [self.levels[0].input_count] + [level.output_count for level in self.levels]

    def same_topology(self, other: "NeuralNetwork") -> bool:
        return self.neuron_counts == other.neuron_counts

    def feed_forward(self, given_inputs: Sequence[float]) -> np.ndarray:
        outputs = self.levels[0].feed_forward(given_inputs)
        for level in self.levels[1:]:
            outputs = level.feed_forward(outputs)
        return outputs

    def copy(self) -> "NeuralNetwork":
        return NeuralNetwork._from_levels(
            [Level.from_arrays(level.weights.copy(), level.biases.copy()) for level in self.levels]
        )

    def mutate(self, amount: float = 1.0, rng: DeterministicRng | None = None) -> None:
        """Move every weight and bias towards a fresh uniform sample by `amount` (0 keeps, 1 replaces)."""

        rng = rng if rng is not None else _default_rng()
        keep = 1.0 - amount
        for level in self.levels:
            # weighted form keeps amount=0 and amount=1 exact
            level.biases = level.biases * keep + rng.uniform_array(level.biases.shape) * amount
            level.weights = level.weights * keep + rng.uniform_array(level.weights.shape) * amount

    @staticmethod
    def crossover(
        first: "NeuralNetwork", second: "NeuralNetwork", rng: DeterministicRng | None = None
    ) -> "NeuralNetwork":
        if not first.same_topology(second):
            raise TopologyMismatchError(
                f"cannot cross {first.neuron_counts} with {second.neuron_counts}"
            )
        rng = rng if rng is not None else _default_rng()
        levels = []
        for level_a, level_b in zip(first.levels, second.levels):
            bias_mask = rng.coin_mask(level_a.biases.shape)
            weight_mask = rng.coin_mask(level_a.weights.shape)
            levels.append(
                Level.from_arrays(
                    np.where(weight_mask, level_a.weights, level_b.weights),
                    np.where(bias_mask, level_a.biases, level_b.biases),
                )
            )
        return NeuralNetwork._from_levels(levels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "neuron_counts": self.neuron_counts,
            "levels": [level.to_dict() for level in self.levels],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NeuralNetwork":
        if not isinstance(data, Mapping):
            raise TopologyMismatchError(f"serialized network must be an object, got {type(data).__name__}")
        raw_levels = data.get("levels")
        if not raw_levels or not isinstance(raw_levels, list):
            raise TopologyMismatchError("serialized network has no levels")
        levels = []
        for raw in raw_levels:
            if not isinstance(raw, Mapping) or "weights" not in raw or "biases" not in raw:
                raise TopologyMismatchError("every level needs weights and biases")
            try:
                weights = np.array(raw["weights"], dtype=float)
                biases = np.array(raw["biases"], dtype=float)
            except (TypeError, ValueError) as exc:
                raise TopologyMismatchError(f"level values are not numeric: {exc}") from exc
            if weights.ndim != 2 or biases.shape != (weights.shape[1],):
                raise TopologyMismatchError(
                    f"level weights {weights.shape} do not match biases {biases.shape}"
                )
            levels.append(Level.from_arrays(weights, biases))
        for previous, current in zip(levels, levels[1:]):
            if previous.output_count != current.input_count:
                raise TopologyMismatchError(
                    f"level of width {previous.output_count} feeds a level expecting {current.input_count}"
                )
        network = cls._from_levels(levels)
        expected = data.get("neuron_counts")
        if expected is not None and list(expected) != network.neuron_counts:
            raise TopologyMismatchError(f"declared {list(expected)} but levels describe {network.neuron_counts}")
        return network

    @classmethod
    def _from_levels(cls, levels: List[Level]) -> "NeuralNetwork":
        network = cls.__new__(cls)
        network.levels = levels
        return network


def feed_forward(given_inputs: Sequence[float], network: NeuralNetwork) -> np.ndarray:
    return network.feed_forward(given_inputs)
