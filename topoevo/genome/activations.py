from __future__ import annotations

from collections.abc import Callable
import math

from topoevo.exceptions import GenomeError

ActivationFn = Callable[[float], float]


def identity(x: float) -> float:
    return x


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def tanh(x: float) -> float:
    return math.tanh(x)


def relu(x: float) -> float:
    return x if x > 0 else 0.0


def softsign(x: float) -> float:
    return x / (1.0 + abs(x))


def gaussian(x: float) -> float:
    return math.exp(-(x * x))


ACTIVATIONS: dict[str, ActivationFn] = {
    "identity": identity,
    "sigmoid": sigmoid,
    "tanh": tanh,
    "relu": relu,
    "softsign": softsign,
    "gaussian": gaussian,
}


def resolve_activation(name: str) -> ActivationFn:
    try:
        return ACTIVATIONS[name]
    except KeyError:
        raise GenomeError(
            f"Unknown activation '{name}'. Available: {sorted(ACTIVATIONS)}"
        ) from None
