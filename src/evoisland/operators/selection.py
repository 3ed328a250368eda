"""
evoisland.operators.selection
=============================

Selection strategies used both for picking parents and for picking migrants.

Every strategy works on a rank-ordered population (best first) and returns an
index into it:

    pick(selector, population) -> int

A selector is either a member of the closed :class:`Select` enum or any
callable ``(ranked_population) -> int``. Strategies that need memory between
calls (linear walks over the ranking) keep their counters in a
:class:`SelectionState` owned by the engine that uses them; the owner resets it
once per generation.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Sequence
from typing import Union

import numpy as np

from evoisland.core.phenotype import Comparator, Phenotype, fitness_at_least

SelectionFunction = Callable[[Sequence[Phenotype]], int]

# share of the ranking FITTEST_RANDOM draws from
FITTEST_RANDOM_FRACTION = 0.2


class Select(enum.Enum):
    """Built-in selection strategies."""

    FITTEST = "fittest"
    FITTEST_LINEAR = "fittest_linear"
    FITTEST_RANDOM = "fittest_random"
    RANDOM = "random"
    SEQUENTIAL = "sequential"
    RANDOM_LINEAR_RANK = "random_linear_rank"
    TRUE_LINEAR_RANK = "true_linear_rank"
    TOURNAMENT2 = "tournament2"
    TOURNAMENT3 = "tournament3"


Selector = Union[Select, SelectionFunction]


def validate_selector(selector: object, name: str) -> None:
    if isinstance(selector, Select) or callable(selector):
        return
    raise ValueError(f"{name} must be a Select member or a callable returning an index")


class SelectionState:
    """Per-engine selection context.

    Parameters
    ----------
    optimize : Comparator
        "a is at least as fit as b"; used by the tournament strategies.
    rng : numpy.random.Generator | None, default None
        Random source shared with the owning engine.
    """

    def __init__(self, optimize: Comparator = fitness_at_least, rng: np.random.Generator | None = None):
        self.optimize = optimize
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()
        self.counters: dict[Select, int] = {}

    def reset(self) -> None:
        self.counters.clear()

    def pick(self, selector: Selector, population: Sequence[Phenotype]) -> int:
        """Return the index of the selected phenotype."""
        n = len(population)
        if n == 0:
            raise ValueError("population must not be empty")
        if isinstance(selector, Select):
            idx = _STRATEGIES[selector](self, population)
        else:
            idx = int(selector(population))
        if not 0 <= idx < n:
            raise IndexError(f"selection returned index {idx} for a population of {n}")
        return idx

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _uniform(self, n: int) -> int:
        return int(self.rng.integers(n))

    def _next(self, key: Select, n: int) -> int:
        """Post-increment a counter, restarting at 0 once it walked past the ranking."""
        value = self.counters.get(key, 0)
        if value >= n:
            value = 0
        self.counters[key] = value + 1
        return value


# =============================================================================
# Strategies
# =============================================================================
def _fittest(state: SelectionState, population: Sequence[Phenotype]) -> int:
    return 0


def _fittest_linear(state: SelectionState, population: Sequence[Phenotype]) -> int:
    return state._next(Select.FITTEST_LINEAR, len(population))


def _fittest_random(state: SelectionState, population: Sequence[Phenotype]) -> int:
    return int(state.rng.random() * len(population) * FITTEST_RANDOM_FRACTION)


def _random(state: SelectionState, population: Sequence[Phenotype]) -> int:
    return state._uniform(len(population))


def _sequential(state: SelectionState, population: Sequence[Phenotype]) -> int:
    n = len(population)
    return state._next(Select.SEQUENTIAL, n) % n


def _random_linear_rank(state: SelectionState, population: Sequence[Phenotype]) -> int:
    n = len(population)
    window = min(n, state._next(Select.RANDOM_LINEAR_RANK, n))
    return int(state.rng.random() * window)


def _true_linear_rank(state: SelectionState, population: Sequence[Phenotype]) -> int:
    # rank i (best first) weighs n - i; total weight n(n+1)/2
    n = len(population)
    r = state.rng.random() * (n * (n + 1) / 2)
    for i in range(n):
        r -= n - i
        if r <= 0:
            return i
    return n - 1


def _tournament2(state: SelectionState, population: Sequence[Phenotype]) -> int:
    n = len(population)
    a, b = state._uniform(n), state._uniform(n)
    return a if state.optimize(population[a], population[b]) else b


def _tournament3(state: SelectionState, population: Sequence[Phenotype]) -> int:
    n = len(population)
    a, b, c = state._uniform(n), state._uniform(n), state._uniform(n)
    best = a if state.optimize(population[a], population[b]) else b
    return best if state.optimize(population[best], population[c]) else c


_STRATEGIES: dict[Select, Callable[[SelectionState, Sequence[Phenotype]], int]] = {
    Select.FITTEST: _fittest,
    Select.FITTEST_LINEAR: _fittest_linear,
    Select.FITTEST_RANDOM: _fittest_random,
    Select.RANDOM: _random,
    Select.SEQUENTIAL: _sequential,
    Select.RANDOM_LINEAR_RANK: _random_linear_rank,
    Select.TRUE_LINEAR_RANK: _true_linear_rank,
    Select.TOURNAMENT2: _tournament2,
    Select.TOURNAMENT3: _tournament3,
}
