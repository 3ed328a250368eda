"""Core phenotype abstraction and comparator helpers.

The :class:`Phenotype` couples an opaque user entity with the evolutionary
metadata produced by the fitness callback (fitness and auxiliary state).
"""

from __future__ import annotations

import copy
import functools
import math
import numbers
from collections.abc import Callable, Iterable
from typing import Any, NamedTuple, NewType

Population = NewType("Population", list["Phenotype"])

Comparator = Callable[["Phenotype", "Phenotype"], bool]


class FitnessResult(NamedTuple):
    """Value a fitness callback may return instead of a plain mapping."""

    fitness: float
    state: dict[str, Any] | None = None


class Phenotype:
    """Represents a single candidate solution.

    Parameters
    ----------
    entity : Any
        User-defined representation. The engine never inspects it.
    fitness : float | None, default None
        Score written by ``estimate()``. ``None`` means "not evaluated yet".
    state : dict | None, default None
        Auxiliary data returned alongside the fitness.
    """

    __slots__ = ("entity", "fitness", "state")

    def __init__(self, entity: Any, fitness: float | None = None, state: dict[str, Any] | None = None) -> None:
        self.entity: Any = entity
        self.fitness: float | None = fitness
        self.state: dict[str, Any] = dict(state) if state else {}

    # ------------------------------------------------------------------
    # Core protocol helpers
    # ------------------------------------------------------------------
    def __eq__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, Phenotype):
            return False
        return self.entity == other.entity and self.fitness == other.fitness and self.state == other.state

    def __repr__(self) -> str:
        fitness = "unset" if self.fitness is None else f"{self.fitness:.4f}"
        return f"Phenotype(entity={self.entity!r}, fitness={fitness})"

    def reset(self) -> Phenotype:
        """Return a phenotype sharing this entity with fitness and state cleared."""
        return Phenotype(self.entity)

    # ------------------------------------------------------------------
    # Population utilities
    # ------------------------------------------------------------------
    @staticmethod
    def from_entities(entities: Iterable[Any]) -> Population:
        """Wrap entities as unevaluated phenotypes."""
        return Population([Phenotype(e) for e in entities])


def clone_entity(entity: Any) -> Any:
    """Structural copy of an entity so offspring never alias their parents."""
    return copy.deepcopy(entity)


def is_valid_fitness(value: Any) -> bool:
    """A fitness is valid when it is a real number (bools excluded) and not NaN."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return not math.isnan(value)


def fitness_at_least(a: Phenotype, b: Phenotype) -> bool:
    """Default comparator: higher fitness is better."""
    return a.fitness >= b.fitness  # type: ignore[operator]


def minimize(a: Phenotype, b: Phenotype) -> bool:
    """Comparator for problems where lower fitness is better."""
    return a.fitness <= b.fitness  # type: ignore[operator]


def rank(phenotypes: Iterable[Phenotype], optimize: Comparator) -> list[Phenotype]:
    """Sort best first under ``optimize``.

    ``optimize`` may be non-strict; pairs that are at least as fit as each other
    compare equal so the stable sort keeps them in their incoming order.
    """

    def compare(a: Phenotype, b: Phenotype) -> int:
        a_first = optimize(a, b)
        if a_first and optimize(b, a):
            return 0
        return -1 if a_first else 1

    return sorted(phenotypes, key=functools.cmp_to_key(compare))
