"""Generation loop shared by :class:`GeneticEngine` and :class:`IslandModel`.

Both engines leave termination to their caller; :func:`evolve` is the
ready-made caller: seed once, then estimate and breed until a
:class:`~evoisland.core.termination.TerminationCondition` fires.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from evoisland.core.phenotype import Phenotype, Population
from evoisland.core.termination import TerminationCondition
from evoisland.engine import PopulationStats

logger = logging.getLogger("evoisland.runner")


class Evolvable(Protocol):
    @property
    def population(self) -> Population: ...

    @property
    def stats(self) -> PopulationStats: ...

    async def seed(self, entities: Iterable[Any] | None = None) -> None: ...

    async def estimate(self) -> None: ...

    async def breed(self) -> None: ...

    def best(self, count: int = 1) -> list[Phenotype]: ...


@dataclass
class EvolutionResult:
    generations: int
    best: list[Phenotype]
    stats: PopulationStats
    history: list[dict[str, Any]] = field(default_factory=list)


async def evolve(
    engine: Evolvable,
    termination: TerminationCondition,
    *,
    entities: Iterable[Any] | None = None,
    best_count: int = 1,
    on_generation: Callable[[int, Evolvable], None] | None = None,
    max_history: int | None = None,
) -> EvolutionResult:
    """Run ``engine`` until ``termination`` triggers.

    Parameters
    ----------
    engine : Evolvable
        A :class:`GeneticEngine` or an :class:`IslandModel`.
    termination : TerminationCondition
        Checked after every estimate, against the freshly ranked population.
    entities : Iterable | None
        Optional seed entities passed to ``engine.seed``.
    best_count : int, default 1
        How many individuals ``EvolutionResult.best`` holds.
    on_generation : Callable[[int, Evolvable], None] | None
        Called after each estimate with the generation index and the engine.
    max_history : int | None
        Keep only the newest ``max_history`` stats snapshots; None keeps all.

    Returns
    -------
    EvolutionResult
        The last evaluated generation; the engine is left ranked, not bred.
    """
    await engine.seed(entities)

    history: list[dict[str, Any]] = []
    generation = 0
    while True:
        await engine.estimate()
        leaders = engine.best(best_count)[:best_count]
        top = leaders[0] if leaders else None
        stats = engine.stats

        history.append(
            {
                "generation": generation,
                "best": top.fitness if top is not None else None,
                **stats.as_dict(),
                "time": time.time(),
            }
        )
        if max_history is not None and len(history) > max_history:
            del history[: len(history) - max_history]

        if on_generation is not None:
            on_generation(generation, engine)

        if termination.should_terminate(generation, top, stats):
            logger.info(
                "Evolution stopped after %d generations; best fitness %s",
                generation + 1,
                top.fitness if top is not None else None,
            )
            return EvolutionResult(generations=generation + 1, best=leaders, stats=stats, history=history)

        await engine.breed()
        generation += 1
