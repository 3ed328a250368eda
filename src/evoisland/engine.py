from __future__ import annotations

import asyncio
import dataclasses
import functools
import inspect
import logging
import math
import pickle
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import numpy as np

from evoisland.core.phenotype import (
    Comparator,
    FitnessResult,
    Phenotype,
    Population,
    clone_entity,
    fitness_at_least,
    is_valid_fitness,
    rank,
)
from evoisland.operators.selection import Select, SelectionState, Selector, validate_selector

# ---------------------------------------------------------------------------
# Engine config & stats
# ---------------------------------------------------------------------------

# attempts allowed per missing individual before a fill is declared impossible
FILL_ATTEMPTS_FACTOR = 10
# redraws allowed when select2 returns the same parent twice
PAIR_RETRIES = 10
STATS_PRECISION = 4


@dataclass(frozen=True)
class GeneticConfig:
    fitness_function: Callable[..., Any]
    random_function: Callable[[], Any]
    population_size: int
    mutation_function: Callable[[Any], Any] | None = None
    crossover_function: Callable[[Any, Any], Any] | None = None
    mutate_probability: float = 0.2
    crossover_probability: float = 0.9
    fittest_n_survives: int = 1
    select1: Selector = Select.FITTEST
    select2: Selector = Select.TOURNAMENT2
    deduplicate: Callable[[Any], bool] | None = None
    optimize: Comparator = fitness_at_least
    num_workers: int = 0  # 0 => evaluate in the event loop; >0 => run sync fitness callbacks in a pool
    executor_type: str = "thread"  # 'thread' | 'process'

    def __post_init__(self) -> None:
        """Validate configuration parameters early to fail fast.

        Rules
        -----
        - fitness_function and random_function are callable
        - mutation_function, crossover_function, deduplicate are None or callable
        - population_size > 0
        - 0 <= fittest_n_survives <= population_size
        - mutate_probability, crossover_probability in [0,1]
        - select1, select2 are Select members or callables
        - num_workers >= 0
        - executor_type in {"thread", "process"}
        """
        for name in ("fitness_function", "random_function", "optimize"):
            if not callable(getattr(self, name)):
                raise ValueError(f"{name} must be callable")
        for name in ("mutation_function", "crossover_function", "deduplicate"):
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise ValueError(f"{name} must be callable or None")
        if self.population_size <= 0:
            raise ValueError("population_size must be > 0")
        if self.fittest_n_survives < 0:
            raise ValueError("fittest_n_survives must be >= 0")
        if self.fittest_n_survives > self.population_size:
            raise ValueError("fittest_n_survives cannot exceed population_size")
        if not (0.0 <= self.mutate_probability <= 1.0):
            raise ValueError("mutate_probability must be in [0,1]")
        if not (0.0 <= self.crossover_probability <= 1.0):
            raise ValueError("crossover_probability must be in [0,1]")
        validate_selector(self.select1, "select1")
        validate_selector(self.select2, "select2")
        if self.num_workers < 0:
            raise ValueError("num_workers must be >= 0")
        if self.executor_type not in {"thread", "process"}:
            raise ValueError("executor_type must be one of {'thread','process'}")


@dataclass
class PopulationStats:
    population: int | float = 0  # count; the island model reports the mean island size
    maximum_fitness: float = math.nan
    minimum_fitness: float = math.nan
    average_fitness: float = math.nan
    fitness_std_dev: float = math.nan

    def as_dict(self) -> dict[str, float]:
        return dataclasses.asdict(self)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class GeneticError(RuntimeError):
    pass


class PopulationFillError(GeneticError):
    """The random generator (with deduplicate) could not supply enough individuals."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _maybe_await(x: Any) -> Any:
    """Await x if it's awaitable; otherwise return it."""
    return await x if inspect.isawaitable(x) else x


def _accepts_is_last(fn: Callable[..., Any]) -> bool:
    """Whether the fitness callback takes the optional second ``is_last`` argument."""
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return False
    positional = 0
    for param in signature.parameters.values():
        if param.kind is param.VAR_POSITIONAL:
            return True
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 2


def _unpack_fitness(result: Any) -> tuple[Any, dict[str, Any]]:
    if isinstance(result, FitnessResult):
        return result.fitness, dict(result.state or {})
    if isinstance(result, Mapping):
        return result.get("fitness"), dict(result.get("state") or {})
    return result, {}


# ---------------------------------------------------------------------------
# GeneticEngine
# ---------------------------------------------------------------------------


class GeneticEngine:
    """Single-population engine driven by ``seed``, ``estimate`` and ``breed``.

    The caller owns the loop: it alternates ``estimate()`` and ``breed()`` and
    decides when to stop (see :func:`evoisland.runner.evolve`).
    """

    def __init__(
        self,
        config: GeneticConfig,
        *,
        rng: np.random.Generator | None = None,
        executor: Executor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()
        self.logger = logger or logging.getLogger("evoisland.engine")

        # rank-ordered (best first) once estimate() has run
        self.population: Population = Population([])
        self.stats = PopulationStats()
        self.generation: int = 0

        self._selection = SelectionState(config.optimize, self.rng)
        self._pass_is_last = _accepts_is_last(config.fitness_function)
        self._external_executor = executor
        self._executor: Executor | None = None

    # -----------------------------
    # Public API
    # -----------------------------

    async def seed(self, entities: Iterable[Any] | None = None) -> None:
        """Start a population from ``entities`` and top it up with ``random_function``."""
        size = self.config.population_size
        population = Phenotype.from_entities(() if entities is None else entities)
        if len(population) > size:
            self.logger.warning("Seed provided %d entities for a population of %d; truncating", len(population), size)
            population = Population(population[:size])

        await self._fill(population)
        self.population = population
        self.generation = 0

    async def estimate(self) -> None:
        """Score every individual concurrently, then rank the population and refresh stats."""
        self._selection.reset()

        population = self.population
        last = len(population) - 1
        results = await asyncio.gather(
            *(self._evaluate(phenotype.entity, idx == last) for idx, phenotype in enumerate(population))
        )
        for phenotype, result in zip(population, results):
            phenotype.fitness, phenotype.state = _unpack_fitness(result)

        self.reorder_population()
        discarded = len(population) - len(self.population)
        if discarded:
            self.logger.debug("Discarded %d individuals without a valid fitness", discarded)

        self.stats = self._compute_stats()
        self.logger.info(
            "Generation %d stats: size=%d max=%s min=%s mean=%s std=%s",
            self.generation,
            self.stats.population,
            self.stats.maximum_fitness,
            self.stats.minimum_fitness,
            self.stats.average_fitness,
            self.stats.fitness_std_dev,
        )

    async def breed(self) -> None:
        """Replace the population with the next, unevaluated generation."""
        cfg = self.config
        size = cfg.population_size

        # elites keep their entity and skip deduplicate
        elites = [phenotype.reset() for phenotype in self.population[: cfg.fittest_n_survives]]

        offspring: list[Phenotype] = []
        max_attempts = size * FILL_ATTEMPTS_FACTOR
        attempts = 0
        if not self.population:
            self.logger.warning("Breeding an empty population; generation %d will be random", self.generation + 1)
        else:
            while len(offspring) < size and attempts < max_attempts:
                attempts += 1
                offspring.extend(Phenotype(entity) for entity in await self._produce())
            self.logger.debug("Produced %d offspring in %d attempts", len(offspring), attempts)

        if cfg.deduplicate is not None:
            offspring = [phenotype for phenotype in offspring if cfg.deduplicate(phenotype.entity)]

        next_generation = Population((elites + offspring)[:size])
        await self._fill(next_generation)
        self.population = next_generation
        self.generation += 1

    def best(self, count: int = 1) -> list[Phenotype]:
        return list(self.population[:count])

    def reorder_population(self, drop_invalid: bool = True) -> None:
        """Rank the population best first.

        Individuals without a valid fitness are dropped, or with
        ``drop_invalid=False`` kept in their current order behind the ranked ones.
        """
        scored = [phenotype for phenotype in self.population if is_valid_fitness(phenotype.fitness)]
        ranked = rank(scored, self.config.optimize)
        if not drop_invalid:
            ranked.extend(phenotype for phenotype in self.population if not is_valid_fitness(phenotype.fitness))
        self.population = Population(ranked)

    def close(self) -> None:
        """Shut down the executor this engine created, if any."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    async def __aenter__(self) -> GeneticEngine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    # -----------------------------
    # Internal helpers
    # -----------------------------

    def _compute_stats(self) -> PopulationStats:
        if not self.population:
            self.logger.warning("No individual of generation %d has a valid fitness", self.generation)
            return PopulationStats()
        fitness = np.array([phenotype.fitness for phenotype in self.population], dtype=float)
        return PopulationStats(
            population=len(fitness),
            maximum_fitness=round(float(fitness.max()), STATS_PRECISION),
            minimum_fitness=round(float(fitness.min()), STATS_PRECISION),
            average_fitness=round(float(fitness.mean()), STATS_PRECISION),
            fitness_std_dev=round(float(fitness.std()), STATS_PRECISION),
        )

    async def _fill(self, population: list[Phenotype]) -> None:
        """Top ``population`` up to ``population_size`` with random entities, in place."""
        cfg = self.config
        size = cfg.population_size
        max_attempts = size * FILL_ATTEMPTS_FACTOR
        attempts = 0
        while len(population) < size and attempts < max_attempts:
            attempts += 1
            entity = await _maybe_await(cfg.random_function())
            if cfg.deduplicate is not None and not cfg.deduplicate(entity):
                continue
            population.append(Phenotype(entity))

        if len(population) < size:
            self.logger.error("Population stuck at %d of %d after %d attempts", len(population), size, attempts)
            raise PopulationFillError(
                f"Could not fill population to {size} individuals within {max_attempts} attempts. "
                "Check random_function or deduplicate."
            )

    async def _produce(self) -> list[Any]:
        """One production attempt: crossover of a pair or a copy of one parent, then mutation."""
        cfg = self.config
        if cfg.crossover_function is not None and self.rng.random() < cfg.crossover_probability:
            mother, father = self._select_pair()
            children = await _maybe_await(cfg.crossover_function(clone_entity(mother), clone_entity(father)))
            children = list(children or [])
        else:
            children = [clone_entity(self._select_one())]

        return [await self._try_mutate(child) for child in children]

    async def _try_mutate(self, entity: Any) -> Any:
        cfg = self.config
        if cfg.mutation_function is not None and self.rng.random() < cfg.mutate_probability:
            return await _maybe_await(cfg.mutation_function(entity))
        return entity

    def _select_one(self) -> Any:
        idx = self._selection.pick(self.config.select1, self.population)
        return self.population[idx].entity

    def _select_pair(self) -> tuple[Any, Any]:
        pick = functools.partial(self._selection.pick, self.config.select2, self.population)
        first = pick()
        if len(self.population) < 2:
            entity = self.population[first].entity
            return entity, entity

        second = pick()
        retries = 0
        while second == first and retries < PAIR_RETRIES:
            second = pick()
            retries += 1
        return self.population[first].entity, self.population[second].entity

    async def _evaluate(self, entity: Any, is_last: bool) -> Any:
        fn = self.config.fitness_function
        args = (entity, is_last) if self._pass_is_last else (entity,)
        executor = self._get_executor()
        if executor is not None and not inspect.iscoroutinefunction(fn):
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(executor, fn, *args)
        return await _maybe_await(fn(*args))

    def _get_executor(self) -> Executor | None:
        if self._external_executor is not None:
            return self._external_executor
        if self._executor is None and self.config.num_workers > 0:
            self._executor = self._create_executor()
        return self._executor

    def _create_executor(self) -> Executor:
        num_workers = self.config.num_workers
        if self.config.executor_type == "process":
            try:
                pickle.dumps(self.config.fitness_function)
            except (pickle.PicklingError, AttributeError, TypeError):
                self.logger.warning(
                    "Fitness function not picklable: falling back to ThreadPoolExecutor to avoid pickling errors."
                )
            else:
                self.logger.info("ProcessPoolExecutor prepared with %d workers", num_workers)
                return ProcessPoolExecutor(max_workers=num_workers)

        self.logger.info("ThreadPoolExecutor prepared with %d workers", num_workers)
        return ThreadPoolExecutor(max_workers=num_workers)
