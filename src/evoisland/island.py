"""
evoisland.island
================

Island model built on :class:`~evoisland.engine.GeneticEngine`.

The total population is split over ``island_count`` engines that evolve in
isolation. Before every breed a few individuals migrate to another island.
Optionally, every ``continent_cross_generation`` cycles all islands are pooled
on a single "continent" engine which breeds the whole population for
``continent_generations`` rounds before the individuals are dealt back to the
islands.

The model exposes the same ``seed / estimate / breed / best / stats /
population`` surface as a single engine, so both can be driven by
:func:`evoisland.runner.evolve`.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Iterable
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any

import numpy as np

from evoisland.core.phenotype import Phenotype, Population, is_valid_fitness, rank
from evoisland.engine import GeneticConfig, GeneticEngine, PopulationStats
from evoisland.operators.selection import Select, SelectionState, Selector, validate_selector


@dataclass(frozen=True)
class IslandConfig:
    island_count: int = 6
    # replace the genetic config's probabilities on islands only
    island_mutation_probability: float = 0.5
    island_crossover_probability: float = 0.8
    migration_probability: float = 0.05
    migration_function: Selector = Select.RANDOM
    continent_cross_generation: int | None = None  # None => never consolidate automatically
    continent_generations: int = 5

    def __post_init__(self) -> None:
        if self.island_count < 2:
            raise ValueError("island_count must be >= 2")
        for name in ("island_mutation_probability", "island_crossover_probability", "migration_probability"):
            if not (0.0 <= getattr(self, name) <= 1.0):
                raise ValueError(f"{name} must be in [0,1]")
        validate_selector(self.migration_function, "migration_function")
        if self.continent_cross_generation is not None and self.continent_cross_generation <= 0:
            raise ValueError("continent_cross_generation must be > 0 if provided")
        if self.continent_generations < 0:
            raise ValueError("continent_generations must be >= 0")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class IslandModel:
    """Coordinates several :class:`GeneticEngine` islands and an optional continent.

    Parameters
    ----------
    config : IslandConfig
        Island layout, migration and consolidation settings.
    genetic_config : GeneticConfig
        Settings of the whole population. Each island receives a copy with the
        island probabilities and ``population_size / island_count`` individuals;
        the continent uses it unchanged.
    rng : numpy.random.Generator | None
        Random source shared by all islands, the continent and migration.
    executor : concurrent.futures.Executor | None
        Optional executor shared by every engine for fitness evaluation.
    logger : logging.Logger | None
        Parent logger; islands log to ``<logger>.island<i>``, the continent to
        ``<logger>.continent``.
    """

    def __init__(
        self,
        config: IslandConfig,
        genetic_config: GeneticConfig,
        *,
        rng: np.random.Generator | None = None,
        executor: Executor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.genetic_config = genetic_config
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()
        self.logger = logger or logging.getLogger("evoisland.island")

        island_size = _round_half_up(genetic_config.population_size / config.island_count)
        if island_size < 1:
            raise ValueError(
                f"population_size {genetic_config.population_size} is too small for {config.island_count} islands"
            )
        self.island_genetic_config = dataclasses.replace(
            genetic_config,
            mutate_probability=config.island_mutation_probability,
            crossover_probability=config.island_crossover_probability,
            population_size=island_size,
            fittest_n_survives=min(genetic_config.fittest_n_survives, island_size),
        )

        self.islands: list[GeneticEngine] = [
            GeneticEngine(
                self.island_genetic_config,
                rng=self.rng,
                executor=executor,
                logger=self.logger.getChild(f"island{i}"),
            )
            for i in range(config.island_count)
        ]
        self.continent = GeneticEngine(
            genetic_config, rng=self.rng, executor=executor, logger=self.logger.getChild("continent")
        )

        self._migration = SelectionState(genetic_config.optimize, self.rng)
        self._on_continent = False
        self._generation = 0

    # -----------------------------
    # Read access
    # -----------------------------

    @property
    def population(self) -> Population:
        """Whole population: the continent's while consolidated, else all islands concatenated."""
        if self._on_continent:
            return self.continent.population
        return Population([phenotype for island in self.islands for phenotype in island.population])

    @property
    def stats(self) -> PopulationStats:
        """Continent stats while consolidated, else the field-wise mean over islands.

        NaN figures (empty or unevaluated islands) are left out of the mean; a
        field that is NaN on every island stays NaN.
        """
        if self._on_continent:
            return self.continent.stats
        averaged: dict[str, float] = {}
        for f in dataclasses.fields(PopulationStats):
            values = np.array([getattr(island.stats, f.name) for island in self.islands], dtype=float)
            averaged[f.name] = math.nan if np.isnan(values).all() else float(np.nanmean(values))
        return PopulationStats(**averaged)

    @property
    def population_on_continent(self) -> bool:
        return self._on_continent

    @property
    def generation(self) -> int:
        """Number of completed ``breed()`` cycles."""
        return self._generation

    def best(self, count: int = 1) -> list[Phenotype]:
        """Best individuals taken round-robin from the islands.

        At least one individual per island is gathered (``max(island_count,
        count)``) before ranking, so every island is represented.
        """
        if self._on_continent:
            return self.continent.best(count)

        available = sum(len(island.population) for island in self.islands)
        count = min(max(self.config.island_count, count), available)

        results: list[Phenotype] = []
        cursors = [0] * len(self.islands)
        active = 0
        while len(results) < count:
            island = self.islands[active]
            if cursors[active] < len(island.population):
                results.append(island.population[cursors[active]])
                cursors[active] += 1
            active = (active + 1) % len(self.islands)

        # unevaluated individuals (after seed or a consolidation phase) trail the ranked ones
        ranked = rank([ph for ph in results if is_valid_fitness(ph.fitness)], self.genetic_config.optimize)
        ranked.extend(ph for ph in results if not is_valid_fitness(ph.fitness))
        return ranked

    # -----------------------------
    # Evolution cycle
    # -----------------------------

    async def seed(self, entities: Iterable[Any] | None = None) -> None:
        """Seed every island with the same optional entities."""
        entities = [] if entities is None else list(entities)
        self.continent.population = Population([])
        self._on_continent = False
        self._generation = 0
        for island in self.islands:
            await island.seed(entities)

    async def estimate(self) -> None:
        if self._on_continent:
            await self.continent.estimate()
            return
        for island in self.islands:
            await island.estimate()

    async def breed(self) -> None:
        """Migrate, then breed every island, or run a consolidation phase when due."""
        if self._on_continent:
            await self.continent.breed()
            return

        self.migration()
        self._generation += 1

        cadence = self.config.continent_cross_generation
        if cadence and self._generation % cadence == 0:
            await self._continental_breed()
        else:
            for island in self.islands:
                await island.breed()

    def migration(self) -> int:
        """Move individuals between islands; returns how many moved.

        Island sizes are allowed to drift: the total is conserved but the split
        is not rebalanced.
        """
        moved = 0
        for origin, island in enumerate(self.islands):
            # sequential/linear counters restart for every origin island
            self._migration.reset()
            for _ in range(len(island.population)):
                if not island.population:
                    break
                if self.rng.random() >= self.config.migration_probability:
                    continue
                idx = self._migration.pick(self.config.migration_function, island.population)
                migrant = island.population.pop(idx)
                self.islands[self._random_island(origin)].population.append(migrant)
                moved += 1

        for island in self.islands:
            island.reorder_population(drop_invalid=False)
        self.logger.debug("Generation %d: %d individuals migrated", self._generation, moved)
        return moved

    # -----------------------------
    # Continent
    # -----------------------------

    def move_all_to_continent(self) -> None:
        """Pool every island's population on the continent; islands are left empty."""
        if self._on_continent:
            return

        pooled: list[Phenotype] = []
        for island in self.islands:
            pooled.extend(island.population)
            island.population = Population([])

        self.continent.population = Population(pooled)
        self.continent.reorder_population(drop_invalid=False)
        self._on_continent = True

    def migrate_to_islands(self) -> None:
        """Deal the continent's individuals back to the islands, one at a time, round-robin."""
        active = 0
        while self.continent.population:
            self.islands[active].population.append(self.continent.population.pop())
            active = (active + 1) % len(self.islands)

        for island in self.islands:
            island.reorder_population(drop_invalid=False)
        self._on_continent = False

    def close(self) -> None:
        for engine in (*self.islands, self.continent):
            engine.close()

    async def __aenter__(self) -> IslandModel:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    # -----------------------------
    # Internal helpers
    # -----------------------------

    async def _continental_breed(self) -> None:
        self.logger.info(
            "Generation %d: consolidating %d islands on the continent for %d generations",
            self._generation,
            len(self.islands),
            self.config.continent_generations,
        )
        self.move_all_to_continent()
        await self.continent.breed()
        for _ in range(self.config.continent_generations):
            await self.continent.estimate()
            await self.continent.breed()
        self.migrate_to_islands()

    def _random_island(self, exclude: int) -> int:
        while True:
            target = int(self.rng.integers(len(self.islands)))
            if target != exclude:
                return target
