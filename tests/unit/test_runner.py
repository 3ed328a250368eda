from __future__ import annotations

import asyncio

import numpy as np

from evoisland.core.termination import FitnessThresholdTermination, MaxGenerationsTermination
from evoisland.engine import GeneticConfig, GeneticEngine
from evoisland.island import IslandConfig, IslandModel
from evoisland.runner import EvolutionResult, evolve

LENGTH = 6


def _config(**overrides) -> GeneticConfig:
    rng = np.random.default_rng(99)
    params = dict(
        fitness_function=lambda entity: {"fitness": float(sum(entity))},
        random_function=lambda: tuple(int(b) for b in rng.integers(0, 2, LENGTH)),
        mutation_function=lambda entity: tuple(1 - g if i == 0 else g for i, g in enumerate(entity)),
        crossover_function=lambda a, b: [a[:3] + b[3:], b[:3] + a[3:]],
        population_size=12,
    )
    params.update(overrides)
    return GeneticConfig(**params)


def test_evolve_stops_after_max_generations():
    engine = GeneticEngine(_config(), rng=np.random.default_rng(1))
    seen: list[int] = []

    result = asyncio.run(
        evolve(engine, MaxGenerationsTermination(3), on_generation=lambda gen, eng: seen.append(gen))
    )

    assert isinstance(result, EvolutionResult)
    assert result.generations == 3
    assert seen == [0, 1, 2]
    assert [snap["generation"] for snap in result.history] == [0, 1, 2]
    assert engine.generation == 2
    # left ranked, not bred
    assert result.best[0] is engine.population[0]
    assert result.stats is engine.stats


def test_evolve_stops_when_threshold_reached_by_seed():
    engine = GeneticEngine(_config(), rng=np.random.default_rng(2))
    result = asyncio.run(
        evolve(
            engine,
            FitnessThresholdTermination(float(LENGTH)),
            entities=[(1,) * LENGTH],
        )
    )
    assert result.generations == 1
    assert result.best[0].entity == (1,) * LENGTH
    assert result.history[0]["best"] == float(LENGTH)
    assert result.history[0]["maximum_fitness"] == float(LENGTH)


def test_evolve_history_is_pruned():
    engine = GeneticEngine(_config(), rng=np.random.default_rng(3))
    result = asyncio.run(evolve(engine, MaxGenerationsTermination(5), max_history=2))
    assert [snap["generation"] for snap in result.history] == [3, 4]


def test_evolve_history_zero_cap_keeps_nothing():
    engine = GeneticEngine(_config(), rng=np.random.default_rng(4))
    result = asyncio.run(evolve(engine, MaxGenerationsTermination(3), max_history=0))
    assert result.history == []


def test_evolve_best_count():
    engine = GeneticEngine(_config(), rng=np.random.default_rng(5))
    result = asyncio.run(evolve(engine, MaxGenerationsTermination(2), best_count=4))
    assert result.best == engine.population[:4]


def test_evolve_drives_island_model():
    model = IslandModel(
        IslandConfig(island_count=3, continent_cross_generation=2, continent_generations=1),
        _config(population_size=30),
        rng=np.random.default_rng(6),
    )
    result = asyncio.run(evolve(model, MaxGenerationsTermination(4)))
    assert result.generations == 4
    assert len(result.best) == 1
    assert model.generation == 3
    assert len(model.population) == 30
