import asyncio
import string

import numpy as np

from evoisland.core.termination import HybridTermination, MaxGenerationsTermination, TargetEntityTermination
from evoisland.engine import GeneticConfig, GeneticEngine
from evoisland.island import IslandConfig, IslandModel
from evoisland.operators.selection import Select
from evoisland.runner import evolve

SOLUTION = "evolve me please"
CHARSET = string.ascii_lowercase + " "


def _make_config(rng: np.random.Generator, population_size: int) -> GeneticConfig:
    def random_function():
        return "".join(rng.choice(list(CHARSET), size=len(SOLUTION)))

    def mutation_function(entity: str) -> str:
        i = int(rng.integers(len(entity)))
        return entity[:i] + str(rng.choice(list(CHARSET))) + entity[i + 1 :]

    def crossover_function(mother: str, father: str) -> list[str]:
        # two-point crossover
        ca, cb = sorted(int(x) for x in rng.integers(0, len(mother), size=2))
        son = mother[:ca] + father[ca:cb] + mother[cb:]
        daughter = father[:ca] + mother[ca:cb] + father[cb:]
        return [son, daughter]

    async def fitness_function(entity: str) -> dict:
        fitness = 0.0
        for got, want in zip(entity, SOLUTION):
            if got == want:
                fitness += 1
            # fractions of a point as characters get warmer
            fitness += (127 - abs(ord(got) - ord(want))) / 50
        return {"fitness": fitness}

    return GeneticConfig(
        fitness_function=fitness_function,
        random_function=random_function,
        mutation_function=mutation_function,
        crossover_function=crossover_function,
        population_size=population_size,
        fittest_n_survives=max(1, population_size // 20),
        select1=Select.FITTEST_LINEAR,
        select2=Select.TOURNAMENT3,
        mutate_probability=0.6,
        crossover_probability=0.8,
    )


def _termination(max_generations: int) -> HybridTermination:
    return HybridTermination(
        [MaxGenerationsTermination(max_generations), TargetEntityTermination(lambda entity: entity == SOLUTION)]
    )


def test_string_match_single_population():
    rng = np.random.default_rng(2025)
    engine = GeneticEngine(_make_config(rng, 200), rng=rng)
    sizes: list[int] = []

    result = asyncio.run(
        evolve(engine, _termination(60), on_generation=lambda gen, eng: sizes.append(len(eng.population)))
    )

    best = [snap["best"] for snap in result.history]
    # elitism: the best score never drops
    assert all(b2 >= b1 for b1, b2 in zip(best, best[1:]))
    assert best[-1] > best[0]
    assert set(sizes) == {200}


def test_string_match_island_model():
    rng = np.random.default_rng(7)
    model = IslandModel(
        IslandConfig(
            island_count=4,
            migration_probability=0.05,
            migration_function=Select.FITTEST_LINEAR,
            continent_cross_generation=10,
            continent_generations=3,
        ),
        _make_config(rng, 200),
        rng=rng,
    )

    result = asyncio.run(evolve(model, _termination(40)))

    best = [snap["best"] for snap in result.history]
    assert all(b2 >= b1 for b1, b2 in zip(best, best[1:]))
    assert best[-1] > best[0]
    assert len(model.population) == 200
