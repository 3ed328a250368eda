import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from evoisland.core.phenotype import Phenotype


class TerminationCondition(ABC):
    """Abstract base class for deciding when an evolution run stops."""

    @abstractmethod
    def should_terminate(self, generation: int, best: Phenotype | None, stats: Any) -> bool:
        """Determine whether the evolutionary process should terminate.

        Args:
            generation (int): Number of generations evaluated so far (0-based index of the current one).
            best (Phenotype | None): Top-ranked individual of the current generation, None if nothing scored.
            stats (PopulationStats): Statistics of the current generation.

        Returns:
            bool: True if the process should terminate, False otherwise.
        """
        pass


class MaxGenerationsTermination(TerminationCondition):
    """Terminate after a maximum number of generations."""

    def __init__(self, max_generations: int):
        self.max_generations = max_generations

    def should_terminate(self, generation: int, best: Phenotype | None, stats: Any) -> bool:
        return generation + 1 >= self.max_generations


class FitnessThresholdTermination(TerminationCondition):
    """Terminate when the best fitness reaches a threshold (from below, or from above with ``minimize``)."""

    def __init__(self, fitness_threshold: float, minimize: bool = False):
        self.fitness_threshold = fitness_threshold
        self.minimize = minimize

    def should_terminate(self, generation: int, best: Phenotype | None, stats: Any) -> bool:
        if best is None:
            return False
        if self.minimize:
            return best.fitness <= self.fitness_threshold
        return best.fitness >= self.fitness_threshold


class StagnationTermination(TerminationCondition):
    """Terminate if there is no change in best fitness for a number of generations."""

    def __init__(self, max_stagnant_generations: int):
        self.max_stagnant_generations = max_stagnant_generations
        self.best_fitness_history: list[float | None] = []

    def should_terminate(self, generation: int, best: Phenotype | None, stats: Any) -> bool:
        self.best_fitness_history.append(best.fitness if best is not None else None)
        if len(self.best_fitness_history) > self.max_stagnant_generations:
            self.best_fitness_history.pop(0)
            if all(f == self.best_fitness_history[0] for f in self.best_fitness_history):
                return True
        return False


class TimeLimitTermination(TerminationCondition):
    """Terminate after a specified time limit (in seconds)."""

    def __init__(self, time_limit_seconds: float):
        self.time_limit_seconds = time_limit_seconds
        self.start_time = time.time()

    def should_terminate(self, generation: int, best: Phenotype | None, stats: Any) -> bool:
        elapsed_time = time.time() - self.start_time
        return elapsed_time >= self.time_limit_seconds


class TargetEntityTermination(TerminationCondition):
    """Terminate once the best entity satisfies ``predicate`` (e.g. equals a known solution)."""

    def __init__(self, predicate: Callable[[Any], bool]):
        self.predicate = predicate

    def should_terminate(self, generation: int, best: Phenotype | None, stats: Any) -> bool:
        return best is not None and bool(self.predicate(best.entity))


class HybridTermination(TerminationCondition):
    """Combine multiple termination conditions; terminate if any condition is met."""

    def __init__(self, conditions: list[TerminationCondition]):
        self.conditions = conditions

    def should_terminate(self, generation: int, best: Phenotype | None, stats: Any) -> bool:
        return any(condition.should_terminate(generation, best, stats) for condition in self.conditions)
