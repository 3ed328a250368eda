import numpy as np
import pytest

from evoisland.core.phenotype import Phenotype, minimize
from evoisland.operators.selection import Select, SelectionState


def _ranked(n: int) -> list[Phenotype]:
    # best first: fitness n, n-1, ..., 1
    return [Phenotype(entity=f"e{i}", fitness=float(n - i)) for i in range(n)]


@pytest.fixture
def ranked_population():
    return _ranked(5)


@pytest.fixture
def state():
    return SelectionState(rng=np.random.default_rng(1234))


def _frequencies(state: SelectionState, selector, population, trials: int) -> np.ndarray:
    counts = np.zeros(len(population))
    for _ in range(trials):
        counts[state.pick(selector, population)] += 1
    return counts / trials


def test_fittest_always_returns_rank_zero(state, ranked_population):
    assert {state.pick(Select.FITTEST, ranked_population) for _ in range(20)} == {0}


@pytest.mark.parametrize("selector", [Select.FITTEST_LINEAR, Select.SEQUENTIAL])
def test_linear_walks_wrap_around(state, selector):
    population = _ranked(3)
    picks = [state.pick(selector, population) for _ in range(7)]
    assert picks == [0, 1, 2, 0, 1, 2, 0]


def test_counters_are_independent_per_strategy(state, ranked_population):
    assert state.pick(Select.FITTEST_LINEAR, ranked_population) == 0
    assert state.pick(Select.FITTEST_LINEAR, ranked_population) == 1
    assert state.pick(Select.SEQUENTIAL, ranked_population) == 0
    assert state.pick(Select.FITTEST_LINEAR, ranked_population) == 2


def test_reset_restarts_counters(state, ranked_population):
    for _ in range(3):
        state.pick(Select.SEQUENTIAL, ranked_population)
    state.reset()
    assert state.pick(Select.SEQUENTIAL, ranked_population) == 0


def test_counter_restarts_when_population_shrinks(state):
    for _ in range(4):
        state.pick(Select.FITTEST_LINEAR, _ranked(5))
    assert state.pick(Select.FITTEST_LINEAR, _ranked(3)) == 0


def test_random_linear_rank_window_grows(state, ranked_population):
    # window for call k is k % 5 (the counter restarts once it reaches the size)
    for k in range(40):
        idx = state.pick(Select.RANDOM_LINEAR_RANK, ranked_population)
        window = k % len(ranked_population)
        assert idx < max(1, window)


def test_fittest_random_stays_in_top_fifth(state):
    population = _ranked(20)
    picks = {state.pick(Select.FITTEST_RANDOM, population) for _ in range(500)}
    assert picks <= {0, 1, 2, 3}
    assert len(picks) > 1


def test_fittest_random_small_population_is_rank_zero(state):
    population = _ranked(4)
    assert {state.pick(Select.FITTEST_RANDOM, population) for _ in range(100)} == {0}


def test_random_covers_whole_population(state, ranked_population):
    picks = {state.pick(Select.RANDOM, ranked_population) for _ in range(500)}
    assert picks == set(range(len(ranked_population)))


def test_true_linear_rank_weights(state):
    population = _ranked(4)
    freq = _frequencies(state, Select.TRUE_LINEAR_RANK, population, 20000)
    expected = np.array([4, 3, 2, 1]) / 10
    assert np.allclose(freq, expected, atol=0.02)


def test_tournament2_beats_uniform_baseline(state, ranked_population):
    freq = _frequencies(state, Select.TOURNAMENT2, ranked_population, 10000)
    assert freq[0] > 1 / len(ranked_population)
    assert freq[0] > freq[-1]


def test_tournament3_is_stronger_than_tournament2(state, ranked_population):
    freq2 = _frequencies(state, Select.TOURNAMENT2, ranked_population, 10000)
    freq3 = _frequencies(state, Select.TOURNAMENT3, ranked_population, 10000)
    assert freq3[0] > freq2[0]


def test_tournament_respects_comparator(ranked_population):
    # under minimize, the last entry (fitness 1) is the strongest contender
    state = SelectionState(optimize=minimize, rng=np.random.default_rng(5))
    freq = _frequencies(state, Select.TOURNAMENT2, ranked_population, 5000)
    assert freq[-1] > freq[0]


def test_custom_selection_function(state, ranked_population):
    assert state.pick(lambda pop: len(pop) - 1, ranked_population) == 4


def test_custom_selection_out_of_range(state, ranked_population):
    with pytest.raises(IndexError):
        state.pick(lambda pop: len(pop), ranked_population)


def test_empty_population_rejected(state):
    with pytest.raises(ValueError):
        state.pick(Select.RANDOM, [])


@pytest.mark.parametrize("selector", list(Select))
def test_single_individual_population(state, selector):
    population = _ranked(1)
    for _ in range(3):
        assert state.pick(selector, population) == 0
