from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass

import pytest

from conftest import FixedRng
from solana_wheel.draw import InvalidInput, WeightedSelector, winning_degree


@dataclass(frozen=True)
class Cand:
    address: str
    amount: int


def test_select_walks_cumulative_weight() -> None:
    cands = [Cand("B", 400), Cand("C", 100)]

    assert WeightedSelector(cooldown_size=0, rng=FixedRng(400)).select(cands).address == "B"
    assert WeightedSelector(cooldown_size=0, rng=FixedRng(400.5)).select(cands).address == "C"


def test_select_falls_back_to_last_candidate_past_boundary() -> None:
    cands = [Cand("A", 1), Cand("B", 1), Cand("C", 1)]
    winner = WeightedSelector(cooldown_size=0, rng=FixedRng(3.0000001)).select(cands)
    assert winner.address == "C"


def test_select_returns_member_of_input() -> None:
    cands = [Cand(f"W{i}", i + 1) for i in range(20)]
    selector = WeightedSelector(rng=random.Random(7))
    for _ in range(200):
        assert selector.select(cands) in cands


def test_cooldown_is_fifo() -> None:
    cands = [Cand("A", 10), Cand("B", 10), Cand("C", 10)]
    # r=0 always picks the first eligible candidate
    selector = WeightedSelector(cooldown_size=2, rng=FixedRng(0))

    order = [selector.select(cands).address for _ in range(5)]

    assert order == ["A", "B", "C", "A", "B"]
    assert selector.cooldown == ("A", "B")


def test_winner_excluded_for_next_n_draws() -> None:
    cands = [Cand("A", 1_000_000), Cand("B", 1), Cand("C", 1)]
    selector = WeightedSelector(cooldown_size=2, rng=random.Random(3))

    first = selector.select(cands)
    following = [selector.select(cands) for _ in range(2)]

    assert first.address not in {c.address for c in following}


def test_cooldown_covering_everyone_is_ignored_and_cleared() -> None:
    cands = [Cand("A", 5), Cand("B", 5)]
    selector = WeightedSelector(cooldown_size=2, rng=FixedRng(0))

    assert selector.select(cands).address == "A"
    assert selector.select(cands).address == "B"
    # both on cooldown: draw from the full list
    assert selector.select(cands).address == "A"
    assert selector.cooldown == ("A",)


def test_explicit_exclusions_are_respected() -> None:
    cands = [Cand("A", 5), Cand("B", 5)]
    winner = WeightedSelector(cooldown_size=0, rng=FixedRng(0)).select(cands, excluded={"A"})
    assert winner.address == "B"


def test_invalid_input() -> None:
    selector = WeightedSelector()
    with pytest.raises(InvalidInput):
        selector.select([])
    with pytest.raises(InvalidInput):
        selector.select([Cand("A", 0), Cand("B", 0)])
    assert selector.cooldown == ()


def test_win_frequency_converges_to_weight_share() -> None:
    cands = [Cand("A", 1), Cand("B", 3), Cand("C", 6)]
    selector = WeightedSelector(cooldown_size=0, rng=random.Random(1234))
    trials = 20_000

    counts = Counter(selector.select(cands).address for _ in range(trials))

    for c in cands:
        assert abs(counts[c.address] / trials - c.amount / 10) < 0.02


def test_winning_degree_centers_on_winner_arc() -> None:
    assert winning_degree([80.0, 20.0], 1, FixedRng(random_value=0.5)) == pytest.approx(324.0)
    assert winning_degree([80.0, 20.0], 0, FixedRng(random_value=0.5)) == pytest.approx(144.0)


def test_winning_degree_stays_inside_arc() -> None:
    rng = random.Random(99)
    for _ in range(500):
        deg = winning_degree([50.0, 30.0, 20.0], 1, rng)
        # arc 180..288, offset limited to 60% of it around the center
        assert 180 + 108 * 0.2 <= deg <= 180 + 108 * 0.8


def test_winning_degree_bad_index() -> None:
    assert winning_degree([], 0) == 0.0
    assert winning_degree([100.0], 3) == 0.0
