"""
Bracket generator: power-of-two sizing, recursive seed order, byes, bronze flag.
"""
import pytest

from competition_engine.errors import ConfigurationError
from competition_engine.services.bracket_generator import (
    bracket_seed_order,
    bracket_size,
    build_bracket,
    round_count,
    round_name,
)


class TestSeedOrder:
    def test_2(self):
        assert bracket_seed_order(2) == [1, 2]

    def test_4(self):
        assert bracket_seed_order(4) == [1, 4, 2, 3]

    def test_8(self):
        assert bracket_seed_order(8) == [1, 8, 4, 5, 2, 7, 3, 6]

    def test_16(self):
        assert bracket_seed_order(16) == [1, 16, 8, 9, 4, 13, 5, 12, 2, 15, 7, 10, 3, 14, 6, 11]

    def test_pairs_sum_to_size_plus_one(self):
        for size in (2, 4, 8, 16, 32):
            order = bracket_seed_order(size)
            assert sorted(order) == list(range(1, size + 1))
            assert all(order[i] + order[i + 1] == size + 1 for i in range(0, size, 2))

    def test_top_two_seeds_in_different_halves(self):
        for size in (4, 8, 16, 32, 64):
            order = bracket_seed_order(size)
            half = size // 2
            assert (1 in order[:half]) != (2 in order[:half])

    def test_rejects_non_power_of_two(self):
        with pytest.raises(ValueError):
            bracket_seed_order(6)


class TestSizing:
    @pytest.mark.parametrize("n,size", [(1, 2), (2, 2), (3, 4), (4, 4), (5, 8), (8, 8), (9, 16), (17, 32)])
    def test_smallest_power_of_two(self, n, size):
        assert bracket_size(n) == size

    def test_round_count(self):
        assert round_count(2) == 1
        assert round_count(8) == 3

    def test_round_names(self):
        assert round_name(3, 3) == "Final"
        assert round_name(2, 3) == "Semifinal"
        assert round_name(1, 3) == "Quarterfinal"
        assert round_name(1, 5) == "Round 1"


class TestBuildBracket:
    def test_full_field_has_no_byes(self):
        plan = build_bracket(list("ABCDEFGH"))
        assert plan.size == 8
        assert len(plan.pairings) == 4
        assert plan.byes == []
        assert plan.seed_pairs == [(1, 8), (4, 5), (2, 7), (3, 6)]
        assert [(p.entrant_a, p.entrant_b) for p in plan.matches] == [("A", "H"), ("D", "E"), ("B", "G"), ("C", "F")]

    def test_five_entrants_get_three_byes(self):
        plan = build_bracket(list("ABCDE"))
        assert plan.size == 8
        assert len(plan.pairings) == 4
        assert [p.advancing for p in plan.byes] == ["A", "B", "C"]
        assert [(p.entrant_a, p.entrant_b) for p in plan.matches] == [("D", "E")]

    def test_slots_follow_draw_order(self):
        plan = build_bracket(list("ABC"))
        assert plan.slots == ["A", None, "B", "C"]

    def test_bronze_kept_with_four_entrants(self):
        assert build_bracket(list("ABCD"), bronze=True).bronze is True

    def test_bronze_ignored_below_four_entrants(self):
        assert build_bracket(list("ABC"), bronze=True).bronze is False

    def test_fewer_than_two_entrants_rejected(self):
        with pytest.raises(ConfigurationError) as exc:
            build_bracket(["A"])
        assert exc.value.code == "NOT_ENOUGH_ENTRANTS"
