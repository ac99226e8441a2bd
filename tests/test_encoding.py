"""
Tests for quinary symbol encoding.

Focus areas:
1. Each precedence rule fires on its own
2. Precedence is total and first-match-wins
3. Per-phase words are contiguous; gaps and repeats are fatal
4. Word helpers
"""

import itertools

import pytest

from quinary.alignment import TrialPhase, WeekRecord
from quinary.encoding import (
    ALPHABET,
    RULES,
    UsePatternWord,
    assign_symbol,
    collapse_words,
    count_symbols,
    matching_rule,
    validate_word
)
from quinary.errors import WeekGapError


def week(number=1, phase=TrialPhase.PHASE_1, **counts):
    return WeekRecord(week=number, phase=phase, **counts)


class TestRules:
    """One test per rule, in precedence order."""

    def test_rule_order_is_fixed(self):
        assert [r.name for r in RULES] == [
            "positive_only",
            "negative_only",
            "mixed",
            "expected_without_data",
            "missed_visit",
            "no_expectation",
        ]

    def test_positive_only(self):
        assert matching_rule(week(n_positive=2, n_expected=1)).name == "positive_only"
        assert assign_symbol(week(n_positive=2)) == "+"

    def test_negative_only(self):
        assert assign_symbol(week(n_negative=1, n_missing=1)) == "-"

    def test_mixed(self):
        assert assign_symbol(week(n_positive=1, n_negative=1)) == "*"

    def test_expected_without_data(self):
        rule = matching_rule(week(number=3, n_expected=1))

        assert rule.name == "expected_without_data"
        assert rule.symbol == "o"

    def test_missed_visit_in_baseline(self):
        """Week 0 cannot satisfy rule 4, so the Missing marker decides."""
        rule = matching_rule(week(number=0, phase=TrialPhase.BASELINE, n_missing=1, n_expected=1))

        assert rule.name == "missed_visit"
        assert rule.symbol == "o"

    def test_no_expectation(self):
        assert assign_symbol(week(number=-2, phase=TrialPhase.BASELINE)) == "_"
        assert assign_symbol(week(number=0, phase=TrialPhase.BASELINE, n_expected=1)) == "_"

    def test_week_one_without_backbone_contact(self):
        assert assign_symbol(week(number=1, n_expected=0)) == "_"

    def test_observations_beat_missing_marker(self):
        assert assign_symbol(week(number=0, phase=TrialPhase.BASELINE, n_positive=1, n_missing=1)) == "+"


class TestPrecedence:
    """Every count combination yields exactly one symbol by first match."""

    def test_total_and_deterministic(self):
        for n_pos, n_neg, n_missing, n_expected, number in itertools.product(
            (0, 1, 3), (0, 1, 2), (0, 1), (0, 1), (-2, 0, 1, 5)
        ):
            record = week(number=number, n_positive=n_pos, n_negative=n_neg,
                          n_missing=n_missing, n_expected=n_expected)

            if n_pos and not n_neg:
                expected = "+"
            elif n_neg and not n_pos:
                expected = "-"
            elif n_pos and n_neg:
                expected = "*"
            elif number >= 1 and n_expected:
                expected = "o"
            elif n_missing:
                expected = "o"
            else:
                expected = "_"

            assert assign_symbol(record) == expected
            assert assign_symbol(record) in ALPHABET

    def test_first_of_the_three_data_rules_is_exclusive(self):
        for n_pos, n_neg in itertools.product(range(3), range(3)):
            record = week(n_positive=n_pos, n_negative=n_neg)
            fired = [r.name for r in RULES[:3] if r.matches(record)]

            assert len(fired) == (0 if n_pos == n_neg == 0 else 1)


class TestCollapseWords:
    """Per-phase word construction."""

    def test_words_by_phase(self):
        weeks = [
            week(-1, TrialPhase.BASELINE),
            week(0, TrialPhase.BASELINE, n_missing=1),
            week(1, n_expected=1),
            week(2, n_positive=1, n_negative=1),
            week(3, TrialPhase.PHASE_2, n_negative=1),
        ]

        words = collapse_words(5, weeks, rand_week_1=0, rand_week_2=3)

        assert [(w.phase, w.start_week, w.end_week, w.word) for w in words] == [
            (TrialPhase.BASELINE, -1, 0, "_o"),
            (TrialPhase.PHASE_1, 1, 2, "o*"),
            (TrialPhase.PHASE_2, 3, 3, "-"),
        ]
        assert all(w.rand_week_2 == 3 for w in words)

    def test_input_order_does_not_matter(self):
        weeks = [week(2, n_positive=1), week(1, n_negative=1)]

        assert collapse_words(1, weeks)[0].word == "-+"

    def test_gap_is_fatal(self):
        weeks = [week(1), week(2), week(4)]

        with pytest.raises(WeekGapError) as exc_info:
            collapse_words(11, weeks)

        assert exc_info.value.subject_id == 11
        assert exc_info.value.phase == "Phase_1"

    def test_duplicate_week_is_fatal(self):
        with pytest.raises(WeekGapError):
            collapse_words(1, [week(1), week(1), week(2)])

    def test_empty_phases_omitted(self):
        words = collapse_words(1, [week(1), week(2)])

        assert [w.phase for w in words] == [TrialPhase.PHASE_1]


class TestUsePatternWord:
    """Word value object."""

    def test_immutable(self):
        word = UsePatternWord(1, TrialPhase.PHASE_1, 1, 3, 0, None, "+-o")
        with pytest.raises(Exception):  # FrozenInstanceError
            word.word = "+++"

    def test_length_must_span_weeks(self):
        with pytest.raises(ValueError):
            UsePatternWord(1, TrialPhase.PHASE_1, 1, 3, 0, None, "+-")

    def test_to_dict(self):
        data = UsePatternWord(1, TrialPhase.PHASE_2, 8, 9, 0, 8, "o+").to_dict()

        assert data["phase"] == "Phase_2"
        assert data["rand_week_2"] == 8


class TestWordHelpers:
    """count_symbols / validate_word."""

    def test_count_symbols(self):
        assert count_symbols("++-o_*o") == {"+": 2, "-": 1, "*": 1, "o": 2, "_": 1}

    def test_count_symbols_includes_zeros(self):
        assert count_symbols("") == {s: 0 for s in ALPHABET}

    def test_validate_word_rejects_other_symbols(self):
        with pytest.raises(ValueError, match="x"):
            validate_word("+x-")
