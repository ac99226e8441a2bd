"""
Quinary symbol encoding.

Each week collapses to exactly one symbol from {+, -, *, o, _} by an ordered
rule list evaluated first-match-wins:

    1. positive only                          -> "+"
    2. negative only                          -> "-"
    3. positive and negative                  -> "*"
    4. no observations, week >= 1, expected   -> "o"
    5. no observations, Missing visit marker  -> "o"
    6. anything else                          -> "_"

Rule order is part of the output contract: rule 5 sits after rule 4 even
though both yield "o", and reordering could change historical words.

Per-phase words concatenate the weekly symbols in increasing week order.
A gap or repeated week inside a phase raises WeekGapError.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging

from quinary.alignment import TrialPhase, WeekRecord
from quinary.errors import WeekGapError

logger = logging.getLogger(__name__)

ALPHABET = ("+", "-", "*", "o", "_")


@dataclass(frozen=True)
class SymbolRule:
    """One precedence rule: a named predicate over a WeekRecord and its symbol."""
    name: str
    symbol: str
    condition: Callable[[WeekRecord], bool]

    def __post_init__(self):
        if self.symbol not in ALPHABET:
            raise ValueError(f"symbol must be one of {ALPHABET}, got {self.symbol!r}")

    def matches(self, week: WeekRecord) -> bool:
        return bool(self.condition(week))


RULES: Tuple[SymbolRule, ...] = (
    SymbolRule(
        "positive_only", "+",
        lambda w: w.n_positive > 0 and w.n_negative == 0
    ),
    SymbolRule(
        "negative_only", "-",
        lambda w: w.n_positive == 0 and w.n_negative > 0
    ),
    SymbolRule(
        "mixed", "*",
        lambda w: w.n_positive > 0 and w.n_negative > 0
    ),
    SymbolRule(
        "expected_without_data", "o",
        lambda w: w.n_observations == 0 and w.week >= 1 and w.n_expected > 0
    ),
    SymbolRule(
        "missed_visit", "o",
        lambda w: w.n_observations == 0 and w.n_missing > 0
    ),
    SymbolRule(
        "no_expectation", "_",
        lambda w: True
    ),
)


def matching_rule(week: WeekRecord, rules: Sequence[SymbolRule] = RULES) -> SymbolRule:
    """First rule whose condition holds."""
    for rule in rules:
        if rule.matches(week):
            return rule
    # The default rule list always ends with a catch-all
    raise ValueError(f"No symbol rule matched week {week}")


def assign_symbol(week: WeekRecord, rules: Sequence[SymbolRule] = RULES) -> str:
    return matching_rule(week, rules).symbol


@dataclass(frozen=True)
class UsePatternWord:
    """
    One subject's weekly use pattern within a single trial phase.

    start_week / end_week and the randomization weeks are all on the
    subject's track-1 week grid.
    """
    subject_id: int
    phase: TrialPhase
    start_week: int
    end_week: int
    rand_week_1: Optional[int]
    rand_week_2: Optional[int]
    word: str

    def __post_init__(self):
        validate_word(self.word)
        if len(self.word) != self.end_week - self.start_week + 1:
            raise ValueError(
                f"word length {len(self.word)} does not span weeks "
                f"{self.start_week}..{self.end_week}"
            )

    def to_dict(self) -> Dict:
        return {
            "subject_id": self.subject_id,
            "phase": self.phase.value,
            "start_week": self.start_week,
            "end_week": self.end_week,
            "rand_week_1": self.rand_week_1,
            "rand_week_2": self.rand_week_2,
            "word": self.word
        }


def validate_word(word: str) -> None:
    """Raise ValueError if word contains a character outside the alphabet."""
    invalid = sorted(set(word) - set(ALPHABET))
    if invalid:
        raise ValueError(f"word contains symbols outside {ALPHABET}: {invalid}")


def count_symbols(word: str) -> Dict[str, int]:
    """Count of every alphabet symbol in a word (zeros included)."""
    validate_word(word)
    counts = Counter(word)
    return {symbol: counts.get(symbol, 0) for symbol in ALPHABET}


def _check_contiguous(subject_id: int, phase: TrialPhase, weeks: List[int]) -> None:
    for previous, current in zip(weeks, weeks[1:]):
        if current != previous + 1:
            raise WeekGapError(subject_id, phase.value, weeks)


def collapse_words(
    subject_id: int,
    weeks: Sequence[WeekRecord],
    rand_week_1: Optional[int] = None,
    rand_week_2: Optional[int] = None,
    rules: Sequence[SymbolRule] = RULES
) -> List[UsePatternWord]:
    """
    Encode every week and collapse the symbols into one word per phase.

    Args:
        subject_id: Subject the weeks belong to
        weeks: Weekly records (any order)
        rand_week_1: Track-1 week of the first randomization
        rand_week_2: Track-1 week of the second randomization
        rules: Ordered symbol rules

    Returns:
        Words ordered Baseline, Phase_1, Phase_2; phases without weeks are omitted

    Raises:
        WeekGapError: If a phase skips or repeats a week
    """
    by_phase: Dict[TrialPhase, List[WeekRecord]] = {}
    for record in sorted(weeks, key=lambda w: w.week):
        by_phase.setdefault(record.phase, []).append(record)

    words = []
    for phase in sorted(by_phase, key=lambda p: p.order):
        records = by_phase[phase]
        week_numbers = [r.week for r in records]
        _check_contiguous(subject_id, phase, week_numbers)

        words.append(UsePatternWord(
            subject_id=subject_id,
            phase=phase,
            start_week=week_numbers[0],
            end_week=week_numbers[-1],
            rand_week_1=rand_week_1,
            rand_week_2=rand_week_2,
            word="".join(assign_symbol(r, rules) for r in records)
        ))

    logger.debug(
        f"Subject {subject_id}: " + ", ".join(f"{w.phase.value}={w.word}" for w in words)
    )
    return words
