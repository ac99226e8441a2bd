"""
Weekly alignment and phase segmentation.

Maps each study day onto a subject-specific weekly grid and tags every week
with a trial phase.

Week numbering:
    week = (days_since_anchor - 1) // 7 + 1      (floor division)

    The anchor day itself closes week 0 (days anchor-6 .. anchor), so day
    anchor+1 opens week 1. Weeks <= 0 are Baseline.

Anchors:
- Randomized, intent-to-treat: first randomization day
- Randomized, as-treated: first nonzero dose day (randomization day when the
  induction delay is undefined)
- Never randomized: consent day 0

Adaptive (two-randomization) subjects carry a second, independent track
measured from the second randomization day. Phase_2 starts on the track-1
week containing the second randomization and never reverts.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging

from quinary.backbone import CONSENT_DAY
from quinary.config import AnchorMode
from quinary.visits import WEEK, VisitStatus

logger = logging.getLogger(__name__)


class TrialPhase(Enum):
    BASELINE = "Baseline"
    PHASE_1 = "Phase_1"
    PHASE_2 = "Phase_2"

    @property
    def order(self) -> int:
        return _PHASE_ORDER[self]


_PHASE_ORDER = {TrialPhase.BASELINE: 0, TrialPhase.PHASE_1: 1, TrialPhase.PHASE_2: 2}


@dataclass(frozen=True)
class SubjectTimeline:
    """
    Everything known about one subject, keyed by study day.

    Pure data holder built by the pipeline from the normalized tables; each
    subject's timeline is independent of every other subject's.

    Attributes:
        subject_id: Subject identifier
        project_id: Protocol the subject was enrolled under
        window_start: First day of the subject's protocol window
        window_end: Last day of the subject's protocol window (inclusive)
        backbone_days: Expected contact days, ascending
        visit_status: Ordered day -> Present/Missing map from visit imputation
        tests: day -> (n_positive, n_negative) observation counts
        rand1_day: First randomization day (None if never randomized)
        rand2_day: Second randomization day (adaptive protocols only)
        induction_delay: Days from rand1_day to first nonzero dose (None if undefined)
    """
    subject_id: int
    project_id: str
    window_start: int
    window_end: int
    backbone_days: Tuple[int, ...] = ()
    visit_status: Dict[int, VisitStatus] = field(default_factory=dict)
    tests: Dict[int, Tuple[int, int]] = field(default_factory=dict)
    rand1_day: Optional[int] = None
    rand2_day: Optional[int] = None
    induction_delay: Optional[int] = None

    def __post_init__(self):
        if self.window_end < self.window_start:
            raise ValueError(
                f"Subject {self.subject_id}: window_end {self.window_end} "
                f"< window_start {self.window_start}"
            )
        if self.rand2_day is not None and self.rand1_day is None:
            raise ValueError(
                f"Subject {self.subject_id}: second randomization without a first"
            )

    @property
    def randomized(self) -> bool:
        return self.rand1_day is not None


@dataclass(frozen=True)
class AlignedDay:
    """One study day placed on both week tracks."""
    day: int
    week: int
    rand2_week: Optional[int]
    phase: TrialPhase
    expected: bool
    visit_status: Optional[VisitStatus]
    n_positive: int
    n_negative: int


@dataclass(frozen=True)
class WeekRecord:
    """
    Aggregated observations for one track-1 week.

    n_expected counts backbone contact days in the week; n_missing counts
    backbone days imputed as Missing.
    """
    week: int
    phase: TrialPhase
    n_positive: int = 0
    n_negative: int = 0
    n_missing: int = 0
    n_expected: int = 0

    @property
    def n_observations(self) -> int:
        return self.n_positive + self.n_negative


def study_week(day: int, anchor: int) -> int:
    """
    Week number of a study day relative to an anchor day.

    >>> [study_week(d, 0) for d in (-7, -6, 0, 1, 7, 8, 14, 15)]
    [-1, 0, 0, 1, 1, 2, 2, 3]
    """
    return (day - anchor - 1) // WEEK + 1


def select_anchor(
    rand1_day: Optional[int],
    induction_delay: Optional[int],
    anchor_mode: AnchorMode = AnchorMode.INTENT_TO_TREAT
) -> int:
    """Day that closes week 0 for a subject."""
    if rand1_day is None:
        return CONSENT_DAY
    if anchor_mode is AnchorMode.AS_TREATED and induction_delay is not None:
        return rand1_day + induction_delay
    return rand1_day


def assign_phase(week: int, phase2_week: Optional[int] = None) -> TrialPhase:
    """
    Phase of a track-1 week.

    Baseline always wins for weeks <= 0, so a second randomization that lands
    on or before the anchor opens Phase_2 at week 1.
    """
    if week <= 0:
        return TrialPhase.BASELINE
    if phase2_week is not None and week >= phase2_week:
        return TrialPhase.PHASE_2
    return TrialPhase.PHASE_1


def align_days(
    timeline: SubjectTimeline,
    anchor_mode: AnchorMode = AnchorMode.INTENT_TO_TREAT
) -> List[AlignedDay]:
    """
    Place every in-window day with any expectation or observation on the grid.

    Observations outside [window_start, window_end] are dropped.

    Returns:
        AlignedDay list in ascending day order
    """
    anchor = select_anchor(timeline.rand1_day, timeline.induction_delay, anchor_mode)
    phase2_week = None
    if timeline.rand2_day is not None:
        phase2_week = study_week(timeline.rand2_day, anchor)

    expected = set(timeline.backbone_days)
    days = expected | set(timeline.visit_status) | set(timeline.tests)
    in_window = sorted(d for d in days if timeline.window_start <= d <= timeline.window_end)

    dropped = [d for d in timeline.tests if not timeline.window_start <= d <= timeline.window_end]
    if dropped:
        logger.debug(
            f"Subject {timeline.subject_id}: {len(dropped)} observation days outside "
            f"window [{timeline.window_start}, {timeline.window_end}]"
        )

    aligned = []
    for day in in_window:
        week = study_week(day, anchor)
        n_positive, n_negative = timeline.tests.get(day, (0, 0))
        aligned.append(AlignedDay(
            day=day,
            week=week,
            rand2_week=None if timeline.rand2_day is None else study_week(day, timeline.rand2_day),
            phase=assign_phase(week, phase2_week),
            expected=day in expected,
            visit_status=timeline.visit_status.get(day),
            n_positive=n_positive,
            n_negative=n_negative
        ))
    return aligned


def weekly_records(
    timeline: SubjectTimeline,
    anchor_mode: AnchorMode = AnchorMode.INTENT_TO_TREAT
) -> List[WeekRecord]:
    """
    Aggregate aligned days into one record per week.

    Every week from the week of window_start through the week of window_end
    gets a record, with or without data.
    """
    anchor = select_anchor(timeline.rand1_day, timeline.induction_delay, anchor_mode)
    phase2_week = None
    if timeline.rand2_day is not None:
        phase2_week = study_week(timeline.rand2_day, anchor)

    first_week = study_week(timeline.window_start, anchor)
    last_week = study_week(timeline.window_end, anchor)
    counts: Dict[int, List[int]] = {w: [0, 0, 0, 0] for w in range(first_week, last_week + 1)}

    for aligned in align_days(timeline, anchor_mode):
        bucket = counts[aligned.week]
        bucket[0] += aligned.n_positive
        bucket[1] += aligned.n_negative
        bucket[2] += int(aligned.visit_status is VisitStatus.MISSING)
        bucket[3] += int(aligned.expected)

    return [
        WeekRecord(
            week=week,
            phase=assign_phase(week, phase2_week),
            n_positive=n_pos,
            n_negative=n_neg,
            n_missing=n_missing,
            n_expected=n_expected
        )
        for week, (n_pos, n_neg, n_missing, n_expected) in counts.items()
    ]


def randomization_weeks(
    timeline: SubjectTimeline,
    anchor_mode: AnchorMode = AnchorMode.INTENT_TO_TREAT
) -> Tuple[Optional[int], Optional[int]]:
    """Track-1 weeks of the first and second randomization (None if absent)."""
    anchor = select_anchor(timeline.rand1_day, timeline.induction_delay, anchor_mode)
    rand_week_1 = None if timeline.rand1_day is None else study_week(timeline.rand1_day, anchor)
    rand_week_2 = None if timeline.rand2_day is None else study_week(timeline.rand2_day, anchor)
    return rand_week_1, rand_week_2
