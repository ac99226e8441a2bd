"""
Visit imputation against the protocol backbone.

For each expected contact day:
- Present: an attended visit exists on exactly that day
- Missing: no attended visit, and the day falls on the weekly grid of the
  subject's anchor (first randomization day, or consent day 0)
- otherwise the day is dropped

A visit one or more days late does NOT satisfy the scheduled day: the
scheduled day stays Missing and the late visit is not imputed anywhere.
Historical outputs depend on this asymmetry.
"""

from enum import Enum
from typing import Dict, Iterable, Mapping, Optional, Sequence
import logging

import pandas as pd

from quinary.backbone import CONSENT_DAY
from quinary.config import DEFAULT_VISIT_STATES
from quinary.events import prepare_table, validate_columns

logger = logging.getLogger(__name__)

WEEK = 7

IMPUTED_COLUMNS = ["subject_id", "project_id", "study_day", "visit_status"]


class VisitStatus(Enum):
    PRESENT = "Present"
    MISSING = "Missing"


def first_randomization_days(randomization: Optional[pd.DataFrame], index: int = 1) -> Dict[int, int]:
    """subject_id -> earliest study day with the given randomization index."""
    if randomization is None:
        return {}
    table = prepare_table(randomization, "randomization")
    table = table[table["randomization_index"] == index]
    return {
        int(subject_id): int(day)
        for subject_id, day in table.groupby("subject_id")["study_day"].min().items()
    }


def anchor_day(rand1_day: Optional[int]) -> int:
    """Randomization day when present, else consent day."""
    return CONSENT_DAY if rand1_day is None else rand1_day


def impute_subject_visits(
    backbone_days: Sequence[int],
    visit_days: Iterable[int],
    anchor: int
) -> Dict[int, VisitStatus]:
    """
    Resolve one subject's backbone into an ordered day -> status map.

    Args:
        backbone_days: Expected contact days (ascending)
        visit_days: Days with an attended visit
        anchor: Day the weekly grid is measured from

    Example:
        # Visit on day 9 only: every scheduled day is Missing, day 9 is ignored
        impute_subject_visits([0, 7, 14, 21], [9], anchor=0)
    """
    attended = set(visit_days)
    statuses: Dict[int, VisitStatus] = {}

    for day in sorted(set(backbone_days)):
        if day in attended:
            statuses[day] = VisitStatus.PRESENT
        elif (day - anchor) % WEEK == 0:
            statuses[day] = VisitStatus.MISSING

    return statuses


def attended_visit_days(
    visits: pd.DataFrame,
    visit_states: Sequence[str] = DEFAULT_VISIT_STATES
) -> Dict[int, set]:
    """subject_id -> set of days with a completed/final visit."""
    table = prepare_table(visits, "visit")
    accepted = {s.lower() for s in visit_states}
    kept = table[table["visit_state"].astype(str).str.strip().str.lower().isin(accepted)]

    dropped = len(table) - len(kept)
    if dropped:
        logger.debug(f"Excluded {dropped} visits with states outside {sorted(accepted)}")

    return {
        int(subject_id): set(int(d) for d in days)
        for subject_id, days in kept.groupby("subject_id")["study_day"]
    }


def impute_visits(
    backbone: pd.DataFrame,
    visits: pd.DataFrame,
    randomization: Optional[pd.DataFrame] = None,
    visit_states: Sequence[str] = DEFAULT_VISIT_STATES,
    rand1_days: Optional[Mapping[int, int]] = None
) -> pd.DataFrame:
    """
    Mark each backbone day Present or Missing.

    Re-running on its own output (statuses renamed to visit_state) leaves
    every Present day Present.

    Args:
        backbone: DataFrame[subject_id, project_id, study_day]
        visits: DataFrame[subject_id, study_day, visit_state]
        randomization: Randomization table, used to locate each anchor
        visit_states: States counted as an attended visit
        rand1_days: Precomputed subject_id -> first randomization day

    Returns:
        DataFrame[subject_id, project_id, study_day, visit_status] ordered by
        subject then day
    """
    validate_columns(backbone, ["subject_id", "project_id", "study_day"], "backbone")
    attended = attended_visit_days(visits, visit_states)
    if rand1_days is None:
        rand1_days = first_randomization_days(randomization)

    rows = []
    for (subject_id, project_id), group in backbone.groupby(["subject_id", "project_id"], sort=True):
        subject_id = int(subject_id)
        statuses = impute_subject_visits(
            group["study_day"].tolist(),
            attended.get(subject_id, set()),
            anchor_day(rand1_days.get(subject_id))
        )
        rows.extend(
            (subject_id, project_id, day, status.value) for day, status in statuses.items()
        )

    imputed = pd.DataFrame(rows, columns=IMPUTED_COLUMNS)
    imputed = imputed.sort_values(["subject_id", "study_day"], kind="mergesort").reset_index(drop=True)

    n_missing = int((imputed["visit_status"] == VisitStatus.MISSING.value).sum())
    logger.info(f"Visit imputation: {len(imputed)} resolved days, {n_missing} missing")
    return imputed
