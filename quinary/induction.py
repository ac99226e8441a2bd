"""
Induction delay: days from first randomization to first nonzero dose.

Undefined (None / pd.NA) when the subject never received a nonzero dose or
was never randomized. Negative delays (dosing before randomization) are a
data-quality signal and are reported as-is.
"""

from dataclasses import dataclass
from typing import Dict, Optional
import logging

import pandas as pd

from quinary.events import prepare_table
from quinary.visits import first_randomization_days

logger = logging.getLogger(__name__)

INDUCTION_COLUMNS = ["subject_id", "rand_day", "treat_start_day", "induction_delay"]


@dataclass(frozen=True)
class InductionDelay:
    subject_id: int
    rand_day: Optional[int]
    treat_start_day: Optional[int]

    @property
    def delay(self) -> Optional[int]:
        if self.rand_day is None or self.treat_start_day is None:
            return None
        return self.treat_start_day - self.rand_day


def first_dose_days(dose: Optional[pd.DataFrame]) -> Dict[int, int]:
    """subject_id -> earliest study day with a nonzero dose."""
    if dose is None:
        return {}
    table = prepare_table(dose, "dose")
    amounts = pd.to_numeric(table["amount"], errors="coerce")
    dosed = table[amounts.notna() & (amounts != 0)]
    return {
        int(subject_id): int(day)
        for subject_id, day in dosed.groupby("subject_id")["study_day"].min().items()
    }


def induction_delays(
    randomization: Optional[pd.DataFrame],
    dose: Optional[pd.DataFrame]
) -> Dict[int, InductionDelay]:
    """Per-subject induction delay for every subject seen in either table."""
    rand_days = first_randomization_days(randomization)
    dose_days = first_dose_days(dose)

    subjects = sorted(set(rand_days) | set(dose_days))
    return {
        s: InductionDelay(s, rand_days.get(s), dose_days.get(s))
        for s in subjects
    }


def compute_induction_delay(
    randomization: Optional[pd.DataFrame],
    dose: Optional[pd.DataFrame]
) -> pd.DataFrame:
    """
    Table form of induction_delays().

    Returns:
        DataFrame[subject_id, rand_day, treat_start_day, induction_delay] with
        nullable Int64 day columns; induction_delay is <NA> when undefined.
    """
    delays = induction_delays(randomization, dose)
    table = pd.DataFrame(
        [(d.subject_id, d.rand_day, d.treat_start_day, d.delay) for d in delays.values()],
        columns=INDUCTION_COLUMNS
    )
    for column in INDUCTION_COLUMNS[1:]:
        table[column] = table[column].astype("Int64")

    undefined = int(table["induction_delay"].isna().sum())
    negative = int((table["induction_delay"] < 0).sum())
    logger.info(
        f"Induction delay: {len(table)} subjects, {undefined} undefined, {negative} negative"
    )
    return table
