"""
Event normalization: validate the raw input tables and reduce them to one
canonical per-subject, per-day event schema.

Design Principles:
- Validation fails loudly (SchemaError names every missing column)
- Inputs are never mutated; every function returns a new DataFrame
- Drug matching keeps only the FACT that a target substance was reported on
  a day/source, not which substance it was
"""

from typing import Dict, Iterable, List, Optional, Sequence
import logging
import warnings

import numpy as np
import pandas as pd

from quinary.config import ALL_SOURCES
from quinary.errors import ColumnValueError, NoMatchError, PartialMatchWarning, SchemaError

logger = logging.getLogger(__name__)

# Legacy column names accepted on input
COLUMN_ALIASES: Dict[str, str] = {
    "who": "subject_id",
    "when": "study_day",
    "what": "substance",
}

REQUIRED_COLUMNS: Dict[str, List[str]] = {
    "drug_use": ["subject_id", "study_day", "substance", "source"],
    "visit": ["subject_id", "study_day", "visit_state"],
    "randomization": ["subject_id", "study_day", "randomization_index", "treatment"],
    "dose": ["subject_id", "study_day", "amount"],
    "project": ["subject_id", "project_id"],
}

EVENT_KINDS = ("drug_use", "clinic_visit", "randomization", "dose")
EVENT_COLUMNS = ["subject_id", "study_day", "event_kind", "value", "source"]

# table name -> (event kind, value column)
_EVENT_SOURCES = {
    "drug_use": ("drug_use", "substance"),
    "visit": ("clinic_visit", "visit_state"),
    "randomization": ("randomization", "randomization_index"),
    "dose": ("dose", "amount"),
}


def validate_columns(df: pd.DataFrame, required: Iterable[str], table: str) -> None:
    """Raise SchemaError if any required column is absent."""
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SchemaError(table, missing)


def prepare_table(df: pd.DataFrame, table: str) -> pd.DataFrame:
    """
    Rename legacy columns, validate the schema and coerce key columns.

    Args:
        df: Raw input table
        table: One of REQUIRED_COLUMNS keys

    Returns:
        New DataFrame with integer subject_id (and study_day where present)

    Raises:
        SchemaError: If a required column is absent
        ColumnValueError: If subject_id or study_day holds blanks or fractions
    """
    if table not in REQUIRED_COLUMNS:
        raise ValueError(f"Unknown table '{table}', expected one of {sorted(REQUIRED_COLUMNS)}")

    renamed = df.rename(columns={k: v for k, v in COLUMN_ALIASES.items() if k in df.columns})
    validate_columns(renamed, REQUIRED_COLUMNS[table], table)

    prepared = renamed.copy()
    for column in ("subject_id", "study_day"):
        if column in prepared.columns:
            prepared[column] = _integer_column(prepared[column], table, column)
    return prepared


def _integer_column(values: pd.Series, table: str, column: str) -> pd.Series:
    numeric = pd.to_numeric(values, errors="coerce")
    invalid = numeric.isna() | (numeric % 1 != 0)
    if invalid.any():
        raise ColumnValueError(table, column, int(invalid.sum()))
    return numeric.astype(np.int64)


def mark_use(
    target_drugs: Sequence[str],
    drug_use: pd.DataFrame,
    sources: Sequence[str] = ALL_SOURCES
) -> pd.DataFrame:
    """
    Mark the days on which any target drug was reported.

    Args:
        target_drugs: Substance names counted against the subject
        drug_use: Table with subject_id, study_day, substance, source
        sources: Report sources to keep (TFB, UDS, UDSAB)

    Returns:
        DataFrame[subject_id, study_day, source], one row per use day per
        source (a day reported by both TFB and UDS yields two rows), sorted by
        subject then day

    Raises:
        SchemaError: If drug_use lacks a required column
        NoMatchError: If no target drug appears in the table

    Warns:
        PartialMatchWarning: If some target drugs do not appear in the table
    """
    table = prepare_table(drug_use, "drug_use")

    recorded = set(table["substance"].dropna().unique())
    matched = [d for d in target_drugs if d in recorded]
    unmatched = [d for d in target_drugs if d not in recorded]

    if not matched:
        raise NoMatchError(target_drugs)
    if unmatched:
        message = (
            f"The following drugs were not matched: {', '.join(unmatched)}. "
            "Please check for possible spelling/capitalization errors."
        )
        logger.warning(message)
        warnings.warn(message, PartialMatchWarning, stacklevel=2)

    used = table[table["substance"].isin(matched) & table["source"].isin(sources)]
    result = (
        used[["subject_id", "study_day", "source"]]
        .drop_duplicates()
        .sort_values(["subject_id", "study_day", "source"], kind="mergesort")
        .reset_index(drop=True)
    )

    logger.debug(f"mark_use: {len(result)} use days for {len(matched)} matched drugs")
    return result


def classify_tests(
    drug_use: pd.DataFrame,
    target_drugs: Sequence[str],
    sources: Sequence[str] = ALL_SOURCES
) -> pd.DataFrame:
    """
    Classify every report/test day as positive or negative for the target drugs.

    Each (subject_id, study_day, source) present under an allowed source is
    one observation. It is positive if mark_use() found a target drug for it,
    otherwise negative. Rows whose substance is blank or "Negative" record a
    clean test.

    Returns:
        DataFrame[subject_id, study_day, source, positive]
    """
    table = prepare_table(drug_use, "drug_use")
    positives = mark_use(target_drugs, table, sources)
    positive_keys = set(positives.itertuples(index=False, name=None))

    tests = (
        table.loc[table["source"].isin(sources), ["subject_id", "study_day", "source"]]
        .drop_duplicates()
        .sort_values(["subject_id", "study_day", "source"], kind="mergesort")
        .reset_index(drop=True)
    )
    tests["positive"] = [
        key in positive_keys for key in tests.itertuples(index=False, name=None)
    ]
    return tests


def normalize_events(
    drug_use: Optional[pd.DataFrame] = None,
    visits: Optional[pd.DataFrame] = None,
    randomization: Optional[pd.DataFrame] = None,
    dose: Optional[pd.DataFrame] = None
) -> pd.DataFrame:
    """
    Stack the input tables into one canonical event table.

    Returns:
        DataFrame[subject_id, study_day, event_kind, value, source] ordered by
        subject, day and event kind. source is only populated for drug use.
    """
    provided = {
        "drug_use": drug_use,
        "visit": visits,
        "randomization": randomization,
        "dose": dose,
    }

    frames = []
    for table_name, df in provided.items():
        if df is None:
            continue
        table = prepare_table(df, table_name)
        kind, value_column = _EVENT_SOURCES[table_name]
        frames.append(pd.DataFrame({
            "subject_id": table["subject_id"].to_numpy(),
            "study_day": table["study_day"].to_numpy(),
            "event_kind": kind,
            "value": table[value_column].astype(object).to_numpy(),
            "source": table["source"].astype(object).to_numpy()
            if table_name == "drug_use" else None,
        }))

    if not frames:
        return pd.DataFrame(columns=EVENT_COLUMNS)

    events = pd.concat(frames, ignore_index=True)
    events["kind_order"] = events["event_kind"].map({k: i for i, k in enumerate(EVENT_KINDS)})
    events = (
        events.sort_values(["subject_id", "study_day", "kind_order"], kind="mergesort")
        .drop(columns="kind_order")
        .reset_index(drop=True)
    )

    logger.info(f"Normalized {len(events)} events for {events['subject_id'].nunique()} subjects")
    return events
