"""Shared table builders for pipeline tests."""

import pandas as pd
import pytest


def table(columns, rows):
    """DataFrame with the given columns, typed correctly even when empty."""
    if rows:
        return pd.DataFrame(rows, columns=columns)
    return pd.DataFrame({c: pd.Series(dtype="int64" if c in ("subject_id", "study_day") else object)
                         for c in columns})


def drug_use(rows=()):
    return table(["subject_id", "study_day", "substance", "source"], list(rows))


def visits(rows=()):
    return table(["subject_id", "study_day", "visit_state"], list(rows))


def randomization(rows=()):
    return table(["subject_id", "study_day", "randomization_index", "treatment"], list(rows))


def dose(rows=()):
    return table(["subject_id", "study_day", "amount"], list(rows))


def projects(rows=()):
    return table(["subject_id", "project_id"], list(rows))


@pytest.fixture
def tables():
    """Builders for each input table, keyed by table name."""
    return {
        "drug_use": drug_use,
        "visits": visits,
        "randomization": randomization,
        "dose": dose,
        "projects": projects,
    }
