"""
Error taxonomy for the quinary word pipeline.

Structural problems are fatal and raised immediately, naming the offending
columns, subjects or projects. Data-quality oddities (negative induction
delays, positive tests for never-randomized subjects) are NOT errors and
flow through to the output unchanged.

An undefined induction delay is a value (None / pd.NA), not an exception.
"""

from typing import Iterable, Optional


class QuinaryError(Exception):
    """Base class for all pipeline errors."""


class SchemaError(QuinaryError):
    """A required column is missing from an input table."""

    def __init__(self, table: str, missing: Iterable[str]):
        self.table = table
        self.missing = sorted(missing)
        super().__init__(
            f"Columns [{', '.join(self.missing)}] must be included in the {table} table."
        )


class NoMatchError(QuinaryError):
    """None of the requested target drugs appear in the drug-use table."""

    def __init__(self, target_drugs: Iterable[str]):
        self.target_drugs = list(target_drugs)
        super().__init__(
            f"No matching drugs found for [{', '.join(self.target_drugs)}]. "
            "Check the substance names recorded in the drug-use table."
        )


class WeekGapError(QuinaryError):
    """A phase word would skip or repeat a study week."""

    def __init__(self, subject_id: int, phase: str, weeks: Iterable[int]):
        self.subject_id = subject_id
        self.phase = phase
        self.weeks = list(weeks)
        super().__init__(
            f"Subject {subject_id} phase {phase}: week sequence {self.weeks} "
            "is not contiguous"
        )


class ProtocolConfigError(QuinaryError):
    """Protocol window configuration is missing or malformed."""

    def __init__(self, message: str, project_id: Optional[str] = None):
        self.project_id = project_id
        super().__init__(message)


class PartialMatchWarning(UserWarning):
    """Some, but not all, target drugs were found in the drug-use table."""


class RandomizationError(QuinaryError):
    """A subject has a second randomization but no first one."""

    def __init__(self, subject_ids: Iterable[int]):
        self.subject_ids = sorted(subject_ids)
        super().__init__(
            f"Subjects {self.subject_ids} have a second randomization "
            "without a first randomization."
        )


class ColumnValueError(SchemaError):
    """A key column holds missing or non-integer values."""

    def __init__(self, table: str, column: str, n_invalid: int):
        self.table = table
        self.missing = []
        self.column = column
        self.n_invalid = n_invalid
        QuinaryError.__init__(
            self,
            f"Column {column} of the {table} table has {n_invalid} "
            "missing or non-integer values."
        )
