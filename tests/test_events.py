"""
Tests for event normalization.

Focus areas:
1. Schema validation names missing columns
2. mark_use() collapses matched substances to one row per day/source
3. No-match is fatal, partial match warns and proceeds
4. classify_tests() marks positive/negative observations
5. normalize_events() produces the canonical ordered schema
"""

import pandas as pd
import pytest

from quinary.errors import ColumnValueError, NoMatchError, PartialMatchWarning, SchemaError
from quinary.events import (
    EVENT_COLUMNS,
    classify_tests,
    mark_use,
    normalize_events,
    prepare_table,
    validate_columns
)


class TestSchemaValidation:
    """Required columns are enforced with a named error."""

    def test_missing_columns_named(self, tables):
        df = tables["drug_use"]([(1, 0, "Heroin", "UDS")]).drop(columns=["source", "substance"])

        with pytest.raises(SchemaError) as exc_info:
            validate_columns(df, ["subject_id", "study_day", "substance", "source"], "drug_use")

        assert exc_info.value.missing == ["source", "substance"]
        assert "drug_use" in str(exc_info.value)

    def test_legacy_column_names_accepted(self):
        legacy = pd.DataFrame({
            "who": [1], "when": [3], "what": ["Heroin"], "source": ["UDS"]
        })

        prepared = prepare_table(legacy, "drug_use")

        assert list(prepared.columns) == ["subject_id", "study_day", "substance", "source"]
        assert prepared["study_day"].iloc[0] == 3

    def test_blank_study_day_named(self):
        visits = pd.DataFrame({
            "subject_id": [1, 1], "study_day": [7, None], "visit_state": ["completed", "completed"]
        })

        with pytest.raises(ColumnValueError, match="study_day") as exc_info:
            prepare_table(visits, "visit")

        assert exc_info.value.table == "visit"
        assert exc_info.value.n_invalid == 1

    def test_fractional_subject_id_rejected(self):
        projects = pd.DataFrame({"subject_id": [1.5], "project_id": ["27"]})

        with pytest.raises(SchemaError, match="subject_id"):
            prepare_table(projects, "project")

    def test_whole_float_days_accepted(self):
        dose = pd.DataFrame({"subject_id": [1.0], "study_day": [4.0], "amount": [8.0]})

        prepared = prepare_table(dose, "dose")

        assert prepared["study_day"].dtype == "int64"
        assert prepared["study_day"].iloc[0] == 4

    def test_unknown_table_rejected(self, tables):
        with pytest.raises(ValueError):
            prepare_table(tables["projects"](), "labs")


class TestMarkUse:
    """Target-drug filtering."""

    @pytest.fixture
    def drugs(self, tables):
        return tables["drug_use"]([
            (1, 0, "Heroin", "UDS"),
            (1, 0, "Opioid", "UDS"),
            (1, 7, "Cocaine", "UDS"),
            (2, 3, "Heroin", "TFB"),
            (2, 3, "Negative", "UDS"),
        ])

    def test_one_row_per_day_and_source(self, drugs):
        marked = mark_use(["Heroin", "Opioid"], drugs)

        assert list(marked.columns) == ["subject_id", "study_day", "source"]
        assert list(marked.itertuples(index=False, name=None)) == [
            (1, 0, "UDS"),
            (2, 3, "TFB"),
        ]

    def test_source_allow_list(self, drugs):
        marked = mark_use(["Heroin"], drugs, sources=["UDS"])

        assert list(marked.itertuples(index=False, name=None)) == [(1, 0, "UDS")]

    def test_no_match_is_fatal(self, drugs):
        with pytest.raises(NoMatchError):
            mark_use(["Crack", "Pcp"], drugs)

    def test_partial_match_warns_and_proceeds(self, drugs):
        with pytest.warns(PartialMatchWarning, match="Crack"):
            marked = mark_use(["Heroin", "Crack"], drugs)

        assert len(marked) == 2

    def test_input_not_modified(self, drugs):
        before = drugs.copy()
        mark_use(["Heroin"], drugs)
        pd.testing.assert_frame_equal(drugs, before)


class TestClassifyTests:
    """Every allowed report day is one positive or negative observation."""

    def test_positive_and_negative(self, tables):
        drugs = tables["drug_use"]([
            (1, 0, "Heroin", "UDS"),
            (1, 7, "Cocaine", "UDS"),
            (1, 8, None, "UDS"),
            (2, 3, "Heroin", "TFB"),
            (2, 3, "Negative", "UDS"),
        ])

        tests = classify_tests(drugs, ["Heroin"])

        assert list(tests.itertuples(index=False, name=None)) == [
            (1, 0, "UDS", True),
            (1, 7, "UDS", False),
            (1, 8, "UDS", False),
            (2, 3, "TFB", True),
            (2, 3, "UDS", False),
        ]

    def test_disallowed_sources_are_not_observations(self, tables):
        drugs = tables["drug_use"]([
            (1, 0, "Heroin", "UDS"),
            (1, 1, "Heroin", "TFB"),
        ])

        tests = classify_tests(drugs, ["Heroin"], sources=["UDS"])

        assert tests["study_day"].tolist() == [0]


class TestNormalizeEvents:
    """Canonical event table."""

    def test_canonical_schema_and_order(self, tables):
        events = normalize_events(
            drug_use=tables["drug_use"]([(2, 5, "Heroin", "UDS")]),
            visits=tables["visits"]([(1, 7, "completed"), (2, 5, "completed")]),
            randomization=tables["randomization"]([(1, 0, 1, "BUP")]),
            dose=tables["dose"]([(1, 1, 8.0)])
        )

        assert list(events.columns) == EVENT_COLUMNS
        assert list(events[["subject_id", "study_day", "event_kind"]].itertuples(index=False, name=None)) == [
            (1, 0, "randomization"),
            (1, 1, "dose"),
            (1, 7, "clinic_visit"),
            (2, 5, "drug_use"),
            (2, 5, "clinic_visit"),
        ]

    def test_source_only_for_drug_use(self, tables):
        events = normalize_events(
            drug_use=tables["drug_use"]([(1, 0, "Heroin", "TFB")]),
            visits=tables["visits"]([(1, 0, "completed")])
        )

        by_kind = dict(zip(events["event_kind"], events["source"]))
        assert by_kind["drug_use"] == "TFB"
        assert by_kind["clinic_visit"] is None

    def test_no_tables_gives_empty_schema(self):
        events = normalize_events()

        assert events.empty
        assert list(events.columns) == EVENT_COLUMNS

    def test_schema_error_propagates(self, tables):
        with pytest.raises(SchemaError, match="amount"):
            normalize_events(dose=tables["dose"]([(1, 1, 8.0)]).drop(columns="amount"))
