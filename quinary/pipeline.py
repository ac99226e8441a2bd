"""
End-to-end pipeline: input tables -> per-subject, per-phase quinary words.

Design Principles:
- Every input table is an explicit argument (no default dataset)
- Stages produce new tables; inputs are never mutated
- Subjects are independent units of work (no cross-subject state)
- Per-subject work is atomic: any failure aborts the whole batch

Flow:
    normalize -> backbone -> visit imputation -> induction delay
              -> weekly alignment / phases -> symbol encoding -> word table
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging
import time
import uuid

import pandas as pd

from quinary.alignment import (
    SubjectTimeline,
    WeekRecord,
    randomization_weeks,
    weekly_records
)
from quinary.backbone import AdaptiveProtocolWindow, build_backbone, lookup_window
from quinary.config import AnchorMode, PipelineConfig
from quinary.encoding import UsePatternWord, assign_symbol, collapse_words
from quinary.errors import RandomizationError
from quinary.events import classify_tests, normalize_events, prepare_table
from quinary.induction import compute_induction_delay, induction_delays
from quinary.output_schema import PipelineResult, ProvenanceRecord
from quinary.visits import VisitStatus, first_randomization_days, impute_visits

logger = logging.getLogger(__name__)

WORD_COLUMNS = [
    "subject_id", "phase", "start_week", "end_week", "rand_week_1", "rand_week_2", "word"
]
WEEK_COLUMNS = [
    "subject_id", "week", "phase", "n_positive", "n_negative", "n_missing", "n_expected", "symbol"
]


@dataclass(frozen=True)
class SubjectResult:
    """Output of one subject's unit of work."""
    subject_id: int
    weeks: List[WeekRecord]
    words: List[UsePatternWord]


def process_subject(
    timeline: SubjectTimeline,
    anchor_mode: AnchorMode = AnchorMode.INTENT_TO_TREAT
) -> SubjectResult:
    """Align, encode and collapse one subject. Pure function of its timeline."""
    weeks = weekly_records(timeline, anchor_mode)
    rand_week_1, rand_week_2 = randomization_weeks(timeline, anchor_mode)
    words = collapse_words(timeline.subject_id, weeks, rand_week_1, rand_week_2)
    return SubjectResult(timeline.subject_id, weeks, words)


def _test_counts(tests: pd.DataFrame) -> Dict[int, Dict[int, Tuple[int, int]]]:
    """subject_id -> day -> (n_positive, n_negative)."""
    counts: Dict[int, Dict[int, Tuple[int, int]]] = {}
    for subject_id, day, positive in tests[["subject_id", "study_day", "positive"]].itertuples(
        index=False, name=None
    ):
        by_day = counts.setdefault(int(subject_id), {})
        n_pos, n_neg = by_day.get(int(day), (0, 0))
        by_day[int(day)] = (n_pos + 1, n_neg) if positive else (n_pos, n_neg + 1)
    return counts


def build_timelines(
    config: PipelineConfig,
    drug_use: pd.DataFrame,
    visits: pd.DataFrame,
    randomization: Optional[pd.DataFrame],
    dose: Optional[pd.DataFrame],
    projects: pd.DataFrame
) -> Tuple[List[SubjectTimeline], Dict[str, pd.DataFrame]]:
    """
    Run the table-level stages and assemble one timeline per subject.

    Returns:
        (timelines ordered by subject_id, intermediate tables by name)
    """
    project_table = prepare_table(projects, "project").drop_duplicates(["subject_id"])
    project_of = {
        int(s): str(p) for s, p in project_table[["subject_id", "project_id"]].itertuples(
            index=False, name=None
        )
    }

    events = normalize_events(drug_use, visits, randomization, dose)
    last_observed = {
        int(s): int(d) for s, d in events.groupby("subject_id")["study_day"].max().items()
    }
    unknown = sorted(set(last_observed) - set(project_of))
    if unknown:
        logger.warning(f"{len(unknown)} subjects have events but no project: {unknown[:10]}")

    tests = classify_tests(drug_use, config.target_drugs, config.sources)
    test_counts = _test_counts(tests)

    rand1_days = first_randomization_days(randomization, index=1)
    rand2_days = {}
    for subject_id, day in first_randomization_days(randomization, index=2).items():
        project_id = project_of.get(subject_id)
        if project_id is None:
            continue
        if isinstance(lookup_window(config.windows, project_id), AdaptiveProtocolWindow):
            rand2_days[subject_id] = day
        else:
            logger.debug(f"Subject {subject_id}: ignoring second randomization in fixed protocol {project_id}")

    orphans = [s for s in rand2_days if s not in rand1_days]
    if orphans:
        raise RandomizationError(orphans)

    backbone = build_backbone(
        project_table, config.windows, last_observed, rand2_days, anchors=rand1_days
    )
    imputed = impute_visits(backbone, visits, visit_states=config.visit_states, rand1_days=rand1_days)
    delays = induction_delays(randomization, dose)

    backbone_by_subject = {
        int(s): tuple(int(d) for d in days)
        for s, days in backbone.groupby("subject_id")["study_day"]
    }
    status_by_subject: Dict[int, Dict[int, VisitStatus]] = {}
    for subject_id, day, status in imputed[["subject_id", "study_day", "visit_status"]].itertuples(
        index=False, name=None
    ):
        status_by_subject.setdefault(int(subject_id), {})[int(day)] = VisitStatus(status)

    timelines = []
    for subject_id in sorted(project_of):
        window = lookup_window(config.windows, project_of[subject_id])
        start, end = window.resolve(last_observed.get(subject_id), rand2_days.get(subject_id))
        delay = delays.get(subject_id)
        timelines.append(SubjectTimeline(
            subject_id=subject_id,
            project_id=project_of[subject_id],
            window_start=start,
            window_end=end,
            backbone_days=backbone_by_subject.get(subject_id, ()),
            visit_status=status_by_subject.get(subject_id, {}),
            tests=test_counts.get(subject_id, {}),
            rand1_day=rand1_days.get(subject_id),
            rand2_day=rand2_days.get(subject_id),
            induction_delay=None if delay is None else delay.delay
        ))

    intermediates = {
        "backbone": backbone,
        "visits": imputed,
        "induction": compute_induction_delay(randomization, dose),
    }
    return timelines, intermediates


def _run_subjects(
    timelines: List[SubjectTimeline],
    anchor_mode: AnchorMode,
    max_workers: int
) -> List[SubjectResult]:
    if max_workers <= 1 or len(timelines) <= 1:
        return [process_subject(t, anchor_mode) for t in timelines]

    # map() re-raises the first worker exception, aborting the batch
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(lambda t: process_subject(t, anchor_mode), timelines))


def words_table(results: List[SubjectResult]) -> pd.DataFrame:
    """Concatenate per-subject words into the output table."""
    rows = [w.to_dict() for r in results for w in r.words]
    table = pd.DataFrame(rows, columns=WORD_COLUMNS)
    for column in ("rand_week_1", "rand_week_2"):
        table[column] = table[column].astype("Int64")
    phase_order = {"Baseline": 0, "Phase_1": 1, "Phase_2": 2}
    table = (
        table.assign(_order=table["phase"].map(phase_order))
        .sort_values(["subject_id", "_order"], kind="mergesort")
        .drop(columns="_order")
        .reset_index(drop=True)
    )
    return table


def weeks_table(results: List[SubjectResult]) -> pd.DataFrame:
    """Per-subject, per-week symbols with the counts that produced them."""
    rows = [
        (r.subject_id, w.week, w.phase.value, w.n_positive, w.n_negative,
         w.n_missing, w.n_expected, assign_symbol(w))
        for r in results
        for w in r.weeks
    ]
    return pd.DataFrame(rows, columns=WEEK_COLUMNS)


def run_pipeline(
    config: PipelineConfig,
    drug_use: pd.DataFrame,
    visits: pd.DataFrame,
    randomization: Optional[pd.DataFrame],
    dose: Optional[pd.DataFrame],
    projects: pd.DataFrame
) -> PipelineResult:
    """
    Produce quinary words for every subject in the project table.

    Args:
        config: Target drugs, sources, protocol windows, anchor mode, workers
        drug_use: DataFrame[subject_id, study_day, substance, source]
        visits: DataFrame[subject_id, study_day, visit_state]
        randomization: DataFrame[subject_id, study_day, randomization_index, treatment]
        dose: DataFrame[subject_id, study_day, amount]
        projects: DataFrame[subject_id, project_id]

    Returns:
        PipelineResult with the word table, weekly symbols, intermediate
        tables and provenance

    Raises:
        SchemaError, NoMatchError, ProtocolConfigError, RandomizationError,
        WeekGapError
    """
    started = time.perf_counter()
    logger.info(
        f"Encoding use patterns for {', '.join(config.target_drugs)} "
        f"(sources={', '.join(config.sources)}, anchor={config.anchor_mode.value})"
    )

    timelines, intermediates = build_timelines(
        config, drug_use, visits, randomization, dose, projects
    )
    results = _run_subjects(timelines, config.anchor_mode, config.max_workers)

    words = words_table(results)
    weeks = weeks_table(results)
    duration = time.perf_counter() - started
    logger.info(f"Produced {len(words)} words for {len(results)} subjects in {duration:.2f}s")

    provenance = ProvenanceRecord.create(
        run_id=uuid.uuid4().hex,
        num_subjects=len(results),
        num_words=len(words),
        config=config.to_dict(),
        execution_duration_seconds=duration
    )
    return PipelineResult(
        provenance=provenance,
        words=words,
        weeks=weeks,
        backbone=intermediates["backbone"],
        visits=intermediates["visits"],
        induction=intermediates["induction"]
    )
