"""
Example: Encoding Weekly Use Patterns

Demonstrates:
1. Building the five input tables for a small study
2. Running the pipeline under intent-to-treat and as-treated anchors
3. Reading words, weekly symbols and intermediate tables
4. Adaptive protocol windows (second randomization opens Phase_2)
"""

import logging

import pandas as pd

from quinary.config import AnchorMode, PipelineConfig
from quinary.encoding import count_symbols
from quinary.pipeline import run_pipeline


def study_tables():
    """Three subjects across the fixed (27, 51) and adaptive (30) protocols."""
    return {
        "drug_use": pd.DataFrame({
            "subject_id": [101, 101, 202, 202, 303],
            "study_day": [13, 14, 30, 120, 40],
            "substance": ["Negative", "Heroin", "Heroin", "Negative", "Heroin"],
            "source": ["UDS", "UDS", "UDS", "TFB", "UDS"],
        }),
        "visits": pd.DataFrame({
            "subject_id": [101, 101, 202],
            "study_day": [7, 15, 7],
            "visit_state": ["completed", "completed", "final"],
        }),
        "randomization": pd.DataFrame({
            "subject_id": [101, 202, 202],
            "study_day": [0, 0, 50],
            "randomization_index": [1, 1, 2],
            "treatment": ["BUP", "BUP", "BUP"],
        }),
        "dose": pd.DataFrame({
            "subject_id": [101, 202],
            "study_day": [9, 1],
            "amount": [8.0, 16.0],
        }),
        "projects": pd.DataFrame({
            "subject_id": [101, 202, 303],
            "project_id": ["27", "30", "51"],
        }),
    }


def demonstrate_words():
    """Intent-to-treat words for every subject."""
    print("\n" + "=" * 80)
    print("INTENT-TO-TREAT WORDS")
    print("=" * 80)

    config = PipelineConfig(target_drugs=("Heroin",))
    result = run_pipeline(config, **study_tables())

    print(result.words.to_string(index=False))
    print()
    print(result.summary())

    for row in result.words.itertuples(index=False):
        counts = count_symbols(row.word)
        print(f"  {row.subject_id} {row.phase:<9} {counts}")


def demonstrate_anchor_modes():
    """Same data, week 0 moved to the first dose."""
    print("\n" + "=" * 80)
    print("ANCHOR MODES")
    print("=" * 80)

    tables = study_tables()
    for mode in AnchorMode:
        result = run_pipeline(PipelineConfig(target_drugs=("Heroin",), anchor_mode=mode), **tables)
        phase_1 = result.words[(result.words["subject_id"] == 101) & (result.words["phase"] == "Phase_1")]
        print(f"\n{mode.value}:")
        print(phase_1[["start_week", "end_week", "rand_week_1", "word"]].to_string(index=False))

    print("\nInduction delays:")
    print(result.induction.to_string(index=False))


def demonstrate_adaptive_window():
    """Subject 202 is re-randomized on day 50: Phase_2 starts in week 8."""
    print("\n" + "=" * 80)
    print("ADAPTIVE WINDOW")
    print("=" * 80)

    result = run_pipeline(PipelineConfig(target_drugs=("Heroin",)), **study_tables())
    weeks = result.weeks[result.weeks["subject_id"] == 202]
    print(weeks[["week", "phase", "n_positive", "n_negative", "n_missing", "symbol"]].to_string(index=False))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    demonstrate_words()
    demonstrate_anchor_modes()
    demonstrate_adaptive_window()

    print("\n" + "=" * 80)
