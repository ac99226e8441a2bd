#!/usr/bin/env python3
"""
Command-line entry point: CSV tables in, quinary word table out.

Examples:
    quinary --drug-use uds.csv --visits visits.csv --randomization rand.csv \\
        --dose dose.csv --projects projects.csv --drugs Heroin Opioid \\
        --out results/

    quinary ... --config config.json --as-treated --workers 4 --intermediates
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from quinary.config import AnchorMode, load_config
from quinary.errors import QuinaryError
from quinary.pipeline import run_pipeline

logger = logging.getLogger(__name__)


def _read_table(path: Optional[Path]) -> Optional[pd.DataFrame]:
    if path is None:
        return None
    with open(path, "r", newline="") as f:
        return pd.read_csv(f)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quinary",
        description="Encode weekly substance-use patterns as quinary words",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    # Inputs
    parser.add_argument("--drug-use", type=Path, required=True,
                        help="Drug-use CSV (subject_id, study_day, substance, source)")
    parser.add_argument("--visits", type=Path, required=True,
                        help="Visit CSV (subject_id, study_day, visit_state)")
    parser.add_argument("--randomization", type=Path,
                        help="Randomization CSV (subject_id, study_day, randomization_index, treatment)")
    parser.add_argument("--dose", type=Path,
                        help="Dose CSV (subject_id, study_day, amount)")
    parser.add_argument("--projects", type=Path, required=True,
                        help="Project CSV (subject_id, project_id)")

    # Options
    parser.add_argument("--drugs", nargs="+",
                        help="Target substances (overrides config)")
    parser.add_argument("--sources", nargs="+", choices=["TFB", "UDS", "UDSAB"],
                        help="Report sources to count (overrides config)")
    parser.add_argument("--config", type=Path,
                        help="JSON configuration file")
    parser.add_argument("--env-file", type=Path, default=Path(".env"),
                        help="Environment file with QUINARY_* settings")
    parser.add_argument("--as-treated", action="store_true",
                        help="Anchor week 0 on the first dose instead of randomization")
    parser.add_argument("--workers", type=int,
                        help="Worker threads for per-subject processing")

    # Output
    parser.add_argument("--out", type=Path, required=True,
                        help="Output directory")
    parser.add_argument("--intermediates", action="store_true",
                        help="Also write backbone, visit, induction and weekly tables")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    )

    try:
        config = load_config(
            path=str(args.config) if args.config else None,
            env_path=str(args.env_file),
            target_drugs=args.drugs,
            sources=tuple(args.sources) if args.sources else None,
            anchor_mode=AnchorMode.AS_TREATED if args.as_treated else None,
            max_workers=args.workers
        )

        result = run_pipeline(
            config,
            drug_use=_read_table(args.drug_use),
            visits=_read_table(args.visits),
            randomization=_read_table(args.randomization),
            dose=_read_table(args.dose),
            projects=_read_table(args.projects)
        )
    except QuinaryError as e:
        logger.error(str(e))
        return 1

    result.write(str(args.out), include_intermediates=args.intermediates)
    print(result.summary())
    return 0


if __name__ == "__main__":
    sys.exit(main())
