"""
Pipeline output schema for traceability.

Design Principles:
- Every output carries the configuration that produced it
- Tables stay pandas DataFrames; provenance is plain JSON
- Writing happens once, at the end, after all subjects succeeded

Key Guarantee: given the provenance config and the same input tables, the
word table can be reproduced exactly.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
import json
import logging
import os
import platform
import socket

import pandas as pd

logger = logging.getLogger(__name__)

QUINARY_VERSION = "0.1.0"


@dataclass
class ProvenanceRecord:
    """
    Execution context for reproducibility and audit.

    Answers: "How was this word table produced?"
    """
    # Execution identity
    run_id: str
    execution_timestamp: str  # ISO 8601

    # Software versions
    quinary_version: str
    python_version: str
    pandas_version: str

    # Configuration and size
    config: Dict[str, Any]
    num_subjects: int
    num_words: int

    # Runtime
    execution_duration_seconds: float

    # Environment (optional, for audit trails)
    hostname: Optional[str] = None
    user: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def create(
        run_id: str,
        num_subjects: int,
        num_words: int,
        config: Dict[str, Any],
        execution_duration_seconds: float,
        include_environment: bool = False
    ) -> "ProvenanceRecord":
        """
        Factory method capturing versions and (optionally) host/user.

        Args:
            run_id: Unique identifier for this execution
            num_subjects: Subjects processed
            num_words: Rows in the word table
            config: PipelineConfig.to_dict() snapshot
            execution_duration_seconds: Runtime
            include_environment: Whether to capture hostname/user
        """
        hostname = None
        user = None

        if include_environment:
            try:
                hostname = socket.gethostname()
            except OSError:
                hostname = "unknown"
            user = os.getenv("USER") or os.getenv("USERNAME") or "unknown"

        return ProvenanceRecord(
            run_id=run_id,
            execution_timestamp=datetime.now().isoformat(),
            quinary_version=QUINARY_VERSION,
            python_version=platform.python_version(),
            pandas_version=pd.__version__,
            config=config,
            num_subjects=num_subjects,
            num_words=num_words,
            execution_duration_seconds=execution_duration_seconds,
            hostname=hostname,
            user=user
        )


@dataclass
class PipelineResult:
    """
    Complete pipeline output.

    words is the deliverable; the remaining tables expose each stage for
    inspection and auditing.
    """
    provenance: ProvenanceRecord
    words: pd.DataFrame
    weeks: pd.DataFrame
    backbone: pd.DataFrame
    visits: pd.DataFrame
    induction: pd.DataFrame

    def tables(self) -> Dict[str, pd.DataFrame]:
        return {
            "words": self.words,
            "weeks": self.weeks,
            "backbone": self.backbone,
            "visits": self.visits,
            "induction": self.induction,
        }

    def summary(self) -> str:
        """Human-readable summary for reporting."""
        phase_counts = self.words["phase"].value_counts().to_dict() if len(self.words) else {}
        undefined = int(self.induction["induction_delay"].isna().sum()) if len(self.induction) else 0
        return (
            f"Quinary words (run {self.provenance.run_id}):\n"
            f"  Subjects: {self.provenance.num_subjects}\n"
            f"  Words: {self.provenance.num_words} "
            f"({', '.join(f'{k}={v}' for k, v in sorted(phase_counts.items()))})\n"
            f"  Undefined induction delays: {undefined}\n"
            f"  Runtime: {self.provenance.execution_duration_seconds:.2f}s"
        )

    def write(self, directory: str, include_intermediates: bool = False) -> Dict[str, Path]:
        """
        Write the word table (and optionally every stage table) as CSV plus
        provenance.json.

        Returns:
            Mapping of table name -> written path
        """
        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)

        names = list(self.tables()) if include_intermediates else ["words"]
        written = {}
        for name in names:
            path = out_dir / f"{name}.csv"
            self.tables()[name].to_csv(path, index=False)
            written[name] = path

        provenance_path = out_dir / "provenance.json"
        with open(provenance_path, "w") as f:
            json.dump(self.provenance.to_dict(), f, indent=2)
        written["provenance"] = provenance_path

        logger.info(f"Wrote {', '.join(written)} to {out_dir}")
        return written
