"""
Protocol backbone construction.

Design Principles:
- The backbone is the set of protocol-EXPECTED contact days, independent of
  what actually happened to the subject
- Windows are immutable data (frozen dataclasses, JSON round-trip)
- Window resolution is a pure function of observed facts, never incremental state
- Output is fully ordered by (subject_id, study_day)
- Contact days sit on the subject's own weekly grid: 7-day multiples from
  the first randomization day, or from consent (day 0) if never randomized

Fixed vs Adaptive:
- Fixed windows (CTN-0027 / CTN-0051 style): static offsets relative to consent
- Adaptive windows (CTN-0030 style): the end day depends on whether and when
  the subject was randomized a second time, and on their last observed day
"""

from dataclasses import dataclass
from typing import Dict, Any, List, Mapping, Optional, Tuple, Union
import logging

import pandas as pd

from quinary.errors import ProtocolConfigError

logger = logging.getLogger(__name__)

BACKBONE_COLUMNS = ["subject_id", "project_id", "study_day"]

CONSENT_DAY = 0


@dataclass(frozen=True)
class ProtocolWindow:
    """
    Static protocol window relative to consent (day 0).

    Attributes:
        start_day: First expected contact day (may be negative, i.e. screening)
        end_day: Last day of the window, inclusive
        cadence: Days between expected contacts
    """
    start_day: int
    end_day: int
    cadence: int = 7

    def __post_init__(self):
        if self.cadence <= 0:
            raise ValueError(f"cadence must be > 0, got {self.cadence}")
        if self.end_day < self.start_day:
            raise ValueError(
                f"end_day must be >= start_day, got [{self.start_day}, {self.end_day}]"
            )

    def resolve(
        self,
        last_observed_day: Optional[int] = None,
        rand2_day: Optional[int] = None
    ) -> Tuple[int, int]:
        """Static windows ignore subject facts."""
        return self.start_day, self.end_day

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "fixed",
            "start_day": self.start_day,
            "end_day": self.end_day,
            "cadence": self.cadence
        }


@dataclass(frozen=True)
class AdaptiveProtocolWindow:
    """
    Two-phase window whose length depends on the subject's own data.

    A subject who is never randomized into phase 2 is followed until
    phase1_end_day. A subject randomized into phase 2 on rand2_day is followed
    until their last observed day, but never past rand2_day + phase2_days.

    Attributes:
        start_day: First expected contact day relative to consent
        phase1_end_day: End of follow-up for subjects who stay in phase 1
        phase2_days: Maximum phase-2 follow-up, counted from rand2_day
        cadence: Days between expected contacts
    """
    start_day: int
    phase1_end_day: int
    phase2_days: int
    cadence: int = 7

    def __post_init__(self):
        if self.cadence <= 0:
            raise ValueError(f"cadence must be > 0, got {self.cadence}")
        if self.phase1_end_day < self.start_day:
            raise ValueError(
                f"phase1_end_day must be >= start_day, got "
                f"[{self.start_day}, {self.phase1_end_day}]"
            )
        if self.phase2_days < 0:
            raise ValueError(f"phase2_days must be >= 0, got {self.phase2_days}")

    def resolve(
        self,
        last_observed_day: Optional[int] = None,
        rand2_day: Optional[int] = None
    ) -> Tuple[int, int]:
        """
        Compute the subject-specific [start, end] window.

        Args:
            last_observed_day: Largest study day with any record for the subject
            rand2_day: Study day of the second randomization (None if absent)

        Returns:
            (start_day, end_day), end_day >= start_day
        """
        if rand2_day is None:
            end = self.phase1_end_day
        else:
            observed = rand2_day if last_observed_day is None else last_observed_day
            cap = rand2_day + self.phase2_days
            end = min(max(observed, rand2_day), cap)

        return self.start_day, max(end, self.start_day)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "adaptive",
            "start_day": self.start_day,
            "phase1_end_day": self.phase1_end_day,
            "phase2_days": self.phase2_days,
            "cadence": self.cadence
        }


Window = Union[ProtocolWindow, AdaptiveProtocolWindow]


def window_from_dict(data: Dict[str, Any]) -> Window:
    """Deserialize a window produced by to_dict()."""
    window_type = data.get("type", "fixed")
    try:
        if window_type == "fixed":
            return ProtocolWindow(
                start_day=int(data["start_day"]),
                end_day=int(data["end_day"]),
                cadence=int(data.get("cadence", 7))
            )
        if window_type == "adaptive":
            return AdaptiveProtocolWindow(
                start_day=int(data["start_day"]),
                phase1_end_day=int(data["phase1_end_day"]),
                phase2_days=int(data["phase2_days"]),
                cadence=int(data.get("cadence", 7))
            )
    except KeyError as e:
        raise ProtocolConfigError(f"Window definition missing key {e}: {data}")
    except ValueError as e:
        raise ProtocolConfigError(f"Invalid window definition {data}: {e}")

    raise ProtocolConfigError(f"Unknown window type '{window_type}'")


def lookup_window(windows: Mapping[str, Window], project_id: Any) -> Window:
    """Find the window for a project, keyed by the project ID as a string."""
    key = str(project_id)
    if key not in windows:
        raise ProtocolConfigError(
            f"No protocol window configured for project '{key}' "
            f"(configured: {', '.join(sorted(windows))})",
            project_id=key
        )
    return windows[key]


def backbone_days(
    window: Window,
    last_observed_day: Optional[int] = None,
    rand2_day: Optional[int] = None,
    anchor: int = CONSENT_DAY
) -> List[int]:
    """
    Expected contact days for one subject: every day in the resolved window
    that is a whole number of cadences away from the anchor.

    Example:
        >>> backbone_days(ProtocolWindow(0, 21))
        [0, 7, 14, 21]
        >>> backbone_days(ProtocolWindow(0, 21), anchor=3)
        [3, 10, 17]
    """
    start, end = window.resolve(last_observed_day, rand2_day)
    first = start + (anchor - start) % window.cadence
    return list(range(first, end + 1, window.cadence))


def build_backbone(
    projects: pd.DataFrame,
    windows: Mapping[str, Window],
    last_observed_days: Optional[Mapping[int, int]] = None,
    rand2_days: Optional[Mapping[int, int]] = None,
    anchors: Optional[Mapping[int, int]] = None
) -> pd.DataFrame:
    """
    Build the backbone table for every subject in the project table.

    Args:
        projects: Table with subject_id, project_id
        windows: Project ID (string) -> protocol window
        last_observed_days: subject_id -> last observed study day (adaptive windows)
        rand2_days: subject_id -> second randomization day (adaptive windows)
        anchors: subject_id -> first randomization day; subjects not listed
            are gridded from consent

    Returns:
        DataFrame[subject_id, project_id, study_day] ordered by subject then day

    Raises:
        ProtocolConfigError: If a subject's project has no configured window
    """
    last_observed_days = last_observed_days or {}
    rand2_days = rand2_days or {}
    anchors = anchors or {}

    rows = []
    ordered = projects[["subject_id", "project_id"]].drop_duplicates()
    for subject_id, project_id in sorted(
        ordered.itertuples(index=False, name=None), key=lambda r: r[0]
    ):
        window = lookup_window(windows, project_id)
        days = backbone_days(
            window,
            last_observed_days.get(subject_id),
            rand2_days.get(subject_id),
            anchors.get(subject_id, CONSENT_DAY)
        )
        rows.extend((subject_id, str(project_id), day) for day in days)

    logger.info(f"Backbone: {len(rows)} expected contacts for {len(ordered)} subjects")
    return pd.DataFrame(rows, columns=BACKBONE_COLUMNS)
