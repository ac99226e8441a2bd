"""
Pipeline configuration.

Configuration is explicit data handed to the pipeline entry point; there is no
package-wide default dataset. A PipelineConfig can be built in code, loaded
from JSON, and overridden from QUINARY_* environment variables (optionally
read from a .env file).
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Dict, Any, Optional, Tuple
import json
import logging
import os

from dotenv import load_dotenv

from quinary.backbone import (
    AdaptiveProtocolWindow,
    ProtocolWindow,
    Window,
    window_from_dict
)
from quinary.errors import ProtocolConfigError

logger = logging.getLogger(__name__)

ALL_SOURCES: Tuple[str, ...] = ("TFB", "UDS", "UDSAB")
DEFAULT_VISIT_STATES: Tuple[str, ...] = ("completed", "final", "present")


class AnchorMode(Enum):
    """Which day defines study week 0."""

    INTENT_TO_TREAT = "intent_to_treat"
    # Week 0 ends on the randomization day

    AS_TREATED = "as_treated"
    # Week 0 ends on the first nonzero dose day


def default_windows() -> Dict[str, Window]:
    return {
        "27": ProtocolWindow(start_day=-28, end_day=168),
        "30": AdaptiveProtocolWindow(start_day=-28, phase1_end_day=84, phase2_days=168),
        "51": ProtocolWindow(start_day=-28, end_day=168),
    }


@dataclass(frozen=True)
class PipelineConfig:
    """
    Everything the pipeline needs besides the input tables.

    Attributes:
        target_drugs: Substance names counted as positive
        sources: Allowed report sources (subset of TFB, UDS, UDSAB)
        windows: Project ID -> protocol window
        anchor_mode: Intent-to-treat or as-treated week numbering
        visit_states: Visit states that count as an attended visit
        max_workers: Worker threads for per-subject processing (1 = serial)
    """
    target_drugs: Tuple[str, ...]
    sources: Tuple[str, ...] = ALL_SOURCES
    windows: Dict[str, Window] = field(default_factory=default_windows)
    anchor_mode: AnchorMode = AnchorMode.INTENT_TO_TREAT
    visit_states: Tuple[str, ...] = DEFAULT_VISIT_STATES
    max_workers: int = 1

    def __post_init__(self):
        # Accept lists from callers, store tuples
        object.__setattr__(self, "target_drugs", tuple(self.target_drugs))
        object.__setattr__(self, "sources", tuple(self.sources))
        object.__setattr__(self, "visit_states", tuple(self.visit_states))
        object.__setattr__(
            self, "windows", {str(k): v for k, v in self.windows.items()}
        )

        if not self.target_drugs:
            raise ValueError("target_drugs cannot be empty")
        if not self.sources:
            raise ValueError("sources cannot be empty")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if not isinstance(self.anchor_mode, AnchorMode):
            raise TypeError(
                f"anchor_mode must be AnchorMode, got {type(self.anchor_mode).__name__}"
            )
        for project_id, window in self.windows.items():
            if not isinstance(window, (ProtocolWindow, AdaptiveProtocolWindow)):
                raise TypeError(
                    f"window for project {project_id} must be a protocol window, "
                    f"got {type(window).__name__}"
                )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "target_drugs": list(self.target_drugs),
            "sources": list(self.sources),
            "windows": {k: w.to_dict() for k, w in sorted(self.windows.items())},
            "anchor_mode": self.anchor_mode.value,
            "visit_states": list(self.visit_states),
            "max_workers": self.max_workers
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "PipelineConfig":
        """Deserialize from JSON. Missing keys fall back to defaults."""
        if "target_drugs" not in data:
            raise ProtocolConfigError("Configuration must define target_drugs")

        windows = default_windows()
        for project_id, window in data.get("windows", {}).items():
            windows[str(project_id)] = window_from_dict(window)

        try:
            anchor_mode = AnchorMode(data.get("anchor_mode", AnchorMode.INTENT_TO_TREAT.value))
        except ValueError:
            raise ProtocolConfigError(f"Unknown anchor_mode '{data.get('anchor_mode')}'")

        try:
            max_workers = int(data.get("max_workers", 1))
        except (TypeError, ValueError):
            raise ProtocolConfigError(
                f"max_workers must be an integer, got {data.get('max_workers')!r}"
            )

        try:
            return PipelineConfig(
                target_drugs=tuple(data["target_drugs"]),
                sources=tuple(data.get("sources", ALL_SOURCES)),
                windows=windows,
                anchor_mode=anchor_mode,
                visit_states=tuple(data.get("visit_states", DEFAULT_VISIT_STATES)),
                max_workers=max_workers
            )
        except ValueError as e:
            raise ProtocolConfigError(f"Invalid configuration: {e}")


def _split_env(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config(
    path: Optional[str] = None,
    env_path: Optional[str] = None,
    **overrides: Any
) -> PipelineConfig:
    """
    Load configuration from an optional JSON file plus environment variables.

    Precedence (highest first): keyword overrides, QUINARY_* environment
    variables, JSON file, built-in defaults.

    Environment variables:
        QUINARY_TARGET_DRUGS   comma-separated substance names
        QUINARY_SOURCES        comma-separated report sources
        QUINARY_ANCHOR_MODE    intent_to_treat | as_treated
        QUINARY_MAX_WORKERS    integer

    Args:
        path: JSON file with PipelineConfig.to_dict() layout
        env_path: .env file to load before reading the environment
        **overrides: Field values applied last

    Raises:
        ProtocolConfigError: If the file is unreadable or incomplete
    """
    if env_path is not None and Path(env_path).exists():
        load_dotenv(env_path)
        logger.debug(f"Loaded environment from {env_path}")

    data: Dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ProtocolConfigError(f"Could not read configuration file {path}: {e}")

    if os.getenv("QUINARY_TARGET_DRUGS"):
        data["target_drugs"] = _split_env(os.environ["QUINARY_TARGET_DRUGS"])
    if os.getenv("QUINARY_SOURCES"):
        data["sources"] = _split_env(os.environ["QUINARY_SOURCES"])
    if os.getenv("QUINARY_ANCHOR_MODE"):
        data["anchor_mode"] = os.environ["QUINARY_ANCHOR_MODE"].strip()
    if os.getenv("QUINARY_MAX_WORKERS"):
        data["max_workers"] = os.environ["QUINARY_MAX_WORKERS"]

    if "target_drugs" in overrides and overrides["target_drugs"]:
        data["target_drugs"] = tuple(overrides.pop("target_drugs"))
    overrides.pop("target_drugs", None)

    config = PipelineConfig.from_dict(data)
    remaining = {k: v for k, v in overrides.items() if v is not None}
    if remaining:
        config = replace(config, **remaining)

    logger.debug(f"Configuration: {config.to_dict()}")
    return config
