"""
Tests for pipeline configuration.

Focus areas:
1. Defaults and validation
2. JSON serialization
3. load_config() precedence: overrides > environment > file > defaults
"""

import json
import os

import pytest

from quinary.backbone import AdaptiveProtocolWindow, ProtocolWindow
from quinary.config import (
    ALL_SOURCES,
    AnchorMode,
    PipelineConfig,
    default_windows,
    load_config
)
from quinary.errors import ProtocolConfigError

ENV_VARS = ("QUINARY_TARGET_DRUGS", "QUINARY_SOURCES", "QUINARY_ANCHOR_MODE", "QUINARY_MAX_WORKERS")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # .env loading writes to os.environ; isolate it per test
    monkeypatch.setattr(os, "environ", {k: v for k, v in os.environ.items() if k not in ENV_VARS})


class TestPipelineConfig:
    """Construction and validation."""

    def test_defaults(self):
        config = PipelineConfig(target_drugs=["Heroin"])

        assert config.target_drugs == ("Heroin",)
        assert config.sources == ALL_SOURCES
        assert config.anchor_mode is AnchorMode.INTENT_TO_TREAT
        assert isinstance(config.windows["30"], AdaptiveProtocolWindow)
        assert config.windows["27"] == ProtocolWindow(-28, 168)

    def test_project_keys_normalized_to_strings(self):
        config = PipelineConfig(target_drugs=["Heroin"], windows={27: ProtocolWindow(0, 21)})

        assert list(config.windows) == ["27"]

    def test_empty_target_drugs_rejected(self):
        with pytest.raises(ValueError):
            PipelineConfig(target_drugs=[])

    def test_invalid_workers_rejected(self):
        with pytest.raises(ValueError):
            PipelineConfig(target_drugs=["Heroin"], max_workers=0)

    def test_anchor_mode_type_checked(self):
        with pytest.raises(TypeError):
            PipelineConfig(target_drugs=["Heroin"], anchor_mode="as_treated")

    def test_serialization(self):
        config = PipelineConfig(target_drugs=["Heroin", "Opioid"], anchor_mode=AnchorMode.AS_TREATED)

        data = config.to_dict()
        restored = PipelineConfig.from_dict(json.loads(json.dumps(data)))

        assert data["anchor_mode"] == "as_treated"
        assert data["windows"]["30"]["type"] == "adaptive"
        assert restored == config

    def test_from_dict_requires_drugs(self):
        with pytest.raises(ProtocolConfigError):
            PipelineConfig.from_dict({"sources": ["UDS"]})

    def test_from_dict_unknown_anchor(self):
        with pytest.raises(ProtocolConfigError):
            PipelineConfig.from_dict({"target_drugs": ["Heroin"], "anchor_mode": "per_protocol"})

    def test_from_dict_adds_windows_to_defaults(self):
        config = PipelineConfig.from_dict({
            "target_drugs": ["Heroin"],
            "windows": {"99": {"type": "fixed", "start_day": 0, "end_day": 84}}
        })

        assert config.windows["99"] == ProtocolWindow(0, 84)
        assert set(default_windows()) < set(config.windows)


class TestLoadConfig:
    """File, environment and keyword layering."""

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"target_drugs": ["Heroin"], "sources": ["UDS"]}))

        config = load_config(path=str(path))

        assert config.sources == ("UDS",)

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"target_drugs": ["Heroin"], "max_workers": 2}))
        monkeypatch.setenv("QUINARY_TARGET_DRUGS", "Opioid, Methadone")
        monkeypatch.setenv("QUINARY_MAX_WORKERS", "3")

        config = load_config(path=str(path))

        assert config.target_drugs == ("Opioid", "Methadone")
        assert config.max_workers == 3

    def test_env_file(self, tmp_path):
        env_path = tmp_path / ".env"
        env_path.write_text("QUINARY_TARGET_DRUGS=Heroin\nQUINARY_ANCHOR_MODE=as_treated\n")

        config = load_config(env_path=str(env_path))

        assert config.target_drugs == ("Heroin",)
        assert config.anchor_mode is AnchorMode.AS_TREATED

    def test_keyword_overrides_win(self, monkeypatch):
        monkeypatch.setenv("QUINARY_TARGET_DRUGS", "Heroin")

        config = load_config(target_drugs=["Cocaine"], max_workers=5, sources=None)

        assert config.target_drugs == ("Cocaine",)
        assert config.max_workers == 5
        assert config.sources == ALL_SOURCES

    def test_non_integer_workers_from_environment(self, monkeypatch):
        monkeypatch.setenv("QUINARY_TARGET_DRUGS", "Heroin")
        monkeypatch.setenv("QUINARY_MAX_WORKERS", "many")

        with pytest.raises(ProtocolConfigError, match="max_workers"):
            load_config()

    def test_zero_workers_from_environment(self, monkeypatch):
        monkeypatch.setenv("QUINARY_TARGET_DRUGS", "Heroin")
        monkeypatch.setenv("QUINARY_MAX_WORKERS", "0")

        with pytest.raises(ProtocolConfigError, match="max_workers"):
            load_config()

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ProtocolConfigError):
            load_config(path=str(tmp_path / "missing.json"), target_drugs=["Heroin"])

    def test_no_drugs_anywhere(self):
        with pytest.raises(ProtocolConfigError):
            load_config()
