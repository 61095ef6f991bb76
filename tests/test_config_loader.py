from pathlib import Path

import pytest
from pydantic import ValidationError

from src.marketsim.config.loader import load_settings


def test_defaults_when_file_missing(tmp_path, monkeypatch):
    for key in ("DATA_DIR", "DORMANCY_DAYS", "LOG_LEVEL"):
        monkeypatch.delenv(f"MARKETSIM_{key}", raising=False)
    s = load_settings(str(tmp_path / "absent.yaml"))
    assert s.data_dir == "data_store"
    assert s.dormancy_days == 30
    assert s.recent_days == 7
    assert s.top_n == 3
    assert s.order_id_prefix == "TX"
    assert s.journal_path is None


def test_yaml_then_env_overrides(tmp_path, monkeypatch):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("data_dir: from_yaml\ndormancy_days: 10\nlog_level: debug\n")
    monkeypatch.setenv("MARKETSIM_DORMANCY_DAYS", "45")
    s = load_settings(str(cfg))
    assert s.data_dir == "from_yaml"
    assert s.dormancy_days == 45
    assert s.log_level == "DEBUG"


def test_invalid_values_are_rejected(tmp_path, monkeypatch):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("order_id_prefix: 'T|X'\n")
    with pytest.raises(ValidationError):
        load_settings(str(cfg))
    monkeypatch.setenv("MARKETSIM_LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        load_settings(str(tmp_path / "absent.yaml"))


def test_shipped_config_parses():
    s = load_settings(str(Path(__file__).resolve().parents[1] / "config" / "config.yaml"))
    assert s.journal_path == "data/journal.jsonl"
    assert s.prometheus_port == 0
