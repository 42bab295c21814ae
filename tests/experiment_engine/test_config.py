"""Tests for engine settings."""
import pytest
from pydantic import ValidationError

from experiment_engine import EngineSettings, ExperimentationService
from experiment_engine.config import DEFAULT_DATA_DIR


def test_defaults():
    settings = EngineSettings.from_env({})
    assert settings.monitor_interval_seconds == 60.0
    assert settings.ci_level == 0.95
    assert settings.data_dir == DEFAULT_DATA_DIR
    assert settings.log_level == "INFO"


def test_env_overrides():
    settings = EngineSettings.from_env({
        "EXPERIMENT_ENGINE_MONITOR_INTERVAL_SECONDS": "5",
        "EXPERIMENT_ENGINE_DROPOUT_SPREAD_THRESHOLD": "0.1",
        "EXPERIMENT_ENGINE_DATA_DIR": "/var/lib/experiments",
        "EXPERIMENT_ENGINE_LOG_LEVEL": "debug",
        "UNRELATED": "ignored",
    })
    assert settings.monitor_interval_seconds == 5.0
    assert settings.dropout_spread_threshold == 0.1
    assert settings.data_dir == "/var/lib/experiments"
    assert settings.log_level == "DEBUG"


def test_process_environment(monkeypatch):
    monkeypatch.setenv("EXPERIMENT_ENGINE_CI_LEVEL", "0.9")
    assert EngineSettings.from_env().ci_level == 0.9


@pytest.mark.parametrize("key,value", [
    ("EXPERIMENT_ENGINE_CI_LEVEL", "1.5"),
    ("EXPERIMENT_ENGINE_CI_LEVEL", "0"),
    ("EXPERIMENT_ENGINE_MONITOR_INTERVAL_SECONDS", "-1"),
    ("EXPERIMENT_ENGINE_SELECTION_IMBALANCE_THRESHOLD", "not-a-number"),
    ("EXPERIMENT_ENGINE_LOG_LEVEL", "verbose"),
])
def test_out_of_range_values_rejected(key, value):
    """Bad settings fail at load instead of producing NaN statistics later."""
    with pytest.raises(ValidationError):
        EngineSettings.from_env({key: value})


def test_constructor_validates():
    with pytest.raises(ValidationError):
        EngineSettings(ci_level=1.5)


def test_settings_reach_components():
    settings = EngineSettings(ci_level=0.9, monitor_interval_seconds=2.5, selection_imbalance_threshold=0.3)
    service = ExperimentationService(settings=settings)
    assert service.statistical_engine.ci_level == 0.9
    assert service.monitor.interval_seconds == 2.5
    assert service.bias_detector.selection_threshold == 0.3
