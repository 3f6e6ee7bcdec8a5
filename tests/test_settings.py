import pytest
import yaml

from snipe_engine.config.settings import ConfigManager, EngineSettings, QueueConfig
from snipe_engine.models.trading import CongestionLevel


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ConfigManager.ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = EngineSettings()

    assert settings.queue.batch_size == 3
    assert settings.queue.retention == 300
    assert settings.network.congestion == CongestionLevel.MEDIUM
    assert settings.validation.max_amount == 10
    assert settings.seed is None


def test_missing_file_uses_defaults(tmp_path):
    manager = ConfigManager(str(tmp_path / "missing.yaml"))

    assert manager.settings == EngineSettings()


def test_yaml_overrides(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump({
        "queue": {"batch_size": 5, "retry_delay": 1.5},
        "network": {"congestion": "high"},
        "seed": 42,
    }))

    settings = ConfigManager(str(path)).settings

    assert settings.queue.batch_size == 5
    assert settings.queue.retry_delay == 1.5
    assert settings.queue.max_retries == 3
    assert settings.network.congestion == CongestionLevel.HIGH
    assert settings.seed == 42


def test_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump({"monitoring": {"log_level": "INFO"}}))
    monkeypatch.setenv("SNIPE_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("SNIPE_METRICS_PORT", "9100")
    monkeypatch.setenv("SNIPE_SEED", "3")

    settings = ConfigManager(str(path)).settings

    assert settings.monitoring.log_level == "DEBUG"
    assert settings.monitoring.metrics_port == 9100
    assert settings.seed == 3


def test_invalid_values_raise(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump({"queue": {"batch_size": 50}}))

    with pytest.raises(ValueError, match="Error loading config"):
        ConfigManager(str(path))


def test_latency_bounds_checked():
    with pytest.raises(ValueError):
        QueueConfig(min_latency=3, max_latency=1)


def test_save_round_trip(tmp_path):
    path = tmp_path / "nested" / "engine.yaml"
    manager = ConfigManager(str(path))
    manager.settings = manager.settings.model_copy(update={"seed": 11})

    manager.save_config()

    assert ConfigManager(str(path)).settings.seed == 11
