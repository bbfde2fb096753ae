"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import pytest

pytest.importorskip("cv2")

from shared.errors import ConfigError
from src.core.logic.tag_engine import DEFAULT_POLL_TAGS
from src.linewatch_app.config import LineConfig


def test_defaults_without_environment() -> None:
    config = LineConfig.from_env({})
    assert config.mode == "demo"
    assert config.poll_interval_s == 1.0
    assert config.critical_tags == DEFAULT_POLL_TAGS
    assert config.confidence_threshold == 0.7
    assert config.iou_threshold == 0.45
    assert len(config.class_labels) == 6
    assert config.seed is None
    assert config.alarm_auto_clear_s is None
    assert (config.base_cycle_time_ms, config.primary_station, config.plc_port) == (850, 1, 502)


def test_environment_overrides() -> None:
    config = LineConfig.from_env(
        {
            "MODE": "LIVE",
            "TAG_POLL_INTERVAL_S": "0.25",
            "CRITICAL_TAGS": "Line.State, Part.Counter,",
            "DEFECT_THRESHOLD": "0.6",
            "DEFECT_CLASSES": "scratch,dent",
            "DEMO_SEED": "42",
            "PLC_HOST": "10.1.2.3",
            "PLC_PORT": "1502",
            "ALARM_AUTO_CLEAR_S": "30,120",
        }
    )
    assert config.mode == "live"
    assert config.poll_interval_s == 0.25
    assert config.critical_tags == ("Line.State", "Part.Counter")
    assert config.confidence_threshold == 0.6
    assert config.class_labels == ("scratch", "dent")
    assert config.seed == 42
    assert (config.plc_host, config.plc_port) == ("10.1.2.3", 1502)
    assert config.alarm_auto_clear_s == (30.0, 120.0)


@pytest.mark.parametrize(
    "env",
    [
        {"MODE": "turbo"},
        {"TAG_POLL_INTERVAL_S": "0"},
        {"TAG_POLL_INTERVAL_S": "fast"},
        {"DEFECT_THRESHOLD": "1.5"},
        {"DEMO_SEED": "abc"},
        {"ALARM_AUTO_CLEAR_S": "10,5"},
        {"DEMO_CYCLE_TIME": "0"},
        {"PRIMARY_STATION": "0"},
        {"PLC_PORT": "0"},
    ],
)
def test_invalid_environment_raises_config_error(env: dict[str, str]) -> None:
    with pytest.raises(ConfigError):
        LineConfig.from_env(env)


def test_overrides_skip_none_and_reject_unknown_keys() -> None:
    config = LineConfig().with_overrides(mode=None, seed=7, poll_interval_s=0.5)
    assert config.mode == "demo"
    assert config.seed == 7
    assert config.poll_interval_s == 0.5
    with pytest.raises(ConfigError):
        LineConfig().with_overrides(colour="red")
