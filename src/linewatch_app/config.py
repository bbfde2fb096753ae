"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from shared.errors import ConfigError
from src.core.logic.tag_engine import DEFAULT_CRITICAL_WRITE_TAGS, DEFAULT_POLL_TAGS
from src.core.vision.detector import DEFAULT_CLASSES

APP_NAME = "linewatch"
SEMVER = "0.3.0"
MODES = ("demo", "live")


def _raw(env: Mapping[str, str], key: str) -> str:
    return env.get(key, "").strip()


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _raw(env, key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from exc


def _env_int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = _raw(env, key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc


def _env_list(env: Mapping[str, str], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _raw(env, key)
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _env_range(env: Mapping[str, str], key: str) -> Optional[tuple[float, float]]:
    raw = _raw(env, key)
    if not raw:
        return None
    parts = [p.strip() for p in raw.split(",")]
    try:
        low, high = (float(parts[0]), float(parts[-1]))
    except ValueError as exc:
        raise ConfigError(f"{key} must be 'min,max' seconds, got {raw!r}") from exc
    return (low, high)


@dataclass(frozen=True)
class LineConfig:
    mode: str = "demo"
    poll_interval_s: float = 1.0
    critical_tags: tuple[str, ...] = DEFAULT_POLL_TAGS
    critical_write_tags: tuple[str, ...] = DEFAULT_CRITICAL_WRITE_TAGS
    confidence_threshold: float = 0.7
    iou_threshold: float = 0.45
    class_labels: tuple[str, ...] = DEFAULT_CLASSES
    defect_rate: float = 0.05
    fault_rate_pct: float = 0.02
    base_cycle_time_ms: int = 850
    seed: Optional[int] = None
    primary_station: int = 1
    part_sku: str = "DEMO-001"
    plc_host: str = "192.168.1.100"
    plc_port: int = 502
    plc_tag_map: Optional[str] = None
    model_path: str = "./models/yolo-defect.onnx"
    alarm_auto_clear_s: Optional[tuple[float, float]] = None

    def __post_init__(self) -> None:
        if self.mode not in MODES:
            raise ConfigError(f"MODE must be one of {MODES}, got {self.mode!r}")
        if self.poll_interval_s <= 0:
            raise ConfigError("poll interval must be positive")
        for name in ("confidence_threshold", "iou_threshold", "defect_rate"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {value}")
        if not 0.0 <= self.fault_rate_pct <= 100.0:
            raise ConfigError(f"fault_rate_pct must be within [0, 100], got {self.fault_rate_pct}")
        if self.base_cycle_time_ms <= 0:
            raise ConfigError(f"DEMO_CYCLE_TIME must be positive, got {self.base_cycle_time_ms}")
        if self.primary_station < 1:
            raise ConfigError(f"PRIMARY_STATION must be >= 1, got {self.primary_station}")
        if not 1 <= self.plc_port <= 65535:
            raise ConfigError(f"PLC_PORT must be within [1, 65535], got {self.plc_port}")
        if not self.class_labels:
            raise ConfigError("at least one defect class label is required")
        if self.alarm_auto_clear_s is not None:
            low, high = self.alarm_auto_clear_s
            if low < 0 or high < low:
                raise ConfigError(f"invalid alarm auto-clear range {self.alarm_auto_clear_s}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LineConfig":
        env = os.environ if environ is None else environ
        return cls(
            mode=(_raw(env, "MODE") or "demo").lower(),
            poll_interval_s=_env_float(env, "TAG_POLL_INTERVAL_S", 1.0),
            critical_tags=_env_list(env, "CRITICAL_TAGS", DEFAULT_POLL_TAGS),
            critical_write_tags=_env_list(env, "CRITICAL_WRITE_TAGS", DEFAULT_CRITICAL_WRITE_TAGS),
            confidence_threshold=_env_float(env, "DEFECT_THRESHOLD", 0.7),
            iou_threshold=_env_float(env, "NMS_IOU_THRESHOLD", 0.45),
            class_labels=_env_list(env, "DEFECT_CLASSES", DEFAULT_CLASSES),
            defect_rate=_env_float(env, "DEMO_DEFECT_RATE", 0.05),
            fault_rate_pct=_env_float(env, "DEMO_FAULT_RATE", 0.02),
            base_cycle_time_ms=_env_int(env, "DEMO_CYCLE_TIME", 850),
            seed=_env_int(env, "DEMO_SEED", None),
            primary_station=_env_int(env, "PRIMARY_STATION", 1),
            part_sku=_raw(env, "PART_SKU") or "DEMO-001",
            plc_host=_raw(env, "PLC_HOST") or "192.168.1.100",
            plc_port=_env_int(env, "PLC_PORT", 502),
            plc_tag_map=_raw(env, "PLC_TAG_MAP") or None,
            model_path=_raw(env, "MODEL_PATH") or "./models/yolo-defect.onnx",
            alarm_auto_clear_s=_env_range(env, "ALARM_AUTO_CLEAR_S"),
        )

    def with_overrides(self, **overrides: Any) -> "LineConfig":
        """Apply non-None overrides (e.g. CLI flags) on top of this config."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigError(f"unknown config keys: {sorted(unknown)}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
