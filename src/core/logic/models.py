"""
Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional

from shared.errors import AlarmTransitionError
from shared.interfaces.hal import AlarmDraft, BoundingBox, DriverStatus, TagValue


class LineState(IntEnum):
    STOPPED = 0
    RUNNING = 1
    PAUSED = 2
    FAULT = 3


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


class AlarmSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlarmStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    CLEARED = "cleared"


class PartResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    PENDING = "pending"
    REWORK = "rework"


@dataclass(frozen=True)
class TagRecord:
    name: str
    value: TagValue
    last_updated: float


@dataclass(frozen=True)
class Alarm:
    alarm_id: str
    code: str
    severity: AlarmSeverity
    message: str
    station: int
    status: AlarmStatus
    raised_at: float
    context: dict[str, Any] = field(default_factory=dict)
    acknowledged_at: Optional[float] = None
    acknowledged_by: Optional[str] = None
    cleared_at: Optional[float] = None

    @classmethod
    def from_draft(cls, draft: AlarmDraft, now: Optional[float] = None) -> "Alarm":
        try:
            severity = AlarmSeverity(str(draft.severity).lower())
        except ValueError:
            severity = AlarmSeverity.MEDIUM
        return cls(
            alarm_id=uuid.uuid4().hex,
            code=str(draft.code),
            severity=severity,
            message=str(draft.message),
            station=int(draft.station or 0),
            status=AlarmStatus.ACTIVE,
            raised_at=time.time() if now is None else now,
            context=dict(draft.context or {}),
        )

    def acknowledged(self, by: str, now: Optional[float] = None) -> "Alarm":
        if self.status != AlarmStatus.ACTIVE:
            raise AlarmTransitionError(self.alarm_id, self.status.value, "acknowledge")
        return replace(
            self,
            status=AlarmStatus.ACKNOWLEDGED,
            acknowledged_by=by,
            acknowledged_at=time.time() if now is None else now,
        )

    def cleared(self, now: Optional[float] = None) -> "Alarm":
        if self.status == AlarmStatus.CLEARED:
            raise AlarmTransitionError(self.alarm_id, self.status.value, "clear")
        return replace(
            self, status=AlarmStatus.CLEARED, cleared_at=time.time() if now is None else now
        )


@dataclass(frozen=True)
class Part:
    part_id: str
    sku: str
    batch: str
    station: int
    result: PartResult
    cycle_time_ms: int
    completed_at: float

    @staticmethod
    def batch_for(ts: float) -> str:
        return "B" + datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y%m%d")


@dataclass(frozen=True)
class TagChanged:
    name: str
    value: TagValue
    timestamp: float


@dataclass(frozen=True)
class LineStateChanged:
    value: LineState


@dataclass(frozen=True)
class CycleTimeSample:
    station: int
    value: TagValue


@dataclass(frozen=True)
class PartCompleted:
    part: Part


@dataclass(frozen=True)
class AlarmRaised:
    alarm: Alarm


@dataclass(frozen=True)
class AlarmCleared:
    alarm: Alarm


@dataclass(frozen=True)
class EngineStatus:
    connection: ConnectionState
    line_state: LineState
    poll_cycles: int
    poll_failures: int
    last_error: Optional[str]
    driver: DriverStatus


@dataclass(frozen=True)
class DetectionResult:
    boxes: tuple[BoundingBox, ...]
    aggregate_confidence: float
    processing_time_ms: float
    used_fallback: bool


@dataclass(frozen=True)
class DefectReport:
    class_label: str
    confidence: float
    station: int
    bounding_box: BoundingBox
    severity: AlarmSeverity = AlarmSeverity.HIGH
    disposition: str = "pending"


_EVENT_NAMES = {
    TagChanged: "tag_changed",
    LineStateChanged: "line_state_changed",
    CycleTimeSample: "cycle_time",
    PartCompleted: "part_completed",
    AlarmRaised: "alarm",
    AlarmCleared: "alarm_cleared",
    DetectionResult: "detection",
}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if hasattr(value, "__dataclass_fields__"):
        return {name: _plain(getattr(value, name)) for name in value.__dataclass_fields__}
    return value


def event_to_dict(event: Any) -> dict[str, Any]:
    """Render an engine or detector event as a JSON-safe dict."""
    payload = _plain(event)
    if not isinstance(payload, dict):
        raise TypeError(f"not an event: {event!r}")
    payload["event"] = _EVENT_NAMES.get(type(event), type(event).__name__)
    return payload
