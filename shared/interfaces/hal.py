"""
Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

TagValue = Union[bool, int, float, str]
TagListener = Callable[[str, TagValue], None]
AlarmListener = Callable[["AlarmDraft"], None]


@dataclass(frozen=True)
class DriverStatus:
    connected: bool
    last_error: Optional[str] = None
    connected_at: Optional[float] = None


@dataclass(frozen=True)
class AlarmDraft:
    code: str
    severity: str
    message: str
    station: int = 0
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BoundingBox:
    class_label: str
    confidence: float
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)


class IPlcDriver(ABC):
    """Capability interface shared by the simulator and the hardware drivers.

    Change and alarm notifications are pushed to listeners instead of being
    returned from calls. A listener that raises is logged and skipped.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("linewatch")
        self._tag_listeners: list[TagListener] = []
        self._alarm_listeners: list[AlarmListener] = []

    @abstractmethod
    def connect(self) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    @abstractmethod
    def read_tag(self, name: str) -> TagValue: ...

    @abstractmethod
    def write_tag(self, name: str, value: TagValue) -> None: ...

    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    def status_snapshot(self) -> DriverStatus: ...

    def add_tag_listener(self, listener: TagListener) -> None:
        self._tag_listeners.append(listener)

    def add_alarm_listener(self, listener: AlarmListener) -> None:
        self._alarm_listeners.append(listener)

    def remove_listeners(self) -> None:
        self._tag_listeners.clear()
        self._alarm_listeners.clear()

    def _emit_tag_changed(self, name: str, value: TagValue) -> None:
        for listener in list(self._tag_listeners):
            try:
                listener(name, value)
            except Exception:
                self.logger.exception("tag listener failed for %s", name)

    def _emit_alarm(self, draft: AlarmDraft) -> None:
        for listener in list(self._alarm_listeners):
            try:
                listener(draft)
            except Exception:
                self.logger.exception("alarm listener failed for %s", draft.code)


class IInferenceEngine(ABC):
    """Runs the detection network on a preprocessed tensor."""

    @abstractmethod
    def infer(self, tensor: Any) -> Any: ...

    @property
    def available(self) -> bool:
        return True


class IEventSink(ABC):
    @abstractmethod
    def publish(self, event: Any) -> None: ...
