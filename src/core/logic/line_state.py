"""
Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import threading
from typing import Optional

from src.core.logic.models import LineState


class LineStateMachine:
    """Production/alarm state, driven by `Line.State` values and alarm raise/clear.

    The state held before the line entered FAULT is remembered so clearing the
    last active alarm can resume it.
    """

    def __init__(self, initial: LineState = LineState.STOPPED) -> None:
        self._state = initial
        self._resume_state = LineState.RUNNING if initial == LineState.FAULT else initial
        self._active_alarms: set[str] = set()
        self._lock = threading.Lock()

    @property
    def state(self) -> LineState:
        return self._state

    @property
    def active_alarm_count(self) -> int:
        return len(self._active_alarms)

    @staticmethod
    def coerce(value: object) -> Optional[LineState]:
        if isinstance(value, bool):
            return None
        try:
            return LineState(int(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None

    def _enter(self, new_state: LineState) -> Optional[LineState]:
        if new_state == self._state:
            return None
        if new_state == LineState.FAULT:
            self._resume_state = self._state
        self._state = new_state
        return new_state

    def apply_tag(self, value: object) -> Optional[LineState]:
        """Apply a `Line.State` value. Returns the state, or None if the value is invalid."""
        target = self.coerce(value)
        if target is None:
            return None
        with self._lock:
            self._enter(target)
            return self._state

    def alarm_raised(self, alarm_id: str) -> Optional[LineState]:
        """Returns the new state when the alarm caused a transition."""
        with self._lock:
            self._active_alarms.add(alarm_id)
            return self._enter(LineState.FAULT)

    def alarm_cleared(self, alarm_id: str) -> Optional[LineState]:
        """Returns the resumed state once the last active alarm clears."""
        with self._lock:
            self._active_alarms.discard(alarm_id)
            if self._active_alarms or self._state != LineState.FAULT:
                return None
            return self._enter(self._resume_state)
