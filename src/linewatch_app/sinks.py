"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import json
import logging
import queue
from typing import Any, Optional

from shared.interfaces.hal import IEventSink
from src.core.logic.models import event_to_dict


def event_json(event: Any) -> str:
    return json.dumps(event_to_dict(event), ensure_ascii=False, default=str)


class LoggingEventSink(IEventSink):
    """Writes every event as one JSON line on the application logger."""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO) -> None:
        self.logger = logger or logging.getLogger("linewatch")
        self.level = level

    def publish(self, event: Any) -> None:
        self.logger.log(self.level, "%s", event_json(event))


class QueueEventSink(IEventSink):
    """Channel-style sink for transport or persistence consumers on other threads."""

    def __init__(self, maxsize: int = 0) -> None:
        self.events: queue.Queue[Any] = queue.Queue(maxsize=maxsize)

    def publish(self, event: Any) -> None:
        self.events.put_nowait(event)

    def drain(self) -> list[Any]:
        out: list[Any] = []
        while True:
            try:
                out.append(self.events.get_nowait())
            except queue.Empty:
                return out
