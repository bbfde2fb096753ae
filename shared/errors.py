"""
Version: 0.3.0
License: MIT
"""

from __future__ import annotations


class LineWatchError(Exception):
    """Base class for every error raised by LineWatch components."""


class DriverConnectionError(LineWatchError, ConnectionError):
    """PLC endpoint unreachable; the caller may retry."""


class TagNotConnectedError(LineWatchError):
    def __init__(self, tag: str) -> None:
        super().__init__(f"PLC not connected (tag {tag})")
        self.tag = tag


class TagNotFoundError(LineWatchError, LookupError):
    def __init__(self, tag: str) -> None:
        super().__init__(f"Tag {tag} not found")
        self.tag = tag


class ImageDecodeError(LineWatchError, ValueError):
    """Frame bytes could not be decoded into an image."""


class SubscriberFault(LineWatchError):
    """Wraps an exception raised by a tag subscriber during fan-out."""

    def __init__(self, tag: str, consumer: object, cause: BaseException) -> None:
        super().__init__(f"subscriber {consumer!r} failed on {tag}: {cause}")
        self.tag = tag
        self.consumer = consumer
        self.cause = cause


class AlarmNotActiveError(LineWatchError, LookupError):
    def __init__(self, alarm_id: str) -> None:
        super().__init__(f"Alarm {alarm_id} is not active")
        self.alarm_id = alarm_id


class ConfigError(LineWatchError, ValueError):
    pass


class AlarmTransitionError(LineWatchError, ValueError):
    """Alarm lifecycle step not allowed from its current status."""

    def __init__(self, alarm_id: str, status: str, action: str) -> None:
        super().__init__(f"cannot {action} alarm {alarm_id} in status {status}")
        self.alarm_id = alarm_id
        self.status = status
