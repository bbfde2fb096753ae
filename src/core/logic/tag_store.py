"""
Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import threading
import time
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from shared.errors import SubscriberFault
from shared.interfaces.hal import TagListener, TagValue
from src.core.logic.models import TagRecord


class TagCache:
    """Last-known value per tag. Last write by arrival wins; timestamps are informational."""

    def __init__(self) -> None:
        self._records: dict[str, TagRecord] = {}
        self._stripes: dict[str, threading.RLock] = {}
        self._lock = threading.Lock()

    def lock_for(self, name: str) -> threading.RLock:
        with self._lock:
            stripe = self._stripes.get(name)
            if stripe is None:
                stripe = self._stripes[name] = threading.RLock()
            return stripe

    def commit(self, name: str, value: TagValue, now: Optional[float] = None) -> TagRecord:
        record = TagRecord(name=name, value=value, last_updated=time.time() if now is None else now)
        with self.lock_for(name):
            with self._lock:
                self._records[name] = record
        return record

    def get(self, name: str, default: Optional[TagValue] = None) -> Optional[TagValue]:
        record = self._records.get(name)
        return default if record is None else record.value

    def record(self, name: str) -> Optional[TagRecord]:
        return self._records.get(name)

    def snapshot(self) -> Mapping[str, TagValue]:
        with self._lock:
            return MappingProxyType({name: r.value for name, r in self._records.items()})

    def records(self) -> Mapping[str, TagRecord]:
        with self._lock:
            return MappingProxyType(dict(self._records))

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)


class SubscriptionRegistry:
    """tag -> ordered consumer set.

    Fan-out passes and unsubscription share one re-entrant lock, so another
    thread's unsubscribe lands either before or after a whole pass.
    """

    def __init__(self) -> None:
        self._subs: dict[str, dict[TagListener, None]] = {}
        self._lock = threading.RLock()

    def register(self, tag_names: Iterable[str], consumer: TagListener) -> Callable[[], None]:
        names = list(dict.fromkeys(tag_names))
        with self._lock:
            for name in names:
                self._subs.setdefault(name, {})[consumer] = None

        def unsubscribe() -> None:
            with self._lock:
                for name in names:
                    consumers = self._subs.get(name)
                    if consumers is None:
                        continue
                    consumers.pop(consumer, None)
                    if not consumers:
                        del self._subs[name]

        return unsubscribe

    def fan_out(
        self,
        name: str,
        value: TagValue,
        on_fault: Optional[Callable[[SubscriberFault], None]] = None,
    ) -> int:
        delivered = 0
        with self._lock:
            for consumer in list(self._subs.get(name, ())):
                # a consumer may unsubscribe itself (or a peer) mid-pass
                if consumer not in self._subs.get(name, ()):
                    continue
                try:
                    consumer(name, value)
                    delivered += 1
                except Exception as exc:
                    if on_fault is not None:
                        on_fault(SubscriberFault(name, consumer, exc))
        return delivered

    def consumers(self, name: str) -> tuple[TagListener, ...]:
        with self._lock:
            return tuple(self._subs.get(name, ()))

    def tags(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._subs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subs)
