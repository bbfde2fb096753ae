"""
Tag synchronization engine: the single source of truth for live controller state.
Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import logging
import queue
import random
import re
import threading
import time
import uuid
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from shared.errors import (
    AlarmNotActiveError,
    DriverConnectionError,
    SubscriberFault,
    TagNotConnectedError,
)
from shared.interfaces.hal import AlarmDraft, IEventSink, IPlcDriver, TagListener, TagValue
from src.core.logic.line_state import LineStateMachine
from src.core.logic.models import (
    Alarm,
    AlarmCleared,
    AlarmRaised,
    ConnectionState,
    CycleTimeSample,
    EngineStatus,
    LineState,
    LineStateChanged,
    Part,
    PartCompleted,
    PartResult,
    TagChanged,
    TagRecord,
)
from src.core.logic.tag_store import SubscriptionRegistry, TagCache

LINE_STATE_TAG = "Line.State"
PART_COMPLETED_TAG = "Part.Completed"
LAST_RESULT_TAG = "Quality.LastResult"
CYCLE_TIME_MARKER = "CycleTimeMs"
FALLBACK_CYCLE_TIME_MS = 850

DEFAULT_POLL_TAGS: tuple[str, ...] = (
    "Line.State",
    "Line.RunCmd",
    "Station01.CycleTimeMs",
    "Station02.CycleTimeMs",
    "Part.Counter",
    "Quality.PassCount",
    "Quality.FailCount",
)
DEFAULT_CRITICAL_WRITE_TAGS: tuple[str, ...] = (
    "Line.RunCmd",
    "Line.Stop",
    "Emergency.Stop",
    "Safety.EmergencyStop",
    "Safety.Reset",
)

_STATION_PATTERN = re.compile(r"Station(\d+)")

# link-level failures; anything else (unknown tag, bad value) is per-call
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    DriverConnectionError,
    TagNotConnectedError,
    OSError,
)


def extract_station(tag: str) -> int:
    match = _STATION_PATTERN.search(tag)
    return int(match.group(1)) if match else 0


def cycle_time_tag(station: int) -> str:
    return f"Station{station:02d}.CycleTimeMs"


class TagSyncEngine:
    """Mediates reads/writes against an injected PLC driver and derives line events.

    Driver notifications are queued and handled by one dispatcher, either the
    background thread started by `start()` or an explicit `pump()` call.
    """

    def __init__(
        self,
        driver: IPlcDriver,
        sink: Optional[IEventSink] = None,
        *,
        poll_interval_s: float = 1.0,
        critical_tags: Sequence[str] = DEFAULT_POLL_TAGS,
        critical_write_tags: Iterable[str] = DEFAULT_CRITICAL_WRITE_TAGS,
        primary_station: int = 1,
        part_sku: str = "DEMO-001",
        alarm_auto_clear_s: Optional[tuple[float, float]] = None,
        seed: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")
        self.driver = driver
        self.sink = sink
        self.poll_interval_s = poll_interval_s
        self.critical_tags = tuple(critical_tags)
        self.critical_write_tags = frozenset(critical_write_tags)
        self.primary_station = primary_station
        self.part_sku = part_sku
        self.alarm_auto_clear_s = alarm_auto_clear_s
        self.logger = logger or logging.getLogger("linewatch")

        self.cache = TagCache()
        self.registry = SubscriptionRegistry()
        self.machine = LineStateMachine(LineState.STOPPED)

        self._events: queue.Queue[tuple[Any, ...]] = queue.Queue()
        self._pump_lock = threading.Lock()
        self._pump_owner: Optional[int] = None
        self._state_lock = threading.Lock()
        self._alarm_lock = threading.Lock()
        self._connection = ConnectionState.DISCONNECTED
        self._last_error: Optional[str] = None
        self._poll_cycles = 0
        self._poll_failures = 0
        self._active_alarms: dict[str, Alarm] = {}
        self._timers: list[threading.Timer] = []
        self._rng = random.Random(seed)
        self._listening = False
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    # -- connection ---------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection

    @property
    def line_state(self) -> LineState:
        return self.machine.state

    def connect(self) -> None:
        with self._state_lock:
            if self._connection in (ConnectionState.CONNECTED, ConnectionState.DEGRADED):
                if self.driver.is_connected():
                    return
            self._connection = ConnectionState.CONNECTING
        self._attach_listeners()
        try:
            self.driver.connect()
        except DriverConnectionError as exc:
            self._connect_failed(exc)
            raise
        except Exception as exc:
            self._connect_failed(exc)
            raise DriverConnectionError(str(exc)) from exc
        with self._state_lock:
            self._connection = ConnectionState.CONNECTED
        self.logger.info("PLC driver connected successfully")

    def _connect_failed(self, exc: Exception) -> None:
        with self._state_lock:
            self._connection = ConnectionState.DISCONNECTED
            self._last_error = str(exc)
        self.logger.error("Failed to connect PLC driver: %s", exc)

    def disconnect(self) -> None:
        self.driver.disconnect()
        with self._state_lock:
            self._connection = ConnectionState.DISCONNECTED
        self.logger.info("PLC driver disconnected")

    def _attach_listeners(self) -> None:
        if self._listening:
            return
        self.driver.add_tag_listener(self._on_driver_tag_changed)
        self.driver.add_alarm_listener(self._on_driver_alarm)
        self._listening = True

    def report_failure(self, reason: str) -> None:
        """Record a failed driver interaction, e.g. a caller-side timeout."""
        with self._state_lock:
            self._last_error = reason
            if self._connection == ConnectionState.CONNECTED:
                self._connection = ConnectionState.DEGRADED
                self.logger.warning("PLC connection degraded: %s", reason)

    # -- read / write -------------------------------------------------------

    def read_tag(self, name: str) -> TagValue:
        """Fresh read from the driver; the cache is updated, never used as a fallback."""
        try:
            return self._read_into_cache(name)
        except Exception as exc:
            self.logger.error("Failed to read tag %s: %s", name, exc)
            raise

    def _read_into_cache(self, name: str) -> TagValue:
        try:
            value = self.driver.read_tag(name)
        except TRANSPORT_ERRORS as exc:
            self.report_failure(f"read {name}: {exc}")
            raise
        previous = self.cache.get(name)
        self.cache.commit(name, value)
        if name == LINE_STATE_TAG and previous != value:
            self._apply_line_state(value)
        return value

    def write_tag(self, name: str, value: TagValue) -> None:
        if name in self.critical_write_tags:
            self.logger.warning("Writing to critical tag: %s = %s", name, value)
        try:
            self.driver.write_tag(name, value)
        except Exception as exc:
            if isinstance(exc, TRANSPORT_ERRORS):
                self.report_failure(f"write {name}: {exc}")
            self.logger.error("Failed to write tag %s: %s", name, exc)
            raise
        self.logger.info("Tag written: %s = %s", name, value)
        self.cache.commit(name, value)

    def tag_snapshot(self) -> Mapping[str, TagValue]:
        return self.cache.snapshot()

    def tag_records(self) -> Mapping[str, TagRecord]:
        return self.cache.records()

    # -- subscriptions ------------------------------------------------------

    def subscribe(self, tag_names: Iterable[str], consumer: TagListener) -> Callable[[], None]:
        """Callback subscription.

        Consumers run on the dispatcher thread while the tag's cache stripe and
        the registry lock are held. They must not call back into the engine
        (`read_tag`, `write_tag`, `subscribe`); such consumers should use
        `subscribe_queue` and act from their own thread.
        """
        return self.registry.register(tag_names, consumer)

    def subscribe_queue(
        self, tag_names: Iterable[str], maxsize: int = 0
    ) -> tuple[queue.Queue[tuple[str, TagValue]], Callable[[], None]]:
        channel: queue.Queue[tuple[str, TagValue]] = queue.Queue(maxsize=maxsize)

        def _put(name: str, value: TagValue) -> None:
            channel.put_nowait((name, value))

        return channel, self.registry.register(tag_names, _put)

    # -- polling ------------------------------------------------------------

    def poll_once(self) -> int:
        """One best-effort sweep over the critical tags. Returns the failure count.

        Only transport failures keep the link DEGRADED; an unknown tag name is
        counted but says nothing about the connection.
        """
        failures = 0
        transport_failures = 0
        for name in self.critical_tags:
            try:
                self._read_into_cache(name)
            except TRANSPORT_ERRORS as exc:
                failures += 1
                transport_failures += 1
                self.logger.debug("poll read %s failed: %s", name, exc)
            except Exception as exc:
                failures += 1
                self.logger.debug("poll read %s failed: %s", name, exc)
        with self._state_lock:
            self._poll_cycles += 1
            self._poll_failures += failures
            healthy = transport_failures == 0 and failures < len(self.critical_tags)
            if healthy and self._connection == ConnectionState.DEGRADED:
                self._connection = ConnectionState.CONNECTED
                self.logger.info("PLC connection recovered")
        return failures

    def _poll_loop(self) -> None:
        while not self._stop.wait(self.poll_interval_s):
            self.poll_once()

    # -- event handling -----------------------------------------------------

    def _on_driver_tag_changed(self, name: str, value: TagValue) -> None:
        self._events.put(("tag", name, value))

    def _on_driver_alarm(self, draft: AlarmDraft) -> None:
        self._events.put(("alarm", draft))

    def pump(self, max_events: Optional[int] = None, timeout: float = 0.0) -> int:
        """Handle queued driver events on the calling thread.

        A nested call from inside a handler (e.g. a subscriber) returns 0; the
        outer pump picks the remaining events up.
        """
        if self._pump_owner == threading.get_ident():
            return 0
        processed = 0
        with self._pump_lock:
            self._pump_owner = threading.get_ident()
            try:
                while max_events is None or processed < max_events:
                    try:
                        if timeout > 0 and processed == 0:
                            item = self._events.get(timeout=timeout)
                        else:
                            item = self._events.get_nowait()
                    except queue.Empty:
                        break
                    try:
                        self._dispatch(item)
                    except Exception:
                        self.logger.exception("failed to handle engine event %s", item[0])
                    processed += 1
            finally:
                self._pump_owner = None
        return processed

    def _dispatch(self, item: tuple[Any, ...]) -> None:
        kind = item[0]
        if kind == "tag":
            self._handle_tag_change(item[1], item[2])
        elif kind == "alarm":
            self._handle_alarm(item[1])
        elif kind == "clear":
            try:
                self.clear_alarm(item[1])
            except AlarmNotActiveError:
                self.logger.debug("alarm %s already cleared", item[1])

    def _handle_tag_change(self, name: str, value: TagValue) -> None:
        with self.cache.lock_for(name):
            record = self.cache.commit(name, value)
            self.registry.fan_out(name, value, on_fault=self._on_subscriber_fault)
        self._publish(TagChanged(name=name, value=value, timestamp=record.last_updated))
        self._derive_events(name, value)

    def _on_subscriber_fault(self, fault: SubscriberFault) -> None:
        self.logger.error("%s", fault, exc_info=fault.cause)

    def _derive_events(self, name: str, value: TagValue) -> None:
        if name == PART_COMPLETED_TAG and value is True:
            self._publish(PartCompleted(self._build_part()))
        if name == LINE_STATE_TAG:
            self._apply_line_state(value)
        if CYCLE_TIME_MARKER in name:
            self._publish(CycleTimeSample(station=extract_station(name), value=value))

    def _apply_line_state(self, value: TagValue) -> None:
        previous = self.machine.state
        state = self.machine.apply_tag(value)
        if state is None:
            self.logger.warning("ignoring invalid %s value %r", LINE_STATE_TAG, value)
            return
        self._publish(LineStateChanged(state))
        if previous == LineState.FAULT and state != LineState.FAULT:
            self._clear_recovered_alarms()

    def _clear_recovered_alarms(self) -> None:
        """The controller left FAULT on its own: every active alarm is resolved."""
        for alarm in self.active_alarms():
            try:
                self.clear_alarm(alarm.alarm_id)
            except AlarmNotActiveError:
                self.logger.debug("alarm %s already cleared", alarm.alarm_id)

    def _build_part(self) -> Part:
        now = time.time()
        cycle = self.cache.get(cycle_time_tag(self.primary_station)) or FALLBACK_CYCLE_TIME_MS
        raw_result = self.cache.get(LAST_RESULT_TAG) or PartResult.PASS.value
        try:
            result = PartResult(str(raw_result).lower())
        except ValueError:
            self.logger.warning("unknown part result %r", raw_result)
            result = PartResult.PENDING
        return Part(
            part_id=uuid.uuid4().hex,
            sku=self.part_sku,
            batch=Part.batch_for(now),
            station=self.primary_station,
            result=result,
            cycle_time_ms=int(cycle),
            completed_at=now,
        )

    # -- alarms -------------------------------------------------------------

    def _handle_alarm(self, draft: AlarmDraft) -> None:
        alarm = Alarm.from_draft(draft)
        with self._alarm_lock:
            self._active_alarms[alarm.alarm_id] = alarm
        self.logger.warning(
            "Alarm %s (%s) at station %s: %s",
            alarm.code,
            alarm.severity.value,
            alarm.station,
            alarm.message,
        )
        self._publish(AlarmRaised(alarm))
        state = self.machine.alarm_raised(alarm.alarm_id)
        if state is not None:
            self._publish(LineStateChanged(state))
        if self.alarm_auto_clear_s is not None:
            self._schedule_clear(alarm.alarm_id)

    def _schedule_clear(self, alarm_id: str) -> None:
        low, high = self.alarm_auto_clear_s  # type: ignore[misc]
        timer = threading.Timer(self._rng.uniform(low, high), self._events.put, args=(("clear", alarm_id),))
        timer.daemon = True
        self._timers = [t for t in self._timers if t.is_alive()]
        self._timers.append(timer)
        timer.start()

    def active_alarms(self) -> tuple[Alarm, ...]:
        with self._alarm_lock:
            return tuple(self._active_alarms.values())

    def acknowledge_alarm(self, alarm_id: str, by: str = "operator") -> Alarm:
        with self._alarm_lock:
            alarm = self._active_alarms.get(alarm_id)
            if alarm is None:
                raise AlarmNotActiveError(alarm_id)
            acked = alarm.acknowledged(by)
            self._active_alarms[alarm_id] = acked
        self.logger.info("Alarm %s acknowledged by %s", acked.code, by)
        return acked

    def clear_alarm(self, alarm_id: str) -> Alarm:
        with self._alarm_lock:
            alarm = self._active_alarms.pop(alarm_id, None)
        if alarm is None:
            raise AlarmNotActiveError(alarm_id)
        cleared = alarm.cleared()
        self.logger.info("Alarm %s cleared", cleared.code)
        self._publish(AlarmCleared(cleared))
        state = self.machine.alarm_cleared(alarm_id)
        if state is not None:
            self._publish(LineStateChanged(state))
        return cleared

    # -- lifecycle ----------------------------------------------------------

    def _publish(self, event: Any) -> None:
        if self.sink is None:
            return
        try:
            self.sink.publish(event)
        except Exception:
            self.logger.exception("event sink rejected %s", type(event).__name__)

    def start(self) -> None:
        if self._threads:
            return
        self.connect()
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._dispatch_loop, name="linewatch-dispatch", daemon=True),
            threading.Thread(target=self._poll_loop, name="linewatch-poll", daemon=True),
        ]
        for thread in self._threads:
            thread.start()
        self.logger.info("Started PLC tag monitoring every %.2fs", self.poll_interval_s)

    def _dispatch_loop(self) -> None:
        while not self._stop.is_set():
            self.pump(timeout=0.1)

    def stop(self) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=2.0)
        self._threads = []
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        self.disconnect()

    def status(self) -> EngineStatus:
        with self._state_lock:
            return EngineStatus(
                connection=self._connection,
                line_state=self.machine.state,
                poll_cycles=self._poll_cycles,
                poll_failures=self._poll_failures,
                last_error=self._last_error,
                driver=self.driver.status_snapshot(),
            )
