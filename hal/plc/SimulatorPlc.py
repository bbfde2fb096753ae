"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import logging
import random
import threading
import time
from typing import Optional

from shared.errors import DriverConnectionError, TagNotConnectedError, TagNotFoundError
from shared.interfaces.hal import AlarmDraft, DriverStatus, IPlcDriver, TagValue

FAULT_CATALOGUE: tuple[tuple[str, str], ...] = (
    ("F103", "Part present timeout"),
    ("F205", "Vision system communication error"),
    ("F301", "Pneumatic pressure low"),
    ("W102", "Cycle time exceeded"),
    ("W204", "Quality gate failure"),
)
FAULT_SEVERITIES = ("medium", "high", "critical")


def default_tags() -> dict[str, TagValue]:
    return {
        # 0=Stopped, 1=Running, 2=Paused, 3=Fault
        "Line.State": 1,
        "Line.RunCmd": False,
        "Line.Stop": False,
        "Line.Reset": False,
        "Station01.CycleTimeMs": 850,
        "Station02.CycleTimeMs": 920,
        "Station01.PartPresent": False,
        "Station02.PartPresent": False,
        "Part.Counter": 0,
        "Part.Completed": False,
        "Quality.PassCount": 0,
        "Quality.FailCount": 0,
        "Quality.LastResult": "pass",
        "Process.Temperature": 22.5,
        "Process.Pressure": 6.2,
        "Process.Humidity": 45.0,
        "Safety.LightCurtain": True,
        "Safety.EmergencyStop": False,
        "Alarm.Active": False,
        "Alarm.Count": 0,
    }


class SimulatorPlc(IPlcDriver):
    """In-memory PLC with a timer-driven production simulation.

    `tick()` advances the simulation by one step; the background thread just
    calls it every `tick_interval_s` (None disables the thread).
    """

    def __init__(
        self,
        *,
        tick_interval_s: Optional[float] = 1.0,
        connect_delay_s: float = 0.0,
        defect_rate: float = 0.05,
        fault_rate_pct: float = 0.02,
        base_cycle_time_ms: int = 850,
        completion_pulse_s: float = 0.1,
        recovery_s: Optional[tuple[float, float]] = (5.0, 15.0),
        seed: Optional[int] = None,
        fail_connect: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(logger)
        self.tick_interval_s = tick_interval_s
        self.connect_delay_s = connect_delay_s
        self.defect_rate = defect_rate
        self.fault_rate_pct = fault_rate_pct
        self.base_cycle_time_ms = base_cycle_time_ms
        self.completion_pulse_s = completion_pulse_s
        self.recovery_s = recovery_s
        self.fail_connect = fail_connect
        self._rng = random.Random(seed)
        self._tags = default_tags()
        self._lock = threading.Lock()
        self._connected = False
        self._connected_at: Optional[float] = None
        self._last_error: Optional[str] = None
        self._halt = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._timers: list[threading.Timer] = []

    def connect(self) -> None:
        if self._connected:
            return
        self.logger.info("Connecting to simulated PLC...")
        if self.connect_delay_s > 0:
            time.sleep(self.connect_delay_s)
        if self.fail_connect:
            self._last_error = "simulated PLC unreachable"
            raise DriverConnectionError(self._last_error)
        self._connected = True
        self._connected_at = time.time()
        self._last_error = None
        if self.tick_interval_s:
            self._halt.clear()
            self._thread = threading.Thread(target=self._run, name="simulator-plc", daemon=True)
            self._thread.start()
        self.logger.info("Simulated PLC connected")

    def disconnect(self) -> None:
        self._connected = False
        self._halt.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        self.logger.info("Simulated PLC disconnected")

    def read_tag(self, name: str) -> TagValue:
        if not self._connected:
            raise TagNotConnectedError(name)
        with self._lock:
            if name not in self._tags:
                raise TagNotFoundError(name)
            return self._tags[name]

    def write_tag(self, name: str, value: TagValue) -> None:
        if not self._connected:
            raise TagNotConnectedError(name)
        self.logger.info("Writing tag: %s = %s", name, value)
        self._set(name, value)
        self._run_program(name, value)

    def is_connected(self) -> bool:
        return self._connected

    def status_snapshot(self) -> DriverStatus:
        return DriverStatus(
            connected=self._connected, last_error=self._last_error, connected_at=self._connected_at
        )

    def peek(self, name: str) -> Optional[TagValue]:
        with self._lock:
            return self._tags.get(name)

    def _get(self, name: str) -> TagValue:
        with self._lock:
            return self._tags[name]

    def _set(self, name: str, value: TagValue) -> None:
        with self._lock:
            self._tags[name] = value
        self._emit_tag_changed(name, value)

    def _later(self, delay_s: float, fn, *args) -> None:
        timer = threading.Timer(delay_s, fn, args=args)
        timer.daemon = True
        self._timers = [t for t in self._timers if t.is_alive()]
        self._timers.append(timer)
        timer.start()

    def _run_program(self, name: str, value: TagValue) -> None:
        """Ladder logic stand-in: commands drive Line.State."""
        if name == "Line.RunCmd":
            if value and self._get("Line.State") != 3:
                self._set("Line.State", 1)
            elif not value:
                self._set("Line.State", 0)
        elif name in ("Line.Stop", "Safety.EmergencyStop") and value:
            self._set("Line.State", 0)
        elif name == "Line.Reset" and value:
            if self._get("Line.State") == 3:
                self._set("Line.State", 1)
            self._set("Alarm.Active", False)

    def _run(self) -> None:
        if not self.tick_interval_s:
            return
        while not self._halt.wait(self.tick_interval_s):
            try:
                self.tick()
            except Exception:
                self.logger.exception("simulation tick failed")

    def tick(self) -> None:
        if not self._connected:
            return
        self._simulate_production_cycle()
        self._simulate_process_variables()
        self._simulate_random_events()

    def _simulate_production_cycle(self) -> None:
        if self._get("Line.State") != 1:
            return
        variation = self._rng.randint(-50, 49)
        self._set("Station01.CycleTimeMs", self.base_cycle_time_ms + variation)

        counter = int(self._get("Part.Counter"))
        self._set("Part.Counter", counter + 1)
        if counter % self._rng.randint(3, 5) != 0:
            return

        is_pass = self._rng.random() > self.defect_rate
        self._set("Quality.LastResult", "pass" if is_pass else "fail")
        count_tag = "Quality.PassCount" if is_pass else "Quality.FailCount"
        self._set(count_tag, int(self._get(count_tag)) + 1)
        self._set("Part.Completed", True)
        if self.completion_pulse_s > 0:
            self._later(self.completion_pulse_s, self._set, "Part.Completed", False)
        else:
            self._set("Part.Completed", False)

    def _simulate_process_variables(self) -> None:
        temp = float(self._get("Process.Temperature")) + (self._rng.random() - 0.5) * 0.5
        self._set("Process.Temperature", round(temp, 1))
        pressure = float(self._get("Process.Pressure")) + (self._rng.random() - 0.5) * 0.2
        self._set("Process.Pressure", round(pressure, 1))
        humidity = float(self._get("Process.Humidity")) + (self._rng.random() - 0.5) * 2
        self._set("Process.Humidity", round(max(30.0, min(60.0, humidity)), 1))

    def _simulate_random_events(self) -> None:
        if self._rng.random() < self.fault_rate_pct / 100:
            self.inject_fault()
        if self._rng.random() < 0.1:
            self._set("Station01.PartPresent", self._rng.random() < 0.3)
            self._set("Station02.PartPresent", self._rng.random() < 0.3)

    def inject_fault(self, index: Optional[int] = None, severity: Optional[str] = None) -> AlarmDraft:
        if index is None:
            index = self._rng.randrange(len(FAULT_CATALOGUE))
        code, message = FAULT_CATALOGUE[index]
        self._set("Line.State", 3)
        self._set("Alarm.Active", True)
        self._set("Alarm.Count", int(self._get("Alarm.Count")) + 1)
        draft = AlarmDraft(
            code=code,
            severity=severity or self._rng.choice(FAULT_SEVERITIES),
            message=message,
            station=self._rng.randint(1, 2),
            context={
                "cycleTime": self._get("Station01.CycleTimeMs"),
                "temperature": self._get("Process.Temperature"),
                "pressure": self._get("Process.Pressure"),
            },
        )
        self._emit_alarm(draft)
        if self.recovery_s is not None:
            self._later(self._rng.uniform(*self.recovery_s), self._recover)
        return draft

    def _recover(self) -> None:
        if not self._connected:
            return
        self._set("Line.State", 1)
        self._set("Alarm.Active", False)
