"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from pymodbus.client import ModbusTcpClient
from pymodbus.exceptions import ModbusException

from shared.errors import DriverConnectionError, TagNotConnectedError, TagNotFoundError
from shared.interfaces.hal import AlarmDraft, DriverStatus, IPlcDriver, TagValue

ALARM_ACTIVE_TAG = "Alarm.Active"
ALARM_CODE = "PLC_ALARM"
ALARM_CONTEXT_TAGS = ("Alarm.Count", "Line.State", "Station01.CycleTimeMs", "Process.Pressure")


@dataclass(frozen=True)
class RegisterBinding:
    kind: str  # "coil" or "holding"
    address: int
    scale: float = 1.0
    choices: tuple[str, ...] = ()

    def decode(self, raw: Any) -> TagValue:
        if self.kind == "coil":
            return bool(raw)
        raw = int(raw)
        if self.choices:
            return self.choices[raw] if 0 <= raw < len(self.choices) else str(raw)
        if self.scale != 1.0:
            return raw / self.scale
        return raw

    def encode(self, value: TagValue) -> int | bool:
        if self.kind == "coil":
            return bool(value)
        if self.choices:
            if value not in self.choices:
                raise ValueError(f"{value!r} not in {self.choices}")
            return self.choices.index(str(value))
        raw = int(round(float(value) * self.scale))
        if not 0 <= raw <= 0xFFFF:
            raise ValueError(f"{value!r} does not fit a 16-bit register")
        return raw


DEFAULT_TAG_MAP: dict[str, RegisterBinding] = {
    "Line.RunCmd": RegisterBinding("coil", 0),
    "Line.Stop": RegisterBinding("coil", 1),
    "Line.Reset": RegisterBinding("coil", 2),
    "Part.Completed": RegisterBinding("coil", 3),
    "Safety.EmergencyStop": RegisterBinding("coil", 4),
    "Safety.LightCurtain": RegisterBinding("coil", 5),
    "Alarm.Active": RegisterBinding("coil", 6),
    "Station01.PartPresent": RegisterBinding("coil", 7),
    "Station02.PartPresent": RegisterBinding("coil", 8),
    "Line.State": RegisterBinding("holding", 0),
    "Station01.CycleTimeMs": RegisterBinding("holding", 1),
    "Station02.CycleTimeMs": RegisterBinding("holding", 2),
    "Part.Counter": RegisterBinding("holding", 3),
    "Quality.PassCount": RegisterBinding("holding", 4),
    "Quality.FailCount": RegisterBinding("holding", 5),
    "Quality.LastResult": RegisterBinding("holding", 6, choices=("pass", "fail", "pending", "rework")),
    "Process.Temperature": RegisterBinding("holding", 7, scale=10.0),
    "Process.Pressure": RegisterBinding("holding", 8, scale=10.0),
    "Process.Humidity": RegisterBinding("holding", 9, scale=10.0),
    "Alarm.Count": RegisterBinding("holding", 10),
}


def load_tag_map(path: str | Path | None) -> dict[str, RegisterBinding]:
    """Read a JSON tag map ({tag: {kind, address, scale?, choices?}}); default map if absent."""
    if path is None or not Path(path).exists():
        return dict(DEFAULT_TAG_MAP)
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return {
        str(name): RegisterBinding(
            kind=str(entry["kind"]),
            address=int(entry["address"]),
            scale=float(entry.get("scale", 1.0)),
            choices=tuple(str(c) for c in entry.get("choices", ())),
        )
        for name, entry in raw.items()
    }


class ModbusPlc(IPlcDriver):
    """Hardware driver: PLC tags mapped onto Modbus/TCP coils and holding registers.

    The PLC does not push changes over Modbus, so a background thread reads the
    mapped tags every `poll_interval_s` and emits a change when a value differs.
    """

    def __init__(
        self,
        host: str,
        port: int = 502,
        *,
        tag_map: Optional[Mapping[str, RegisterBinding]] = None,
        poll_interval_s: Optional[float] = 0.5,
        timeout_s: float = 2.0,
        client_factory: Optional[Callable[[str, int, float], Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(logger)
        self.host = host
        self.port = port
        self.tag_map = dict(tag_map or DEFAULT_TAG_MAP)
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self._client_factory = client_factory or (
            lambda h, p, t: ModbusTcpClient(h, port=p, timeout=t)
        )
        self._client: Any = None
        self._io_lock = threading.Lock()
        self._connected = False
        self._connected_at: Optional[float] = None
        self._last_error: Optional[str] = None
        self._last_values: dict[str, TagValue] = {}
        self._halt = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def connect(self) -> None:
        if self._connected:
            return
        self.logger.info("Connecting to Modbus PLC at %s:%s...", self.host, self.port)
        client = self._client_factory(self.host, self.port, self.timeout_s)
        try:
            ok = client.connect()
        except (ModbusException, OSError) as exc:
            ok = False
            self._last_error = str(exc)
        if not ok:
            self._last_error = self._last_error or f"unable to reach {self.host}:{self.port}"
            self.logger.error("Failed to connect to PLC: %s", self._last_error)
            raise DriverConnectionError(self._last_error)
        self._client = client
        self._connected = True
        self._connected_at = time.time()
        self._last_error = None
        if self.poll_interval_s:
            self._halt.clear()
            self._thread = threading.Thread(target=self._poll_changes, name="modbus-plc", daemon=True)
            self._thread.start()
        self.logger.info("Modbus PLC connected")

    def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self._halt.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.timeout_s + 1.0)
        self._thread = None
        with self._io_lock:
            if self._client is not None:
                self._client.close()
        self.logger.info("Modbus PLC disconnected")

    def _binding(self, name: str) -> RegisterBinding:
        if not self._connected:
            raise TagNotConnectedError(name)
        binding = self.tag_map.get(name)
        if binding is None:
            raise TagNotFoundError(name)
        return binding

    def _fail(self, name: str, detail: object) -> DriverConnectionError:
        self._last_error = f"{name}: {detail}"
        return DriverConnectionError(self._last_error)

    def read_tag(self, name: str) -> TagValue:
        binding = self._binding(name)
        try:
            with self._io_lock:
                if binding.kind == "coil":
                    response = self._client.read_coils(address=binding.address, count=1)
                else:
                    response = self._client.read_holding_registers(address=binding.address, count=1)
        except (ModbusException, OSError) as exc:
            raise self._fail(name, exc) from exc
        if response.isError():
            raise self._fail(name, response)
        raw = response.bits[0] if binding.kind == "coil" else response.registers[0]
        return binding.decode(raw)

    def write_tag(self, name: str, value: TagValue) -> None:
        binding = self._binding(name)
        raw = binding.encode(value)
        try:
            with self._io_lock:
                if binding.kind == "coil":
                    response = self._client.write_coil(binding.address, bool(raw))
                else:
                    response = self._client.write_register(binding.address, int(raw))
        except (ModbusException, OSError) as exc:
            raise self._fail(name, exc) from exc
        if response.isError():
            raise self._fail(name, response)
        self.logger.info("Writing tag: %s = %s", name, value)
        echoed = binding.decode(raw)
        self._last_values[name] = echoed
        self._emit_tag_changed(name, echoed)

    def is_connected(self) -> bool:
        return self._connected

    def status_snapshot(self) -> DriverStatus:
        return DriverStatus(
            connected=self._connected, last_error=self._last_error, connected_at=self._connected_at
        )

    def scan(self) -> int:
        """Read every mapped tag once and emit changes. Returns the number of changes."""
        changes = 0
        for name in self.tag_map:
            try:
                value = self.read_tag(name)
            except (DriverConnectionError, TagNotConnectedError) as exc:
                self.logger.debug("scan of %s failed: %s", name, exc)
                continue
            if name not in self._last_values or self._last_values[name] != value:
                previous = self._last_values.get(name)
                self._last_values[name] = value
                self._emit_tag_changed(name, value)
                changes += 1
                if name == ALARM_ACTIVE_TAG and value is True and previous is not True:
                    self._emit_alarm(self._alarm_draft())
        return changes

    def _alarm_draft(self) -> AlarmDraft:
        """Modbus has no alarm channel; the rising edge of Alarm.Active stands in for one."""
        context = {
            tag: self._last_values[tag] for tag in ALARM_CONTEXT_TAGS if tag in self._last_values
        }
        return AlarmDraft(
            code=ALARM_CODE,
            severity="high",
            message=f"{ALARM_ACTIVE_TAG} raised by PLC at {self.host}:{self.port}",
            context=context,
        )

    def _poll_changes(self) -> None:
        if not self.poll_interval_s:
            return
        while not self._halt.wait(self.poll_interval_s):
            self.scan()
