"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

import pytest

from hal.plc.SimulatorPlc import FAULT_CATALOGUE, SimulatorPlc
from shared.errors import DriverConnectionError, TagNotConnectedError, TagNotFoundError
from shared.interfaces.hal import AlarmDraft


def _plc(**kwargs: object) -> SimulatorPlc:
    kwargs.setdefault("tick_interval_s", None)
    kwargs.setdefault("completion_pulse_s", 0)
    kwargs.setdefault("fault_rate_pct", 0)
    kwargs.setdefault("recovery_s", None)
    kwargs.setdefault("seed", 42)
    return SimulatorPlc(**kwargs)  # type: ignore[arg-type]


def test_requires_connection_for_io() -> None:
    plc = _plc()
    with pytest.raises(TagNotConnectedError):
        plc.read_tag("Line.State")
    with pytest.raises(TagNotConnectedError):
        plc.write_tag("Line.RunCmd", True)
    plc.disconnect()


def test_connect_exposes_default_tags() -> None:
    plc = _plc()
    plc.connect()
    plc.connect()
    assert plc.is_connected()
    assert plc.read_tag("Line.State") == 1
    assert plc.read_tag("Quality.LastResult") == "pass"
    assert plc.status_snapshot().connected_at is not None
    with pytest.raises(TagNotFoundError):
        plc.read_tag("Station99.CycleTimeMs")


def test_unreachable_simulator_raises_connection_error() -> None:
    plc = _plc(fail_connect=True)
    with pytest.raises(DriverConnectionError):
        plc.connect()
    assert not plc.is_connected()
    assert plc.status_snapshot().last_error == "simulated PLC unreachable"


def test_write_echoes_and_run_command_drives_line_state() -> None:
    plc = _plc()
    changes: list[tuple[str, object]] = []
    plc.add_tag_listener(lambda n, v: changes.append((n, v)))
    plc.connect()

    plc.write_tag("Line.RunCmd", False)

    assert changes == [("Line.RunCmd", False), ("Line.State", 0)]
    assert plc.peek("Line.State") == 0

    plc.write_tag("Line.RunCmd", True)
    assert plc.peek("Line.State") == 1


def test_emergency_stop_halts_line() -> None:
    plc = _plc()
    plc.connect()
    plc.write_tag("Safety.EmergencyStop", True)
    assert plc.peek("Line.State") == 0


def test_reset_recovers_from_fault() -> None:
    plc = _plc()
    plc.connect()
    plc.inject_fault(0)
    assert plc.peek("Line.State") == 3
    plc.write_tag("Line.RunCmd", True)
    assert plc.peek("Line.State") == 3

    plc.write_tag("Line.Reset", True)
    assert plc.peek("Line.State") == 1
    assert plc.peek("Alarm.Active") is False


def test_tick_completes_a_part_with_result_before_pulse() -> None:
    plc = _plc()
    changes: list[tuple[str, object]] = []
    plc.add_tag_listener(lambda n, v: changes.append((n, v)))
    plc.connect()

    plc.tick()

    names = [n for n, _ in changes]
    assert plc.peek("Part.Counter") == 1
    assert names.index("Quality.LastResult") < names.index("Part.Completed")
    assert ("Part.Completed", True) in changes
    assert changes[names.index("Part.Completed") + 1] == ("Part.Completed", False)
    assert plc.peek("Quality.PassCount") + plc.peek("Quality.FailCount") == 1  # type: ignore[operator]
    assert 800 <= plc.peek("Station01.CycleTimeMs") < 900  # type: ignore[operator]


def test_stopped_line_does_not_produce_parts() -> None:
    plc = _plc()
    plc.connect()
    plc.write_tag("Line.Stop", True)
    plc.tick()
    assert plc.peek("Part.Counter") == 0


def test_process_variables_stay_in_bounds() -> None:
    plc = _plc()
    plc.connect()
    for _ in range(200):
        plc.tick()
    assert 30.0 <= plc.peek("Process.Humidity") <= 60.0  # type: ignore[operator]


def test_inject_fault_emits_alarm_from_catalogue() -> None:
    plc = _plc()
    alarms: list[AlarmDraft] = []
    plc.add_alarm_listener(alarms.append)
    plc.connect()

    draft = plc.inject_fault(1, severity="critical")

    assert alarms == [draft]
    assert (draft.code, draft.message) == FAULT_CATALOGUE[1]
    assert draft.severity == "critical"
    assert draft.station in (1, 2)
    assert set(draft.context) == {"cycleTime", "temperature", "pressure"}
    assert plc.peek("Alarm.Count") == 1


def test_certain_fault_rate_faults_every_tick() -> None:
    plc = _plc(fault_rate_pct=100)
    alarms: list[AlarmDraft] = []
    plc.add_alarm_listener(alarms.append)
    plc.connect()
    plc.tick()
    assert len(alarms) == 1
    assert plc.peek("Line.State") == 3


def test_listener_errors_are_contained() -> None:
    plc = _plc()
    seen: list[str] = []

    def broken(name: str, value: object) -> None:
        raise RuntimeError("listener bug")

    plc.add_tag_listener(broken)
    plc.add_tag_listener(lambda n, v: seen.append(n))
    plc.connect()
    plc.write_tag("Process.Pressure", 6.0)
    assert seen == ["Process.Pressure"]


def test_tick_loop_is_a_no_op_without_interval() -> None:
    plc = _plc()
    plc.connect()
    plc._run()
    assert plc.peek("Part.Counter") == 0
