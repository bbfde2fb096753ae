"""Version: 0.3.0
License: MIT
"""

from __future__ import annotations

from src.core.logic.line_state import LineStateMachine
from src.core.logic.models import LineState


def test_tag_values_map_to_states() -> None:
    machine = LineStateMachine()
    assert machine.apply_tag(1) == LineState.RUNNING
    assert machine.apply_tag("2") == LineState.PAUSED
    assert machine.apply_tag(0) == LineState.STOPPED


def test_invalid_values_are_ignored() -> None:
    machine = LineStateMachine(LineState.RUNNING)
    assert machine.apply_tag(7) is None
    assert machine.apply_tag("fast") is None
    assert machine.apply_tag(True) is None
    assert machine.state == LineState.RUNNING


def test_alarm_faults_and_last_clear_resumes_previous_state() -> None:
    machine = LineStateMachine(LineState.RUNNING)

    assert machine.alarm_raised("a1") == LineState.FAULT
    assert machine.alarm_raised("a2") is None
    assert machine.active_alarm_count == 2

    assert machine.alarm_cleared("a1") is None
    assert machine.state == LineState.FAULT
    assert machine.alarm_cleared("a2") == LineState.RUNNING


def test_fault_tag_remembers_state_to_resume() -> None:
    machine = LineStateMachine(LineState.PAUSED)
    machine.apply_tag(3)
    machine.alarm_raised("a1")
    assert machine.alarm_cleared("a1") == LineState.PAUSED


def test_clear_after_operator_stop_keeps_stopped() -> None:
    machine = LineStateMachine(LineState.RUNNING)
    machine.alarm_raised("a1")
    machine.apply_tag(0)
    assert machine.alarm_cleared("a1") is None
    assert machine.state == LineState.STOPPED
