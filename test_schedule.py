"""
Tests for the Schedule registry.
"""

from datetime import datetime, timezone

import pytest

from scheduling.event import Collaborators
from scheduling.jobs import ExecutionError, ExitStatus, RunMode
from scheduling.schedule import Schedule

UTC = timezone.utc
WEDNESDAY_NOON = datetime(2024, 1, 3, 12, 0, 0, tzinfo=UTC)


class RecordingRunner:
    def __init__(self, failing=()):
        self.commands = []
        self.failing = failing

    def execute(self, command, working_dir=None, mode=RunMode.FOREGROUND):
        self.commands.append((command, working_dir, mode))
        if any(command.startswith(f) for f in self.failing):
            raise ExecutionError(f"cannot run {command}")
        return ExitStatus(command=command, mode=mode, returncode=0)


def build_schedule(runner):
    schedule = Schedule(process_runner=runner, collaborators=Collaborators(), working_dir="/srv")
    schedule.exec("noon.sh", name="noon").daily_at("12:00").timezone("UTC")
    schedule.exec("weekend.sh", name="weekend").weekends().timezone("UTC")
    schedule.exec("always.sh", name="always").every_minute().timezone("UTC")
    return schedule


def test_exec_registers_events_in_order():
    schedule = build_schedule(RecordingRunner())
    assert [e.name for e in schedule] == ["noon", "weekend", "always"]
    assert len(schedule) == 3


def test_duplicate_names_are_rejected():
    schedule = build_schedule(RecordingRunner())
    with pytest.raises(ValueError):
        schedule.exec("other.sh", name="noon")


def test_due_events():
    schedule = build_schedule(RecordingRunner())
    due = schedule.due_events(WEDNESDAY_NOON)
    assert [e.name for e in due] == ["noon", "always"]


def test_run_due_events_uses_runner_and_working_dir():
    runner = RecordingRunner()
    schedule = build_schedule(runner)
    results = schedule.run_due_events(WEDNESDAY_NOON)

    assert list(results) == ["noon", "always"]
    assert [c[0].split(" ")[0] for c in runner.commands] == ["noon.sh", "always.sh"]
    assert all(c[1] == "/srv" for c in runner.commands)


def test_failing_event_does_not_stop_the_rest():
    runner = RecordingRunner(failing=("noon.sh",))
    schedule = build_schedule(runner)
    results = schedule.run_due_events(WEDNESDAY_NOON)

    assert list(results) == ["always"]
    assert len(runner.commands) == 2


def test_nothing_due():
    runner = RecordingRunner()
    schedule = Schedule(process_runner=runner)
    schedule.exec("never.sh", name="never").cron("0 0 0 1 1 *").timezone("UTC")
    assert schedule.run_due_events(WEDNESDAY_NOON) == {}
    assert runner.commands == []


def test_get_and_remove():
    schedule = build_schedule(RecordingRunner())
    assert schedule.get("weekend").command == "weekend.sh"
    assert schedule.remove("weekend") is True
    assert schedule.remove("weekend") is False
    assert schedule.get("weekend") is None
