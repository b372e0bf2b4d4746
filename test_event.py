"""
Tests for the Event builder, gating and run modes.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from scheduling.event import (
    Collaborators,
    EvaluationContext,
    Event,
    InvalidOperationError,
)
from scheduling.expression import MalformedExpressionError, ScheduleField
from scheduling.jobs import ExecutionError, ExitStatus, RunMode

UTC = timezone.utc


class FakeRunner:
    """Process runner that records calls instead of spawning commands."""

    def __init__(self, log=None, returncode=0, error=None):
        self.calls = []
        self.log = log if log is not None else []
        self.returncode = returncode
        self.error = error

    def execute(self, command, working_dir=None, mode=RunMode.FOREGROUND):
        self.calls.append((command, working_dir, mode))
        self.log.append("execute")
        if self.error:
            raise self.error
        if mode is RunMode.BACKGROUND:
            return ExitStatus(command=command, mode=mode, pid=1234)
        return ExitStatus(command=command, mode=mode, returncode=self.returncode)


class FakeMailer:
    def __init__(self):
        self.sent = []

    def send(self, subject, body, recipients):
        self.sent.append((subject, body, recipients))


class FakeHttp:
    def __init__(self):
        self.urls = []

    def get(self, url):
        self.urls.append(url)


# ----------------------------------------------------------------------
# Builder
# ----------------------------------------------------------------------


@pytest.mark.parametrize("method,expected", [
    ("every_minute", "0 * * * * *"),
    ("every_five_minutes", "0 */5 * * * *"),
    ("every_ten_minutes", "0 */10 * * * *"),
    ("every_thirty_minutes", "0 0,30 * * * *"),
    ("hourly", "0 0 * * * *"),
    ("daily", "0 0 0 * * *"),
    ("twice_daily", "0 0 1,13 * * *"),
    ("weekly", "0 0 0 * * 0"),
    ("monthly", "0 0 0 1 * *"),
    ("yearly", "0 0 0 1 1 *"),
])
def test_frequency_helpers(method, expected):
    event = Event("true")
    assert getattr(event, method)() is event
    assert event.get_expression() == expected


def test_new_event_runs_every_tick():
    assert Event("true").get_expression() == "* * * * * *"


def test_daily_at_sets_hour_and_minute():
    event = Event("true").daily_at("10:30")
    assert event.expression.get(ScheduleField.MINUTE) == "30"
    assert event.expression.get(ScheduleField.HOUR) == "10"
    assert event.get_expression() == "0 30 10 * * *"


def test_daily_at_without_minutes_and_at_alias():
    assert Event("true").daily_at("7").get_expression() == "0 0 7 * * *"
    assert Event("true").at("19:05").get_expression() == "0 5 19 * * *"


def test_weekly_on_sets_day_hour_and_minute():
    event = Event("true").weekly_on(1, "8:0")
    expression = event.expression
    assert expression.get(ScheduleField.DAY_OF_WEEK) == "1"
    assert expression.get(ScheduleField.HOUR) == "8"
    assert expression.get(ScheduleField.MINUTE) == "0"


def test_day_helpers():
    assert Event("true").weekdays().expression.day_of_week == "1-5"
    assert Event("true").weekends().expression.day_of_week == "0,6"
    assert Event("true").sundays().expression.day_of_week == "0"
    assert Event("true").mondays().expression.day_of_week == "1"
    assert Event("true").saturdays().expression.day_of_week == "6"
    assert Event("true").days(1, 3, 5).expression.day_of_week == "1,3,5"
    assert Event("true").days([2, 4]).expression.day_of_week == "2,4"


def test_helpers_compose():
    event = Event("true").daily_at("6:15").weekdays()
    assert event.get_expression() == "0 15 6 * * 1-5"


def test_cron_accepts_five_and_six_fields():
    assert Event("true").cron("*/5 * * * *").get_expression() == "0 */5 * * * *"
    assert Event("true").cron("30 * * * * *").get_expression() == "30 * * * * *"


@pytest.mark.parametrize("call", [
    lambda e: e.cron("* * x * *"),
    lambda e: e.daily_at("ab:cd"),
    lambda e: e.daily_at("10:30:15"),
    lambda e: e.weekly_on("mon", "8:00"),
    lambda e: e.days("1-x"),
])
def test_malformed_builder_calls_leave_expression_untouched(call):
    event = Event("true").hourly()
    with pytest.raises(MalformedExpressionError):
        call(event)
    assert event.get_expression() == "0 0 * * * *"


def test_timezone_user_output_description():
    event = (
        Event("backup.sh")
        .timezone("Europe/Berlin")
        .user("backup")
        .send_output_to("/tmp/backup.log")
        .description("Nightly backup")
    )
    assert str(event.get_timezone()) == "Europe/Berlin"
    assert event.get_user() == "backup"
    assert event.output == "/tmp/backup.log"
    assert event.get_description() == "Nightly backup"
    assert event.summary_for_display() == "Nightly backup"


def test_unknown_timezone_raises():
    with pytest.raises(InvalidOperationError):
        Event("true").timezone("Mars/Olympus_Mons")


# ----------------------------------------------------------------------
# Command building
# ----------------------------------------------------------------------


def test_build_command_redirects_both_streams():
    assert Event("echo hi").build_command() == "echo hi > /dev/null 2>&1"


def test_build_command_with_user():
    event = Event("echo hi").user("deploy").send_output_to("/tmp/out.log")
    assert event.build_command() == "sudo -u deploy echo hi > /tmp/out.log 2>&1"


def test_build_command_quotes_output_path_and_user():
    event = Event("echo hi").user("ops team").send_output_to("/tmp/my logs/out.log")
    assert event.build_command() == "sudo -u 'ops team' echo hi > '/tmp/my logs/out.log' 2>&1"


def test_summary_falls_back_to_command():
    assert Event("echo hi").summary_for_display() == "echo hi > /dev/null 2>&1"


# ----------------------------------------------------------------------
# Gating
# ----------------------------------------------------------------------


WEDNESDAY = datetime(2024, 1, 3, 12, 0, 0, tzinfo=UTC)
SATURDAY = datetime(2024, 1, 6, 12, 0, 0, tzinfo=UTC)


def test_weekdays_gating():
    event = Event("true").weekdays().timezone("UTC")
    assert event.is_due(WEDNESDAY)
    assert not event.is_due(SATURDAY)


def test_false_filter_is_never_due():
    event = Event("true").timezone("UTC").when(lambda ctx: False)
    assert not event.is_due(WEDNESDAY)
    assert not event.is_due(SATURDAY)


def test_true_reject_is_never_due():
    event = Event("true").timezone("UTC").skip(lambda ctx: True)
    assert not event.is_due(WEDNESDAY)


def test_when_overwrites_previous_filter():
    event = Event("true").timezone("UTC").when(lambda ctx: False).when(lambda ctx: True)
    assert event.is_due(WEDNESDAY)


def test_skip_overwrites_previous_reject():
    event = Event("true").timezone("UTC").skip(lambda ctx: True).skip(lambda ctx: False)
    assert event.is_due(WEDNESDAY)


def test_reject_not_evaluated_when_filter_fails():
    calls = []

    def reject(ctx):
        calls.append(ctx)
        return False

    event = Event("true").when(lambda ctx: False).skip(reject)
    assert not event.filters_pass(WEDNESDAY)
    assert calls == []


def test_predicates_not_evaluated_when_expression_fails():
    calls = []
    event = Event("true").timezone("UTC").weekdays().when(lambda ctx: calls.append(ctx) or True)
    assert not event.is_due(SATURDAY)
    assert calls == []


def test_predicates_receive_evaluation_context():
    seen = []
    event = (
        Event("report.sh")
        .timezone("America/New_York")
        .description("Report")
        .when(lambda ctx: seen.append(ctx) or True)
    )
    assert event.is_due(WEDNESDAY)
    context = seen[0]
    assert isinstance(context, EvaluationContext)
    assert context.instant == WEDNESDAY
    assert context.local_instant.hour == 7
    assert context.command == "report.sh"
    assert context.description == "Report"


# ----------------------------------------------------------------------
# Callbacks
# ----------------------------------------------------------------------


def test_email_output_requires_output_file():
    event = Event("true")
    with pytest.raises(InvalidOperationError):
        event.email_output_to(["a@x.com"])
    assert event.after_callbacks == []


def test_email_output_appends_one_callback():
    event = Event("true").send_output_to("/tmp/out.log")
    event.email_output_to(["a@x.com"])
    assert len(event.after_callbacks) == 1


def test_email_output_sends_file_contents():
    with tempfile.TemporaryDirectory() as temp_dir:
        output = Path(temp_dir) / "out.log"
        output.write_text("all good\n")

        mailer = FakeMailer()
        event = Event("true").send_output_to(str(output)).email_output_to("a@x.com", "b@x.com")
        event.run(FakeRunner(), Collaborators(mail_sender=mailer, http_client=FakeHttp()))

        assert mailer.sent == [("Scheduled Job Output", "all good\n", ["a@x.com", "b@x.com"])]


def test_email_output_tolerates_undecodable_bytes():
    with tempfile.TemporaryDirectory() as temp_dir:
        output = Path(temp_dir) / "out.log"
        output.write_bytes(b"caf\xe9 done\n")

        mailer = FakeMailer()
        http = FakeHttp()
        event = (
            Event("true")
            .send_output_to(str(output))
            .email_output_to("a@x.com")
            .then_ping("https://example.com/done")
        )
        event.run(FakeRunner(), Collaborators(mail_sender=mailer, http_client=http))

        assert mailer.sent == [("Scheduled Job Output", "caf\ufffd done\n", ["a@x.com"])]
        assert http.urls == ["https://example.com/done"]


def test_email_subject_includes_description():
    event = Event("true").description("Nightly backup")
    assert event.email_subject() == "Scheduled Job Output (Nightly backup)"


def test_email_without_mail_sender_raises():
    with tempfile.TemporaryDirectory() as temp_dir:
        output = Path(temp_dir) / "out.log"
        output.write_text("")
        event = Event("true").send_output_to(str(output)).email_output_to(["a@x.com"])
        with pytest.raises(InvalidOperationError):
            event.run(FakeRunner(), Collaborators(mail_sender=None, http_client=FakeHttp()))


def test_then_ping_gets_url():
    http = FakeHttp()
    event = Event("true").then_ping("https://example.com/ping")
    event.run(FakeRunner(), Collaborators(http_client=http))
    assert http.urls == ["https://example.com/ping"]


# ----------------------------------------------------------------------
# Running
# ----------------------------------------------------------------------


def test_run_with_callback_is_foreground_and_calls_back_after_command():
    log = []
    runner = FakeRunner(log=log)
    received = []

    event = Event("echo hi").then(lambda c: (received.append(c), log.append("callback")))
    collaborators = Collaborators(http_client=FakeHttp())
    status = event.run(runner, collaborators, working_dir="/srv")

    assert runner.calls == [("echo hi > /dev/null 2>&1", "/srv", RunMode.FOREGROUND)]
    assert log == ["execute", "callback"]
    assert received == [collaborators]
    assert status.returncode == 0


def test_run_without_callbacks_is_background():
    runner = FakeRunner()
    status = Event("echo hi").run(runner)

    assert runner.calls[0][2] is RunMode.BACKGROUND
    assert status.returncode is None
    assert status.pid == 1234


def test_callbacks_invoked_in_order():
    order = []
    event = Event("true").then(lambda c: order.append(1)).then(lambda c: order.append(2))
    event.run(FakeRunner(), Collaborators(http_client=FakeHttp()))
    assert order == [1, 2]


def test_mode_is_decided_per_run():
    runner = FakeRunner()
    event = Event("true")
    event.run(runner)
    event.then(lambda c: None)
    event.run(runner, Collaborators(http_client=FakeHttp()))
    assert [call[2] for call in runner.calls] == [RunMode.BACKGROUND, RunMode.FOREGROUND]


def test_non_zero_exit_is_returned_and_callbacks_still_run():
    called = []
    event = Event("false").then(lambda c: called.append(True))
    status = event.run(FakeRunner(returncode=3), Collaborators(http_client=FakeHttp()))
    assert status.returncode == 3
    assert called == [True]


def test_execution_error_propagates_without_callbacks():
    called = []
    event = Event("missing").then(lambda c: called.append(True))
    with pytest.raises(ExecutionError):
        event.run(FakeRunner(error=ExecutionError("boom")), Collaborators(http_client=FakeHttp()))
    assert called == []
