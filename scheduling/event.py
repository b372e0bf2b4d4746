"""
Scheduled events.

An Event wraps a shell command together with everything needed to
decide when it runs and what happens afterwards:

- a six-field schedule expression, edited through fluent helpers
  (`daily()`, `weekly_on(1, "8:00")`, `cron("0 */5 * * * *")`, ...)
- an optional evaluation timezone and run-as user
- an output sink (default: discarded)
- one filter (`when`) and one reject (`skip`) predicate
- after-run callbacks (`then`, `email_output_to`, `then_ping`)

Example:
    event = Event("backup.sh").daily_at("02:30").send_output_to("/var/log/backup.log")
    if event.is_due(datetime.now()):
        event.run(ProcessRunner())
"""

import logging
import shlex
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Any, Callable, List, Optional, Union
from zoneinfo import ZoneInfoNotFoundError

from scheduling.evaluator import is_due, localize, resolve_timezone
from scheduling.expression import (
    MalformedExpressionError,
    ScheduleExpression,
    ScheduleField,
    validate_spec,
)
from scheduling.jobs import ExitStatus, RunMode
from scheduling.notifications import RequestsHttpClient

logger = logging.getLogger(__name__)

DISCARD_OUTPUT = "/dev/null"
EMAIL_SUBJECT = "Scheduled Job Output"


class InvalidOperationError(RuntimeError):
    """Raised when a builder call is not allowed in the event's current state."""
    pass


@dataclass(frozen=True)
class EvaluationContext:
    """Read-only view handed to filter and reject predicates."""
    instant: datetime
    local_instant: datetime
    command: str
    description: Optional[str] = None


@dataclass
class Collaborators:
    """Services injected into after-run callbacks."""
    mail_sender: Any = None
    http_client: Any = field(default_factory=RequestsHttpClient)


Predicate = Callable[[EvaluationContext], bool]
Callback = Callable[[Collaborators], Any]


def _parse_time(time: str):
    """Split "H:M" (or "H") into validated hour and minute specs."""
    segments = str(time).strip().split(":")
    if len(segments) > 2:
        raise MalformedExpressionError(f"Time must look like H:M, got {time!r}")
    hour = validate_spec(segments[0])
    minute = validate_spec(segments[1]) if len(segments) == 2 else "0"
    if not (hour.isdigit() and minute.isdigit()):
        raise MalformedExpressionError(f"Time must look like H:M, got {time!r}")
    return str(int(hour)), str(int(minute))


class Event:
    """
    A shell command with a schedule.

    Builder methods return the event itself so calls can be chained.
    Events are configured before being handed to a runner and are not
    modified by `run()`.
    """

    def __init__(self, command: str, name: Optional[str] = None):
        """
        Create a new event.

        Args:
            command: Shell command to execute
            name: Optional identifier used by the service and CLI
        """
        self.command = command
        self.name = name
        self._expression = ScheduleExpression()
        self._timezone: Optional[tzinfo] = None
        self._user: Optional[str] = None
        self._output = DISCARD_OUTPUT
        self._description: Optional[str] = None
        self._filter: Optional[Predicate] = None
        self._reject: Optional[Predicate] = None
        self._after_callbacks: List[Callback] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def expression(self) -> ScheduleExpression:
        return self._expression

    def get_expression(self) -> str:
        return self._expression.to_canonical_string()

    @property
    def output(self) -> str:
        return self._output

    @property
    def after_callbacks(self) -> List[Callback]:
        return list(self._after_callbacks)

    def get_timezone(self) -> Optional[tzinfo]:
        return self._timezone

    def get_user(self) -> Optional[str]:
        return self._user

    def get_description(self) -> Optional[str]:
        return self._description

    # ------------------------------------------------------------------
    # Expression helpers
    # ------------------------------------------------------------------

    def cron(self, expression: Union[str, ScheduleExpression]) -> 'Event':
        """
        Replace the whole expression.

        Accepts a 6-field string (seconds first) or a classic 5-field cron
        string, which runs at second 0.
        """
        if not isinstance(expression, ScheduleExpression):
            expression = ScheduleExpression.parse(expression)
        self._expression = expression
        return self

    def _splice(self, position: ScheduleField, value) -> 'Event':
        self._expression = self._expression.set_field(position, value)
        return self

    def every_minute(self) -> 'Event':
        return self.cron("0 * * * * *")

    def every_five_minutes(self) -> 'Event':
        return self.cron("0 */5 * * * *")

    def every_ten_minutes(self) -> 'Event':
        return self.cron("0 */10 * * * *")

    def every_thirty_minutes(self) -> 'Event':
        return self.cron("0 0,30 * * * *")

    def hourly(self) -> 'Event':
        return self.cron("0 0 * * * *")

    def daily(self) -> 'Event':
        return self.cron("0 0 0 * * *")

    def daily_at(self, time: str) -> 'Event':
        """Run daily at a given time ("10:00", "19:30", "7")."""
        hour, minute = _parse_time(time)
        expression = (
            self._expression
            .set_field(ScheduleField.SECOND, "0")
            .set_field(ScheduleField.HOUR, hour)
            .set_field(ScheduleField.MINUTE, minute)
        )
        self._expression = expression
        return self

    def at(self, time: str) -> 'Event':
        return self.daily_at(time)

    def twice_daily(self) -> 'Event':
        return self.cron("0 0 1,13 * * *")

    def weekly(self) -> 'Event':
        return self.cron("0 0 0 * * 0")

    def weekly_on(self, day, time: str = "0:0") -> 'Event':
        """Run weekly on a given day (0=Sunday) at a given time."""
        day_spec = validate_spec(day)
        self.daily_at(time)
        return self._splice(ScheduleField.DAY_OF_WEEK, day_spec)

    def monthly(self) -> 'Event':
        return self.cron("0 0 0 1 * *")

    def yearly(self) -> 'Event':
        return self.cron("0 0 0 1 1 *")

    def days(self, *days) -> 'Event':
        """
        Restrict the days of the week the command runs on.

        Accepts varargs (`days(1, 3)`) or a single list (`days([1, 3])`).
        """
        if len(days) == 1 and isinstance(days[0], (list, tuple)):
            days = tuple(days[0])
        if not days:
            raise MalformedExpressionError("At least one day is required")
        return self._splice(ScheduleField.DAY_OF_WEEK, ",".join(str(d) for d in days))

    def weekdays(self) -> 'Event':
        return self._splice(ScheduleField.DAY_OF_WEEK, "1-5")

    def weekends(self) -> 'Event':
        return self._splice(ScheduleField.DAY_OF_WEEK, "0,6")

    def sundays(self) -> 'Event':
        return self.days(0)

    def mondays(self) -> 'Event':
        return self.days(1)

    def tuesdays(self) -> 'Event':
        return self.days(2)

    def wednesdays(self) -> 'Event':
        return self.days(3)

    def thursdays(self) -> 'Event':
        return self.days(4)

    def fridays(self) -> 'Event':
        return self.days(5)

    def saturdays(self) -> 'Event':
        return self.days(6)

    # ------------------------------------------------------------------
    # Plain setters
    # ------------------------------------------------------------------

    def timezone(self, timezone: Union[str, tzinfo]) -> 'Event':
        """Set the timezone the schedule is evaluated in."""
        try:
            self._timezone = resolve_timezone(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidOperationError(f"Unknown timezone: {timezone!r}") from e
        return self

    def user(self, user: str) -> 'Event':
        """Set which user the command should run as."""
        self._user = user
        return self

    def send_output_to(self, location: str) -> 'Event':
        """Send combined stdout and stderr of the command to a file."""
        self._output = str(location)
        return self

    def description(self, description: str) -> 'Event':
        self._description = description
        return self

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    def when(self, predicate: Predicate) -> 'Event':
        """Only run when the predicate returns True. Replaces any previous filter."""
        self._filter = predicate
        return self

    def skip(self, predicate: Predicate) -> 'Event':
        """Skip the run when the predicate returns True. Replaces any previous reject."""
        self._reject = predicate
        return self

    def evaluation_context(self, instant: datetime) -> EvaluationContext:
        return EvaluationContext(
            instant=instant,
            local_instant=localize(instant, self._timezone),
            command=self.command,
            description=self._description
        )

    def expression_passes(self, instant: datetime) -> bool:
        return is_due(self._expression, instant, self._timezone)

    def filters_pass(self, instant: datetime) -> bool:
        """
        Check the filter and reject predicates.

        The filter is evaluated first; the reject is not evaluated when the
        filter has already failed.
        """
        context = self.evaluation_context(instant)
        if self._filter is not None and not self._filter(context):
            return False
        if self._reject is not None and self._reject(context):
            return False
        return True

    def is_due(self, instant: datetime) -> bool:
        """
        Determine whether the event should run at the given instant.

        Predicates are only evaluated when the expression matches.
        """
        return self.expression_passes(instant) and self.filters_pass(instant)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def then(self, callback: Callback) -> 'Event':
        """Register a callback to run after the command finishes."""
        self._after_callbacks.append(callback)
        return self

    def email_output_to(self, *addresses) -> 'Event':
        """
        E-mail the command output after each run.

        Raises:
            InvalidOperationError: If output is still being discarded
        """
        if not self._output or self._output == DISCARD_OUTPUT:
            raise InvalidOperationError("Must direct output to a file in order to e-mail results.")

        if len(addresses) == 1 and isinstance(addresses[0], (list, tuple)):
            addresses = addresses[0]
        recipients = list(addresses)

        def email_output(collaborators: Collaborators):
            self._email_output(collaborators.mail_sender, recipients)

        return self.then(email_output)

    def _email_output(self, mail_sender, recipients: List[str]):
        if mail_sender is None:
            raise InvalidOperationError("No mail sender configured for e-mailing output.")
        body = Path(self._output).read_bytes().decode("utf-8", errors="replace")
        mail_sender.send(self.email_subject(), body, recipients)

    def email_subject(self) -> str:
        if self._description:
            return f"{EMAIL_SUBJECT} ({self._description})"
        return EMAIL_SUBJECT

    def then_ping(self, url: str) -> 'Event':
        """Register a callback that pings a URL after the command finishes."""
        def ping(collaborators: Collaborators):
            collaborators.http_client.get(url)

        return self.then(ping)

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def build_command(self) -> str:
        """
        Final shell command with output redirection and user switch.

        The output path and user are shell-quoted; the command itself is
        passed through as written.
        """
        command = f"{self.command} > {shlex.quote(self._output)} 2>&1"
        if self._user:
            return f"sudo -u {shlex.quote(self._user)} {command}"
        return command

    def run(
        self,
        process_runner,
        collaborators: Optional[Collaborators] = None,
        working_dir: Optional[str] = None
    ) -> ExitStatus:
        """
        Run the command.

        With after-run callbacks the command runs in the foreground and the
        callbacks are invoked in order once it exits. Without callbacks it
        is started in the background and not waited for.

        Args:
            process_runner: Object with execute(command, working_dir, mode)
            collaborators: Services passed to callbacks
            working_dir: Working directory for the command

        Returns:
            ExitStatus reported by the process runner
        """
        callbacks = list(self._after_callbacks)
        command = self.build_command()

        if not callbacks:
            return process_runner.execute(command, working_dir, RunMode.BACKGROUND)

        status = process_runner.execute(command, working_dir, RunMode.FOREGROUND)
        self._call_after_callbacks(callbacks, collaborators or Collaborators())
        return status

    def _call_after_callbacks(self, callbacks: List[Callback], collaborators: Collaborators):
        for callback in callbacks:
            callback(collaborators)
        logger.debug(f"Invoked {len(callbacks)} callback(s) for '{self.summary_for_display()}'")

    def summary_for_display(self) -> str:
        if self._description:
            return self._description
        return self.build_command()

    def __repr__(self):
        return f"Event(command={self.command!r}, expression='{self._expression}')"
