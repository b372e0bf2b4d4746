"""
cron-events

Fluent scheduling of shell commands on six-field cron expressions.

Features:
- Fluent builder (hourly, daily_at, weekly_on, weekdays, cron, ...)
- Second-granular expressions with timezone-aware evaluation
- Traditional cron day-of-month / day-of-week semantics
- Filter and reject predicates
- After-run callbacks (e-mail output, ping URLs, custom callables)
- APScheduler-driven service and JSON configuration
"""

from scheduling.expression import MalformedExpressionError, ScheduleExpression, ScheduleField
from scheduling.evaluator import is_due
from scheduling.event import Collaborators, EvaluationContext, Event, InvalidOperationError
from scheduling.jobs import ExecutionError, ExitStatus, ProcessRunner, RunMode
from scheduling.schedule import Schedule

__version__ = "0.1.0"
__all__ = [
    "ScheduleExpression",
    "ScheduleField",
    "MalformedExpressionError",
    "is_due",
    "Event",
    "EvaluationContext",
    "Collaborators",
    "InvalidOperationError",
    "ProcessRunner",
    "RunMode",
    "ExitStatus",
    "ExecutionError",
    "Schedule",
]
