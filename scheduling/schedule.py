"""
Schedule: the set of registered events.

Callers register commands with `exec()` and configure them through the
returned Event. A driver (the scheduler service, a system crontab
calling `cron-events run-due`, a test) asks the schedule which events
are due at a given instant and runs them.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from scheduling.event import Collaborators, Event
from scheduling.jobs import ExecutionError, ExitStatus, ProcessRunner

logger = logging.getLogger(__name__)


class Schedule:
    """Ordered collection of events."""

    def __init__(
        self,
        process_runner=None,
        collaborators: Optional[Collaborators] = None,
        working_dir: Optional[str] = None
    ):
        """
        Initialize schedule.

        Args:
            process_runner: Runner used by run_event (default: ProcessRunner())
            collaborators: Services passed to after-run callbacks
            working_dir: Working directory for all commands
        """
        self.process_runner = process_runner or ProcessRunner()
        self.collaborators = collaborators or Collaborators()
        self.working_dir = working_dir
        self._events: List[Event] = []

    def exec(self, command: str, name: Optional[str] = None) -> Event:
        """Register a shell command and return its event for configuration."""
        event = Event(command, name=name)
        return self.add(event)

    def add(self, event: Event) -> Event:
        if event.name and self.get(event.name) is not None:
            raise ValueError(f"Event with name '{event.name}' already exists")
        self._events.append(event)
        return event

    def remove(self, name: str) -> bool:
        initial_len = len(self._events)
        self._events = [e for e in self._events if e.name != name]
        return len(self._events) < initial_len

    def get(self, name: str) -> Optional[Event]:
        for event in self._events:
            if event.name == name:
                return event
        return None

    def events(self) -> List[Event]:
        return list(self._events)

    def due_events(self, instant: datetime) -> List[Event]:
        """Events that should run at the given instant, in registration order."""
        return [event for event in self._events if event.is_due(instant)]

    def run_event(self, event: Event) -> ExitStatus:
        """Run a single event with this schedule's runner and collaborators."""
        logger.info(f"Running event: {event.summary_for_display()}")
        return event.run(
            self.process_runner,
            collaborators=self.collaborators,
            working_dir=self.working_dir
        )

    def run_due_events(self, instant: datetime) -> Dict[str, ExitStatus]:
        """
        Run every event due at the given instant, one after another.

        A failing event is logged and does not stop the remaining ones.

        Returns:
            Mapping of event label to ExitStatus for events that ran
        """
        results = {}
        due = self.due_events(instant)
        if not due:
            logger.debug(f"No events due at {instant.isoformat()}")
            return results

        for event in due:
            label = event.name or event.summary_for_display()
            try:
                results[label] = self.run_event(event)
            except ExecutionError as e:
                logger.error(f"Event '{label}' failed: {e}")
            except Exception as e:
                logger.error(f"Event '{label}' raised exception: {e}", exc_info=True)
        return results

    def __len__(self):
        return len(self._events)

    def __iter__(self):
        return iter(list(self._events))
