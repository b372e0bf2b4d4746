"""
Scheduler configuration management.

Handles loading, saving, and validating the JSON configuration file
that declares scheduled events, and turns it into a Schedule.
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, List, Any

from dotenv import load_dotenv

from scheduling.event import Collaborators, Event
from scheduling.jobs import ProcessRunner
from scheduling.notifications import RequestsHttpClient, SmtpMailSender
from scheduling.schedule import Schedule

load_dotenv()

logger = logging.getLogger(__name__)

DAY_NUMBERS = {
    'sunday': 0, 'monday': 1, 'tuesday': 2, 'wednesday': 3,
    'thursday': 4, 'friday': 5, 'saturday': 6
}

# Schedule types that map directly onto an Event helper without arguments
SIMPLE_SCHEDULES = {
    'every_minute': Event.every_minute,
    'every_five_minutes': Event.every_five_minutes,
    'every_ten_minutes': Event.every_ten_minutes,
    'every_thirty_minutes': Event.every_thirty_minutes,
    'hourly': Event.hourly,
    'twice_daily': Event.twice_daily,
    'monthly': Event.monthly,
    'yearly': Event.yearly,
}

SCHEDULE_TYPES = sorted(set(SIMPLE_SCHEDULES) | {'cron', 'daily', 'weekly'})


def _get_data_dir() -> Path:
    """Get the base directory for scheduler files."""
    data_dir = os.environ.get('CRON_EVENTS_HOME')
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".cron_events"


def _get_default_log_file() -> str:
    """Get default log file path from environment or default."""
    if os.environ.get('CRON_EVENTS_LOG_DIR'):
        return str(Path(os.environ['CRON_EVENTS_LOG_DIR']).expanduser() / "scheduler.log")
    return str(_get_data_dir() / "logs" / "scheduler.log")


def parse_day(day) -> str:
    """Convert a day name ("monday") or number into a day-of-week spec."""
    if isinstance(day, int):
        return str(day)
    name = str(day).strip().lower()
    if name in DAY_NUMBERS:
        return str(DAY_NUMBERS[name])
    return name


@dataclass
class ScheduleConfig:
    """Schedule timing configuration."""
    type: str  # see SCHEDULE_TYPES
    time: Optional[str] = None  # H:MM for daily/weekly
    day: Optional[Any] = None  # monday, tuesday, ... or 0-6 for weekly
    days: Optional[List[Any]] = None  # restrict days of week after applying type
    cron: Optional[str] = None  # 5 or 6 field expression


@dataclass
class EventConfig:
    """
    Individual event configuration.

    Events are command-based - the scheduler doesn't know or care what
    the command does. It just executes it on the specified schedule.
    """
    name: str
    command: str
    schedule: ScheduleConfig
    enabled: bool = True
    timezone: Optional[str] = None
    user: Optional[str] = None
    output: Optional[str] = None
    description: Optional[str] = None
    email_output_to: List[str] = field(default_factory=list)
    ping: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventConfig':
        return cls(
            name=data['name'],
            command=data['command'],
            schedule=ScheduleConfig(**data['schedule']),
            enabled=data.get('enabled', True),
            timezone=data.get('timezone'),
            user=data.get('user'),
            output=data.get('output'),
            description=data.get('description'),
            email_output_to=list(data.get('email_output_to', [])),
            ping=list(data.get('ping', []))
        )

    def build_event(self) -> Event:
        """
        Create an Event from this configuration.

        Raises:
            MalformedExpressionError: On bad schedule syntax
            InvalidOperationError: On an unknown timezone or e-mail without output file
            ValueError: On an unknown schedule type
        """
        event = Event(self.command, name=self.name)
        schedule = self.schedule

        if schedule.type == 'cron':
            event.cron(schedule.cron)
        elif schedule.type == 'daily':
            if schedule.time:
                event.daily_at(schedule.time)
            else:
                event.daily()
        elif schedule.type == 'weekly':
            if schedule.day is not None or schedule.time:
                day = parse_day(schedule.day if schedule.day is not None else 0)
                event.weekly_on(day, schedule.time or "0:0")
            else:
                event.weekly()
        elif schedule.type in SIMPLE_SCHEDULES:
            SIMPLE_SCHEDULES[schedule.type](event)
        else:
            raise ValueError(f"Unknown schedule type '{schedule.type}'")

        if schedule.days:
            event.days([parse_day(d) for d in schedule.days])

        if self.timezone:
            event.timezone(self.timezone)
        if self.user:
            event.user(self.user)
        if self.output:
            event.send_output_to(self.output)
        if self.description:
            event.description(self.description)
        if self.email_output_to:
            event.email_output_to(self.email_output_to)
        for url in self.ping:
            event.then_ping(url)

        return event


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = None  # Set dynamically in __post_init__

    def __post_init__(self):
        if self.file is None:
            self.file = _get_default_log_file()


@dataclass
class MailConfig:
    """SMTP settings for e-mailed output."""
    host: str = "localhost"
    port: int = 25
    sender: str = "cron-events@localhost"
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = False
    use_ssl: bool = False

    def __post_init__(self):
        # Environment wins over the file so secrets can stay out of it
        self.host = os.environ.get('CRON_EVENTS_SMTP_HOST', self.host)
        self.port = int(os.environ.get('CRON_EVENTS_SMTP_PORT', self.port))
        self.sender = os.environ.get('CRON_EVENTS_SMTP_SENDER', self.sender)
        self.username = os.environ.get('CRON_EVENTS_SMTP_USER', self.username)
        self.password = os.environ.get('CRON_EVENTS_SMTP_PASSWORD', self.password)


@dataclass
class ServiceConfig:
    """Driver loop settings."""
    resolution: str = "minute"  # 'minute' or 'second'
    max_workers: int = 5
    command_timeout: Optional[int] = None  # seconds, foreground commands only


class SchedulerConfig:
    """
    Scheduler configuration manager.

    Loads and manages scheduler configuration from JSON file,
    with support for validation and defaults.

    Configuration path priority:
    1. Explicit config_path argument
    2. CRON_EVENTS_CONFIG environment variable
    3. Default: ~/.cron_events/config.json
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize scheduler configuration.

        Args:
            config_path: Path to configuration file. If None, uses env var or default.
        """
        if config_path:
            self.config_path = Path(config_path).expanduser()
        elif os.environ.get('CRON_EVENTS_CONFIG'):
            self.config_path = Path(os.environ['CRON_EVENTS_CONFIG']).expanduser()
        else:
            self.config_path = _get_data_dir() / "config.json"
        self.working_dir: Optional[str] = None
        self.events: List[EventConfig] = []
        self.logging: LoggingConfig = LoggingConfig()
        self.mail: MailConfig = MailConfig()
        self.service: ServiceConfig = ServiceConfig()

        if self.config_path.exists():
            self.load()
        else:
            logger.info(f"No config found at {self.config_path}, using defaults")

    def load(self):
        """Load configuration from JSON file."""
        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)

            self.working_dir = data.get('working_dir')
            self.events = [EventConfig.from_dict(e) for e in data.get('events', [])]

            if 'logging' in data:
                self.logging = LoggingConfig(**data['logging'])
            if 'mail' in data:
                self.mail = MailConfig(**data['mail'])
            if 'service' in data:
                self.service = ServiceConfig(**data['service'])

            logger.info(f"Loaded {len(self.events)} event(s) from {self.config_path}")

        except Exception as e:
            logger.error(f"Failed to load config from {self.config_path}: {e}")
            raise

    def to_dict(self) -> Dict[str, Any]:
        mail = asdict(self.mail)
        mail.pop('password', None)
        return {
            'working_dir': self.working_dir,
            'events': [asdict(event) for event in self.events],
            'logging': asdict(self.logging),
            'mail': mail,
            'service': asdict(self.service)
        }

    def save(self):
        """Save configuration to JSON file. The SMTP password is never written."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Saved configuration to {self.config_path}")

    def add_event(self, event: EventConfig):
        """Add a new event to configuration."""
        if any(e.name == event.name for e in self.events):
            raise ValueError(f"Event with name '{event.name}' already exists")

        self.events.append(event)
        logger.info(f"Added event: {event.name}")

    def remove_event(self, name: str) -> bool:
        """
        Remove an event by name.

        Returns:
            True if event was removed, False if not found
        """
        initial_len = len(self.events)
        self.events = [e for e in self.events if e.name != name]

        if len(self.events) < initial_len:
            logger.info(f"Removed event: {name}")
            return True
        return False

    def get_event(self, name: str) -> Optional[EventConfig]:
        for event in self.events:
            if event.name == name:
                return event
        return None

    def update_event(self, name: str, **kwargs):
        """Update event configuration."""
        event = self.get_event(name)
        if not event:
            raise ValueError(f"Event '{name}' not found")

        for key, value in kwargs.items():
            if hasattr(event, key):
                setattr(event, key, value)

        logger.info(f"Updated event: {name}")

    def enable_event(self, name: str):
        self.update_event(name, enabled=True)

    def disable_event(self, name: str):
        self.update_event(name, enabled=False)

    def get_enabled_events(self) -> List[EventConfig]:
        return [e for e in self.events if e.enabled]

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        names = set()

        for event in self.events:
            if event.name in names:
                errors.append(f"Event {event.name}: duplicate name")
            names.add(event.name)

            if not event.command or not event.command.strip():
                errors.append(f"Event {event.name}: 'command' cannot be empty")

            schedule = event.schedule
            if schedule.type not in SCHEDULE_TYPES:
                errors.append(
                    f"Event {event.name}: unknown schedule type '{schedule.type}' "
                    f"(expected one of: {', '.join(SCHEDULE_TYPES)})"
                )
                continue
            if schedule.type == 'cron' and not schedule.cron:
                errors.append(f"Event {event.name}: 'cron' schedule requires 'cron' expression")
                continue

            try:
                event.build_event()
            except (ValueError, RuntimeError) as e:
                errors.append(f"Event {event.name}: {e}")

        if self.service.resolution not in ('minute', 'second'):
            errors.append("Service: 'resolution' must be 'minute' or 'second'")
        if self.service.max_workers <= 0:
            errors.append("Service: 'max_workers' must be positive")

        return errors

    def build_schedule(self, process_runner=None, collaborators: Optional[Collaborators] = None) -> Schedule:
        """
        Create a Schedule holding every enabled event.

        Raises:
            ValueError: If the configuration does not validate
        """
        errors = self.validate()
        if errors:
            for error in errors:
                logger.error(f"  - {error}")
            raise ValueError(f"Invalid configuration: {'; '.join(errors)}")

        if process_runner is None:
            process_runner = ProcessRunner(timeout=self.service.command_timeout)
        if collaborators is None:
            collaborators = Collaborators(
                mail_sender=SmtpMailSender.from_config(self.mail),
                http_client=RequestsHttpClient()
            )

        schedule = Schedule(
            process_runner=process_runner,
            collaborators=collaborators,
            working_dir=self.working_dir
        )
        for event_config in self.get_enabled_events():
            schedule.add(event_config.build_event())

        logger.info(f"Built schedule with {len(schedule)} event(s)")
        return schedule

    def __repr__(self):
        return f"SchedulerConfig(events={len(self.events)}, path={self.config_path})"
