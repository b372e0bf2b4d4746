"""
Command-line interface for cron-events.

Provides CLI commands for:
- Starting the scheduler service
- Adding/removing/enabling/disabling events
- Listing events and checking which ones are due
- Running a single event or all due events once (for system crontab use)
"""

import argparse
import logging
import sys
import time
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from scheduling.config import SCHEDULE_TYPES, EventConfig, ScheduleConfig, SchedulerConfig
from scheduling.service import SchedulerService

load_dotenv()

logger = logging.getLogger(__name__)


def setup_logging(log_file: str = None, verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)


def _parse_instant(text: str) -> datetime:
    """Parse an ISO timestamp; naive values are local time. Defaults to the current minute."""
    if not text:
        return datetime.now().astimezone().replace(second=0, microsecond=0)
    return datetime.fromisoformat(text)


def cmd_start(args):
    """Start the scheduler."""
    config = SchedulerConfig(args.config)
    setup_logging(log_file=args.log_file or config.logging.file, verbose=args.verbose)

    try:
        service = SchedulerService(
            config_path=args.config,
            foreground=args.foreground,
            max_workers=args.workers
        )

        if args.foreground:
            logger.info("Running in foreground mode. Press Ctrl+C to stop.")
            service.start()
        else:
            service.start()
            logger.info("Scheduler is running in the background")
            try:
                while service.is_running():
                    time.sleep(1)
            except (KeyboardInterrupt, SystemExit):
                logger.info("Shutting down...")
                service.stop()

    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}", exc_info=True)
        sys.exit(1)


def cmd_list(args):
    """List configured events with their expressions."""
    setup_logging(verbose=args.verbose)

    try:
        config = SchedulerConfig(args.config)
        print(f"=== Configured Events ({len(config.events)}) ===\n")

        for event_config in config.events:
            status = "✓" if event_config.enabled else "✗"
            print(f"{status} {event_config.name}")
            try:
                event = event_config.build_event()
            except (ValueError, RuntimeError) as e:
                print(f"    Invalid: {e}\n")
                continue
            print(f"    Expression: {event.get_expression()}")
            print(f"    Command: {event.build_command()}")
            if event_config.timezone:
                print(f"    Timezone: {event_config.timezone}")
            if event_config.description:
                print(f"    Description: {event_config.description}")
            if event.after_callbacks:
                print(f"    Callbacks: {len(event.after_callbacks)}")
            print()

    except Exception as e:
        logger.error(f"Failed to list events: {e}")
        sys.exit(1)


def cmd_due(args):
    """Show which events are due at an instant."""
    setup_logging(verbose=args.verbose)

    try:
        instant = _parse_instant(args.at)
        schedule = SchedulerConfig(args.config).build_schedule()
        due = schedule.due_events(instant)

        print(f"\nEvents due at {instant.isoformat()}: {len(due)}\n")
        for event in due:
            print(f"  {event.name}: {event.summary_for_display()}")
        print()

    except Exception as e:
        logger.error(f"Failed to evaluate events: {e}")
        sys.exit(1)


def cmd_run(args):
    """Run one event now, regardless of its schedule."""
    setup_logging(verbose=args.verbose)

    try:
        schedule = SchedulerConfig(args.config).build_schedule()
        event = schedule.get(args.name)
        if event is None:
            logger.error(f"Event '{args.name}' not found")
            sys.exit(1)

        status = schedule.run_event(event)
        if status.returncode is None:
            logger.info(f"Event '{args.name}' started in background (pid: {status.pid})")
        else:
            logger.info(f"Event '{args.name}' finished with exit code {status.returncode}")
            if status.returncode != 0:
                sys.exit(status.returncode)

    except Exception as e:
        logger.error(f"Failed to run event: {e}", exc_info=args.verbose)
        sys.exit(1)


def cmd_run_due(args):
    """Run every event due now. Meant to be called from a system crontab every minute."""
    setup_logging(verbose=args.verbose)

    try:
        instant = _parse_instant(args.at).replace(second=0)
        schedule = SchedulerConfig(args.config).build_schedule()
        results = schedule.run_due_events(instant)
        logger.info(f"Ran {len(results)} due event(s)")

    except Exception as e:
        logger.error(f"Failed to run due events: {e}")
        sys.exit(1)


def cmd_add(args):
    """Add a new event."""
    setup_logging(verbose=args.verbose)

    try:
        config = SchedulerConfig(args.config)

        schedule = ScheduleConfig(
            type=args.type,
            time=args.time,
            day=args.day,
            days=args.days,
            cron=args.cron
        )
        event_config = EventConfig(
            name=args.name,
            command=args.command,
            schedule=schedule,
            timezone=args.timezone,
            user=args.user,
            output=args.output,
            description=args.description,
            email_output_to=args.email or [],
            ping=args.ping or []
        )
        # Fail early on bad syntax instead of at scheduler start
        event_config.build_event()

        config.add_event(event_config)
        config.save()

        logger.info(f"Added event '{args.name}'")
        logger.info("Restart scheduler for changes to take effect")

    except Exception as e:
        logger.error(f"Failed to add event: {e}")
        sys.exit(1)


def cmd_remove(args):
    """Remove an event."""
    setup_logging(verbose=args.verbose)

    try:
        config = SchedulerConfig(args.config)

        if config.remove_event(args.name):
            config.save()
            logger.info(f"Removed event '{args.name}'")
            logger.info("Restart scheduler for changes to take effect")
        else:
            logger.error(f"Event '{args.name}' not found")
            sys.exit(1)

    except Exception as e:
        logger.error(f"Failed to remove event: {e}")
        sys.exit(1)


def cmd_enable(args):
    """Enable an event."""
    setup_logging(verbose=args.verbose)

    try:
        config = SchedulerConfig(args.config)
        config.enable_event(args.name)
        config.save()
        logger.info(f"Enabled event '{args.name}'")

    except Exception as e:
        logger.error(f"Failed to enable event: {e}")
        sys.exit(1)


def cmd_disable(args):
    """Disable an event."""
    setup_logging(verbose=args.verbose)

    try:
        config = SchedulerConfig(args.config)
        config.disable_event(args.name)
        config.save()
        logger.info(f"Disabled event '{args.name}'")

    except Exception as e:
        logger.error(f"Failed to disable event: {e}")
        sys.exit(1)


def cmd_init(args):
    """Initialize scheduler configuration."""
    setup_logging(verbose=args.verbose)

    try:
        config = SchedulerConfig(args.config)
        if config.config_path.exists():
            logger.warning(f"Configuration already exists at: {config.config_path}")
            return
        config.save()

        logger.info(f"Initialized scheduler configuration at: {config.config_path}")

        log_dir = Path(config.logging.file).expanduser().parent
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created log directory: {log_dir}")

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        sys.exit(1)


def cmd_show_config(args):
    """Show current configuration."""
    setup_logging(verbose=args.verbose)

    try:
        config = SchedulerConfig(args.config)

        print(f"\nConfiguration file: {config.config_path}")
        print(f"Working directory: {config.working_dir or '(current)'}")
        print(f"\nEvents: {len(config.events)} ({len(config.get_enabled_events())} enabled)")
        print(f"Logging level: {config.logging.level}")
        print(f"Log file: {config.logging.file}")
        print(f"SMTP server: {config.mail.host}:{config.mail.port}")
        print(f"Resolution: {config.service.resolution}")
        print(f"Max workers: {config.service.max_workers}")

        errors = config.validate()
        if errors:
            print("\nValidation errors:")
            for error in errors:
                print(f"  - {error}")

    except Exception as e:
        logger.error(f"Failed to show config: {e}")
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="cron-events - Run shell commands on cron-style schedules",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to scheduler configuration file'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Start command
    start_parser = subparsers.add_parser('start', help='Start the scheduler')
    start_parser.add_argument(
        '--foreground',
        action='store_true',
        help='Run in foreground (blocking mode)'
    )
    start_parser.add_argument(
        '--workers',
        type=int,
        help='Maximum concurrent workers (default: from config)'
    )
    start_parser.add_argument(
        '--log-file',
        type=str,
        help='Log file path'
    )
    start_parser.set_defaults(func=cmd_start)

    # List command
    list_parser = subparsers.add_parser('list', help='List all events')
    list_parser.set_defaults(func=cmd_list)

    # Due command
    due_parser = subparsers.add_parser('due', help='Show events due at an instant')
    due_parser.add_argument('--at', type=str, help='ISO timestamp (default: now)')
    due_parser.set_defaults(func=cmd_due)

    # Run command
    run_parser = subparsers.add_parser('run', help='Run one event now')
    run_parser.add_argument('name', help='Event name')
    run_parser.set_defaults(func=cmd_run)

    # Run-due command
    run_due_parser = subparsers.add_parser('run-due', help='Run all events due now')
    run_due_parser.add_argument('--at', type=str, help='ISO timestamp (default: now)')
    run_due_parser.set_defaults(func=cmd_run_due)

    # Add command
    add_parser = subparsers.add_parser('add', help='Add a new event')
    add_parser.add_argument('name', help='Event name')
    add_parser.add_argument('--command', required=True, help='Shell command to execute')
    add_parser.add_argument('--type', required=True, choices=SCHEDULE_TYPES, help='Schedule type')
    add_parser.add_argument('--cron', type=str, help='Cron expression (5 or 6 fields)')
    add_parser.add_argument('--time', type=str, help='Time (H:MM) for daily/weekly')
    add_parser.add_argument('--day', type=str, help='Day of week for weekly')
    add_parser.add_argument('--days', nargs='+', help='Restrict to these days of week')
    add_parser.add_argument('--timezone', type=str, help='IANA timezone for evaluation')
    add_parser.add_argument('--user', type=str, help='Run the command as this user')
    add_parser.add_argument('--output', type=str, help='File receiving command output')
    add_parser.add_argument('--description', type=str, help='Human-readable description')
    add_parser.add_argument('--email', nargs='+', help='E-mail output to these addresses')
    add_parser.add_argument('--ping', nargs='+', help='URLs to ping after each run')
    add_parser.set_defaults(func=cmd_add)

    # Remove command
    remove_parser = subparsers.add_parser('remove', help='Remove an event')
    remove_parser.add_argument('name', help='Event name to remove')
    remove_parser.set_defaults(func=cmd_remove)

    # Enable command
    enable_parser = subparsers.add_parser('enable', help='Enable an event')
    enable_parser.add_argument('name', help='Event name to enable')
    enable_parser.set_defaults(func=cmd_enable)

    # Disable command
    disable_parser = subparsers.add_parser('disable', help='Disable an event')
    disable_parser.add_argument('name', help='Event name to disable')
    disable_parser.set_defaults(func=cmd_disable)

    # Init command
    init_parser = subparsers.add_parser('init', help='Initialize scheduler configuration')
    init_parser.set_defaults(func=cmd_init)

    # Show config command
    show_config_parser = subparsers.add_parser('show-config', help='Show configuration')
    show_config_parser.set_defaults(func=cmd_show_config)

    return parser


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
