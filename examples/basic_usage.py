#!/usr/bin/env python3
"""
Basic Usage Examples for cron-events

This script demonstrates building events with the fluent API,
checking which ones are due and running them.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

# Add parent directory to path for imports (if running as standalone script)
sys.path.insert(0, str(Path(__file__).parent.parent))

from scheduling import Collaborators, ProcessRunner, Schedule
from scheduling.notifications import RequestsHttpClient


def example_1_builder():
    """Example 1: Fluent schedule helpers"""
    print("\n" + "=" * 60)
    print("Example 1: Building expressions")
    print("=" * 60)

    schedule = Schedule()
    schedule.exec("backup.sh", name="backup").daily_at("02:30")
    schedule.exec("report.sh", name="report").weekly_on(1, "8:00").timezone("Europe/Berlin")
    schedule.exec("sync.sh", name="sync").every_five_minutes().weekdays()
    schedule.exec("cleanup.sh", name="cleanup").cron("0 4 1 * *")

    for event in schedule:
        print(f"  {event.name:8s} {event.get_expression():20s} {event.build_command()}")


def example_2_due_check():
    """Example 2: Which events are due at a given instant"""
    print("\n" + "=" * 60)
    print("Example 2: Due check for Wednesday 2024-01-03 10:05 UTC")
    print("=" * 60)

    schedule = Schedule()
    schedule.exec("sync.sh", name="sync").every_five_minutes().weekdays().timezone("UTC")
    schedule.exec("weekend.sh", name="weekend").hourly().weekends().timezone("UTC")
    schedule.exec("quiet.sh", name="quiet").timezone("UTC").skip(
        lambda ctx: ctx.local_instant.hour < 12
    )

    instant = datetime(2024, 1, 3, 10, 5, tzinfo=timezone.utc)
    for event in schedule.due_events(instant):
        print(f"  due: {event.name}")


def example_3_run_with_callbacks():
    """Example 3: Foreground run with an after-run callback"""
    print("\n" + "=" * 60)
    print("Example 3: Running an event with callbacks")
    print("=" * 60)

    output = Path("/tmp/cron-events-example.log")
    schedule = Schedule(
        process_runner=ProcessRunner(timeout=60),
        collaborators=Collaborators(http_client=RequestsHttpClient(timeout=5))
    )
    event = (
        schedule.exec("date; uname -a", name="info")
        .send_output_to(str(output))
        .then(lambda collaborators: print(f"  output:\n{output.read_text()}"))
    )

    status = schedule.run_event(event)
    print(f"  exit code: {status.returncode} ({status.mode.value})")


if __name__ == "__main__":
    example_1_builder()
    example_2_due_check()
    example_3_run_with_callbacks()
