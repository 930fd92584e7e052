"""Create jobs to refresh the statistics of every event."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass

from eventmetrics.config import load_config
from eventmetrics.logging import configure_logging
from eventmetrics.repositories.event_store import EventStore
from eventmetrics.repositories.job_repository import JobRepository
from eventmetrics.services.container import build_job_handler


@dataclass(slots=True)
class QueueSummary:
    created: int
    spawned: int


def queue_all_events(*, spawn: bool = True) -> QueueSummary:
    """Queue a job for each valid event without one, then spawn within quota."""
    runtime = load_config()
    with runtime.session_factory() as session:
        jobs = JobRepository(session)
        created = 0
        for event in EventStore(session).list_without_job():
            # Only events with all the necessary settings.
            if event.is_valid():
                jobs.create(event)
                created += 1
        session.commit()

        spawned = build_job_handler(runtime, session).spawn_all() if spawn else 0
    return QueueSummary(created=created, spawned=spawned)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create jobs to update data for every event.")
    parser.add_argument(
        "-s",
        "--no-spawn",
        action="store_true",
        help="Don't spawn jobs immediately; leave them to the cron.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging()
    try:
        summary = queue_all_events(spawn=not args.no_spawn)
    except Exception as exc:
        print(f"queueing failed: {exc}", file=sys.stderr)
        return 2

    print(f"queue done, created={summary.created}, spawned={summary.spawned}", file=sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
