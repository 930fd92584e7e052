"""Cron entry point spawning queued jobs within the database quota."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass

from eventmetrics.config import load_config
from eventmetrics.logging import configure_logging
from eventmetrics.repositories.job_repository import JobRepository
from eventmetrics.services.container import build_job_handler


@dataclass(slots=True)
class SpawnSummary:
    spawned: int
    job_found: bool = True


def spawn_jobs(job_id: int | None = None) -> SpawnSummary:
    """Spawn one job by ID, or as many queued jobs as the quota admits."""
    runtime = load_config()
    with runtime.session_factory() as session:
        handler = build_job_handler(runtime, session)
        if job_id is None:
            return SpawnSummary(spawned=handler.spawn_all())

        job = JobRepository(session).get(job_id)
        if job is None:
            return SpawnSummary(spawned=0, job_found=False)
        handler.spawn(job)
        return SpawnSummary(spawned=1)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Spawn jobs to process queued events, respecting the database quota."
    )
    parser.add_argument(
        "--id",
        dest="job_id",
        type=int,
        default=None,
        help="Spawn only the job with the given ID, if there is enough quota.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging()
    try:
        summary = spawn_jobs(args.job_id)
    except Exception as exc:
        print(f"spawn failed: {exc}", file=sys.stderr)
        return 2

    if not summary.job_found:
        print(f"No job found with ID {args.job_id}", file=sys.stderr)
        return 1
    print(f"spawn done, jobs={summary.spawned}", file=sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
