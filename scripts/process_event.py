"""Generate statistics for a single event, bypassing the job queue."""

from __future__ import annotations

import argparse
import sys

from eventmetrics.config import load_config
from eventmetrics.logging import configure_logging
from eventmetrics.repositories.event_store import EventStore
from eventmetrics.services.container import build_event_processor


def _print_progress(db_name: str) -> None:
    print(f"retention: checking {db_name}", file=sys.stdout)


def process_event(event_id: int) -> bool:
    """Run the pipeline for ``event_id``; ``False`` when the event does not exist."""
    runtime = load_config()
    with runtime.session_factory() as session:
        event = EventStore(session).find(event_id)
        if event is None:
            return False
        processor = build_event_processor(runtime, session)
        processor.process(event, on_progress=_print_progress)
    return True


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate statistics for the given event.")
    parser.add_argument("event_id", type=int, help="The ID of the event")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging()
    try:
        found = process_event(args.event_id)
    except Exception as exc:
        print(f"processing failed: {exc}", file=sys.stderr)
        return 2

    if not found:
        print(f"Event with ID {args.event_id} not found.", file=sys.stderr)
        return 1
    print(f"event {args.event_id} statistics saved", file=sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
