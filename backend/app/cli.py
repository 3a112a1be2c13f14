"""Command line entry point.

Usage:
    python -m app.cli init-db
    python -m app.cli transcode <uuid>
"""

import argparse
import sys
from typing import Optional

from app.core.config import settings
from app.core.database import init_db
from app.core.logging import setup_logging
from app.modules.transcoding.factory import build_job_runner


def transcode(job_id: str) -> int:
    """Run every attempt for a video in this process."""
    runner = build_job_runner()
    record = runner.repository.get_by_uuid(job_id)
    if record is None:
        print(f"Video {job_id} not found", file=sys.stderr)
        return 1

    result = runner.run(record.id)
    if result.success:
        print(f"Completed: {result.manifest_url}")
        return 0
    print(f"Failed: {result.error_message}", file=sys.stderr)
    return 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="HLS transcoder management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")

    transcode_parser = subparsers.add_parser("transcode", help="Transcode a video in-process")
    transcode_parser.add_argument("uuid", help="Video uuid")

    args = parser.parse_args(argv)
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    if args.command == "init-db":
        init_db()
        print("Database tables created")
        return 0
    return transcode(args.uuid)


if __name__ == "__main__":
    sys.exit(main())
