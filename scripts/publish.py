#!/usr/bin/env python3
"""
CLI utility for publishing a local directory to a bucket.

Usage:
    python scripts/publish.py --config config/publish.yaml publish --local-dir public/
    python scripts/publish.py --config config/publish.yaml publish --local-dir public/ --gzip --sync
    python scripts/publish.py --config config/publish.yaml publish --local-dir public/ --simulate
    python scripts/publish.py --config config/publish.yaml status
    python scripts/publish.py --config config/publish.yaml clear-cache
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from s3publish import PublisherBuilder, PublishReport, PublishState, collect_artifacts, gzip_stream
from s3publish.errors import CachePersistenceError, ConfigurationError
from s3publish.utils.logging import setup_logging

logger = logging.getLogger("s3publish.cli")


def parse_headers(values: Optional[List[str]]) -> Dict[str, str]:
    """Parse repeated ``Name=Value`` arguments."""
    headers = {}
    for value in values or []:
        if "=" not in value:
            raise ConfigurationError(f"Header must be Name=Value: {value}")
        name, _, header_value = value.partition("=")
        headers[name.strip()] = header_value.strip()
    return headers


def print_report(report: PublishReport, states: Optional[List[str]] = None) -> None:
    """Print per-key lines and the state counts."""
    wanted = [PublishState(s) for s in states] if states else None
    for line in report.format_lines(wanted):
        print(line)

    counts = report.counts()
    print("\nPublish Summary:")
    for name, count in counts.items():
        print(f"  {name.capitalize()}: {count}")


def publish_command(args) -> int:
    """Execute publish command."""
    logger.info(f"Publishing {args.local_dir} to prefix '{args.prefix}'")

    publisher = PublisherBuilder.from_config_file(
        args.config,
        force_republish=True if args.force else None,
        simulate=True if args.simulate else None,
        max_workers=args.workers,
    )
    publisher.header_overrides.update(parse_headers(args.header))

    with publisher:
        artifacts = collect_artifacts(
            args.local_dir,
            pattern=args.pattern,
            exclude_patterns=args.exclude,
            prefix=args.prefix,
        )
        if args.gzip:
            artifacts = gzip_stream(artifacts, ext=args.gzip_ext)

        for _ in publisher.publish(artifacts, commit=True):
            pass

        if args.sync:
            if publisher.report.ok:
                for _ in publisher.sync(prefix=args.prefix, exclusions=args.keep):
                    pass
            else:
                logger.warning("Skipping sync because some artifacts failed to publish")

    report = publisher.report
    print_report(report, args.states)
    report.log_summary()
    return 0 if report.ok else 1


def status_command(args) -> int:
    """Execute status command."""
    publisher = PublisherBuilder.from_config_file(args.config)
    publisher.cache.load()

    print("\nCache Status:")
    print(f"  Bucket: {publisher.bucket}")
    print(f"  Cache File: {publisher.cache.path}")
    print(f"  Entries: {len(publisher.cache)}")
    if publisher.cache.load_error:
        print(f"  Load Error: {publisher.cache.load_error}")

    if args.verbose:
        for key in publisher.cache.keys():
            print(f"    {key}  {publisher.cache.get(key).fingerprint}")
    return 0


def clear_cache_command(args) -> int:
    """Execute clear-cache command."""
    publisher = PublisherBuilder.from_config_file(args.config)
    publisher.cache.load()
    count = len(publisher.cache)
    publisher.cache.clear()
    publisher.cache.flush(force=True)
    print(f"Cleared {count} cache entries for bucket {publisher.bucket}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Publish files to an S3 bucket")

    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config/publish.yaml"),
        help="Path to publish configuration file (default: config/publish.yaml)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-file", type=str, help="Also write logs to this file")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    publish = subparsers.add_parser("publish", help="Publish a local directory")
    publish.add_argument("--local-dir", type=Path, required=True, help="Directory to publish")
    publish.add_argument("--prefix", type=str, default="", help="Remote key prefix")
    publish.add_argument("--pattern", type=str, default="**/*", help="File pattern to match")
    publish.add_argument("--exclude", nargs="+", help="Local patterns to leave out")
    publish.add_argument("--header", action="append", help="Extra header, Name=Value (repeatable)")
    publish.add_argument("--gzip", action="store_true", help="Gzip every file before publishing")
    publish.add_argument("--gzip-ext", type=str, default="gz", help="Suffix for gzip keys")
    publish.add_argument("--force", action="store_true", help="Republish even unchanged files")
    publish.add_argument("--simulate", action="store_true", help="Classify only, write nothing")
    publish.add_argument("--workers", type=int, help="Concurrent publish workers")
    publish.add_argument("--sync", action="store_true", help="Delete remote keys not published")
    publish.add_argument("--keep", nargs="+", help="Remote keys sync must never delete")
    publish.add_argument(
        "--states",
        nargs="+",
        choices=[s.value for s in PublishState],
        help="Only report these states",
    )
    publish.set_defaults(func=publish_command)

    status = subparsers.add_parser("status", help="Show cache status")
    status.set_defaults(func=status_command)

    clear = subparsers.add_parser("clear-cache", help="Forget every cached fingerprint")
    clear.set_defaults(func=clear_cache_command)

    args = parser.parse_args()
    setup_logging(level="DEBUG" if args.verbose else "INFO", log_file=args.log_file)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except (ConfigurationError, FileNotFoundError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except CachePersistenceError as e:
        logger.error(f"Cache could not be saved, next run will re-check every file: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
