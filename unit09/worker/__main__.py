"""
Pipeline Worker CLI entry point.

Usage:
    python -m unit09.worker [OPTIONS]

Options:
    --stages TYPE            Stage backend (default: from config)
    --poll-interval N        Seconds between ticks (default: from config)
    --max-concurrent-jobs N  Ceiling on jobs in flight (default: from config)
    --observe-interval N     Seconds between observation rounds (default: off)
"""
from __future__ import annotations

import argparse
import sys

from .loop import run_worker


def main() -> int:
    """Main entry point for worker CLI."""
    parser = argparse.ArgumentParser(
        description="unit09 worker - dispatches pipeline jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with default settings
    python -m unit09.worker

    # Tick every 250ms with up to 8 jobs in flight
    python -m unit09.worker --poll-interval 0.25 --max-concurrent-jobs 8

    # Observe every registered repository once an hour
    python -m unit09.worker --observe-interval 3600
        """,
    )

    parser.add_argument(
        "--stages",
        type=str,
        default=None,
        help="Stage backend (default: from config)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between ticks (default: from config)",
    )
    parser.add_argument(
        "--max-concurrent-jobs",
        type=int,
        default=None,
        help="Ceiling on jobs in flight (default: from config)",
    )
    parser.add_argument(
        "--observe-interval",
        type=float,
        default=None,
        help="Seconds between periodic observation rounds (default: from config, off)",
    )

    args = parser.parse_args()

    print("Starting unit09 worker...")
    print(f"  Stages: {args.stages or 'from config'}")
    print(f"  Poll interval: {args.poll_interval or 'from config'}")
    print(f"  Max concurrent jobs: {args.max_concurrent_jobs or 'from config'}")
    print(f"  Observe interval: {args.observe_interval or 'from config'}")
    print()

    try:
        run_worker(
            stages_type=args.stages,
            poll_interval=args.poll_interval,
            max_concurrent_jobs=args.max_concurrent_jobs,
            observe_interval=args.observe_interval,
        )
        return 0
    except KeyboardInterrupt:
        print("\nWorker stopped by user")
        return 0
    except Exception as e:
        print(f"Worker error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
