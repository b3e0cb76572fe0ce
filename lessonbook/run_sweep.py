"""Run one expiration sweep and print what it cancelled.

Usage:
    python -m lessonbook.run_sweep
"""
import logging
import sys

from lessonbook.core import config
from lessonbook.services.expiration_sweeper import sweep


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    result = sweep()
    print(f"Expired {result.count} reservation(s): {result.expired_ids}")
    if result.failed_ids:
        print("Failed to expire:", result.failed_ids, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
