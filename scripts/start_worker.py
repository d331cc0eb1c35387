#!/usr/bin/env python3
"""Start RQ worker for processing queued webhook deliveries.

Usage:
    python scripts/start_worker.py [--burst]

Only needed when WEBHOOK_PROCESSING_MODE=queue.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from rq import Worker
from omnidesk.infra.logging import app_logger
from omnidesk.infra.queue import WEBHOOK_QUEUE_NAME, redis_conn, webhook_queue


def main():
    parser = argparse.ArgumentParser(description="Start RQ worker for webhook processing")
    parser.add_argument(
        "--burst",
        action="store_true",
        help="Run in burst mode (exit when queue is empty)",
    )

    args = parser.parse_args()

    app_logger.info("Starting webhook worker", extra={"queue": WEBHOOK_QUEUE_NAME, "burst": args.burst})

    worker = Worker([webhook_queue], connection=redis_conn)
    worker.work(burst=args.burst)


if __name__ == "__main__":
    main()
