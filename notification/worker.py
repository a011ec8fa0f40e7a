#!/usr/bin/env python3
"""
Queue worker for the notification service.

Invokes QueueProcessor.process_queue() on a fixed interval until stopped.

Usage:
    python -m notification.worker
    python -m notification.worker --burst
    python -m notification.worker --config config.yaml --interval 30 --workers 8 --verbose
"""

import argparse
import logging
import signal
import sys
import threading

from core.app_context import AppContext
from core.config_loader import load_config
from database.init_db import init_db

logger = logging.getLogger(__name__)

stop_event = threading.Event()


def signal_handler(sig, frame):
    logger.info("Shutdown signal received")
    stop_event.set()


def run_worker(ctx: AppContext, burst: bool = False, interval: int = 60) -> int:
    """Run queue passes until stopped. Returns the number of items sent."""
    total_sent = 0
    while not stop_event.is_set():
        try:
            total_sent += ctx.queue_processor.process_queue(stop_event=stop_event)
        except Exception as e:
            logger.error(f"Queue pass failed: {e}", exc_info=True)
        if burst:
            break
        stop_event.wait(interval)
    return total_sent


def main(argv=None):
    parser = argparse.ArgumentParser(description='Notification queue worker')
    parser.add_argument('--config', default='config.yaml', help='Path to config.yaml')
    parser.add_argument('--burst', action='store_true', help='Run one pass and exit')
    parser.add_argument('--interval', type=int, default=None, help='Seconds between passes')
    parser.add_argument('--workers', type=int, default=None, help='Items processed concurrently')
    parser.add_argument('--verbose', action='store_true')

    args = parser.parse_args(argv)

    config = load_config(args.config)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.logging.level.upper(), logging.INFO),
        format=config.logging.format,
    )

    queue_config = config.notifications.queue
    if args.workers is not None:
        queue_config.worker_count = max(1, args.workers)
    interval = args.interval if args.interval is not None else queue_config.poll_interval_seconds

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info("Starting notification worker")
    logger.info(f"Burst mode: {args.burst}, interval: {interval}s, workers: {queue_config.worker_count}")

    try:
        ctx = AppContext.build(config)
        init_db(ctx.engine)
        sent = run_worker(ctx, burst=args.burst, interval=interval)
        logger.info(f"Worker stopped ({sent} notifications sent)")
    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
