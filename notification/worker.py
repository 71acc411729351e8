#!/usr/bin/env python3
"""
RQ Worker for the CRM notification dispatch queue

Builds the application context once, starts the dedup sweeper and the
delayed-queue sweep thread, then processes queued events with a SimpleWorker
so dedup and circuit-breaker state stay in this process across jobs.

Usage:
    python -m notification.worker
    python -m notification.worker --burst
    python -m notification.worker --sweep-interval 60 --verbose
"""

import os
import sys
import argparse
import logging

from redis import Redis
from rq import SimpleWorker

from core.app_context import AppContext
from core.config_loader import load_config
from database.database import configure_engine
from notification.service import set_app_context

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def start_worker(burst: bool = False, queues: list = None, sweep_interval: int = None,
                 config_path: str = "config.yaml"):
    """Start the RQ worker."""
    config = load_config(config_path)
    configure_engine(config.database.url)
    if sweep_interval is not None:
        config.delayed_queue.sweep_interval_seconds = sweep_interval

    redis_url = config.queue.redis_url or os.environ.get('REDIS_URL', 'redis://localhost:6379/0')

    if queues is None:
        queues = [config.queue.queue_name]

    logger.info("Starting RQ Worker")
    logger.info(f"Queues: {', '.join(queues)}")
    logger.info(f"Burst mode: {burst}")
    logger.info(f"Delayed queue sweep every {config.delayed_queue.sweep_interval_seconds}s")

    context = AppContext.build(config)
    set_app_context(context)

    try:
        redis_conn = Redis.from_url(redis_url)
        redis_conn.ping()
        logger.info("✓ Connected to Redis")

        context.start_background()
        worker = SimpleWorker(queues, connection=redis_conn)

        if burst:
            logger.info("Running in burst mode...")
            worker.work(burst=True)
        else:
            logger.info("Worker started. Press Ctrl+C to stop.")
            worker.work()

    except KeyboardInterrupt:
        logger.info("\nWorker stopped")
    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    finally:
        context.stop_background()


def main():
    parser = argparse.ArgumentParser(description='CRM Notification Dispatch Worker')
    parser.add_argument('--burst', action='store_true', help='Process all and exit')
    parser.add_argument('--queues', nargs='+', default=None)
    parser.add_argument('--sweep-interval', type=int, default=None,
                        help='Seconds between delayed-queue sweeps')
    parser.add_argument('--config', default='config.yaml')
    parser.add_argument('--verbose', action='store_true')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    start_worker(burst=args.burst, queues=args.queues, sweep_interval=args.sweep_interval,
                 config_path=args.config)


if __name__ == '__main__':
    main()
