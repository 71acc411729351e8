import time
import logging
import signal
import sys
import json
import argparse

from core.app_context import AppContext
from core.config_loader import load_config
from database.database import configure_engine
from database.init_db import init_db
from notification.service import DispatchQueue

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global flag for graceful shutdown
running = True


def signal_handler(sig, frame):
    global running
    logger.info("Shutdown signal received")
    running = False


def read_event(path: str) -> dict:
    if path == '-':
        return json.load(sys.stdin)
    with open(path, 'r') as f:
        return json.load(f)


def run_dispatch(context: AppContext, event_path: str, use_queue: bool) -> int:
    event = read_event(event_path)
    if use_queue:
        submitted = DispatchQueue.from_context(context).submit(event)
        logger.info(f"Submitted event ({submitted.mode}, job {submitted.job_id})")
        result = submitted.result
    else:
        result = context.dispatcher.dispatch(event)

    if result is not None:
        logger.info(
            f"tenant={result.tenant_id} strategy={result.strategy} matched={result.rules_matched} "
            f"sent={result.notifications_sent} queued={result.notifications_queued} "
            f"skipped={result.skip_reason}"
        )
        for outcome in result.outcomes:
            logger.info(f"  rule {outcome.rule_id}: {outcome.status} tier={outcome.tier} {outcome.error or ''}")
    return 0


def run_sweeper(context: AppContext, once: bool) -> int:
    sweeper = context.delayed_sweeper
    if once:
        result = sweeper.process_due()
        logger.info(f"Sweep: {result.processed} processed, {result.delivered} delivered, "
                    f"{result.rescheduled} rescheduled, {result.expired} expired")
        return 0

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    interval = context.config.delayed_queue.sweep_interval_seconds
    context.dedup.start_sweeper()

    while running:
        try:
            sweeper.process_due()
        except Exception as e:
            logger.error(f"Error in sweep loop: {e}", exc_info=True)
        # Sleep in chunks to allow responsive shutdown
        for _ in range(max(1, interval // 5)):
            if not running:
                break
            time.sleep(5)

    context.dedup.stop_sweeper()
    return 0


def main():
    parser = argparse.ArgumentParser(description="CRM Notification Dispatch Driver")
    parser.add_argument('--mode', type=str, choices=['dispatch', 'sweep', 'init-db'], default='dispatch',
                        help='dispatch one event (default), sweep the delayed queue, or create tables')
    parser.add_argument('--event', type=str, default='-', help='Path to a webhook JSON body, or - for stdin')
    parser.add_argument('--queue', action='store_true', help='Submit through the dispatch queue')
    parser.add_argument('--once', action='store_true', help='Sweep the delayed queue once and exit')
    parser.add_argument('--config', type=str, default='config.yaml')
    args = parser.parse_args()

    logger.info(f"Dispatch driver starting in {args.mode.upper()} mode...")

    config = load_config(args.config)
    configure_engine(config.database.url)

    # Initialize DB (with retry logic)
    init_db()
    if args.mode == 'init-db':
        return 0

    context = AppContext.build(config)
    if args.mode == 'sweep':
        return run_sweeper(context, args.once)
    return run_dispatch(context, args.event, args.queue)


if __name__ == "__main__":
    sys.exit(main())
