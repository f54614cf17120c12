"""
Dispatcher entry points.

    python -m oversight.worker --loop        # polling worker (floor guarantee)
    python -m oversight.worker --once        # single dispatch round
    python -m oversight.worker --rq          # RQ worker for high-priority wake-ups

dispatch_tick() is the RQ-callable unit pushed on high-priority enqueue.
"""
import argparse
import logging
import signal
import threading

from oversight.config import (
    POLL_INTERVAL_SECONDS, WORKER_BATCH_SIZE, WORKER_POOL_SIZE, validate_settings,
)

logger = logging.getLogger('oversight.worker')


def build_dispatcher(worker_id=None, batch_size=WORKER_BATCH_SIZE, pool_size=WORKER_POOL_SIZE):
    """Dispatcher wired to the real database, Graph API and token service."""
    from oversight.database import import_models
    from oversight.services.credentials import TokenServiceResolver
    from oversight.services.dispatcher import Dispatcher
    from oversight.services.provider import GraphApiClient
    from oversight.services.queue_store import QueueStore

    import_models()
    return Dispatcher(
        store=QueueStore(),
        provider=GraphApiClient(),
        resolver=TokenServiceResolver(),
        worker_id=worker_id,
        batch_size=batch_size,
        pool_size=pool_size,
    )


def dispatch_tick():
    """One dispatch round, run by an RQ worker. Returns a status → count summary."""
    outcomes = build_dispatcher().run_once()
    summary = {}
    for outcome in outcomes:
        summary[outcome.status] = summary.get(outcome.status, 0) + 1
    logger.info("Dispatch tick processed %d job(s): %s", len(outcomes), summary)
    return summary


def run_rq_worker():
    from rq import Worker
    from oversight.extensions import get_dispatch_queue, redis_client

    worker = Worker([get_dispatch_queue()], connection=redis_client)
    worker.work()


def main(argv=None):
    from oversight.logging_config import configure_logging

    parser = argparse.ArgumentParser(description='Outbound action queue dispatcher')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--loop', action='store_true', help='Poll the queue until interrupted')
    mode.add_argument('--once', action='store_true', help='Run a single dispatch round (default)')
    mode.add_argument('--rq', action='store_true', help='Serve high-priority wake-ups from RQ')
    parser.add_argument('--worker-id', default=None, help='Claim owner name (default: random)')
    parser.add_argument('--batch', type=int, default=WORKER_BATCH_SIZE, help='Jobs claimed per round')
    parser.add_argument('--pool', type=int, default=WORKER_POOL_SIZE, help='Concurrent provider calls')
    parser.add_argument('--poll-interval', type=float, default=POLL_INTERVAL_SECONDS)
    args = parser.parse_args(argv)

    configure_logging()
    validate_settings()

    if args.rq:
        run_rq_worker()
        return 0

    dispatcher = build_dispatcher(worker_id=args.worker_id, batch_size=args.batch,
                                  pool_size=args.pool)
    if not args.loop:
        outcomes = dispatcher.run_once()
        logger.info("Processed %d job(s)", len(outcomes))
        return 0

    stop = threading.Event()

    def _stop(signum, frame):
        logger.info("Signal %s received, finishing current round", signum)
        stop.set()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)
    dispatcher.run_forever(poll_interval=args.poll_interval, stop_event=stop)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
