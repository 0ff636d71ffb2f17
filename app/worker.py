"""Outbox relay worker.

Polls the outbox and delivers pending events until interrupted.

Usage:
    python -m app.worker
    python -m app.worker --once
    python -m app.worker --interval 5 --batch 100
"""

import argparse
import asyncio

import structlog

from app.application.outbox_service import DrainResult, OutboxRelay
from app.infrastructure.config import settings
from app.infrastructure.database import async_session_factory, engine
from app.infrastructure.logging_config import configure_logging

logger = structlog.get_logger()


async def drain_batch(batch_size: int) -> DrainResult:
    """Run one relay pass in a fresh session."""
    async with async_session_factory() as session:
        return await OutboxRelay(session).drain_once(batch_size)


async def run(interval: float, batch_size: int, once: bool = False) -> None:
    """Drain the outbox in a loop.

    A full batch is followed immediately by another pass; otherwise the
    worker sleeps for ``interval`` seconds.

    Args:
        interval: Seconds to sleep when the outbox is idle.
        batch_size: Rows claimed per pass.
        once: Stop after a single pass.
    """
    logger.info("Outbox worker started", interval=interval, batch_size=batch_size)
    try:
        while True:
            try:
                result = await drain_batch(batch_size)
            except Exception:
                logger.exception("Outbox pass failed")
                result = DrainResult()

            if result.processed:
                logger.info(
                    "Outbox pass finished",
                    delivered=result.delivered,
                    retried=result.retried,
                    failed=result.failed,
                )
            if once:
                break
            if result.processed < batch_size:
                await asyncio.sleep(interval)
    finally:
        await engine.dispose()
        logger.info("Outbox worker stopped")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Deliver pending outbox events")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.outbox_poll_interval_seconds,
        help="Seconds to sleep when the outbox is idle",
    )
    parser.add_argument(
        "--batch",
        type=int,
        default=settings.outbox_batch_size,
        help="Rows claimed per pass",
    )
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    configure_logging()
    try:
        asyncio.run(run(args.interval, args.batch, once=args.once))
    except KeyboardInterrupt:
        logger.info("Outbox worker interrupted")


if __name__ == "__main__":
    main()
