from __future__ import annotations

import asyncio

import uvloop
from loguru import logger

from wishdraw.core.config import Settings, load_settings
from wishdraw.core.logging import setup_logging
from wishdraw.db import get_session, init_engine
from wishdraw.services import email_queue, scheduled_draw
from wishdraw.services.delivery import DeliveryDispatcher
from wishdraw.services.mailer import EmailTransport, transport_from_settings


def run_cycle(settings: Settings, dispatcher: DeliveryDispatcher, transport: EmailTransport) -> None:
    scheduled_draw.run_due_draws(
        dispatcher=dispatcher,
        max_attempts=settings.draw_max_attempts,
    )
    email_queue.process_email_queue(transport, batch_size=settings.email_batch_size)
    with get_session() as session:
        email_queue.cleanup_old_emails(session)


async def worker(settings: Settings) -> None:
    dispatcher = DeliveryDispatcher(
        base_url=settings.base_url,
        email_max_attempts=settings.email_max_attempts,
    )
    transport = transport_from_settings(settings.smtp)

    logger.info("worker started")
    logger.info("Base URL      - {url}", url=settings.base_url)
    logger.info("Interval      - {seconds}s", seconds=settings.worker_interval_seconds)
    logger.info("Draw attempts - {attempts}", attempts=settings.draw_max_attempts)

    while True:
        try:
            await asyncio.to_thread(run_cycle, settings, dispatcher, transport)
        except Exception as exc:
            logger.exception("Worker cycle failed: {error}", error=str(exc))
        await asyncio.sleep(settings.worker_interval_seconds)


async def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_path)
    init_engine(settings.database_url)

    try:
        await worker(settings)
    finally:
        logger.info("worker stopped")


if __name__ == "__main__":
    if not getattr(asyncio, "debug", False):
        uvloop.install()

    asyncio.run(main())
