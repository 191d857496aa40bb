"""Persistent outbound email queue.

Producers call :func:`queue_email` inside their own transaction and never
send anything themselves. :func:`process_email_queue` drains due messages:
each one is claimed (PENDING -> PROCESSING, attempt counted) and committed
before the transport is called, so a crash mid-send can never lead to a
second delivery of the same attempt. Failed sends go back to PENDING with
exponential backoff until ``max_attempts`` is used up, then FAILED.
"""
from __future__ import annotations

import datetime
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from loguru import logger

from wishdraw.core.clock import utcnow
from wishdraw.db import EmailPriority, EmailQueue, EmailQueueStatus, get_session, repo
from wishdraw.services.mailer import EmailTransport, render_email

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BATCH_SIZE = 150
# Provider allows two requests per second.
DEFAULT_SEND_DELAY = 0.6
RETENTION = datetime.timedelta(days=7)


class EmailQueueError(RuntimeError):
    pass


@dataclass
class QueueStats:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass(frozen=True)
class QueueOverview:
    pending: int
    processing: int
    completed: int
    failed: int
    recent_completed: int
    recent_failed: int


def retry_delay(attempts: int) -> datetime.timedelta:
    """4, 16, 64 ... minutes after the 1st, 2nd, 3rd ... attempt."""
    return datetime.timedelta(minutes=4 ** attempts)


def queue_email(
    session,
    email_type: str,
    to: str,
    payload: Dict[str, Any],
    priority: EmailPriority = EmailPriority.NORMAL,
    scheduled_for: Optional[datetime.datetime] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> EmailQueue:
    email = repo.enqueue_email(
        session,
        email_type,
        to,
        payload,
        priority,
        scheduled_for or utcnow(),
        max_attempts,
    )
    logger.bind(email_id=email.id, type=email_type, to=to).debug("Email queued")
    return email


def _deliver(transport: EmailTransport, email: EmailQueue) -> Optional[str]:
    try:
        rendered = render_email(email.type, email.payload or {})
        transport.send(email.recipient, rendered)
    except Exception as exc:
        logger.bind(email_id=email.id, type=email.type).warning(
            "Failed to send queued email: {error}", error=str(exc)
        )
        return str(exc) or exc.__class__.__name__
    return None


def process_email_queue(
    transport: EmailTransport,
    batch_size: int = DEFAULT_BATCH_SIZE,
    send_delay: float = DEFAULT_SEND_DELAY,
    now: Optional[datetime.datetime] = None,
    session_factory: Callable = get_session,
) -> QueueStats:
    stats = QueueStats()
    started = utcnow()
    # caller's clock; advances with real time while the batch runs
    now = now or started

    with session_factory() as session:
        due_ids = repo.list_due_email_ids(session, now, batch_size)

    if not due_ids:
        logger.debug("No pending emails to process")
        return stats

    logger.bind(count=len(due_ids)).info("Processing email queue")

    for index, email_id in enumerate(due_ids):
        with session_factory() as session:
            email = repo.claim_email(session, email_id)
        if email is None:
            continue

        error = _deliver(transport, email)

        with session_factory() as session:
            if error is None:
                repo.complete_email(session, email.id, utcnow())
                stats.succeeded += 1
            else:
                final = email.attempts >= email.max_attempts
                failed_at = now + (utcnow() - started)
                retry_at = None if final else failed_at + retry_delay(email.attempts)
                repo.fail_email(session, email.id, error, retry_at)
                stats.failed += 1

        stats.processed += 1

        if send_delay and index < len(due_ids) - 1:
            time.sleep(send_delay)

    logger.bind(**vars(stats)).info("Email queue processing complete")
    return stats


def retry_email(session, email_id: int, now: Optional[datetime.datetime] = None) -> EmailQueue:
    email = repo.get_email(session, email_id)
    if not email:
        raise EmailQueueError("Email not found.")
    if email.status != EmailQueueStatus.FAILED:
        raise EmailQueueError("Only failed emails can be retried.")

    email.status = EmailQueueStatus.PENDING
    email.attempts = 0
    email.scheduled_for = now or utcnow()
    email.last_error = None
    return email


def get_queue_stats(session, now: Optional[datetime.datetime] = None) -> QueueOverview:
    since = (now or utcnow()) - datetime.timedelta(hours=24)
    counts = repo.count_emails_by_status(session)
    return QueueOverview(
        pending=counts[EmailQueueStatus.PENDING],
        processing=counts[EmailQueueStatus.PROCESSING],
        completed=counts[EmailQueueStatus.COMPLETED],
        failed=counts[EmailQueueStatus.FAILED],
        recent_completed=repo.count_completed_since(session, since),
        recent_failed=repo.count_failed_since(session, since),
    )


def cleanup_old_emails(session, now: Optional[datetime.datetime] = None) -> int:
    cutoff = (now or utcnow()) - RETENTION
    removed = repo.delete_completed_emails_before(session, cutoff)
    if removed:
        logger.bind(count=removed).info("Cleaned up old completed emails")
    return removed
