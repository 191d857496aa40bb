from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from loguru import logger

from wishdraw.core.config import DEFAULT_BASE_URL
from wishdraw.db import get_session
from wishdraw.services import email_queue, notifications
from wishdraw.services.mailer import EMAIL_SECRET_SANTA

CHANNEL_EMAIL = "email"
CHANNEL_NOTIFICATION = "notification"


class DeliveryStatus(str, enum.Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DeliveryRequest:
    giver_id: int
    giver_email: Optional[str]
    giver_locale: Optional[str]
    receiver_id: int
    receiver_name: str


@dataclass(frozen=True)
class DeliveryContext:
    group_id: int
    group_name: str


@dataclass(frozen=True)
class DeliveryFailure:
    giver_id: int
    channel: str
    error: str


@dataclass
class RecipientOutcome:
    giver_id: int
    email: DeliveryStatus = DeliveryStatus.SKIPPED
    notification: DeliveryStatus = DeliveryStatus.SKIPPED


@dataclass
class DeliveryReport:
    outcomes: List[RecipientOutcome] = field(default_factory=list)
    failures: List[DeliveryFailure] = field(default_factory=list)

    def _count(self, status: DeliveryStatus) -> int:
        return sum(
            (outcome.email == status) + (outcome.notification == status)
            for outcome in self.outcomes
        )

    @property
    def queued(self) -> int:
        return self._count(DeliveryStatus.QUEUED)

    @property
    def sent(self) -> int:
        return self._count(DeliveryStatus.SENT)

    @property
    def failed(self) -> int:
        return self._count(DeliveryStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(DeliveryStatus.SKIPPED)


class DeliveryDispatcher:
    """Tells each giver about their draw: one queued email, one in-app notification.

    Every recipient and channel runs in its own unit of work; a failure is
    logged and recorded in the report and the batch carries on. Nothing is
    retried here; the email queue processor owns retries.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        session_factory: Callable = get_session,
        email_max_attempts: int = email_queue.DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.email_max_attempts = email_max_attempts
        self._session_factory = session_factory

    def group_url(self, group_id: int) -> str:
        return f"{self.base_url}/bubbles/{group_id}/secret-santa"

    def dispatch(self, requests: Sequence[DeliveryRequest], context: DeliveryContext) -> DeliveryReport:
        report = DeliveryReport()
        for request in requests:
            outcome = RecipientOutcome(giver_id=request.giver_id)
            outcome.email = self._queue_email(request, context, report)
            outcome.notification = self._notify(request, context, report)
            report.outcomes.append(outcome)

        logger.bind(
            group_id=context.group_id,
            queued=report.queued,
            sent=report.sent,
            failed=report.failed,
            skipped=report.skipped,
        ).info("Secret Santa delivery finished")
        return report

    def _queue_email(
        self,
        request: DeliveryRequest,
        context: DeliveryContext,
        report: DeliveryReport,
    ) -> DeliveryStatus:
        if not request.giver_email:
            return DeliveryStatus.SKIPPED

        payload = {
            "receiver_name": request.receiver_name,
            "group_name": context.group_name,
            "group_url": self.group_url(context.group_id),
            "locale": request.giver_locale,
        }
        try:
            with self._session_factory() as session:
                email_queue.queue_email(
                    session,
                    EMAIL_SECRET_SANTA,
                    request.giver_email,
                    payload,
                    max_attempts=self.email_max_attempts,
                )
        except Exception as exc:
            logger.bind(group_id=context.group_id, user_id=request.giver_id).warning(
                "Failed to queue Secret Santa email: {error}", error=str(exc)
            )
            report.failures.append(DeliveryFailure(request.giver_id, CHANNEL_EMAIL, str(exc)))
            return DeliveryStatus.FAILED
        return DeliveryStatus.QUEUED

    def _notify(
        self,
        request: DeliveryRequest,
        context: DeliveryContext,
        report: DeliveryReport,
    ) -> DeliveryStatus:
        try:
            with self._session_factory() as session:
                notification = notifications.create_secret_santa_notification(
                    session, request.giver_id, context.group_id, context.group_name
                )
        except Exception as exc:
            logger.bind(group_id=context.group_id, user_id=request.giver_id).warning(
                "Failed to create Secret Santa notification: {error}", error=str(exc)
            )
            report.failures.append(DeliveryFailure(request.giver_id, CHANNEL_NOTIFICATION, str(exc)))
            return DeliveryStatus.FAILED
        return DeliveryStatus.SENT if notification is not None else DeliveryStatus.SKIPPED
