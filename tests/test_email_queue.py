import datetime

import pytest

from wishdraw.core.clock import utcnow
from wishdraw.db import EmailPriority, EmailQueueStatus, get_session, repo
from wishdraw.services import email_queue
from wishdraw.services.email_queue import EmailQueueError, retry_delay
from wishdraw.services.mailer import EMAIL_SECRET_SANTA, UnknownEmailType, render_email

NOW = datetime.datetime(2026, 12, 1, 12, 0)

PAYLOAD = {
    "receiver_name": "Bob",
    "group_name": "Family",
    "group_url": "https://wishbubble.app/bubbles/1/secret-santa",
}


class RecordingTransport:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def send(self, to_addr, email):
        if to_addr in self.fail_for:
            raise ConnectionError(f"mailbox unavailable: {to_addr}")
        self.sent.append((to_addr, email))


class FakeClock:
    """Stands in for the wall clock; sleeping moves it forward."""

    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def sleep(self, seconds):
        self.current += datetime.timedelta(seconds=seconds)


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock(datetime.datetime(2026, 10, 1, 9, 0))
    monkeypatch.setattr(email_queue, "utcnow", fake)
    monkeypatch.setattr(email_queue.time, "sleep", fake.sleep)
    return fake


def enqueue(to="alice@example.com", email_type=EMAIL_SECRET_SANTA, scheduled_for=NOW, **kwargs):
    with get_session() as session:
        return email_queue.queue_email(
            session, email_type, to, dict(PAYLOAD), scheduled_for=scheduled_for, **kwargs
        ).id


def load(email_id):
    with get_session() as session:
        return repo.get_email(session, email_id)


def process(transport, now=NOW, **kwargs):
    return email_queue.process_email_queue(transport, send_delay=0, now=now, **kwargs)


def test_retry_delay_grows_by_four():
    assert [retry_delay(n) for n in (1, 2, 3)] == [
        datetime.timedelta(minutes=4),
        datetime.timedelta(minutes=16),
        datetime.timedelta(minutes=64),
    ]


def test_render_secret_santa_email():
    rendered = render_email(EMAIL_SECRET_SANTA, PAYLOAD)
    assert rendered.subject == "Your Secret Santa for Family"
    assert "Bob" in rendered.body
    assert PAYLOAD["group_url"] in rendered.body

    dutch = render_email(EMAIL_SECRET_SANTA, dict(PAYLOAD, locale="nl-BE"))
    assert dutch.subject == "Je lootje voor Family"

    with pytest.raises(UnknownEmailType):
        render_email("newsletter", PAYLOAD)


def test_successful_send_completes_email(engine):
    email_id = enqueue()
    transport = RecordingTransport()

    stats = process(transport)

    assert (stats.processed, stats.succeeded, stats.failed) == (1, 1, 0)
    (to_addr, rendered), = transport.sent
    assert to_addr == "alice@example.com"
    assert "Bob" in rendered.body

    email = load(email_id)
    assert email.status == EmailQueueStatus.COMPLETED
    assert email.attempts == 1
    assert email.processed_at is not None
    assert email.last_error is None

    assert process(transport).processed == 0
    assert len(transport.sent) == 1


def test_future_emails_wait(engine):
    enqueue(scheduled_for=NOW + datetime.timedelta(hours=1))
    assert process(RecordingTransport()).processed == 0


def test_failed_send_backs_off_then_gives_up(engine, clock):
    email_id = enqueue(to="bounce@example.com")
    transport = RecordingTransport(fail_for={"bounce@example.com"})

    stats = process(transport)
    assert (stats.processed, stats.succeeded, stats.failed) == (1, 0, 1)
    email = load(email_id)
    assert email.status == EmailQueueStatus.PENDING
    assert email.attempts == 1
    assert email.scheduled_for == NOW + datetime.timedelta(minutes=4)
    assert "mailbox unavailable" in email.last_error

    # not due yet
    assert process(transport).processed == 0

    second = NOW + datetime.timedelta(minutes=4)
    process(transport, now=second)
    email = load(email_id)
    assert email.status == EmailQueueStatus.PENDING
    assert email.attempts == 2
    assert email.scheduled_for == second + datetime.timedelta(minutes=16)

    third = second + datetime.timedelta(minutes=16)
    process(transport, now=third)
    email = load(email_id)
    assert email.status == EmailQueueStatus.FAILED
    assert email.attempts == 3

    assert process(transport, now=third + datetime.timedelta(days=1)).processed == 0


def test_unknown_email_type_counts_as_failure(engine):
    email_id = enqueue(email_type="newsletter", max_attempts=1)
    stats = process(RecordingTransport())

    assert stats.failed == 1
    email = load(email_id)
    assert email.status == EmailQueueStatus.FAILED
    assert "newsletter" in email.last_error


def test_high_priority_goes_first(engine):
    enqueue(to="normal@example.com")
    enqueue(to="urgent@example.com", priority=EmailPriority.HIGH)
    transport = RecordingTransport()

    process(transport, batch_size=1)
    assert [to for to, _ in transport.sent] == ["urgent@example.com"]

    process(transport, batch_size=1)
    assert [to for to, _ in transport.sent] == ["urgent@example.com", "normal@example.com"]


def test_sends_are_throttled(engine, monkeypatch):
    for index in range(3):
        enqueue(to=f"user{index}@example.com")
    pauses = []
    monkeypatch.setattr(email_queue.time, "sleep", pauses.append)

    email_queue.process_email_queue(RecordingTransport(), send_delay=0.25, now=NOW)

    assert pauses == [0.25, 0.25]


def test_retry_failed_email(engine):
    email_id = enqueue(to="bounce@example.com", max_attempts=1)
    process(RecordingTransport(fail_for={"bounce@example.com"}))
    assert load(email_id).status == EmailQueueStatus.FAILED

    later = NOW + datetime.timedelta(hours=2)
    with get_session() as session:
        email_queue.retry_email(session, email_id, now=later)

    email = load(email_id)
    assert email.status == EmailQueueStatus.PENDING
    assert email.attempts == 0
    assert email.scheduled_for == later
    assert email.last_error is None

    transport = RecordingTransport()
    process(transport, now=later)
    assert load(email_id).status == EmailQueueStatus.COMPLETED


def test_only_failed_emails_can_be_retried(engine):
    email_id = enqueue()
    with pytest.raises(EmailQueueError):
        with get_session() as session:
            email_queue.retry_email(session, email_id)
    with pytest.raises(EmailQueueError):
        with get_session() as session:
            email_queue.retry_email(session, 4242)


def test_queue_stats_and_cleanup(engine):
    done = enqueue(to="done@example.com")
    enqueue(to="bounce@example.com", max_attempts=1)
    enqueue(to="later@example.com", scheduled_for=NOW + datetime.timedelta(days=1))
    process(RecordingTransport(fail_for={"bounce@example.com"}))

    with get_session() as session:
        stats = email_queue.get_queue_stats(session)
    assert (stats.pending, stats.processing, stats.completed, stats.failed) == (1, 0, 1, 1)
    assert stats.recent_completed == 1
    assert stats.recent_failed == 1

    with get_session() as session:
        assert email_queue.cleanup_old_emails(session) == 0
    with get_session() as session:
        assert email_queue.cleanup_old_emails(session, now=utcnow() + datetime.timedelta(days=8)) == 1

    assert load(done) is None
    with get_session() as session:
        assert len(repo.list_emails(session)) == 2


def test_backoff_starts_when_the_attempt_fails(engine, clock):
    first = enqueue(to="bounce1@example.com")
    second = enqueue(to="bounce2@example.com")
    transport = RecordingTransport(fail_for={"bounce1@example.com", "bounce2@example.com"})

    email_queue.process_email_queue(transport, send_delay=30, now=NOW)

    assert load(first).scheduled_for == NOW + datetime.timedelta(minutes=4)
    assert load(second).scheduled_for == NOW + datetime.timedelta(seconds=30, minutes=4)
