import pytest

from attendflow.errors import EmailSendError, HandlerError
from attendflow.handlers import EmailSendHandler
from attendflow.schemas import EmailStatus, UserRead
from attendflow.tasks.types import TaskType
from tests.fakes import (
    FakeEmailNotificationStore,
    FakeUserStore,
    RecordingTransport,
    make_ctx,
    make_task,
)

STUDENT = UserRead(id=5, name="Asha", email="asha@example.edu")


async def _queued_email(emails: FakeEmailNotificationStore, user_id: int = 5):
    record = await emails.create(user_id=user_id, subject="Absence recorded", body="You were absent.")
    task = make_task(TaskType.EMAIL_SEND, f'{{"email_notification_id": {record.id}}}'.encode())
    return record, task


@pytest.mark.anyio
async def test_email_is_sent_and_marked_sent():
    emails = FakeEmailNotificationStore()
    transport = RecordingTransport()
    record, task = await _queued_email(emails)

    await EmailSendHandler(emails, FakeUserStore([STUDENT]), transport)(make_ctx(task), task)

    assert transport.sent == [("asha@example.edu", "Absence recorded", "You were absent.")]
    stored = emails.rows[record.id]
    assert stored.status is EmailStatus.SENT
    assert stored.sent_at is not None
    assert stored.error is None


@pytest.mark.anyio
async def test_send_failure_is_recorded_and_the_task_completes():
    emails = FakeEmailNotificationStore()
    transport = RecordingTransport(fail_with=EmailSendError("mailbox unavailable"))
    record, task = await _queued_email(emails)

    await EmailSendHandler(emails, FakeUserStore([STUDENT]), transport)(make_ctx(task), task)

    stored = emails.rows[record.id]
    assert stored.status is EmailStatus.FAILED
    assert stored.error == "mailbox unavailable"
    assert stored.sent_at is None


@pytest.mark.anyio
@pytest.mark.parametrize("finish", ["mark_sent", "mark_failed"])
async def test_terminal_email_is_never_sent_again(finish):
    emails = FakeEmailNotificationStore()
    transport = RecordingTransport()
    record, task = await _queued_email(emails)
    if finish == "mark_sent":
        await emails.mark_sent(record.id, sent_at=record.created_at)
    else:
        await emails.mark_failed(record.id, error="earlier failure")
    before = emails.rows[record.id]

    await EmailSendHandler(emails, FakeUserStore([STUDENT]), transport)(make_ctx(task), task)

    assert transport.sent == []
    assert emails.rows[record.id] == before


@pytest.mark.anyio
async def test_missing_recipient_fails_the_task_for_retry():
    emails = FakeEmailNotificationStore()
    record, task = await _queued_email(emails, user_id=99)

    with pytest.raises(HandlerError):
        await EmailSendHandler(emails, FakeUserStore([STUDENT]), RecordingTransport())(make_ctx(task), task)
    assert emails.rows[record.id].status is EmailStatus.PENDING


@pytest.mark.anyio
async def test_missing_email_record_fails_the_task():
    task = make_task(TaskType.EMAIL_SEND, b'{"email_notification_id": 404}')

    with pytest.raises(HandlerError):
        await EmailSendHandler(FakeEmailNotificationStore(), FakeUserStore(), RecordingTransport())(make_ctx(task), task)
