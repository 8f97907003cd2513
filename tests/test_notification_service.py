import asyncio
from datetime import date

import pytest

from attendflow.broker import InMemoryBroker
from attendflow.errors import EnqueueError
from attendflow.schemas import AttendancePayload, EmailStatus, LeaveStatusUpdatePayload, UserRead
from attendflow.services import NotificationService
from attendflow.tasks.emit import emit_attendance_notification, emit_leave_status_notification
from attendflow.tasks.types import EMAIL_QUEUE, TaskType
from tests.fakes import FakeNotificationStore, FakeUserStore, RecordingTransport, make_stores, wait_until


def _service(settings, broker=None, **store_overrides):
    transport = RecordingTransport()
    stores = make_stores(
        users=FakeUserStore([UserRead(id=42, name="Asha", email="asha@example.edu")]),
        **store_overrides,
    )
    service = NotificationService(
        broker=broker or InMemoryBroker(),
        stores=stores,
        transport=transport,
        settings=settings,
    )
    return service, stores, transport


class BrokenBroker(InMemoryBroker):
    async def enqueue(self, task):
        raise ConnectionError("redis unreachable")


@pytest.mark.anyio
async def test_leave_status_change_ends_up_as_a_notification(test_settings):
    service, stores, _ = _service(test_settings)
    await service.start()
    try:
        task_id = await service.queue_leave_status_notification(
            LeaveStatusUpdatePayload(leave_id=7, student_id=42, status="approved", approved_by="hod")
        )
        await wait_until(lambda: len(stores.notifications.rows) == 1)
    finally:
        await service.stop()

    assert task_id
    [row] = stores.notifications.rows
    assert row.user_id == 42
    assert row.message == "Your leave request has been approved."


@pytest.mark.anyio
async def test_absence_is_notified_and_emailed(test_settings):
    service, stores, transport = _service(test_settings)
    await service.start()
    try:
        await service.queue_attendance_notification(
            AttendancePayload(student_id=42, date=date(2024, 3, 4), present=False, marked_by="Ms. Rao")
        )
        await wait_until(lambda: transport.sent)
        await wait_until(lambda: all(r.is_terminal for r in stores.emails.rows.values()))
    finally:
        await service.stop()

    assert len(stores.notifications.rows) == 1
    [(to, subject, _)] = transport.sent
    assert to == "asha@example.edu"
    assert subject == "Absence recorded for 2024-03-04"
    [email] = stores.emails.rows.values()
    assert email.status is EmailStatus.SENT


@pytest.mark.anyio
async def test_queue_email_notification_creates_pending_record_on_email_queue(test_settings):
    broker = InMemoryBroker()
    service, stores, _ = _service(test_settings, broker=broker)

    await service.queue_email_notification(42, "Hello", "Body")

    [record] = stores.emails.rows.values()
    assert record.status is EmailStatus.PENDING
    delivery = await broker.dequeue([EMAIL_QUEUE], timeout=0.1)
    assert delivery.task.type == TaskType.EMAIL_SEND.value
    assert delivery.task.payload == f'{{"email_notification_id":{record.id}}}'.encode()
    await service.stop()


@pytest.mark.anyio
async def test_enqueue_failure_surfaces_as_enqueue_error(test_settings):
    service, _, _ = _service(test_settings, broker=BrokenBroker())
    payload = LeaveStatusUpdatePayload(leave_id=1, student_id=42, status="rejected")

    with pytest.raises(EnqueueError):
        await service.queue_leave_status_notification(payload)


@pytest.mark.anyio
async def test_emit_helpers_never_fail_the_caller(test_settings, caplog):
    service, _, _ = _service(test_settings, broker=BrokenBroker())

    leave = await emit_leave_status_notification(
        service, LeaveStatusUpdatePayload(leave_id=1, student_id=42, status="rejected")
    )
    attendance = await emit_attendance_notification(
        service, AttendancePayload(student_id=42, date=date(2024, 3, 4), present=True, marked_by="x")
    )

    assert leave is None
    assert attendance is None
    assert "Failed to queue leave status notification" in caplog.text


@pytest.mark.anyio
async def test_stop_before_start_then_start_is_rejected(test_settings):
    service, _, _ = _service(test_settings)

    await service.stop()
    await service.stop()
    with pytest.raises(RuntimeError):
        await service.start()


@pytest.mark.anyio
async def test_stop_is_idempotent_and_closes_the_broker(test_settings):
    broker = InMemoryBroker()
    service, _, _ = _service(test_settings, broker=broker)
    await service.start()

    await service.stop()
    await service.stop()

    with pytest.raises(EnqueueError):
        await service.queue_leave_status_notification(
            LeaveStatusUpdatePayload(leave_id=1, student_id=42, status="approved")
        )


@pytest.mark.anyio
async def test_register_handler_rejects_duplicates_and_late_registration(test_settings):
    service, _, _ = _service(test_settings)

    async def handler(ctx, task):
        return None

    with pytest.raises(ValueError):
        service.register_handler(TaskType.LEAVE_STATUS_UPDATE, handler)

    await service.start()
    try:
        with pytest.raises(RuntimeError):
            service.register_handler(TaskType.EMAIL_SEND, handler)
    finally:
        await service.stop()


@pytest.mark.anyio
async def test_enqueue_with_cron_registers_a_recurring_entry(test_settings):
    broker = InMemoryBroker()
    service, _, _ = _service(test_settings, broker=broker)

    entry_id = await service.enqueue(
        TaskType.ABSENTEE_REPORT, {"period_days": 30}, queue="reports", max_retry=1, schedule_cron="0 6 1 * *"
    )

    [entry] = [e for e in service.scheduler.entries if e.id == entry_id]
    assert entry.cron == "0 6 1 * *"
    assert entry.payload == {"period_days": 30}
    assert (await broker.stats(["reports"])).queues == {"reports": 0}
    await service.stop()


@pytest.mark.anyio
async def test_queue_stats_and_dead_letter_requeue(test_settings):
    broker = InMemoryBroker()
    service, _, _ = _service(test_settings, broker=broker)
    await service.start()
    try:
        task_id = await service.enqueue("sms:send", {"to": "x"})
        await wait_until(lambda: service.worker_pool.stats()["dead_lettered"] == 1)

        stats, workers = await service.queue_stats()
        assert stats.dead == 1
        assert workers["default"]["dead_lettered"] == 1
        assert [d.task.id for d in await service.dead_letters()] == [task_id]
        assert await service.requeue_dead_letter(task_id) is True
    finally:
        await service.stop()


class HangingNotificationStore(FakeNotificationStore):
    async def create(self, **kwargs):
        await asyncio.sleep(30)


class HangingTransport(RecordingTransport):
    async def send(self, to, subject, body):
        await asyncio.sleep(30)


@pytest.mark.anyio
async def test_stop_drains_both_pools_within_one_grace_period(test_settings):
    config = test_settings.model_copy(update={"shutdown_grace_seconds": 0.5, "task_timeout_seconds": 5.0})
    stores = make_stores(
        notifications=HangingNotificationStore(),
        users=FakeUserStore([UserRead(id=42, name="Asha", email="asha@example.edu")]),
    )
    service = NotificationService(broker=InMemoryBroker(), stores=stores, transport=HangingTransport(), settings=config)
    await service.start()
    await service.queue_leave_status_notification(LeaveStatusUpdatePayload(leave_id=1, student_id=42, status="approved"))
    await service.queue_email_notification(42, "Hello", "Body")
    await wait_until(lambda: service.worker_pool.in_flight == 1 and service.email_pool.in_flight == 1)

    loop = asyncio.get_running_loop()
    started = loop.time()
    await service.stop()

    assert loop.time() - started < 0.9


@pytest.mark.anyio
async def test_unqueued_email_is_marked_failed(test_settings):
    service, stores, _ = _service(test_settings, broker=BrokenBroker())

    with pytest.raises(EnqueueError):
        await service.queue_email_notification(42, "Hello", "Body")

    [record] = stores.emails.rows.values()
    assert record.status is EmailStatus.FAILED
    assert "redis unreachable" in record.error


@pytest.mark.anyio
async def test_notification_listing_is_paginated_newest_first(test_settings):
    service, stores, _ = _service(test_settings)
    for n in range(5):
        await stores.notifications.create(user_id=42, type="attendance", title="t", message=f"m{n}")
    await stores.notifications.create(user_id=7, type="attendance", title="t", message="other user")

    first = await service.list_notifications(42, page=1, limit=2)
    last = await service.list_notifications(42, page=3, limit=2)

    assert [n.message for n in first.items] == ["m4", "m3"]
    assert (first.total, first.total_pages) == (5, 3)
    assert [n.message for n in last.items] == ["m0"]
    assert (await service.list_notifications(42, page=4, limit=2)).items == []


@pytest.mark.anyio
async def test_mark_read_is_scoped_to_the_owner_and_updates_unread_count(test_settings):
    service, stores, _ = _service(test_settings)
    mine = await stores.notifications.create(user_id=42, type="reminder", title="t", message="m")
    await stores.notifications.create(user_id=42, type="reminder", title="t", message="m")

    assert await service.unread_count(42) == 2
    assert await service.mark_notification_read(mine.id, user_id=7) is None
    read = await service.mark_notification_read(mine.id, user_id=42)

    assert read.is_read is True
    assert await service.unread_count(42) == 1
