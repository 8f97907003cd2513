import pytest

from attendflow.errors import UnknownTaskTypeError
from attendflow.tasks.types import TaskType
from attendflow.worker import HandlerRegistry


async def _noop(ctx, task):
    return None


def test_register_and_resolve_by_wire_name():
    registry = HandlerRegistry()
    registry.register(TaskType.LEAVE_STATUS_UPDATE, _noop)

    kind, handler = registry.resolve("leave:status_update")

    assert kind is TaskType.LEAVE_STATUS_UPDATE
    assert handler is _noop
    assert TaskType.LEAVE_STATUS_UPDATE in registry
    assert "leave:status_update" in registry
    assert registry.task_types == frozenset({TaskType.LEAVE_STATUS_UPDATE})


def test_duplicate_registration_is_rejected():
    registry = HandlerRegistry()
    registry.register(TaskType.EMAIL_SEND, _noop)

    with pytest.raises(ValueError, match="already registered"):
        registry.register("email:send", _noop)


def test_undeclared_task_type_cannot_be_registered():
    registry = HandlerRegistry()

    with pytest.raises(ValueError, match="undeclared"):
        registry.register("sms:send", _noop)
    assert "sms:send" not in registry


@pytest.mark.parametrize("task_type", ["sms:send", "attendance:marked"])
def test_resolve_unknown_or_unregistered_type_raises(task_type):
    registry = HandlerRegistry()
    registry.register(TaskType.LEAVE_STATUS_UPDATE, _noop)

    with pytest.raises(UnknownTaskTypeError):
        registry.resolve(task_type)


def test_require_lists_missing_handlers():
    registry = HandlerRegistry()
    registry.register(TaskType.LEAVE_STATUS_UPDATE, _noop)

    registry.require([TaskType.LEAVE_STATUS_UPDATE])
    with pytest.raises(ValueError, match="report:absentee"):
        registry.require([TaskType.LEAVE_STATUS_UPDATE, TaskType.ABSENTEE_REPORT])
