from .directory import SqlAttendanceStore, SqlLeaveStore, SqlUserStore  # noqa: F401
from .notification import SqlEmailNotificationStore, SqlNotificationStore  # noqa: F401
