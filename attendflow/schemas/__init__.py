from .directory import PendingLeaveRead, UserRead  # noqa: F401
from .notification import (  # noqa: F401
    EmailNotificationRead,
    EmailStatus,
    NotificationListResponse,
    NotificationRead,
    UnreadCountResponse,
)
from .payloads import (  # noqa: F401
    AbsenteeReportPayload,
    AttendancePayload,
    EmailSendPayload,
    LeaveStatusUpdatePayload,
    decode_payload,
    encode_payload,
)
