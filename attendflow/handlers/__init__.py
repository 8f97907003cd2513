from .attendance import AttendanceMarkedHandler  # noqa: F401
from .email import EmailDispatcher, EmailSendHandler, dispatch_email_quietly  # noqa: F401
from .leave import LeaveStatusUpdateHandler  # noqa: F401
from .reminder import PendingLeaveReminderHandler  # noqa: F401
from .report import AbsenteeReportHandler  # noqa: F401
