# Import models here so metadata.create_all() sees every table
from .base import Base  # noqa: F401
from .user import User  # noqa: F401
from .leave_request import LeaveRequest  # noqa: F401
from .attendance import Attendance  # noqa: F401
from .notification import EmailNotification, Notification  # noqa: F401
