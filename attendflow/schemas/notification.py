from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationRead(BaseModel):
    id: int
    user_id: int

    type: str
    title: str
    message: str

    is_read: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class EmailNotificationRead(BaseModel):
    id: int
    user_id: int

    subject: str
    body: str

    status: EmailStatus = EmailStatus.PENDING
    error: str | None = None
    sent_at: datetime | None = None

    created_at: datetime

    class Config:
        from_attributes = True

    @property
    def is_terminal(self) -> bool:
        return self.status is not EmailStatus.PENDING


class NotificationListResponse(BaseModel):
    items: list[NotificationRead]
    page: int
    limit: int
    total: int
    total_pages: int


class UnreadCountResponse(BaseModel):
    unread_count: int
