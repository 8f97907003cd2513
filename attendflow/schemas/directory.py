from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class UserRead(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class PendingLeaveRead(BaseModel):
    id: int
    student_id: int
    start_date: datetime
    end_date: datetime

    class Config:
        from_attributes = True
