from __future__ import annotations

from attendflow.broker import create_broker
from attendflow.config import Settings
from attendflow.mailer import create_transport

from .notification_service import NotificationService, Stores


def build_notification_service(settings: Settings) -> NotificationService:
    """Wire the production service: configured broker, SQL stores, SMTP transport."""

    # Imported here so building a service with fake stores never touches the DB engine.
    from attendflow.crud import (
        SqlAttendanceStore,
        SqlEmailNotificationStore,
        SqlLeaveStore,
        SqlNotificationStore,
        SqlUserStore,
    )
    from attendflow.database import SessionLocal

    stores = Stores(
        notifications=SqlNotificationStore(SessionLocal),
        emails=SqlEmailNotificationStore(SessionLocal),
        users=SqlUserStore(SessionLocal),
        leaves=SqlLeaveStore(SessionLocal),
        attendance=SqlAttendanceStore(SessionLocal),
    )
    return NotificationService(
        broker=create_broker(settings),
        stores=stores,
        transport=create_transport(settings),
        settings=settings,
    )


__all__ = ["NotificationService", "Stores", "build_notification_service"]
