from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from attendflow.api.v1.endpoints.tasks import get_notification_service
from attendflow.schemas import NotificationListResponse, NotificationRead, UnreadCountResponse
from attendflow.services import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])

# Identity comes from the caller; authentication is handled by the main API.


@router.get("/my", response_model=NotificationListResponse)
async def list_my_notifications_endpoint(
    user_id: int = Query(..., ge=1, description="Recipient user id"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationListResponse:
    return await service.list_notifications(user_id, page=page, limit=limit)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count_endpoint(
    user_id: int = Query(..., ge=1, description="Recipient user id"),
    service: NotificationService = Depends(get_notification_service),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await service.unread_count(user_id))


@router.put("/{notification_id}/read", response_model=NotificationRead)
async def mark_read_endpoint(
    notification_id: int,
    user_id: int = Query(..., ge=1, description="Recipient user id"),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationRead:
    notification = await service.mark_notification_read(notification_id, user_id=user_id)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification
