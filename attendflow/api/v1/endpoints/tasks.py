from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from attendflow.schemas.dead_letter import DeadLetterListResponse, DeadLetterRead, QueueStatsResponse
from attendflow.services import NotificationService

router = APIRouter(tags=["tasks"])


def get_notification_service(request: Request) -> NotificationService:
    service = getattr(request.app.state, "notification_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Notification service not running")
    return service


@router.get("/tasks/stats", response_model=QueueStatsResponse)
async def queue_stats_endpoint(
    service: NotificationService = Depends(get_notification_service),
) -> QueueStatsResponse:
    broker_stats, workers = await service.queue_stats()
    return QueueStatsResponse(
        queues=broker_stats.queues,
        scheduled=broker_stats.scheduled,
        in_flight=broker_stats.in_flight,
        dead=broker_stats.dead,
        workers=workers,
    )


@router.get("/dead-letters", response_model=DeadLetterListResponse)
async def list_dead_letters_endpoint(
    limit: int = Query(50, ge=1, le=500),
    service: NotificationService = Depends(get_notification_service),
) -> DeadLetterListResponse:
    items = await service.dead_letters(limit)
    return DeadLetterListResponse(items=[DeadLetterRead.from_dead_letter(i) for i in items])


@router.post("/dead-letters/{task_id}/requeue")
async def requeue_dead_letter_endpoint(
    task_id: str,
    service: NotificationService = Depends(get_notification_service),
) -> dict:
    if not await service.requeue_dead_letter(task_id):
        raise HTTPException(status_code=404, detail="Dead letter not found")
    return {"task_id": task_id, "requeued": True}
