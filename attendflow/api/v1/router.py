from fastapi import APIRouter

from attendflow.api.v1.endpoints.notifications import router as notifications_router
from attendflow.api.v1.endpoints.tasks import router as tasks_router

router = APIRouter()


@router.get("/ping")
async def ping():
    return {"ping": "pong"}


router.include_router(tasks_router)
router.include_router(notifications_router)
