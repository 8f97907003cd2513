import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from attendflow.api.errors import register_exception_handlers
from attendflow.api.v1.router import router as v1_router
from attendflow.config import settings
from attendflow.services import NotificationService, build_notification_service

logger = logging.getLogger("attendflow.api")


def create_app(service: NotificationService | None = None) -> FastAPI:
    """Ops API hosting the notification service for the lifetime of the app.

    The service is started on startup and stopped (drained) on shutdown. Pass
    a prebuilt service to run against other stores or brokers.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = service or build_notification_service(settings)
        app.state.notification_service = svc
        await svc.start()
        try:
            yield
        finally:
            await svc.stop()
            app.state.notification_service = None

    app = FastAPI(title="Attendance Notification Worker API", lifespan=lifespan)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Attach a request id to every response and log a compact access line.

        - If the caller provides X-Request-ID, we reuse it.
        - Otherwise we generate a UUID4.
        """

        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "access request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response

    register_exception_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(v1_router, prefix="/api/v1")
    return app


app = create_app()
