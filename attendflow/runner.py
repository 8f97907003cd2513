from __future__ import annotations

import asyncio
import logging
import signal

from attendflow.config import Settings, settings
from attendflow.services import NotificationService, build_notification_service

logger = logging.getLogger(__name__)


# Worker process entrypoint.
#
# Runs the worker pools and the scheduler without the HTTP surface
# (`attendflow-worker`). SIGINT/SIGTERM trigger the same ordered, draining
# shutdown as the API lifespan.
async def run_service(service: NotificationService) -> None:
    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Not available on every platform; Ctrl+C still raises KeyboardInterrupt.
            pass

    await service.start()
    logger.info("worker process running; waiting for SIGINT/SIGTERM")
    signalled = asyncio.create_task(stop_requested.wait())
    runners_exited = asyncio.create_task(service.wait())
    try:
        await asyncio.wait({signalled, runners_exited}, return_when=asyncio.FIRST_COMPLETED)
        if runners_exited.done():
            logger.error("background runners exited without a stop request")
    finally:
        signalled.cancel()
        runners_exited.cancel()
        logger.info("shutdown requested")
        await service.stop()


def configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main() -> None:
    configure_logging(settings)
    asyncio.run(run_service(build_notification_service(settings)))


if __name__ == "__main__":
    main()
