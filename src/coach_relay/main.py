from __future__ import annotations

import uvicorn
from loguru import logger

from .logging_config import configure_logging
from .settings import settings


def run_service() -> None:
    configure_logging(settings.log_level)
    logger.info("Coach relay listening on {}:{}", settings.api_host, settings.api_port)

    uvicorn.run(
        "coach_relay.api:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    run_service()
