"""Run the approval engine REST server (the timeout worker starts in its lifespan)."""

from __future__ import annotations

import asyncio
import logging

import uvicorn
from grc_core.settings import ServerSettings

from approval_engine.main import app

logger = logging.getLogger(__name__)


async def run_server(settings: ServerSettings | None = None) -> None:
    settings = settings or ServerSettings()
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
    server = uvicorn.Server(config)
    logger.info("Starting approval-engine on %s:%d", settings.host, settings.port)
    await server.serve()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
