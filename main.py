"""
pump.fun graduate tracker - entry point

Runs the PumpPortal feed, enrichment and SSE server in one event loop.
"""

import asyncio
import logging

import uvicorn

from config import LOG_LEVEL, LOG_FORMAT, HOST, PORT, RECONNECT_MODE, GRADUATES_FILE, MAX_GRADUATES
from graduate_store import GraduateStore
from graduation_tracker import GraduationTracker, make_reconnect_policy
from server import create_app

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format=LOG_FORMAT,
    handlers=[logging.StreamHandler()]
)

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("websockets").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def build_tracker() -> GraduationTracker:
    return GraduationTracker(
        store=GraduateStore(GRADUATES_FILE, MAX_GRADUATES),
        reconnect=make_reconnect_policy(RECONNECT_MODE),
    )


async def main():
    tracker = build_tracker()
    app = create_app(tracker)

    config_obj = uvicorn.Config(
        app,
        host=HOST,
        port=PORT,
        log_level="warning"
    )
    server = uvicorn.Server(config_obj)

    logger.info(f"🚀 Graduate tracker listening on {HOST}:{PORT} (reconnect mode: {RECONNECT_MODE})")
    await server.serve()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Tracker stopped by user")
