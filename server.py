"""
Web server - SSE stream, health and store management endpoints
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional, Union

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from graduation_tracker import GraduationTracker

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_app(tracker: GraduationTracker, manage_lifecycle: bool = True) -> FastAPI:
    """FastAPI app around one tracker. With manage_lifecycle the tracker is
    started and stopped together with the server."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            await tracker.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await tracker.stop()

    app = FastAPI(title="pump.fun graduate tracker", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.tracker = tracker

    @app.get("/")
    async def root():
        return {
            "status": "ok",
            "service": "pump.fun graduate tracker",
            "connected": tracker.monitor.connected,
            "graduates": len(tracker.store),
        }

    @app.get("/pumpportal/events")
    async def events():
        """Server-sent events: snapshot first, then newGraduate / ping / clear"""
        subscriber = tracker.broadcaster.subscribe()

        async def stream():
            try:
                async for message in subscriber.stream():
                    yield message
            finally:
                tracker.broadcaster.unsubscribe(subscriber)

        return StreamingResponse(stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.get("/pumpportal/health")
    @app.get("/moralis/health")
    async def health():
        return await tracker.health()

    @app.post("/pumpportal/connect")
    async def connect():
        result = await tracker.reconnect()
        if result["alreadyConnected"]:
            return {"status": "already_connected", **result}
        if result["connected"]:
            return {"status": "connected", **result}
        raise HTTPException(status_code=503, detail={"status": "error", **result,
                                                     "error": tracker.monitor.last_error})

    @app.get("/api/graduates")
    async def list_graduates(limit: Optional[int] = None):
        records = tracker.list_graduates(limit)
        return {"count": len(records), "graduates": [r.to_dict() for r in records]}

    @app.put("/api/graduates")
    async def replace_graduates(payload: Union[List[Any], dict] = Body(...)):
        entries = payload.get("graduates") if isinstance(payload, dict) else payload
        if not isinstance(entries, list):
            raise HTTPException(status_code=400, detail={"status": "error", "error": "expected an array of graduates"})
        try:
            count = tracker.replace_graduates(entries)
        except ValueError as e:
            raise HTTPException(status_code=400, detail={"status": "error", "error": str(e)})
        return {"status": "success", "count": count}

    @app.post("/api/data/clear")
    async def clear_data():
        tracker.clear()
        return {"status": "success", "message": "All graduate data cleared", "count": 0}

    @app.post("/api/add-graduate/{mint}")
    async def add_graduate(mint: str):
        created, record = tracker.add_graduate(mint)
        if not created:
            return {"status": "already_exists", "token": mint}
        return {"status": "added", "token": mint, "data": record.to_dict()}

    @app.post("/api/refresh-trading-data")
    async def refresh_trading_data():
        queued = tracker.refresh_in_background()
        return {"status": "initiated", "message": "Trading data refresh started", "tokensToUpdate": queued}

    @app.post("/api/test-telegram")
    async def test_telegram():
        if not tracker.notifier.enabled:
            raise HTTPException(status_code=400, detail={
                "status": "error",
                "message": "Telegram not configured. Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID.",
            })
        if not await tracker.send_test_notification():
            raise HTTPException(status_code=502, detail={"status": "error", "message": "Failed to send test notification"})
        return {"status": "success", "message": "Test notification sent to Telegram!", "chatId": tracker.notifier.chat_id}

    return app
