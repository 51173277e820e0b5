"""
PumpPortal WebSocket Monitor - migration feed connection with keepalive and reconnect
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets

from config import (
    PUMPPORTAL_WS_URL, FEED_CONNECT_TIMEOUT, FEED_KEEPALIVE_INTERVAL,
    RECONNECT_BASE_DELAY, MAX_RECONNECT_ATTEMPTS,
)
from models import utc_now_iso
from scheduler import ScheduledTask, Scheduler

logger = logging.getLogger(__name__)

# PumpPortal only delivers migrations for exactly this payload
SUBSCRIBE_MESSAGE = {"method": "subscribeMigration"}


class ConnectionState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'


async def open_websocket(url: str):
    # keepalive pings are driven by PumpPortalMonitor itself
    return await websockets.connect(url, ping_interval=None, close_timeout=5, max_size=None)


class ReconnectPolicy:
    """What the monitor does after the feed drops"""

    mode = 'none'
    reconnect_on_probe = False

    def __init__(self):
        self.monitor: Optional['PumpPortalMonitor'] = None

    def attach(self, monitor: 'PumpPortalMonitor'):
        self.monitor = monitor

    def on_connected(self):
        pass

    async def on_disconnected(self):
        pass

    def status(self) -> Dict[str, Any]:
        return {'reconnectMode': self.mode}


class BackoffReconnect(ReconnectPolicy):
    """Self-scheduled reconnects: base, 2x base, 4x base ... then give up"""

    mode = 'backoff'

    def __init__(self, base_delay: float = RECONNECT_BASE_DELAY, max_attempts: int = MAX_RECONNECT_ATTEMPTS):
        super().__init__()
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self.attempts = 0
        self.exhausted = False
        self._pending: Optional[ScheduledTask] = None

    def next_delay(self) -> float:
        return self.base_delay * (2 ** self.attempts)

    def on_connected(self):
        self.attempts = 0
        self.exhausted = False
        if self._pending:
            self._pending.cancel()
            self._pending = None

    async def on_disconnected(self):
        if self.attempts >= self.max_attempts:
            self.exhausted = True
            self._pending = None
            logger.error("❌ Max reconnection attempts reached. Restart required (or POST /pumpportal/connect)")
            return

        delay = self.next_delay()
        self.attempts += 1
        logger.info(f"🔄 Reconnecting to PumpPortal in {delay:g}s (attempt {self.attempts}/{self.max_attempts})")
        self._pending = self.monitor.scheduler.call_later(delay, self.monitor.connect, name='pumpportal-reconnect')

    def status(self) -> Dict[str, Any]:
        return {
            'reconnectMode': self.mode,
            'reconnectAttempts': self.attempts,
            'reconnectExhausted': self.exhausted,
        }


class ManualReconnect(ReconnectPolicy):
    """No background retries; health checks and /connect reconnect lazily"""

    mode = 'manual'
    reconnect_on_probe = True

    async def on_disconnected(self):
        logger.info("🔌 Feed down - waiting for next health probe to reconnect")

    def status(self) -> Dict[str, Any]:
        return {'reconnectMode': self.mode, 'reconnectAttempts': 0, 'reconnectExhausted': False}


class PumpPortalMonitor:
    """Owns the single PumpPortal connection.

    Frames are handed to on_message one at a time, in arrival order. The
    keepalive timer lives exactly as long as the socket does.
    """

    def __init__(
        self,
        on_message: Callable[[Any], Awaitable[None]],
        scheduler: Scheduler,
        reconnect: Optional[ReconnectPolicy] = None,
        url: str = PUMPPORTAL_WS_URL,
        connect_timeout: float = FEED_CONNECT_TIMEOUT,
        keepalive_interval: float = FEED_KEEPALIVE_INTERVAL,
        connector: Callable[[str], Awaitable[Any]] = open_websocket,
    ):
        self.on_message = on_message
        self.scheduler = scheduler
        self.reconnect = reconnect or BackoffReconnect()
        self.reconnect.attach(self)
        self.url = url
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval
        self._connector = connector

        self.state = ConnectionState.DISCONNECTED
        self.websocket = None
        self.last_connect_time: Optional[str] = None
        self.last_error: Optional[str] = None
        self._keepalive: Optional[ScheduledTask] = None
        self._reader: Optional[asyncio.Task] = None
        self._closing = False

        # Statistics
        self.connections = 0
        self.messages_received = 0

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def connect(self) -> bool:
        """Open the feed and subscribe. Safe to call when already connected."""
        if self.state is ConnectionState.CONNECTED:
            logger.debug("🔗 PumpPortal already connected")
            return True
        if self.state is ConnectionState.CONNECTING:
            logger.debug("🔗 PumpPortal connect already in progress")
            return False

        self._closing = False
        self.state = ConnectionState.CONNECTING
        self.last_connect_time = utc_now_iso()
        logger.info(f"🔗 Connecting to PumpPortal WebSocket ({self.url})...")

        websocket = None
        try:
            websocket = await asyncio.wait_for(self._connector(self.url), timeout=self.connect_timeout)
            await websocket.send(json.dumps(SUBSCRIBE_MESSAGE))
        except asyncio.CancelledError:
            self.state = ConnectionState.DISCONNECTED
            raise
        except asyncio.TimeoutError:
            return await self._connect_failed(websocket, f"connection timeout after {self.connect_timeout:g}s")
        except Exception as e:
            return await self._connect_failed(websocket, str(e) or e.__class__.__name__)

        self.websocket = websocket
        self.state = ConnectionState.CONNECTED
        self.connections += 1
        self.last_error = None
        self.reconnect.on_connected()
        logger.info("✅ Connected to PumpPortal WebSocket")
        logger.info("📡 Subscribed to pump.fun migration/graduation events")

        self._keepalive = self.scheduler.call_every(
            self.keepalive_interval, self._send_keepalive, websocket, name='pumpportal-keepalive'
        )
        self._reader = asyncio.create_task(self._read_loop(websocket))
        return True

    async def _connect_failed(self, websocket, reason: str) -> bool:
        logger.error(f"❌ PumpPortal connection failed: {reason}")
        self.last_error = reason
        self.state = ConnectionState.DISCONNECTED
        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Close after failed subscribe: {e}")
        if not self._closing:
            await self.reconnect.on_disconnected()
        return False

    async def _read_loop(self, websocket):
        reason = "closed by server"
        try:
            async for raw in websocket:
                self.messages_received += 1
                try:
                    await self.on_message(raw)
                except Exception:
                    logger.exception("Message processing error")
        except asyncio.CancelledError:
            reason = "reader cancelled"
            raise
        except websockets.exceptions.ConnectionClosed as e:
            reason = f"connection closed ({e})"
        except Exception as e:
            reason = f"transport error: {e}"
        finally:
            if self.websocket is websocket:
                await self._handle_closed(reason)

    async def _handle_closed(self, reason: str):
        logger.warning(f"🔌 PumpPortal WebSocket closed: {reason}")
        self.state = ConnectionState.DISCONNECTED
        self.last_error = reason
        self.websocket = None
        if self._keepalive:
            self._keepalive.cancel()
            self._keepalive = None
        if not self._closing:
            await self.reconnect.on_disconnected()

    async def _send_keepalive(self, websocket):
        if websocket is not self.websocket:
            return
        try:
            await websocket.ping()
            logger.debug("💓 PumpPortal keepalive sent")
        except Exception as e:
            logger.warning(f"Keepalive failed, dropping connection: {e}")
            await websocket.close()

    async def close(self):
        """Close the feed for shutdown; no reconnect is scheduled"""
        self._closing = True
        if self._keepalive:
            self._keepalive.cancel()
            self._keepalive = None
        websocket, reader = self.websocket, self._reader
        if websocket is not None:
            logger.info("🔌 Closing PumpPortal WebSocket...")
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Close error: {e}")
        if reader is not None and not reader.done():
            try:
                await asyncio.wait_for(reader, timeout=5)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                reader.cancel()
        self.websocket = None
        self._reader = None
        self.state = ConnectionState.DISCONNECTED

    async def probe(self) -> Dict[str, bool]:
        """Health-check hook: reconnect lazily when the policy allows it"""
        if self.connected or not self.reconnect.reconnect_on_probe:
            return {'reconnectAttempted': False, 'reconnected': False}
        reconnected = await self.connect()
        return {'reconnectAttempted': True, 'reconnected': reconnected}

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            'connected': self.connected,
            'state': self.state.value,
            'lastConnectTime': self.last_connect_time,
            'lastError': self.last_error,
            'connections': self.connections,
            'messagesReceived': self.messages_received,
        }
        stats.update(self.reconnect.status())
        return stats
