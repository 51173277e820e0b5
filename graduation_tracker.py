"""
Graduation Tracker - wires the PumpPortal feed, filters, store, enrichment,
SSE fan-out and Telegram alerts into one pipeline
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dexscreener_client import DexScreenerClient
from enrichment import EnrichmentEngine
from graduate_store import GraduateStore
from graduation_filter import DedupGate, FeedVerdict, classify, dedup_key
from models import GraduationRecord, TradingStats
from pumpportal_monitor import BackoffReconnect, ManualReconnect, PumpPortalMonitor, ReconnectPolicy, open_websocket
from scheduler import Scheduler
from sse_broadcaster import GraduateBroadcaster
from telegram_bot import TelegramNotifier

logger = logging.getLogger(__name__)

TEST_MINT = 'TestToken123ABCxyz456789TestPumpToken'


def make_reconnect_policy(mode: str) -> ReconnectPolicy:
    if mode == 'manual':
        return ManualReconnect()
    if mode != 'backoff':
        logger.warning(f"Unknown RECONNECT_MODE '{mode}' - using backoff")
    return BackoffReconnect()


def build_test_record() -> GraduationRecord:
    return GraduationRecord(
        mint=TEST_MINT,
        name='Test Token',
        symbol='TEST',
        liquidity_usd=75000,
        price_usd=0.000123,
        market_cap=123456,
        fdv=150000,
        dex='pump-amm',
        pair_address='TestPairAddress123',
        dexscreener_url='https://dexscreener.com/solana/test',
        stats=TradingStats(
            volume_1h=1200, volume_24h=12500,
            txns_1h={'buys': 15, 'sells': 8}, txns_24h={'buys': 145, 'sells': 98},
            price_change_1h=5.67, price_change_24h=23.45,
        ),
    )


class GraduationTracker:
    """Feed message -> classify -> dedup -> store -> broadcast -> enrich -> notify"""

    def __init__(
        self,
        scheduler: Optional[Scheduler] = None,
        store: Optional[GraduateStore] = None,
        client: Optional[DexScreenerClient] = None,
        notifier: Optional[TelegramNotifier] = None,
        reconnect: Optional[ReconnectPolicy] = None,
        dedup: Optional[DedupGate] = None,
        connector=open_websocket,
        enrichment_options: Optional[Dict[str, Any]] = None,
        broadcaster_options: Optional[Dict[str, Any]] = None,
        monitor_options: Optional[Dict[str, Any]] = None,
    ):
        self.scheduler = scheduler or Scheduler()
        self.store = store if store is not None else GraduateStore()
        self.client = client or DexScreenerClient()
        self.notifier = notifier or TelegramNotifier()
        self.dedup = dedup or DedupGate()
        self.broadcaster = GraduateBroadcaster(
            self.scheduler, self.store.list, **(broadcaster_options or {})
        )
        self.enrichment = EnrichmentEngine(
            self.scheduler, self.client, self.store, self.broadcaster, self.notifier,
            **(enrichment_options or {})
        )
        self.monitor = PumpPortalMonitor(
            self.handle_message, self.scheduler, reconnect=reconnect, connector=connector,
            **(monitor_options or {})
        )

        # Statistics
        self.graduations_detected = 0
        self.duplicates_skipped = 0
        self.other_venue_skipped = 0
        self.non_graduation_messages = 0
        self.parse_errors = 0

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        logger.info("🎓 Starting PumpPortal pump.fun graduate tracking")
        self.store.load()
        self.broadcaster.start()
        self.enrichment.start()
        await self.monitor.connect()

    async def stop(self):
        await self.monitor.close()
        self.enrichment.stop()
        self.broadcaster.stop()
        self.scheduler.cancel_all()
        await self.client.close()
        logger.info(
            f"Graduate tracker stopped. Graduations: {self.graduations_detected} | "
            f"duplicates: {self.duplicates_skipped} | other venues: {self.other_venue_skipped}"
        )

    # ------------------------------------------------------------------
    # ingestion
    # ------------------------------------------------------------------

    async def handle_message(self, raw) -> Optional[GraduationRecord]:
        """Process one feed frame. Returns the new record when one was created."""
        result = classify(raw)

        if result.verdict is FeedVerdict.PARSE_ERROR:
            self.parse_errors += 1
            logger.warning(f"Dropping undecodable PumpPortal frame: {result.error}")
            return None

        if result.verdict is FeedVerdict.OTHER_VENUE:
            self.other_venue_skipped += 1
            message = result.message
            logger.warning(f"⏭️ Skipping non-pump.fun migration: {message.get('mint')} (pool: {message.get('pool')})")
            return None

        if result.verdict is FeedVerdict.NOT_GRADUATION:
            self.non_graduation_messages += 1
            logger.debug(f"Ignoring non-graduation message: {str(result.message)[:200]}")
            return None

        message = result.message
        mint = message['mint']
        if not self.dedup.check_and_mark(dedup_key(message)) or mint in self.store:
            self.duplicates_skipped += 1
            logger.debug(f"Duplicate graduation for {mint[:8]}... skipped")
            return None

        record = GraduationRecord.from_feed(message)
        self.store.insert(record)
        self.graduations_detected += 1
        logger.info(f"🎓 PUMP.FUN GRADUATION DETECTED: {mint} ({record.symbol or record.name or 'unnamed'})")

        self.broadcaster.broadcast_graduate(record)
        self.enrichment.enrich(record)
        return record

    # ------------------------------------------------------------------
    # operations behind the HTTP surface
    # ------------------------------------------------------------------

    def list_graduates(self, limit: Optional[int] = None) -> List[GraduationRecord]:
        return self.store.list(limit)

    def add_graduate(self, mint: str) -> Tuple[bool, GraduationRecord]:
        """Manually track a mint the feed missed. (created, record)"""
        existing = self.store.get(mint)
        if existing is not None:
            return False, existing
        record = GraduationRecord(mint=mint, dex=None)
        self.store.insert(record)
        logger.info(f"🔍 Manually added graduate: {mint}")
        self.broadcaster.broadcast_graduate(record)
        self.enrichment.enrich(record, delay=0)
        return True, record

    def replace_graduates(self, entries: Iterable[Dict[str, Any]]) -> int:
        """Swap the whole store for entries. Raises ValueError on a bad entry."""
        records = [GraduationRecord.from_dict(entry) for entry in entries]
        count = self.store.replace_all(records)
        self.broadcaster.broadcast({
            'type': 'graduates',
            'data': [r.to_dict() for r in self.store.list(self.broadcaster.snapshot_size)],
        })
        logger.info(f"📥 Graduate store replaced with {count} records")
        return count

    def clear(self):
        self.store.clear()
        self.dedup.clear()
        self.enrichment.reset()
        self.broadcaster.broadcast_clear()
        logger.info("🗑️ All graduate data cleared")

    def refresh_in_background(self) -> int:
        self.scheduler.call_later(0, self.enrichment.refresh_all, name='manual-refresh')
        return len(self.store)

    async def send_test_notification(self) -> bool:
        return await self.notifier.send_graduation(build_test_record())

    async def reconnect(self) -> Dict[str, Any]:
        was_connected = self.monitor.connected
        connected = await self.monitor.connect()
        return {'alreadyConnected': was_connected, 'connected': connected}

    async def health(self) -> Dict[str, Any]:
        probe = await self.monitor.probe()
        status = {'ok': True}
        status.update(self.monitor.get_stats())
        if self.monitor.reconnect.reconnect_on_probe:
            status.update(probe)
        status.update({
            'itemsCached': len(self.store),
            'subscribers': len(self.broadcaster),
            'graduationsDetected': self.graduations_detected,
            'duplicatesSkipped': self.duplicates_skipped,
            'enrichment': self.enrichment.get_stats(),
        })
        return status
