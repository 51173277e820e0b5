"""
Enrichment Engine - delayed and retried Dexscreener lookups for new graduates,
plus the periodic trading-data refresh
"""

import logging
from typing import Dict, List, Optional, Set

from config import (
    ENRICH_INITIAL_DELAY, ENRICH_PARTIAL_RETRY_DELAY,
    ENRICH_MISS_RETRY_DELAY, ENRICH_MISS_MAX_RETRIES,
    REFRESH_INTERVAL, REFRESH_FIRST_RUN_DELAY, REFRESH_WINDOW_HOURS,
    REFRESH_REQUEST_DELAY, MANUAL_REFRESH_REQUEST_DELAY,
)
from dexscreener_client import DexScreenerClient
from graduate_store import GraduateStore
from models import GraduationRecord
from scheduler import ScheduledTask, Scheduler
from sse_broadcaster import GraduateBroadcaster
from telegram_bot import TelegramNotifier

logger = logging.getLogger(__name__)


class EnrichmentEngine:
    """Upgrades draft graduation records with Dexscreener market data.

    Flow per record:
      1. wait initial_delay so Dexscreener can index the new pair
      2. look up pairs for the mint
      3. no pairs at all -> up to miss_max_retries more lookups, miss_retry_delay apart
      4. pair found but price or market cap missing -> one more lookup after partial_retry_delay
      5. notify exactly once, with whatever data is there by then

    Every lookup that yields data is persisted and broadcast straight away.
    Lookups for different mints run independently; a mint is never enriched
    twice at the same time.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        client: DexScreenerClient,
        store: GraduateStore,
        broadcaster: GraduateBroadcaster,
        notifier: TelegramNotifier,
        initial_delay: float = ENRICH_INITIAL_DELAY,
        partial_retry_delay: float = ENRICH_PARTIAL_RETRY_DELAY,
        miss_retry_delay: float = ENRICH_MISS_RETRY_DELAY,
        miss_max_retries: int = ENRICH_MISS_MAX_RETRIES,
        refresh_interval: float = REFRESH_INTERVAL,
        refresh_first_delay: float = REFRESH_FIRST_RUN_DELAY,
        refresh_window_hours: float = REFRESH_WINDOW_HOURS,
        refresh_request_delay: float = REFRESH_REQUEST_DELAY,
        manual_refresh_request_delay: float = MANUAL_REFRESH_REQUEST_DELAY,
    ):
        self.scheduler = scheduler
        self.client = client
        self.store = store
        self.broadcaster = broadcaster
        self.notifier = notifier
        self.initial_delay = initial_delay
        self.partial_retry_delay = partial_retry_delay
        self.miss_retry_delay = miss_retry_delay
        self.miss_max_retries = miss_max_retries
        self.refresh_interval = refresh_interval
        self.refresh_first_delay = refresh_first_delay
        self.refresh_window_hours = refresh_window_hours
        self.refresh_request_delay = refresh_request_delay
        self.manual_refresh_request_delay = manual_refresh_request_delay

        self._active: Set[str] = set()
        self._notified: Set[str] = set()
        self._refresh_task: Optional[ScheduledTask] = None

        # Statistics
        self.lookups = 0
        self.enriched = 0
        self.gave_up = 0
        self.refreshes = 0

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def start(self):
        if self._refresh_task and self._refresh_task.active:
            return
        self._refresh_task = self.scheduler.call_every(
            self.refresh_interval, self.refresh_recent,
            first_delay=self.refresh_first_delay, name='trading-data-refresh',
        )
        logger.info(f"🔄 Auto-refresh enabled: trading data updates every {self.refresh_interval / 60:g} minutes")

    def stop(self):
        if self._refresh_task:
            self._refresh_task.cancel()
            self._refresh_task = None

    def reset(self):
        """Forget notification bookkeeping after the store is cleared"""
        self._notified.clear()

    def is_active(self, mint: str) -> bool:
        return mint in self._active

    # ------------------------------------------------------------------
    # per-record enrichment
    # ------------------------------------------------------------------

    def enrich(self, record: GraduationRecord, delay: Optional[float] = None) -> Optional[ScheduledTask]:
        """Schedule enrichment for a freshly stored record"""
        mint = record.mint
        if mint in self._active:
            logger.debug(f"Enrichment already running for {mint[:8]}...")
            return None
        self._active.add(mint)
        delay = self.initial_delay if delay is None else delay
        logger.info(f"⏰ Enriching {mint[:8]}... in {delay:g}s")
        return self.scheduler.call_later(delay, self._run_step, self._first_lookup, mint, name=f'enrich-{mint[:8]}')

    async def _run_step(self, step, mint: str, *args):
        """Run one enrichment step. A step that blows up still ends in a notification."""
        try:
            await step(mint, *args)
        except Exception:
            logger.exception(f"Enrichment step {step.__name__} failed for {mint[:8]}...")
            record = self.store.get(mint)
            if record is not None and mint in self._active:
                await self._finish(record)
            else:
                self._active.discard(mint)

    async def _lookup(self, mint: str) -> Optional[Dict]:
        self.lookups += 1
        try:
            return await self.client.lookup(mint)
        except Exception as e:
            logger.warning(f"Dexscreener lookup failed for {mint[:8]}...: {e}")
            return None

    def _current(self, mint: str) -> Optional[GraduationRecord]:
        record = self.store.get(mint)
        if record is None:
            logger.info(f"Graduate {mint[:8]}... was removed - stopping enrichment")
            self._active.discard(mint)
        return record

    def _apply(self, record: GraduationRecord, pair: Dict) -> bool:
        """Merge a pair into the record. A pair that cannot be applied counts as no data."""
        try:
            record.apply_pair(pair)
        except Exception as e:
            logger.warning(f"Unusable Dexscreener pair for {record.mint[:8]}...: {e}")
            return False
        self.store.update(record.mint)
        self.broadcaster.broadcast_graduate(record)
        logger.info(
            f"📊 {record.symbol or record.mint[:8]} enriched from {pair.get('dexId')}: "
            f"price={record.price_usd} mc={record.market_cap}"
        )
        return True

    async def _first_lookup(self, mint: str):
        record = self._current(mint)
        if record is None:
            return

        pair = await self._lookup(mint)
        if pair is None or not self._apply(record, pair):
            logger.info(f"⚠️ No Dexscreener data for {mint[:8]}... - retrying up to {self.miss_max_retries} times")
            self._schedule_miss_retry(mint, 1)
            return

        if record.has_market_data:
            await self._finish(record)
        else:
            logger.info(f"⚠️ Missing price/market cap for {mint[:8]}... - one more try in {self.partial_retry_delay:g}s")
            self.scheduler.call_later(self.partial_retry_delay, self._run_step, self._partial_retry, mint, name=f'enrich-{mint[:8]}')

    async def _partial_retry(self, mint: str):
        record = self._current(mint)
        if record is None:
            return
        pair = await self._lookup(mint)
        if pair is not None:
            self._apply(record, pair)
        await self._finish(record)

    def _schedule_miss_retry(self, mint: str, attempt: int):
        self.scheduler.call_later(
            self.miss_retry_delay, self._run_step, self._miss_retry, mint, attempt, name=f'enrich-{mint[:8]}-retry{attempt}'
        )

    async def _miss_retry(self, mint: str, attempt: int):
        record = self._current(mint)
        if record is None:
            return

        logger.info(f"🔄 Retry {attempt}/{self.miss_max_retries} for {mint[:8]}...")
        pair = await self._lookup(mint)
        if pair is not None:
            self._apply(record, pair)
        if record.has_market_data:
            await self._finish(record)
        elif attempt < self.miss_max_retries:
            self._schedule_miss_retry(mint, attempt + 1)
        else:
            logger.info(f"❌ All {self.miss_max_retries} retries failed for {mint[:8]}... - notifying with basic data")
            await self._finish(record)

    async def _finish(self, record: GraduationRecord):
        mint = record.mint
        self._active.discard(mint)
        if record.has_market_data:
            self.enriched += 1
        else:
            record.enrichment_finished = True
            self.gave_up += 1

        if mint in self._notified:
            return
        self._notified.add(mint)
        try:
            await self.notifier.send_graduation(record)
        except Exception as e:
            logger.error(f"Notification failed for {mint[:8]}...: {e}")

    # ------------------------------------------------------------------
    # trading data refresh
    # ------------------------------------------------------------------

    async def refresh_recent(self) -> int:
        """Refresh graduates from the last refresh_window_hours"""
        cutoff = self.scheduler.now() - self.refresh_window_hours * 3600
        recent = []
        for record in self.store.list():
            graduated = record.graduated_datetime
            if graduated is not None and graduated.timestamp() >= cutoff:
                recent.append(record)

        if not recent:
            logger.info("🔄 Auto-refresh: no recent graduates to refresh")
            return 0
        logger.info(f"🔄 Auto-refreshing trading data for {len(recent)} recent graduates...")
        return await self._refresh(recent, self.refresh_request_delay)

    async def refresh_all(self) -> int:
        """Manual refresh of every stored graduate"""
        records = self.store.list()
        logger.info(f"🔄 Manual trading data refresh for {len(records)} graduates")
        return await self._refresh(records, self.manual_refresh_request_delay)

    async def _refresh(self, records: List[GraduationRecord], pace: float) -> int:
        updated = 0
        for index, record in enumerate(records):
            if index:
                await self.scheduler.sleep(pace)
            if self.store.get(record.mint) is not record or record.mint in self._active:
                continue
            pair = await self._lookup(record.mint)
            if pair is None:
                continue
            try:
                record.update_market_data(pair)
            except Exception as e:
                logger.warning(f"Unusable Dexscreener pair for {record.mint[:8]}...: {e}")
                continue
            self.store.update(record.mint)
            self.broadcaster.broadcast_graduate(record)
            updated += 1

        self.refreshes += 1
        logger.info(f"✅ Refresh completed: {updated}/{len(records)} graduates updated")
        return updated

    def get_stats(self) -> Dict:
        return {
            'active': len(self._active),
            'lookups': self.lookups,
            'enriched': self.enriched,
            'gaveUp': self.gave_up,
            'refreshes': self.refreshes,
        }
