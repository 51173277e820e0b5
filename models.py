"""
Graduation record model shared by the feed, store, enrichment and SSE layers
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from config import DISPLAY_TZ_OFFSET_HOURS

logger = logging.getLogger(__name__)

DEFAULT_DEX = 'raydium'
PUMPFUN_URL = 'https://pump.fun/{mint}'

DISPLAY_TZ = timezone(timedelta(hours=DISPLAY_TZ_OFFSET_HOURS))


class EnrichmentState(Enum):
    PENDING = 'pending'
    ENRICHED = 'enriched'
    FAILED = 'enrichment_failed'


def to_float(value: Any) -> Optional[float]:
    """Dexscreener sends prices as strings; anything unparseable is None"""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO string or a unix timestamp (seconds or ms) into aware UTC"""
    if value is None or value == '':
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        ts = ts / 1000.0 if ts > 1e12 else ts
        try:
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _section(pair: Dict, key: str) -> Dict:
    """Nested Dexscreener object, or {} when absent or not an object"""
    value = pair.get(key)
    return value if isinstance(value, dict) else {}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def display_now() -> str:
    return datetime.now(DISPLAY_TZ).isoformat(timespec='seconds')


@dataclass
class TradingStats:
    volume_1h: Optional[float] = None
    volume_24h: Optional[float] = None
    txns_1h: Optional[Dict[str, int]] = None
    txns_24h: Optional[Dict[str, int]] = None
    price_change_1h: Optional[float] = None
    price_change_24h: Optional[float] = None

    @classmethod
    def from_pair(cls, pair: Dict) -> 'TradingStats':
        volume = _section(pair, 'volume')
        txns = _section(pair, 'txns')
        change = _section(pair, 'priceChange')
        return cls(
            volume_1h=to_float(volume.get('h1')),
            volume_24h=to_float(volume.get('h24')),
            txns_1h=txns.get('h1') if isinstance(txns.get('h1'), dict) else None,
            txns_24h=txns.get('h24') if isinstance(txns.get('h24'), dict) else None,
            price_change_1h=to_float(change.get('h1')),
            price_change_24h=to_float(change.get('h24')),
        )

    def merge(self, other: 'TradingStats'):
        """Take every non-null value from other, keep ours where it has none"""
        for name in self.__dataclass_fields__:
            value = getattr(other, name)
            if value is not None:
                setattr(self, name, value)


@dataclass
class GraduationRecord:
    mint: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    graduated_at: str = field(default_factory=utc_now_iso)
    timestamp: str = field(default_factory=display_now)
    liquidity_usd: Optional[float] = None
    price_usd: Optional[float] = None
    market_cap: Optional[float] = None
    fdv: Optional[float] = None
    dex: Optional[str] = DEFAULT_DEX
    pair_address: Optional[str] = None
    dexscreener_url: Optional[str] = None
    signature: Optional[str] = None
    stats: TradingStats = field(default_factory=TradingStats)

    # runtime only, set when enrichment gave up without price + market cap
    enrichment_finished: bool = field(default=False, compare=False, repr=False)

    @property
    def pumpfun_url(self) -> str:
        return PUMPFUN_URL.format(mint=self.mint)

    @property
    def has_market_data(self) -> bool:
        return self.price_usd is not None and self.market_cap is not None

    @property
    def enrichment_state(self) -> EnrichmentState:
        if self.has_market_data:
            return EnrichmentState.ENRICHED
        if self.enrichment_finished:
            return EnrichmentState.FAILED
        return EnrichmentState.PENDING

    @property
    def graduated_datetime(self) -> Optional[datetime]:
        return parse_timestamp(self.graduated_at)

    @classmethod
    def from_feed(cls, message: Dict) -> 'GraduationRecord':
        """Build a draft record from a PumpPortal migration message"""
        graduated = parse_timestamp(message.get('timestamp'))
        return cls(
            mint=message['mint'],
            name=message.get('name') or None,
            symbol=message.get('symbol') or None,
            graduated_at=(graduated.isoformat().replace('+00:00', 'Z') if graduated else utc_now_iso()),
            liquidity_usd=to_float(message.get('liquidityUsd')) or to_float(message.get('initialBuy')),
            price_usd=to_float(message.get('priceUsd')),
            market_cap=to_float(message.get('marketCap')),
            dex=message.get('dex') or DEFAULT_DEX,
            pair_address=message.get('pairAddress') or None,
            signature=message.get('signature') or None,
        )

    def apply_pair(self, pair: Dict) -> bool:
        """Copy Dexscreener pair data into the record.

        Name and symbol are only filled when still unknown. Numeric fields are
        overwritten only by non-null values. Returns True when anything changed.
        """
        before = self.to_dict()
        base_token = _section(pair, 'baseToken')
        if not self.name and base_token.get('name'):
            self.name = base_token['name']
        if not self.symbol and base_token.get('symbol'):
            self.symbol = base_token['symbol']

        self.update_market_data(pair)

        if pair.get('dexId'):
            self.dex = pair['dexId']
        if pair.get('pairAddress'):
            self.pair_address = pair['pairAddress']
        if pair.get('url'):
            self.dexscreener_url = pair['url']
        return self.to_dict() != before

    def update_market_data(self, pair: Dict):
        """Price, caps, liquidity and trading stats only (used by refresh)"""
        for attr, value in (
            ('price_usd', to_float(pair.get('priceUsd'))),
            ('market_cap', to_float(pair.get('marketCap'))),
            ('fdv', to_float(pair.get('fdv'))),
            ('liquidity_usd', to_float(_section(pair, 'liquidity').get('usd'))),
        ):
            if value is not None:
                setattr(self, attr, value)
        self.stats.merge(TradingStats.from_pair(pair))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mint': self.mint,
            'name': self.name,
            'symbol': self.symbol,
            'graduatedAt': self.graduated_at,
            'timestamp': self.timestamp,
            'liquidityUsd': self.liquidity_usd,
            'priceUsd': self.price_usd,
            'priceUsdCurrent': self.price_usd,
            'marketCap': self.market_cap,
            'fdv': self.fdv,
            'graduationDex': self.dex,
            'graduationPairAddress': self.pair_address,
            'dexscreenerUrl': self.dexscreener_url,
            'pumpfunUrl': self.pumpfun_url,
            'signature': self.signature,
            'volume1h': self.stats.volume_1h,
            'volume24h': self.stats.volume_24h,
            'txns1h': self.stats.txns_1h,
            'txns24h': self.stats.txns_24h,
            'priceChange1h': self.stats.price_change_1h,
            'priceChange24h': self.stats.price_change_24h,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'GraduationRecord':
        """Inverse of to_dict. Raises ValueError when the mint is missing."""
        if not isinstance(data, dict):
            raise ValueError("graduate entry must be an object")
        mint = data.get('mint')
        if not mint or not isinstance(mint, str):
            raise ValueError("graduate entry has no mint")
        price = data.get('priceUsdCurrent')
        if price is None:
            price = data.get('priceUsd')
        record = cls(
            mint=mint,
            name=data.get('name'),
            symbol=data.get('symbol'),
            liquidity_usd=to_float(data.get('liquidityUsd')),
            price_usd=to_float(price),
            market_cap=to_float(data.get('marketCap')),
            fdv=to_float(data.get('fdv')),
            dex=data.get('graduationDex') or DEFAULT_DEX,
            pair_address=data.get('graduationPairAddress'),
            dexscreener_url=data.get('dexscreenerUrl'),
            signature=data.get('signature'),
            stats=TradingStats(
                volume_1h=to_float(data.get('volume1h')),
                volume_24h=to_float(data.get('volume24h')),
                txns_1h=data.get('txns1h'),
                txns_24h=data.get('txns24h'),
                price_change_1h=to_float(data.get('priceChange1h')),
                price_change_24h=to_float(data.get('priceChange24h')),
            ),
        )
        if data.get('graduatedAt'):
            record.graduated_at = str(data['graduatedAt'])
        if data.get('timestamp'):
            record.timestamp = str(data['timestamp'])
        return record
