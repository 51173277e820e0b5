"""
Dexscreener token lookups used to enrich graduations
"""

import asyncio
import logging
from typing import Dict, List, Optional

import aiohttp

from config import DEXSCREENER_API_URL, DEXSCREENER_TIMEOUT

logger = logging.getLogger(__name__)

# dexId of the bonding-curve listing a token has before it graduates
PRE_GRADUATION_DEX = 'pumpfun'


def select_pair(pairs: List[Dict]) -> Optional[Dict]:
    """Pick the pair that represents the graduated market.

    Any pair off the pump.fun curve wins, earliest created first (pairs
    without pairCreatedAt sort last, ties keep response order). With no
    graduated pair the first pair returned is used. No pairs -> None.
    """
    if not pairs:
        return None

    graduated = [p for p in pairs if isinstance(p, dict) and p.get('dexId') != PRE_GRADUATION_DEX]
    if graduated:
        def created(pair):
            value = pair.get('pairCreatedAt')
            return value if isinstance(value, (int, float)) else float('inf')
        return min(graduated, key=created)

    return pairs[0] if isinstance(pairs[0], dict) else None


class DexScreenerClient:
    """Thin async client for /latest/dex/tokens/{mint}"""

    def __init__(self, base_url: str = DEXSCREENER_API_URL, timeout: float = DEXSCREENER_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

        # Statistics
        self.requests = 0
        self.failures = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(headers={'Accept': 'application/json'})
        return self.session

    async def fetch_pairs(self, mint: str) -> List[Dict]:
        """All pairs for a mint. Network, HTTP and decode errors return []."""
        url = f"{self.base_url}/{mint}"
        self.requests += 1
        try:
            session = await self._get_session()
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                if resp.status != 200:
                    error_text = await resp.text()
                    logger.warning(f"Dexscreener API error {resp.status} for {mint[:8]}...: {error_text[:200]}")
                    self.failures += 1
                    return []
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError:
            logger.warning(f"Dexscreener timeout for {mint[:8]}...")
            self.failures += 1
            return []
        except (aiohttp.ClientError, ValueError) as e:
            logger.warning(f"Dexscreener request failed for {mint[:8]}...: {e}")
            self.failures += 1
            return []

        pairs = data.get('pairs') if isinstance(data, dict) else None
        if not pairs:
            logger.debug(f"No pairs on Dexscreener for {mint[:8]}...")
            return []
        if not isinstance(pairs, list):
            logger.warning(f"Unexpected Dexscreener pairs payload for {mint[:8]}...: {type(pairs).__name__}")
            self.failures += 1
            return []

        logger.debug(f"🔍 Found {len(pairs)} pairs for {mint[:8]}...")
        return pairs

    async def lookup(self, mint: str) -> Optional[Dict]:
        """Best pair for a mint, or None when Dexscreener has nothing yet"""
        pair = select_pair(await self.fetch_pairs(mint))
        if pair:
            logger.debug(f"✅ Using {pair.get('dexId')} pair for {mint[:8]}...")
        return pair

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None
