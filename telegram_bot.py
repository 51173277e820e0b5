"""
Telegram Bot - graduation alerts
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import certifi
import httpx

from config import TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID
from models import DISPLAY_TZ, GraduationRecord

logger = logging.getLogger(__name__)


def format_price(price: Optional[float]) -> str:
    return f"${price:.6f}" if price else "Unknown"


def format_market_cap(market_cap: Optional[float]) -> str:
    return f"${int(market_cap):,}" if market_cap else "Unknown"


def format_graduation_message(record: GraduationRecord, now: Optional[datetime] = None) -> str:
    """Markdown alert for one graduation"""
    now = now or datetime.now(DISPLAY_TZ)
    links = [f"• [Pump.fun]({record.pumpfun_url})"]
    if record.dexscreener_url:
        links.append(f"• [Dexscreener]({record.dexscreener_url})")
    link_lines = "\n".join(links)

    return (
        "🎓 *PUMP.FUN GRADUATION ALERT*\n"
        "\n"
        f"🪙 *Token:* {record.symbol or 'Unknown'} ({record.name or 'Unknown Token'})\n"
        f"💰 *Price:* {format_price(record.price_usd)}\n"
        f"📊 *Market Cap:* {format_market_cap(record.market_cap)}\n"
        f"🏦 *DEX:* {record.dex or 'pump-amm'}\n"
        f"⏰ *Time:* {now.astimezone(DISPLAY_TZ).strftime('%d/%m/%y %H:%M')}\n"
        "\n"
        "🔗 *Links:*\n"
        f"{link_lines}\n"
        "\n"
        f"`{record.mint}`"
    )


class TelegramNotifier:
    """Best-effort delivery of graduation alerts to one chat"""

    def __init__(self, token: Optional[str] = TELEGRAM_BOT_TOKEN, chat_id: Optional[str] = TELEGRAM_CHAT_ID,
                 retry_count: int = 3, timeout: float = 10):
        self.token = token
        self.chat_id = chat_id
        self.retry_count = retry_count
        self.timeout = timeout
        self.base_url = f"https://api.telegram.org/bot{token}"

        # Statistics
        self.messages_sent = 0
        self.messages_failed = 0

        if self.enabled:
            logger.info("✅ Telegram notifications enabled")
        else:
            logger.info("📱 Telegram not configured - notifications disabled")

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_id)

    async def send_message(self, text: str, parse_mode: str = "Markdown") -> bool:
        """POST sendMessage, honouring 429 retry_after. Never raises."""
        if not self.enabled:
            logger.debug("Telegram not configured - skipping message")
            return False

        payload = {
            "chat_id": self.chat_id,
            "text": text[:4096],
            "parse_mode": parse_mode,
            "disable_web_page_preview": False,
        }
        url = f"{self.base_url}/sendMessage"

        for attempt in range(self.retry_count):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, verify=certifi.where()) as client:
                    response = await client.post(url, json=payload)

                if response.status_code == 200:
                    self.messages_sent += 1
                    return True

                if response.status_code == 429:
                    retry_after = 5
                    try:
                        body = response.json()
                    except ValueError:
                        body = None
                    parameters = body.get("parameters") if isinstance(body, dict) else None
                    if isinstance(parameters, dict) and isinstance(parameters.get("retry_after"), (int, float)):
                        retry_after = parameters["retry_after"]
                    logger.warning(f"Telegram rate limit hit, waiting {retry_after}s")
                    await asyncio.sleep(retry_after)
                    continue

                logger.error(f"Telegram send failed ({response.status_code}): {response.text[:200]}")
                break

            except httpx.HTTPError as e:
                logger.warning(f"Telegram send attempt {attempt + 1}/{self.retry_count} failed: {e}")
                if attempt < self.retry_count - 1:
                    await asyncio.sleep(1)

        self.messages_failed += 1
        return False

    async def send_graduation(self, record: GraduationRecord) -> bool:
        sent = await self.send_message(format_graduation_message(record))
        if sent:
            logger.info(f"📱 Telegram notification sent for {record.symbol or record.mint}")
        return sent
