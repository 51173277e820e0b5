"""
config
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _optional_int(name: str):
    value = os.getenv(name, '').strip()
    return int(value) if value else None


# ============================================
# PUMPPORTAL FEED
# ============================================
PUMPPORTAL_WS_URL = os.getenv('PUMPPORTAL_WS_URL', 'wss://pumpportal.fun/api/data')
FEED_CONNECT_TIMEOUT = float(os.getenv('FEED_CONNECT_TIMEOUT', '10'))
FEED_KEEPALIVE_INTERVAL = float(os.getenv('FEED_KEEPALIVE_INTERVAL', '30'))

# 'backoff' reconnects on its own, 'manual' waits for /health or /connect
RECONNECT_MODE = os.getenv('RECONNECT_MODE', 'backoff').lower()
RECONNECT_BASE_DELAY = float(os.getenv('RECONNECT_BASE_DELAY', '2'))
MAX_RECONNECT_ATTEMPTS = int(os.getenv('MAX_RECONNECT_ATTEMPTS', '5'))

# ============================================
# DEXSCREENER ENRICHMENT
# ============================================
DEXSCREENER_API_URL = os.getenv('DEXSCREENER_API_URL', 'https://api.dexscreener.com/latest/dex/tokens')
DEXSCREENER_TIMEOUT = float(os.getenv('DEXSCREENER_TIMEOUT', '10'))

ENRICH_INITIAL_DELAY = float(os.getenv('ENRICH_INITIAL_DELAY', '8'))         # Dexscreener indexing lag
ENRICH_PARTIAL_RETRY_DELAY = float(os.getenv('ENRICH_PARTIAL_RETRY_DELAY', '10'))
ENRICH_MISS_RETRY_DELAY = float(os.getenv('ENRICH_MISS_RETRY_DELAY', '15'))
ENRICH_MISS_MAX_RETRIES = int(os.getenv('ENRICH_MISS_MAX_RETRIES', '3'))

# ============================================
# TRADING DATA REFRESH
# ============================================
REFRESH_INTERVAL = float(os.getenv('REFRESH_INTERVAL', '600'))               # 10 minutes
REFRESH_FIRST_RUN_DELAY = float(os.getenv('REFRESH_FIRST_RUN_DELAY', '30'))
REFRESH_WINDOW_HOURS = float(os.getenv('REFRESH_WINDOW_HOURS', '24'))
REFRESH_REQUEST_DELAY = float(os.getenv('REFRESH_REQUEST_DELAY', '1.0'))
MANUAL_REFRESH_REQUEST_DELAY = float(os.getenv('MANUAL_REFRESH_REQUEST_DELAY', '0.15'))

# ============================================
# STORE
# ============================================
GRADUATES_FILE = os.getenv('GRADUATES_FILE', 'data/graduates.json')
MAX_GRADUATES = _optional_int('MAX_GRADUATES')  # None = keep everything

# ============================================
# SSE SUBSCRIBERS
# ============================================
SNAPSHOT_SIZE = int(os.getenv('SNAPSHOT_SIZE', '20'))
SSE_PING_INTERVAL = float(os.getenv('SSE_PING_INTERVAL', '30'))
SSE_QUEUE_SIZE = int(os.getenv('SSE_QUEUE_SIZE', '256'))

# ============================================
# NOTIFICATIONS
# ============================================
TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN')
TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID')

# Australia/Brisbane has no DST
DISPLAY_TZ_OFFSET_HOURS = float(os.getenv('DISPLAY_TZ_OFFSET_HOURS', '10'))

# ============================================
# WEB SERVER
# ============================================
HOST = os.getenv('HOST', '0.0.0.0')
PORT = int(os.getenv('PORT', '3000'))

# ============================================
# LOGGING
# ============================================
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
