import asyncio
import heapq
import itertools
import json

import pytest

from graduate_store import GraduateStore
from models import GraduationRecord
from scheduler import ScheduledTask, run_guarded

START_TIME = 1_700_000_000.0


async def drain(rounds: int = 10):
    """Let reader tasks and other ready coroutines run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeScheduler:
    """Deterministic Scheduler: time only moves when a test calls advance()"""

    def __init__(self, start: float = START_TIME):
        self._now = start
        self._seq = itertools.count()
        self._timers = []
        self.scheduled = []
        self.sleeps = []

    def now(self) -> float:
        return self._now

    async def sleep(self, delay: float):
        self.sleeps.append(delay)

    def _push(self, due, handle, interval, callback, args):
        heapq.heappush(self._timers, (due, next(self._seq), handle, interval, callback, args))

    def call_later(self, delay, callback, *args, name=None):
        handle = ScheduledTask(name or callback.__name__)
        self.scheduled.append((handle.name, delay))
        self._push(self._now + delay, handle, None, callback, args)
        return handle

    def call_every(self, interval, callback, *args, first_delay=None, name=None):
        handle = ScheduledTask(name or callback.__name__, periodic=True)
        delay = interval if first_delay is None else first_delay
        self.scheduled.append((handle.name, delay))
        self._push(self._now + delay, handle, interval, callback, args)
        return handle

    def delays(self, name):
        return [delay for task_name, delay in self.scheduled if task_name == name]

    def pending(self) -> int:
        return sum(1 for timer in self._timers if timer[2].active)

    def cancel_all(self):
        for timer in self._timers:
            timer[2].cancel()
        self._timers = []

    async def advance(self, seconds: float):
        target = self._now + seconds
        while self._timers and self._timers[0][0] <= target:
            due, _, handle, interval, callback, args = heapq.heappop(self._timers)
            if not handle.active:
                continue
            self._now = max(self._now, due)
            await run_guarded(handle.name, callback, *args)
            if interval is not None and handle.active:
                self._push(due + interval, handle, interval, callback, args)
            elif interval is None:
                handle.done = True
            await drain()
        self._now = target
        await drain()


class FakeWebSocket:
    """Stands in for a websockets client connection"""

    def __init__(self):
        self.sent = []
        self.pings = 0
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, data):
        if self.closed:
            raise ConnectionError("socket closed")
        self.sent.append(data)

    async def ping(self):
        if self.closed:
            raise ConnectionError("socket closed")
        self.pings += 1

    def feed(self, message):
        self._incoming.put_nowait(message if isinstance(message, (str, bytes)) else json.dumps(message))

    def drop(self):
        """Server side close"""
        self._incoming.put_nowait(None)

    async def close(self):
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._incoming.get()
        if message is None:
            self.closed = True
            raise StopAsyncIteration
        return message


class FakeConnector:
    """Connector returning scripted sockets; exception instances are raised"""

    def __init__(self, *outcomes, default_error=None):
        self.outcomes = list(outcomes)
        self.default_error = default_error
        self.calls = 0
        self.sockets = []

    async def __call__(self, url):
        self.calls += 1
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        elif self.default_error is not None:
            outcome = self.default_error
        else:
            outcome = FakeWebSocket()
        if isinstance(outcome, Exception):
            raise outcome
        self.sockets.append(outcome)
        return outcome


class ScriptedDexClient:
    """lookup() returns the scripted results in order, then None"""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []
        self.closed = False

    async def lookup(self, mint):
        self.calls.append(mint)
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


class RecordingNotifier:
    chat_id = '12345'

    def __init__(self, enabled=True):
        self.enabled = enabled
        self.sent = []

    async def send_graduation(self, record):
        self.sent.append(record.to_dict())
        return True


def make_pair(dex_id='raydium', price='0.01', market_cap=50000, created=1_700_000_000_000, **extra):
    pair = {
        'chainId': 'solana',
        'dexId': dex_id,
        'url': f'https://dexscreener.com/solana/{dex_id}pair',
        'pairAddress': f'{dex_id}PairAddress',
        'baseToken': {'address': 'ABC123', 'name': 'Foo Coin', 'symbol': 'FOO'},
        'priceUsd': price,
        'marketCap': market_cap,
        'fdv': market_cap,
        'liquidity': {'usd': 20000},
        'volume': {'h1': 1500.5, 'h24': 22000},
        'txns': {'h1': {'buys': 10, 'sells': 4}, 'h24': {'buys': 120, 'sells': 80}},
        'priceChange': {'h1': 2.5, 'h24': -10.0},
        'pairCreatedAt': created,
    }
    pair.update(extra)
    return pair


def migration(mint='ABC123', pool='pump-amm', **extra):
    message = {'txType': 'migrate', 'mint': mint, 'pool': pool}
    message.update(extra)
    return message


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def store(tmp_path):
    return GraduateStore(path=str(tmp_path / 'graduates.json'))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def record():
    return GraduationRecord(mint='ABC123', symbol='FOO')
