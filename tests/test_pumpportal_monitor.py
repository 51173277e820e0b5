import asyncio
import json

import pytest

from pumpportal_monitor import (
    BackoffReconnect, ConnectionState, ManualReconnect, PumpPortalMonitor, SUBSCRIBE_MESSAGE,
)

from conftest import FakeConnector, FakeWebSocket, drain


class Inbox:
    def __init__(self):
        self.messages = []

    async def __call__(self, raw):
        self.messages.append(raw)


def build(scheduler, connector, reconnect=None, **kwargs):
    inbox = Inbox()
    monitor = PumpPortalMonitor(inbox, scheduler, reconnect=reconnect, connector=connector, **kwargs)
    return monitor, inbox


async def test_connect_sends_subscribe_message_verbatim(scheduler):
    socket = FakeWebSocket()
    monitor, _ = build(scheduler, FakeConnector(socket))

    assert await monitor.connect()
    assert monitor.state is ConnectionState.CONNECTED
    assert [json.loads(m) for m in socket.sent] == [{"method": "subscribeMigration"}]
    assert SUBSCRIBE_MESSAGE == {"method": "subscribeMigration"}
    await monitor.close()


async def test_connect_is_idempotent(scheduler):
    connector = FakeConnector()
    monitor, _ = build(scheduler, connector)
    await monitor.connect()
    assert await monitor.connect()
    assert connector.calls == 1
    await monitor.close()


async def test_messages_are_delivered_in_order(scheduler):
    socket = FakeWebSocket()
    monitor, inbox = build(scheduler, FakeConnector(socket))
    await monitor.connect()

    for i in range(3):
        socket.feed({'n': i})
    await drain()
    assert [json.loads(m)['n'] for m in inbox.messages] == [0, 1, 2]
    assert monitor.messages_received == 3
    await monitor.close()


async def test_handler_error_does_not_kill_reader(scheduler):
    socket = FakeWebSocket()
    seen = []

    async def handler(raw):
        seen.append(raw)
        if len(seen) == 1:
            raise ValueError('bad frame')

    monitor = PumpPortalMonitor(handler, scheduler, connector=FakeConnector(socket))
    await monitor.connect()
    socket.feed('first')
    socket.feed('second')
    await drain()
    assert seen == ['first', 'second']
    assert monitor.connected
    await monitor.close()


async def test_keepalive_runs_while_open_and_stops_on_close(scheduler):
    socket = FakeWebSocket()
    monitor, _ = build(scheduler, FakeConnector(socket))
    await monitor.connect()

    await scheduler.advance(30)
    assert socket.pings == 1
    await scheduler.advance(30)
    assert socket.pings == 2

    await monitor.close()
    assert scheduler.pending() == 0
    await scheduler.advance(120)
    assert socket.pings == 2
    assert monitor.state is ConnectionState.DISCONNECTED


async def test_server_close_clears_keepalive_and_schedules_reconnect(scheduler):
    first, second = FakeWebSocket(), FakeWebSocket()
    connector = FakeConnector(first, second)
    monitor, _ = build(scheduler, connector, reconnect=BackoffReconnect())
    await monitor.connect()

    first.drop()
    await drain()
    assert monitor.state is ConnectionState.DISCONNECTED
    assert monitor.websocket is None
    assert scheduler.delays('pumpportal-reconnect') == [2]

    await scheduler.advance(30)
    assert first.pings == 0
    assert monitor.connected
    assert connector.calls == 2
    assert monitor.reconnect.attempts == 0
    await monitor.close()


async def test_backoff_sequence_then_exhausted(scheduler):
    connector = FakeConnector(default_error=ConnectionRefusedError('refused'))
    policy = BackoffReconnect(base_delay=2, max_attempts=5)
    monitor, _ = build(scheduler, connector, reconnect=policy)

    assert not await monitor.connect()
    await scheduler.advance(2 + 4 + 8 + 16 + 32)

    assert scheduler.delays('pumpportal-reconnect') == [2, 4, 8, 16, 32]
    assert policy.exhausted
    assert connector.calls == 6

    await scheduler.advance(3600)
    assert connector.calls == 6
    assert monitor.get_stats()['reconnectExhausted'] is True


async def test_manual_connect_recovers_after_exhaustion(scheduler):
    socket = FakeWebSocket()
    connector = FakeConnector(ConnectionRefusedError(), ConnectionRefusedError(), socket)
    policy = BackoffReconnect(base_delay=2, max_attempts=1)
    monitor, _ = build(scheduler, connector, reconnect=policy)

    await monitor.connect()
    await scheduler.advance(2)
    assert policy.exhausted

    assert await monitor.connect()
    assert not policy.exhausted
    assert policy.attempts == 0
    await monitor.close()


async def test_connect_timeout_is_retried(scheduler):
    async def hanging(url):
        await asyncio.sleep(10)

    monitor, _ = build(scheduler, hanging, connect_timeout=0.01)
    assert not await monitor.connect()
    assert 'timeout' in monitor.last_error
    assert scheduler.delays('pumpportal-reconnect') == [2]


async def test_manual_policy_never_self_schedules(scheduler):
    socket = FakeWebSocket()
    connector = FakeConnector(ConnectionRefusedError(), socket)
    monitor, _ = build(scheduler, connector, reconnect=ManualReconnect())

    assert not await monitor.connect()
    assert scheduler.pending() == 0

    assert await monitor.probe() == {'reconnectAttempted': True, 'reconnected': True}
    assert await monitor.probe() == {'reconnectAttempted': False, 'reconnected': False}
    await monitor.close()


async def test_backoff_policy_does_not_reconnect_on_probe(scheduler):
    connector = FakeConnector(default_error=ConnectionRefusedError())
    monitor, _ = build(scheduler, connector)
    await monitor.connect()
    assert await monitor.probe() == {'reconnectAttempted': False, 'reconnected': False}
    assert connector.calls == 1


@pytest.mark.parametrize('attempts,expected', [(0, 2), (1, 4), (4, 32)])
def test_next_delay_doubles(attempts, expected):
    policy = BackoffReconnect(base_delay=2, max_attempts=5)
    policy.attempts = attempts
    assert policy.next_delay() == expected
