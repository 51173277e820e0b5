import inspect

import pytest
from fastapi.testclient import TestClient

from graduation_tracker import GraduationTracker
from models import GraduationRecord
from pumpportal_monitor import ManualReconnect
from server import create_app

from conftest import FakeConnector, RecordingNotifier, ScriptedDexClient


@pytest.fixture
def tracker(scheduler, store):
    return GraduationTracker(
        scheduler=scheduler, store=store, client=ScriptedDexClient(), notifier=RecordingNotifier(),
        reconnect=ManualReconnect(), connector=FakeConnector(default_error=ConnectionRefusedError('down')),
    )


@pytest.fixture
def client(tracker):
    return TestClient(create_app(tracker, manage_lifecycle=False))


def seed(tracker, *mints):
    for mint in mints:
        tracker.store.insert(GraduationRecord(mint=mint))


def test_root(client, tracker):
    seed(tracker, 'A')
    body = client.get('/').json()
    assert body['status'] == 'ok'
    assert body['graduates'] == 1


@pytest.mark.parametrize('path', ['/pumpportal/health', '/moralis/health'])
def test_health(client, tracker, path):
    seed(tracker, 'A', 'B')
    body = client.get(path).json()
    assert body['ok'] is True
    assert body['connected'] is False
    assert body['itemsCached'] == 2
    assert body['reconnectMode'] == 'manual'
    assert body['reconnectAttempted'] is True
    assert body['reconnected'] is False


def test_connect_failure(client):
    response = client.post('/pumpportal/connect')
    assert response.status_code == 503
    assert response.json()['detail']['connected'] is False


def test_list_graduates(client, tracker):
    seed(tracker, 'A', 'B', 'C')
    body = client.get('/api/graduates', params={'limit': 2}).json()
    assert body['count'] == 2
    assert [g['mint'] for g in body['graduates']] == ['C', 'B']


def test_bulk_replace_accepts_array_or_wrapper(client, tracker):
    response = client.put('/api/graduates', json=[{'mint': 'X1'}, {'mint': 'X2'}])
    assert response.json() == {'status': 'success', 'count': 2}

    response = client.put('/api/graduates', json={'graduates': [{'mint': 'Y1'}]})
    assert response.json()['count'] == 1
    assert [r.mint for r in tracker.list_graduates()] == ['Y1']


def test_bulk_replace_rejects_bad_input(client, tracker):
    seed(tracker, 'KEEP')
    assert client.put('/api/graduates', json=[{'symbol': 'no mint'}]).status_code == 400
    assert client.put('/api/graduates', json={'graduates': 'nope'}).status_code == 400
    assert [r.mint for r in tracker.list_graduates()] == ['KEEP']


def test_clear(client, tracker):
    seed(tracker, 'A')
    assert client.post('/api/data/clear').json()['status'] == 'success'
    assert client.get('/api/graduates').json()['count'] == 0


def test_add_graduate(client):
    first = client.post('/api/add-graduate/MANUAL1').json()
    assert first['status'] == 'added'
    assert first['data']['mint'] == 'MANUAL1'
    assert client.post('/api/add-graduate/MANUAL1').json()['status'] == 'already_exists'


def test_refresh_trading_data(client, tracker, scheduler):
    seed(tracker, 'A', 'B')
    body = client.post('/api/refresh-trading-data').json()
    assert body['status'] == 'initiated'
    assert body['tokensToUpdate'] == 2
    assert scheduler.delays('manual-refresh') == [0]


def test_test_telegram(client, tracker):
    body = client.post('/api/test-telegram').json()
    assert body['status'] == 'success'
    assert len(tracker.notifier.sent) == 1
    assert tracker.list_graduates() == []


def test_test_telegram_not_configured(client, tracker):
    tracker.notifier.enabled = False
    assert client.post('/api/test-telegram').status_code == 400


def test_event_stream_route_takes_no_parameters(client):
    route = next(r for r in client.app.routes if getattr(r, 'path', None) == '/pumpportal/events')
    assert inspect.signature(route.endpoint).parameters == {}
    assert route.dependant.query_params == []
