import pytest

from graduation_filter import DedupGate, FeedVerdict, classify, dedup_key, is_graduation

from conftest import migration


def test_pump_amm_migration_is_accepted():
    result = classify('{"txType":"migrate","mint":"ABC123","pool":"pump-amm","symbol":"FOO"}')
    assert result.accepted
    assert result.message['symbol'] == 'FOO'


@pytest.mark.parametrize('message', [
    {'txType': 'create', 'mint': 'ABC123', 'pool': 'pump-amm'},
    {'txType': 'migrate', 'mint': '', 'pool': 'pump-amm'},
    {'txType': 'migrate', 'pool': 'pump-amm'},
    {'txType': 'migrate', 'mint': 42, 'pool': 'pump-amm'},
    {'txType': 'migrate', 'mint': 'ABC123'},
    {'txType': 'migrate', 'mint': 'ABC123', 'pool': 'raydium'},
])
def test_only_exact_rule_matches(message):
    assert not is_graduation(message)
    assert not classify(message).accepted


def test_migration_to_other_venue_is_distinguished():
    assert classify(migration(pool='raydium')).verdict is FeedVerdict.OTHER_VENUE


def test_non_migration_message():
    result = classify('{"message":"Successfully subscribed to keys."}')
    assert result.verdict is FeedVerdict.NOT_GRADUATION


def test_json_that_is_not_an_object():
    assert classify('[1, 2, 3]').verdict is FeedVerdict.NOT_GRADUATION


def test_undecodable_frame_is_parse_error():
    result = classify('{"txType": "migrate",')
    assert result.verdict is FeedVerdict.PARSE_ERROR
    assert result.error


def test_dedup_key_with_and_without_timestamp():
    assert dedup_key(migration(timestamp=1700000000)) == ('ABC123', '1700000000')
    assert dedup_key(migration()) == ('ABC123', None)
    assert dedup_key(migration(timestamp='')) == ('ABC123', None)


def test_dedup_gate_check_and_mark():
    gate = DedupGate()
    key = ('ABC123', '1')
    assert gate.check_and_mark(key)
    assert not gate.check_and_mark(key)
    assert gate.is_duplicate(key)
    assert gate.check_and_mark(('ABC123', '2'))
    assert len(gate) == 2


def test_dedup_gate_cap_forgets_oldest():
    gate = DedupGate(max_keys=2)
    for key in (('a', None), ('b', None), ('c', None)):
        gate.mark_seen(key)
    assert not gate.is_duplicate(('a', None))
    assert gate.is_duplicate(('c', None))


def test_dedup_gate_clear():
    gate = DedupGate()
    gate.mark_seen(('a', None))
    gate.clear()
    assert not gate.is_duplicate(('a', None))
