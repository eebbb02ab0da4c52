import sys

sys.path.insert(0, '.')

import pytest

from api.validation import AlertValidationError, validate_alert
from monitoring.dedupe import DedupeGuard
from tests.relay_fixtures import FakeClock, alert_payload


def test_dedupe_rejects_repeat_within_ttl():
    clock = FakeClock()
    guard = DedupeGuard(ttl_ms=5000, clock=clock)
    payload = alert_payload()
    assert guard.should_process_alert(payload)
    clock.advance(4.9)
    assert not guard.should_process_alert(dict(payload))


def test_dedupe_accepts_repeat_after_ttl():
    clock = FakeClock()
    guard = DedupeGuard(ttl_ms=5000, clock=clock)
    payload = alert_payload()
    assert guard.should_process_alert(payload)
    clock.advance(5.0)
    assert guard.should_process_alert(payload)
    assert len(guard) == 1


def test_dedupe_key_is_order_sensitive():
    guard = DedupeGuard(clock=FakeClock())
    first = {'market': 'BTC-USD', 'order': 'buy'}
    second = {'order': 'buy', 'market': 'BTC-USD'}
    assert DedupeGuard.make_key(first) != DedupeGuard.make_key(second)
    assert guard.should_process_alert(first)
    assert guard.should_process_alert(second)


def test_validate_alert_accepts_numeric_strings():
    alert = validate_alert(alert_payload(price='101.5', size='0.25', slippagePercentage='1', exchange='Paper'))
    assert alert.price == 101.5
    assert alert.size == 0.25
    assert alert.slippage_pct == 1.0
    assert alert.exchange == 'paper'
    assert alert.reverse is False


def test_validate_alert_defaults_exchange():
    payload = alert_payload()
    del payload['exchange']
    assert validate_alert(payload).exchange == 'dydxv3'
    assert validate_alert(payload, default_exchange='aster').exchange == 'aster'


@pytest.mark.parametrize('overrides', [
    {'order': 'hold'},
    {'price': 0},
    {'price': 'abc'},
    {'price': True},
    {'size': None},
    {'size': -1},
    {'reverse': 'yes'},
    {'orderMode': 'partial'},
    {'direction': 'up'},
    {'market': ''},
    {'strategy': None},
    {'exchange': 5},
    {'minProfit': 'lots'},
])
def test_validate_alert_rejects_bad_fields(overrides):
    with pytest.raises(AlertValidationError):
        validate_alert(alert_payload(**overrides))


def test_validate_alert_accepts_alternative_size_fields():
    payload = alert_payload(size=None, sizeUsd=250)
    alert = validate_alert(payload)
    assert alert.size is None
    assert alert.size_usd == 250.0


def test_validate_alert_rejects_non_object_and_passphrase_mismatch():
    with pytest.raises(AlertValidationError):
        validate_alert(['not', 'a', 'dict'])
    with pytest.raises(AlertValidationError):
        validate_alert(alert_payload(passphrase='wrong'), passphrase='secret')
    assert validate_alert(alert_payload(passphrase='secret'), passphrase='secret').passphrase == 'secret'


def test_validate_alert_reads_sizing_fields():
    alert = validate_alert(alert_payload(
        order='sell',
        direction='Long',
        orderMode='full',
        newPositionSize=0,
        minProfit='1.5',
        reverse=True,
    ))
    assert alert.direction == 'long'
    assert alert.is_closing
    assert alert.is_full_mode
    assert alert.targets_flat
    assert alert.min_profit == 1.5
    assert alert.reverse is True


def test_blank_new_position_size_targets_flat():
    assert validate_alert(alert_payload(newPositionSize='')).targets_flat
    assert validate_alert(alert_payload(newPositionSize='  ')).targets_flat
    assert not validate_alert(alert_payload()).targets_flat
