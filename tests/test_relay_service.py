import asyncio
import sys

sys.path.insert(0, '.')

from fastapi.testclient import TestClient

from api.fastapi_server import create_app
from main import (
    RESPONSE_DUPLICATE,
    RESPONSE_ERROR,
    RESPONSE_INVALID,
    RESPONSE_OK,
    RelayService,
    unsupported_exchange,
)
from monitoring.dedupe import DedupeGuard
from strategy.execution_types import Position
from strategy.registry import ExchangeName, ExchangeRegistry
from tests.relay_fixtures import FakeClock, FakeTransport, alert_payload


def _service(transport=None, clock=None, **kwargs):
    transport = transport or FakeTransport(name='paper', fill_wait_s=3600)
    registry = ExchangeRegistry({ExchangeName.PAPER: transport})
    service = RelayService(registry, dedupe=DedupeGuard(ttl_ms=5000, clock=clock or FakeClock()), **kwargs)
    return service, transport


def _handle(service, *payloads):
    async def scenario():
        responses = [await service.handle_alert(payload) for payload in payloads]
        await service.supervisor.shutdown()
        return responses

    return asyncio.run(scenario())


def test_duplicate_alert_never_reaches_transport():
    service, transport = _service()
    payload = alert_payload()
    assert _handle(service, payload, dict(payload)) == [RESPONSE_OK, RESPONSE_DUPLICATE]
    assert len(transport.placed) == 1


def test_alert_after_ttl_is_processed_again():
    clock = FakeClock()
    service, transport = _service(clock=clock)
    payload = alert_payload()
    assert _handle(service, payload) == [RESPONSE_OK]
    clock.advance(5.001)
    assert _handle(service, payload) == [RESPONSE_OK]
    assert len(transport.placed) == 2


def test_invalid_alert_response():
    service, transport = _service()
    assert _handle(service, alert_payload(price='x'), None) == [RESPONSE_INVALID, RESPONSE_INVALID]
    assert transport.placed == []


def test_unsupported_exchange_response():
    service, _ = _service()
    payload = alert_payload()
    del payload['exchange']
    assert _handle(service, payload) == [unsupported_exchange('dydxv3')]
    assert _handle(service, alert_payload(exchange='kraken')) == ['Error. Exchange: kraken is not supported']


def test_adapter_failure_answers_error():
    transport = FakeTransport(name='paper')
    transport.place_error = RuntimeError('exchange down')
    service, _ = _service(transport)
    assert _handle(service, alert_payload()) == [RESPONSE_ERROR]


def test_missing_credentials_answers_error():
    service, transport = _service(FakeTransport(name='paper', api_key=None))
    assert _handle(service, alert_payload()) == [RESPONSE_ERROR]
    assert transport.placed == []


def test_sizing_skip_answers_ok():
    service, transport = _service()
    payload = alert_payload(order='sell', direction='long')
    assert _handle(service, payload) == [RESPONSE_OK]
    assert transport.placed == []


def test_closing_alert_uses_cached_position():
    service, transport = _service()
    service.cache.replace('paper', [Position(market='BTC-USD', side='long', size=1.5, entry_price=100.0)])
    payload = alert_payload(order='sell', direction='long', newPositionSize=0, price=110, minProfit=0)
    assert _handle(service, payload) == [RESPONSE_OK]
    assert transport.placed[0].size == 1.5


def test_passphrase_is_enforced():
    service, transport = _service(passphrase='s3cret')
    assert _handle(service, alert_payload()) == [RESPONSE_INVALID]
    assert _handle(service, alert_payload(passphrase='s3cret')) == [RESPONSE_OK]
    assert len(transport.placed) == 1


def test_accounts_reports_readiness_per_exchange():
    ready = FakeTransport(name='paper')
    failing = FakeTransport(name='aster')
    failing.ready = RuntimeError('bad key')
    registry = ExchangeRegistry({ExchangeName.PAPER: ready, ExchangeName.ASTER: failing})
    service = RelayService(registry)
    failing.label = 'Aster'
    assert asyncio.run(service.accounts()) == {'Fake': True, 'Aster': False}


def test_http_routes():
    service, transport = _service()
    with TestClient(create_app(service)) as client:
        health = client.get('/')
        assert health.status_code == 200
        assert health.text == 'OK'

        assert client.get('/accounts').json() == {'Fake': True}

        response = client.post('/', json=alert_payload())
        assert response.status_code == 200
        assert response.text == RESPONSE_OK

        duplicate = client.post('/', json=alert_payload())
        assert duplicate.text == RESPONSE_DUPLICATE

        bad = client.post('/', content=b'{not json', headers={'Content-Type': 'application/json'})
        assert bad.text == RESPONSE_INVALID

    assert len(transport.placed) == 1
    assert transport.closed
    assert not service.running
