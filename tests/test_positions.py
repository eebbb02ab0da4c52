import asyncio
import csv
import sys

sys.path.insert(0, '.')

import pytest

from ingest.position_poller import PositionPoller
from orchestration.persistence import CSV_HEADER, PositionExporter
from orchestration.position_cache import PositionCache
from strategy.execution_types import Position
from strategy.registry import ExchangeName, ExchangeRegistry
from tests.relay_fixtures import FakeTransport


def _read_rows(path):
    with path.open(newline='') as fh:
        return list(csv.reader(fh))


def test_cache_replaces_snapshot_wholesale():
    cache = PositionCache()
    assert len(cache.snapshot('aster')) == 0
    assert cache.updated_at('aster') is None

    first = cache.replace('aster', [Position(market='BTCUSDT', side='long', size=1.0, entry_price=10.0)])
    second = cache.replace('aster', [])
    assert len(first) == 1
    assert first.find('BTCUSDT') is not None
    assert len(cache.snapshot('aster')) == 0
    assert second is cache.snapshot('aster')
    assert cache.exchanges() == ('aster',)


def test_cache_lock_is_per_exchange():
    async def scenario():
        cache = PositionCache()
        return cache.lock('aster'), cache.lock('aster'), cache.lock('nexo')

    first, again, other = asyncio.run(scenario())
    assert first is again
    assert first is not other


def test_exporter_overwrites_with_fixed_header(tmp_path):
    exporter = PositionExporter(tmp_path)
    positions = [
        Position(market='BTC-USD', side='long', size=1.5, entry_price=100.0, created_at='2024-01-01'),
        Position(market='ETH-USD', side='short', size=2.0, entry_price=10.0),
    ]
    path = exporter.write_snapshot('Aster', positions)
    assert path.name == 'positionsAster.csv'
    rows = _read_rows(path)
    assert rows[0] == CSV_HEADER
    assert len(rows[0]) == 14
    assert rows[1][:6] == ['BTC-USD', 'OPEN', 'long', '1.5', '', '100.0']
    assert rows[1][7] == '2024-01-01'
    assert rows[2][13] == ''

    exporter.write_snapshot('Aster', positions[:1])
    assert len(_read_rows(path)) == 2


def test_poller_isolates_failing_exchange(tmp_path):
    healthy = FakeTransport(name='aster')
    healthy.positions = [Position(market='BTCUSDT', side='long', size=1.0, entry_price=10.0)]
    broken = FakeTransport(name='nexo')
    broken.positions_error = RuntimeError('boom')
    registry = ExchangeRegistry({ExchangeName.ASTER: healthy, ExchangeName.NEXO: broken})
    cache = PositionCache()
    poller = PositionPoller(registry, cache, PositionExporter(tmp_path))

    results = asyncio.run(poller.poll_once())
    assert results == {'aster': True, 'nexo': False}
    assert cache.snapshot('aster').find('BTCUSDT') is not None
    assert len(cache.snapshot('nexo')) == 0
    assert poller.fail_counts['nexo'] == 1
    assert (tmp_path / 'positionsFake.csv').exists()


def test_poller_skips_exchanges_without_credentials():
    unconfigured = FakeTransport(name='sunperp', api_key=None)
    unconfigured.positions_error = AssertionError('should not be polled')
    registry = ExchangeRegistry({ExchangeName.SUNPERP: unconfigured})
    assert asyncio.run(PositionPoller(registry, PositionCache()).poll_once()) == {}


def test_poller_keeps_cache_when_export_fails(tmp_path):
    blocker = tmp_path / 'not-a-dir'
    blocker.write_text('x')
    transport = FakeTransport(name='aster')
    transport.positions = [Position(market='BTCUSDT', side='short', size=3.0, entry_price=10.0)]
    cache = PositionCache()
    poller = PositionPoller(ExchangeRegistry({ExchangeName.ASTER: transport}), cache, PositionExporter(blocker))

    assert asyncio.run(poller.poll_once()) == {'aster': True}
    assert cache.snapshot('aster').find('BTCUSDT').side == 'short'


def test_poller_start_and_stop():
    async def scenario():
        transport = FakeTransport(name='aster')
        cache = PositionCache()
        poller = PositionPoller(ExchangeRegistry({ExchangeName.ASTER: transport}), cache, interval_s=3600)
        poller.start()
        await asyncio.sleep(0.01)
        await poller.stop()
        return poller, cache

    poller, cache = asyncio.run(scenario())
    assert not poller.running
    assert cache.updated_at('aster') is not None


class _ExplodingExporter(PositionExporter):
    def __init__(self, export_dir):
        super().__init__(export_dir)
        self.calls = 0

    def write_snapshot(self, label, positions):
        self.calls += 1
        raise ValueError('cannot serialize snapshot')


def test_exporter_removes_temp_file_when_write_fails(tmp_path):
    exporter = PositionExporter(tmp_path)
    bad = Position(market='BTC\ud800', side='long', size=1.0, entry_price=10.0)

    with pytest.raises(UnicodeEncodeError):
        exporter.write_snapshot('Aster', [bad])
    assert list(tmp_path.iterdir()) == []


def test_poller_survives_non_os_export_errors(tmp_path):
    async def scenario():
        transport = FakeTransport(name='aster')
        transport.positions = [Position(market='BTCUSDT', side='long', size=1.0, entry_price=10.0)]
        cache = PositionCache()
        exporter = _ExplodingExporter(tmp_path)
        poller = PositionPoller(ExchangeRegistry({ExchangeName.ASTER: transport}), cache, exporter, interval_s=0.01)
        task = poller.start()
        await asyncio.sleep(0.1)
        alive = not task.done()
        transport.positions = []
        await asyncio.sleep(0.05)
        await poller.stop()
        return alive, exporter.calls, cache

    alive, calls, cache = asyncio.run(scenario())
    assert alive
    assert calls >= 2
    assert len(cache.snapshot('aster')) == 0


def test_poller_loop_survives_failed_cycle():
    class _BrokenCache(PositionCache):
        def __init__(self):
            super().__init__()
            self.attempts = 0

        def replace(self, exchange, positions):
            self.attempts += 1
            raise RuntimeError('cache unavailable')

    async def scenario():
        cache = _BrokenCache()
        poller = PositionPoller(ExchangeRegistry({ExchangeName.ASTER: FakeTransport(name='aster')}), cache, interval_s=0.01)
        task = poller.start()
        await asyncio.sleep(0.1)
        alive = not task.done()
        await poller.stop()
        return alive, cache.attempts

    alive, attempts = asyncio.run(scenario())
    assert alive
    assert attempts >= 2
