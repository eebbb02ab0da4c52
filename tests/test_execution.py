import asyncio
import sys

sys.path.insert(0, '.')

import pytest

from orchestration.position_cache import PositionCache
from risk.position_sizer import PositionSizer, SkipReason
from strategy.execution import ExecutionManager
from strategy.execution_types import OrderStatus, OrderTicket, Position
from strategy.fill_supervisor import FillOutcome, FillTimeoutSupervisor
from strategy.transports.base import ExchangeNotConfiguredError
from tests.relay_fixtures import FakeTransport, make_alert


def _ticket(order_id='oid-1'):
    return OrderTicket(exchange='fake', market='BTC-USD', side='buy', quantity=1.0, order_id=order_id)


def test_fill_timeout_cancels_unfilled_order_once():
    transport = FakeTransport()
    transport.status = OrderStatus(status='NEW', quantity=1.0, filled_qty=0.4)
    outcome = asyncio.run(FillTimeoutSupervisor().supervise(transport, _ticket(), 0))
    assert outcome is FillOutcome.CANCELLED
    assert transport.cancelled == ['oid-1']


def test_fill_timeout_leaves_filled_order():
    transport = FakeTransport()
    transport.status = OrderStatus(status='NEW', quantity=1.0, filled_qty=1.0)
    outcome = asyncio.run(FillTimeoutSupervisor().supervise(transport, _ticket(), 0))
    assert outcome is FillOutcome.FILLED
    assert transport.cancelled == []

    transport.status = OrderStatus(status='FILLED')
    assert asyncio.run(FillTimeoutSupervisor().supervise(transport, _ticket(), 0)) is FillOutcome.FILLED
    assert transport.cancelled == []


def test_fill_timeout_status_error_does_not_cancel():
    transport = FakeTransport()
    transport.status_error = RuntimeError('timeout')
    outcome = asyncio.run(FillTimeoutSupervisor().supervise(transport, _ticket(), 0))
    assert outcome is FillOutcome.UNKNOWN
    assert transport.cancelled == []


def test_fill_timeout_cancel_error_is_not_retried():
    transport = FakeTransport()
    transport.cancel_error = RuntimeError('rejected')
    outcome = asyncio.run(FillTimeoutSupervisor().supervise(transport, _ticket(), 0))
    assert outcome is FillOutcome.CANCELLED
    assert transport.cancelled == ['oid-1']


def test_supervisor_shutdown_cancels_pending_timers():
    async def scenario():
        transport = FakeTransport()
        supervisor = FillTimeoutSupervisor()
        task = supervisor.watch(transport, _ticket(), 3600)
        await asyncio.sleep(0)
        assert supervisor.pending == 1
        await supervisor.shutdown()
        return transport, supervisor, task

    transport, supervisor, task = asyncio.run(scenario())
    assert task.cancelled()
    assert supervisor.pending == 0
    assert transport.cancelled == []


def _manager(cache=None, enforce_lock=True):
    return ExecutionManager(cache or PositionCache(), PositionSizer(), FillTimeoutSupervisor(), enforce_lock=enforce_lock)


def test_execute_submits_and_watches_order():
    async def scenario():
        transport = FakeTransport(fill_wait_s=0)
        transport.status = OrderStatus(status='FILLED')
        manager = _manager()
        result = await manager.execute(make_alert(slippage_pct=1.0), transport)
        await asyncio.sleep(0.01)
        return transport, manager, result

    transport, manager, result = asyncio.run(scenario())
    assert result.submitted
    assert transport.placed[0].limit_price == pytest.approx(101.0)
    assert manager.supervisor.pending == 0
    assert transport.cancelled == []


def test_execute_skip_never_reaches_transport():
    transport = FakeTransport()
    result = asyncio.run(_manager().execute(make_alert(order='sell', direction='long'), transport))
    assert not result.submitted
    assert result.skip_reason is SkipReason.POSITION_NOT_EXISTS
    assert transport.placed == []


def test_execute_resolves_usd_size_and_doubles_reverse():
    transport = FakeTransport()
    alert = make_alert(size=None, size_usd=250.0, price=100.0, reverse=True)
    asyncio.run(_manager().execute(alert, transport))
    assert transport.placed[0].size == pytest.approx(5.0)


def test_execute_resolves_leverage_size_from_equity():
    transport = FakeTransport()
    transport.equity = 500.0
    alert = make_alert(size=None, size_by_leverage=2.0, price=50.0)
    asyncio.run(_manager().execute(alert, transport))
    assert transport.placed[0].size == pytest.approx(20.0)


def test_execute_requires_credentials():
    transport = FakeTransport(api_key=None)
    with pytest.raises(ExchangeNotConfiguredError):
        asyncio.run(_manager().execute(make_alert(), transport))
    assert transport.placed == []


def test_execute_propagates_transport_errors():
    transport = FakeTransport()
    transport.place_error = RuntimeError('rejected')
    with pytest.raises(RuntimeError):
        asyncio.run(_manager().execute(make_alert(), transport))


def test_execute_uses_cached_positions_for_flatten():
    cache = PositionCache()
    cache.replace('fake', [Position(market='BTC-USD', side='short', size=2.0, entry_price=100.0)])
    transport = FakeTransport()
    asyncio.run(_manager(cache).execute(make_alert(order='buy', order_mode='full', size=0.5), transport))
    assert transport.placed[0].size == 2.0


def test_lock_serializes_concurrent_alerts_per_exchange():
    async def scenario(enforce_lock):
        transport = FakeTransport(fill_wait_s=3600)
        transport.place_delay = 0.01
        manager = _manager(enforce_lock=enforce_lock)
        active = 0
        peak = 0
        original = transport.place_limit_order

        async def tracking(instruction, alert):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                return await original(instruction, alert)
            finally:
                active -= 1

        transport.place_limit_order = tracking
        await asyncio.gather(
            manager.execute(make_alert(size=1.0), transport),
            manager.execute(make_alert(size=2.0), transport),
        )
        await manager.supervisor.shutdown()
        return peak, transport

    peak, transport = asyncio.run(scenario(True))
    assert peak == 1
    assert len(transport.placed) == 2

    peak, _ = asyncio.run(scenario(False))
    assert peak == 2


def test_ticket_without_any_identifier_has_no_id():
    assert _ticket(order_id=None).id is None
    assert OrderTicket(exchange='fake', market='BTC-USD', side='buy', quantity=1.0, raw={'id': 9}).id == '9'


def test_execute_does_not_supervise_order_without_id():
    async def scenario():
        transport = FakeTransport(fill_wait_s=0)
        transport.ack_without_id = True
        manager = _manager()
        result = await manager.execute(make_alert(), transport)
        pending = manager.supervisor.pending
        await asyncio.sleep(0.01)
        return transport, pending, result

    transport, pending, result = asyncio.run(scenario())
    assert result.submitted
    assert pending == 0
    assert transport.cancelled == []
