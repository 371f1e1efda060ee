from __future__ import annotations

import asyncio

import pytest

from netload.errors import ConfigurationError
from netload.loop import CancelableLoopEngine, CancellationToken, LoopState
from stubs import StubTransport, wait_until


def _engine_for(stub: StubTransport, **kwargs) -> CancelableLoopEngine:
    return CancelableLoopEngine(lambda: stub("https://x/test", None), **kwargs)  # type: ignore[arg-type]


def test_cancellation_token() -> None:
    token = CancellationToken()
    assert not token.cancelled
    token.cancel()
    assert token.cancelled


def test_missing_operation_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        CancelableLoopEngine(None)  # type: ignore[arg-type]


async def test_engine_starts_idle_unless_autostarted(stub_transport) -> None:
    engine = _engine_for(stub_transport)
    assert engine.state is LoopState.IDLE
    await asyncio.sleep(0.02)
    assert stub_transport.calls == []

    engine.play()
    assert engine.running
    await wait_until(lambda: len(stub_transport.calls) >= 2)
    engine.stop()
    await engine.drain()


async def test_play_while_running_is_a_noop(stub_transport) -> None:
    engine = _engine_for(stub_transport, autostart=True)
    engine.play()
    engine.play()

    await wait_until(lambda: len(stub_transport.calls) >= 5)
    engine.stop()
    await engine.drain()

    assert stub_transport.max_in_flight == 1


async def test_pause_while_idle_is_a_noop(stub_transport) -> None:
    engine = _engine_for(stub_transport)
    engine.pause()
    engine.stop()
    assert engine.state is LoopState.IDLE
    await engine.drain()
    assert stub_transport.calls == []


async def test_iterations_never_overlap() -> None:
    stub = StubTransport(delay=0.002)
    engine = _engine_for(stub, autostart=True)

    await wait_until(lambda: len(stub.spans) >= 10)
    engine.stop()
    await engine.drain()

    spans = stub.spans
    for (_, previous_end), (next_start, _) in zip(spans, spans[1:]):
        assert next_start >= previous_end
    assert stub.max_in_flight == 1


async def test_no_iteration_after_stop_even_when_in_flight_call_settles() -> None:
    stub = StubTransport(delay=0.05)
    engine = _engine_for(stub, autostart=True)

    await wait_until(lambda: len(stub.calls) == 1)
    engine.stop()
    assert stub.in_flight == 1

    await engine.drain()
    await asyncio.sleep(0.1)

    assert len(stub.calls) == 1
    assert len(stub.spans) == 1
    assert engine.state is LoopState.IDLE


async def test_replay_waits_for_the_paused_iteration() -> None:
    stub = StubTransport(delay=0.03)
    engine = _engine_for(stub, autostart=True)

    await wait_until(lambda: len(stub.calls) == 1)
    engine.pause()
    engine.play()

    await wait_until(lambda: len(stub.calls) >= 3)
    engine.stop()
    await engine.drain()

    assert stub.max_in_flight == 1


async def test_failure_halts_the_loop_silently() -> None:
    stub = StubTransport(delay=0.001, fail_after=3)
    engine = _engine_for(stub, autostart=True)

    await wait_until(lambda: engine.state is LoopState.IDLE)
    await engine.drain()
    await asyncio.sleep(0.02)

    assert len(stub.calls) == 4
    assert engine.iterations == 4


async def test_abort_in_flight_cancels_the_running_call() -> None:
    stub = StubTransport(delay=10)
    engine = _engine_for(stub, autostart=True, abort_in_flight=True)

    await wait_until(lambda: len(stub.calls) == 1)
    engine.stop()
    await engine.drain()

    assert stub.in_flight == 0
    assert len(stub.calls) == 1


async def test_operation_that_never_suspends_can_still_be_stopped() -> None:
    count = 0

    async def tick() -> None:
        nonlocal count
        count += 1

    engine = CancelableLoopEngine(tick, autostart=True)
    await asyncio.sleep(0.01)
    engine.stop()
    await engine.drain()

    assert count > 0
    assert engine.iterations == count
    assert engine.state is LoopState.IDLE
