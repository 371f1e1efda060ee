from __future__ import annotations

import asyncio

import pytest

from netload.errors import ConfigurationError, DnsError, ReachabilityTimeoutError
from netload.models import ReachabilityResult, RequestOptions
from netload.reachability import FinishedLatch, ReachabilityEngine
from stubs import StubTransport


def test_finished_latch_accepts_only_the_first_value() -> None:
    latch: FinishedLatch[int] = FinishedLatch()
    assert not latch.finished
    assert latch.offer(1)
    assert not latch.offer(2)
    assert latch.finished
    assert latch.value == 1


async def test_latch_under_many_competing_offers() -> None:
    latch: FinishedLatch[int] = FinishedLatch()
    winners: list[int] = []

    async def compete(i: int) -> None:
        await asyncio.sleep(0)
        if latch.offer(i):
            winners.append(i)

    await asyncio.gather(*(compete(i) for i in range(200)))
    assert len(winners) == 1
    assert latch.value == winners[0]


async def test_success_without_timeout_is_reachable() -> None:
    stub = StubTransport(delay=0.01, status=200)
    results: list[ReachabilityResult] = []
    engine = ReachabilityEngine("https://x/ping", fetch=stub)
    engine.on_finished = results.append

    result = await engine.wait()

    assert result.reachable
    assert result.response is not None and result.response.status == 200
    assert result.error is None
    assert result.target_url == "https://x/ping"
    assert results == [result]


async def test_deadline_first_reports_timeout() -> None:
    stub = StubTransport(delay=0.5)
    results: list[ReachabilityResult] = []
    loop = asyncio.get_running_loop()
    started = loop.time()

    engine = ReachabilityEngine("https://x/ping", timeout=0.05, fetch=stub, on_finished=results.append)
    result = await engine.wait()
    elapsed = loop.time() - started

    assert not result.reachable
    assert result.timed_out
    assert isinstance(result.error, ReachabilityTimeoutError)
    assert str(result.error) == "Request timeout"
    assert 0.04 <= elapsed < 0.4
    await asyncio.sleep(0.01)
    assert len(results) == 1
    assert stub.in_flight == 0


async def test_transport_failure_is_unreachable() -> None:
    error = DnsError("no such host", "https://nowhere.invalid")
    stub = StubTransport(delay=0.001, error=error)
    results: list[ReachabilityResult] = []

    engine = ReachabilityEngine("https://nowhere.invalid", timeout=1, fetch=stub, on_finished=results.append)
    result = await engine.wait()

    assert not result.reachable
    assert result.error is error
    assert results == [result]


async def test_non_2xx_response_still_counts_as_reachable() -> None:
    engine = ReachabilityEngine("https://x/missing", fetch=StubTransport(status=404))
    result = await engine.wait()
    assert result.reachable
    assert result.response is not None and not result.response.ok


@pytest.mark.parametrize("timeout", [None, 0, -1])
async def test_non_positive_timeout_disables_deadline(timeout) -> None:
    engine = ReachabilityEngine("https://x/ping", timeout=timeout, fetch=StubTransport(delay=0.05))
    result = await engine.wait()
    assert result.reachable


async def test_settling_exactly_at_the_deadline_delivers_once() -> None:
    for _ in range(20):
        calls: list[ReachabilityResult] = []
        engine = ReachabilityEngine(
            "https://x/ping",
            timeout=0.01,
            fetch=StubTransport(delay=0.01),
            on_finished=calls.append,
        )
        await engine.wait()
        await asyncio.sleep(0.02)
        assert len(calls) == 1
        assert engine.finished


async def test_callback_assigned_after_construction_still_receives_fast_result() -> None:
    calls: list[ReachabilityResult] = []
    engine = ReachabilityEngine("https://x/ping", fetch=StubTransport(delay=0))
    engine.on_finished = calls.append
    await engine.wait()
    assert len(calls) == 1


async def test_callback_errors_do_not_escape(caplog) -> None:
    def explode(result: ReachabilityResult) -> None:
        raise RuntimeError("boom")

    engine = ReachabilityEngine("https://x/ping", fetch=StubTransport(), on_finished=explode)
    result = await engine.wait()

    assert result.reachable
    assert "on_finished callback failed" in caplog.text


async def test_local_address_is_forwarded() -> None:
    stub = StubTransport()
    engine = ReachabilityEngine(
        "https://x/ping",
        request_options=RequestOptions(method="HEAD"),
        local_address="192.0.2.7",
        fetch=stub,
    )
    await engine.wait()

    _, options = stub.calls[0]
    assert options.method == "HEAD"
    assert options.local_address == "192.0.2.7"


async def test_missing_target_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        ReachabilityEngine("", fetch=StubTransport())
