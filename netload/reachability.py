"""Single-shot reachability check with an optional deadline."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Callable, Generic, Optional, TypeVar

from netload.client import Fetch, LoggerLike, PhasedHttpClient
from netload.config import REACHABILITY_TIMEOUT_MESSAGE
from netload.errors import ReachabilityTimeoutError
from netload.models import ReachabilityConfig, ReachabilityResult, RequestOptions

T = TypeVar("T")

FinishedCallback = Callable[[ReachabilityResult], None]


def _noop(result: ReachabilityResult) -> None:
    return None


class FinishedLatch(Generic[T]):
    """Single-assignment result cell.

    The first :meth:`offer` stores its value and returns True; every
    later offer is discarded and returns False.
    """

    __slots__ = ("_value", "_set")

    def __init__(self) -> None:
        self._value: Optional[T] = None
        self._set = False

    def offer(self, value: T) -> bool:
        if self._set:
            return False
        self._set = True
        self._value = value
        return True

    @property
    def finished(self) -> bool:
        return self._set

    @property
    def value(self) -> Optional[T]:
        return self._value


class ReachabilityEngine:
    """Answer "is *target_url* reachable within *timeout* seconds" once.

    The request and the deadline race; whichever settles first decides the
    verdict, which is passed to :attr:`on_finished` exactly once.  Assign
    ``on_finished`` right after construction (or pass it in): delivery
    happens no earlier than the next event-loop iteration.

    Must be constructed while an event loop is running.  Nothing is ever
    raised out of the engine; failures become ``reachable=False`` verdicts.
    """

    def __init__(
        self,
        target_url: str,
        timeout: Optional[float] = None,
        request_options: Optional[RequestOptions] = None,
        local_address: Optional[str] = None,
        *,
        on_finished: FinishedCallback | None = None,
        fetch: Fetch | None = None,
        logger: LoggerLike | None = None,
    ) -> None:
        self.config = ReachabilityConfig(
            target_url=target_url,
            timeout=timeout,
            request_options=request_options or RequestOptions(),
            local_address=local_address,
        )
        self.on_finished: FinishedCallback = on_finished or _noop
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._fetch = fetch if fetch is not None else PhasedHttpClient(logger=self._logger).fetch
        self._latch: FinishedLatch[ReachabilityResult] = FinishedLatch()

        loop = asyncio.get_running_loop()
        self._done = loop.create_future()
        self._timer: Optional[asyncio.TimerHandle] = None

        options = self.config.request_options
        if local_address:
            options = dataclasses.replace(options, local_address=local_address)
        self._logger.debug(
            "Reachability check for %s (timeout: %s, local address: %s)",
            target_url,
            self.config.deadline,
            options.local_address,
            extra={"url": target_url, "local_address": options.local_address},
        )

        self._request = loop.create_task(self._run_request(options))
        if self.config.deadline is not None:
            self._timer = loop.call_later(self.config.deadline, self._on_deadline)

    @property
    def finished(self) -> bool:
        return self._latch.finished

    @property
    def result(self) -> Optional[ReachabilityResult]:
        return self._latch.value

    async def wait(self) -> ReachabilityResult:
        """Return the verdict once it has been delivered."""
        return await asyncio.shield(self._done)

    # -- race participants --------------------------------------------------

    async def _run_request(self, options: RequestOptions) -> None:
        target_url = self.config.target_url
        try:
            response = await self._fetch(target_url, options)
        except Exception as exc:
            self._finish(ReachabilityResult(target_url=target_url, reachable=False, error=exc))
        else:
            self._finish(ReachabilityResult(target_url=target_url, reachable=True, response=response))

    def _on_deadline(self) -> None:
        won = self._finish(
            ReachabilityResult(
                target_url=self.config.target_url,
                reachable=False,
                error=ReachabilityTimeoutError(REACHABILITY_TIMEOUT_MESSAGE),
            )
        )
        if won and not self._request.done():
            self._request.cancel()

    def _finish(self, result: ReachabilityResult) -> bool:
        if not self._latch.offer(result):
            self._logger.debug(
                "Discarding late reachability outcome for %s", result.target_url,
            )
            return False

        if self._timer is not None:
            self._timer.cancel()

        self._logger.debug(
            "Reachability verdict for %s: reachable=%s",
            result.target_url,
            result.reachable,
            extra={"url": result.target_url, "reachable": result.reachable},
        )
        self._done.set_result(result)
        try:
            self.on_finished(result)
        except Exception:
            self._logger.exception("on_finished callback failed for %s", result.target_url)
        return True
