"""Sequential, cancelable repeat loop.

A CancelableLoopEngine awaits one operation at a time, back to back,
until it is paused.  Each play() hands a fresh CancellationToken to a
driver task; pause()/stop() cancel exactly that token, so an iteration
that settles after the stop can never start another one.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable
from typing import Callable, Optional, Union

from netload.errors import ConfigurationError

Operation = Callable[[], Awaitable[object]]
LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


class LoopState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class CancellationToken:
    """Cancellation flag owned by one play() session."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class CancelableLoopEngine:
    """Run *operation* repeatedly with no overlap between iterations.

    Parameters
    ----------
    operation:
        Zero-argument coroutine function; awaited once per iteration.
    name:
        Label used in log lines.
    abort_in_flight:
        When true, pause()/stop() also cancel the in-flight iteration
        instead of letting it finish.
    autostart:
        Call play() from the constructor (requires a running event loop).

    A failing operation halts the loop: the error is logged at DEBUG and
    the engine goes back to IDLE without restarting.
    """

    def __init__(
        self,
        operation: Operation,
        *,
        name: str = "loop",
        abort_in_flight: bool = False,
        autostart: bool = False,
        logger: LoggerLike | None = None,
    ) -> None:
        if operation is None or not callable(operation):
            raise ConfigurationError("Missing operation to perform")

        self._operation = operation
        self._name = name
        self._abort_in_flight = abort_in_flight
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self._state = LoopState.IDLE
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._iterations = 0

        if autostart:
            self.play()

    # -- public API ---------------------------------------------------------

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is LoopState.RUNNING

    @property
    def iterations(self) -> int:
        """Number of iterations started so far."""
        return self._iterations

    def play(self) -> None:
        if self._state is LoopState.RUNNING:
            return

        loop = asyncio.get_running_loop()
        token = CancellationToken()
        self._token = token
        self._state = LoopState.RUNNING
        previous = self._task
        self._task = loop.create_task(
            self._drive(token, previous), name=f"netload-{self._name}",
        )

    def pause(self) -> None:
        if self._state is LoopState.IDLE:
            return

        if self._token is not None:
            self._token.cancel()
        self._token = None
        self._state = LoopState.IDLE
        if self._abort_in_flight and self._task is not None:
            self._task.cancel()

    def stop(self) -> None:
        self.pause()

    async def drain(self) -> None:
        """Wait until the current driver task (if any) has settled."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait([task])

    # -- internals ----------------------------------------------------------

    async def _drive(
        self,
        token: CancellationToken,
        previous: Optional[asyncio.Task],
    ) -> None:
        # A paused iteration may still be running; never overlap with it.
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

        while not token.cancelled:
            self._iterations += 1
            try:
                await self._operation()
            except Exception as exc:
                self._logger.debug(
                    "Loop %s halted after iteration %d: %r",
                    self._name,
                    self._iterations,
                    exc,
                    extra={"loop": self._name, "iteration": self._iterations},
                )
                if self._token is token:
                    self._token = None
                    self._state = LoopState.IDLE
                return
            # Operations that never suspend must still let pause/stop in.
            await asyncio.sleep(0)
