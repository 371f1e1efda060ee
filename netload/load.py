"""Sustained download/upload load generation.

LoadNetworkEngine wires one CancelableLoopEngine per configured direction
to a phased fetch.  The channels run independently; play(), pause() and
stop() fan out to all of them.

Requests issued per iteration:
    download -- GET <api_url>?bytes=<chunk_size>
    upload   -- POST <api_url> with <chunk_size> filler bytes
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional, Union

import httpx

from netload.client import Fetch, LoggerLike, PhasedHttpClient
from netload.config import DOWNLOAD_BYTES_PARAM, UPLOAD_FILLER_BYTE
from netload.errors import TransportError
from netload.loop import CancelableLoopEngine
from netload.models import ChannelConfig, LoadConfig, RequestOptions, TimingRecord

# Signature: (direction, timing_record)
LoadTimingHook = Callable[[str, TimingRecord], None]

ChannelSpec = Union[ChannelConfig, Mapping[str, Any]]


def build_download_request(
    config: ChannelConfig,
    local_address: Optional[str] = None,
) -> tuple[str, RequestOptions]:
    """Return the (url, options) pair one download iteration issues."""
    params = {**config.query_params, DOWNLOAD_BYTES_PARAM: str(config.chunk_size)}
    url = str(httpx.URL(config.api_url).copy_merge_params(params))
    options = dataclasses.replace(
        config.request_options,
        method="GET",
        body=None,
        local_address=local_address or config.request_options.local_address,
    )
    return url, options


def build_upload_request(
    config: ChannelConfig,
    local_address: Optional[str] = None,
) -> tuple[str, RequestOptions]:
    """Return the (url, options) pair one upload iteration issues."""
    url = config.api_url
    if config.query_params:
        url = str(httpx.URL(url).copy_merge_params(dict(config.query_params)))
    options = dataclasses.replace(
        config.request_options,
        method="POST",
        body=UPLOAD_FILLER_BYTE * config.chunk_size,
        local_address=local_address or config.request_options.local_address,
    )
    return url, options


class LoadNetworkEngine:
    """Keep the network busy in one or both directions until stopped.

    Parameters
    ----------
    download, upload:
        ``ChannelConfig`` instances or mappings with ``api_url``/``apiUrl``
        and ``chunk_size``/``chunkSize``.  At least one is required.
    local_address:
        Source address every request from every channel is bound to.
    fetch:
        Replacement for :meth:`PhasedHttpClient.fetch` (tests, custom
        transports).
    on_timing:
        Metrics hook called with ``(direction, timing)`` after every
        exchange that produced a response, successful or not.
    autostart:
        Start both channels from the constructor.  Requires a running
        event loop; pass ``False`` to call :meth:`play` later.

    Raises
    ------
    ConfigurationError
        Synchronously, when the configuration is incomplete.
    RuntimeError
        When ``autostart`` is true and no event loop is running.
    """

    def __init__(
        self,
        download: Optional[ChannelSpec] = None,
        upload: Optional[ChannelSpec] = None,
        local_address: Optional[str] = None,
        *,
        fetch: Fetch | None = None,
        on_timing: LoadTimingHook | None = None,
        logger: LoggerLike | None = None,
        autostart: bool = True,
    ) -> None:
        self.config = LoadConfig(download=download, upload=upload, local_address=local_address)
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._fetch = fetch if fetch is not None else PhasedHttpClient(logger=self._logger).fetch
        self._on_timing = on_timing

        engines: list[CancelableLoopEngine] = []
        if self.config.download is not None:
            url, options = build_download_request(self.config.download, local_address)
            engines.append(self._make_channel("download", url, options))
        if self.config.upload is not None:
            url, options = build_upload_request(self.config.upload, local_address)
            engines.append(self._make_channel("upload", url, options))
        self._engines = tuple(engines)

        if autostart:
            self.play()

    def play(self) -> None:
        for engine in self._engines:
            engine.play()

    def pause(self) -> None:
        for engine in self._engines:
            engine.pause()

    def stop(self) -> None:
        self.pause()

    async def drain(self) -> None:
        """Wait for every in-flight request to settle (after pause/stop)."""
        for engine in self._engines:
            await engine.drain()

    def _make_channel(
        self,
        direction: str,
        url: str,
        options: RequestOptions,
    ) -> CancelableLoopEngine:
        self._logger.debug(
            "Load %s channel: %s %s (local address: %s)",
            direction,
            options.method,
            url,
            options.local_address,
            extra={"direction": direction, "url": url, "local_address": options.local_address},
        )

        async def iteration() -> None:
            response = await self._fetch(url, options)
            if self._on_timing is not None and response.timing is not None:
                self._on_timing(direction, response.timing)
            if not response.ok:
                raise TransportError(
                    response.status_text or f"HTTP {response.status}", url,
                )
            response.read()

        return CancelableLoopEngine(iteration, name=direction, logger=self._logger)
