"""Data models for netload."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import httpx

from netload.config import (
    ADDRESS_FAMILIES,
    DEFAULT_ADDRESS_FAMILY,
    DEFAULT_TIMEOUT,
)
from netload.errors import BodyReuseError, ConfigurationError
from netload.headers import HeaderMap


@dataclass(frozen=True)
class TimingRecord:
    """Phase timestamps for one request, in milliseconds.

    All timestamps come from the same ``time.perf_counter()`` clock, so
    only differences between them are meaningful.  Phase order:

        start_time <= dns_start <= dns_end <= tcp_connect_start
        <= tcp_connect_end <= tls_handshake_start <= tls_handshake_end
        <= first_byte_time <= end_time
    """

    name: str
    start_time: float
    dns_start: float
    dns_end: float
    tcp_connect_start: float
    tcp_connect_end: float
    tls_handshake_start: float
    tls_handshake_end: float
    first_byte_time: float
    end_time: float
    transfer_size: int = 0
    encoded_body_size: int = 0
    decoded_body_size: int = 0
    request_body_size: int = 0
    download_latency: Optional[float] = None
    upload_latency: Optional[float] = None
    next_hop_protocol: str = "http/1.1"

    @property
    def latency(self) -> float:
        return self.first_byte_time - self.start_time

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def dns_ms(self) -> float:
        return self.dns_end - self.dns_start

    @property
    def tcp_ms(self) -> float:
        return self.tcp_connect_end - self.tcp_connect_start

    @property
    def tls_ms(self) -> float:
        return self.tls_handshake_end - self.tls_handshake_start

    @property
    def ttfb_ms(self) -> float:
        return self.first_byte_time - self.tls_handshake_end

    @property
    def transfer_ms(self) -> float:
        return self.end_time - self.first_byte_time

    def phase_timestamps(self) -> list[float]:
        """Timestamps in phase order (used to check monotonicity)."""
        return [
            self.start_time,
            self.dns_start,
            self.dns_end,
            self.tcp_connect_start,
            self.tcp_connect_end,
            self.tls_handshake_start,
            self.tls_handshake_end,
            self.first_byte_time,
            self.end_time,
        ]

    @property
    def is_monotonic(self) -> bool:
        stamps = self.phase_timestamps()
        return all(a <= b for a, b in zip(stamps, stamps[1:]))

    def as_resource_timing(self) -> dict[str, Any]:
        """Browser ``PerformanceResourceTiming``-shaped view of the record."""
        return {
            "name": self.name,
            "entryType": "resource",
            "initiatorType": "fetch",
            "nextHopProtocol": self.next_hop_protocol,
            "startTime": self.start_time,
            "duration": self.duration,
            "fetchStart": self.start_time,
            "domainLookupStart": self.dns_start,
            "domainLookupEnd": self.dns_end,
            "connectStart": self.tcp_connect_start,
            "secureConnectionStart": self.tls_handshake_start,
            "connectEnd": self.tcp_connect_end,
            "requestStart": self.start_time,
            "responseStart": self.first_byte_time,
            "responseEnd": self.end_time,
            "transferSize": self.transfer_size,
            "encodedBodySize": self.encoded_body_size,
            "decodedBodySize": self.decoded_body_size,
        }


class ResponseEnvelope:
    """A fully received HTTP response with its timing record.

    The body can be consumed once, through :meth:`read`, :meth:`text` or
    :meth:`json`.
    """

    def __init__(
        self,
        status: int,
        status_text: str,
        headers: HeaderMap,
        body: bytes,
        timing: TimingRecord,
        url: str = "",
        http_version: str = "HTTP/1.1",
    ) -> None:
        self.status = status
        self.status_text = status_text
        self.headers = headers
        self.timing = timing
        self.url = url
        self.http_version = http_version
        self._body = body
        self._body_used = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def body_used(self) -> bool:
        return self._body_used

    def read(self) -> bytes:
        if self._body_used:
            raise BodyReuseError("Body already used")
        self._body_used = True
        body, self._body = self._body, b""
        return body

    def text(self, encoding: str = "utf-8") -> str:
        return self.read().decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.read())

    def __repr__(self) -> str:
        return f"<ResponseEnvelope [{self.status} {self.status_text}] {self.url}>"


# ---------------------------------------------------------------------------
# Configuration structs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RequestOptions:
    """Options for a single phased request."""

    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    local_address: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    address_family: str = DEFAULT_ADDRESS_FAMILY
    dns_server: Optional[str] = None
    http2: bool = True
    verify: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        if isinstance(self.body, str):
            object.__setattr__(self, "body", self.body.encode())
        if self.address_family not in ADDRESS_FAMILIES:
            raise ConfigurationError(
                f"Unknown address family {self.address_family!r}, "
                f"expected one of {ADDRESS_FAMILIES}"
            )
        if self.timeout <= 0:
            raise ConfigurationError("Request timeout must be positive")


@dataclass(frozen=True)
class ChannelConfig:
    """One load direction: the endpoint and the bytes moved per request."""

    api_url: str
    chunk_size: int
    query_params: Mapping[str, str] = field(default_factory=dict)
    request_options: RequestOptions = field(default_factory=RequestOptions)

    @classmethod
    def coerce(
        cls,
        value: Union[ChannelConfig, Mapping[str, Any]],
        direction: str,
    ) -> ChannelConfig:
        """Build a config from a struct or a plain mapping.

        Mappings may use ``api_url``/``chunk_size`` or the camelCase
        ``apiUrl``/``chunkSize`` names.
        """
        if isinstance(value, ChannelConfig):
            config = value
        elif isinstance(value, Mapping):
            config = cls(
                api_url=value.get("api_url", value.get("apiUrl", "")),
                chunk_size=value.get("chunk_size", value.get("chunkSize", 0)),
                query_params=value.get("query_params", {}),
                request_options=value.get("request_options", RequestOptions()),
            )
        else:
            raise ConfigurationError(
                f"Invalid {direction} config: expected ChannelConfig or mapping, "
                f"got {type(value).__name__}"
            )
        config.validate(direction)
        return config

    def validate(self, direction: str) -> None:
        if not self.api_url or not isinstance(self.api_url, str):
            raise ConfigurationError(f"Missing {direction} api_url argument")
        try:
            url = httpx.URL(self.api_url)
        except httpx.InvalidURL as exc:
            raise ConfigurationError(f"Invalid {direction} api_url: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationError(
                f"Invalid {direction} api_url {self.api_url!r}: expected an absolute http(s) URL"
            )
        if (
            isinstance(self.chunk_size, bool)
            or not isinstance(self.chunk_size, int)
            or self.chunk_size <= 0
        ):
            raise ConfigurationError(
                f"Missing {direction} chunk_size argument (positive byte count)"
            )


@dataclass(frozen=True)
class LoadConfig:
    """Configuration for a :class:`~netload.load.LoadNetworkEngine`."""

    download: Optional[ChannelConfig] = None
    upload: Optional[ChannelConfig] = None
    local_address: Optional[str] = None

    def __post_init__(self) -> None:
        if self.download is None and self.upload is None:
            raise ConfigurationError("Missing at least one of download/upload config")
        if self.download is not None:
            object.__setattr__(
                self, "download", ChannelConfig.coerce(self.download, "download"),
            )
        if self.upload is not None:
            object.__setattr__(
                self, "upload", ChannelConfig.coerce(self.upload, "upload"),
            )


@dataclass(frozen=True)
class ReachabilityConfig:
    """Configuration for a :class:`~netload.reachability.ReachabilityEngine`.

    A missing or non-positive ``timeout`` (seconds) disables the deadline.
    """

    target_url: str
    timeout: Optional[float] = None
    request_options: RequestOptions = field(default_factory=RequestOptions)
    local_address: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.target_url or not isinstance(self.target_url, str):
            raise ConfigurationError("Missing reachability target_url argument")

    @property
    def deadline(self) -> Optional[float]:
        if self.timeout is None or self.timeout <= 0:
            return None
        return float(self.timeout)


@dataclass(frozen=True)
class ReachabilityResult:
    """Verdict of one reachability check."""

    target_url: str
    reachable: bool
    response: Optional[ResponseEnvelope] = None
    error: Optional[BaseException] = None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, TimeoutError)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------

@dataclass
class LatencyStats:
    """Aggregated statistics for a timing phase."""

    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    median: float = 0.0
    p95: float = 0.0
    stdev: float = 0.0
    jitter: float = 0.0


@dataclass
class ThroughputSummary:
    """Aggregated measurements for one load direction."""

    direction: str
    requests: int = 0
    total_bytes: int = 0
    total_ms: float = 0.0
    latency: LatencyStats = field(default_factory=LatencyStats)
    phase_stats: dict[str, LatencyStats] = field(default_factory=dict)

    @property
    def throughput_bps(self) -> float:
        """Bits per second over the time spent in requests."""
        if self.total_ms <= 0:
            return 0.0
        return self.total_bytes * 8 / (self.total_ms / 1000.0)
