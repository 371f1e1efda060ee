"""Phased HTTP client for netload.

Performs one HTTP exchange on a fresh connection and records the
boundary of every phase:
  DNS -> TCP -> TLS -> first byte -> end of body

Each boundary is stamped with time.perf_counter() (milliseconds), so the
resulting TimingRecord can be read like a browser resource-timing entry.
The TLS socket opened for timing is reused for the request itself (h2 or
HTTP/1.1, chosen by ALPN) so the handshake is never paid twice.

Public API:
    PhasedHttpClient  -- reusable client with an optional timing hook
    phased_fetch      -- one-off convenience wrapper
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import re
import socket
import ssl
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Callable, Optional, Union

import dns.asyncresolver
import dns.exception
import dns.rdatatype
import dns.resolver
import h2.config
import h2.connection
import h2.events
import h2.exceptions
import httpx

from netload.config import (
    ALPN_PROTOCOLS,
    CHUNKED_EMPTY_BODY_PADDING,
    PROTOCOL_NAMES,
    READ_CHUNK_SIZE,
    READ_METHODS,
    USER_AGENT,
    WRITE_METHODS,
)
from netload.errors import (
    ConfigurationError,
    ConnectError,
    DnsError,
    TransportError,
)
from netload.headers import HeaderMap
from netload.models import RequestOptions, ResponseEnvelope, TimingRecord

logger = logging.getLogger(__name__)

# Signature of anything that can stand in for PhasedHttpClient.fetch.
Fetch = Callable[[str, RequestOptions], Awaitable[ResponseEnvelope]]
TimingHook = Callable[[ResponseEnvelope], None]
LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

_SENT_BYTES_RE = re.compile(r"sent_bytes=(\d+)")

# dnspython failures after which the system resolver (hosts file) is asked.
_SYSTEM_FALLBACK_ERRORS = (
    dns.resolver.NXDOMAIN,
    dns.resolver.NoAnswer,
    dns.resolver.NoNameservers,
    dns.resolver.NoResolverConfiguration,
    dns.exception.Timeout,
)

# Connection-specific headers that must not be sent on an h2 stream.
_H2_FORBIDDEN_HEADERS = frozenset(
    {"connection", "host", "keep-alive", "proxy-connection", "transfer-encoding", "upgrade"}
)


def _now_ms() -> float:
    return time.perf_counter() * 1000.0


# ---------------------------------------------------------------------------
# Request target and raw response containers
# ---------------------------------------------------------------------------

@dataclass
class _Target:
    url: str
    scheme: str
    host: str
    port: int
    path: str
    authority: str


def _parse_target(url: str) -> _Target:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise ConfigurationError(f"Invalid URL {url!r}: {exc}") from exc

    if parsed.scheme not in ("http", "https"):
        raise ConfigurationError(f"Unsupported URL scheme in {url!r}")
    if not parsed.host:
        raise ConfigurationError(f"Missing host in {url!r}")

    default_port = 443 if parsed.scheme == "https" else 80
    return _Target(
        url=str(parsed),
        scheme=parsed.scheme,
        host=parsed.host,
        port=parsed.port or default_port,
        path=parsed.raw_path.decode("ascii") or "/",
        authority=parsed.netloc.decode("ascii"),
    )


@dataclass
class HttpResult:
    """Status line and headers collected on the raw socket."""

    status_code: int = 0
    reason: str = ""
    headers: HeaderMap = field(default_factory=HeaderMap)
    http_version: str = ""
    chunked: bool = False
    headers_time: Optional[float] = None


class _BodyCollector:
    """Accumulates body bytes and stamps the arrival of the first one."""

    def __init__(self) -> None:
        self._chunks: list[bytes] = []
        self.size = 0
        self.first_byte_time: Optional[float] = None

    def feed(self, data: bytes) -> None:
        if not data:
            return
        if self.first_byte_time is None:
            self.first_byte_time = _now_ms()
        self._chunks.append(data)
        self.size += len(data)

    @property
    def body(self) -> bytes:
        return b"".join(self._chunks)


def compute_transfer_size(headers: HeaderMap, body_size: int, chunked: bool) -> int:
    """Bytes transferred for a response, resource-timing style.

    Uses the declared ``Content-Length`` when present, else the bytes that
    were actually received.  A chunked response that streamed nothing gets
    ``CHUNKED_EMPTY_BODY_PADDING`` added.  If the size is still zero, a
    ``Server-Timing: ...sent_bytes=N`` hint is honoured.
    """
    size = body_size
    declared = headers.get("content-length")
    if declared is not None:
        try:
            size = int(declared)
        except ValueError:
            size = body_size
    elif chunked and body_size == 0:
        size = body_size + CHUNKED_EMPTY_BODY_PADDING

    if size == 0:
        match = _SENT_BYTES_RE.search(headers.get("server-timing", ""))
        if match:
            size = int(match.group(1))
    return size


def _request_headers(target: _Target, options: RequestOptions, body: bytes) -> HeaderMap:
    headers = HeaderMap({"User-Agent": USER_AGENT, "Accept": "*/*"})
    headers.update(options.headers)
    headers["Host"] = target.authority
    if body or options.method in WRITE_METHODS:
        headers["Content-Length"] = str(len(body))
    return headers


# ---------------------------------------------------------------------------
# DNS resolution
# ---------------------------------------------------------------------------

async def _resolve(hostname: str, options: RequestOptions) -> str:
    """Resolve *hostname* to a single address of the configured family.

    IP literals are returned unchanged.  Only one record type is queried
    (A for ipv4, AAAA for ipv6) so repeated runs always measure the same
    path.  Names DNS does not know (hosts-file entries such as
    ``localhost``) are looked up through the system resolver, pinned to
    the same family.

    Raises
    ------
    dns.exception.DNSException, socket.gaierror
        On resolution failure (caller wraps it in DnsError).
    """
    try:
        return str(ipaddress.ip_address(hostname))
    except ValueError:
        pass

    rdtype = dns.rdatatype.AAAA if options.address_family == "ipv6" else dns.rdatatype.A
    try:
        resolver = dns.asyncresolver.Resolver()
        resolver.lifetime = options.timeout
        if options.dns_server:
            resolver.nameservers = [options.dns_server]
        answer = await resolver.resolve(hostname, rdtype)
        return str(answer[0])
    except _SYSTEM_FALLBACK_ERRORS as exc:
        logger.debug("DNS lookup for %s failed (%s), trying system resolver", hostname, exc)

    family = socket.AF_INET6 if options.address_family == "ipv6" else socket.AF_INET
    infos = await asyncio.get_running_loop().getaddrinfo(
        hostname, None, family=family, type=socket.SOCK_STREAM,
    )
    return infos[0][4][0]


# ---------------------------------------------------------------------------
# TCP connect and TLS upgrade
# ---------------------------------------------------------------------------

async def _connect(
    ip: str,
    port: int,
    options: RequestOptions,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open a raw TCP connection, bound to the source address if one is set."""
    local_addr = (options.local_address, 0) if options.local_address else None
    return await asyncio.wait_for(
        asyncio.open_connection(ip, port, local_addr=local_addr),
        timeout=options.timeout,
    )


def _build_ssl_context(options: RequestOptions) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    if not options.verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    ctx.set_alpn_protocols(ALPN_PROTOCOLS if options.http2 else ["http/1.1"])
    return ctx


async def _start_tls(
    writer: asyncio.StreamWriter,
    hostname: str,
    options: RequestOptions,
) -> Optional[str]:
    """Upgrade the connection in place and return the negotiated ALPN id."""
    await asyncio.wait_for(
        writer.start_tls(_build_ssl_context(options), server_hostname=hostname),
        timeout=options.timeout,
    )
    ssl_obj = writer.get_extra_info("ssl_object")
    if ssl_obj is not None:
        return ssl_obj.selected_alpn_protocol()
    return None


def _safe_close_writer(writer: asyncio.StreamWriter | None) -> None:
    """Close a stream writer without raising on already-closed transports."""
    if writer is None:
        return
    try:
        writer.close()
    except Exception as exc:
        logger.debug("Ignoring error while closing connection: %s", exc)


# ---------------------------------------------------------------------------
# HTTP/1.1 exchange
# ---------------------------------------------------------------------------

async def _exchange_h1(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    target: _Target,
    options: RequestOptions,
    collector: _BodyCollector,
) -> HttpResult:
    """Send a raw HTTP/1.1 request and stream the response into *collector*."""
    body = options.body or b""
    headers = _request_headers(target, options, body)
    headers["Connection"] = "close"

    request_lines = [f"{options.method} {target.path} HTTP/1.1"]
    request_lines.extend(f"{name}: {value}" for name, value in headers.items())
    request_lines.append("")
    request_lines.append("")
    writer.write("\r\n".join(request_lines).encode("latin-1") + body)
    await writer.drain()

    # Read until we get the full header block (\r\n\r\n)
    header_buf = b""
    while b"\r\n\r\n" not in header_buf:
        chunk = await asyncio.wait_for(reader.read(4096), timeout=options.timeout)
        if not chunk:
            raise TransportError("Connection closed before response headers", target.url)
        header_buf += chunk

    result = HttpResult(headers_time=_now_ms())
    header_end = header_buf.index(b"\r\n\r\n")
    header_block = header_buf[:header_end].decode("latin-1")
    body_so_far = header_buf[header_end + 4:]

    lines = header_block.split("\r\n")
    parts = lines[0].split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/"):
        raise TransportError(f"Malformed status line: {lines[0]!r}", target.url)
    result.http_version = parts[0]
    result.status_code = int(parts[1])
    result.reason = parts[2] if len(parts) > 2 else ""

    for line in lines[1:]:
        if ":" in line:
            name, _, value = line.partition(":")
            result.headers[name.strip()] = value.strip()

    if (
        options.method == "HEAD"
        or result.status_code in (204, 304)
        or 100 <= result.status_code < 200
    ):
        return result

    content_length = result.headers.get("content-length")
    result.chunked = "chunked" in result.headers.get("transfer-encoding", "").lower()

    if result.chunked:
        await _read_chunked_body(reader, body_so_far, options.timeout, collector, target.url)
    elif content_length is not None:
        collector.feed(body_so_far)
        remaining = int(content_length) - len(body_so_far)
        while remaining > 0:
            chunk = await asyncio.wait_for(
                reader.read(min(remaining, READ_CHUNK_SIZE)), timeout=options.timeout,
            )
            if not chunk:
                raise TransportError(
                    f"Connection closed with {remaining} body bytes outstanding",
                    target.url,
                )
            collector.feed(chunk)
            remaining -= len(chunk)
    else:
        # Read until EOF (Connection: close)
        collector.feed(body_so_far)
        while True:
            chunk = await asyncio.wait_for(reader.read(READ_CHUNK_SIZE), timeout=options.timeout)
            if not chunk:
                break
            collector.feed(chunk)

    return result


async def _read_chunked_body(
    reader: asyncio.StreamReader,
    initial_data: bytes,
    timeout: float,
    collector: _BodyCollector,
    url: str,
) -> None:
    """Decode a chunked transfer-encoded body into *collector*.

    Raises TransportError if the connection closes before the last chunk.
    """
    buf = initial_data

    while True:
        # Ensure we have a chunk size line
        while b"\r\n" not in buf:
            chunk = await asyncio.wait_for(reader.read(4096), timeout=timeout)
            if not chunk:
                raise TransportError("Connection closed inside chunked body", url)
            buf += chunk

        line_end = buf.index(b"\r\n")
        size_str = buf[:line_end].decode("latin-1").strip()
        buf = buf[line_end + 2:]

        # Parse chunk size (ignore extensions after semicolon)
        chunk_size = int(size_str.split(";")[0], 16)
        if chunk_size == 0:
            return

        # Read chunk_size bytes + trailing \r\n
        needed = chunk_size + 2
        while len(buf) < needed:
            data = await asyncio.wait_for(
                reader.read(min(needed - len(buf), READ_CHUNK_SIZE)), timeout=timeout,
            )
            if not data:
                raise TransportError("Connection closed inside chunked body", url)
            buf += data

        collector.feed(buf[:chunk_size])
        buf = buf[needed:]


# ---------------------------------------------------------------------------
# HTTP/2 exchange (single stream)
# ---------------------------------------------------------------------------

async def _exchange_h2(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    target: _Target,
    options: RequestOptions,
    collector: _BodyCollector,
) -> HttpResult:
    """Run one request on a fresh h2 connection via the h2 library.

    The request body is sent as flow control allows, interleaved with
    reading the response.
    """
    config = h2.config.H2Configuration(client_side=True, header_encoding="utf-8")
    conn = h2.connection.H2Connection(config=config)
    conn.initiate_connection()

    body = options.body or b""
    headers = [
        (":method", options.method),
        (":path", target.path),
        (":scheme", target.scheme),
        (":authority", target.authority),
    ]
    for name, value in _request_headers(target, options, body).items():
        if name not in _H2_FORBIDDEN_HEADERS:
            headers.append((name, value))

    stream_id = conn.get_next_available_stream_id()
    conn.send_headers(stream_id, headers, end_stream=not body)
    writer.write(conn.data_to_send())
    await writer.drain()

    result = HttpResult(http_version="HTTP/2")
    offset = 0
    stream_ended = False

    while not stream_ended:
        while offset < len(body):
            window = min(
                conn.local_flow_control_window(stream_id), conn.max_outbound_frame_size,
            )
            if window <= 0:
                break
            chunk = body[offset:offset + window]
            offset += len(chunk)
            conn.send_data(stream_id, chunk, end_stream=offset >= len(body))
        outbound = conn.data_to_send()
        if outbound:
            writer.write(outbound)
            await writer.drain()

        data = await asyncio.wait_for(reader.read(READ_CHUNK_SIZE), timeout=options.timeout)
        if not data:
            raise TransportError("Connection closed before HTTP/2 stream ended", target.url)

        for event in conn.receive_data(data):
            if isinstance(event, h2.events.ResponseReceived):
                for name, value in event.headers:
                    if name == ":status":
                        result.status_code = int(value)
                    else:
                        result.headers[name] = value
                result.headers_time = _now_ms()

            elif isinstance(event, h2.events.DataReceived):
                collector.feed(event.data)
                conn.acknowledge_received_data(
                    event.flow_controlled_length, event.stream_id,
                )

            elif isinstance(event, h2.events.StreamEnded):
                stream_ended = True

            elif isinstance(event, h2.events.StreamReset):
                raise TransportError(
                    f"HTTP/2 stream reset: error code {event.error_code}", target.url,
                )

            elif isinstance(event, h2.events.ConnectionTerminated):
                raise TransportError(
                    f"HTTP/2 connection terminated: error code {event.error_code}",
                    target.url,
                )

        outbound = conn.data_to_send()
        if outbound:
            writer.write(outbound)
            await writer.drain()

    try:
        result.reason = HTTPStatus(result.status_code).phrase
    except ValueError:
        result.reason = ""
    return result


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class PhasedHttpClient:
    """Issues single HTTP exchanges and returns timing-annotated responses.

    Each call opens a fresh connection so that every phase is measured.
    A non-2xx status is returned as ``ok=False``; only DNS, connect and
    transfer failures raise.

    Parameters
    ----------
    on_timing:
        Optional callable invoked with every completed response, before it
        is returned.  Metrics collaborators hook in here.
    logger:
        Logger (or adapter) receiving the per-request diagnostic lines.
    """

    def __init__(
        self,
        on_timing: TimingHook | None = None,
        logger: LoggerLike | None = None,
    ) -> None:
        self._on_timing = on_timing
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    async def __call__(
        self, url: str, options: RequestOptions | None = None,
    ) -> ResponseEnvelope:
        return await self.fetch(url, options)

    async def fetch(
        self, url: str, options: RequestOptions | None = None,
    ) -> ResponseEnvelope:
        options = options or RequestOptions()
        target = _parse_target(url)
        log = self._logger

        start_time = _now_ms()

        # ---- Phase 1: DNS ----
        dns_start = _now_ms()
        try:
            ip = await _resolve(target.host, options)
        except (dns.exception.DNSException, socket.gaierror) as exc:
            log.debug("DNS failed for %s: %s", target.host, exc)
            raise DnsError(f"DNS resolution failed for {target.host}: {exc}", url) from exc
        dns_end = _now_ms()

        # ---- Phase 2: TCP ----
        tcp_connect_start = _now_ms()
        try:
            reader, writer = await _connect(ip, target.port, options)
        except (OSError, asyncio.TimeoutError) as exc:
            log.debug("TCP failed for %s:%d: %s", ip, target.port, exc)
            raise ConnectError(
                f"TCP connect to {ip}:{target.port} failed: {exc!r}", url,
            ) from exc
        tcp_connect_end = _now_ms()

        try:
            # ---- Phase 3: TLS ----
            tls_handshake_start = tcp_connect_end
            alpn_protocol: Optional[str] = None
            if target.scheme == "https":
                try:
                    alpn_protocol = await _start_tls(writer, target.host, options)
                except (OSError, asyncio.TimeoutError) as exc:
                    log.debug("TLS failed for %s: %s", target.host, exc)
                    raise ConnectError(
                        f"TLS handshake with {target.host} failed: {exc!r}", url,
                    ) from exc
                tls_handshake_end = _now_ms()
            else:
                tls_handshake_end = tls_handshake_start

            protocol = "h2" if alpn_protocol == "h2" else "http/1.1"
            log.debug(
                "Phased fetch %s %s over %s to %s:%d (local address: %s)",
                options.method,
                target.url,
                protocol,
                ip,
                target.port,
                options.local_address,
                extra={
                    "url": target.url,
                    "method": options.method,
                    "protocol": protocol,
                    "remote_address": ip,
                    "local_address": options.local_address,
                },
            )

            # ---- Phases 4 & 5: first byte + transfer ----
            collector = _BodyCollector()
            try:
                if alpn_protocol == "h2":
                    result = await _exchange_h2(reader, writer, target, options, collector)
                else:
                    result = await _exchange_h1(reader, writer, target, options, collector)
            except asyncio.TimeoutError as exc:
                log.debug("HTTP timeout for %s", target.url)
                raise TransportError(f"HTTP timeout for {target.url}", url) from exc
            except (OSError, ValueError, h2.exceptions.H2Error) as exc:
                log.debug("HTTP failed for %s: %s", target.url, exc)
                raise TransportError(f"HTTP request failed: {exc!r}", url) from exc
            end_time = _now_ms()
        finally:
            _safe_close_writer(writer)

        first_byte_time = collector.first_byte_time or result.headers_time or end_time
        method = options.method
        timing = TimingRecord(
            name=target.url,
            start_time=start_time,
            dns_start=dns_start,
            dns_end=dns_end,
            tcp_connect_start=tcp_connect_start,
            tcp_connect_end=tcp_connect_end,
            tls_handshake_start=tls_handshake_start,
            tls_handshake_end=tls_handshake_end,
            first_byte_time=first_byte_time,
            end_time=end_time,
            transfer_size=compute_transfer_size(result.headers, collector.size, result.chunked),
            encoded_body_size=collector.size,
            decoded_body_size=collector.size,
            request_body_size=len(options.body or b""),
            download_latency=first_byte_time - start_time if method in READ_METHODS else None,
            upload_latency=tls_handshake_end - start_time if method in WRITE_METHODS else None,
            next_hop_protocol=PROTOCOL_NAMES.get(result.http_version, protocol),
        )

        response = ResponseEnvelope(
            status=result.status_code,
            status_text=result.reason,
            headers=result.headers,
            body=collector.body,
            timing=timing,
            url=target.url,
            http_version=result.http_version,
        )
        if self._on_timing is not None:
            self._on_timing(response)
        return response


async def phased_fetch(url: str, options: RequestOptions | None = None) -> ResponseEnvelope:
    """Perform one phased request with a throwaway client."""
    return await PhasedHttpClient().fetch(url, options)
