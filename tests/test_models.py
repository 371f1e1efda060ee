from __future__ import annotations

import pytest

from netload.errors import BodyReuseError, ConfigurationError
from netload.headers import HeaderMap
from netload.models import (
    ChannelConfig,
    LoadConfig,
    ReachabilityConfig,
    ReachabilityResult,
    RequestOptions,
)
from stubs import make_response, make_timing


def test_header_map_is_case_insensitive_and_last_write_wins() -> None:
    headers = HeaderMap([("Content-Type", "text/plain"), ("X-Cache", "MISS")])
    headers["content-type"] = "application/json"
    headers["X-CACHE"] = "HIT"

    assert headers["Content-Type"] == "application/json"
    assert headers.get("x-cache") == "HIT"
    assert "CONTENT-TYPE" in headers
    assert list(headers) == ["content-type", "x-cache"]
    assert len(headers) == 2
    assert headers == {"Content-Type": "application/json", "x-cache": "HIT"}


def test_header_map_delete_and_copy() -> None:
    headers = HeaderMap({"Server": "nginx"})
    clone = headers.copy()
    del headers["SERVER"]

    assert "server" not in headers
    assert clone["server"] == "nginx"


def test_timing_record_derived_values() -> None:
    timing = make_timing(start=100.0)

    assert timing.is_monotonic
    assert timing.latency == pytest.approx(10.0)
    assert timing.duration == pytest.approx(15.0)
    assert timing.dns_ms == pytest.approx(1.0)
    assert timing.tcp_ms == pytest.approx(2.0)
    assert timing.tls_ms == pytest.approx(3.0)
    assert timing.transfer_ms == pytest.approx(5.0)

    entry = timing.as_resource_timing()
    assert entry["domainLookupStart"] == 101.0
    assert entry["responseStart"] == 110.0
    assert entry["nextHopProtocol"] == "http/1.1"


def test_timing_record_is_immutable() -> None:
    timing = make_timing()
    with pytest.raises(AttributeError):
        timing.end_time = 0.0  # type: ignore[misc]


def test_response_body_can_only_be_read_once() -> None:
    response = make_response(body=b'{"a": 1}')

    assert response.ok
    assert not response.body_used
    assert response.json() == {"a": 1}
    assert response.body_used
    with pytest.raises(BodyReuseError):
        response.read()
    with pytest.raises(BodyReuseError):
        response.text()


def test_non_2xx_response_is_not_ok() -> None:
    assert not make_response(status=404).ok
    assert not make_response(status=199).ok
    assert make_response(status=204).ok


def test_request_options_normalises_method_and_body() -> None:
    options = RequestOptions(method="post", body="000")  # type: ignore[arg-type]
    assert options.method == "POST"
    assert options.body == b"000"


@pytest.mark.parametrize("kwargs", [{"address_family": "ipx"}, {"timeout": 0}])
def test_request_options_rejects_bad_values(kwargs: dict) -> None:
    with pytest.raises(ConfigurationError):
        RequestOptions(**kwargs)


def test_channel_config_accepts_camel_case_mapping() -> None:
    config = ChannelConfig.coerce({"apiUrl": "https://x/test", "chunkSize": 1000}, "download")
    assert config.api_url == "https://x/test"
    assert config.chunk_size == 1000


@pytest.mark.parametrize(
    "download, upload",
    [
        (None, None),
        ({"chunkSize": 10}, None),
        ({"apiUrl": "", "chunkSize": 10}, None),
        (None, {"apiUrl": "https://x/up"}),
        (None, {"apiUrl": "https://x/up", "chunkSize": 0}),
        (None, {"apiUrl": "https://x/up", "chunkSize": -5}),
        ({"apiUrl": "https://x/down", "chunkSize": 10}, {"apiUrl": "https://x/up", "chunkSize": True}),
        ("https://x/down", None),
    ],
)
def test_load_config_rejects_incomplete_configuration(download, upload) -> None:
    with pytest.raises(ConfigurationError):
        LoadConfig(download=download, upload=upload)


def test_load_config_accepts_single_direction() -> None:
    config = LoadConfig(upload=ChannelConfig(api_url="https://x/up", chunk_size=16))
    assert config.download is None
    assert config.upload is not None and config.upload.chunk_size == 16


@pytest.mark.parametrize("timeout, expected", [(None, None), (0, None), (-1, None), (0.05, 0.05)])
def test_reachability_deadline(timeout, expected) -> None:
    assert ReachabilityConfig(target_url="https://x", timeout=timeout).deadline == expected


def test_reachability_config_requires_target() -> None:
    with pytest.raises(ConfigurationError):
        ReachabilityConfig(target_url="")


def test_reachability_result_timed_out() -> None:
    assert ReachabilityResult("https://x", False, error=TimeoutError()).timed_out
    assert not ReachabilityResult("https://x", False, error=OSError()).timed_out
