from __future__ import annotations

import pytest

from netload.stats import LoadMetrics, compute_stats, payload_bytes
from stubs import make_timing


def test_compute_stats_empty() -> None:
    stats = compute_stats([])
    assert stats.avg == 0.0
    assert stats.p95 == 0.0


def test_compute_stats_summary() -> None:
    stats = compute_stats([10.0, 20.0, 30.0, 40.0])

    assert stats.min == 10.0
    assert stats.max == 40.0
    assert stats.avg == 25.0
    assert stats.median == 25.0
    assert stats.jitter == 10.0
    assert stats.p95 == pytest.approx(38.5)


def test_payload_bytes_by_direction() -> None:
    assert payload_bytes("download", make_timing()) == 1000
    assert payload_bytes("upload", make_timing(method="POST")) == 16


def test_upload_summary_uses_upload_latency() -> None:
    metrics = LoadMetrics()
    for i in range(3):
        metrics.record("upload", make_timing(start=i * 100.0, method="POST"))

    summary = metrics.summary("upload")

    assert summary.requests == 3
    assert summary.total_bytes == 48
    assert summary.total_ms == pytest.approx(45.0)
    assert summary.latency.avg == pytest.approx(7.0)
    assert summary.phase_stats["tls"].avg == pytest.approx(3.0)
    assert summary.throughput_bps == pytest.approx(48 * 8 / 0.045)


def test_summary_for_unknown_direction_is_empty() -> None:
    metrics = LoadMetrics()
    summary = metrics.summary("download")
    assert summary.requests == 0
    assert summary.throughput_bps == 0.0

    metrics.record("download", make_timing())
    metrics.clear()
    assert metrics.records("download") == []
