"""Statistical aggregation for load measurements.

LoadMetrics is a ready-made metrics collaborator: pass its ``record``
method as ``on_timing`` to a LoadNetworkEngine and read summaries later.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from netload.models import LatencyStats, ThroughputSummary, TimingRecord


def compute_stats(values: Sequence[float]) -> LatencyStats:
    """Compute statistical summary from a list of values."""
    if not values:
        return LatencyStats()

    sorted_vals = sorted(values)
    n = len(sorted_vals)

    avg = sum(sorted_vals) / n
    median = _percentile(sorted_vals, 50)
    p95 = _percentile(sorted_vals, 95)

    variance = sum((v - avg) ** 2 for v in sorted_vals) / n if n > 1 else 0.0
    stdev = math.sqrt(variance)

    jitter = _compute_jitter(values)

    return LatencyStats(
        min=sorted_vals[0],
        max=sorted_vals[-1],
        avg=round(avg, 2),
        median=round(median, 2),
        p95=round(p95, 2),
        stdev=round(stdev, 2),
        jitter=round(jitter, 2),
    )


def _percentile(sorted_vals: list[float], pct: float) -> float:
    """Compute the given percentile from pre-sorted values."""
    n = len(sorted_vals)
    if n == 1:
        return sorted_vals[0]
    k = (pct / 100) * (n - 1)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_vals[int(k)]
    return sorted_vals[f] * (c - k) + sorted_vals[c] * (k - f)


def _compute_jitter(values: Sequence[float]) -> float:
    """Average absolute difference between consecutive latencies.

    Samples are in arrival order, so for a load channel this is the
    spread between back-to-back requests.
    """
    if len(values) < 2:
        return 0.0
    diffs = [abs(values[i + 1] - values[i]) for i in range(len(values) - 1)]
    return sum(diffs) / len(diffs)


def payload_bytes(direction: str, timing: TimingRecord) -> int:
    """Bytes that count towards throughput for one request."""
    if direction == "upload":
        return timing.request_body_size
    return timing.transfer_size


class LoadMetrics:
    """Collects timing records per direction.

    Download latency is time to first byte; upload latency is time until
    the secure channel was ready to carry the body.
    """

    def __init__(self) -> None:
        self._records: dict[str, list[TimingRecord]] = {}

    def record(self, direction: str, timing: TimingRecord) -> None:
        self._records.setdefault(direction, []).append(timing)

    def records(self, direction: str) -> list[TimingRecord]:
        return list(self._records.get(direction, []))

    @property
    def directions(self) -> list[str]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()

    def summary(self, direction: str) -> ThroughputSummary:
        records = self._records.get(direction, [])
        summary = ThroughputSummary(direction=direction, requests=len(records))
        if not records:
            return summary

        summary.total_bytes = sum(payload_bytes(direction, r) for r in records)
        summary.total_ms = sum(r.duration for r in records)

        if direction == "upload":
            latencies = [r.upload_latency for r in records if r.upload_latency is not None]
        else:
            latencies = [r.download_latency for r in records if r.download_latency is not None]
        summary.latency = compute_stats(latencies or [r.latency for r in records])

        phases = {
            "dns": [r.dns_ms for r in records],
            "tcp": [r.tcp_ms for r in records],
            "tls": [r.tls_ms for r in records],
            "ttfb": [r.ttfb_ms for r in records],
            "transfer": [r.transfer_ms for r in records],
            "total": [r.duration for r in records],
        }
        for phase_name, values in phases.items():
            summary.phase_stats[phase_name] = compute_stats(values)
        return summary
