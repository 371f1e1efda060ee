"""netload: phase-timed HTTP load and reachability engines."""

from netload.client import PhasedHttpClient, phased_fetch
from netload.errors import (
    BodyReuseError,
    ConfigurationError,
    ConnectError,
    DnsError,
    NetloadError,
    ReachabilityTimeoutError,
    TransportError,
)
from netload.headers import HeaderMap
from netload.load import LoadNetworkEngine
from netload.loop import CancelableLoopEngine, CancellationToken, LoopState
from netload.models import (
    ChannelConfig,
    LoadConfig,
    ReachabilityResult,
    RequestOptions,
    ResponseEnvelope,
    TimingRecord,
)
from netload.reachability import FinishedLatch, ReachabilityEngine
from netload.stats import LoadMetrics

__version__ = "0.1.0"

__all__ = [
    "BodyReuseError",
    "CancelableLoopEngine",
    "CancellationToken",
    "ChannelConfig",
    "ConfigurationError",
    "ConnectError",
    "DnsError",
    "FinishedLatch",
    "HeaderMap",
    "LoadConfig",
    "LoadMetrics",
    "LoadNetworkEngine",
    "LoopState",
    "NetloadError",
    "PhasedHttpClient",
    "ReachabilityEngine",
    "ReachabilityResult",
    "ReachabilityTimeoutError",
    "RequestOptions",
    "ResponseEnvelope",
    "TimingRecord",
    "TransportError",
    "phased_fetch",
]
