"""Constants and configuration for netload."""

# Default request settings
DEFAULT_TIMEOUT = 30.0  # seconds, applied per connect/read step
DEFAULT_ADDRESS_FAMILY = "ipv4"
ADDRESS_FAMILIES = ("ipv4", "ipv6")

# Socket read size while streaming a response
READ_CHUNK_SIZE = 65535

# Chunked responses that stream zero body bytes still cost a header block
# on the wire.  Added to transfer_size only in that case.
CHUNKED_EMPTY_BODY_PADDING = 200

# Load channels
DOWNLOAD_BYTES_PARAM = "bytes"
UPLOAD_FILLER_BYTE = b"0"

# Method classes used to pick download_latency vs upload_latency
READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# Reachability
REACHABILITY_TIMEOUT_MESSAGE = "Request timeout"

# User agent for HTTP requests
USER_AGENT = "netload/0.1.0"

# ALPN protocol ids and their resource-timing names
ALPN_PROTOCOLS = ["h2", "http/1.1"]
PROTOCOL_NAMES = {
    "h2": "h2",
    "HTTP/2": "h2",
    "HTTP/1.1": "http/1.1",
    "HTTP/1.0": "http/1.0",
}
