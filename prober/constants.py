"""
Shared constants used across all prober modules.

Centralises magic numbers, default headers, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP headers
# ---------------------------------------------------------------------------

USER_AGENT = "proxyprobe/0.3"

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}

# ---------------------------------------------------------------------------
# Test server endpoints (relative to the base URL, prefix included)
# ---------------------------------------------------------------------------

DEFAULT_BASE_URL = "http://localhost:3030"

ECHO_PATH = "/echo"
HDR_PATH = "/hdr"
LB_PATH = "/lb"
WS_PATH = "/ws"
SSE_PATH = "/sse"

# ---------------------------------------------------------------------------
# Boundary search
# ---------------------------------------------------------------------------

SEED_SIZE = 1024                  # first candidate of the growth phase
MAX_ITERATIONS = 30               # refinement ceiling
GROWTH_PROGRESS = 0.10            # progress shown during the growth phase

ORIGIN_MAX_HEADER_BYTES = 16 * 1024 * 1024
ORIGIN_MAX_URI_BYTES = 65534      # the test server's own request-line limit
ORIGIN_MAX_RESPONSE_HEADER_BYTES = 2 * 1024 * 1024
ORIGIN_LIMIT_MARGIN = 0.98        # "near the origin limit" threshold

DEFAULT_CEILING = int(ORIGIN_MAX_HEADER_BYTES * 1.1)
DEFAULT_RESPONSE_CEILING = ORIGIN_MAX_RESPONSE_HEADER_BYTES
MIN_CEILING = 1
MAX_CEILING = 256 * 1024 * 1024

MULTI_HEADER_COUNT = 10           # headers used by the "total size" probes

# Largest single response header line the HTTP client will parse.  Anything
# larger is refused client-side before a status code is observable.
CLIENT_HEADER_LIMIT = 1024 * 1024

# ---------------------------------------------------------------------------
# Bandwidth estimation / adaptive timeout
# ---------------------------------------------------------------------------

DEFAULT_BANDWIDTH_BPS = 1_000_000.0   # 1 MB/s seed
EMA_ALPHA = 0.4
NOISE_FLOOR_MS = 50.0
TIMEOUT_FACTOR = 4.0
MIN_PROBE_TIMEOUT_MS = 2000.0
MAX_PROBE_TIMEOUT_MS = 30000.0

# ---------------------------------------------------------------------------
# Persistent connections
# ---------------------------------------------------------------------------

HISTORY_CAPACITY = 20
RECONNECT_DELAY = 2.0             # seconds
TICK_INTERVAL = 1.0               # seconds
WS_OPEN_TIMEOUT = 10.0
SSE_CONNECT_TIMEOUT = 10.0
SSE_READ_TIMEOUT = 30.0           # server heartbeats every 5 s

DEFAULT_MONITOR_SECONDS = 0.0     # 0 = run until interrupted
MAX_MONITOR_SECONDS = 7 * 24 * 3600.0

# ---------------------------------------------------------------------------
# Load balancer
# ---------------------------------------------------------------------------

DEFAULT_LB_REQUESTS = 15
MIN_LB_REQUESTS = 1
MAX_LB_REQUESTS = 500
