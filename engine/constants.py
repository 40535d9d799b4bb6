"""
Shared constants used across the engine.

Centralises magic numbers, defaults, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# Connection limits
# ---------------------------------------------------------------------------

MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 32
DEFAULT_CONNECTIONS = 4
DEFAULT_UPLOAD_CONNECTIONS = 3

# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

DEFAULT_PING_COUNT = 10
MIN_PING_COUNT = 1
MAX_PING_COUNT = 100
PING_INTERVAL = 0.2              # seconds between round-trip probes

DEFAULT_DURATION = 10.0          # seconds of post-grace measurement
MIN_DURATION = 1.0
MAX_DURATION = 300.0

RUN_TIMEOUT_GRACE = 30.0         # slack on top of the planned run time
OPTIONAL_PROBE_SECONDS = 1.0     # budget per bufferbloat / packet-loss probe

# ---------------------------------------------------------------------------
# Grace period
# ---------------------------------------------------------------------------

DOWNLOAD_GRACE_SECONDS = 2.0
UPLOAD_GRACE_SECONDS = 3.0
MIN_GRACE_SECONDS = 0.0
MAX_GRACE_SECONDS = 10.0

GRACE_SAMPLE_DELAY_MS = 500      # no early samples before this
GRACE_SAMPLE_INTERVAL_MS = 200   # minimum spacing of early samples
GRACE_MAX_EARLY_SAMPLES = 5
GRACE_MIN_EARLY_SAMPLES = 3      # needed before the extension rule applies
GRACE_SLOW_LINK_MBPS = 1.0
GRACE_EXTENSION_MS = 1000
GRACE_EXTENSION_CAP_MS = 3000

# ---------------------------------------------------------------------------
# Dynamic duration
# ---------------------------------------------------------------------------

BONUS_MAGNITUDE_MS = 1000.0
BONUS_SETTLE_MS = 1000.0         # measured time required before adjusting

# ---------------------------------------------------------------------------
# Protocol overhead
# ---------------------------------------------------------------------------

DEFAULT_OVERHEAD_FACTOR = 1.06
MIN_OVERHEAD_FACTOR = 1.00
MAX_OVERHEAD_FACTOR = 1.20

# ---------------------------------------------------------------------------
# Data transfer
# ---------------------------------------------------------------------------

PAYLOAD_BYTES = 10 * 1024 * 1024   # 10 MB per request
CHUNK_BYTES = 64 * 1024            # 64 KB pieces
MIN_CHUNK_BYTES = 1024

# ---------------------------------------------------------------------------
# Outlier trimming
# ---------------------------------------------------------------------------

TRIM_MIN_SAMPLES = 5             # drop min and max from this many samples on
