"""
Transport tunables.

HTTP headers and retry/timeout knobs for the aiohttp and websockets
clients.
"""

# ---------------------------------------------------------------------------
# HTTP headers (browser-like, required by Ookla servers)
# ---------------------------------------------------------------------------

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Origin": "https://www.speedtest.net",
    "Referer": "https://www.speedtest.net/",
}

# ---------------------------------------------------------------------------
# HTTP streams
# ---------------------------------------------------------------------------

CONNECT_TIMEOUT = 5.0            # seconds
SOCK_READ_TIMEOUT = 5.0
MAX_CONSECUTIVE_FAILURES = 3     # per worker, before giving up
RETRY_DELAY = 0.2
UPLOAD_BUFFER_SIZE = 1024 * 1024 # 1 MB pre-generated random buffer

# ---------------------------------------------------------------------------
# WebSocket probes
# ---------------------------------------------------------------------------

WS_CONNECT_TIMEOUT = 5.0         # seconds to establish the WS connection
HANDSHAKE_TIMEOUT = 2.0          # max wait for HELLO/YOURIP/CAPABILITIES
MSG_TIMEOUT = 0.5                # per-message timeout during handshake
PING_TIMEOUT = 5.0               # per-ping round-trip timeout
LOSS_PROBE_TIMEOUT = 1.0         # a probe unanswered after this counts as lost
