"""
Network, retry and timing constants shared by server and client.
"""

# Network defaults
DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 1234
MAX_PAYLOAD_SIZE = 1024 * 1024   # Largest accepted JSON payload (bytes)
LISTEN_BACKLOG = 64

# Timeouts
CLIENT_TIMEOUT = 30.0       # Seconds before an unresponsive peer is declared dead
KEEPALIVE_PROBES = 3        # Unanswered TCP keepalive probes before the drop
CALL_TIMEOUT = 5.0          # Seconds a client waits for one RPC reply
ACCEPT_POLL_INTERVAL = 0.5  # Server housekeeping cadence

# Server metrics
SERVER_METRICS_WINDOW = 10000  # Most recent samples kept per series

# Connection establishment (exponential backoff)
CONNECT_BASE_DELAY = 0.5
CONNECT_BACKOFF_FACTOR = 2.0
CONNECT_MAX_DELAY = 8.0
CONNECT_MAX_ATTEMPTS = 6
MAX_REGISTRATION_ROUNDS = 3  # Fresh connections tried when registration keeps failing

# Registration
REGISTER_MAX_RETRIES = 3
REGISTER_RETRY_INTERVAL = 1.0

# Move submission
MOVE_MAX_RETRIES = 3
MOVE_RETRY_INTERVAL = 1.0

# Polling
POLL_INTERVAL = 0.2          # Seconds between successful polls
POLL_FAILURE_BACKOFF = 1.0   # Multiplied by the consecutive-failure count
POLL_MAX_FAILURES = 10

# Client application
DEFAULT_MAP_FILE = 'maps/default.txt'
CELL_SIZE = 24               # Pixels per grid cell
FRAME_RATE = 30
