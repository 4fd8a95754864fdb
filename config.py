"""
NIBBLEPOW Configuration
Proof-of-work search client settings.
"""

from typing import Dict, Any
import os

# ============================================================================
# CLIENT IDENTITY
# ============================================================================

CLIENT_NAME = "NIBBLEPOW"
CLIENT_VERSION = "1.0.0"
USER_AGENT = f"nibblepow-miner/{CLIENT_VERSION}"

# ============================================================================
# COORDINATOR
# ============================================================================

# Job descriptor endpoint (GET) - submissions go to COORDINATOR_URL + SUBMIT_PATH
COORDINATOR_URL = os.environ.get('NIBBLEPOW_COORDINATOR', 'http://127.0.0.1:9608')
SUBMIT_PATH = "/submit"

# Request timeout (seconds) for every fetch and submit
HTTP_TIMEOUT = float(os.environ.get('NIBBLEPOW_HTTP_TIMEOUT', 10))

# Submission retries before giving up on a solution
SUBMIT_MAX_RETRIES = 5

# Exponential backoff: BACKOFF_BASE * 2**attempt, capped at BACKOFF_MAX
BACKOFF_BASE = 0.5
BACKOFF_MAX = 30.0

# ============================================================================
# SEARCH ENGINE
# ============================================================================

# Search threads per job cycle
DEFAULT_WORKER_COUNT = int(os.environ.get('NIBBLEPOW_WORKERS', 16))

# Coordinator tick: job poll + result check (seconds)
POLL_INTERVAL = float(os.environ.get('NIBBLEPOW_POLL_INTERVAL', 0.1))

# Hashes between hash-counter updates in a worker
WORKER_BATCH_SIZE = 1000

# Max seconds to wait for each worker after cancellation
WORKER_JOIN_TIMEOUT = 5.0

# Hashrate log interval (seconds)
STATS_INTERVAL = 30

# ============================================================================
# JOB LAYOUT
# ============================================================================

# Nonce region inside the encoded job blob: bytes [4, 20)
NONCE_OFFSET = 4
NONCE_LENGTH = 16

# Double SHA-256 output size
HASH_LENGTH = 32

# Typed field positions in the job's field list
FIELD_REQUIRED_ZEROES = 3
FIELD_REQUIRED_DIFFICULTY = 4

# ============================================================================
# DATA DIRECTORY
# ============================================================================

DATA_DIR = os.environ.get('NIBBLEPOW_DATA', os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data'))
MINER_CONFIG_FILE = os.path.join(DATA_DIR, 'miner.json')


def get_miner_defaults() -> Dict[str, Any]:
    """
    Default miner settings, before the settings file and CLI flags.

    Returns:
        Dictionary of coordinator URL, worker count and poll interval
    """
    return {
        'url': COORDINATOR_URL,
        'workers': DEFAULT_WORKER_COUNT,
        'poll_interval': POLL_INTERVAL,
    }


def backoff_delay(attempt: int, base: float = BACKOFF_BASE, maximum: float = BACKOFF_MAX) -> float:
    """
    Delay before retry number `attempt` (0-based).

    Args:
        attempt: Number of failures so far minus one
        base: Delay for the first retry
        maximum: Upper bound on any delay

    Returns:
        Seconds to sleep
    """
    return min(base * (2 ** max(attempt, 0)), maximum)
