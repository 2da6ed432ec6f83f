"""Runtime configuration read from the environment.

Values can be supplied through a ``.env`` file in the working directory
(loaded here, safe no-op if missing) or regular environment variables.
Every component takes explicit arguments that default to these values, so
tests can ignore this module entirely.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


LOGLEVEL = os.getenv("LB_LOGLEVEL", "INFO").upper()

# Participant collection file
STORE_PATH = Path(os.getenv("LB_STORE_PATH", "data/participants.json"))

# Optional relay that fetches profile pages on our behalf: GET <relay>?url=<profile>
RELAY_URL = os.getenv("LB_RELAY_URL") or None

FETCH_TIMEOUT = float(os.getenv("LB_FETCH_TIMEOUT", "15"))

# Batch refresh tuning
BATCH_SIZE = int(os.getenv("LB_BATCH_SIZE", "5"))
BATCH_PAUSE = float(os.getenv("LB_BATCH_PAUSE", "1.0"))
MAX_RETRIES = int(os.getenv("LB_MAX_RETRIES", "2"))
RETRY_BACKOFF = float(os.getenv("LB_RETRY_BACKOFF", "0.5"))
DEDUPE_BEFORE_REFRESH = _flag("LB_DEDUPE_BEFORE_REFRESH", "1")

# Pause between profiles during a roster import
IMPORT_PAUSE = float(os.getenv("LB_IMPORT_PAUSE", "2.0"))

HISTORY_LIMIT = int(os.getenv("LB_HISTORY_LIMIT", "30"))

# rapidfuzz token_sort_ratio at or above which two display names are flagged
NAME_MATCH_THRESHOLD = int(os.getenv("LB_NAME_MATCH_THRESHOLD", "92"))
