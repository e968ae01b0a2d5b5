"""Runtime configuration and matching heuristics.

Environment variables are read once at import time (after loading an
optional ``.env`` file). The numeric thresholds below were tuned
empirically against the registry and office feeds; changing them changes
which names are considered the same person or organization.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = Path(__file__).parent.parent

# Backing stores
REGISTRY_DATABASE_URL = os.getenv("REGISTRY_DATABASE_URL", "")
REGISTRY_AUTH_TOKEN = os.getenv("REGISTRY_AUTH_TOKEN", "")

OFFICE_FEED_URL = os.getenv(
    "OFFICE_FEED_URL",
    "https://analisi.transparenciacatalunya.cat/resource/m5nd-xjza.json",
)
SOCRATA_APP_TOKEN = os.getenv("SOCRATA_APP_TOKEN", "")

TOP_PERSONS_CSV_PATH = Path(
    os.getenv(
        "TOP_PERSONS_CSV_PATH",
        str(PROJECT_ROOT / "data" / "persones_network" / "top250_active_operacions.csv"),
    )
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Name matching
MAX_QUERY_TOKENS = 6
MAX_PARTICLE_WORDS = 3
ORG_MATCH_MIN_SCORE = 0.5
PERSON_OFFICE_MIN_SCORE = 0.6
# A later holder scoring below this against the incumbent is a different person
SUCCESSION_MAX_SCORE = 0.5

# Minimum query lengths (after trimming)
MIN_PERSON_SEARCH_LENGTH = 3
MIN_PROFILE_QUERY_LENGTH = 2
MIN_ORG_QUERY_LENGTH = 2

# Caching and backoff (seconds)
SEARCH_CACHE_TTL_SECONDS = 180
PROFILE_CACHE_TTL_SECONDS = 300
MAX_CACHE_ITEMS = 500
ACCESS_BLOCKED_COOLDOWN_SECONDS = 120

# Store limits
MAX_OFFICE_ROWS = 1000
MAX_PERSON_OFFICE_ROWS = 200
MAX_POSITION_KEYS = 40
MAX_TIMELINE_ROWS = 5000
MAX_ALTERNATE_SUGGESTIONS = 3
# rapidfuzz token_set_ratio (0-100) an alternate name must reach
MIN_SUGGESTION_RATIO = 50
OFFICE_FEED_TIMEOUT = 30.0

# Pagination
DEFAULT_SEARCH_LIMIT = 8
DEFAULT_PAGE_SIZE = 50
MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 200
MAX_SEARCH_PAGE = 10_000

REGISTRY_ROLE_KINDS: tuple[str, ...] = (
    "ADMINISTRADOR",
    "APODERADO",
    "ORGANO_GOBIERNO",
    "LIQUIDADOR",
    "SOCIO_UNICO",
    "SOCIO",
    "ACCIONISTA_UNICO",
)

SEAT_SENTINEL = "_"
