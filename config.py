# ============================
# ROBOTEVENTS ENGINE GLOBAL CONFIG
# ============================

import os


def _env_int(name, default):
    value = os.getenv(name, "")
    try:
        return int(value) if value.strip() else default
    except ValueError:
        return default


def _env_float(name, default):
    value = os.getenv(name, "")
    try:
        return float(value) if value.strip() else default
    except ValueError:
        return default


# ========= UPSTREAM API =========

ROBOTEVENTS_BASE_URL = os.getenv("ROBOTEVENTS_BASE_URL", "https://www.robotevents.com/api/v2")

# ========= API KEYS =========
# Numbered keys: ROBOTEVENTS_API_KEY_1 .. ROBOTEVENTS_API_KEY_20
# Team browser keys: ROBOTEVENTS_TEAM_BROWSER_KEY_1 .. _20
# ROBOTEVENTS_API_KEY is only read when no numbered general key is set.

MAX_NUMBERED_KEYS = 20

GENERAL_KEY_PREFIX = "ROBOTEVENTS_API_KEY_"
TEAM_BROWSER_KEY_PREFIX = "ROBOTEVENTS_TEAM_BROWSER_KEY_"
LEGACY_KEY_ENV = "ROBOTEVENTS_API_KEY"

# ============================
# KEY ROTATION
# ============================

CALLS_BEFORE_ROTATION = _env_int("CALLS_BEFORE_ROTATION", 20)      # rotate every 20 selections
MAX_CYCLES_BEFORE_FALLBACK = _env_int("MAX_CYCLES_BEFORE_FALLBACK", 2)
FAILED_KEY_RESET_SECONDS = _env_int("FAILED_KEY_RESET_SECONDS", 3600)  # 1 hour

# ============================
# REQUEST PACING
# ============================

REQUEST_MIN_DELAY_MS = _env_int("REQUEST_MIN_DELAY_MS", 100)
RATE_LIMIT_DEFAULT_WAIT = _env_float("RATE_LIMIT_DEFAULT_WAIT", 5.0)   # seconds, when no Retry-After

# ============================
# PAGINATION
# ============================

MAX_PAGE_SIZE = 250      # upstream per_page cap
MAX_PAGES = 200          # safety cap for paged loops

# ============================
# TEAM RESOLUTION CACHE
# ============================

TEAM_CACHE_TTL_HOURS = _env_float("TEAM_CACHE_TTL_HOURS", 24)
TEAM_CACHE_STORAGE_KEY = "robotevents_team_cache"
KV_STORE_DB = os.getenv("KV_STORE_DB", "data/kv_store.db")

# ============================
# LOGGING
# ============================

LOG_DIR = os.getenv("LOG_DIR", "data/logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ============================
# PROGRAMS
# ============================

DEFAULT_PROGRAM = os.getenv("DEFAULT_PROGRAM", "VEX V5 Robotics Competition")

PROGRAM_IDS = {
    "VEX V5 Robotics Competition": 1,
    "VEX U Robotics Competition": 4,
    "VEX IQ Robotics Competition": 41,
    "VEX AI Robotics Competition": 57,
    "Aerial Drone Competition": 44,
    "VEX AIR Drone Competition": 58,
}
