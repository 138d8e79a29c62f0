"""
Engine configuration read from environment variables.

All values are resolved once at import time, the same way database.py and
logging_config.py read DATABASE_URL and LOG_LEVEL. Services receive these
values as constructor defaults so tests can pass their own.
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ──────────────────────────────────────────────────────────────
# Scoring
# ──────────────────────────────────────────────────────────────
PASS_THRESHOLD_PERCENT = float(os.getenv("PASS_THRESHOLD_PERCENT", "40"))

# ──────────────────────────────────────────────────────────────
# Timer and snapshot persistence
# ──────────────────────────────────────────────────────────────
TICK_INTERVAL_SECONDS = float(os.getenv("TICK_INTERVAL_SECONDS", "1"))
SNAPSHOT_SAVE_INTERVAL_SECONDS = float(os.getenv("SNAPSHOT_SAVE_INTERVAL_SECONDS", "5"))
SNAPSHOT_WARNING_AFTER_FAILURES = int(os.getenv("SNAPSHOT_WARNING_AFTER_FAILURES", "3"))

# Server-side deadline (off by default: the clock pauses while the page is closed)
ENFORCE_DEADLINE = _env_bool("ENFORCE_DEADLINE", False)
DEADLINE_GRACE_SECONDS = int(os.getenv("DEADLINE_GRACE_SECONDS", "5"))

# ──────────────────────────────────────────────────────────────
# Question generation
# ──────────────────────────────────────────────────────────────
GENERATION_POLICY = os.getenv("GENERATION_POLICY", "best_effort").strip().lower()
QUESTION_GENERATOR_URL = os.getenv("QUESTION_GENERATOR_URL", "http://localhost:3400")
QUESTION_GENERATOR_TIMEOUT_SECONDS = float(os.getenv("QUESTION_GENERATOR_TIMEOUT_SECONDS", "60"))

# ──────────────────────────────────────────────────────────────
# Eligibility
# ──────────────────────────────────────────────────────────────
ONLINE_MODALITY = os.getenv("ONLINE_MODALITY", "online").strip().lower()

# Shared secret that marks a request as coming from an administrator, who may
# enter a session without the name check. Unset disables admin entry.
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN") or None
