"""
Runtime configuration.
All values come from the environment (optionally via a .env file loaded in main.py).
"""

import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ─── Database ──────────────────────────────────────────────────────────────────

POSTGRES_USER = os.getenv("POSTGRES_USER", "tos_user")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "tos_pass")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "localhost")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")
POSTGRES_DB = os.getenv("POSTGRES_DB", "tos_builder")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)

# ─── Auth ──────────────────────────────────────────────────────────────────────

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "tos-builder-secret-key-change-in-production")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@org.com")
DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "admin")

# ─── AI backend ────────────────────────────────────────────────────────────────

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
GPT_MODEL = os.getenv("GPT_MODEL", "gpt-4o-mini")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
AI_GENERATION_ENABLED = _flag("AI_GENERATION_ENABLED", "true")
CLASSIFIER_USE_LLM = _flag("CLASSIFIER_USE_LLM", "false")

# ─── Classification / similarity thresholds ────────────────────────────────────

CLASSIFIER_CONFIDENCE_THRESHOLD = float(os.getenv("CLASSIFIER_CONFIDENCE_THRESHOLD", "0.7"))
CLASSIFIER_QUALITY_THRESHOLD = float(os.getenv("CLASSIFIER_QUALITY_THRESHOLD", "0.6"))
READABILITY_GRADE_LIMIT = float(os.getenv("READABILITY_GRADE_LIMIT", "12"))

SIMILARITY_ALGORITHM = os.getenv("SIMILARITY_ALGORITHM", "token_cosine")
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.7"))
REDUNDANCY_THRESHOLD = float(os.getenv("REDUNDANCY_THRESHOLD", "0.85"))
LOW_COHERENCE_THRESHOLD = 0.6
SIMILARITY_BANK_WARN_SIZE = int(os.getenv("SIMILARITY_BANK_WARN_SIZE", "500"))

# ─── Background metrics ────────────────────────────────────────────────────────

METRICS_MIN_INTERVAL_MINUTES = int(os.getenv("METRICS_MIN_INTERVAL_MINUTES", "30"))
METRICS_LOOP_ENABLED = _flag("METRICS_LOOP_ENABLED", "true")
