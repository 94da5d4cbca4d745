# ================================================================================
# APPLICATION CONFIGURATION
# ================================================================================
# All runtime settings come from environment variables (a local .env file is
# loaded first). The Flask app loads this class with app.config.from_object().
# ================================================================================

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret-key")
    PERMANENT_SESSION_LIFETIME = 60 * 60 * 6  # 6 hours
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    PORT = int(os.getenv("PORT", 5002))
    DEBUG = _env_bool("FLASK_DEBUG")
    START_SCHEDULERS = _env_bool("START_SCHEDULERS")

    # Business rules
    ADMIN_APPROVAL_BUDGET = float(os.getenv("ADMIN_APPROVAL_BUDGET", 5000))
    MAX_CLUBS_PER_STUDENT = int(os.getenv("MAX_CLUBS_PER_STUDENT", 3))
    NOTIFICATION_DEDUP_MINUTES = int(os.getenv("NOTIFICATION_DEDUP_MINUTES", 60))
    NOTIFICATION_VISIBLE_DAYS = int(os.getenv("NOTIFICATION_VISIBLE_DAYS", 30))
    COMPLETION_WINDOW_DAYS = int(os.getenv("COMPLETION_WINDOW_DAYS", 7))
    MIN_COMPLETION_PHOTOS = int(os.getenv("MIN_COMPLETION_PHOTOS", 5))

    # Pagination
    PAGE_SIZE = int(os.getenv("PAGE_SIZE", 20))
    MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", 100))
