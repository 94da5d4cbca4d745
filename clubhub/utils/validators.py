# ================================================================================
# INPUT VALIDATION UTILITIES
# ================================================================================
# Validation and normalisation of request payloads: user identity fields,
# scoped/global roles, pagination, and the club and event forms. Invalid
# input raises ValidationError (HTTP 400).
# ================================================================================

import re
from datetime import datetime

from clubhub.logger import get_logger
from clubhub.utils.clock import parse_datetime, to_iso, utcnow
from clubhub.utils.errors import ValidationError
from clubhub.utils.roles import CLUB_ROLES, GLOBAL_ROLES

logger = get_logger(__name__)
logger.debug("validators module loaded")

ROLL_NUMBER_PATTERN = r"^[0-9]{2}[Bb][Dd][A-Za-z0-9]{6}$"
CLUB_CATEGORIES = ("technical", "cultural", "sports", "arts", "social", "other")
MIN_PASSWORD_LENGTH = 8

def valid_email(email: str) -> bool:
    """
    Validate an email address.

    Validation Rules:
    - Username part allows alphanumeric, underscore, period, hyphen, plus sign
    - TLD part ensures at least 2 characters
    - Prevents double periods and leading/trailing periods

    Args:
        email (str): Email address to validate

    Returns:
        bool: True if email is valid, False otherwise
    """
    if not email:
        return False

    email = email.strip()

    if '..' in email or email.startswith('.') or email.endswith('.'):
        return False

    pattern = r"^[A-Za-z0-9][\w.%+-]*@([A-Za-z0-9][\w-]*\.)+[A-Za-z]{2,}$"
    return re.match(pattern, email) is not None

def normalize_email(email: str) -> str:
    if not email:
        return ""
    if not isinstance(email, str):
        raise ValidationError("email must be a string")
    return email.strip().lower()

def valid_roll_number(roll_number: str) -> bool:
    return bool(roll_number and re.match(ROLL_NUMBER_PATTERN, roll_number.strip()))

def validate_name(name: str, min_len: int = 2, max_len: int = 80) -> bool:
    if not name:
        return False
    s = name.strip()
    if len(s) < min_len or len(s) > max_len:
        return False
    if re.search(r'[\x00-\x1f\x7f]', s):
        return False
    return True

def validate_role(role: str) -> bool:
    """True if role is one of the scoped club roles."""
    return bool(role and role in CLUB_ROLES)

def validate_global_role(role: str) -> bool:
    return bool(role and role in GLOBAL_ROLES)

def validate_password(password: str) -> bool:
    return bool(password) and len(password) >= MIN_PASSWORD_LENGTH

def sanitize_input(text: str, max_len: int = 500) -> str:
    if text is None:
        return ""
    s = re.sub(r'[\x00-\x1f\x7f]', '', str(text))
    s = s.strip()
    if max_len and len(s) > max_len:
        s = s[:max_len]
    return s

# ================================================================================
# GENERIC FIELD HELPERS
# ================================================================================

def string_field(data: dict, field: str) -> str:
    """Stripped string value of a JSON field; "" when absent."""
    value = data.get(field)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip()

def require_id(data: dict, field: str) -> str:
    value = string_field(data, field)
    if not value:
        raise ValidationError(f"{field} is required")
    return value

def require_text(data: dict, field: str, max_len: int, label: str | None = None) -> str:
    value = sanitize_input(data.get(field), max_len=0)
    if not value:
        raise ValidationError(f"{label or field} is required")
    if len(value) > max_len:
        raise ValidationError(f"{label or field} must be at most {max_len} characters")
    return value

def optional_text(data: dict, field: str, max_len: int) -> str:
    value = sanitize_input(data.get(field), max_len=0)
    if len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return value

def parse_number(value, field: str, minimum: float = 0, integer: bool = False):
    if value is None or value == "":
        return None
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return number

def parse_bool(value, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}

def parse_string_list(value, field: str) -> list:
    """Accept a list of strings or a comma separated string."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    raise ValidationError(f"{field} must be a list")

def parse_iso(value, field: str) -> datetime:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date format for {field}")

def parse_pagination(args, default_limit: int = 20, max_limit: int = 100):
    """
    Read page/limit from query args.

    Returns:
        tuple: (page, limit) with page >= 1 and 1 <= limit <= max_limit
    """
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}")
    return page, limit

def paginate(items: list, page: int, limit: int) -> dict:
    start = (page - 1) * limit
    return {"total": len(items), "page": page, "limit": limit, "items": items[start:start + limit]}

# ================================================================================
# CLUB PAYLOADS
# ================================================================================

def validate_category(category: str) -> str:
    value = (category or "").strip().lower()
    if value not in CLUB_CATEGORIES:
        raise ValidationError(f"Category must be one of: {', '.join(CLUB_CATEGORIES)}")
    return value

def validate_club_create(data: dict) -> dict:
    name = require_text(data, "name", 100, "Name")
    if not validate_name(name, max_len=100):
        raise ValidationError("Invalid club name")
    coordinator = require_id(data, "coordinator_id")
    president = require_id(data, "president_id")
    return {
        "name": name,
        "description": require_text(data, "description", 1000, "Description"),
        "category": validate_category(data.get("category")),
        "vision": optional_text(data, "vision", 500),
        "mission": optional_text(data, "mission", 500),
        "coordinator_id": coordinator,
        "president_id": president,
        "core_members": parse_string_list(data.get("core_members"), "core_members"),
    }

# ================================================================================
# EVENT PAYLOADS
# ================================================================================

EVENT_TEXT_LIMITS = {"title": 100, "description": 1000, "objectives": 500, "venue": 200}

def _event_fields(data: dict, partial: bool) -> dict:
    out = {}
    if not partial or "title" in data:
        out["title"] = require_text(data, "title", EVENT_TEXT_LIMITS["title"], "Title")
    for field in ("description", "objectives", "venue"):
        if field in data:
            out[field] = optional_text(data, field, EVENT_TEXT_LIMITS[field])
    if not partial or "duration" in data:
        duration = parse_number(data.get("duration"), "duration", integer=True)
        if duration is None:
            raise ValidationError("duration is required")
        out["duration"] = duration
    for field in ("capacity", "expected_attendees"):
        if field in data:
            out[field] = parse_number(data.get(field), field, integer=True)
    if "budget" in data:
        out["budget"] = parse_number(data.get("budget"), "budget") or 0
    if "is_public" in data:
        out["is_public"] = parse_bool(data.get("is_public"), default=True)
    if "guest_speakers" in data:
        out["guest_speakers"] = parse_string_list(data.get("guest_speakers"), "guest_speakers")
    if "participating_clubs" in data:
        out["participating_clubs"] = parse_string_list(data.get("participating_clubs"), "participating_clubs")
    return out

def validate_event_create(data: dict, now: datetime | None = None) -> dict:
    club_id = require_id(data, "club_id")
    if not data.get("date_time"):
        raise ValidationError("Event date is required")
    when = parse_iso(data.get("date_time"), "date_time")
    if when <= (now or utcnow()):
        raise ValidationError("Event date must be in the future")

    out = _event_fields(data, partial=False)
    out["club_id"] = club_id
    out["date_time"] = to_iso(when)
    out.setdefault("budget", 0)
    out.setdefault("is_public", True)
    out.setdefault("guest_speakers", [])
    out["participating_clubs"] = [c for c in out.get("participating_clubs", []) if c != club_id]
    return out

def validate_event_update(data: dict) -> dict:
    out = _event_fields(data, partial=True)
    if "date_time" in data:
        out["date_time"] = to_iso(parse_iso(data.get("date_time"), "date_time"))
    if not out:
        raise ValidationError("No valid fields to update")
    return out
