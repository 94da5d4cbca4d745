# ================================================================================
# AUTHORIZATION AND AUTHENTICATION UTILITIES
# ================================================================================
# This module handles user sessions and role-based authorization.
# It provides the permission evaluator and the decorators that protect routes.
#
# Roles:
# - Global role (user document): student, coordinator, admin
# - Scoped role (membership document): member, core, secretary, treasurer,
#   leadPR, leadTech, president, vicePresident. Only approved memberships count.
#
# A decorator raises AuthenticationError (401), ValidationError (400),
# NotFoundError (404) or PermissionDenied (403); the app renders them as JSON.
# ================================================================================

from functools import wraps
from flask import current_app, request, session, g

from clubhub.logger import get_logger
from clubhub.utils.errors import AuthenticationError, NotFoundError, PermissionDenied, ValidationError
from clubhub.utils.roles import LEADERSHIP_ROLES

logger = get_logger(__name__)

# Session key for storing user information
SESSION_KEY = "user"  # session['user'] = {'id': ..., 'email': ..., 'role': 'student', 'name': ...}

# ================================================================================
# USER SESSION HELPERS
# ================================================================================

def current_user():
    """
    Return the currently logged-in user dictionary or None.

    Inside a request this is the user document reloaded by load_current_user,
    so role changes and suspensions apply immediately.
    """
    if "current_user" in g:
        return g.current_user
    return session.get(SESSION_KEY)

def login_user(user: dict):
    session[SESSION_KEY] = {
        "id": user["id"],
        "email": user.get("email", ""),
        "role": user.get("role", "student"),
        "name": user.get("name", ""),
    }
    session.permanent = True

def logout_user():
    session.pop(SESSION_KEY, None)

def load_current_user(db):
    """
    Reload the session user from the database into g.current_user.

    Deleted or suspended users are logged out.
    """
    g.current_user = None
    data = session.get(SESSION_KEY)
    if not data or not data.get("id"):
        return None
    user = db.get_user(data["id"])
    if not user or user.get("status") == "suspended":
        logger.info("Dropping session for unavailable user %s", data.get("id"))
        logout_user()
        return None
    user.pop("password_hash", None)
    g.current_user = user
    return user

def _db():
    return current_app.extensions["clubhub"].db

def resolve_param(name: str, view_kwargs: dict | None = None):
    """Look a parameter up in view args, then the JSON body, then the query string."""
    value = (view_kwargs or {}).get(name)
    if not value:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            value = body.get(name)
    if not value:
        value = request.args.get(name)
    return value

# ================================================================================
# PERMISSION EVALUATOR
# ================================================================================

def has_global_role(user, allowed) -> bool:
    return bool(user) and user.get("role") in allowed

def is_assigned_coordinator(user, club) -> bool:
    return bool(user and club) and user.get("role") == "coordinator" and club.get("coordinator_id") == user.get("id")

def has_club_role(db, user_id, club_id, roles) -> bool:
    membership = db.get_membership(club_id, user_id)
    return bool(membership) and membership.get("role") in roles

def permit(db, user, global_roles=(), scoped_roles=(), club_id=None,
           club_param: str = "club_id", allow_global_override: bool = True) -> bool:
    """
    Decide whether user may proceed.

    Global roles are checked first; a match allows. When they don't match and
    overrides are not allowed the request is denied. Scoped roles then require
    an approved membership in club_id holding one of the roles.

    Returns:
        bool: True when allowed

    Raises:
        AuthenticationError, ValidationError, PermissionDenied
    """
    if not user:
        raise AuthenticationError("Authentication required")

    if global_roles:
        if has_global_role(user, global_roles):
            return True
        if not allow_global_override:
            raise PermissionDenied("Insufficient global permissions")

    if scoped_roles:
        if not club_id:
            raise ValidationError(f"{club_param} is required")
        if has_club_role(db, user["id"], club_id, scoped_roles):
            return True
        raise PermissionDenied("Insufficient club permissions")

    if not global_roles and not scoped_roles:
        return True

    raise PermissionDenied("Access denied: insufficient permissions")

# ================================================================================
# AUTHORIZATION DECORATORS
# ================================================================================

def require_login(view_func):
    """
    Decorator to require user login for accessing a route.

    Usage:
        @require_login
        def protected_route():
            ...
    """
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        permit(_db(), current_user())
        return view_func(*args, **kwargs)
    return wrapper

def require_global(*roles):
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            permit(_db(), current_user(), global_roles=roles, allow_global_override=False)
            return view_func(*args, **kwargs)
        return wrapper
    return decorator

require_admin = require_global("admin")
require_coordinator_or_admin = require_global("coordinator", "admin")

def require_scoped(roles, club_param: str = "club_id"):
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            permit(_db(), current_user(), scoped_roles=roles,
                   club_id=resolve_param(club_param, kwargs), club_param=club_param,
                   allow_global_override=False)
            return view_func(*args, **kwargs)
        return wrapper
    return decorator

def require_either(global_roles, scoped_roles, club_param: str = "club_id"):
    """Allow a matching global role OR a matching scoped role in the club."""
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            permit(_db(), current_user(), global_roles=global_roles, scoped_roles=scoped_roles,
                   club_id=resolve_param(club_param, kwargs), club_param=club_param)
            return view_func(*args, **kwargs)
        return wrapper
    return decorator

def require_assigned_coordinator(club_param: str = "club_id"):
    """Admins, or the coordinator assigned to the club."""
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            user = current_user()
            if not user:
                raise AuthenticationError("Authentication required")
            if user.get("role") != "admin":
                if user.get("role") != "coordinator":
                    raise PermissionDenied("Coordinator or Admin access required")
                club_id = resolve_param(club_param, kwargs)
                if not club_id:
                    raise ValidationError(f"{club_param} is required")
                club = _db().get_club(club_id)
                if not club:
                    raise NotFoundError("Club not found")
                if not is_assigned_coordinator(user, club):
                    raise PermissionDenied("Access denied: You are not assigned to this club")
            return view_func(*args, **kwargs)
        return wrapper
    return decorator

def require_admin_or_coordinator_or_club_role(roles, club_param: str = "club_id"):
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            user = current_user()
            if not user:
                raise AuthenticationError("Authentication required")
            if user.get("role") == "admin":
                return view_func(*args, **kwargs)
            club_id = resolve_param(club_param, kwargs)
            if not club_id:
                raise ValidationError(f"{club_param} is required")
            db = _db()
            if user.get("role") == "coordinator" and is_assigned_coordinator(user, db.get_club(club_id)):
                return view_func(*args, **kwargs)
            if roles and has_club_role(db, user["id"], club_id, roles):
                return view_func(*args, **kwargs)
            raise PermissionDenied("Access denied: Insufficient permissions")
        return wrapper
    return decorator

def require_president(club_param: str = "club_id"):
    """Admins, or the approved president of the club."""
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            user = current_user()
            if not user:
                raise AuthenticationError("Authentication required")
            if user.get("role") != "admin":
                club_id = resolve_param(club_param, kwargs)
                if not club_id:
                    raise ValidationError(f"{club_param} is required")
                membership = _db().get_membership(club_id, user["id"])
                if not membership:
                    raise PermissionDenied("Not a member of this club")
                if membership.get("role") != "president":
                    raise PermissionDenied(f"President access required. Your role: {membership.get('role')}")
            return view_func(*args, **kwargs)
        return wrapper
    return decorator

def can_manage_event(db, user, event, roles=LEADERSHIP_ROLES) -> bool:
    """Admin, the primary club's assigned coordinator, or a holder of roles in any organizing club."""
    if not user or not event:
        return False
    if user.get("role") == "admin":
        return True
    if user.get("role") == "coordinator" and is_assigned_coordinator(user, db.get_club(event.get("club_id"))):
        return True
    club_ids = [event.get("club_id")] + list(event.get("participating_clubs") or [])
    return any(has_club_role(db, user["id"], club_id, roles) for club_id in club_ids if club_id)

def require_event_manager(roles, event_param: str = "event_id"):
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            user = current_user()
            if not user:
                raise AuthenticationError("Authentication required")
            if user.get("role") != "admin":
                event_id = kwargs.get(event_param)
                if not event_id:
                    raise ValidationError("Event ID is required")
                db = _db()
                event = db.get_event(event_id)
                if not event:
                    raise NotFoundError("Event not found")
                if not can_manage_event(db, user, event, roles):
                    raise PermissionDenied("Access denied: Not assigned coordinator or club member")
            return view_func(*args, **kwargs)
        return wrapper
    return decorator
