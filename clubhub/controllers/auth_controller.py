# ================================================================================
# AUTH ROUTES
# ================================================================================
# Registration, login and logout. The session user is reloaded on every
# request, so suspended users are dropped on their next call.
# ================================================================================

from flask import Blueprint

from clubhub.controllers.helpers import actor_context, json_body, ok
from clubhub.logger import get_logger
from clubhub.services import get_services
from clubhub.utils.authz import login_user, logout_user, require_login

logger = get_logger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register():
    user = get_services().users.register(json_body())
    login_user(user)
    return ok(201, user=user, message="Registration successful")


@auth_bp.post("/login")
def login():
    data = json_body()
    user = get_services().users.authenticate(data.get("email"), data.get("password"))
    login_user(user)
    logger.info("User %s logged in", user["id"])
    return ok(user=user)


@auth_bp.post("/logout")
def logout():
    logout_user()
    return ok(message="Logged out")


@auth_bp.get("/me")
@require_login
def me():
    return ok(user=get_services().users.get_profile(actor_context()["id"]))
