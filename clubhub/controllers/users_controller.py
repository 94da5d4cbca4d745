# ================================================================================
# USER ROUTES
# ================================================================================
# Self-service profile endpoints and admin user management.
# ================================================================================

from flask import Blueprint, request

from clubhub.controllers.helpers import actor_context, json_body, ok, page_args
from clubhub.services import get_services
from clubhub.utils.authz import require_admin, require_coordinator_or_admin, require_login

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


# ---------------- SELF SERVICE ----------------
@users_bp.get("/me")
@require_login
def my_profile():
    return ok(user=get_services().users.get_profile(actor_context()["id"]))


@users_bp.put("/me")
@require_login
def update_my_profile():
    actor = actor_context()
    return ok(user=get_services().users.update_profile(actor["id"], json_body(), actor))


@users_bp.put("/me/password")
@require_login
def change_my_password():
    actor = actor_context()
    data = json_body()
    get_services().users.change_password(actor["id"], data.get("old_password"), data.get("new_password"), actor)
    return ok(message="Password updated")


@users_bp.get("/me/clubs")
@require_login
def my_clubs():
    clubs = get_services().users.my_clubs(actor_context()["id"], request.args.get("role") or None)
    return ok(clubs=clubs)


# ---------------- ADMINISTRATION ----------------
@users_bp.get("")
@require_coordinator_or_admin
def list_users():
    page, limit = page_args()
    filters = {key: request.args.get(key) for key in ("search", "role", "status", "department")}
    return ok(**get_services().users.list_users(filters, page, limit, viewer=actor_context()))


@users_bp.get("/<user_id>")
@require_coordinator_or_admin
def get_user(user_id):
    return ok(user=get_services().users.get_user(user_id))


@users_bp.patch("/<user_id>/role")
@require_admin
def change_role(user_id):
    user = get_services().users.change_global_role(user_id, json_body().get("role"), actor_context())
    return ok(user=user, message="Role updated")


@users_bp.post("/<user_id>/suspend")
@require_admin
def suspend_user(user_id):
    return ok(user=get_services().users.suspend_user(user_id, actor_context()), message="User suspended")


@users_bp.delete("/<user_id>")
@require_admin
def delete_user(user_id):
    deleted = get_services().users.delete_user(user_id, actor_context())
    return ok(user=deleted, message="User deleted")
