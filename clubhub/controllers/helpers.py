# ================================================================================
# CONTROLLER HELPERS
# ================================================================================
# Shared request/response plumbing for the API blueprints.
# ================================================================================

from flask import current_app, jsonify, make_response, request

from clubhub.utils.authz import current_user
from clubhub.utils.validators import parse_pagination


def ok(status: int = 200, **data):
    body = {"success": True}
    body.update(data)
    return jsonify(body), status


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def page_args():
    """(page, limit) from the query string using the app's page size settings."""
    return parse_pagination(request.args, current_app.config.get("PAGE_SIZE", 20),
                            current_app.config.get("MAX_PAGE_SIZE", 100))


def actor_context() -> dict | None:
    """The logged-in user plus request metadata, as passed to services and the audit log."""
    user = current_user()
    if not user:
        return None
    ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
    return {
        "id": user["id"],
        "role": user.get("role", "student"),
        "name": user.get("name", ""),
        "email": user.get("email", ""),
        "ip": ip.split(",")[0].strip(),
        "user_agent": request.headers.get("User-Agent", ""),
    }


def csv_response(text: str, name: str):
    resp = make_response(text)
    resp.headers["Content-Type"] = "text/csv; charset=utf-8"
    fname = f"{(name or 'export').replace(' ', '_').lower()}.csv"
    resp.headers["Content-Disposition"] = f'attachment; filename="{fname}"'
    return resp
