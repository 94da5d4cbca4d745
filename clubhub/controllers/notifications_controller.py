# ================================================================================
# NOTIFICATION ROUTES
# ================================================================================
# Per-user inbox and admin broadcasts.
# ================================================================================

from flask import Blueprint, request

from clubhub.controllers.helpers import actor_context, json_body, ok, page_args
from clubhub.services import get_services
from clubhub.utils.authz import require_admin, require_login
from clubhub.utils.errors import ValidationError
from clubhub.utils.validators import parse_bool, sanitize_input

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_login
def list_notifications():
    page, limit = page_args()
    args = request.args
    is_read = args.get("is_read")
    result = get_services().notifications.list(actor_context()["id"], page, limit,
                                               ntype=args.get("type"), priority=args.get("priority"),
                                               is_read=None if is_read in (None, "") else parse_bool(is_read),
                                               include_older=parse_bool(args.get("include_older")))
    return ok(**result)


@notifications_bp.get("/unread-count")
@require_login
def unread_count():
    return ok(count=get_services().notifications.count_unread(actor_context()["id"]))


@notifications_bp.patch("/<notification_id>/read")
@require_login
def mark_read(notification_id):
    is_read = parse_bool(json_body().get("is_read"), default=True)
    notif = get_services().notifications.mark_read(actor_context()["id"], notification_id, is_read)
    return ok(notification=notif)


@notifications_bp.post("/read-all")
@require_login
def mark_all_read():
    return ok(updated=get_services().notifications.mark_all_read(actor_context()["id"]))


@notifications_bp.post("/broadcast")
@require_admin
def broadcast():
    services = get_services()
    data = json_body()
    title = sanitize_input(data.get("title"), 100)
    message = sanitize_input(data.get("message"), 1000)
    if not title or not message:
        raise ValidationError("title and message are required")
    audience = data.get("audience") or "all"
    sent = services.notifications.broadcast(title, message, audience, priority=data.get("priority") or "MEDIUM")
    services.audit.record(actor_context(), "NOTIFICATION_BROADCAST", f"Audience:{audience}",
                          new_value={"title": title, "sent": sent})
    return ok(sent=sent)
