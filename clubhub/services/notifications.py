# ================================================================================
# NOTIFICATION SERVICE
# ================================================================================
# Fire-and-forget per-user notifications.
#
# - A notification for the same (user, type) created inside the dedup window
#   is returned instead of creating a new one. For role_assigned the payload
#   role must match too.
# - Titles and messages come from NOTIFICATION_TEMPLATES unless given.
# - Listing shows the last NOTIFICATION_VISIBLE_DAYS days by default.
# ================================================================================

from datetime import timedelta

from clubhub.logger import get_logger
from clubhub.utils.clock import now_iso, to_iso, utcnow
from clubhub.utils.errors import NotFoundError, ValidationError
from clubhub.utils.roles import GLOBAL_ROLES
from clubhub.utils.validators import paginate

logger = get_logger(__name__)

PRIORITIES = ("LOW", "MEDIUM", "HIGH", "URGENT")

NOTIFICATION_TEMPLATES = {
    # membership
    "role_assigned": ("New Role Assigned", "You've been assigned as {role} in {club_name}"),
    "role_removed": ("Role Removed", "Your role in {club_name} has been updated"),
    "global_role_changed": ("Account Role Changed", "Your account role is now {role}"),
    # clubs
    "approval_required": ("Approval Required", "{club_name} is waiting for your approval: {message}"),
    "settings_approved": ("Settings Approved", "Requested changes to {club_name} were approved"),
    "settings_rejected": ("Settings Rejected", "Requested changes to {club_name} were rejected"),
    "archive_approved": ("Archive Approved", "{club_name} has been archived"),
    "archive_rejected": ("Archive Rejected", "The archive request for {club_name} was rejected"),
    # events
    "event_published": ("Event Published", "{event_title} is now live! Check it out"),
    "event_rejected": ("Event Rejected", "{event_title} was sent back to draft: {reason}"),
    "event_cancelled": ("Event Cancelled", "{event_title} has been cancelled"),
    "event_started": ("Event Started", "{event_title} is now ongoing"),
    "completion_required": ("Event Materials Required", "Upload {missing} for {event_title} by {deadline}"),
    "completion_reminder": ("Completion Reminder", "{event_title} still needs {missing}. Deadline: {deadline}"),
    "completion_urgent": ("Urgent: Completion Deadline", "{event_title} will be marked incomplete on {deadline}. Missing: {missing}"),
    "event_completed": ("Event Completed", "{event_title} has been marked completed"),
    "event_incomplete": ("Event Incomplete", "{event_title} was marked incomplete: {reason}"),
    "budget_override": ("Coordinator Override", "{event_title}: {message}"),
    # recruitment
    "recruitment_opened": ("Recruitment Now Open", "Applications are now open for {club_name}"),
    "recruitment_closed": ("Recruitment Closed", "Recruitment for {club_name} has closed"),
    "application_received": ("Application Received", "Your application to {club_name} has been received"),
    "application_approved": ("Application Approved", "Congratulations! You've been accepted to {club_name}"),
    "application_rejected": ("Application Update", "Your application to {club_name} was not successful this time"),
    # system
    "system": ("System Notification", "{message}"),
    "announcement": ("{title}", "{message}"),
}

_DEFAULTS = {
    "club_name": "the club",
    "event_title": "the event",
    "role": "member",
    "message": "You have a new notification",
    "title": "Announcement",
    "reason": "",
    "missing": "materials",
    "deadline": "",
}


class _Values(dict):
    def __missing__(self, key):
        return ""


def render_notification(ntype: str, payload: dict | None = None):
    """Return (title, message) for a notification type and payload."""
    values = _Values(_DEFAULTS)
    for key, value in (payload or {}).items():
        if value is None or value == "":
            continue
        values[key] = ", ".join(str(v) for v in value) if isinstance(value, (list, tuple)) else value
    title, message = NOTIFICATION_TEMPLATES.get(ntype, (ntype.replace("_", " ").title(), "{message}"))
    return title.format_map(values), message.format_map(values)


class NotificationService:
    def __init__(self, db, config=None):
        self.db = db
        config = config or {}
        self.dedup_minutes = int(config.get("NOTIFICATION_DEDUP_MINUTES", 60))
        self.visible_days = int(config.get("NOTIFICATION_VISIBLE_DAYS", 30))

    def _find_duplicate(self, user_id, ntype, payload):
        cutoff = to_iso(utcnow() - timedelta(minutes=self.dedup_minutes))
        recent = self.db.query("notifications", [
            ("user_id", "==", user_id),
            ("type", "==", ntype),
            ("created_at", ">=", cutoff),
        ], order_by="created_at", descending=True)
        if ntype == "role_assigned" and payload.get("role"):
            recent = [n for n in recent if (n.get("payload") or {}).get("role") == payload["role"]]
        return recent[0] if recent else None

    def create(self, user_id, ntype: str, payload: dict | None = None, priority: str = "MEDIUM",
               title: str | None = None, message: str | None = None) -> dict:
        payload = dict(payload or {})
        existing = self._find_duplicate(user_id, ntype, payload)
        if existing:
            logger.info("Duplicate notification prevented: %s for user %s", ntype, user_id)
            return existing

        default_title, default_message = render_notification(ntype, payload)
        doc = {
            "user_id": user_id,
            "type": ntype,
            "payload": payload,
            "priority": priority if priority in PRIORITIES else "MEDIUM",
            "title": title or default_title,
            "message": message or default_message,
            "is_read": False,
            "created_at": now_iso(),
        }
        doc["id"] = self.db.insert("notifications", doc)
        return doc

    def notify_many(self, user_ids, ntype: str, payload: dict | None = None, priority: str = "MEDIUM",
                    title: str | None = None, message: str | None = None) -> int:
        """Notify each recipient once. A failing recipient is logged and skipped."""
        sent = 0
        for user_id in dict.fromkeys(u for u in user_ids if u):
            try:
                self.create(user_id, ntype, payload, priority, title, message)
                sent += 1
            except Exception:
                logger.exception("Failed to notify user %s (%s)", user_id, ntype)
        return sent

    def list(self, user_id, page: int = 1, limit: int = 20, ntype=None, priority=None,
             is_read=None, include_older: bool = False) -> dict:
        filters = [("user_id", "==", user_id)]
        cutoff = to_iso(utcnow() - timedelta(days=self.visible_days))
        if not include_older:
            filters.append(("created_at", ">=", cutoff))
        if ntype:
            filters.append(("type", "==", ntype))
        if priority:
            filters.append(("priority", "==", priority))
        if is_read is not None:
            filters.append(("is_read", "==", bool(is_read)))

        items = self.db.query("notifications", filters, order_by="created_at", descending=True)
        result = paginate(items, page, limit)
        result["notifications"] = result.pop("items")
        result["has_older"] = (not include_older) and self.db.count(
            "notifications", [("user_id", "==", user_id), ("created_at", "<", cutoff)]) > 0
        return result

    def mark_read(self, user_id, notification_id, is_read: bool = True) -> dict:
        notif = self.db.get("notifications", notification_id)
        if not notif or notif.get("user_id") != user_id:
            raise NotFoundError("Notification not found")
        self.db.update("notifications", notification_id, {"is_read": bool(is_read)})
        notif["is_read"] = bool(is_read)
        return notif

    def mark_all_read(self, user_id) -> int:
        unread = self.db.query("notifications", [("user_id", "==", user_id), ("is_read", "==", False)])
        for notif in unread:
            self.db.update("notifications", notif["id"], {"is_read": True})
        return len(unread)

    def count_unread(self, user_id) -> int:
        return self.db.count("notifications", [("user_id", "==", user_id), ("is_read", "==", False)])

    def broadcast(self, title: str, message: str, audience: str = "all", priority: str = "MEDIUM") -> int:
        if audience != "all" and audience not in GLOBAL_ROLES:
            raise ValidationError("audience must be all, student, coordinator or admin")
        filters = [] if audience == "all" else [("role", "==", audience)]
        user_ids = [u["id"] for u in self.db.query("users", filters) if u.get("status") != "suspended"]
        sent = self.notify_many(user_ids, "announcement", {"title": title, "message": message},
                                priority=priority, title=title, message=message)
        logger.info("Broadcast '%s' sent to %d users (%s)", title, sent, audience)
        return sent
