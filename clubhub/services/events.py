# ================================================================================
# EVENT LIFECYCLE SERVICE
# ================================================================================
# Events move through a single status field:
#
#   draft -> pending_coordinator -> [pending_admin] -> published -> ongoing
#         -> pending_completion -> completed | incomplete
#   (coordinator override may move any open event to archived)
#
# User actions go through change_status(); the hourly/daily jobs in
# clubhub.jobs.event_status drive the time-based steps. Every transition is a
# compare-and-set on "status" so a job and a user can never both apply one.
# ================================================================================

from datetime import timedelta

from clubhub.logger import get_logger
from clubhub.utils.authz import can_manage_event
from clubhub.utils.clock import now_iso, parse_datetime, to_iso, utcnow
from clubhub.utils.errors import ConflictError, NotFoundError, PermissionDenied, ValidationError
from clubhub.utils.roles import CORE_AND_LEADERSHIP
from clubhub.utils.validators import (
    paginate, parse_number, parse_string_list, sanitize_input,
    validate_event_create, validate_event_update
)

logger = get_logger(__name__)

EVENT_STATUSES = (
    "draft", "pending_coordinator", "pending_admin", "published", "ongoing",
    "pending_completion", "completed", "incomplete", "archived",
)
RESTRICTED_STATUSES = ("draft", "pending_coordinator", "pending_admin")
RSVP_STATUSES = ("published", "ongoing")
# organizer rows start "absent"; either row type counts once it responds
RESPONDED_STATUSES = ("rsvp", "present")
MATERIAL_STATUSES = ("pending_completion", "completed")
OVERRIDE_ACTIONS = ("budget_rejection", "budget_reduction", "event_cancellation")
CLOSED_STATUSES = ("completed", "incomplete", "archived")

MISSING_LABELS = {
    "photos_uploaded": "photos",
    "report_uploaded": "report",
    "attendance_uploaded": "attendance",
    "bills_uploaded": "bills",
}


def completion_checklist(event: dict, min_photos: int = 5) -> dict:
    """Recompute the completion checklist from the materials stored on the event."""
    budget = float(event.get("budget") or 0)
    return {
        "photos_uploaded": len(event.get("photos") or []) >= min_photos,
        "report_uploaded": bool(event.get("report_url")),
        "attendance_uploaded": bool(event.get("attendance_url")),
        "bills_uploaded": bool(event.get("bill_urls")) if budget > 0 else True,
    }


def missing_materials(checklist: dict) -> list:
    return [label for key, label in MISSING_LABELS.items() if not (checklist or {}).get(key)]


def checklist_complete(checklist: dict) -> bool:
    return all((checklist or {}).get(key) for key in MISSING_LABELS)


def _urls(value, field: str) -> list:
    urls = parse_string_list(value, field)
    for url in urls:
        if not url.startswith(("http://", "https://")):
            raise ValidationError(f"{field} must contain http(s) URLs")
    return urls


class EventService:
    def __init__(self, db, audit, notifications, config=None):
        self.db = db
        self.audit = audit
        self.notifications = notifications
        config = config or {}
        self.admin_approval_budget = float(config.get("ADMIN_APPROVAL_BUDGET", 5000))
        self.min_photos = int(config.get("MIN_COMPLETION_PHOTOS", 5))
        self.completion_window_days = int(config.get("COMPLETION_WINDOW_DAYS", 7))

    # ================================================================================
    # HELPERS
    # ================================================================================
    def get_event_or_404(self, event_id) -> dict:
        event = self.db.get_event(event_id)
        if not event:
            raise NotFoundError("Event not found")
        return event

    def core_team_ids(self, club_id) -> list:
        return self.db.club_member_ids(club_id, roles=CORE_AND_LEADERSHIP)

    def president_id(self, club_id):
        members = self.db.club_memberships(club_id, roles=["president"])
        return members[0]["user_id"] if members else None

    def requires_admin_approval(self, event: dict) -> bool:
        return float(event.get("budget") or 0) > self.admin_approval_budget or bool(event.get("guest_speakers"))

    def _event_club_ids(self, event: dict) -> list:
        return [event.get("club_id")] + [c for c in (event.get("participating_clubs") or []) if c]

    def _payload(self, event: dict, **extra) -> dict:
        payload = {"event_id": event.get("id"), "event_title": event.get("title")}
        payload.update(extra)
        return payload

    def _transition(self, event: dict, expected, changes: dict) -> dict:
        if not self.db.compare_and_set("events", event["id"], "status", expected, changes):
            raise ConflictError("Event status changed, please retry")
        updated = dict(event)
        updated.update(changes)
        return updated

    def _validate_participating(self, club_ids, primary):
        out = []
        for club_id in dict.fromkeys(club_ids):
            if club_id == primary:
                continue
            if not self.db.get_club(club_id):
                raise ValidationError(f"Participating club {club_id} not found")
            out.append(club_id)
        return out

    def build_organizer_attendance(self, event: dict) -> int:
        """(Re)create absent organizer rows for every approved member of the organizing clubs."""
        self.db.delete_where("attendance", [("event_id", "==", event["id"]), ("type", "==", "organizer")])
        rows, seen = [], set()
        now = now_iso()
        for club_id in self._event_club_ids(event):
            for membership in self.db.club_memberships(club_id):
                if membership["user_id"] in seen:
                    continue
                seen.add(membership["user_id"])
                rows.append({"event_id": event["id"], "user_id": membership["user_id"], "club_id": club_id,
                             "status": "absent", "type": "organizer", "timestamp": now})
        if rows:
            self.db.insert_many("attendance", rows)
        return len(rows)

    def _viewer_club_ids(self, viewer) -> set:
        if not viewer:
            return set()
        ids = {m["club_id"] for m in self.db.user_memberships(viewer["id"])}
        if viewer.get("role") == "coordinator":
            ids |= {c["id"] for c in self.db.query("clubs", [("coordinator_id", "==", viewer["id"])])}
        return ids

    def can_view(self, event: dict, viewer) -> bool:
        if event.get("status") not in RESTRICTED_STATUSES:
            return True
        if not viewer:
            return False
        if viewer.get("role") == "admin":
            return True
        return bool(self._viewer_club_ids(viewer) & set(self._event_club_ids(event)))

    # ================================================================================
    # CRUD
    # ================================================================================
    def create_event(self, data: dict, actor: dict, now=None) -> dict:
        fields = validate_event_create(data, now)
        club = self.db.get_club(fields["club_id"])
        if not club:
            raise NotFoundError("Club not found")
        if club.get("status") not in ("active", "pending_archive"):
            raise ValidationError("Events can only be created for active clubs")
        fields["participating_clubs"] = self._validate_participating(fields["participating_clubs"], club["id"])

        stamp = now_iso()
        event = dict(fields)
        event.update({
            "status": "draft",
            "requires_admin_approval": False,
            "photos": [],
            "report_url": "",
            "attendance_url": "",
            "bill_urls": [],
            "completion_checklist": {key: False for key in MISSING_LABELS},
            "completion_reminder_sent": {"day3": False, "day5": False},
            "completion_deadline": None,
            "coordinator_override": None,
            "created_by": actor["id"],
            "created_at": stamp,
            "updated_at": stamp,
        })
        event["id"] = self.db.insert("events", event)
        organizers = self.build_organizer_attendance(event)
        self.audit.record(actor, "EVENT_CREATE", f"Event:{event['id']}",
                          new_value={"title": event["title"], "club_id": club["id"], "organizers": organizers})
        logger.info("Event %s created for club %s", event["id"], club["id"])
        return event

    def list_events(self, club=None, status=None, upcoming: bool = False, past: bool = False,
                    page: int = 1, limit: int = 20, viewer=None, now=None) -> dict:
        if status and status not in EVENT_STATUSES:
            raise ValidationError("Invalid status")
        filters = []
        if club:
            filters.append(("club_id", "==", club))
        if status:
            filters.append(("status", "==", status))
        stamp = to_iso(now or utcnow())
        if upcoming:
            filters.append(("date_time", ">=", stamp))
        elif past:
            filters.append(("date_time", "<", stamp))

        ascending = bool(upcoming) or status == "published"
        events = self.db.query("events", filters, order_by="date_time", descending=not ascending)

        is_admin = bool(viewer) and viewer.get("role") == "admin"
        if not is_admin:
            allowed = self._viewer_club_ids(viewer)
            events = [e for e in events if e.get("status") not in RESTRICTED_STATUSES
                      or allowed & set(self._event_club_ids(e))]

        result = paginate(events, page, limit)
        clubs = self.db.get_clubs_map([e.get("club_id") for e in result["items"]])
        for event in result["items"]:
            event["club_name"] = (clubs.get(event.get("club_id")) or {}).get("name", "")
        result["events"] = result.pop("items")
        return result

    def get_event(self, event_id, viewer=None) -> dict:
        event = self.get_event_or_404(event_id)
        if not self.can_view(event, viewer):
            raise NotFoundError("Event not found")
        event["can_manage"] = can_manage_event(self.db, viewer, event, CORE_AND_LEADERSHIP)
        event["rsvp_count"] = self.db.count("attendance", [("event_id", "==", event_id),
                                                           ("status", "in", list(RESPONDED_STATUSES))])
        mine = self.db.get_attendance(event_id, viewer["id"]) if viewer else None
        event["has_rsvped"] = bool(mine) and mine.get("status") in RESPONDED_STATUSES
        return event

    def update_event(self, event_id, data: dict, actor: dict, now=None) -> dict:
        event = self.get_event_or_404(event_id)
        if event.get("status") != "draft":
            raise ValidationError(f"Cannot edit event with status '{event.get('status')}'. Only draft events can be edited.")
        changes = validate_event_update(data)
        if "date_time" in changes and parse_datetime(changes["date_time"]) <= (now or utcnow()):
            raise ValidationError("Event date must be in the future")
        if "participating_clubs" in changes:
            changes["participating_clubs"] = self._validate_participating(changes["participating_clubs"], event["club_id"])
        changes["updated_at"] = now_iso()

        updated = self._transition(event, "draft", changes)
        if "participating_clubs" in changes and set(changes["participating_clubs"]) != set(event.get("participating_clubs") or []):
            self.build_organizer_attendance(updated)
        self.audit.record(actor, "EVENT_UPDATE", f"Event:{event_id}", new_value=sorted(changes))
        return updated

    def delete_event(self, event_id, actor: dict) -> dict:
        event = self.get_event_or_404(event_id)
        if event.get("status") != "draft":
            raise ValidationError(f"Cannot delete event with status '{event.get('status')}'. Only draft events can be deleted.")
        self.db.delete_where("attendance", [("event_id", "==", event_id)])
        self.db.delete("events", event_id)
        self.notifications.notify_many(self.db.club_member_ids(event["club_id"]), "event_cancelled", self._payload(event))
        self.audit.record(actor, "EVENT_DELETE", f"Event:{event_id}", old_value={"title": event.get("title")})
        return event

    # ================================================================================
    # STATUS TRANSITIONS
    # ================================================================================
    def _is_assigned_coordinator(self, actor, event) -> bool:
        if actor.get("role") != "coordinator":
            return False
        club = self.db.get_club(event.get("club_id")) or {}
        return club.get("coordinator_id") == actor.get("id")

    def closing_changes(self, event: dict, now=None) -> dict:
        """Changes applied when an ongoing event ends."""
        stamp = to_iso(now or utcnow())
        checklist = completion_checklist(event, self.min_photos)
        deadline = parse_datetime(event["date_time"]) + timedelta(days=self.completion_window_days)
        changes = {
            "status": "completed" if checklist_complete(checklist) else "pending_completion",
            "completion_deadline": to_iso(deadline),
            "completion_checklist": checklist,
            "completion_reminder_sent": {"day3": False, "day5": False},
            "ended_at": stamp,
        }
        if changes["status"] == "completed":
            changes["completed_at"] = stamp
        return changes

    def announce_closing(self, event: dict):
        team = self.core_team_ids(event["club_id"])
        if event["status"] == "completed":
            self.notifications.notify_many(team, "event_completed", self._payload(event))
            return
        missing = missing_materials(event["completion_checklist"])
        self.notifications.notify_many(team, "completion_required", self._payload(
            event, missing=missing, deadline=event["completion_deadline"]), priority="HIGH")

    def change_status(self, event_id, action: str, actor: dict, reason=None) -> dict:
        event = self.get_event_or_404(event_id)
        prev = event.get("status")
        is_admin = actor.get("role") == "admin"
        is_coordinator = self._is_assigned_coordinator(actor, event)

        if action == "submit" and prev == "draft":
            changes = {"status": "pending_coordinator",
                       "requires_admin_approval": self.requires_admin_approval(event),
                       "submitted_at": now_iso(), "rejection_reason": None}
        elif action == "approve" and prev == "pending_coordinator":
            if not (is_admin or is_coordinator):
                raise PermissionDenied("Only the assigned coordinator or an admin can approve this event")
            needs_admin = self.requires_admin_approval(event)
            changes = {"status": "pending_admin" if needs_admin else "published",
                       "requires_admin_approval": needs_admin,
                       "coordinator_approved_by": actor["id"], "coordinator_approved_at": now_iso()}
        elif action == "approve" and prev == "pending_admin":
            if not is_admin:
                raise PermissionDenied("Admin approval required")
            changes = {"status": "published", "admin_approved_by": actor["id"], "admin_approved_at": now_iso()}
        elif action == "reject" and prev in ("pending_coordinator", "pending_admin"):
            if not (is_admin or (is_coordinator and prev == "pending_coordinator")):
                raise PermissionDenied("Only the assigned coordinator or an admin can reject this event")
            reason = sanitize_input(reason, max_len=0)
            if not 10 <= len(reason) <= 500:
                raise ValidationError("Rejection reason must be between 10 and 500 characters")
            changes = {"status": "draft", "rejection_reason": reason,
                       "rejected_by": actor["id"], "rejected_at": now_iso()}
        elif action == "start" and prev == "published":
            changes = {"status": "ongoing", "started_at": now_iso()}
        elif action == "complete" and prev == "ongoing":
            changes = self.closing_changes(event)
        else:
            raise ValidationError("Invalid action/state")

        updated = self._transition(event, prev, changes)
        self._after_transition(action, prev, updated, reason)
        self.audit.record(actor, f"EVENT_{action.upper()}", f"Event:{event_id}",
                          old_value={"status": prev}, new_value={"status": updated["status"]})
        logger.info("Event %s: %s -> %s (%s)", event_id, prev, updated["status"], action)
        return updated

    def _after_transition(self, action, prev, event, reason):
        status = event["status"]
        if status == "pending_coordinator":
            club = self.db.get_club(event["club_id"]) or {}
            self.notifications.create(club.get("coordinator_id"), "approval_required", self._payload(
                event, club_name=club.get("name"), budget=event.get("budget"),
                message=f"event '{event.get('title')}' submitted"), priority="HIGH")
        elif status == "pending_admin":
            self.notifications.notify_many(self.db.user_ids_with_role("admin"), "approval_required", self._payload(
                event, budget=event.get("budget"), message=f"event '{event.get('title')}' needs admin approval"),
                priority="HIGH")
        elif status == "published":
            self.notifications.notify_many(self.db.club_member_ids(event["club_id"]), "event_published",
                                           self._payload(event, date_time=event.get("date_time")))
        elif action == "reject":
            self.notifications.notify_many([self.president_id(event["club_id"])], "event_rejected",
                                           self._payload(event, reason=reason), priority="HIGH")
        elif action == "complete":
            self.announce_closing(event)

    # ================================================================================
    # ATTENDANCE
    # ================================================================================
    def rsvp(self, event_id, actor: dict) -> dict:
        event = self.get_event_or_404(event_id)
        if event.get("status") not in RSVP_STATUSES:
            raise ValidationError("Not open for RSVP")
        if not event.get("is_public", True):
            if not any(self.db.get_membership(c, actor["id"]) for c in self._event_club_ids(event)):
                raise PermissionDenied("This event is open to club members only")

        existing = self.db.get_attendance(event_id, actor["id"])
        if existing:
            if existing.get("status") == "absent":
                self.db.update("attendance", existing["id"], {"status": "rsvp", "timestamp": now_iso()})
                existing["status"] = "rsvp"
            return existing

        row = {"event_id": event_id, "user_id": actor["id"], "club_id": event.get("club_id"),
               "status": "rsvp", "type": "audience", "timestamp": now_iso()}
        row["id"] = self.db.insert("attendance", row)
        self.audit.record(actor, "EVENT_RSVP", f"Event:{event_id}")
        return row

    def mark_attendance(self, event_id, user_id, actor: dict) -> dict:
        event = self.get_event_or_404(event_id)
        if event.get("status") not in ("published", "ongoing", "pending_completion"):
            raise ValidationError("Attendance can only be marked for published or ongoing events")
        if not self.db.get_user(user_id):
            raise NotFoundError("User not found")

        stamp = now_iso()
        row = self.db.get_attendance(event_id, user_id)
        if row:
            self.db.update("attendance", row["id"], {"status": "present", "check_in_time": stamp})
            row.update({"status": "present", "check_in_time": stamp})
        else:
            row = {"event_id": event_id, "user_id": user_id, "club_id": event.get("club_id"),
                   "status": "present", "type": "audience", "timestamp": stamp, "check_in_time": stamp}
            row["id"] = self.db.insert("attendance", row)
        self.audit.record(actor, "EVENT_MARK_ATTENDANCE", f"Event:{event_id}", new_value={"user_id": user_id})
        return row

    def list_attendance(self, event_id) -> list:
        self.get_event_or_404(event_id)
        rows = self.db.query("attendance", [("event_id", "==", event_id)], order_by="timestamp")
        for row in rows:
            user = self.db.get_user(row.get("user_id")) or {}
            row["name"] = user.get("name", "")
            row["email"] = user.get("email", "")
            row["roll_number"] = user.get("roll_number", "")
        return rows

    # ================================================================================
    # COMPLETION MATERIALS AND OVERRIDES
    # ================================================================================
    def upload_materials(self, event_id, actor: dict, photos=None, report_url=None,
                         attendance_url=None, bill_urls=None) -> dict:
        event = self.get_event_or_404(event_id)
        status = event.get("status")
        if status not in MATERIAL_STATUSES:
            raise ValidationError(
                f"Cannot upload materials for events with status '{status}'. "
                "Only pending_completion and completed events can upload materials.")

        changes = {}
        new_photos = _urls(photos, "photos")
        if new_photos:
            changes["photos"] = list(dict.fromkeys(list(event.get("photos") or []) + new_photos))
        if report_url:
            changes["report_url"] = _urls([report_url], "report_url")[0]
        if attendance_url:
            changes["attendance_url"] = _urls([attendance_url], "attendance_url")[0]
        new_bills = _urls(bill_urls, "bill_urls")
        if new_bills:
            changes["bill_urls"] = list(dict.fromkeys(list(event.get("bill_urls") or []) + new_bills))
        if not changes:
            raise ValidationError("No materials provided")

        merged = dict(event)
        merged.update(changes)
        changes["completion_checklist"] = completion_checklist(merged, self.min_photos)
        if status == "pending_completion" and checklist_complete(changes["completion_checklist"]):
            changes["status"] = "completed"
            changes["completed_at"] = now_iso()

        updated = self._transition(event, status, changes)
        if updated["status"] == "completed" and status != "completed":
            self.announce_closing(updated)
        self.audit.record(actor, "MATERIALS_UPLOADED", f"Event:{event_id}",
                          new_value={"completion_checklist": updated["completion_checklist"], "status": updated["status"]})
        return updated

    def coordinator_override(self, event_id, action: str, reason, actor: dict, adjusted_budget=None) -> dict:
        event = self.get_event_or_404(event_id)
        if action not in OVERRIDE_ACTIONS:
            raise ValidationError("Invalid override action")
        if not (actor.get("role") == "admin" or self._is_assigned_coordinator(actor, event)):
            raise PermissionDenied("Only the assigned coordinator or an admin can override an event")
        if event.get("status") in CLOSED_STATUSES:
            raise ValidationError(f"Cannot override an event with status '{event.get('status')}'")
        reason = sanitize_input(reason, max_len=0)
        if not reason or len(reason) > 500:
            raise ValidationError("reason is required (max 500 characters)")

        original = float(event.get("budget") or 0)
        if action == "budget_reduction":
            adjusted = parse_number(adjusted_budget, "adjusted_budget")
            if not adjusted or adjusted >= original:
                raise ValidationError("Adjusted budget must be less than original")
            changes = {"budget": adjusted}
        else:
            adjusted = 0
            changes = {"budget": 0, "status": "archived"}
        changes["coordinator_override"] = {
            "type": action,
            "reason": reason,
            "original_budget": original,
            "adjusted_budget": adjusted,
            "overridden_by": actor["id"],
            "overridden_at": now_iso(),
        }

        updated = self._transition(event, event["status"], changes)
        self.audit.record(actor, "COORDINATOR_FINANCIAL_OVERRIDE", f"Event:{event_id}",
                          old_value={"budget": original, "status": event["status"]},
                          new_value={"budget": updated["budget"], "status": updated["status"], "type": action},
                          severity="HIGH")
        self.notifications.notify_many([self.president_id(event["club_id"])], "budget_override", self._payload(
            event, message=f"{action.replace('_', ' ')}: {reason}", original_budget=original,
            adjusted_budget=updated["budget"]), priority="HIGH")
        return updated
