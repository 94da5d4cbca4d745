# ================================================================================
# RECRUITMENT SERVICE
# ================================================================================
# Recruitment drives:   draft -> scheduled -> open -> closing_soon -> closed
# Applications:         submitted -> selected | rejected
#
# scheduled/open/closing_soon/closed are advanced by the recruitment job from
# the drive's start and end dates. Selecting an applicant adds them to the
# club as a member through ClubService.add_member.
# ================================================================================

from datetime import timedelta

from clubhub.logger import get_logger
from clubhub.utils.clock import now_iso, parse_datetime, to_iso, utcnow
from clubhub.utils.errors import ConflictError, NotFoundError, PermissionDenied, ValidationError
from clubhub.utils.roles import is_core_role
from clubhub.utils.validators import (
    optional_text, paginate, parse_iso, parse_string_list, require_id, require_text
)

logger = get_logger(__name__)

RECRUITMENT_STATUSES = ("draft", "scheduled", "open", "closing_soon", "closed")
ACCEPTING_STATUSES = ("open", "closing_soon")
APPLICATION_DECISIONS = ("selected", "rejected")
CLOSING_SOON_WINDOW = timedelta(hours=24)


def lifecycle_status(recruitment: dict, now) -> str:
    """Status a scheduled drive should be in at `now`, from its start and end dates."""
    start = parse_datetime(recruitment["start_date"])
    end = parse_datetime(recruitment["end_date"])
    if now >= end:
        return "closed"
    if now >= start:
        return "closing_soon" if now >= end - CLOSING_SOON_WINDOW else "open"
    return "scheduled"


class RecruitmentService:
    def __init__(self, db, audit, notifications, clubs, config=None):
        self.db = db
        self.audit = audit
        self.notifications = notifications
        self.clubs = clubs
        config = config or {}
        self.max_clubs = int(config.get("MAX_CLUBS_PER_STUDENT", 3))

    def get_recruitment_or_404(self, recruitment_id) -> dict:
        recruitment = self.db.get("recruitments", recruitment_id)
        if not recruitment:
            raise NotFoundError("Recruitment not found")
        return recruitment

    def can_manage(self, club_id, actor) -> bool:
        if not actor:
            return False
        if actor.get("role") == "admin":
            return True
        membership = self.db.get_membership(club_id, actor["id"])
        return bool(membership) and is_core_role(membership.get("role"))

    def _check_manager(self, club_id, actor):
        if not self.can_manage(club_id, actor):
            raise PermissionDenied("Only Admin or the club core team can manage recruitments")

    def create_recruitment(self, data: dict, actor: dict) -> dict:
        club_id = require_id(data, "club_id")
        club = self.clubs.get_club_or_404(club_id)
        if club.get("status") not in ("active", "pending_archive"):
            raise ValidationError("Recruitments can only be created for active clubs")
        self._check_manager(club_id, actor)

        if not data.get("start_date") or not data.get("end_date"):
            raise ValidationError("start_date and end_date are required")
        start = parse_iso(data.get("start_date"), "start_date")
        end = parse_iso(data.get("end_date"), "end_date")
        if end <= start:
            raise ValidationError("end_date must be after start_date")

        stamp = now_iso()
        recruitment = {
            "club_id": club_id,
            "title": require_text(data, "title", 100, "Title"),
            "description": optional_text(data, "description", 1000),
            "positions": parse_string_list(data.get("positions"), "positions"),
            "start_date": to_iso(start),
            "end_date": to_iso(end),
            "status": "draft",
            "created_by": actor["id"],
            "created_at": stamp,
            "updated_at": stamp,
        }
        recruitment["id"] = self.db.insert("recruitments", recruitment)
        self.audit.record(actor, "RECRUITMENT_CREATE", f"Recruitment:{recruitment['id']}",
                          new_value={"club_id": club_id, "title": recruitment["title"]})
        return recruitment

    def schedule(self, recruitment_id, actor: dict, now=None) -> dict:
        recruitment = self.get_recruitment_or_404(recruitment_id)
        self._check_manager(recruitment["club_id"], actor)
        if recruitment.get("status") != "draft":
            raise ValidationError("Only draft recruitments can be scheduled")
        if parse_datetime(recruitment["end_date"]) <= (now or utcnow()):
            raise ValidationError("Recruitment end date has already passed")

        changes = {"status": "scheduled", "scheduled_at": now_iso()}
        if not self.db.compare_and_set("recruitments", recruitment_id, "status", "draft", changes):
            raise ConflictError("Recruitment status changed, please retry")
        recruitment.update(changes)
        self.audit.record(actor, "RECRUITMENT_SCHEDULE", f"Recruitment:{recruitment_id}")
        return recruitment

    def list_recruitments(self, club=None, status=None, page: int = 1, limit: int = 20, viewer=None) -> dict:
        if status and status not in RECRUITMENT_STATUSES:
            raise ValidationError("Invalid status")
        filters = []
        if club:
            filters.append(("club_id", "==", club))
        if status:
            filters.append(("status", "==", status))
        items = self.db.query("recruitments", filters, order_by="start_date", descending=True)
        items = [r for r in items if r.get("status") != "draft" or self.can_manage(r["club_id"], viewer)]
        result = paginate(items, page, limit)
        result["recruitments"] = result.pop("items")
        return result

    def get_recruitment(self, recruitment_id, viewer=None) -> dict:
        recruitment = self.get_recruitment_or_404(recruitment_id)
        if recruitment.get("status") == "draft" and not self.can_manage(recruitment["club_id"], viewer):
            raise NotFoundError("Recruitment not found")
        recruitment["application_count"] = self.db.count(
            "applications", [("recruitment_id", "==", recruitment_id)])
        recruitment["has_applied"] = bool(viewer) and self.db.find_one("applications", [
            ("recruitment_id", "==", recruitment_id), ("user_id", "==", viewer["id"])]) is not None
        recruitment["can_manage"] = self.can_manage(recruitment["club_id"], viewer)
        return recruitment

    # ================================================================================
    # APPLICATIONS
    # ================================================================================
    def apply(self, recruitment_id, actor: dict, statement=None) -> dict:
        recruitment = self.get_recruitment_or_404(recruitment_id)
        if recruitment.get("status") not in ACCEPTING_STATUSES:
            raise ValidationError("Recruitment is not open for applications")
        if actor.get("role") != "student":
            raise PermissionDenied("Only students can apply")
        club_id = recruitment["club_id"]
        if self.db.get_membership(club_id, actor["id"], status=None):
            raise ConflictError("You are already a member of this club")
        if len(self.db.user_memberships(actor["id"])) >= self.max_clubs:
            raise ValidationError(f"Students can be members of at most {self.max_clubs} clubs")
        if self.db.find_one("applications", [("recruitment_id", "==", recruitment_id), ("user_id", "==", actor["id"])]):
            raise ConflictError("You have already applied to this recruitment")

        application = {
            "recruitment_id": recruitment_id,
            "club_id": club_id,
            "user_id": actor["id"],
            "statement": optional_text({"statement": statement}, "statement", 1000),
            "status": "submitted",
            "created_at": now_iso(),
        }
        application["id"] = self.db.insert("applications", application)
        club = self.db.get_club(club_id) or {}
        self.notifications.notify_many([actor["id"]], "application_received",
                                       {"club_id": club_id, "club_name": club.get("name"), "recruitment_id": recruitment_id})
        self.audit.record(actor, "APPLICATION_SUBMIT", f"Recruitment:{recruitment_id}")
        return application

    def list_applications(self, recruitment_id, actor: dict, status=None, page: int = 1, limit: int = 20) -> dict:
        recruitment = self.get_recruitment_or_404(recruitment_id)
        self._check_manager(recruitment["club_id"], actor)
        filters = [("recruitment_id", "==", recruitment_id)]
        if status:
            filters.append(("status", "==", status))
        result = paginate(self.db.query("applications", filters, order_by="created_at"), page, limit)
        for application in result["items"]:
            user = self.db.get_user(application["user_id"]) or {}
            application["user"] = {"id": application["user_id"], "name": user.get("name", ""),
                                   "roll_number": user.get("roll_number", "")}
        result["applications"] = result.pop("items")
        return result

    def review_application(self, application_id, decision: str, actor: dict) -> dict:
        if decision not in APPLICATION_DECISIONS:
            raise ValidationError("decision must be selected or rejected")
        application = self.db.get("applications", application_id)
        if not application:
            raise NotFoundError("Application not found")
        self._check_manager(application["club_id"], actor)
        if application.get("status") != "submitted":
            raise ValidationError("Application has already been reviewed")

        if decision == "selected":
            self.clubs.add_member(application["club_id"], application["user_id"], "member", actor)
        changes = {"status": decision, "reviewed_by": actor["id"], "reviewed_at": now_iso()}
        if not self.db.compare_and_set("applications", application_id, "status", "submitted", changes):
            raise ConflictError("Application has already been reviewed")
        application.update(changes)

        club = self.db.get_club(application["club_id"]) or {}
        ntype = "application_approved" if decision == "selected" else "application_rejected"
        self.notifications.notify_many([application["user_id"]], ntype,
                                       {"club_id": application["club_id"], "club_name": club.get("name")})
        self.audit.record(actor, "APPLICATION_REVIEW", f"Application:{application_id}",
                          old_value={"status": "submitted"}, new_value={"status": decision})
        return application
