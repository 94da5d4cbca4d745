# ================================================================================
# SCHEDULED RECRUITMENT TRANSITIONS
# ================================================================================
# Every 5 minutes: scheduled -> open at start_date, open -> closing_soon in the
# last 24 hours, and -> closed at end_date. A drive only ever moves forward.
# ================================================================================

from clubhub.logger import get_logger
from clubhub.services.recruitments import RECRUITMENT_STATUSES, lifecycle_status
from clubhub.utils.clock import to_iso, utcnow
from clubhub.utils.roles import CORE_AND_LEADERSHIP

logger = get_logger(__name__)

ACTIVE_STATUSES = ("scheduled", "open", "closing_soon")


def advance_recruitments(recruitments, now=None) -> int:
    now = now or utcnow()
    db = recruitments.db
    changed = 0
    for recruitment in db.query("recruitments", [("status", "in", list(ACTIVE_STATUSES))]):
        current = recruitment["status"]
        target = lifecycle_status(recruitment, now)
        if RECRUITMENT_STATUSES.index(target) <= RECRUITMENT_STATUSES.index(current):
            continue
        changes = {"status": target, "updated_at": to_iso(now)}
        if not db.compare_and_set("recruitments", recruitment["id"], "status", current, changes):
            continue
        changed += 1
        logger.info("Recruitment %s: %s -> %s", recruitment["id"], current, target)

        club = db.get_club(recruitment["club_id"]) or {}
        payload = {"club_id": recruitment["club_id"], "club_name": club.get("name"),
                   "recruitment_id": recruitment["id"]}
        if target == "open" or (current == "scheduled" and target == "closing_soon"):
            students = [u["id"] for u in db.query("users", [("role", "==", "student")])
                        if u.get("status") != "suspended"]
            recruitments.notifications.notify_many(students, "recruitment_opened", payload)
        elif target == "closed":
            recruitments.notifications.notify_many(db.club_member_ids(recruitment["club_id"], roles=CORE_AND_LEADERSHIP),
                                                   "recruitment_closed", payload)
    return changed
