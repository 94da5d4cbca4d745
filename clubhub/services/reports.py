# ================================================================================
# REPORTS AND EXPORTS
# ================================================================================
# Read-only aggregates for the admin/coordinator dashboard and yearly reports,
# plus the CSV exports (club members, event attendance, club activity, audit
# logs). Exports return the CSV text; the controllers wrap it in a response.
# ================================================================================

import csv
from datetime import datetime, timezone
from io import StringIO

from clubhub.logger import get_logger
from clubhub.utils.clock import to_iso, utcnow
from clubhub.utils.errors import NotFoundError, ValidationError
from clubhub.utils.roles import CLUB_ROLES

logger = get_logger(__name__)

PENDING_EVENT_STATUSES = ["pending_coordinator", "pending_admin"]
ACTIVE_RECRUITMENT_STATUSES = ["scheduled", "open", "closing_soon"]
AUDIT_EXPORT_LIMIT = 1000


def year_range(year):
    """Return ISO bounds [start, end) of a calendar year."""
    try:
        year = int(year)
    except (TypeError, ValueError):
        raise ValidationError("year must be a number")
    if year < 2000 or year > 2100:
        raise ValidationError("year must be between 2000 and 2100")
    start = datetime(year, 1, 1, tzinfo=timezone.utc)
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    return to_iso(start), to_iso(end)


def to_csv(header: list, rows: list) -> str:
    out = StringIO()
    writer = csv.writer(out)
    writer.writerow(header)
    for row in rows:
        writer.writerow(["" if value is None else value for value in row])
    return out.getvalue()


class ReportService:
    def __init__(self, db, audit):
        self.db = db
        self.audit = audit

    def _club_or_404(self, club_id) -> dict:
        club = self.db.get_club(club_id)
        if not club:
            raise NotFoundError("Club not found")
        return club

    def _in_range(self, collection, field, start, end, extra=()):
        return self.db.query(collection, list(extra) + [(field, ">=", start), (field, "<", end)])

    # ================================================================================
    # DASHBOARD AND YEARLY REPORTS
    # ================================================================================
    def dashboard(self, now=None) -> dict:
        now = now or utcnow()
        month_start = to_iso(now.replace(day=1, hour=0, minute=0, second=0))
        now_stamp = to_iso(now)

        recruitment_summary = {}
        for recruitment in self.db.query("recruitments"):
            status = recruitment.get("status")
            recruitment_summary[status] = recruitment_summary.get(status, 0) + 1

        pending_events = self.db.count("events", [("status", "in", PENDING_EVENT_STATUSES)])
        pending_clubs = self.db.count("clubs", [("status", "==", "pending_archive")])
        return {
            "total_clubs": self.db.count("clubs", [("status", "==", "active")]),
            "total_students": self.db.count("users", [("role", "==", "student")]),
            "total_memberships": self.db.count("memberships", [("status", "==", "approved")]),
            "total_events": self.db.count("events"),
            "events_this_month": self.db.count("events", [("date_time", ">=", month_start),
                                                          ("date_time", "<=", now_stamp)]),
            "new_members_this_month": self.db.count("memberships", [("status", "==", "approved"),
                                                                     ("joined_at", ">=", month_start),
                                                                     ("joined_at", "<=", now_stamp)]),
            "pending_events": pending_events,
            "pending_clubs": pending_clubs,
            "pending_approvals": pending_events + pending_clubs,
            "active_recruitments": sum(recruitment_summary.get(s, 0) for s in ACTIVE_RECRUITMENT_STATUSES),
            "recruitment_summary": recruitment_summary,
        }

    def club_activity(self, club_id, year) -> dict:
        club = self._club_or_404(club_id)
        start, end = year_range(year)
        events = self._in_range("events", "date_time", start, end, [("club_id", "==", club_id)])
        recruitments = self._in_range("recruitments", "start_date", start, end, [("club_id", "==", club_id)])
        applications = sum(self.db.count("applications", [("recruitment_id", "==", r["id"])]) for r in recruitments)

        by_status = {}
        for event in events:
            by_status[event.get("status")] = by_status.get(event.get("status"), 0) + 1
        return {
            "club": {"id": club_id, "name": club.get("name"), "status": club.get("status")},
            "year": int(year),
            "events": len(events),
            "events_by_status": by_status,
            "members": self.db.count_club_members(club_id),
            "budget_total": sum(float(e.get("budget") or 0) for e in events),
            "recruitments": len(recruitments),
            "applications": applications,
        }

    def annual(self, year, top: int = 10) -> dict:
        start, end = year_range(year)
        events = self._in_range("events", "date_time", start, end)

        top_clubs = []
        for club in self.db.query("clubs", [("status", "==", "active")]):
            top_clubs.append({
                "id": club["id"],
                "name": club.get("name"),
                "events": sum(1 for e in events if e.get("club_id") == club["id"]),
                "members": self.db.count_club_members(club["id"]),
            })
        top_clubs.sort(key=lambda c: (c["events"], c["members"]), reverse=True)

        completed = [e for e in events if e.get("status") == "completed"]
        completed.sort(key=lambda e: int(e.get("capacity") or 0), reverse=True)
        return {
            "year": int(year),
            "clubs_created": len(self._in_range("clubs", "created_at", start, end)),
            "events": len(events),
            "events_completed": len(completed),
            "events_incomplete": sum(1 for e in events if e.get("status") == "incomplete"),
            "new_memberships": len(self._in_range("memberships", "joined_at", start, end)),
            "budget_total": sum(float(e.get("budget") or 0) for e in events),
            "top_clubs": top_clubs[:top],
            "top_events": [{"id": e["id"], "title": e.get("title"), "club_id": e.get("club_id"),
                            "date_time": e.get("date_time"), "capacity": e.get("capacity") or 0}
                           for e in completed[:top]],
        }

    # ================================================================================
    # CSV EXPORTS
    # ================================================================================
    def export_members_csv(self, club_id):
        """Return (club, csv_text) for the approved members of a club."""
        club = self._club_or_404(club_id)
        order = {role: i for i, role in enumerate(reversed(CLUB_ROLES))}
        members = sorted(self.db.club_memberships(club_id),
                         key=lambda m: (order.get(m.get("role"), len(order)), m.get("joined_at") or ""))
        rows = []
        for membership in members:
            user = self.db.get_user(membership.get("user_id")) or {}
            rows.append([user.get("roll_number"), user.get("name"), user.get("email"),
                         user.get("department"), user.get("year"), membership.get("role"),
                         (membership.get("joined_at") or "")[:10]])
        header = ["roll_number", "name", "email", "department", "year", "role", "joined_at"]
        return club, to_csv(header, rows)

    def export_attendance_csv(self, event_id):
        event = self.db.get_event(event_id)
        if not event:
            raise NotFoundError("Event not found")
        rows = []
        for row in self.db.query("attendance", [("event_id", "==", event_id)], order_by="timestamp"):
            user = self.db.get_user(row.get("user_id")) or {}
            rows.append([user.get("roll_number"), user.get("name"), user.get("email"),
                         row.get("type"), row.get("status"), (row.get("timestamp") or "")[:19]])
        header = ["roll_number", "name", "email", "type", "status", "timestamp"]
        return event, to_csv(header, rows)

    def export_club_activity_csv(self, club_id, year):
        club = self._club_or_404(club_id)
        start, end = year_range(year)
        events = self.db.query("events", [("club_id", "==", club_id), ("date_time", ">=", start),
                                          ("date_time", "<", end)], order_by="date_time")
        rows = [[e.get("title"), (e.get("date_time") or "")[:10], e.get("status"), e.get("venue") or "N/A",
                 e.get("capacity") or 0, e.get("budget") or 0] for e in events]
        return club, to_csv(["title", "date", "status", "venue", "capacity", "budget"], rows)

    def export_audit_csv(self, user_id=None, action=None, date_from=None, date_to=None) -> str:
        logs = self.audit.query(user_id, action, date_from, date_to)[:AUDIT_EXPORT_LIMIT]
        emails = {}
        rows = []
        for entry in logs:
            uid = entry.get("user_id")
            if uid not in emails:
                emails[uid] = (self.db.get_user(uid) or {}).get("email", "System")
            rows.append([entry.get("created_at"), emails[uid], entry.get("action"), entry.get("target"),
                         entry.get("ip"), entry.get("severity")])
        logger.info("Exported %d audit log entries", len(rows))
        return to_csv(["timestamp", "user", "action", "target", "ip", "severity"], rows)
