# ================================================================================
# SCHEDULED EVENT STATUS TRANSITIONS
# ================================================================================
# Time-driven steps of the event lifecycle. Each job takes the EventService
# and a reference time, and returns how many events it changed.
#
#   start_due_events          hourly :00   published -> ongoing
#   close_finished_events     hourly :30   ongoing -> pending_completion | completed
#   send_completion_reminders daily 09:00  day-3 and day-5 reminders (once each)
#   mark_incomplete_events    daily 10:00  pending_completion past deadline -> incomplete
#
# Transitions are compare-and-set on the event status: an event another
# actor moved in the meantime is skipped, and rerunning a job is a no-op.
# ================================================================================

from datetime import timedelta

from clubhub.logger import get_logger
from clubhub.services.audit import SYSTEM_USER
from clubhub.services.events import missing_materials
from clubhub.utils.clock import parse_datetime, to_iso, utcnow

logger = get_logger(__name__)

MISSING_DETAIL = {
    "photos": "Photos (min {min_photos})",
    "report": "Event report",
    "attendance": "Attendance sheet",
    "bills": "Bills/receipts",
}


def _apply(events, event, expected, changes) -> bool:
    if not events.db.compare_and_set("events", event["id"], "status", expected, changes):
        logger.info("Event %s moved on before the job could update it, skipping", event["id"])
        return False
    event.update(changes)
    return True


def start_due_events(events, now=None) -> int:
    """Published events whose start time fell within the last 24 hours become ongoing."""
    now = now or utcnow()
    due = events.db.query("events", [
        ("status", "==", "published"),
        ("date_time", ">=", to_iso(now - timedelta(hours=24))),
        ("date_time", "<=", to_iso(now)),
    ])
    changed = 0
    for event in due:
        if not _apply(events, event, "published", {"status": "ongoing", "started_at": to_iso(now)}):
            continue
        changed += 1
        events.notifications.notify_many(events.core_team_ids(event["club_id"]), "event_started", {
            "event_id": event["id"], "event_title": event.get("title")}, priority="HIGH")
        logger.info("Event %s started", event["id"])
    return changed


def close_finished_events(events, now=None) -> int:
    """Ongoing events past date_time + duration move to pending_completion (or completed)."""
    now = now or utcnow()
    changed = 0
    for event in events.db.query("events", [("status", "==", "ongoing")]):
        end = parse_datetime(event["date_time"]) + timedelta(minutes=int(event.get("duration") or 0))
        if now < end:
            continue
        if not _apply(events, event, "ongoing", events.closing_changes(event, now)):
            continue
        changed += 1
        events.announce_closing(event)
        logger.info("Event %s ended, now %s", event["id"], event["status"])
    return changed


def _remind(events, event, flag: str) -> bool:
    sent = dict(event.get("completion_reminder_sent") or {})
    if sent.get(flag):
        return False
    sent[flag] = True
    return _apply(events, event, "pending_completion", {"completion_reminder_sent": sent})


def send_completion_reminders(events, now=None) -> int:
    """
    Day 3: deadline in [now+3d, now+4d), core team reminded.
    Day 5: deadline in [now+1d, now+2d), core team and coordinator reminded urgently.
    """
    now = now or utcnow()
    reminded = 0
    windows = (
        ("day3", 3, 4, "completion_reminder", "HIGH"),
        ("day5", 1, 2, "completion_urgent", "URGENT"),
    )
    for flag, start_days, end_days, ntype, priority in windows:
        pending = events.db.query("events", [
            ("status", "==", "pending_completion"),
            ("completion_deadline", ">=", to_iso(now + timedelta(days=start_days))),
            ("completion_deadline", "<", to_iso(now + timedelta(days=end_days))),
        ])
        for event in pending:
            if not _remind(events, event, flag):
                continue
            reminded += 1
            payload = {
                "event_id": event["id"],
                "event_title": event.get("title"),
                "missing": missing_materials(event.get("completion_checklist")),
                "deadline": event.get("completion_deadline"),
            }
            recipients = events.core_team_ids(event["club_id"])
            if flag == "day5":
                club = events.db.get_club(event["club_id"]) or {}
                recipients.append(club.get("coordinator_id"))
            events.notifications.notify_many(recipients, ntype, payload, priority=priority)
            logger.info("Sent %s completion reminder for event %s", flag, event["id"])
    return reminded


def mark_incomplete_events(events, now=None) -> int:
    now = now or utcnow()
    overdue = events.db.query("events", [
        ("status", "==", "pending_completion"),
        ("completion_deadline", "<", to_iso(now)),
    ])
    changed = 0
    for event in overdue:
        missing = [MISSING_DETAIL[m].format(min_photos=events.min_photos)
                   for m in missing_materials(event.get("completion_checklist"))]
        reason = f"{events.completion_window_days}-day deadline passed. Missing: {', '.join(missing)}"
        changes = {"status": "incomplete", "marked_incomplete_at": to_iso(now), "incomplete_reason": reason}
        if not _apply(events, event, "pending_completion", changes):
            continue
        changed += 1

        payload = {"event_id": event["id"], "event_title": event.get("title"), "reason": reason}
        club = events.db.get_club(event["club_id"]) or {}
        events.notifications.notify_many(events.core_team_ids(event["club_id"]) + [club.get("coordinator_id")],
                                         "event_incomplete", payload, priority="URGENT")
        events.audit.log(SYSTEM_USER, "EVENT_MARKED_INCOMPLETE", f"Event:{event['id']}",
                         old_value={"status": "pending_completion"},
                         new_value={"status": "incomplete", "reason": reason},
                         ip="system", user_agent="scheduler")
        logger.info("Event %s marked incomplete at %s", event["id"], to_iso(now))
    return changed
