# ================================================================================
# EVENT ROUTES
# ================================================================================
# Event CRUD, status actions, RSVP/attendance, completion materials
# and coordinator overrides under /api/events.
# ================================================================================

from flask import Blueprint, request

from clubhub.controllers.helpers import actor_context, csv_response, json_body, ok, page_args
from clubhub.services import get_services
from clubhub.utils.authz import (
    can_manage_event, require_admin_or_coordinator_or_club_role, require_coordinator_or_admin,
    require_event_manager, require_login
)
from clubhub.utils.errors import PermissionDenied
from clubhub.utils.roles import CORE_AND_LEADERSHIP, LEADERSHIP_ROLES
from clubhub.utils.validators import parse_bool, string_field

events_bp = Blueprint("events", __name__, url_prefix="/api/events")

# Actions any event manager may take; approve/reject are checked by the service
MANAGER_ACTIONS = ("submit", "start", "complete")


@events_bp.post("")
@require_admin_or_coordinator_or_club_role(CORE_AND_LEADERSHIP)
def create_event():
    event = get_services().events.create_event(json_body(), actor_context())
    return ok(201, event=event, message="Event created")


@events_bp.get("")
def list_events():
    page, limit = page_args()
    args = request.args
    result = get_services().events.list_events(club=args.get("club"), status=args.get("status"),
                                               upcoming=parse_bool(args.get("upcoming")),
                                               past=parse_bool(args.get("past")),
                                               page=page, limit=limit, viewer=actor_context())
    return ok(**result)


@events_bp.get("/<event_id>")
def get_event(event_id):
    return ok(event=get_services().events.get_event(event_id, viewer=actor_context()))


@events_bp.patch("/<event_id>")
@require_event_manager(CORE_AND_LEADERSHIP)
def update_event(event_id):
    event = get_services().events.update_event(event_id, json_body(), actor_context())
    return ok(event=event, message="Event updated")


@events_bp.delete("/<event_id>")
@require_event_manager(LEADERSHIP_ROLES)
def delete_event(event_id):
    get_services().events.delete_event(event_id, actor_context())
    return ok(message="Event deleted")


@events_bp.patch("/<event_id>/status")
@require_login
def change_status(event_id):
    services = get_services()
    data = json_body()
    action = string_field(data, "action")
    actor = actor_context()
    if action in MANAGER_ACTIONS:
        event = services.events.get_event_or_404(event_id)
        if not can_manage_event(services.db, actor, event, CORE_AND_LEADERSHIP):
            raise PermissionDenied("Only the organizing club's core team can do this")
    event = services.events.change_status(event_id, action, actor, reason=data.get("reason"))
    return ok(event=event)


# ---------------- ATTENDANCE ----------------
@events_bp.post("/<event_id>/rsvp")
@require_login
def rsvp(event_id):
    return ok(attendance=get_services().events.rsvp(event_id, actor_context()), message="RSVP recorded")


@events_bp.get("/<event_id>/attendance")
@require_event_manager(CORE_AND_LEADERSHIP)
def list_attendance(event_id):
    return ok(attendance=get_services().events.list_attendance(event_id))


@events_bp.post("/<event_id>/attendance")
@require_event_manager(CORE_AND_LEADERSHIP)
def mark_attendance(event_id):
    row = get_services().events.mark_attendance(event_id, json_body().get("user_id"), actor_context())
    return ok(attendance=row)


@events_bp.get("/<event_id>/attendance/export")
@require_event_manager(CORE_AND_LEADERSHIP)
def export_attendance(event_id):
    event, text = get_services().reports.export_attendance_csv(event_id)
    return csv_response(text, f"{event.get('title', 'event')}_attendance")


# ---------------- COMPLETION ----------------
@events_bp.post("/<event_id>/materials")
@require_event_manager(CORE_AND_LEADERSHIP)
def upload_materials(event_id):
    data = json_body()
    event = get_services().events.upload_materials(event_id, actor_context(),
                                                   photos=data.get("photos"),
                                                   report_url=data.get("report_url"),
                                                   attendance_url=data.get("attendance_url"),
                                                   bill_urls=data.get("bill_urls"))
    return ok(event=event)


@events_bp.post("/<event_id>/override")
@require_coordinator_or_admin
def coordinator_override(event_id):
    data = json_body()
    event = get_services().events.coordinator_override(event_id, data.get("action"), data.get("reason"),
                                                       actor_context(),
                                                       adjusted_budget=data.get("adjusted_budget"))
    return ok(event=event, message="Override applied")
