# ================================================================================
# CLUB ROUTES
# ================================================================================
# Club lifecycle, settings approval, archive requests and membership
# management under /api/clubs, plus the public stats endpoint.
# ================================================================================

from flask import Blueprint, request

from clubhub.controllers.helpers import actor_context, csv_response, json_body, ok, page_args
from clubhub.services import get_services
from clubhub.utils.authz import (
    require_admin, require_admin_or_coordinator_or_club_role, require_assigned_coordinator,
    require_coordinator_or_admin, require_either, require_login, require_president, require_scoped
)
from clubhub.utils.roles import CLUB_ROLES, CORE_AND_LEADERSHIP, LEADERSHIP_ROLES

clubs_bp = Blueprint("clubs", __name__, url_prefix="/api/clubs")
public_bp = Blueprint("public", __name__, url_prefix="/api/public")


# ---------------- CLUBS ----------------
@clubs_bp.post("")
@require_admin
def create_club():
    club = get_services().clubs.create_club(json_body(), actor_context())
    return ok(201, club=club, message="Club created")


@clubs_bp.get("")
def list_clubs():
    page, limit = page_args()
    args = request.args
    result = get_services().clubs.list_clubs(category=args.get("category"), search=args.get("search"),
                                             coordinator=args.get("coordinator"), status=args.get("status"),
                                             page=page, limit=limit)
    return ok(**result)


@clubs_bp.get("/archived")
@require_coordinator_or_admin
def list_archived_clubs():
    page, limit = page_args()
    return ok(**get_services().clubs.list_archived_clubs(actor_context(), page, limit))


@clubs_bp.get("/<club_id>")
def get_club(club_id):
    return ok(club=get_services().clubs.get_club(club_id, viewer=actor_context()))


@clubs_bp.patch("/<club_id>/settings")
@require_president()
def update_settings(club_id):
    club = get_services().clubs.update_settings(club_id, json_body(), actor_context())
    message = "Changes submitted for coordinator approval" if club.get("pending_settings") else "Club updated"
    return ok(club=club, message=message)


@clubs_bp.post("/<club_id>/settings/approve")
@require_assigned_coordinator()
def approve_settings(club_id):
    return ok(club=get_services().clubs.approve_settings(club_id, actor_context()), message="Changes approved")


@clubs_bp.post("/<club_id>/settings/reject")
@require_assigned_coordinator()
def reject_settings(club_id):
    return ok(club=get_services().clubs.reject_settings(club_id, actor_context()), message="Changes rejected")


@clubs_bp.post("/<club_id>/archive")
@require_either(("admin",), LEADERSHIP_ROLES)
def archive_club(club_id):
    club = get_services().clubs.archive_club(club_id, json_body().get("reason"), actor_context())
    return ok(club=club)


@clubs_bp.post("/<club_id>/archive/<decision>")
@require_assigned_coordinator()
def decide_archive(club_id, decision):
    club = get_services().clubs.decide_archive_request(club_id, decision, actor_context())
    return ok(club=club)


@clubs_bp.post("/<club_id>/restore")
@require_admin
def restore_club(club_id):
    return ok(club=get_services().clubs.restore_club(club_id, actor_context()), message="Club restored")


@clubs_bp.get("/<club_id>/analytics")
@require_admin_or_coordinator_or_club_role(CORE_AND_LEADERSHIP)
def club_analytics(club_id):
    args = request.args
    analytics = get_services().clubs.get_analytics(club_id, args.get("period", "month"),
                                                   args.get("start_date"), args.get("end_date"))
    return ok(analytics=analytics)


# ---------------- MEMBERS ----------------
@clubs_bp.get("/<club_id>/members")
@require_admin_or_coordinator_or_club_role(CLUB_ROLES)
def list_members(club_id):
    page, limit = page_args()
    result = get_services().clubs.get_members(club_id, role=request.args.get("role"),
                                              status=request.args.get("status"), page=page, limit=limit)
    return ok(**result)


@clubs_bp.post("/<club_id>/members")
@require_admin_or_coordinator_or_club_role(CORE_AND_LEADERSHIP)
def add_member(club_id):
    data = json_body()
    membership = get_services().clubs.add_member(club_id, data.get("user_id"), data.get("role") or "member",
                                                 actor_context())
    return ok(201, membership=membership, message="Member added")


@clubs_bp.patch("/<club_id>/members/<membership_id>")
@require_admin_or_coordinator_or_club_role(CORE_AND_LEADERSHIP)
def update_member_role(club_id, membership_id):
    membership = get_services().clubs.update_member_role(club_id, membership_id, json_body().get("role"),
                                                         actor_context())
    return ok(membership=membership, message="Role updated")


@clubs_bp.delete("/<club_id>/members/<membership_id>")
@require_login
def remove_member(club_id, membership_id):
    get_services().clubs.remove_member(club_id, membership_id, actor_context())
    return ok(message="Member removed")


@clubs_bp.post("/<club_id>/leave")
@require_scoped(CLUB_ROLES)
def leave_club(club_id):
    get_services().clubs.leave_club(club_id, actor_context())
    return ok(message="You have left the club")


@clubs_bp.get("/<club_id>/members/export")
@require_admin_or_coordinator_or_club_role(CORE_AND_LEADERSHIP)
def export_members(club_id):
    club, text = get_services().reports.export_members_csv(club_id)
    return csv_response(text, f"{club.get('name', 'club')}_members")


# ---------------- PUBLIC ----------------
@public_bp.get("/stats")
def public_stats():
    return ok(stats=get_services().clubs.public_stats())
