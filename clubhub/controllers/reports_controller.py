# ================================================================================
# REPORT ROUTES
# ================================================================================
# Admin dashboard, club activity and annual reports, CSV exports.
# ================================================================================

from flask import Blueprint, request

from clubhub.controllers.helpers import csv_response, ok, page_args
from clubhub.services import get_services
from clubhub.utils.authz import (
    require_admin, require_admin_or_coordinator_or_club_role, require_coordinator_or_admin
)
from clubhub.utils.clock import utcnow
from clubhub.utils.roles import LEADERSHIP_ROLES

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _year():
    return request.args.get("year") or utcnow().year


@reports_bp.get("/dashboard")
@require_coordinator_or_admin
def dashboard():
    return ok(dashboard=get_services().reports.dashboard())


@reports_bp.get("/clubs/<club_id>/activity")
@require_admin_or_coordinator_or_club_role(LEADERSHIP_ROLES)
def club_activity(club_id):
    return ok(report=get_services().reports.club_activity(club_id, _year()))


@reports_bp.get("/clubs/<club_id>/activity/export")
@require_admin_or_coordinator_or_club_role(LEADERSHIP_ROLES)
def export_club_activity(club_id):
    year = _year()
    club, text = get_services().reports.export_club_activity_csv(club_id, year)
    return csv_response(text, f"{club.get('name', 'club')}_activity_{year}")


@reports_bp.get("/annual")
@require_admin
def annual():
    return ok(report=get_services().reports.annual(_year()))


@reports_bp.get("/audit")
@require_admin
def audit_logs():
    page, limit = page_args()
    args = request.args
    result = get_services().audit.list(user_id=args.get("user"), action=args.get("action"),
                                       date_from=args.get("from"), date_to=args.get("to"),
                                       page=page, limit=limit)
    return ok(**result)


@reports_bp.get("/audit/export")
@require_admin
def export_audit_logs():
    args = request.args
    text = get_services().reports.export_audit_csv(user_id=args.get("user"), action=args.get("action"),
                                                   date_from=args.get("from"), date_to=args.get("to"))
    return csv_response(text, "audit_logs")
