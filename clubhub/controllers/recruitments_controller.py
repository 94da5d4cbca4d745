# ================================================================================
# RECRUITMENT ROUTES
# ================================================================================
# Recruitment drives, student applications and core-team review.
# ================================================================================

from flask import Blueprint, request

from clubhub.controllers.helpers import actor_context, json_body, ok, page_args
from clubhub.services import get_services
from clubhub.utils.authz import require_login

recruitments_bp = Blueprint("recruitments", __name__, url_prefix="/api/recruitments")


@recruitments_bp.post("")
@require_login
def create_recruitment():
    recruitment = get_services().recruitments.create_recruitment(json_body(), actor_context())
    return ok(201, recruitment=recruitment, message="Recruitment created")


@recruitments_bp.get("")
def list_recruitments():
    page, limit = page_args()
    result = get_services().recruitments.list_recruitments(club=request.args.get("club"),
                                                           status=request.args.get("status"),
                                                           page=page, limit=limit, viewer=actor_context())
    return ok(**result)


@recruitments_bp.get("/<recruitment_id>")
def get_recruitment(recruitment_id):
    return ok(recruitment=get_services().recruitments.get_recruitment(recruitment_id, viewer=actor_context()))


@recruitments_bp.post("/<recruitment_id>/schedule")
@require_login
def schedule_recruitment(recruitment_id):
    recruitment = get_services().recruitments.schedule(recruitment_id, actor_context())
    return ok(recruitment=recruitment, message="Recruitment scheduled")


# ---------------- APPLICATIONS ----------------
@recruitments_bp.post("/<recruitment_id>/apply")
@require_login
def apply(recruitment_id):
    application = get_services().recruitments.apply(recruitment_id, actor_context(),
                                                    statement=json_body().get("statement"))
    return ok(201, application=application, message="Application submitted")


@recruitments_bp.get("/<recruitment_id>/applications")
@require_login
def list_applications(recruitment_id):
    page, limit = page_args()
    result = get_services().recruitments.list_applications(recruitment_id, actor_context(),
                                                           status=request.args.get("status"),
                                                           page=page, limit=limit)
    return ok(**result)


@recruitments_bp.patch("/applications/<application_id>")
@require_login
def review_application(application_id):
    application = get_services().recruitments.review_application(application_id, json_body().get("decision"),
                                                                 actor_context())
    return ok(application=application)
