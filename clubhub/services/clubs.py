# ================================================================================
# CLUB AND MEMBERSHIP SERVICE
# ================================================================================
# Club lifecycle (create, settings, archive/restore) and membership management.
#
# Club status:   active -> pending_archive -> archived -> active (restore)
# Membership:    one document per (user, club) with a single scoped role.
#
# Invariants enforced here:
# - coordinators and admins are never club members
# - a student holds at most MAX_CLUBS_PER_STUDENT approved memberships
# - one president and one vice president per club
# - a user leading one club cannot hold an elevated role in another
# ================================================================================

from datetime import datetime, timedelta

from clubhub.logger import get_logger
from clubhub.services.membership_rules import (
    build_actor, check_can_assign, check_can_change_role, check_can_remove
)
from clubhub.utils.clock import now_iso, to_iso, utcnow
from clubhub.utils.errors import (
    ConflictError, NotFoundError, PermissionDenied, ValidationError
)
from clubhub.utils.roles import (
    ELEVATED_ROLES, LEADERSHIP_ROLES, ROLE_LABELS, is_core_role, is_leadership, is_president
)
from clubhub.utils.validators import (
    optional_text, paginate, parse_iso, require_text, sanitize_input,
    validate_category, validate_club_create, validate_name, validate_role
)

logger = get_logger(__name__)

VISIBLE_STATUSES = ("active", "pending_archive")
PUBLIC_FIELDS = ("description", "vision", "mission", "social_links", "banner_url", "logo_url")
PROTECTED_FIELDS = ("name", "category")
ANALYTICS_PERIODS = ("week", "month", "quarter", "year")


class ClubService:
    def __init__(self, db, audit, notifications, config=None):
        self.db = db
        self.audit = audit
        self.notifications = notifications
        config = config or {}
        self.max_clubs = int(config.get("MAX_CLUBS_PER_STUDENT", 3))

    # ================================================================================
    # HELPERS
    # ================================================================================
    def get_club_or_404(self, club_id) -> dict:
        club = self.db.get_club(club_id)
        if not club:
            raise NotFoundError("Club not found")
        return club

    def _president_id(self, club_id):
        members = self.db.club_memberships(club_id, roles=["president"])
        return members[0]["user_id"] if members else None

    def _check_role_slot(self, club_id, role, exclude_membership_id=None):
        if not is_leadership(role):
            return
        holders = [m for m in self.db.club_memberships(club_id, roles=[role])
                   if m["id"] != exclude_membership_id]
        if holders:
            raise ValidationError(f"Club already has a {ROLE_LABELS[role]}. Remove or reassign them first")

    def _check_cross_club_leadership(self, user_id, club_id, role):
        if role not in ELEVATED_ROLES:
            return
        for membership in self.db.user_memberships(user_id):
            if membership.get("club_id") != club_id and is_leadership(membership.get("role")):
                raise ValidationError("User already holds a leadership role in another club")

    def _with_user(self, membership: dict) -> dict:
        user = self.db.get_user(membership.get("user_id")) or {}
        out = dict(membership)
        out["user"] = {
            "id": membership.get("user_id"),
            "name": user.get("name", ""),
            "email": user.get("email", ""),
            "roll_number": user.get("roll_number", ""),
        }
        return out

    # ================================================================================
    # CLUBS
    # ================================================================================
    def create_club(self, data: dict, actor: dict) -> dict:
        fields = validate_club_create(data)
        if self.db.get_club_by_name(fields["name"]):
            raise ConflictError("Club name already exists")

        coordinator = self.db.get_user(fields["coordinator_id"])
        if not coordinator:
            raise NotFoundError("Coordinator not found")
        if coordinator.get("role") not in ("coordinator", "admin"):
            raise ValidationError(f"Coordinator must have coordinator or admin role. Selected user is: {coordinator.get('role')}")

        president = self.db.get_user(fields["president_id"])
        if not president:
            raise ValidationError("President not found")
        if president.get("role") != "student":
            raise ValidationError(f"President must be a student. Selected user is: {president.get('role')}")
        self._check_cross_club_leadership(president["id"], None, "president")

        core_ids = [uid for uid in dict.fromkeys(fields["core_members"]) if uid != president["id"]]
        for uid in core_ids:
            member = self.db.get_user(uid)
            if not member or member.get("role") != "student":
                raise ValidationError(f"Core member {uid} must be an existing student")
            self._check_cross_club_leadership(uid, None, "core")
        for uid in [president["id"]] + core_ids:
            if len(self.db.user_memberships(uid)) >= self.max_clubs:
                raise ValidationError(f"User {uid} already belongs to {self.max_clubs} clubs")

        now = now_iso()
        club = {
            "name": fields["name"],
            "name_lower": fields["name"].lower(),
            "description": fields["description"],
            "category": fields["category"],
            "vision": fields["vision"],
            "mission": fields["mission"],
            "coordinator_id": coordinator["id"],
            "status": "active",
            "social_links": {},
            "banner_url": "",
            "logo_url": "",
            "pending_settings": None,
            "archive_request": None,
            "created_by": actor["id"],
            "created_at": now,
            "updated_at": now,
        }
        club["id"] = self.db.insert("clubs", club)

        rows = [{"club_id": club["id"], "user_id": president["id"], "role": "president",
                 "status": "approved", "joined_at": now, "added_by": actor["id"]}]
        rows += [{"club_id": club["id"], "user_id": uid, "role": "core",
                  "status": "approved", "joined_at": now, "added_by": actor["id"]} for uid in core_ids]
        self.db.insert_many("memberships", rows)

        payload = {"club_id": club["id"], "club_name": club["name"]}
        self.notifications.notify_many([coordinator["id"]], "role_assigned", dict(payload, role="coordinator"))
        self.notifications.notify_many([president["id"]], "role_assigned", dict(payload, role="president"))
        self.audit.record(actor, "CLUB_CREATE", f"Club:{club['id']}", new_value={
            "name": club["name"], "coordinator_id": coordinator["id"], "president_id": president["id"]})
        logger.info("Club %s created by %s", club["id"], actor["id"])
        return club

    def list_clubs(self, category=None, search=None, coordinator=None, status=None,
                   page: int = 1, limit: int = 20) -> dict:
        filters = [("status", "==", status)] if status else [("status", "in", list(VISIBLE_STATUSES))]
        if category:
            filters.append(("category", "==", category))
        if coordinator:
            filters.append(("coordinator_id", "==", coordinator))
        clubs = self.db.query("clubs", filters, order_by="created_at", descending=True)
        if search:
            needle = search.strip().lower()
            clubs = [c for c in clubs if needle in (c.get("name") or "").lower()]

        result = paginate(clubs, page, limit)
        for club in result["items"]:
            club["member_count"] = self.db.count_club_members(club["id"])
        result["clubs"] = result.pop("items")
        return result

    def get_club(self, club_id, viewer: dict | None = None) -> dict:
        club = self.db.get_club(club_id)
        if not club or club.get("status") not in VISIBLE_STATUSES:
            raise NotFoundError("Club not found")
        club["member_count"] = self.db.count_club_members(club_id)
        coordinator = self.db.get_user(club.get("coordinator_id")) or {}
        club["coordinator"] = {"id": club.get("coordinator_id"), "name": coordinator.get("name", ""),
                               "email": coordinator.get("email", "")}

        if viewer:
            membership = self.db.get_membership(club_id, viewer["id"])
            if membership:
                club["members"] = [self._with_user(m) for m in self.db.club_memberships(club_id)]
                club["user_role"] = membership["role"]
                club["can_edit"] = is_president(membership["role"])
                club["can_manage"] = is_core_role(membership["role"])
            else:
                club["can_edit"] = False
                club["can_manage"] = False
            if viewer.get("role") == "admin":
                club["can_edit"] = True
                club["can_manage"] = True
        return club

    def update_settings(self, club_id, updates: dict, actor: dict) -> dict:
        """
        Public fields apply immediately. Protected fields apply immediately for
        admins and otherwise wait in pending_settings for the coordinator.
        """
        club = self.get_club_or_404(club_id)
        public, protected = {}, {}
        for key in PUBLIC_FIELDS:
            if key in updates:
                if key == "social_links":
                    links = updates.get(key) or {}
                    if not isinstance(links, dict):
                        raise ValidationError("social_links must be an object")
                    public[key] = {str(k): sanitize_input(v, 300) for k, v in links.items()}
                else:
                    public[key] = optional_text(updates, key, 1000 if key == "description" else 500)
        if "name" in updates:
            name = require_text(updates, "name", 100, "Name")
            if not validate_name(name, max_len=100):
                raise ValidationError("Invalid club name")
            existing = self.db.get_club_by_name(name)
            if existing and existing["id"] != club_id:
                raise ConflictError("Another club already uses that name")
            protected["name"] = name
        if "category" in updates:
            protected["category"] = validate_category(updates.get("category"))
        if not public and not protected:
            raise ValidationError("No valid fields to update")

        changes = {"updated_at": now_iso()}
        if public:
            changes.update(public)
            self.audit.record(actor, "CLUB_PUBLIC_UPDATE", f"Club:{club_id}", new_value=public)

        if protected:
            if actor.get("role") == "admin":
                changes.update(protected)
                if "name" in protected:
                    changes["name_lower"] = protected["name"].lower()
                changes["pending_settings"] = None
                self.audit.record(actor, "CLUB_ADMIN_UPDATE", f"Club:{club_id}", new_value=protected)
            else:
                pending = dict(club.get("pending_settings") or {})
                pending.update(protected)
                changes["pending_settings"] = pending
                self.notifications.create(club.get("coordinator_id"), "approval_required", {
                    "club_id": club_id, "club_name": club.get("name"), "pending": sorted(protected),
                    "message": "settings change requested"}, priority="HIGH")
                self.audit.record(actor, "CLUB_PROTECTED_UPDATE_REQUEST", f"Club:{club_id}", new_value=protected)

        self.db.update("clubs", club_id, changes)
        club.update(changes)
        return club

    def _check_coordinator_or_admin(self, club, actor):
        if actor.get("role") == "admin":
            return
        if actor.get("role") == "coordinator" and club.get("coordinator_id") == actor.get("id"):
            return
        raise PermissionDenied("Only the assigned coordinator or an admin can do this")

    def approve_settings(self, club_id, actor: dict) -> dict:
        club = self.get_club_or_404(club_id)
        self._check_coordinator_or_admin(club, actor)
        pending = club.get("pending_settings")
        if not pending:
            raise ValidationError("No pending changes")

        old = {k: club.get(k) for k in pending}
        changes = dict(pending)
        if "name" in pending:
            other = self.db.get_club_by_name(pending["name"])
            if other and other["id"] != club_id:
                raise ConflictError("Another club already uses that name")
            changes["name_lower"] = pending["name"].lower()
        changes["pending_settings"] = None
        changes["updated_at"] = now_iso()
        self.db.update("clubs", club_id, changes)
        club.update(changes)

        self.notifications.notify_many([self._president_id(club_id)], "settings_approved",
                                       {"club_id": club_id, "club_name": club.get("name")})
        self.audit.record(actor, "CLUB_PROTECTED_UPDATE_APPROVE", f"Club:{club_id}", old_value=old, new_value=pending)
        return club

    def reject_settings(self, club_id, actor: dict) -> dict:
        club = self.get_club_or_404(club_id)
        self._check_coordinator_or_admin(club, actor)
        pending = club.get("pending_settings")
        if not pending:
            raise ValidationError("No pending changes")

        self.db.update("clubs", club_id, {"pending_settings": None, "updated_at": now_iso()})
        club["pending_settings"] = None
        self.notifications.notify_many([self._president_id(club_id)], "settings_rejected", {
            "club_id": club_id, "club_name": club.get("name"), "rejected_changes": pending})
        self.audit.record(actor, "CLUB_PROTECTED_UPDATE_REJECT", f"Club:{club_id}", old_value=pending)
        return club

    def archive_club(self, club_id, reason, actor: dict) -> dict:
        club = self.get_club_or_404(club_id)
        reason = sanitize_input(reason, 500)
        if club.get("status") == "archived":
            raise ValidationError("Club is already archived")

        if actor.get("role") == "admin":
            changes = {"status": "archived", "archived_at": now_iso(), "archive_request": None}
            if not self.db.compare_and_set("clubs", club_id, "status", VISIBLE_STATUSES, changes):
                raise ConflictError("Club status changed, please retry")
            self.audit.record(actor, "CLUB_ARCHIVE", f"Club:{club_id}",
                              old_value={"status": club["status"]}, new_value={"status": "archived", "reason": reason})
        else:
            membership = self.db.get_membership(club_id, actor["id"])
            if not membership or not is_leadership(membership.get("role")):
                raise PermissionDenied("Only Admin or Club Leadership can archive a club")
            if club.get("status") == "pending_archive":
                raise ValidationError("An archive request is already pending")
            changes = {
                "status": "pending_archive",
                "archive_request": {
                    "requested_by": actor["id"],
                    "requested_at": now_iso(),
                    "reason": reason or "Leadership requested to archive this club",
                },
            }
            if not self.db.compare_and_set("clubs", club_id, "status", "active", changes):
                raise ConflictError("Club status changed, please retry")
            self.notifications.create(club.get("coordinator_id"), "approval_required", {
                "club_id": club_id, "club_name": club.get("name"), "reason": reason,
                "message": "archive requested"}, priority="HIGH")
            self.audit.record(actor, "CLUB_ARCHIVE_REQUEST", f"Club:{club_id}",
                              old_value={"status": club["status"]}, new_value={"status": "pending_archive", "reason": reason})
        club.update(changes)
        return club

    def decide_archive_request(self, club_id, decision: str, actor: dict) -> dict:
        if decision not in ("approve", "reject"):
            raise ValidationError("decision must be approve or reject")
        club = self.get_club_or_404(club_id)
        if club.get("status") != "pending_archive":
            raise ValidationError("No pending archive request for this club")
        self._check_coordinator_or_admin(club, actor)

        new_status = "archived" if decision == "approve" else "active"
        changes = {"status": new_status, "archive_request": None}
        if new_status == "archived":
            changes["archived_at"] = now_iso()
        if not self.db.compare_and_set("clubs", club_id, "status", "pending_archive", changes):
            raise ConflictError("Archive request was already decided")

        requester = (club.get("archive_request") or {}).get("requested_by")
        ntype = "archive_approved" if decision == "approve" else "archive_rejected"
        self.notifications.notify_many([requester], ntype, {"club_id": club_id, "club_name": club.get("name")},
                                       priority="HIGH")
        self.audit.record(actor, "CLUB_ARCHIVE_APPROVED" if decision == "approve" else "CLUB_ARCHIVE_REJECTED",
                          f"Club:{club_id}", old_value={"status": "pending_archive"}, new_value={"status": new_status})
        club.update(changes)
        return club

    def restore_club(self, club_id, actor: dict) -> dict:
        club = self.get_club_or_404(club_id)
        if club.get("status") != "archived":
            raise ValidationError("Club is not archived")
        changes = {"status": "active", "archived_at": None, "updated_at": now_iso()}
        if not self.db.compare_and_set("clubs", club_id, "status", "archived", changes):
            raise ConflictError("Club status changed, please retry")
        leaders = self.db.club_member_ids(club_id, roles=LEADERSHIP_ROLES)
        self.notifications.notify_many(leaders, "system", {
            "club_id": club_id, "message": f"{club.get('name')} has been restored"}, priority="HIGH")
        self.audit.record(actor, "CLUB_RESTORE", f"Club:{club_id}",
                          old_value={"status": "archived"}, new_value={"status": "active"})
        club.update(changes)
        return club

    def list_archived_clubs(self, actor: dict, page: int = 1, limit: int = 20) -> dict:
        filters = [("status", "==", "archived")]
        if actor.get("role") != "admin":
            filters.append(("coordinator_id", "==", actor["id"]))
        clubs = self.db.query("clubs", filters, order_by="archived_at", descending=True)
        result = paginate(clubs, page, limit)
        result["clubs"] = result.pop("items")
        return result

    # ================================================================================
    # MEMBERSHIPS
    # ================================================================================
    def get_members(self, club_id, role=None, status=None, page: int = 1, limit: int = 20) -> dict:
        self.get_club_or_404(club_id)
        filters = [("club_id", "==", club_id)]
        if role:
            filters.append(("role", "==", role))
        if status:
            filters.append(("status", "==", status))
        members = self.db.query("memberships", filters, order_by="joined_at", descending=True)
        result = paginate(members, page, limit)
        result["members"] = [self._with_user(m) for m in result.pop("items")]
        return result

    def add_member(self, club_id, user_id, role: str, actor: dict) -> dict:
        club = self.get_club_or_404(club_id)
        if club.get("status") not in VISIBLE_STATUSES:
            raise ValidationError("Cannot add members to an archived club")
        if not validate_role(role):
            raise ValidationError("Invalid role")

        user = self.db.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        if user.get("role") in ("coordinator", "admin"):
            raise ValidationError(f"{user['role'].capitalize()}s cannot be added as club members")
        if self.db.get_membership(club_id, user_id, status=None):
            raise ConflictError("User is already a member of this club")
        if len(self.db.user_memberships(user_id)) >= self.max_clubs:
            raise ValidationError(f"Students can be members of at most {self.max_clubs} clubs")

        check_can_assign(build_actor(self.db, actor, club), role)
        self._check_role_slot(club_id, role)
        self._check_cross_club_leadership(user_id, club_id, role)

        membership = {
            "club_id": club_id,
            "user_id": user_id,
            "role": role,
            "status": "approved",
            "joined_at": now_iso(),
            "added_by": actor["id"],
        }
        membership["id"] = self.db.insert("memberships", membership)
        self.notifications.notify_many([user_id], "role_assigned",
                                       {"club_id": club_id, "club_name": club.get("name"), "role": role})
        self.audit.record(actor, "MEMBER_ADD", f"Club:{club_id}", new_value={"user_id": user_id, "role": role})
        return membership

    def _get_membership_or_404(self, club_id, membership_id) -> dict:
        membership = self.db.get("memberships", membership_id)
        if not membership or membership.get("club_id") != club_id:
            raise NotFoundError("Membership not found")
        return membership

    def update_member_role(self, club_id, membership_id, role: str, actor: dict) -> dict:
        club = self.get_club_or_404(club_id)
        membership = self._get_membership_or_404(club_id, membership_id)
        if not validate_role(role):
            raise ValidationError("Invalid role")

        check_can_change_role(build_actor(self.db, actor, club), membership.get("role"), role)
        if role == membership.get("role"):
            return membership
        self._check_role_slot(club_id, role, exclude_membership_id=membership_id)
        self._check_cross_club_leadership(membership["user_id"], club_id, role)

        old_role = membership.get("role")
        self.db.update("memberships", membership_id, {"role": role, "updated_at": now_iso()})
        membership["role"] = role
        self.notifications.notify_many([membership["user_id"]], "role_assigned",
                                       {"club_id": club_id, "club_name": club.get("name"), "role": role})
        self.audit.record(actor, "MEMBER_ROLE_UPDATE", f"Club:{club_id}",
                          old_value={"user_id": membership["user_id"], "role": old_role},
                          new_value={"user_id": membership["user_id"], "role": role})
        return membership

    def remove_member(self, club_id, membership_id, actor: dict) -> dict:
        club = self.get_club_or_404(club_id)
        membership = self._get_membership_or_404(club_id, membership_id)
        check_can_remove(build_actor(self.db, actor, club), membership["user_id"], membership.get("role"))

        self.db.delete("memberships", membership_id)
        if membership["user_id"] != actor["id"]:
            self.notifications.notify_many([membership["user_id"]], "role_removed",
                                           {"club_id": club_id, "club_name": club.get("name")})
        self.audit.record(actor, "MEMBER_REMOVE", f"Club:{club_id}",
                          old_value={"user_id": membership["user_id"], "role": membership.get("role")})
        return membership

    def leave_club(self, club_id, actor: dict) -> dict:
        membership = self.db.get_membership(club_id, actor["id"], status=None)
        if not membership:
            raise NotFoundError("You are not a member of this club")
        return self.remove_member(club_id, membership["id"], actor)

    # ================================================================================
    # ANALYTICS
    # ================================================================================
    def _period_range(self, period, start_date, end_date, now: datetime):
        if start_date and end_date:
            start, end = parse_iso(start_date, "start_date"), parse_iso(end_date, "end_date")
            if start > end:
                raise ValidationError("start_date must be before end_date")
            return start, end
        if period not in ANALYTICS_PERIODS:
            raise ValidationError(f"period must be one of: {', '.join(ANALYTICS_PERIODS)}")
        if period == "week":
            start = now - timedelta(days=7)
        elif period == "month":
            start = now.replace(day=1, hour=0, minute=0, second=0)
        elif period == "quarter":
            start = now.replace(month=(now.month - 1) // 3 * 3 + 1, day=1, hour=0, minute=0, second=0)
        else:
            start = now.replace(month=1, day=1, hour=0, minute=0, second=0)
        return start, now

    def get_analytics(self, club_id, period: str = "month", start_date=None, end_date=None) -> dict:
        self.get_club_or_404(club_id)
        start, end = self._period_range(period, start_date, end_date, utcnow())
        start_iso, end_iso = to_iso(start), to_iso(end)

        members = self.db.club_memberships(club_id)
        growth = [m for m in members if start_iso <= (m.get("joined_at") or "") <= end_iso]
        events = self.db.query("events", [("club_id", "==", club_id),
                                          ("date_time", ">=", start_iso), ("date_time", "<=", end_iso)])
        recruitment_stats = {}
        for rec in self.db.query("recruitments", [("club_id", "==", club_id),
                                                  ("created_at", ">=", start_iso), ("created_at", "<=", end_iso)]):
            recruitment_stats[rec.get("status")] = recruitment_stats.get(rec.get("status"), 0) + 1

        return {
            "period": {"start": start_iso, "end": end_iso},
            "total_members": len(members),
            "member_growth": len(growth),
            "event_count": len(events),
            "budget_used": sum(float(e.get("budget") or 0) for e in events if e.get("status") == "completed"),
            "recruitment_stats": recruitment_stats,
        }

    def public_stats(self) -> dict:
        students = self.db.count("users", [("role", "==", "student")])
        member_ids = {m.get("user_id") for m in self.db.query("memberships", [("status", "==", "approved")])}
        return {
            "active_clubs": self.db.count("clubs", [("status", "==", "active")]),
            "students": max(students, len(member_ids)),
            "events": self.db.count("events"),
        }
