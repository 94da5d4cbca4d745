# ================================================================================
# MEMBERSHIP ROLE-TRANSITION RULES
# ================================================================================
# Who may assign, change or remove which scoped role. The checks are pure:
# callers build an Actor from the database and the checks raise
# PermissionDenied / ValidationError when a transition is not allowed.
#
#   assign president/vicePresident  -> admin, assigned coordinator
#   assign core roles               -> admin, club leadership
#   assign member                   -> admin, club leadership, core team
#   change a leadership holder      -> admin only
#   remove leadership               -> admin, assigned coordinator (never self)
#   remove core/member              -> admin, club leadership, or self
# ================================================================================

from dataclasses import dataclass

from clubhub.utils.errors import PermissionDenied, ValidationError
from clubhub.utils.roles import CLUB_ROLES, CORE_ROLES, is_leadership


@dataclass
class Actor:
    user_id: str
    global_role: str
    club_role: str | None = None
    is_assigned_coordinator: bool = False

    @property
    def is_admin(self) -> bool:
        return self.global_role == "admin"

    @property
    def is_leadership(self) -> bool:
        return is_leadership(self.club_role)

    @property
    def is_core_team(self) -> bool:
        return self.club_role in CORE_ROLES


def build_actor(db, user: dict, club: dict) -> Actor:
    membership = db.get_membership(club["id"], user["id"])
    return Actor(
        user_id=user["id"],
        global_role=user.get("role", "student"),
        club_role=(membership or {}).get("role"),
        is_assigned_coordinator=user.get("role") == "coordinator" and club.get("coordinator_id") == user["id"],
    )


def check_can_assign(actor: Actor, role: str):
    if role not in CLUB_ROLES:
        raise ValidationError("Invalid role")

    if is_leadership(role):
        if not (actor.is_admin or actor.is_assigned_coordinator):
            raise PermissionDenied(
                "Only Admin or Assigned Coordinator can assign President or Vice President roles")
    elif role in CORE_ROLES:
        if not (actor.is_admin or actor.is_leadership):
            raise PermissionDenied(
                "Only Admin or Club Leadership can assign core team roles")
    elif not (actor.is_admin or actor.is_leadership or actor.is_core_team):
        raise PermissionDenied("Only Admin, Club Leadership, or Core Team can add members")


def check_can_change_role(actor: Actor, current_role: str, new_role: str):
    if is_leadership(current_role) and not actor.is_admin:
        raise PermissionDenied("Only Admin can change the role of President or Vice President")
    check_can_assign(actor, new_role)


def check_can_remove(actor: Actor, target_user_id: str, target_role: str):
    if actor.user_id == target_user_id:
        if is_leadership(target_role) and not actor.is_admin:
            raise PermissionDenied(
                "President and Vice President cannot remove themselves. Only Admin can remove leadership roles")
        return

    if is_leadership(target_role):
        if not (actor.is_admin or actor.is_assigned_coordinator):
            raise PermissionDenied("Only Admin or Assigned Coordinator can remove President or Vice President")
    elif not (actor.is_admin or actor.is_leadership):
        raise PermissionDenied("Only Admin or Club Leadership can remove members")
