# ================================================================================
# USER SERVICE
# ================================================================================
# Registration, authentication, profiles and admin user management.
#
# Every user carries exactly one global role. Promoting a student to
# coordinator/admin removes all of their club memberships, since coordinators
# and admins are never club members.
# ================================================================================

from werkzeug.security import check_password_hash, generate_password_hash

from clubhub.logger import get_logger
from clubhub.utils.clock import now_iso
from clubhub.utils.errors import (
    AuthenticationError, ConflictError, NotFoundError, PermissionDenied, ValidationError
)
from clubhub.utils.validators import (
    normalize_email, optional_text, paginate, parse_number, valid_email,
    string_field, valid_roll_number, validate_global_role, validate_name, validate_password,
    MIN_PASSWORD_LENGTH
)

logger = get_logger(__name__)

USER_STATUSES = ("active", "suspended")
PROFILE_FIELDS = ("name", "department", "year", "phone")


def public_user(user: dict | None) -> dict | None:
    if user is None:
        return None
    out = dict(user)
    out.pop("password_hash", None)
    return out


class UserService:
    def __init__(self, db, audit, notifications, config=None):
        self.db = db
        self.audit = audit
        self.notifications = notifications

    def get_user_or_404(self, user_id) -> dict:
        user = self.db.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def _check_new_identity(self, email, name, password):
        if not valid_email(email):
            raise ValidationError("Invalid email address")
        if not validate_name(name):
            raise ValidationError("Name must be 2-80 characters")
        if not validate_password(password):
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if self.db.get_user_by_email(email):
            raise ConflictError("Email already registered")

    # ================================================================================
    # AUTHENTICATION
    # ================================================================================
    def register(self, data: dict, actor: dict | None = None) -> dict:
        email = normalize_email(data.get("email"))
        name = string_field(data, "name")
        password = data.get("password") or ""
        roll_number = string_field(data, "roll_number").upper()
        self._check_new_identity(email, name, password)
        if not valid_roll_number(roll_number):
            raise ValidationError("Invalid roll number format")
        if self.db.get_user_by_roll_number(roll_number):
            raise ConflictError("Roll number already registered")

        year = parse_number(data.get("year"), "year", minimum=1, integer=True)
        if year is not None and year > 4:
            raise ValidationError("year must be between 1 and 4")

        stamp = now_iso()
        user = {
            "email": email,
            "name": name,
            "roll_number": roll_number,
            "department": optional_text(data, "department", 100),
            "year": year,
            "phone": optional_text(data, "phone", 20),
            "role": "student",
            "status": "active",
            "password_hash": generate_password_hash(password),
            "created_at": stamp,
            "updated_at": stamp,
        }
        user["id"] = self.db.insert("users", user)
        self.audit.record(actor or {"id": user["id"]}, "USER_REGISTER", f"User:{user['id']}",
                          new_value={"email": email})
        logger.info("Registered user %s", user["id"])
        return public_user(user)

    def create_admin(self, email: str, name: str, password: str) -> dict:
        email = normalize_email(email)
        self._check_new_identity(email, (name or "").strip(), password)
        stamp = now_iso()
        user = {
            "email": email,
            "name": name.strip(),
            "role": "admin",
            "status": "active",
            "password_hash": generate_password_hash(password),
            "created_at": stamp,
            "updated_at": stamp,
        }
        user["id"] = self.db.insert("users", user)
        self.audit.log(None, "ADMIN_BOOTSTRAP", f"User:{user['id']}", new_value={"email": email},
                       ip="cli", user_agent="flask-cli", severity="HIGH")
        return public_user(user)

    def authenticate(self, email, password) -> dict:
        user = self.db.get_user_by_email(normalize_email(email))
        if not user or not password or not check_password_hash(user.get("password_hash") or "", password):
            raise AuthenticationError("Invalid email or password")
        if user.get("status") == "suspended":
            raise PermissionDenied("Account suspended")
        self.db.update("users", user["id"], {"last_login_at": now_iso()})
        return public_user(user)

    # ================================================================================
    # SELF SERVICE
    # ================================================================================
    def get_profile(self, user_id) -> dict:
        user = public_user(self.get_user_or_404(user_id))
        user["club_count"] = len(self.db.user_memberships(user_id))
        return user

    def update_profile(self, user_id, data: dict, actor: dict) -> dict:
        user = self.get_user_or_404(user_id)
        changes = {}
        if "name" in data:
            name = string_field(data, "name")
            if not validate_name(name, max_len=50):
                raise ValidationError("Name must be 2-50 characters")
            changes["name"] = name
        if "department" in data:
            changes["department"] = optional_text(data, "department", 100)
        if "phone" in data:
            changes["phone"] = optional_text(data, "phone", 20)
        if "year" in data:
            year = parse_number(data.get("year"), "year", minimum=1, integer=True)
            if year is not None and year > 4:
                raise ValidationError("year must be between 1 and 4")
            changes["year"] = year
        if not changes:
            raise ValidationError("No valid fields to update")

        changes["updated_at"] = now_iso()
        self.db.update("users", user_id, changes)
        self.audit.record(actor, "PROFILE_UPDATE", f"User:{user_id}",
                          old_value={k: user.get(k) for k in changes if k != "updated_at"},
                          new_value={k: v for k, v in changes.items() if k != "updated_at"})
        user.update(changes)
        return public_user(user)

    def change_password(self, user_id, old_password, new_password, actor: dict):
        user = self.get_user_or_404(user_id)
        if not old_password or not check_password_hash(user.get("password_hash") or "", old_password):
            raise ValidationError("Old password is incorrect")
        if not validate_password(new_password):
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        self.db.update("users", user_id, {"password_hash": generate_password_hash(new_password),
                                          "updated_at": now_iso()})
        self.audit.record(actor, "PASSWORD_CHANGE", f"User:{user_id}")

    def my_clubs(self, user_id, role_filter=None) -> list:
        user = self.get_user_or_404(user_id)
        memberships = self.db.user_memberships(user_id)
        if role_filter:
            memberships = [m for m in memberships if m.get("role") == role_filter]

        clubs = []
        for membership in sorted(memberships, key=lambda m: m.get("joined_at") or "", reverse=True):
            club = self.db.get_club(membership["club_id"])
            if club and club.get("status") in ("active", "pending_archive"):
                clubs.append({"club": club, "role": membership["role"], "joined_at": membership.get("joined_at")})

        if user.get("role") == "coordinator" and not role_filter:
            seen = {c["club"]["id"] for c in clubs}
            for club in self.db.query("clubs", [("coordinator_id", "==", user_id),
                                                ("status", "in", ["active", "pending_archive"])]):
                if club["id"] not in seen:
                    clubs.append({"club": club, "role": "coordinator", "joined_at": None})
        return clubs

    # ================================================================================
    # ADMINISTRATION
    # ================================================================================
    def list_users(self, filters: dict, page: int = 1, limit: int = 20, viewer: dict | None = None) -> dict:
        query = []
        role = filters.get("role")
        if viewer and viewer.get("role") != "admin":
            role = "student"
        if role:
            query.append(("role", "==", role))
        if filters.get("status"):
            query.append(("status", "==", filters["status"]))
        if filters.get("department"):
            query.append(("department", "==", filters["department"]))
        users = self.db.query("users", query, order_by="created_at", descending=True)

        search = (filters.get("search") or "").strip().lower()
        if search:
            users = [u for u in users if search in (u.get("name") or "").lower()
                     or search in (u.get("email") or "")
                     or search in (u.get("roll_number") or "").lower()]
        result = paginate([public_user(u) for u in users], page, limit)
        result["users"] = result.pop("items")
        return result

    def get_user(self, user_id) -> dict:
        return public_user(self.get_user_or_404(user_id))

    def _check_not_self(self, user_id, actor, what):
        if user_id == actor.get("id"):
            raise ValidationError(f"You cannot {what} your own account")

    def _check_no_coordinated_clubs(self, user_id):
        clubs = self.db.query("clubs", [("coordinator_id", "==", user_id), ("status", "!=", "archived")])
        if clubs:
            raise ValidationError("User still coordinates clubs. Assign a new coordinator first")

    def change_global_role(self, user_id, role: str, actor: dict) -> dict:
        if not validate_global_role(role):
            raise ValidationError("Invalid global role")
        user = self.get_user_or_404(user_id)
        self._check_not_self(user_id, actor, "change the role of")
        old_role = user.get("role")
        if old_role == role:
            return public_user(user)
        if old_role == "coordinator":
            self._check_no_coordinated_clubs(user_id)

        self.db.update("users", user_id, {"role": role, "updated_at": now_iso()})

        if old_role == "student" and role in ("coordinator", "admin"):
            removed = self.db.query("memberships", [("user_id", "==", user_id)])
            if removed:
                self.db.delete_where("memberships", [("user_id", "==", user_id)])
                self.audit.record(actor, "MEMBERSHIPS_REMOVED", f"User:{user_id}",
                                  old_value=[{"club_id": m["club_id"], "role": m["role"]} for m in removed],
                                  new_value=f"Removed {len(removed)} club membership(s) due to promotion to {role}")

        self.audit.record(actor, "ROLE_CHANGE", f"User:{user_id}",
                          old_value={"global": old_role}, new_value={"global": role}, severity="HIGH")
        self.notifications.notify_many([user_id], "global_role_changed", {"role": role})
        user["role"] = role
        return public_user(user)

    def suspend_user(self, user_id, actor: dict) -> dict:
        user = self.get_user_or_404(user_id)
        self._check_not_self(user_id, actor, "suspend")
        self.db.update("users", user_id, {"status": "suspended", "updated_at": now_iso()})
        self.audit.record(actor, "USER_SUSPEND", f"User:{user_id}", severity="HIGH")
        self.notifications.notify_many([user_id], "system", {"message": "Your account has been suspended"},
                                       priority="HIGH")
        user["status"] = "suspended"
        return public_user(user)

    def delete_user(self, user_id, actor: dict) -> dict:
        user = self.get_user_or_404(user_id)
        self._check_not_self(user_id, actor, "delete")
        self._check_no_coordinated_clubs(user_id)
        self.audit.record(actor, "USER_DELETE", f"User:{user_id}",
                          old_value={"email": user.get("email"), "name": user.get("name")}, severity="HIGH")
        self.db.delete_where("memberships", [("user_id", "==", user_id)])
        self.db.delete("users", user_id)
        return {"email": user.get("email"), "name": user.get("name")}
