# ================================================================================
# AUDIT LOG SERVICE
# ================================================================================
# Append-only record of privileged actions. Entries are never updated.
# ================================================================================

from clubhub.logger import get_logger
from clubhub.utils.clock import now_iso, to_iso
from clubhub.utils.validators import paginate, parse_iso

logger = get_logger(__name__)

SYSTEM_USER = "system"
SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")


class AuditService:
    def __init__(self, db):
        self.db = db

    def log(self, user_id, action: str, target: str = "", old_value=None, new_value=None,
            ip: str = "", user_agent: str = "", severity: str = "LOW") -> str:
        entry = {
            "user_id": user_id or SYSTEM_USER,
            "action": action,
            "target": target,
            "old_value": old_value,
            "new_value": new_value,
            "ip": ip or "",
            "user_agent": user_agent or "",
            "severity": severity if severity in SEVERITIES else "LOW",
            "created_at": now_iso(),
        }
        entry_id = self.db.insert("audit_logs", entry)
        logger.info("Audit %s by %s on %s", action, entry["user_id"], target)
        return entry_id

    def record(self, actor: dict | None, action: str, target: str = "", old_value=None,
               new_value=None, severity: str = "LOW") -> str:
        """Shortcut for log() taking the request actor context."""
        actor = actor or {}
        return self.log(actor.get("id"), action, target, old_value, new_value,
                        ip=actor.get("ip", ""), user_agent=actor.get("user_agent", ""),
                        severity=severity)

    def query(self, user_id=None, action=None, date_from=None, date_to=None) -> list:
        filters = []
        if user_id:
            filters.append(("user_id", "==", user_id))
        if action:
            filters.append(("action", "==", action))
        if date_from:
            filters.append(("created_at", ">=", to_iso(parse_iso(date_from, "date_from"))))
        if date_to:
            filters.append(("created_at", "<=", to_iso(parse_iso(date_to, "date_to"))))
        return self.db.query("audit_logs", filters, order_by="created_at", descending=True)

    def list(self, user_id=None, action=None, date_from=None, date_to=None,
             page: int = 1, limit: int = 20) -> dict:
        result = paginate(self.query(user_id, action, date_from, date_to), page, limit)
        result["logs"] = result.pop("items")
        return result
