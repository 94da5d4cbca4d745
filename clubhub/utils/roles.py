# ================================================================================
# ROLE DEFINITIONS
# ================================================================================
# Global roles live on the user document (one per user). Scoped roles live on
# a membership document and only apply inside that club.
#
# President and Vice President carry identical permissions ("leadership").
# ================================================================================

GLOBAL_ROLES = ("student", "coordinator", "admin")

LEADERSHIP_ROLES = ("president", "vicePresident")
CORE_ROLES = ("core", "secretary", "treasurer", "leadPR", "leadTech")
CORE_AND_LEADERSHIP = CORE_ROLES + LEADERSHIP_ROLES
ELEVATED_ROLES = CORE_AND_LEADERSHIP
CLUB_ROLES = ("member",) + CORE_AND_LEADERSHIP

ROLE_LABELS = {
    "member": "Member",
    "core": "Core Member",
    "secretary": "Secretary",
    "treasurer": "Treasurer",
    "leadPR": "PR Lead",
    "leadTech": "Tech Lead",
    "president": "Sr Club Head (President)",
    "vicePresident": "Jr Club Head (Vice President)",
}


def is_leadership(role) -> bool:
    return role in LEADERSHIP_ROLES


def is_core_role(role) -> bool:
    """True for any management role, leadership included."""
    return role in CORE_AND_LEADERSHIP


def is_president(role) -> bool:
    return role == "president"
