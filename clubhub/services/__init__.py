# ================================================================================
# SERVICE REGISTRY
# ================================================================================
# One Services instance per app, stored in app.extensions["clubhub"]. Every
# service shares the same FirebaseDB, audit log and notification service.
# ================================================================================

from flask import current_app

from clubhub.services.audit import AuditService
from clubhub.services.clubs import ClubService
from clubhub.services.events import EventService
from clubhub.services.notifications import NotificationService
from clubhub.services.recruitments import RecruitmentService
from clubhub.services.reports import ReportService
from clubhub.services.users import UserService


class Services:
    def __init__(self, db, config=None):
        config = config or {}
        self.db = db
        self.audit = AuditService(db)
        self.notifications = NotificationService(db, config)
        self.users = UserService(db, self.audit, self.notifications, config)
        self.clubs = ClubService(db, self.audit, self.notifications, config)
        self.events = EventService(db, self.audit, self.notifications, config)
        self.recruitments = RecruitmentService(db, self.audit, self.notifications, self.clubs, config)
        self.reports = ReportService(db, self.audit)


def get_services() -> Services:
    return current_app.extensions["clubhub"]
