# ================================================================================
# CLUBHUB - MAIN APPLICATION
# ================================================================================
# This Flask application is the REST backend for campus club management:
# clubs and memberships, events and their approval/completion lifecycle,
# recruitment drives, notifications, audit logs and reports.
#
# Key Features:
# - Role-based authorization (global roles + per-club scoped roles)
# - Event and recruitment status machines with scheduled transitions
# - Firebase Firestore database integration
# - CSV exports for members, attendance and audit logs
#
# Run locally:   flask --app clubhub.app run
# Bootstrap:     flask --app clubhub.app create-admin admin@example.edu "Admin Name"
# ================================================================================

import atexit

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from clubhub.config import Config
from clubhub.controllers.auth_controller import auth_bp
from clubhub.controllers.clubs_controller import clubs_bp, public_bp
from clubhub.controllers.events_controller import events_bp
from clubhub.controllers.notifications_controller import notifications_bp
from clubhub.controllers.recruitments_controller import recruitments_bp
from clubhub.controllers.reports_controller import reports_bp
from clubhub.controllers.users_controller import users_bp
from clubhub.firebase_config import FirebaseDB
from clubhub.jobs.scheduler import JobScheduler
from clubhub.logger import get_logger
from clubhub.services import Services
from clubhub.utils.authz import load_current_user
from clubhub.utils.errors import ClubHubError

logger = get_logger(__name__)

BLUEPRINTS = (auth_bp, users_bp, clubs_bp, public_bp, events_bp, recruitments_bp, notifications_bp, reports_bp)


def create_app(db=None, config=None):
    """
    Build the Flask application.

    Args:
        db: FirebaseDB instance; a Firestore-backed one is created when omitted
        config (dict): overrides applied on top of Config
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    services = Services(db if db is not None else FirebaseDB(), app.config)
    app.extensions["clubhub"] = services

    for bp in BLUEPRINTS:
        app.register_blueprint(bp)

    # ---- BEFORE REQUEST HANDLERS ----
    @app.before_request
    def _load_user():
        """Reload the session user so role changes and suspensions apply immediately"""
        load_current_user(services.db)

    _register_error_handlers(app)
    _register_commands(app, services)

    if app.config.get("START_SCHEDULERS"):
        scheduler = JobScheduler(services)
        scheduler.start()
        app.extensions["clubhub_scheduler"] = scheduler
        atexit.register(scheduler.shutdown)

    logger.info("ClubHub app created")
    return app


# ------------- Errors -------------
def _register_error_handlers(app):
    @app.errorhandler(ClubHubError)
    def handle_clubhub_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"success": False, "error": e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("Unhandled error")
        return jsonify({"success": False, "error": "Server error"}), 500


# ------------- CLI -------------
def _register_commands(app, services):
    @app.cli.command("create-admin")
    @click.argument("email")
    @click.argument("name")
    @click.password_option()
    def create_admin(email, name, password):
        """Create the first admin account."""
        try:
            user = services.users.create_admin(email, name, password)
        except ClubHubError as e:
            raise click.ClickException(e.message)
        click.echo(f"Admin {user['email']} created with id {user['id']}")

    @app.cli.command("run-jobs")
    def run_jobs():
        """Run every scheduled job once."""
        results = JobScheduler(services).run_all()
        for job_id, changed in results.items():
            click.echo(f"{job_id}: {'failed' if changed is None else changed}")


if __name__ == "__main__":
    application = create_app()
    application.run(host="0.0.0.0", port=application.config["PORT"], debug=application.config["DEBUG"])
