# ================================================================================
# ERROR TYPES
# ================================================================================
# Services raise these; the Flask app turns them into
# {"success": False, "error": <message>} responses with the matching status.
# ================================================================================


class ClubHubError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"success": False, "error": self.message}


class ValidationError(ClubHubError):
    status_code = 400


class AuthenticationError(ClubHubError):
    status_code = 401


class PermissionDenied(ClubHubError):
    status_code = 403


class NotFoundError(ClubHubError):
    status_code = 404


class ConflictError(ClubHubError):
    status_code = 409
