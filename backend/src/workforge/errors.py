"""Error taxonomy for the WorkForge data-access engine.

Every error carries an HTTP-shaped ``status`` and a machine-readable ``code``
so the outer routing layer can map it to a response without inspecting
messages.
"""


class WorkforgeError(Exception):
    """Base class for all engine errors."""

    status = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Serialize for an error response body."""
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class BadRequest(WorkforgeError):
    """Malformed id, empty/invalid data, unfilterable field, nothing to update."""

    status = 400
    code = "BAD_REQUEST"


class UnknownEntity(BadRequest):
    """The entity key is not registered in the metadata registry."""

    code = "UNKNOWN_ENTITY"


class NotFound(WorkforgeError):
    """A referenced row does not exist (reads return None instead)."""

    status = 404
    code = "NOT_FOUND"


class Forbidden(WorkforgeError):
    """Attempt to modify or delete a system-protected record."""

    status = 403
    code = "FORBIDDEN"


class Conflict(WorkforgeError):
    """Unique constraint violation."""

    status = 409
    code = "CONFLICT"


class MetadataError(Exception):
    """Entity metadata failed validation and cannot be loaded."""

    def __init__(self, message: str, issues: list | None = None):
        super().__init__(message)
        self.issues = issues or []
