"""Error taxonomy for the board service.

Errors carry a kind, never a transport status; the HTTP layer maps kinds to
status codes (see ``kanban.main``).
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class KanbanError(Exception):
    """Base exception for all domain and infrastructure failures."""

    def __init__(
        self,
        message: str,
        code: str,
        kind: ErrorKind,
        fields: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.kind = kind
        self.fields = fields or []

    def to_response(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "kind": self.kind.value,
                "fields": self.fields,
            }
        }


# === Domain errors ===


class NotFoundError(KanbanError):
    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} '{resource_id}' not found"
        super().__init__(message, "not_found", ErrorKind.NOT_FOUND)
        self.resource = resource
        self.resource_id = resource_id


class BadRequestError(KanbanError):
    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message, "bad_request", ErrorKind.BAD_REQUEST, fields)


class UnauthorizedError(KanbanError):
    def __init__(self, message: str = "You must be a member of this board to make changes"):
        super().__init__(message, "forbidden", ErrorKind.UNAUTHORIZED)


# === Infrastructure errors ===


class VersionConflictError(KanbanError):
    """An aggregate was saved by another writer after it was loaded."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            f"{resource} '{resource_id}' was modified concurrently",
            "version_conflict",
            ErrorKind.CONFLICT,
        )
        self.resource = resource
        self.resource_id = resource_id


class StoreUnavailableError(KanbanError):
    def __init__(self, operation: str, detail: str = ""):
        message = f"store {operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, "store_unavailable", ErrorKind.INTERNAL)
        self.operation = operation
