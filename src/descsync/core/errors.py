"""Error taxonomy shared by the catalog client, the adapters and the driver.

Transient transport failures never show up here: they are retried by the
HTTP helpers and the vendor SDKs before reaching the core. What remains is
either expected (a target object is missing or not writable by us) or fatal.
"""

from __future__ import annotations

from enum import Enum


class DescsyncError(RuntimeError):
    """Base class for all descsync errors."""


class AuthError(DescsyncError):
    """Raised when credentials for the catalog or a target cannot be obtained."""


class CatalogAPIError(DescsyncError):
    """Raised when the catalog API answers with a non-retryable error."""

    def __init__(self, message: str, *, status: int | None = None, context: str = ""):
        super().__init__(message if not context else f"{message} ({context})")
        self.status = status
        self.context = context


class MalformedResponseError(DescsyncError):
    """Raised when an API response does not have the expected shape."""


class ErrorKind(str, Enum):
    """
    Classification of a failed target call.

    Values:
        NOT_FOUND: The object exists in the catalog but not in the target.
        PERMISSION_DENIED: The agent may not read or write the object.
        OTHER: Anything else; aborts the run.
    """

    NOT_FOUND = "NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    OTHER = "OTHER"


class ReconcileAborted(DescsyncError):
    """Raised by the driver when an entity fails with a fatal error."""

    def __init__(self, phase: str, entity: str, cause: BaseException):
        super().__init__(f"{phase} aborted at {entity}: {cause}")
        self.phase = phase
        self.entity = entity
        self.cause = cause
        self.summary = None


class TargetNotFoundError(DescsyncError):
    """Raised by an adapter when a listing does not contain the requested object."""
