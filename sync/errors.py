"""
Error classification for the Supabase record store.

PostgREST reports failures as an error object with a code and a free-text
message. The store converts every failure into a StoreError carrying an
explicit kind, so callers decide on retries and user messages from the
kind alone.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class StoreErrorKind:
    """Coarse store failure classes."""

    TRANSIENT = "transient"                  # Schema cache out of date; retry shortly
    MISSING_RELATION = "missing_relation"    # Table not migrated
    PERMISSION_DENIED = "permission_denied"  # RLS / grants rejected the query
    AUTH_REQUIRED = "auth_required"          # No usable user session
    SCHEMA = "schema"                        # Column/relationship not found
    UNKNOWN = "unknown"


# PostgREST codes for schema cache problems that resolve on reload
_TRANSIENT_CODES = {"PGRST002", "PGRST204"}

_USER_MESSAGES = {
    StoreErrorKind.TRANSIENT: (
        "Database connection issue detected. Please refresh the page and try again. "
        "If the problem persists, the database may need to be reset."
    ),
    StoreErrorKind.MISSING_RELATION: "Database table missing. Please run migrations or contact support.",
    StoreErrorKind.PERMISSION_DENIED: "Insufficient permissions. Please check your account status.",
    StoreErrorKind.AUTH_REQUIRED: "Please sign in to start a focus session.",
    StoreErrorKind.SCHEMA: "Database schema error. Please refresh the page or contact support if the issue persists.",
}

_SUGGESTIONS = {
    StoreErrorKind.TRANSIENT: "Schema cache issue detected. Please refresh the page and try again.",
    StoreErrorKind.MISSING_RELATION: "Database tables are missing. Please run the database migration.",
    StoreErrorKind.PERMISSION_DENIED: "Permission issue. Please check your authentication status.",
    StoreErrorKind.AUTH_REQUIRED: "Authentication required. Please sign in and try again.",
    StoreErrorKind.SCHEMA: "Database schema mismatch. Please run the latest migration.",
    StoreErrorKind.UNKNOWN: "Database connection issue. Please try again or contact support.",
}


def suggestion_for(kind: Optional[str]) -> str:
    """Remediation hint for an error kind."""
    return _SUGGESTIONS.get(kind or "", _SUGGESTIONS[StoreErrorKind.UNKNOWN])


class StoreError(Exception):
    """A classified record store failure."""

    def __init__(self, kind: str, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code

    @property
    def is_transient(self) -> bool:
        return self.kind == StoreErrorKind.TRANSIENT

    @property
    def user_message(self) -> str:
        """Text suitable for showing to the user."""
        return _USER_MESSAGES.get(self.kind) or self.message or "There was an issue with the database. Please try again."

    @property
    def suggestion(self) -> str:
        return suggestion_for(self.kind)

    def __repr__(self) -> str:
        return f"StoreError(kind={self.kind!r}, code={self.code!r}, message={self.message!r})"


def classify_store_error(exc: BaseException) -> StoreError:
    """
    Convert a PostgREST/Supabase exception into a StoreError.

    Args:
        exc: Exception raised by the Supabase client

    Returns:
        StoreError with the matching kind (the input itself if already classified)
    """
    if isinstance(exc, StoreError):
        return exc

    code = getattr(exc, "code", None)
    code = str(code) if code else None
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    text = message.lower()

    if code in _TRANSIENT_CODES or "schema cache" in text:
        kind = StoreErrorKind.TRANSIENT
    elif code == "42P01" or ("relation" in text and "does not exist" in text):
        kind = StoreErrorKind.MISSING_RELATION
    elif code == "42501" or "permission denied" in text or "row-level security" in text:
        kind = StoreErrorKind.PERMISSION_DENIED
    elif code in ("PGRST301", "PGRST116") or "jwt" in text:
        # PGRST116 shows up when RLS hides every row from an anonymous caller
        kind = StoreErrorKind.AUTH_REQUIRED
    elif "could not find" in text:
        kind = StoreErrorKind.SCHEMA
    else:
        kind = StoreErrorKind.UNKNOWN

    logger.debug(f"Classified store error code={code} as {kind}: {message}")
    return StoreError(kind, message, code)
