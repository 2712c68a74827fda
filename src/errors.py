"""Error taxonomy for the make-up waitlist engine.

Every error carries a machine-readable ``code`` (see reason_library.py for the
user-facing wording). Callers decide how to surface them:

- ValidationError: bad or duplicate input at creation time, not retried.
- StateError: transition attempted from an incompatible status.
- ConflictError: the persisted row changed under us; re-fetch and retry.
- NotFoundError: entry or lesson reference is missing.
"""

from __future__ import annotations


class WaitlistError(Exception):
    """Base exception for all waitlist engine errors."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code


class ValidationError(WaitlistError):
    """Malformed input. Surfaced as a field-level message."""

    pass


class StateError(WaitlistError):
    """Transition not allowed from the entry's current status."""

    pass


class ConflictError(WaitlistError):
    """Optimistic precondition failed at commit time.

    Always safe to re-fetch the entry and retry from its new state.
    """

    pass


class NotFoundError(WaitlistError):
    pass
