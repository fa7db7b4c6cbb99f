"""Error taxonomy for the tracking endpoint.

Every error carries the HTTP status it is surfaced with; ``main`` renders
them all into the same failure envelope.

Hierarchy::

    TrackingError
    ├── ClientValidationError   (400)
    ├── AuthError               (403)
    ├── PersistenceError        (500)
    └── EmptyResultError        (400)

Links dropped during per-item validation are not errors; they are only
reflected by their absence from the saved count.
"""

from __future__ import annotations


class TrackingError(Exception):
    """Base class for errors that reject a tracking batch."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ClientValidationError(TrackingError):
    """Batch-level fields are missing or malformed."""

    status_code = 400


class AuthError(TrackingError):
    """The anti-forgery nonce did not verify."""

    status_code = 403


class PersistenceError(TrackingError):
    """The Visit row could not be written; no links were attempted."""

    status_code = 500


class EmptyResultError(TrackingError):
    """The Visit was written but none of its links survived.

    The Visit row is kept; the report join never surfaces it.
    """

    status_code = 400

    def __init__(self, message: str, visit_id: int) -> None:
        super().__init__(message)
        self.visit_id = visit_id
