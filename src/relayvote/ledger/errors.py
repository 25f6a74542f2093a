"""Ledger rejection reasons.

Every rejected ledger operation raises a LedgerError carrying a stable
RejectReason. The reason value is the exact string surfaced to callers
and matched by relayers, so existing values must never change.
"""

from __future__ import annotations

import enum


class ErrorClass(str, enum.Enum):
    """Taxonomy of ledger failures."""
    TIMING = "timing"
    IDENTITY = "identity"
    STRUCTURAL = "structural"
    AUTHORIZATION = "authorization"
    LIFECYCLE = "lifecycle"


class RejectReason(str, enum.Enum):
    # Timing
    NOT_STARTED = "voting not started"
    ENDED = "voting ended"
    SIGNATURE_EXPIRED = "signature expired"
    # Structural
    WRONG_ELECTION = "wrong election"
    BAD_CANDIDATE = "bad candidate"
    # Identity / replay
    BAD_NONCE = "bad nonce"
    INVALID_SIGNATURE = "invalid signature"
    ALREADY_VOTED = "already voted"
    # Authorization
    NOT_OWNER = "not owner"
    ZERO_ADDRESS = "zero address"
    # Lifecycle
    FINALIZED = "finalized"
    BAD_END = "bad end"
    NOT_ENDED = "voting not ended"
    ALREADY_FINALIZED = "already finalized"

    @property
    def error_class(self) -> ErrorClass:
        return _CLASSES[self]


_CLASSES: dict[RejectReason, ErrorClass] = {
    RejectReason.NOT_STARTED: ErrorClass.TIMING,
    RejectReason.ENDED: ErrorClass.TIMING,
    RejectReason.SIGNATURE_EXPIRED: ErrorClass.TIMING,
    RejectReason.WRONG_ELECTION: ErrorClass.STRUCTURAL,
    RejectReason.BAD_CANDIDATE: ErrorClass.STRUCTURAL,
    RejectReason.BAD_NONCE: ErrorClass.IDENTITY,
    RejectReason.INVALID_SIGNATURE: ErrorClass.IDENTITY,
    RejectReason.ALREADY_VOTED: ErrorClass.IDENTITY,
    RejectReason.NOT_OWNER: ErrorClass.AUTHORIZATION,
    RejectReason.ZERO_ADDRESS: ErrorClass.STRUCTURAL,
    RejectReason.FINALIZED: ErrorClass.LIFECYCLE,
    RejectReason.BAD_END: ErrorClass.LIFECYCLE,
    RejectReason.NOT_ENDED: ErrorClass.LIFECYCLE,
    RejectReason.ALREADY_FINALIZED: ErrorClass.LIFECYCLE,
}


class LedgerError(Exception):
    """Base class for fail-closed ledger rejections."""

    def __init__(self, reason: RejectReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)


class VoteRejected(LedgerError):
    """Raised when submit_vote refuses an intent."""


class NotOwner(LedgerError):
    """Raised when a non-owner calls an owner-only operation."""

    def __init__(self, caller: str) -> None:
        super().__init__(RejectReason.NOT_OWNER, caller)


class LifecycleError(LedgerError):
    """Raised when an operation is illegal in the current election phase."""


class PersistenceError(Exception):
    """Raised when the audit trail cannot record an accepted mutation."""
