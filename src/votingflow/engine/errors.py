"""Workflow error kinds.

Every failure is a local validation failure raised before any mutation.
The ``kind`` attribute is stable and is what outer layers (service, CLI)
use to tell failures apart.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for rejected workflow operations."""
    kind = "WorkflowError"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PhaseViolation(WorkflowError):
    """Operation invoked outside its required phase."""
    kind = "PhaseViolation"


class AuthorizationViolation(WorkflowError):
    """Caller lacks the Admin or Voter role the operation requires."""
    kind = "AuthorizationViolation"


class DuplicateRegistration(WorkflowError):
    kind = "DuplicateRegistration"


class AlreadyVoted(WorkflowError):
    kind = "AlreadyVoted"


class NotYetVoted(WorkflowError):
    kind = "NotYetVoted"


class VoteMismatch(WorkflowError):
    """Withdrawal names a proposal other than the caller's recorded vote."""
    kind = "VoteMismatch"


class OutOfRange(WorkflowError, IndexError):
    kind = "OutOfRange"


class InsufficientVoters(WorkflowError):
    kind = "InsufficientVoters"


class InvalidArgument(WorkflowError, ValueError):
    """Blank identity or blank proposal description."""
    kind = "InvalidArgument"


ERROR_KINDS: tuple[type[WorkflowError], ...] = (
    PhaseViolation,
    AuthorizationViolation,
    DuplicateRegistration,
    AlreadyVoted,
    NotYetVoted,
    VoteMismatch,
    OutOfRange,
    InsufficientVoters,
    InvalidArgument,
)
