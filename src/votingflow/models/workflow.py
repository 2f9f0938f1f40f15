"""Voting workflow data models.

The workflow moves through six phases in a fixed order:
    RegisteringVoters → ProposalsRegistrationStarted →
    ProposalsRegistrationEnded → VotingSessionStarted →
    VotingSessionEnded → VotesTallied

Progression is one-way. Proposals occupy index-stable slots: a cancelled
proposal is cleared in place and its slot is never reused or removed.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional


class WorkflowPhase(str, enum.Enum):
    """Workflow phases, declared in progression order."""
    REGISTERING_VOTERS = "RegisteringVoters"
    PROPOSALS_REGISTRATION_STARTED = "ProposalsRegistrationStarted"
    PROPOSALS_REGISTRATION_ENDED = "ProposalsRegistrationEnded"
    VOTING_SESSION_STARTED = "VotingSessionStarted"
    VOTING_SESSION_ENDED = "VotingSessionEnded"
    VOTES_TALLIED = "VotesTallied"

    @property
    def ordinal(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER: list[WorkflowPhase] = list(WorkflowPhase)


class NotificationKind(str, enum.Enum):
    """Observable notifications emitted on successful mutations."""
    VOTER_REGISTERED = "VoterRegistered"
    WORKFLOW_STATUS_CHANGE = "WorkflowStatusChange"
    PROPOSAL_REGISTERED = "ProposalRegistered"
    VOTED = "Voted"
    PROPOSAL_CANCELLED = "ProposalCancelled"
    VOTE_WITHDRAWN = "VoteWithdrawn"


@dataclass
class Voter:
    """Registration and vote state for one identity.

    voted_proposal_id is meaningful only while has_voted is True and is
    cleared again when the vote is withdrawn.
    """
    identity: str
    is_registered: bool = True
    has_voted: bool = False
    voted_proposal_id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "is_registered": self.is_registered,
            "has_voted": self.has_voted,
            "voted_proposal_id": self.voted_proposal_id,
        }


@dataclass
class Proposal:
    """A proposal slot. vote_count never drops below zero."""
    description: str
    vote_count: int = 0

    @property
    def cancelled(self) -> bool:
        return self.description == "" and self.vote_count == 0

    def to_dict(self) -> dict[str, Any]:
        return {"description": self.description, "vote_count": self.vote_count}


@dataclass(frozen=True)
class Notification:
    """A single notification, delivered to listeners in acceptance order."""
    kind: NotificationKind
    caller: str
    payload: dict[str, Any]
