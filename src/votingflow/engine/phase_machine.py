"""Phase state machine — enforces the one-way workflow progression.

Lifecycle:
    RegisteringVoters → ProposalsRegistrationStarted →
    ProposalsRegistrationEnded → VotingSessionStarted →
    VotingSessionEnded → VotesTallied

Fail-closed: only the transitions listed below exist. No skipping, no
regression, and VotesTallied is terminal.
"""

from __future__ import annotations

from typing import Optional

from votingflow.models.workflow import WorkflowPhase


# Legal transitions: {from_phase: to_phase}
_TRANSITIONS: dict[WorkflowPhase, WorkflowPhase] = {
    WorkflowPhase.REGISTERING_VOTERS: WorkflowPhase.PROPOSALS_REGISTRATION_STARTED,
    WorkflowPhase.PROPOSALS_REGISTRATION_STARTED: WorkflowPhase.PROPOSALS_REGISTRATION_ENDED,
    WorkflowPhase.PROPOSALS_REGISTRATION_ENDED: WorkflowPhase.VOTING_SESSION_STARTED,
    WorkflowPhase.VOTING_SESSION_STARTED: WorkflowPhase.VOTING_SESSION_ENDED,
    WorkflowPhase.VOTING_SESSION_ENDED: WorkflowPhase.VOTES_TALLIED,
}


class PhaseMachine:
    """Validates phase transitions.

    Pure computation: validates only. Applying the change, notifying and
    persisting are the caller's job.
    """

    @staticmethod
    def validate_transition(
        current: WorkflowPhase,
        required: WorkflowPhase,
        target: WorkflowPhase,
    ) -> list[str]:
        """Check a transition named by its required and target phase.

        Returns errors (empty = OK).
        """
        if _TRANSITIONS.get(required) != target:
            return [f"Illegal transition: {required.value} → {target.value}"]
        if current != required:
            return [
                f"Workflow is in {current.value}; "
                f"{required.value} required to move to {target.value}"
            ]
        return []

    @staticmethod
    def next_phase(phase: WorkflowPhase) -> Optional[WorkflowPhase]:
        return _TRANSITIONS.get(phase)

    @staticmethod
    def is_terminal(phase: WorkflowPhase) -> bool:
        return phase not in _TRANSITIONS
