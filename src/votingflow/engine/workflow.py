"""Voting workflow — phase-gated registry of voters, proposals and votes.

The workflow owns three collections:
- voters: identity → Voter (key-unique, never deleted)
- proposals: index-stable list (append-only, cancel clears in place)
- votes: recorded on each Voter (at most one active vote)

Every public operation takes the caller identity explicitly. Admin
operations require the caller to be the creator; voter operations require
a registered caller.

Each mutating operation is atomic under a single lock. All checks run
before any mutation, so a rejected operation leaves the state unchanged
and emits nothing. Notifications go to listeners after the mutation is
applied, while the lock is still held, in acceptance order. A listener
that raises is recorded on ``listener_errors`` and does not stop delivery.

Invariants:
1. Phase only advances along the fixed six-phase sequence.
2. An identity is registered at most once.
3. A voter has at most one active vote.
4. A proposal's vote_count equals the number of voters whose active
   vote points at its index.
5. The winner exists only in VotesTallied: lowest index among those
   with the maximum vote count.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from votingflow.engine.errors import (
    AlreadyVoted,
    AuthorizationViolation,
    DuplicateRegistration,
    InsufficientVoters,
    InvalidArgument,
    NotYetVoted,
    OutOfRange,
    PhaseViolation,
    VoteMismatch,
)
from votingflow.engine.phase_machine import PhaseMachine
from votingflow.models.workflow import (
    Notification,
    NotificationKind,
    Proposal,
    Voter,
    WorkflowPhase,
)
from votingflow.policy.resolver import WorkflowPolicy


Listener = Callable[[Notification], None]


class VotingWorkflow:
    """Single-writer voting workflow.

    Usage:
        wf = VotingWorkflow("alice")
        wf.register_voter("alice", "bob")
        wf.start_proposals_registering("alice")
        index = wf.register_proposal("bob", "Paint the shed")
        wf.end_proposals_registering("alice")
        wf.start_voting_session("alice")
        wf.cast_vote("bob", index)
        wf.end_voting_session("alice")
        wf.tally_votes("alice")
        winner = wf.get_winner()
    """

    def __init__(
        self,
        creator: str,
        policy: Optional[WorkflowPolicy] = None,
        listeners: Optional[list[Listener]] = None,
    ) -> None:
        self._policy = policy or WorkflowPolicy()
        self._lock = threading.RLock()
        self._listeners: list[Listener] = list(listeners or [])
        self._listener_errors: list[str] = []

        self._check_identity(creator)
        self._creator = creator
        self._phase = WorkflowPhase.REGISTERING_VOTERS
        self._voters: dict[str, Voter] = {}
        self._proposals: list[Proposal] = []
        self._voters_count = 0
        self._winning_proposal_id = 0

        # Creator is the first registered voter
        self._voters[creator] = Voter(identity=creator)
        self._voters_count = 1
        self._emit(NotificationKind.VOTER_REGISTERED, creator, {"identity": creator})

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def register_voter(self, caller: str, identity: str) -> None:
        """Register a new eligible voter."""
        with self._lock:
            self._require_admin(caller)
            self._require_phase(WorkflowPhase.REGISTERING_VOTERS, "register voters")
            self._check_identity(identity)
            if identity in self._voters:
                raise DuplicateRegistration(f"Voter already registered: {identity}")

            self._voters[identity] = Voter(identity=identity)
            self._voters_count += 1
            self._emit(NotificationKind.VOTER_REGISTERED, caller, {"identity": identity})

    def start_proposals_registering(self, caller: str) -> None:
        self._advance(
            caller,
            WorkflowPhase.REGISTERING_VOTERS,
            WorkflowPhase.PROPOSALS_REGISTRATION_STARTED,
            needs_voters=True,
        )

    def end_proposals_registering(self, caller: str) -> None:
        self._advance(
            caller,
            WorkflowPhase.PROPOSALS_REGISTRATION_STARTED,
            WorkflowPhase.PROPOSALS_REGISTRATION_ENDED,
        )

    def start_voting_session(self, caller: str) -> None:
        self._advance(
            caller,
            WorkflowPhase.PROPOSALS_REGISTRATION_ENDED,
            WorkflowPhase.VOTING_SESSION_STARTED,
            needs_voters=True,
        )

    def end_voting_session(self, caller: str) -> None:
        self._advance(
            caller,
            WorkflowPhase.VOTING_SESSION_STARTED,
            WorkflowPhase.VOTING_SESSION_ENDED,
        )

    def tally_votes(self, caller: str) -> int:
        """Compute the winner and close the workflow. Returns the winning index.

        The scan starts from (0 votes, index 0) and only a strictly greater
        count replaces the leader, so ties go to the earliest index and an
        all-zero list reports index 0.
        """
        with self._lock:
            self._validate_advance(
                caller, WorkflowPhase.VOTING_SESSION_ENDED, WorkflowPhase.VOTES_TALLIED,
            )

            winning_id = 0
            winning_count = 0
            for index, proposal in enumerate(self._proposals):
                if proposal.vote_count > winning_count:
                    winning_count = proposal.vote_count
                    winning_id = index

            self._winning_proposal_id = winning_id
            self._apply_advance(caller, WorkflowPhase.VOTES_TALLIED)
            return winning_id

    # ------------------------------------------------------------------
    # Voter operations
    # ------------------------------------------------------------------

    def register_proposal(self, caller: str, description: str) -> int:
        """Append a proposal. Returns its index."""
        with self._lock:
            self._require_voter(caller)
            self._require_phase(
                WorkflowPhase.PROPOSALS_REGISTRATION_STARTED, "register proposals",
            )
            if not description or not description.strip():
                raise InvalidArgument("Proposal description cannot be empty")
            if len(description) > self._policy.max_description_length:
                raise InvalidArgument(
                    f"Proposal description exceeds "
                    f"{self._policy.max_description_length} characters"
                )

            self._proposals.append(Proposal(description=description))
            index = len(self._proposals) - 1
            self._emit(NotificationKind.PROPOSAL_REGISTERED, caller, {"index": index})
            return index

    def cancel_proposal(self, caller: str, index: int) -> None:
        """Clear a proposal slot in place. Later indices are not renumbered."""
        with self._lock:
            self._require_voter(caller)
            self._require_phase(
                WorkflowPhase.PROPOSALS_REGISTRATION_STARTED, "cancel proposals",
            )
            proposal = self._proposal_at(index)

            proposal.description = ""
            proposal.vote_count = 0
            self._emit(NotificationKind.PROPOSAL_CANCELLED, caller, {"index": index})

    def cast_vote(self, caller: str, index: int) -> None:
        with self._lock:
            voter = self._require_voter(caller)
            self._require_phase(WorkflowPhase.VOTING_SESSION_STARTED, "vote")
            if voter.has_voted:
                raise AlreadyVoted(
                    f"{caller} has already voted for proposal {voter.voted_proposal_id}"
                )
            proposal = self._proposal_at(index)

            voter.has_voted = True
            voter.voted_proposal_id = index
            proposal.vote_count += 1
            self._emit(
                NotificationKind.VOTED, caller, {"identity": caller, "index": index},
            )

    def withdraw_vote(self, caller: str, index: int) -> None:
        """Withdraw the caller's active vote. The recorded index is cleared."""
        with self._lock:
            voter = self._require_voter(caller)
            self._require_phase(WorkflowPhase.VOTING_SESSION_STARTED, "withdraw votes")
            if not voter.has_voted:
                raise NotYetVoted(f"{caller} has no vote to withdraw")
            if voter.voted_proposal_id != index:
                raise VoteMismatch(
                    f"{caller} voted for proposal {voter.voted_proposal_id}, not {index}"
                )
            proposal = self._proposal_at(index)

            proposal.vote_count -= 1
            voter.has_voted = False
            voter.voted_proposal_id = None
            self._emit(
                NotificationKind.VOTE_WITHDRAWN, caller, {"identity": caller, "index": index},
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def creator(self) -> str:
        return self._creator

    @property
    def phase(self) -> WorkflowPhase:
        return self._phase

    @property
    def policy(self) -> WorkflowPolicy:
        return self._policy

    def get_voters_count(self) -> int:
        return self._voters_count

    def get_voter(self, identity: str) -> Optional[Voter]:
        """Return a copy of a voter's record, or None if unregistered."""
        with self._lock:
            voter = self._voters.get(identity)
            if voter is None:
                return None
            return Voter(**voter.to_dict())

    def get_proposal(self, index: int) -> Proposal:
        with self._lock:
            proposal = self._proposal_at(index)
            return Proposal(proposal.description, proposal.vote_count)

    def get_proposals(self) -> list[Proposal]:
        with self._lock:
            return [Proposal(p.description, p.vote_count) for p in self._proposals]

    def get_ranked_proposals(self) -> list[tuple[int, Proposal]]:
        """Return (index, proposal) pairs by vote_count, highest first.

        Ties keep their original index order.
        """
        with self._lock:
            indexed = list(enumerate(self.get_proposals()))
        return sorted(indexed, key=lambda pair: -pair[1].vote_count)

    def get_winner(self) -> Proposal:
        with self._lock:
            if self._phase != WorkflowPhase.VOTES_TALLIED:
                raise PhaseViolation(
                    f"Votes not tallied yet (phase: {self._phase.value})"
                )
            return self.get_proposal(self._winning_proposal_id)

    @property
    def winning_proposal_id(self) -> Optional[int]:
        if self._phase != WorkflowPhase.VOTES_TALLIED:
            return None
        return self._winning_proposal_id

    @property
    def listener_errors(self) -> list[str]:
        """Failures raised by listeners, oldest first."""
        with self._lock:
            return list(self._listener_errors)

    # ------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------

    def to_record(self) -> dict[str, Any]:
        """Serialise the full workflow state."""
        with self._lock:
            return {
                "creator": self._creator,
                "phase": self._phase.value,
                "voters": [v.to_dict() for v in self._voters.values()],
                "proposals": [p.to_dict() for p in self._proposals],
                "voters_count": self._voters_count,
                "winning_proposal_id": self._winning_proposal_id,
            }

    @classmethod
    def from_record(
        cls,
        record: dict[str, Any],
        policy: Optional[WorkflowPolicy] = None,
    ) -> VotingWorkflow:
        """Restore a workflow from ``to_record`` output.

        Emits nothing. Raises ValueError if the record's vote counts do not
        match the voters' recorded votes, if ``voters_count`` disagrees with
        the voter list, or if a voter without an active vote records one.
        """
        wf = cls.__new__(cls)
        wf._policy = policy or WorkflowPolicy()
        wf._lock = threading.RLock()
        wf._listeners = []
        wf._listener_errors = []
        wf._load(record)
        return wf

    def restore(self, record: dict[str, Any]) -> None:
        """Replace the current state with a snapshot. Listeners are kept."""
        with self._lock:
            self._load(record)

    def _load(self, record: dict[str, Any]) -> None:
        voters = {
            vd["identity"]: Voter(
                identity=vd["identity"],
                is_registered=vd.get("is_registered", True),
                has_voted=vd.get("has_voted", False),
                voted_proposal_id=vd.get("voted_proposal_id"),
            )
            for vd in record["voters"]
        }
        proposals = [
            Proposal(description=pd["description"], vote_count=pd["vote_count"])
            for pd in record["proposals"]
        ]

        if len(voters) != len(record["voters"]):
            raise ValueError("Duplicate voter identities in record")
        voters_count = record.get("voters_count", len(voters))
        if voters_count != len(voters):
            raise ValueError(
                f"voters_count {voters_count} != registered voters {len(voters)}"
            )

        tallies = [0] * len(proposals)
        for voter in voters.values():
            if not voter.has_voted and voter.voted_proposal_id is not None:
                raise ValueError(
                    f"Voter {voter.identity} has no active vote but records "
                    f"proposal {voter.voted_proposal_id}"
                )
            if voter.has_voted:
                vid = voter.voted_proposal_id
                if vid is None or not 0 <= vid < len(proposals):
                    raise ValueError(
                        f"Voter {voter.identity} has an invalid recorded vote: {vid}"
                    )
                tallies[vid] += 1
        for index, proposal in enumerate(proposals):
            if proposal.vote_count != tallies[index]:
                raise ValueError(
                    f"Proposal {index} vote_count {proposal.vote_count} "
                    f"!= recorded votes {tallies[index]}"
                )
        if record["creator"] not in voters:
            raise ValueError(f"Creator {record['creator']} is not a registered voter")

        self._creator = record["creator"]
        self._phase = WorkflowPhase(record["phase"])
        self._voters = voters
        self._proposals = proposals
        self._voters_count = voters_count
        self._winning_proposal_id = record.get("winning_proposal_id", 0)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _advance(
        self,
        caller: str,
        required: WorkflowPhase,
        target: WorkflowPhase,
        needs_voters: bool = False,
    ) -> None:
        with self._lock:
            self._validate_advance(caller, required, target, needs_voters)
            self._apply_advance(caller, target)

    def _validate_advance(
        self,
        caller: str,
        required: WorkflowPhase,
        target: WorkflowPhase,
        needs_voters: bool = False,
    ) -> None:
        self._require_admin(caller)
        errors = PhaseMachine.validate_transition(self._phase, required, target)
        if errors:
            raise PhaseViolation("; ".join(errors))
        if needs_voters and self._voters_count <= 1:
            raise InsufficientVoters(
                f"Needs more than one registered voter, got {self._voters_count}"
            )

    def _apply_advance(self, caller: str, target: WorkflowPhase) -> None:
        previous = self._phase
        self._phase = target
        self._emit(
            NotificationKind.WORKFLOW_STATUS_CHANGE,
            caller,
            {"previous": previous.value, "new": target.value},
        )

    def _require_admin(self, caller: str) -> None:
        if caller != self._creator:
            raise AuthorizationViolation(f"{caller} is not the workflow admin")

    def _require_voter(self, caller: str) -> Voter:
        voter = self._voters.get(caller)
        if voter is None or not voter.is_registered:
            raise AuthorizationViolation(f"{caller} is not a registered voter")
        return voter

    def _require_phase(self, phase: WorkflowPhase, action: str) -> None:
        if self._phase != phase:
            raise PhaseViolation(
                f"Cannot {action} in phase {self._phase.value} "
                f"(requires {phase.value})"
            )

    def _proposal_at(self, index: int) -> Proposal:
        if isinstance(index, bool) or not isinstance(index, int):
            raise OutOfRange(f"Proposal index must be an integer, got {index!r}")
        if not 0 <= index < len(self._proposals):
            raise OutOfRange(
                f"Proposal index {index} out of range (0..{len(self._proposals) - 1})"
            )
        return self._proposals[index]

    @staticmethod
    def _check_identity(identity: str) -> None:
        # Identities are opaque: stored and compared exactly as given
        if not isinstance(identity, str) or not identity.strip():
            raise InvalidArgument("Identity cannot be blank")

    def _emit(self, kind: NotificationKind, caller: str, payload: dict[str, Any]) -> None:
        """Deliver a notification to every listener.

        Called after the mutation is applied. A listener failure is
        recorded on ``listener_errors`` and delivery continues.
        """
        notification = Notification(kind=kind, caller=caller, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                self._listener_errors.append(
                    f"Listener {listener!r} failed on {kind.value}: {e}"
                )
