"""Voting service — unified facade for the voting workflow.

This is the primary interface for programmatic access. It wires together:
- The workflow engine (phase machine, registries, invariants)
- The append-only event log (audit trail of every notification)
- The state store (snapshot for restart recovery)

All operations produce typed results. Engine rejections become failed
results carrying the error kind. Audit-trail events are never silently
dropped: if an event cannot be appended, the workflow is rolled back to
its pre-operation snapshot and the operation fails closed.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from votingflow.engine.errors import WorkflowError
from votingflow.engine.workflow import VotingWorkflow
from votingflow.models.workflow import Notification, Proposal
from votingflow.persistence.event_log import EventKind, EventLog, EventRecord
from votingflow.persistence.state_store import StateStore
from votingflow.policy.resolver import WorkflowPolicy


# Service-level failure kinds (engine kinds come from WorkflowError.kind)
NOT_INITIALIZED = "NotInitialized"
ALREADY_INITIALIZED = "AlreadyInitialized"
AUDIT_FAILURE = "AuditFailure"


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None


def _fail(reason: str, kind: str) -> ServiceResult:
    return ServiceResult(success=False, errors=[reason], error_kind=kind)


def _proposal_data(index: int, proposal: Proposal) -> dict[str, Any]:
    return {
        "index": index,
        "description": proposal.description,
        "vote_count": proposal.vote_count,
        "cancelled": proposal.cancelled,
    }


class VotingService:
    """Voting workflow facade.

    Usage:
        service = VotingService(policy, event_log=log, state_store=store)
        service.initialize("alice")
        service.register_voter("alice", "bob")
        service.start_proposals_registering("alice")
        service.register_proposal("bob", "Paint the shed")
        ...
        result = service.get_winner()

    Persistence (optional):
        If a state store is given, an existing snapshot is loaded on
        construction and every accepted operation is persisted.
    """

    def __init__(
        self,
        policy: Optional[WorkflowPolicy] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._policy = policy or WorkflowPolicy()
        self._event_log = event_log
        self._state_store = state_store
        self._lock = threading.Lock()
        self._pending: list[Notification] = []

        self._workflow: Optional[VotingWorkflow] = None
        if state_store is not None:
            self._workflow = state_store.load_workflow(self._policy)
            if self._workflow is not None:
                self._workflow.subscribe(self._collect)

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0

        # Set when a StateStore write fails after the audit event has been
        # committed. In-memory state is still correct; the snapshot is stale.
        self._persistence_degraded: bool = False

    @property
    def workflow(self) -> Optional[VotingWorkflow]:
        return self._workflow

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, creator: str) -> ServiceResult:
        """Create the workflow with ``creator`` as admin and first voter."""
        with self._lock:
            if self._workflow is not None:
                return _fail(
                    f"Workflow already initialized (admin: {self._workflow.creator})",
                    ALREADY_INITIALIZED,
                )
            self._pending.clear()
            try:
                workflow = VotingWorkflow(
                    creator, policy=self._policy, listeners=[self._collect],
                )
            except WorkflowError as e:
                self._pending.clear()
                return _fail(e.reason, e.kind)

            event_ids, err = self._record_pending()
            if err:
                return _fail(err, AUDIT_FAILURE)

            self._workflow = workflow
            data: dict[str, Any] = {
                "creator": workflow.creator,
                "phase": workflow.phase.value,
                "voters_count": workflow.get_voters_count(),
                "event_ids": event_ids,
            }
            warning = self._safe_persist_post_audit()
            if warning:
                data["warning"] = warning
            return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def register_voter(self, caller: str, identity: str) -> ServiceResult:
        def _data(wf: VotingWorkflow, _: Any) -> dict[str, Any]:
            return {
                "identity": identity,
                "voters_count": wf.get_voters_count(),
            }
        return self._mutate(lambda wf: wf.register_voter(caller, identity), _data)

    def start_proposals_registering(self, caller: str) -> ServiceResult:
        return self._transition(lambda wf: wf.start_proposals_registering(caller))

    def end_proposals_registering(self, caller: str) -> ServiceResult:
        return self._transition(lambda wf: wf.end_proposals_registering(caller))

    def start_voting_session(self, caller: str) -> ServiceResult:
        return self._transition(lambda wf: wf.start_voting_session(caller))

    def end_voting_session(self, caller: str) -> ServiceResult:
        return self._transition(lambda wf: wf.end_voting_session(caller))

    def tally_votes(self, caller: str) -> ServiceResult:
        def _data(wf: VotingWorkflow, winning_id: int) -> dict[str, Any]:
            return {"phase": wf.phase.value, "winning_proposal_id": winning_id}
        return self._mutate(lambda wf: wf.tally_votes(caller), _data)

    # ------------------------------------------------------------------
    # Voter operations
    # ------------------------------------------------------------------

    def register_proposal(self, caller: str, description: str) -> ServiceResult:
        def _data(wf: VotingWorkflow, index: int) -> dict[str, Any]:
            return {"index": index, "description": description}
        return self._mutate(lambda wf: wf.register_proposal(caller, description), _data)

    def cancel_proposal(self, caller: str, index: int) -> ServiceResult:
        return self._mutate(
            lambda wf: wf.cancel_proposal(caller, index),
            lambda wf, _: {"index": index},
        )

    def cast_vote(self, caller: str, index: int) -> ServiceResult:
        def _data(wf: VotingWorkflow, _: Any) -> dict[str, Any]:
            return {
                "identity": caller,
                "index": index,
                "vote_count": wf.get_proposal(index).vote_count,
            }
        return self._mutate(lambda wf: wf.cast_vote(caller, index), _data)

    def withdraw_vote(self, caller: str, index: int) -> ServiceResult:
        def _data(wf: VotingWorkflow, _: Any) -> dict[str, Any]:
            return {
                "identity": caller,
                "index": index,
                "vote_count": wf.get_proposal(index).vote_count,
            }
        return self._mutate(lambda wf: wf.withdraw_vote(caller, index), _data)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_winner(self) -> ServiceResult:
        def _data(wf: VotingWorkflow) -> dict[str, Any]:
            winner = wf.get_winner()
            return _proposal_data(wf.winning_proposal_id, winner)
        return self._query(_data)

    def get_proposal(self, index: int) -> ServiceResult:
        return self._query(lambda wf: _proposal_data(index, wf.get_proposal(index)))

    def get_proposals(self) -> ServiceResult:
        return self._query(lambda wf: {
            "proposals": [
                _proposal_data(i, p) for i, p in enumerate(wf.get_proposals())
            ],
        })

    def get_ranked_proposals(self) -> ServiceResult:
        return self._query(lambda wf: {
            "proposals": [
                _proposal_data(i, p) for i, p in wf.get_ranked_proposals()
            ],
        })

    def get_voter(self, identity: str) -> ServiceResult:
        def _data(wf: VotingWorkflow) -> dict[str, Any]:
            voter = wf.get_voter(identity)
            if voter is None:
                return {"identity": identity, "is_registered": False}
            return voter.to_dict()
        return self._query(_data)

    def get_voters_count(self) -> ServiceResult:
        return self._query(lambda wf: {"voters_count": wf.get_voters_count()})

    def status(self) -> dict[str, Any]:
        """Summarise the service state."""
        with self._lock:
            wf = self._workflow
            return {
                "initialized": wf is not None,
                "creator": wf.creator if wf else None,
                "phase": wf.phase.value if wf else None,
                "voters_count": wf.get_voters_count() if wf else 0,
                "proposal_count": len(wf.get_proposals()) if wf else 0,
                "winning_proposal_id": wf.winning_proposal_id if wf else None,
                "event_count": self._event_log.count if self._event_log else 0,
                "persistence_degraded": self._persistence_degraded,
            }

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        if self._event_log is None:
            return []
        return self._event_log.events(kind)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _collect(self, notification: Notification) -> None:
        self._pending.append(notification)

    def _transition(self, op: Callable[[VotingWorkflow], Any]) -> ServiceResult:
        def _data(wf: VotingWorkflow, _: Any) -> dict[str, Any]:
            return {"phase": wf.phase.value}
        return self._mutate(op, _data)

    def _mutate(
        self,
        op: Callable[[VotingWorkflow], Any],
        data_fn: Callable[[VotingWorkflow, Any], dict[str, Any]],
    ) -> ServiceResult:
        """Run a mutating operation with audit recording and persistence.

        Ordering:
        1. Snapshot the workflow.
        2. Run the operation (rejections leave state untouched).
        3. Append the notifications to the event log; on failure restore
           the snapshot and fail closed.
        4. Persist the snapshot; on failure keep state and warn.
        """
        with self._lock:
            wf = self._workflow
            if wf is None:
                return _fail(
                    "Workflow not initialized; call initialize() first.",
                    NOT_INITIALIZED,
                )

            snapshot = wf.to_record()
            self._pending.clear()
            try:
                value = op(wf)
            except WorkflowError as e:
                self._pending.clear()
                return _fail(e.reason, e.kind)

            event_ids, err = self._record_pending()
            if err:
                wf.restore(snapshot)
                return _fail(err, AUDIT_FAILURE)

            data = data_fn(wf, value)
            data["event_ids"] = event_ids
            warning = self._safe_persist_post_audit()
            if warning:
                data["warning"] = warning
            return ServiceResult(success=True, data=data)

    def _query(self, fn: Callable[[VotingWorkflow], dict[str, Any]]) -> ServiceResult:
        """Run a read under the service lock.

        A query never sees an operation whose audit append is still pending
        or is about to be rolled back.
        """
        with self._lock:
            wf = self._workflow
            if wf is None:
                return _fail(
                    "Workflow not initialized; call initialize() first.",
                    NOT_INITIALIZED,
                )
            try:
                return ServiceResult(success=True, data=fn(wf))
            except WorkflowError as e:
                return _fail(e.reason, e.kind)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_pending(self) -> tuple[list[str], Optional[str]]:
        """Append collected notifications to the event log.

        Returns (event_ids, error). Pending notifications are consumed
        either way.
        """
        pending, self._pending = self._pending, []
        if self._event_log is None:
            return [], None

        event_ids: list[str] = []
        for notification in pending:
            try:
                event = EventRecord.create(
                    event_id=self._next_event_id(),
                    event_kind=EventKind.from_notification(notification.kind),
                    actor_id=notification.caller,
                    payload=dict(notification.payload),
                )
                self._event_log.append(event)
            except (ValueError, OSError) as e:
                return event_ids, f"Event log failure: {e}"
            event_ids.append(event.event_id)
        return event_ids, None

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after audit events have been committed.

        MUST NOT rollback in-memory state: the audit trail is already
        durable. On failure, sets the persistence-degraded flag and
        returns a warning string (not a hard error).
        """
        if self._state_store is None or self._workflow is None:
            return None
        try:
            self._state_store.save_workflow(
                self._workflow,
                event_count=self._event_log.count if self._event_log else 0,
            )
            return None
        except OSError as e:
            self._persistence_degraded = True
            return f"Persistence degraded: {e}; state committed in audit trail but StateStore is stale"
