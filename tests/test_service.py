"""Tests for VotingService — proves the facade orchestrates correctly."""

import threading

import pytest

from votingflow.persistence.event_log import EventKind, EventLog
from votingflow.persistence.state_store import StateStore
from votingflow.service import (
    ALREADY_INITIALIZED,
    AUDIT_FAILURE,
    NOT_INITIALIZED,
    VotingService,
)


ADMIN = "alice"


@pytest.fixture
def service() -> VotingService:
    svc = VotingService(event_log=EventLog())
    assert svc.initialize(ADMIN).success
    return svc


def _open_voting(service: VotingService, *descriptions: str) -> None:
    for voter in ("bob", "carol"):
        assert service.register_voter(ADMIN, voter).success
    assert service.start_proposals_registering(ADMIN).success
    for d in descriptions:
        assert service.register_proposal("bob", d).success
    assert service.end_proposals_registering(ADMIN).success
    assert service.start_voting_session(ADMIN).success


class TestInitialize:
    def test_initialize_records_event(self, service: VotingService) -> None:
        events = service.events()
        assert len(events) == 1
        assert events[0].event_kind == EventKind.VOTER_REGISTERED
        assert events[0].payload == {"identity": ADMIN}

    def test_initialize_twice_fails(self, service: VotingService) -> None:
        result = service.initialize("bob")
        assert not result.success
        assert result.error_kind == ALREADY_INITIALIZED

    def test_operations_before_initialize_fail(self) -> None:
        svc = VotingService()
        result = svc.register_voter(ADMIN, "bob")
        assert not result.success
        assert result.error_kind == NOT_INITIALIZED
        assert svc.get_winner().error_kind == NOT_INITIALIZED

    def test_blank_creator_fails(self) -> None:
        svc = VotingService(event_log=EventLog())
        result = svc.initialize(" ")
        assert not result.success
        assert result.error_kind == "InvalidArgument"
        assert svc.workflow is None
        assert svc.events() == []


class TestErrorKinds:
    def test_duplicate_registration(self, service: VotingService) -> None:
        service.register_voter(ADMIN, "bob")
        result = service.register_voter(ADMIN, "bob")
        assert not result.success
        assert result.error_kind == "DuplicateRegistration"
        assert service.get_voters_count().data["voters_count"] == 2

    def test_insufficient_voters(self, service: VotingService) -> None:
        result = service.start_proposals_registering(ADMIN)
        assert result.error_kind == "InsufficientVoters"

    def test_authorization(self, service: VotingService) -> None:
        service.register_voter(ADMIN, "bob")
        result = service.start_proposals_registering("bob")
        assert result.error_kind == "AuthorizationViolation"

    def test_phase_violation_on_winner(self, service: VotingService) -> None:
        result = service.get_winner()
        assert not result.success
        assert result.error_kind == "PhaseViolation"

    def test_out_of_range_query(self, service: VotingService) -> None:
        result = service.get_proposal(0)
        assert result.error_kind == "OutOfRange"

    def test_rejected_operation_records_nothing(self, service: VotingService) -> None:
        before = service.status()["event_count"]
        service.register_voter("mallory", "bob")
        service.start_voting_session(ADMIN)
        assert service.status()["event_count"] == before


class TestHappyPath:
    def test_reference_scenario(self, service: VotingService) -> None:
        _open_voting(service, "P0", "P1")
        assert service.cast_vote(ADMIN, 1).success
        assert service.cast_vote("bob", 1).data["vote_count"] == 2
        assert service.cast_vote("carol", 0).success
        assert service.end_voting_session(ADMIN).success

        tally = service.tally_votes(ADMIN)
        assert tally.success
        assert tally.data["winning_proposal_id"] == 1

        winner = service.get_winner()
        assert winner.success
        assert (winner.data["description"], winner.data["vote_count"]) == ("P1", 2)

        ranked = service.get_ranked_proposals().data["proposals"]
        assert [p["index"] for p in ranked] == [1, 0]

    def test_events_in_acceptance_order(self, service: VotingService) -> None:
        _open_voting(service, "P0")
        service.cast_vote("bob", 0)
        service.withdraw_vote("bob", 0)
        kinds = [e.event_kind for e in service.events()]
        assert kinds == [
            EventKind.VOTER_REGISTERED,
            EventKind.VOTER_REGISTERED,
            EventKind.VOTER_REGISTERED,
            EventKind.WORKFLOW_STATUS_CHANGE,
            EventKind.PROPOSAL_REGISTERED,
            EventKind.WORKFLOW_STATUS_CHANGE,
            EventKind.WORKFLOW_STATUS_CHANGE,
            EventKind.VOTED,
            EventKind.VOTE_WITHDRAWN,
        ]
        ids = [e.event_id for e in service.events()]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    def test_result_carries_event_ids(self, service: VotingService) -> None:
        result = service.register_voter(ADMIN, "bob")
        assert result.data["event_ids"] == ["EVT-00000002"]

    def test_cancel_proposal(self, service: VotingService) -> None:
        service.register_voter(ADMIN, "bob")
        service.start_proposals_registering(ADMIN)
        service.register_proposal("bob", "P0")
        service.register_proposal("bob", "P1")
        assert service.cancel_proposal("bob", 0).success

        proposals = service.get_proposals().data["proposals"]
        assert proposals[0] == {
            "index": 0, "description": "", "vote_count": 0, "cancelled": True,
        }
        assert proposals[1]["description"] == "P1"
        assert service.events(EventKind.PROPOSAL_CANCELLED)[0].payload == {"index": 0}

    def test_get_voter(self, service: VotingService) -> None:
        _open_voting(service, "P0")
        service.cast_vote("carol", 0)
        data = service.get_voter("carol").data
        assert data["has_voted"] is True
        assert data["voted_proposal_id"] == 0
        assert service.get_voter("nobody").data["is_registered"] is False

    def test_status(self, service: VotingService) -> None:
        status = service.status()
        assert status["initialized"] is True
        assert status["phase"] == "RegisteringVoters"
        assert status["voters_count"] == 1
        assert status["event_count"] == 1
        assert status["persistence_degraded"] is False


class _StallingLog(EventLog):
    """In-memory log whose appends block on ``release`` and then fail."""

    def __init__(self) -> None:
        super().__init__()
        self.armed = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def append(self, event) -> None:
        if self.armed:
            self.entered.set()
            self.release.wait(timeout=5)
            raise OSError("disk full")
        super().append(event)


class TestIsolation:
    def test_query_waits_for_rolled_back_operation(self) -> None:
        log = _StallingLog()
        svc = VotingService(event_log=log)
        svc.initialize(ADMIN)
        log.armed = True

        outcome: dict = {}
        writer = threading.Thread(
            target=lambda: outcome.update(write=svc.register_voter(ADMIN, "bob")),
        )
        reader = threading.Thread(
            target=lambda: outcome.update(read=svc.get_voters_count()),
        )
        writer.start()
        assert log.entered.wait(timeout=5)
        reader.start()
        reader.join(timeout=0.2)
        assert reader.is_alive()

        log.release.set()
        writer.join(timeout=5)
        reader.join(timeout=5)

        assert outcome["write"].error_kind == AUDIT_FAILURE
        assert outcome["read"].data["voters_count"] == 1

    def test_identities_passed_through_unchanged(self, service: VotingService) -> None:
        result = service.register_voter(ADMIN, "bob smith")
        assert result.success
        assert result.data["identity"] == "bob smith"
        assert service.get_voter("bob smith").data["is_registered"] is True
        assert service.register_voter(ADMIN, "bob+x@example.com").success


class TestPersistence:
    def test_state_survives_restart(self, tmp_path) -> None:
        log_path = tmp_path / "events.jsonl"
        state_path = tmp_path / "state.json"

        svc = VotingService(
            event_log=EventLog(log_path), state_store=StateStore(state_path),
        )
        svc.initialize(ADMIN)
        _open_voting(svc, "P0", "P1")
        svc.cast_vote("bob", 1)

        restarted = VotingService(
            event_log=EventLog(log_path), state_store=StateStore(state_path),
        )
        assert restarted.status()["phase"] == "VotingSessionStarted"
        assert restarted.get_proposal(1).data["vote_count"] == 1
        assert restarted.cast_vote("bob", 0).error_kind == "AlreadyVoted"

        # Event IDs continue from the persisted log
        result = restarted.cast_vote("carol", 0)
        assert result.success
        assert result.data["event_ids"] == [f"EVT-{restarted.status()['event_count']:08d}"]

    def test_audit_failure_rolls_back(self, tmp_path) -> None:
        log_path = tmp_path / "events.jsonl"
        svc = VotingService(event_log=EventLog(log_path))
        svc.initialize(ADMIN)

        # Replace the log file with a directory so the next append fails
        log_path.unlink()
        log_path.mkdir()

        result = svc.register_voter(ADMIN, "bob")
        assert not result.success
        assert result.error_kind == AUDIT_FAILURE
        assert svc.get_voters_count().data["voters_count"] == 1
        assert svc.get_voter("bob").data["is_registered"] is False

    def test_state_store_failure_degrades(self, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        svc = VotingService(
            event_log=EventLog(), state_store=StateStore(blocker / "state.json"),
        )
        result = svc.initialize(ADMIN)
        assert result.success
        assert "warning" in result.data
        assert svc.persistence_degraded
        assert svc.status()["persistence_degraded"] is True
