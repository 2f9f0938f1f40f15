"""Tests for the append-only event log — hashing, replay protection, recovery."""

import json
from datetime import datetime, timezone

import pytest

from votingflow.models.workflow import NotificationKind
from votingflow.persistence.event_log import EventKind, EventLog, EventRecord


def _event(event_id: str = "EVT-00000001", kind: EventKind = EventKind.VOTED) -> EventRecord:
    return EventRecord.create(
        event_id=event_id,
        event_kind=kind,
        actor_id="bob",
        payload={"identity": "bob", "index": 0},
        timestamp_utc=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _event().event_hash == _event().event_hash
        assert _event().event_hash.startswith("sha256:")

    def test_hash_changes_with_payload(self) -> None:
        other = EventRecord.create(
            event_id="EVT-00000001",
            event_kind=EventKind.VOTED,
            actor_id="bob",
            payload={"identity": "bob", "index": 1},
            timestamp_utc=datetime(2026, 3, 1, tzinfo=timezone.utc),
        )
        assert other.event_hash != _event().event_hash

    def test_every_notification_has_an_event_kind(self) -> None:
        for kind in NotificationKind:
            assert isinstance(EventKind.from_notification(kind), EventKind)


class TestEventLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event("EVT-1", EventKind.VOTED))
        log.append(_event("EVT-2", EventKind.VOTE_WITHDRAWN))
        assert log.count == 2
        assert [e.event_id for e in log.events(EventKind.VOTED)] == ["EVT-1"]
        assert log.last_event.event_id == "EVT-2"

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event("EVT-1"))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event("EVT-1"))
        assert log.count == 1

    def test_empty_log(self) -> None:
        log = EventLog()
        assert log.count == 0
        assert log.last_event is None


class TestEventLogPersistence:
    def test_round_trip(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event("EVT-1"))
        log.append(_event("EVT-2", EventKind.PROPOSAL_CANCELLED))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events() == log.events()

    def test_tampered_record_rejected(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_event("EVT-1"))

        data = json.loads(path.read_text(encoding="utf-8"))
        data["payload"]["index"] = 7
        path.write_text(json.dumps(data) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_duplicate_on_recovery_rejected(self, tmp_path) -> None:
        path = tmp_path / "events.jsonl"
        line = json.dumps(_event("EVT-1").to_dict())
        path.write_text(line + "\n" + line + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)

    def test_failed_write_not_recorded(self, tmp_path) -> None:
        # A directory in place of the file makes the append fail
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        path.mkdir()
        with pytest.raises(OSError):
            log.append(_event("EVT-1"))
        assert log.count == 0
