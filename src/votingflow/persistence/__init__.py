"""Persistence — append-only event log and workflow state snapshots."""

from votingflow.persistence.event_log import EventKind, EventLog, EventRecord
from votingflow.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]
