"""Core data models for the voting workflow."""

from votingflow.models.workflow import (
    Notification,
    NotificationKind,
    Proposal,
    Voter,
    WorkflowPhase,
)

__all__ = [
    "Notification",
    "NotificationKind",
    "Proposal",
    "Voter",
    "WorkflowPhase",
]
