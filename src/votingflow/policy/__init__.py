"""Workflow policy resolution from config artifacts."""

from votingflow.policy.resolver import WorkflowPolicy, check_invariants

__all__ = ["WorkflowPolicy", "check_invariants"]
