"""Workflow engine — phase machine, registries and error kinds."""

from votingflow.engine.phase_machine import PhaseMachine
from votingflow.engine.workflow import VotingWorkflow

__all__ = ["PhaseMachine", "VotingWorkflow"]
