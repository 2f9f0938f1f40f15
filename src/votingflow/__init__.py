"""votingflow — a phase-gated voting workflow with an append-only audit log."""

__version__ = "0.1.0"
