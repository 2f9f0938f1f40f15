"""Workflow policy — loads executable parameters from the config directory.

The parameter file (``workflow_params.json``) is the single source of
tunable values. Structural invariants are checked by ``check_invariants``
both on load and from ``votingflow check-invariants``.

The voter gate (more than one registered voter) and the identity rules
(any non-blank string) are fixed by the workflow and not tunable here.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any


DEFAULT_MAX_DESCRIPTION_LENGTH = 1000

KNOWN_PARAMS = frozenset({"max_description_length"})


def check_invariants(params: dict[str, Any]) -> list[str]:
    """Validate raw workflow parameters. Returns errors (empty = OK)."""
    errors: list[str] = []

    unknown = sorted(set(params) - KNOWN_PARAMS)
    if unknown:
        errors.append(f"Unknown workflow parameters: {', '.join(unknown)}")

    max_len = params.get("max_description_length")
    if not isinstance(max_len, int) or isinstance(max_len, bool):
        errors.append("max_description_length must be an integer")
    elif max_len <= 0:
        errors.append(f"max_description_length must be > 0, got {max_len}")

    return errors


@dataclass(frozen=True)
class WorkflowPolicy:
    """Resolved workflow parameters."""
    max_description_length: int = DEFAULT_MAX_DESCRIPTION_LENGTH

    PARAMS_FILENAME = "workflow_params.json"

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> WorkflowPolicy:
        """Load policy from a config directory.

        Raises:
            FileNotFoundError: If the parameter file is missing.
            ValueError: If the file violates a structural invariant.
        """
        path = config_dir / cls.PARAMS_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            params = json.load(handle)
        return cls.from_params(params)

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> WorkflowPolicy:
        merged = {"max_description_length": DEFAULT_MAX_DESCRIPTION_LENGTH}
        merged.update(params)
        errors = check_invariants(merged)
        if errors:
            raise ValueError("Invalid workflow policy: " + "; ".join(errors))
        return cls(max_description_length=merged["max_description_length"])
