"""State store — JSON snapshot of the workflow for restart recovery.

The event log is the audit trail; the state store is the fast path for
reloading the current state. Writes go to a sibling temp file which then
replaces the target, so a crash mid-write leaves the previous snapshot
intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

from votingflow.engine.workflow import VotingWorkflow
from votingflow.policy.resolver import WorkflowPolicy


STATE_VERSION = 1


class StateStore:
    """File-backed workflow snapshot."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def path(self) -> Path:
        return self._storage_path

    def exists(self) -> bool:
        return self._storage_path.exists()

    def save_workflow(self, workflow: VotingWorkflow, event_count: int = 0) -> None:
        """Persist a workflow snapshot. Raises OSError on write failure."""
        document = {
            "version": STATE_VERSION,
            "event_count": event_count,
            "workflow": workflow.to_record(),
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=True, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_path, self._storage_path)

    def load_workflow(
        self, policy: Optional[WorkflowPolicy] = None,
    ) -> Optional[VotingWorkflow]:
        """Load the persisted workflow, or None if nothing is stored.

        Raises ValueError if the snapshot is from an unknown version or
        fails the workflow's own consistency checks.
        """
        document = self._read()
        if document is None:
            return None
        return VotingWorkflow.from_record(document["workflow"], policy=policy)

    def _read(self) -> Optional[dict[str, Any]]:
        if not self._storage_path.exists():
            return None
        with self._storage_path.open("r", encoding="utf-8") as f:
            document = json.load(f)
        version = document.get("version")
        if version != STATE_VERSION:
            raise ValueError(f"Unsupported state version: {version}")
        return document
