#!/usr/bin/env python3
"""Workflow invariant checks against the executable parameter file."""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
PARAMS_PATH = ROOT / "config" / "workflow_params.json"

sys.path.insert(0, str(ROOT / "src"))

from votingflow.policy.resolver import check_invariants  # noqa: E402


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check(params_path: Path = PARAMS_PATH) -> int:
    errors = check_invariants(load_json(params_path))
    if errors:
        print("Invariant check FAILED:")
        for error in errors:
            print(f"  - {error}")
        return 1
    print("All workflow invariants hold.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
