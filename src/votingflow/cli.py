"""votingflow CLI — command-line interface for the voting workflow.

Usage:
    python -m votingflow.cli status
    python -m votingflow.cli init --creator alice
    python -m votingflow.cli register-voter --caller alice --voter bob
    python -m votingflow.cli start-proposals --caller alice
    python -m votingflow.cli propose --caller bob --description "Paint the shed"
    python -m votingflow.cli end-proposals --caller alice
    python -m votingflow.cli start-voting --caller alice
    python -m votingflow.cli vote --caller bob --index 0
    python -m votingflow.cli end-voting --caller alice
    python -m votingflow.cli tally --caller alice
    python -m votingflow.cli winner
    python -m votingflow.cli check-invariants

Paths default to the project's config/ and data/ directories and can be
overridden with VOTINGFLOW_CONFIG_DIR / VOTINGFLOW_DATA_DIR, either in the
environment or in a .env file at the project root.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from votingflow.engine.errors import ERROR_KINDS
from votingflow.persistence.event_log import EventKind, EventLog
from votingflow.persistence.state_store import StateStore
from votingflow.policy.resolver import WorkflowPolicy, check_invariants
from votingflow.service import (
    ALREADY_INITIALIZED,
    AUDIT_FAILURE,
    NOT_INITIALIZED,
    ServiceResult,
    VotingService,
)


ROOT = Path(__file__).resolve().parents[2]

load_dotenv(ROOT / ".env")

DEFAULT_CONFIG = Path(os.getenv("VOTINGFLOW_CONFIG_DIR") or ROOT / "config")
DEFAULT_DATA = Path(os.getenv("VOTINGFLOW_DATA_DIR") or ROOT / "data")

# Exit codes per failure kind; 1 is reserved for usage/unknown errors
EXIT_CODES: dict[str, int] = {
    **{error.kind: 10 + i for i, error in enumerate(ERROR_KINDS)},
    NOT_INITIALIZED: 20,
    ALREADY_INITIALIZED: 21,
    AUDIT_FAILURE: 22,
}


def _make_service(config_dir: Path, data_dir: Path) -> VotingService:
    """Create a VotingService with durable persistence."""
    data_dir.mkdir(parents=True, exist_ok=True)
    policy = WorkflowPolicy.from_config_dir(config_dir)
    event_log = EventLog(storage_path=data_dir / "events.jsonl")
    state_store = StateStore(storage_path=data_dir / "state.json")
    return VotingService(policy, event_log=event_log, state_store=state_store)


def _report(result: ServiceResult, message: Optional[str] = None) -> int:
    if result.success:
        if message is not None:
            print(message)
        else:
            print(json.dumps(result.data, indent=2))
        if "warning" in result.data:
            print(f"Warning: {result.data['warning']}", file=sys.stderr)
        return 0
    kind = result.error_kind or "Error"
    print(f"Failed [{kind}]: {'; '.join(result.errors)}", file=sys.stderr)
    return EXIT_CODES.get(kind, 1)


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_init(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.initialize(args.creator)
    return _report(result, f"Initialized workflow (admin: {result.data.get('creator')})")


def cmd_register_voter(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.register_voter(args.caller, args.voter)
    return _report(result, f"Registered voter: {result.data.get('identity')}")


def _cmd_transition(method: str):
    def handler(args: argparse.Namespace) -> int:
        service = _make_service(args.config, args.data)
        result = getattr(service, method)(args.caller)
        return _report(result, f"Phase: {result.data.get('phase')}")
    return handler


def cmd_tally(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.tally_votes(args.caller)
    return _report(
        result, f"Votes tallied; winning proposal: {result.data.get('winning_proposal_id')}",
    )


def cmd_propose(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.register_proposal(args.caller, args.description)
    return _report(result, f"Registered proposal #{result.data.get('index')}")


def cmd_cancel_proposal(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.cancel_proposal(args.caller, args.index)
    return _report(result, f"Cancelled proposal #{args.index}")


def cmd_vote(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.cast_vote(args.caller, args.index)
    return _report(result, f"Voted for proposal #{args.index}")


def cmd_withdraw(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.withdraw_vote(args.caller, args.index)
    return _report(result, f"Withdrew vote for proposal #{args.index}")


def cmd_winner(args: argparse.Namespace) -> int:
    return _report(_make_service(args.config, args.data).get_winner())


def cmd_proposals(args: argparse.Namespace) -> int:
    return _report(_make_service(args.config, args.data).get_proposals())


def cmd_proposal(args: argparse.Namespace) -> int:
    return _report(_make_service(args.config, args.data).get_proposal(args.index))


def cmd_ranked(args: argparse.Namespace) -> int:
    return _report(_make_service(args.config, args.data).get_ranked_proposals())


def cmd_voter(args: argparse.Namespace) -> int:
    return _report(_make_service(args.config, args.data).get_voter(args.identity))


def cmd_events(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    kind = EventKind(args.kind) if args.kind else None
    for event in service.events(kind):
        print(json.dumps(event.to_dict(), sort_keys=True))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Check the workflow parameter file against its structural invariants."""
    path = args.config / WorkflowPolicy.PARAMS_FILENAME
    try:
        with path.open("r", encoding="utf-8") as handle:
            params = json.load(handle)
    except (OSError, ValueError) as e:
        print(f"Cannot read {path}: {e}", file=sys.stderr)
        return 1
    errors = check_invariants(params)
    if errors:
        for error in errors:
            print(f"FAIL: {error}", file=sys.stderr)
        return 1
    print("All workflow invariants hold.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="votingflow",
        description="Phase-gated voting workflow CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory (default: data/)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show workflow status")

    p_init = sub.add_parser("init", help="Create the workflow")
    p_init.add_argument("--creator", required=True, help="Admin identity")

    p_reg = sub.add_parser("register-voter", help="Register a voter (admin)")
    p_reg.add_argument("--caller", required=True, help="Caller identity")
    p_reg.add_argument("--voter", required=True, help="Identity to register")

    for name, help_text in (
        ("start-proposals", "Open proposal registration (admin)"),
        ("end-proposals", "Close proposal registration (admin)"),
        ("start-voting", "Open the voting session (admin)"),
        ("end-voting", "Close the voting session (admin)"),
        ("tally", "Tally votes (admin)"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--caller", required=True, help="Caller identity")

    p_prop = sub.add_parser("propose", help="Register a proposal (voter)")
    p_prop.add_argument("--caller", required=True, help="Caller identity")
    p_prop.add_argument("--description", required=True, help="Proposal text")

    for name, help_text in (
        ("cancel-proposal", "Clear a proposal slot (voter)"),
        ("vote", "Vote for a proposal (voter)"),
        ("withdraw", "Withdraw a vote (voter)"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--caller", required=True, help="Caller identity")
        p.add_argument("--index", required=True, type=int, help="Proposal index")

    sub.add_parser("winner", help="Show the winning proposal")
    sub.add_parser("proposals", help="List proposals in index order")
    sub.add_parser("ranked", help="List proposals by vote count")

    p_one = sub.add_parser("proposal", help="Show one proposal")
    p_one.add_argument("--index", required=True, type=int, help="Proposal index")

    p_voter = sub.add_parser("voter", help="Show a voter record")
    p_voter.add_argument("--identity", required=True, help="Voter identity")

    p_events = sub.add_parser("events", help="Print the audit log as JSON lines")
    p_events.add_argument(
        "--kind", choices=[k.value for k in EventKind], help="Filter by event kind",
    )

    sub.add_parser("check-invariants", help="Check workflow parameter invariants")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "init": cmd_init,
        "register-voter": cmd_register_voter,
        "start-proposals": _cmd_transition("start_proposals_registering"),
        "end-proposals": _cmd_transition("end_proposals_registering"),
        "start-voting": _cmd_transition("start_voting_session"),
        "end-voting": _cmd_transition("end_voting_session"),
        "tally": cmd_tally,
        "propose": cmd_propose,
        "cancel-proposal": cmd_cancel_proposal,
        "vote": cmd_vote,
        "withdraw": cmd_withdraw,
        "winner": cmd_winner,
        "proposals": cmd_proposals,
        "proposal": cmd_proposal,
        "ranked": cmd_ranked,
        "voter": cmd_voter,
        "events": cmd_events,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
