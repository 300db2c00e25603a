"""Electra CLI — operator tools for the admission and commitment core.

Usage:
    python -m electra.cli score --face 0.92 --otp --anomaly 0.15 --entropy 0.5
    python -m electra.cli score --face 0.92 --liveness 0.4 --otp --anomaly 0.15 --entropy 0.5
    python -m electra.cli ballot-status --voter V-001 --election E-001
    python -m electra.cli review-queue
    python -m electra.cli events --kind vote_committed
    python -m electra.cli chain-status --election 1 --address 0xabc...
    python -m electra.cli results --election 1
    python -m electra.cli check-invariants

Paths come from --config / --data, else ELECTRA_CONFIG_DIR /
ELECTRA_DATA_DIR (a .env file is honoured), else config/ and data/.
chain-status reads ELECTRA_RPC_URL and ELECTRA_BALLOT_BOX_ADDRESS; results
reads ELECTRA_RPC_URL and ELECTRA_TALLY_ADDRESS.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from electra.chain.web3_gateway import Web3BallotBox, Web3Tally
from electra.errors import InvalidSignal
from electra.models.trust import FaceMatch, TrustSignals, classify_fraud_risk
from electra.persistence.event_log import EventKind, EventLog
from electra.persistence.state_store import StateStore
from electra.policy.invariants import check_params
from electra.policy.resolver import PolicyResolver
from electra.service import ballot_status, review_queue
from electra.trust.scorer import TrustScorer


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _resolver(args: argparse.Namespace) -> PolicyResolver:
    return PolicyResolver.from_config_dir(args.config)


def cmd_score(args: argparse.Namespace) -> int:
    resolver = _resolver(args)
    spoof = args.spoof
    face_report = None
    if args.liveness is not None:
        match_threshold, liveness_threshold = resolver.face_thresholds()
        face = FaceMatch.from_scores(
            args.face, args.liveness, match_threshold, liveness_threshold,
        )
        spoof = spoof or face.is_possible_spoof
        face_report = {
            "is_match": face.is_match,
            "liveness_score": face.liveness_score,
            "is_possible_spoof": face.is_possible_spoof,
        }

    scorer = TrustScorer(resolver.trust_weights(), resolver.admission_threshold())
    signals = TrustSignals(
        face_score=args.face,
        otp_verified=args.otp,
        anomaly_score=args.anomaly,
        blockchain_entropy=args.entropy,
        is_possible_spoof=spoof,
    )
    try:
        decision = scorer.admit(signals)
    except InvalidSignal as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    medium, high = resolver.fraud_thresholds()
    report = {
        "admitted": decision.admitted,
        "cvats_score": round(decision.score.value, 6),
        "display_score": decision.score.display_score(),
        "threshold": decision.threshold,
        "components": {k: round(v, 6) for k, v in decision.score.components.items()},
        "failed_conditions": list(decision.failed_conditions),
        "fraud_risk": classify_fraud_risk(args.anomaly, medium, high).value,
    }
    if face_report is not None:
        report["face"] = face_report
    print(json.dumps(report, indent=2))
    return 0


def cmd_ballot_status(args: argparse.Namespace) -> int:
    store = StateStore(storage_path=args.data / "state.json")
    print(json.dumps(ballot_status(store, args.voter, args.election), indent=2))
    return 0


def cmd_review_queue(args: argparse.Namespace) -> int:
    store = StateStore(storage_path=args.data / "state.json")
    print(json.dumps(review_queue(store), indent=2))
    return 0


def cmd_events(args: argparse.Namespace) -> int:
    log = EventLog(storage_path=args.data / "events.jsonl")
    kind = EventKind(args.kind) if args.kind else None
    events = log.events(kind)
    if args.voter:
        events = [e for e in events if e.voter_id == args.voter]
    for event in events:
        print(json.dumps(event.to_dict(), sort_keys=True))
    return 0


def cmd_chain_status(args: argparse.Namespace) -> int:
    rpc_url = os.getenv("ELECTRA_RPC_URL")
    contract_address = os.getenv("ELECTRA_BALLOT_BOX_ADDRESS")
    if not rpc_url or not contract_address:
        print("ERROR: Missing ELECTRA_RPC_URL and/or ELECTRA_BALLOT_BOX_ADDRESS", file=sys.stderr)
        return 1

    resolver = _resolver(args)
    gateway = Web3BallotBox.connect(
        rpc_url,
        contract_address,
        resolver.ballot_box_abi(args.config),
        signer=lambda _address: None,
        config=resolver.chain_config(),
    )

    async def _query() -> dict:
        voted = await gateway.has_voted(args.election, args.address)
        receipt = await gateway.find_vote(args.election, args.address) if voted else None
        return {
            "election_id": args.election,
            "voter_address": args.address,
            "has_voted": voted,
            "receipt": receipt.to_dict() if receipt else None,
        }

    try:
        report = asyncio.run(_query())
    except ValueError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(report, indent=2))
    return 0


def cmd_results(args: argparse.Namespace) -> int:
    rpc_url = os.getenv("ELECTRA_RPC_URL")
    contract_address = os.getenv("ELECTRA_TALLY_ADDRESS")
    if not rpc_url or not contract_address:
        print("ERROR: Missing ELECTRA_RPC_URL and/or ELECTRA_TALLY_ADDRESS", file=sys.stderr)
        return 1

    tally = Web3Tally.connect(rpc_url, contract_address, _resolver(args).tally_abi(args.config))
    try:
        results = asyncio.run(tally.results(args.election))
    except ValueError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(results.to_dict(), indent=2))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    errors = check_params(_resolver(args).params)
    if errors:
        for error in errors:
            print(f"FAIL: {error}", file=sys.stderr)
        return 1
    print("All voting invariants hold.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="electra",
        description="Electra — ballot admission and vote commitment CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config directory (default: $ELECTRA_CONFIG_DIR or config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Path to data directory (default: $ELECTRA_DATA_DIR or data/)",
    )
    sub = parser.add_subparsers(dest="command")

    # score
    p_score = sub.add_parser("score", help="Compute CVATS and the admission decision")
    p_score.add_argument("--face", type=float, required=True, help="Face similarity score")
    p_score.add_argument("--anomaly", type=float, required=True, help="Fraud anomaly score")
    p_score.add_argument("--entropy", type=float, required=True, help="Wallet entropy")
    p_score.add_argument("--otp", action="store_true", help="OTP was verified")
    p_score.add_argument("--spoof", action="store_true", help="Face service flagged a spoof")
    p_score.add_argument("--liveness", type=float, help="Derive the spoof flag from liveness")

    # ballot-status
    p_status = sub.add_parser("ballot-status", help="Show one voter's ballot in an election")
    p_status.add_argument("--voter", required=True, help="Voter ID")
    p_status.add_argument("--election", required=True, help="Election ID")

    # review-queue
    sub.add_parser("review-queue", help="List sessions flagged for manual review")

    # events
    p_events = sub.add_parser("events", help="Print audit events")
    p_events.add_argument("--kind", choices=[k.value for k in EventKind], help="Event kind")
    p_events.add_argument("--voter", help="Voter ID")

    # chain-status
    p_chain = sub.add_parser("chain-status", help="Ask the ballot-box contract about one voter")
    p_chain.add_argument("--election", required=True, help="On-chain election ID")
    p_chain.add_argument("--address", required=True, help="Voter wallet address")

    # results
    p_results = sub.add_parser("results", help="Read an election tally from the Tally contract")
    p_results.add_argument("--election", required=True, help="On-chain election ID")

    # check-invariants
    sub.add_parser("check-invariants", help="Validate voting parameters")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.config is None:
        args.config = Path(os.environ.get("ELECTRA_CONFIG_DIR", DEFAULT_CONFIG))
    if args.data is None:
        args.data = Path(os.environ.get("ELECTRA_DATA_DIR", DEFAULT_DATA))

    commands = {
        "score": cmd_score,
        "ballot-status": cmd_ballot_status,
        "review-queue": cmd_review_queue,
        "events": cmd_events,
        "chain-status": cmd_chain_status,
        "results": cmd_results,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
