"""relayvote CLI — operate a local election ledger and relayer.

Usage:
    python -m relayvote.cli init --deployer-key 0x...
    python -m relayvote.cli status
    python -m relayvote.cli sign-vote --key 0x... --candidate 1 > vote.json
    python -m relayvote.cli submit vote.json
    python -m relayvote.cli extend --owner-key 0x... --add-seconds 86400
    python -m relayvote.cli finalize --owner-key 0x...
    python -m relayvote.cli transfer-owner --owner-key 0x... --to 0x...

Election parameters and relayer settings come from the environment
(see relayvote.config); a .env file is loaded first.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from eth_account import Account

from relayvote.config import ElectionSettings, RelayerSettings, load_environment
from relayvote.crypto.typed_vote import sign_vote
from relayvote.ledger.election_ledger import ElectionLedger
from relayvote.models.election import VoteIntent
from relayvote.persistence.event_log import EventLog
from relayvote.persistence.state_store import StateStore
from relayvote.relayer.binding import LocalLedgerBinding, Web3LedgerBinding
from relayvote.relayer.queue import RelayerQueue
from relayvote.service import VotingService


STATE_FILE = "election.json"
EVENTS_FILE = "events.jsonl"
DEPLOYMENT_FILE = "deployment.json"


def _open_ledger(data_dir: Path) -> ElectionLedger:
    """Reattach to the ledger persisted under data_dir."""
    deployment_path = data_dir / DEPLOYMENT_FILE
    if not deployment_path.exists():
        raise FileNotFoundError(
            f"No election found in {data_dir} — run 'relayvote init' first"
        )
    deployment = json.loads(deployment_path.read_text(encoding="utf-8"))
    return ElectionLedger.open(
        StateStore(data_dir / STATE_FILE),
        address=deployment["address"],
        chain_id=int(deployment["chain_id"]),
        event_log=EventLog(storage_path=data_dir / EVENTS_FILE),
    )


def build_service_from_env(
    settings: Optional[RelayerSettings] = None,
    auto_drain: bool = True,
) -> VotingService:
    """Wire a VotingService from configuration.

    With RPC_URL, RELAYER_PRIVATE_KEY and CONTRACT_ADDRESS set, intents
    are relayed to the deployed contract. Otherwise the relayer settles
    against the local ledger in RELAYVOTE_DATA_DIR.
    """
    settings = settings or RelayerSettings.from_env()
    if settings.on_chain:
        binding = Web3LedgerBinding(
            rpc_url=settings.rpc_url,
            contract_address=settings.contract_address,
            private_key=settings.private_key,
            chain_id=settings.chain_id,
            gas_limit=settings.gas_limit,
        )
        queue = RelayerQueue(
            binding,
            auto_drain=auto_drain,
            submit_interval=settings.submit_interval_seconds,
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.backoff_seconds,
        )
        return VotingService(queue)

    if not settings.private_key:
        raise ValueError("Missing RELAYER_PRIVATE_KEY for the local relayer identity")
    ledger = _open_ledger(settings.data_dir)
    binding = LocalLedgerBinding(ledger, Account.from_key(settings.private_key).address)
    queue = RelayerQueue(
        binding,
        auto_drain=auto_drain,
        max_attempts=settings.max_attempts,
        backoff_seconds=settings.backoff_seconds,
    )
    return VotingService(queue, ledger=ledger)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _fail(errors: list[str]) -> int:
    print(f"Failed: {'; '.join(errors)}", file=sys.stderr)
    return 1


def cmd_init(args: argparse.Namespace) -> int:
    """Create a new election under the data directory."""
    relayer = RelayerSettings.from_env()
    data_dir: Path = args.data or relayer.data_dir
    election = ElectionSettings.from_env()

    if (data_dir / STATE_FILE).exists():
        return _fail([f"An election already exists in {data_dir}"])

    deployer = Account.from_key(args.deployer_key).address
    owner = election.owner or deployer
    data_dir.mkdir(parents=True, exist_ok=True)
    ledger = ElectionLedger.create(
        name=election.name,
        candidates=list(election.candidates),
        duration_seconds=election.duration_seconds,
        election_id=election.election_id,
        owner=owner,
        chain_id=relayer.chain_id,
        event_log=EventLog(storage_path=data_dir / EVENTS_FILE),
        state_store=StateStore(data_dir / STATE_FILE),
    )

    deployment = {
        "address": ledger.address,
        "chain_id": ledger.chain_id,
        "deployer": deployer,
        "owner": ledger.owner,
        "deployment_time": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "parameters": {
            "election_name": ledger.election_name,
            "election_id": ledger.election_id,
            "voting_start": ledger.voting_start,
            "voting_end": ledger.voting_end,
            "candidates": list(election.candidates),
            "voting_duration_seconds": election.duration_seconds,
        },
    }
    (data_dir / DEPLOYMENT_FILE).write_text(
        json.dumps(deployment, indent=2) + "\n", encoding="utf-8",
    )
    _print_json(deployment)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    service = build_service_from_env(auto_drain=False)
    _print_json(service.status())
    return 0


def cmd_sign_vote(args: argparse.Namespace) -> int:
    """Sign a vote intent with a local key, as a wallet would."""
    settings = RelayerSettings.from_env()
    ledger = _open_ledger(args.data or settings.data_dir)
    voter = Account.from_key(args.key).address
    nonce = args.nonce if args.nonce is not None else ledger.voter_nonces(voter)
    intent = VoteIntent(
        voter=voter,
        candidate_id=args.candidate,
        election_id=ledger.election_id,
        nonce=nonce,
        deadline=ledger.now() + args.deadline_seconds,
    )
    signature = sign_vote(ledger.domain, intent, args.key)
    _print_json({"vote": intent.to_wire(), "signature": signature})
    return 0


def cmd_submit(args: argparse.Namespace) -> int:
    """Queue a signed vote and drain the queue before exiting."""
    raw = sys.stdin.read() if args.file == "-" else Path(args.file).read_text(encoding="utf-8")
    service = build_service_from_env(auto_drain=False)
    result = service.submit_signed_vote(json.loads(raw))
    if not result.success:
        return _fail(result.errors)

    outcomes = service.queue.drain()
    _print_json([o.to_dict() for o in outcomes])
    return 0 if all(o.status.value == "submitted" for o in outcomes) else 1


def _owner_service(args: argparse.Namespace) -> tuple[VotingService, str]:
    service = build_service_from_env(auto_drain=False)
    return service, Account.from_key(args.owner_key).address


def cmd_extend(args: argparse.Namespace) -> int:
    service, caller = _owner_service(args)
    ledger = service.ledger
    new_end = args.end if args.end is not None else ledger.voting_end + args.add_seconds
    result = service.extend_voting(caller, new_end)
    if not result.success:
        return _fail(result.errors)
    print(f"Voting end moved to {new_end}")
    return 0


def cmd_finalize(args: argparse.Namespace) -> int:
    service, caller = _owner_service(args)
    result = service.finalize(caller)
    if not result.success:
        return _fail(result.errors)
    print(
        f"Winner: {result.data['winning_candidate']} "
        f"(candidate {result.data['winning_candidate_id']})"
    )
    return 0


def cmd_transfer_owner(args: argparse.Namespace) -> int:
    service, caller = _owner_service(args)
    result = service.transfer_ownership(caller, args.to)
    if not result.success:
        return _fail(result.errors)
    print(f"Ownership transferred to {service.ledger.owner}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relayvote",
        description="relayvote — gasless signed-vote election ledger and relayer",
    )
    parser.add_argument("--env-file", type=Path, help="Path to a .env file")
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    sub = parser.add_subparsers(dest="command")

    p_init = sub.add_parser("init", help="Create a new election")
    p_init.add_argument("--deployer-key", required=True, help="Deployer private key")
    p_init.add_argument("--data", type=Path, help="Data directory (default: RELAYVOTE_DATA_DIR)")

    sub.add_parser("status", help="Show election and relayer status")

    p_sign = sub.add_parser("sign-vote", help="Sign a vote intent with a local key")
    p_sign.add_argument("--key", required=True, help="Voter private key")
    p_sign.add_argument("--candidate", type=int, required=True, help="Candidate id")
    p_sign.add_argument("--nonce", type=int, help="Nonce (default: voter's current nonce)")
    p_sign.add_argument(
        "--deadline-seconds", type=int, default=3600,
        help="Seconds until the signature expires (default: 3600)",
    )
    p_sign.add_argument("--data", type=Path, help="Data directory")

    p_submit = sub.add_parser("submit", help="Queue and relay a signed vote")
    p_submit.add_argument("file", help="JSON file with {vote, signature}, or - for stdin")

    p_extend = sub.add_parser("extend", help="Move the voting deadline (owner only)")
    p_extend.add_argument("--owner-key", required=True, help="Owner private key")
    group = p_extend.add_mutually_exclusive_group(required=True)
    group.add_argument("--end", type=int, help="New voting end (Unix seconds)")
    group.add_argument("--add-seconds", type=int, help="Seconds to add to the current end")

    p_final = sub.add_parser("finalize", help="Finalize the winner (owner only)")
    p_final.add_argument("--owner-key", required=True, help="Owner private key")

    p_transfer = sub.add_parser("transfer-owner", help="Transfer ownership (owner only)")
    p_transfer.add_argument("--owner-key", required=True, help="Owner private key")
    p_transfer.add_argument("--to", required=True, help="New owner address")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    load_environment(args.env_file)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "init": cmd_init,
        "status": cmd_status,
        "sign-vote": cmd_sign_vote,
        "submit": cmd_submit,
        "extend": cmd_extend,
        "finalize": cmd_finalize,
        "transfer-owner": cmd_transfer_owner,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (FileNotFoundError, ValueError) as e:
        return _fail([str(e)])


if __name__ == "__main__":
    raise SystemExit(main())
