"""Tests for relayvote CLI — proves commands dispatch and persist."""

import json

import pytest
from eth_account import Account

from relayvote.cli import build_parser, main
from relayvote.config import DEFAULT_DURATION_SECONDS


OWNER_KEY = "0x" + "01" * 32
RELAYER_KEY = "0x" + "02" * 32
STRANGER_KEY = "0x" + "03" * 32
VOTER_KEY = "0x" + "11" * 32

_ENV_KEYS = (
    "ELECTION_NAME", "CANDIDATES", "VOTING_DURATION_SECONDS", "ELECTION_ID",
    "OWNER_ADDRESS", "CONTRACT_ADDRESS", "RPC_URL", "SEPOLIA_RPC_URL", "CHAIN_ID",
)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RELAYVOTE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("RELAYER_PRIVATE_KEY", RELAYER_KEY)
    return tmp_path


def _read_json(capsys):
    return json.loads(capsys.readouterr().out)


class TestCLIParsing:
    def test_sign_vote_command(self) -> None:
        args = build_parser().parse_args([
            "sign-vote", "--key", VOTER_KEY, "--candidate", "2", "--nonce", "0",
        ])
        assert args.command == "sign-vote"
        assert args.candidate == 2
        assert args.deadline_seconds == 3600

    def test_extend_requires_one_target(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([
                "extend", "--owner-key", OWNER_KEY, "--end", "1", "--add-seconds", "1",
            ])

    def test_no_command_shows_help(self) -> None:
        assert main([]) == 0


class TestCLIExecution:
    def test_status_without_election(self, workspace) -> None:
        assert main(["status"]) == 1

    def test_init_writes_deployment(self, workspace, capsys) -> None:
        assert main(["init", "--deployer-key", OWNER_KEY]) == 0
        printed = _read_json(capsys)
        deployment = json.loads(
            (workspace / "data" / "deployment.json").read_text(encoding="utf-8"),
        )
        assert deployment == printed
        assert deployment["owner"] == Account.from_key(OWNER_KEY).address
        assert deployment["chain_id"] == 31337
        assert deployment["parameters"]["candidates"] == ["Alice", "Bob", "Carol"]
        params = deployment["parameters"]
        assert params["voting_end"] - params["voting_start"] == DEFAULT_DURATION_SECONDS

        assert main(["init", "--deployer-key", OWNER_KEY]) == 1

    def test_vote_round_trip(self, workspace, capsys) -> None:
        assert main(["init", "--deployer-key", OWNER_KEY]) == 0
        capsys.readouterr()

        assert main(["sign-vote", "--key", VOTER_KEY, "--candidate", "1"]) == 0
        signed = _read_json(capsys)
        assert signed["vote"]["nonce"] == 0
        vote_file = workspace / "vote.json"
        vote_file.write_text(json.dumps(signed), encoding="utf-8")

        assert main(["submit", str(vote_file)]) == 0
        (outcome,) = _read_json(capsys)
        assert outcome["status"] == "submitted"

        assert main(["submit", str(vote_file)]) == 1
        (replayed,) = _read_json(capsys)
        assert replayed["status"] == "nonce_mismatch"

        assert main(["status"]) == 0
        status = _read_json(capsys)
        assert status["election"]["total_votes"] == 1
        assert status["election"]["candidates"][1]["votes"] == 1

    def test_owner_commands(self, workspace, capsys) -> None:
        assert main(["init", "--deployer-key", OWNER_KEY]) == 0
        end = _read_json(capsys)["parameters"]["voting_end"]

        assert main(["finalize", "--owner-key", OWNER_KEY]) == 1
        assert main(["extend", "--owner-key", STRANGER_KEY, "--add-seconds", "60"]) == 1
        assert main(["extend", "--owner-key", OWNER_KEY, "--add-seconds", "60"]) == 0
        assert f"Voting end moved to {end + 60}" in capsys.readouterr().out

        stranger = Account.from_key(STRANGER_KEY).address
        assert main(["transfer-owner", "--owner-key", OWNER_KEY, "--to", stranger]) == 0
        assert main(["extend", "--owner-key", OWNER_KEY, "--end", str(end)]) == 1
        assert main(["extend", "--owner-key", STRANGER_KEY, "--end", str(end)]) == 0
