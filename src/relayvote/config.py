"""Configuration — election parameters and relayer settings.

Values come from the process environment, optionally seeded from a
.env file at the working directory (or an explicit path). Every setting
has a development default except the relayer key and RPC endpoint,
which are only required for the on-chain binding.

Election variables:
    ELECTION_NAME, CANDIDATES (comma-separated), VOTING_DURATION_SECONDS,
    ELECTION_ID, OWNER_ADDRESS

Relayer variables:
    CONTRACT_ADDRESS, RPC_URL / SEPOLIA_RPC_URL, RELAYER_PRIVATE_KEY,
    CHAIN_ID, PORT, RELAYER_GAS_LIMIT, RELAYER_SUBMIT_INTERVAL_SECONDS,
    RELAYER_MAX_ATTEMPTS, RELAYER_BACKOFF_SECONDS, RELAYVOTE_DATA_DIR
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv
from eth_utils import to_checksum_address

from relayvote.models.election import MIN_CANDIDATES


DEFAULT_ELECTION_NAME = "MyElection2025"
DEFAULT_CANDIDATES = ("Alice", "Bob", "Carol")
DEFAULT_DURATION_SECONDS = 7 * 24 * 60 * 60
DEFAULT_CHAIN_ID = 31337
DEFAULT_PORT = 3000
DEFAULT_DATA_DIR = Path("data")


def load_environment(env_file: Optional[Path] = None) -> None:
    """Load a .env file into os.environ without overriding real variables."""
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv(find_dotenv(usecwd=True))


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from e


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class ElectionSettings:
    """Initialization parameters for a new election."""
    name: str = DEFAULT_ELECTION_NAME
    candidates: tuple[str, ...] = DEFAULT_CANDIDATES
    duration_seconds: int = DEFAULT_DURATION_SECONDS
    election_id: int = 1
    owner: Optional[str] = None  # None = the deploying identity

    def __post_init__(self) -> None:
        if len(self.candidates) < MIN_CANDIDATES:
            raise ValueError(f"At least {MIN_CANDIDATES} candidates are required")
        if self.duration_seconds <= 0:
            raise ValueError("Voting duration must be greater than 0")
        if self.owner is not None:
            object.__setattr__(self, "owner", to_checksum_address(self.owner))

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> ElectionSettings:
        env = os.environ if env is None else env
        raw_candidates = env.get("CANDIDATES")
        candidates = (
            tuple(c.strip() for c in raw_candidates.split(",") if c.strip())
            if raw_candidates
            else DEFAULT_CANDIDATES
        )
        return ElectionSettings(
            name=env.get("ELECTION_NAME") or DEFAULT_ELECTION_NAME,
            candidates=candidates,
            duration_seconds=_int(env, "VOTING_DURATION_SECONDS", DEFAULT_DURATION_SECONDS),
            election_id=_int(env, "ELECTION_ID", 1),
            owner=env.get("OWNER_ADDRESS") or None,
        )


@dataclass(frozen=True)
class RelayerSettings:
    """Relayer runtime settings."""
    contract_address: Optional[str] = None
    rpc_url: Optional[str] = None
    private_key: Optional[str] = None
    chain_id: int = DEFAULT_CHAIN_ID
    port: int = DEFAULT_PORT
    gas_limit: int = 200_000
    submit_interval_seconds: float = 1.0
    max_attempts: int = 3
    backoff_seconds: float = 0.5
    data_dir: Path = DEFAULT_DATA_DIR

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("RELAYER_MAX_ATTEMPTS must be at least 1")
        if self.gas_limit <= 0:
            raise ValueError("RELAYER_GAS_LIMIT must be greater than 0")
        if self.submit_interval_seconds < 0 or self.backoff_seconds < 0:
            raise ValueError("Relayer delays must not be negative")

    @property
    def on_chain(self) -> bool:
        """True when enough is configured to relay to a deployed contract."""
        return bool(self.rpc_url and self.private_key and self.contract_address)

    def require_on_chain(self) -> None:
        if not self.on_chain:
            raise ValueError(
                "Missing RELAYER_PRIVATE_KEY, RPC_URL or CONTRACT_ADDRESS for on-chain relaying"
            )

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> RelayerSettings:
        env = os.environ if env is None else env
        return RelayerSettings(
            contract_address=env.get("CONTRACT_ADDRESS") or None,
            rpc_url=env.get("SEPOLIA_RPC_URL") or env.get("RPC_URL") or None,
            private_key=env.get("RELAYER_PRIVATE_KEY") or None,
            chain_id=_int(env, "CHAIN_ID", DEFAULT_CHAIN_ID),
            port=_int(env, "PORT", DEFAULT_PORT),
            gas_limit=_int(env, "RELAYER_GAS_LIMIT", 200_000),
            submit_interval_seconds=_float(env, "RELAYER_SUBMIT_INTERVAL_SECONDS", 1.0),
            max_attempts=_int(env, "RELAYER_MAX_ATTEMPTS", 3),
            backoff_seconds=_float(env, "RELAYER_BACKOFF_SECONDS", 0.5),
            data_dir=Path(env.get("RELAYVOTE_DATA_DIR") or DEFAULT_DATA_DIR),
        )
