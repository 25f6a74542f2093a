"""Election and vote-intent data models.

An election is a single, time-bounded ballot over a fixed candidate list.
Every deployed ledger instance owns exactly one election. A vote intent
is the signed-but-not-yet-applied request to count one vote; it is
produced by the voter's wallet and consumed at most once by the ledger.

Timestamps are integer Unix seconds, matching ledger block time.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from eth_utils import to_checksum_address


MIN_CANDIDATES = 2
UINT256_MAX = 2**256 - 1


class ElectionPhase(str, enum.Enum):
    """Lifecycle phases of an election.

    Progression is one-way: CREATED → OPEN → CLOSED → FINALIZED.
    CREATED only applies while the clock is before voting_start.
    """
    CREATED = "created"
    OPEN = "open"
    CLOSED = "closed"
    FINALIZED = "finalized"


@dataclass
class Election:
    """A single election instance.

    Invariants:
    - len(candidates) >= 2, fixed after creation
    - voting_end > voting_start
    - finalized implies winning_candidate_id is a valid candidate index
    """
    name: str
    candidates: tuple[str, ...]
    election_id: int
    voting_start: int
    voting_end: int
    finalized: bool = False
    winning_candidate_id: Optional[int] = None

    def __post_init__(self) -> None:
        self.candidates = tuple(self.candidates)
        if not self.name:
            raise ValueError("Election name must not be empty")
        if len(self.candidates) < MIN_CANDIDATES:
            raise ValueError(
                f"At least {MIN_CANDIDATES} candidates are required, "
                f"got {len(self.candidates)}"
            )
        if any(not c.strip() for c in self.candidates):
            raise ValueError("Candidate names must not be blank")
        if self.election_id < 0:
            raise ValueError("election_id must be non-negative")
        if self.voting_end <= self.voting_start:
            raise ValueError("voting_end must be after voting_start")

    def is_valid_candidate(self, candidate_id: int) -> bool:
        return 0 <= candidate_id < len(self.candidates)

    def phase(self, now: int) -> ElectionPhase:
        """Derive the lifecycle phase at a given time."""
        if self.finalized:
            return ElectionPhase.FINALIZED
        if now < self.voting_start:
            return ElectionPhase.CREATED
        if now <= self.voting_end:
            return ElectionPhase.OPEN
        return ElectionPhase.CLOSED


@dataclass(frozen=True)
class VoteIntent:
    """A signed request to cast one vote.

    The five fields form the typed payload that the voter signs.
    The voter address is stored in checksum form so that comparisons
    against recovered signers are exact.
    """
    voter: str
    candidate_id: int
    election_id: int
    nonce: int
    deadline: int

    def __post_init__(self) -> None:
        # Raises ValueError for anything that is not a 20-byte address
        object.__setattr__(self, "voter", to_checksum_address(self.voter))
        for name in ("candidate_id", "election_id", "nonce", "deadline"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
            if value > UINT256_MAX:
                raise ValueError(f"{name} exceeds uint256")

    @staticmethod
    def from_wire(payload: dict[str, Any]) -> VoteIntent:
        """Build an intent from the camelCase wire shape.

        Numeric fields may arrive as decimal strings (wallet libraries
        serialise uint256 that way).
        """
        missing = [
            k for k in ("voter", "candidateId", "electionId", "nonce", "deadline")
            if payload.get(k) is None
        ]
        if missing:
            raise ValueError(f"Invalid vote structure: missing {', '.join(missing)}")
        return VoteIntent(
            voter=str(payload["voter"]),
            candidate_id=_as_int(payload["candidateId"], "candidateId"),
            election_id=_as_int(payload["electionId"], "electionId"),
            nonce=_as_int(payload["nonce"], "nonce"),
            deadline=_as_int(payload["deadline"], "deadline"),
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "voter": self.voter,
            "candidateId": self.candidate_id,
            "electionId": self.election_id,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }


@dataclass
class TallySnapshot:
    """Read-only view of the tally at a point in time."""
    votes_by_candidate: list[int] = field(default_factory=list)
    total_votes: int = 0


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValueError(f"{name} must be an integer, got {value!r}")
