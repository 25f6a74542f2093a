"""Election state store — the persistent half of the ledger.

The store owns every piece of authoritative state: the election record,
tallies, per-voter sequence counters, vote flags, the owner and the
version of the logic currently bound to it. It holds no behaviour
beyond plain accessors, so the logic that mutates it can be swapped
without touching or migrating the state.

There is deliberately no method that clears a vote flag or lowers a
sequence counter.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from eth_utils import to_checksum_address

from relayvote.models.election import Election


@dataclass
class ElectionStore:
    """Authoritative election state, addressable independently of logic."""
    election: Election
    owner: str
    votes_by_candidate: list[int] = field(default_factory=list)
    # election_id -> set of checksum voter addresses
    has_voted: dict[int, set[str]] = field(default_factory=dict)
    sequence_by_voter: dict[str, int] = field(default_factory=dict)
    logic_version: str = ""

    def __post_init__(self) -> None:
        self.owner = to_checksum_address(self.owner)
        if not self.votes_by_candidate:
            self.votes_by_candidate = [0] * len(self.election.candidates)
        if len(self.votes_by_candidate) != len(self.election.candidates):
            raise ValueError("Tally length does not match candidate count")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def sequence_of(self, voter: str) -> int:
        return self.sequence_by_voter.get(to_checksum_address(voter), 0)

    def voted(self, election_id: int, voter: str) -> bool:
        return to_checksum_address(voter) in self.has_voted.get(election_id, set())

    @property
    def total_votes(self) -> int:
        return sum(self.votes_by_candidate)

    # ------------------------------------------------------------------
    # Writes (called only by ledger logic, under the ledger lock)
    # ------------------------------------------------------------------

    def record_vote(self, election_id: int, voter: str, candidate_id: int, nonce: int) -> None:
        """Apply the three effects of an accepted vote together."""
        voter = to_checksum_address(voter)
        self.has_voted.setdefault(election_id, set()).add(voter)
        self.votes_by_candidate[candidate_id] += 1
        self.sequence_by_voter[voter] = nonce + 1

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> ElectionStore:
        """Deep copy used to roll back a mutation that failed to commit."""
        return copy.deepcopy(self)

    def restore(self, snapshot: ElectionStore) -> None:
        self.election = snapshot.election
        self.owner = snapshot.owner
        self.votes_by_candidate = snapshot.votes_by_candidate
        self.has_voted = snapshot.has_voted
        self.sequence_by_voter = snapshot.sequence_by_voter
        self.logic_version = snapshot.logic_version

    def to_dict(self) -> dict[str, Any]:
        e = self.election
        return {
            "election": {
                "name": e.name,
                "candidates": list(e.candidates),
                "election_id": e.election_id,
                "voting_start": e.voting_start,
                "voting_end": e.voting_end,
                "finalized": e.finalized,
                "winning_candidate_id": e.winning_candidate_id,
            },
            "owner": self.owner,
            "votes_by_candidate": list(self.votes_by_candidate),
            "has_voted": {
                str(eid): sorted(voters) for eid, voters in self.has_voted.items()
            },
            "sequence_by_voter": dict(sorted(self.sequence_by_voter.items())),
            "logic_version": self.logic_version,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ElectionStore:
        e = data["election"]
        winner: Optional[int] = e.get("winning_candidate_id")
        election = Election(
            name=e["name"],
            candidates=tuple(e["candidates"]),
            election_id=int(e["election_id"]),
            voting_start=int(e["voting_start"]),
            voting_end=int(e["voting_end"]),
            finalized=bool(e.get("finalized", False)),
            winning_candidate_id=winner,
        )
        if election.finalized and (
            winner is None or not election.is_valid_candidate(winner)
        ):
            raise ValueError("Finalized election has no valid winning candidate")
        return ElectionStore(
            election=election,
            owner=data["owner"],
            votes_by_candidate=[int(v) for v in data["votes_by_candidate"]],
            has_voted={
                int(eid): {to_checksum_address(v) for v in voters}
                for eid, voters in data.get("has_voted", {}).items()
            },
            sequence_by_voter={
                to_checksum_address(v): int(n)
                for v, n in data.get("sequence_by_voter", {}).items()
            },
            logic_version=data.get("logic_version", ""),
        )
