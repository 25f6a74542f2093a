"""Election logic — the swappable behaviour half of the ledger.

ElectionLogic validates and applies state transitions against an
ElectionStore that it does not own. It keeps no state of its own, so a
ledger can replace it with a newer version while every counter and
mapping stays exactly where it was.

Admission rules for submit_vote are checked in a fixed order and the
first failure aborts with no mutation:
1. Voting window (not started / ended).
2. Intent deadline.
3. Election id binding.
4. Candidate index.
5. Sequence counter (nonce).
6. Signature recovers to the claimed voter.
7. Voter has not already voted in this election.

Nonce and vote-flag checks run under the ledger lock; no two
submissions observe the same pre-increment nonce.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from eth_utils import to_checksum_address

from relayvote.crypto.typed_vote import VoteDomain, recover_voter
from relayvote.ledger.errors import (
    LedgerError,
    LifecycleError,
    NotOwner,
    RejectReason,
    VoteRejected,
)
from relayvote.ledger.store import ElectionStore
from relayvote.models.election import VoteIntent
from relayvote.persistence.event_log import EventKind


ZERO_ADDRESS = "0x" + "00" * 20


@dataclass(frozen=True)
class Observation:
    """An event produced by an accepted transition, not yet logged."""
    kind: EventKind
    actor_id: str
    payload: dict[str, Any] = field(default_factory=dict)


class ElectionLogic:
    """Version 1 of the election rules."""

    version = "1"

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    def submit_vote(
        self,
        store: ElectionStore,
        domain: VoteDomain,
        intent: VoteIntent,
        signature: Union[str, bytes],
        sender: str,
        now: int,
    ) -> list[Observation]:
        election = store.election

        if now < election.voting_start:
            raise VoteRejected(RejectReason.NOT_STARTED)
        if now > election.voting_end:
            raise VoteRejected(RejectReason.ENDED)

        if intent.deadline < now:
            raise VoteRejected(RejectReason.SIGNATURE_EXPIRED)

        if intent.election_id != election.election_id:
            raise VoteRejected(
                RejectReason.WRONG_ELECTION,
                f"expected {election.election_id}, got {intent.election_id}",
            )

        if not election.is_valid_candidate(intent.candidate_id):
            raise VoteRejected(RejectReason.BAD_CANDIDATE, str(intent.candidate_id))

        expected_nonce = store.sequence_of(intent.voter)
        if intent.nonce != expected_nonce:
            raise VoteRejected(
                RejectReason.BAD_NONCE,
                f"expected {expected_nonce}, got {intent.nonce}",
            )

        signer = recover_voter(domain, intent, signature)
        if signer is None or signer != intent.voter:
            raise VoteRejected(RejectReason.INVALID_SIGNATURE)

        if store.voted(election.election_id, intent.voter):
            raise VoteRejected(RejectReason.ALREADY_VOTED)

        store.record_vote(
            election.election_id, intent.voter, intent.candidate_id, intent.nonce,
        )

        observations = [
            Observation(
                kind=EventKind.VOTE_ACCEPTED,
                actor_id=intent.voter,
                payload={
                    "voter": intent.voter,
                    "election_id": election.election_id,
                    "candidate_id": intent.candidate_id,
                },
            ),
        ]
        relayer = to_checksum_address(sender)
        if relayer != intent.voter:
            observations.append(Observation(
                kind=EventKind.VOTE_RELAYED,
                actor_id=relayer,
                payload={
                    "voter": intent.voter,
                    "relayer": relayer,
                    "election_id": election.election_id,
                    "candidate_id": intent.candidate_id,
                },
            ))
        return observations

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def set_voting_end(
        self, store: ElectionStore, caller: str, new_end: int,
    ) -> list[Observation]:
        self._require_owner(store, caller)
        election = store.election
        if election.finalized:
            raise LifecycleError(RejectReason.FINALIZED)
        if new_end <= election.voting_start:
            raise LifecycleError(
                RejectReason.BAD_END,
                f"{new_end} is not after voting start {election.voting_start}",
            )

        old_end = election.voting_end
        election.voting_end = new_end
        return [Observation(
            kind=EventKind.VOTING_END_UPDATED,
            actor_id=store.owner,
            payload={"old_end": old_end, "new_end": new_end},
        )]

    def finalize_winner(
        self, store: ElectionStore, caller: str, now: int,
    ) -> list[Observation]:
        """Fix the winner after voting ends.

        Candidates are scanned in index order with a strict ">"
        comparison, so on a tie the lowest index holding the maximum
        wins.
        """
        self._require_owner(store, caller)
        election = store.election
        if now <= election.voting_end:
            raise LifecycleError(RejectReason.NOT_ENDED)
        if election.finalized:
            raise LifecycleError(RejectReason.ALREADY_FINALIZED)

        winner = 0
        best = -1
        for candidate_id, count in enumerate(store.votes_by_candidate):
            if count > best:
                best = count
                winner = candidate_id

        election.winning_candidate_id = winner
        election.finalized = True
        return [Observation(
            kind=EventKind.WINNER_FINALIZED,
            actor_id=store.owner,
            payload={
                "winning_candidate_id": winner,
                "winning_candidate": election.candidates[winner],
                "votes": best,
            },
        )]

    def transfer_ownership(
        self, store: ElectionStore, caller: str, new_owner: str,
    ) -> list[Observation]:
        self._require_owner(store, caller)
        target = to_checksum_address(new_owner)
        if target == to_checksum_address(ZERO_ADDRESS):
            raise LedgerError(RejectReason.ZERO_ADDRESS)
        previous = store.owner
        store.owner = target
        return [Observation(
            kind=EventKind.OWNERSHIP_TRANSFERRED,
            actor_id=previous,
            payload={"previous_owner": previous, "new_owner": target},
        )]

    def authorize_upgrade(
        self, store: ElectionStore, caller: str, new_version: str,
    ) -> list[Observation]:
        self._require_owner(store, caller)
        return [Observation(
            kind=EventKind.LOGIC_UPGRADED,
            actor_id=store.owner,
            payload={"old_version": store.logic_version, "new_version": new_version},
        )]

    @staticmethod
    def _require_owner(store: ElectionStore, caller: str) -> None:
        if to_checksum_address(caller) != store.owner:
            raise NotOwner(caller)
