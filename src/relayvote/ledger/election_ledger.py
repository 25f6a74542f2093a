"""Election ledger — the stable, atomically-mutated handle on an election.

The ledger pairs an ElectionStore (state) with an ElectionLogic
(behaviour) behind a fixed address and chain id. Callers always talk to
the ledger; the logic can be replaced through an owner-authorized
upgrade without moving or migrating the store.

Every state-changing call runs under a single lock, giving a total
order over submissions. A call either applies completely or leaves the
store exactly as it was:
1. Snapshot the store.
2. Let the logic validate and mutate.
3. Append the resulting observations to the event log.
4. Persist the store snapshot.

If step 2 or 3 fails the snapshot is restored. A failure in step 4
happens after the audit trail is durable, so in-memory state is kept and
the ledger is flagged as persistence-degraded instead.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional, Union

from eth_utils import keccak, to_bytes, to_checksum_address

from relayvote.crypto.typed_vote import VoteDomain
from relayvote.ledger.errors import PersistenceError
from relayvote.ledger.logic import ElectionLogic, Observation
from relayvote.ledger.store import ElectionStore
from relayvote.models.election import Election, ElectionPhase, TallySnapshot, VoteIntent
from relayvote.persistence.event_log import EventKind, EventLog, EventRecord
from relayvote.persistence.state_store import StateStore


DEFAULT_CHAIN_ID = 31337  # local development chain

logger = logging.getLogger(__name__)


def _unix_now() -> int:
    return int(time.time())


def derive_ledger_address(owner: str, election_id: int, name: str) -> str:
    """Deterministic address for a locally hosted ledger instance."""
    seed = to_bytes(hexstr=to_checksum_address(owner)) + election_id.to_bytes(32, "big")
    seed += name.encode("utf-8")
    return to_checksum_address(keccak(seed)[-20:])


class ElectionLedger:
    """Authoritative election state with a single gate for votes.

    Usage:
        ledger = ElectionLedger.create(
            name="MyElection2025",
            candidates=["Alice", "Bob", "Carol"],
            duration_seconds=7 * 24 * 3600,
            election_id=1,
            owner=owner_address,
        )
        ledger.submit_vote(intent, signature, sender=relayer_address)
        ledger.finalize_winner(caller=owner_address)

    Persistence (optional):
        ledger = ElectionLedger.open(state_store, address, event_log=log)
    """

    def __init__(
        self,
        store: ElectionStore,
        address: str,
        chain_id: int = DEFAULT_CHAIN_ID,
        logic: Optional[ElectionLogic] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        clock: Callable[[], int] = _unix_now,
    ) -> None:
        self._store = store
        self._address = to_checksum_address(address)
        self._chain_id = chain_id
        self._logic = logic or ElectionLogic()
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store
        self._clock = clock
        self._lock = threading.RLock()
        self._event_counter = self._event_log.count
        self._persistence_degraded = False

        if not self._store.logic_version:
            self._store.logic_version = self._logic.version

    @classmethod
    def create(
        cls,
        name: str,
        candidates: list[str],
        duration_seconds: int,
        election_id: int,
        owner: str,
        chain_id: int = DEFAULT_CHAIN_ID,
        address: Optional[str] = None,
        logic: Optional[ElectionLogic] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        clock: Callable[[], int] = _unix_now,
    ) -> ElectionLedger:
        """Initialize a new election. Voting opens at creation time."""
        if duration_seconds <= 0:
            raise ValueError("Voting duration must be greater than 0")
        start = clock()
        election = Election(
            name=name,
            candidates=tuple(candidates),
            election_id=election_id,
            voting_start=start,
            voting_end=start + duration_seconds,
        )
        store = ElectionStore(election=election, owner=owner)
        ledger = cls(
            store,
            address=address or derive_ledger_address(owner, election_id, name),
            chain_id=chain_id,
            logic=logic,
            event_log=event_log,
            state_store=state_store,
            clock=clock,
        )
        ledger._commit(lambda: [Observation(
            kind=EventKind.ELECTION_INITIALIZED,
            actor_id=store.owner,
            payload={
                "name": election.name,
                "candidates": list(election.candidates),
                "election_id": election.election_id,
                "voting_start": election.voting_start,
                "voting_end": election.voting_end,
                "address": ledger.address,
                "chain_id": chain_id,
            },
        )])
        return ledger

    @classmethod
    def open(
        cls,
        state_store: StateStore,
        address: str,
        chain_id: int = DEFAULT_CHAIN_ID,
        logic: Optional[ElectionLogic] = None,
        event_log: Optional[EventLog] = None,
        clock: Callable[[], int] = _unix_now,
    ) -> ElectionLedger:
        """Reattach to a persisted election."""
        store = state_store.load()
        if store is None:
            raise FileNotFoundError(f"No election state at {state_store.path}")
        return cls(
            store,
            address=address,
            chain_id=chain_id,
            logic=logic,
            event_log=event_log,
            state_store=state_store,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # State-changing operations
    # ------------------------------------------------------------------

    def submit_vote(
        self,
        intent: VoteIntent,
        signature: Union[str, bytes],
        sender: Optional[str] = None,
    ) -> list[EventRecord]:
        """Admit a signed vote. Raises VoteRejected on any rule violation.

        sender is the party submitting the transaction; it defaults to
        the voter (self-submission).
        """
        sender = sender or intent.voter
        with self._lock:
            now = self._clock()
            return self._commit(lambda: self._logic.submit_vote(
                self._store, self.domain, intent, signature, sender, now,
            ))

    def set_voting_end(self, caller: str, new_end: int) -> list[EventRecord]:
        with self._lock:
            return self._commit(
                lambda: self._logic.set_voting_end(self._store, caller, new_end),
            )

    def finalize_winner(self, caller: str) -> list[EventRecord]:
        with self._lock:
            now = self._clock()
            return self._commit(
                lambda: self._logic.finalize_winner(self._store, caller, now),
            )

    def transfer_ownership(self, caller: str, new_owner: str) -> list[EventRecord]:
        with self._lock:
            return self._commit(
                lambda: self._logic.transfer_ownership(self._store, caller, new_owner),
            )

    def upgrade_logic(self, caller: str, new_logic: ElectionLogic) -> list[EventRecord]:
        """Swap the behaviour bound to this ledger. State is untouched.

        Authorization is asked of the currently active logic.
        """
        with self._lock:
            previous = self._logic

            def _apply() -> list[Observation]:
                observations = previous.authorize_upgrade(
                    self._store, caller, new_logic.version,
                )
                self._store.logic_version = new_logic.version
                return observations

            records = self._commit(_apply)
            self._logic = new_logic
            return records

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._address

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def domain(self) -> VoteDomain:
        return VoteDomain(
            name=self._store.election.name,
            chain_id=self._chain_id,
            verifying_contract=self._address,
        )

    @property
    def election(self) -> Election:
        return self._store.election

    @property
    def election_id(self) -> int:
        return self._store.election.election_id

    @property
    def election_name(self) -> str:
        return self._store.election.name

    @property
    def voting_start(self) -> int:
        return self._store.election.voting_start

    @property
    def voting_end(self) -> int:
        return self._store.election.voting_end

    @property
    def owner(self) -> str:
        return self._store.owner

    @property
    def finalized(self) -> bool:
        return self._store.election.finalized

    @property
    def winning_candidate_id(self) -> Optional[int]:
        return self._store.election.winning_candidate_id

    @property
    def logic_version(self) -> str:
        return self._store.logic_version

    @property
    def candidates_length(self) -> int:
        return len(self._store.election.candidates)

    def candidate_name(self, candidate_id: int) -> str:
        if not self._store.election.is_valid_candidate(candidate_id):
            raise IndexError(f"No candidate with id {candidate_id}")
        return self._store.election.candidates[candidate_id]

    def voter_nonces(self, voter: str) -> int:
        with self._lock:
            return self._store.sequence_of(voter)

    def has_voted(self, voter: str, *, election_id: Optional[int] = None) -> bool:
        eid = self.election_id if election_id is None else election_id
        with self._lock:
            return self._store.voted(eid, voter)

    def votes_for(self, candidate_id: int) -> int:
        return self._store.votes_by_candidate[candidate_id]

    def tally(self) -> TallySnapshot:
        with self._lock:
            votes = list(self._store.votes_by_candidate)
        return TallySnapshot(votes_by_candidate=votes, total_votes=sum(votes))

    def phase(self) -> ElectionPhase:
        return self._store.election.phase(self._clock())

    def now(self) -> int:
        return self._clock()

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    def describe(self) -> dict[str, Any]:
        """Election-wide view for status endpoints."""
        with self._lock:
            election = self._store.election
            return {
                "name": election.name,
                "election_id": election.election_id,
                "address": self._address,
                "chain_id": self._chain_id,
                "owner": self._store.owner,
                "candidates": [
                    {"id": i, "name": n, "votes": self._store.votes_by_candidate[i]}
                    for i, n in enumerate(election.candidates)
                ],
                "total_votes": self._store.total_votes,
                "voting_start": election.voting_start,
                "voting_end": election.voting_end,
                "phase": election.phase(self._clock()).value,
                "finalized": election.finalized,
                "winning_candidate_id": election.winning_candidate_id,
                "logic_version": self._store.logic_version,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _next_event_id(self) -> str:
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _commit(self, mutate: Callable[[], list[Observation]]) -> list[EventRecord]:
        """Apply a mutation atomically, rolling back on failure."""
        with self._lock:
            snapshot = self._store.snapshot()
            counter = self._event_counter
            try:
                observations = mutate()
                records = [
                    EventRecord.create(
                        event_id=self._next_event_id(),
                        event_kind=o.kind,
                        actor_id=o.actor_id,
                        payload=o.payload,
                        timestamp=self._clock(),
                    )
                    for o in observations
                ]
            except Exception:
                self._store.restore(snapshot)
                self._event_counter = counter
                raise

            try:
                for record in records:
                    self._event_log.append(record)
            except (ValueError, OSError) as e:
                self._store.restore(snapshot)
                self._event_counter = counter
                raise PersistenceError(f"Event log failure: {e}") from e

            if self._state_store is not None:
                try:
                    self._state_store.save(self._store)
                except OSError as e:
                    self._persistence_degraded = True
                    logger.warning(
                        "State snapshot failed after audit commit: %s (store is stale)", e,
                    )
            return records
