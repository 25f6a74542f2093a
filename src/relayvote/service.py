"""Voting service — unified facade over the ledger and the relayer.

This is the primary interface for programmatic access. It ties:
- Signed intent intake (structural validation, queueing)
- Election views (timing, tallies, finalization, a caller's own status)
- Relayer views (identity, balance, network, queue)
- Owner operations (extend voting, finalize, transfer, upgrade logic)

All operations produce typed results. Ledger rejections are surfaced
with their stable reason strings; nothing is retried here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from eth_utils import to_checksum_address

from relayvote import __version__
from relayvote.ledger.election_ledger import ElectionLedger
from relayvote.ledger.errors import LedgerError, PersistenceError
from relayvote.ledger.logic import ElectionLogic
from relayvote.persistence.event_log import EventRecord
from relayvote.relayer.binding import TransientSubmissionError
from relayvote.relayer.queue import EnqueueRejected, RelayerQueue


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class VotingService:
    """Facade used by the HTTP API and the CLI.

    Usage:
        ledger = ElectionLedger.create(...)
        queue = RelayerQueue(LocalLedgerBinding(ledger, relayer_address))
        service = VotingService(queue, ledger=ledger)

        result = service.submit_signed_vote({"vote": {...}, "signature": "0x..."})
        view = service.election_view(caller=voter_address)
        result = service.finalize(caller=owner_address)

    ledger may be omitted when relaying to a remote contract; election
    views and owner operations are then unavailable.
    """

    def __init__(
        self,
        queue: RelayerQueue,
        ledger: Optional[ElectionLedger] = None,
    ) -> None:
        self._queue = queue
        self._ledger = ledger

    @property
    def queue(self) -> RelayerQueue:
        return self._queue

    @property
    def ledger(self) -> Optional[ElectionLedger]:
        return self._ledger

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def submit_signed_vote(self, payload: dict[str, Any]) -> ServiceResult:
        """Queue a {vote, signature} body. Success means queued, not settled."""
        try:
            item = self._queue.enqueue_wire(payload)
        except EnqueueRejected as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(
            success=True,
            data={
                "message": "Vote received and queued for submission",
                "ticket": item.ticket,
                "voter": item.intent.voter,
                "candidate_id": item.intent.candidate_id,
            },
        )

    def ticket_status(self, ticket: str) -> ServiceResult:
        for item in self._queue.pending():
            if item.ticket == ticket:
                return ServiceResult(success=True, data={"ticket": ticket, "status": "queued"})
        outcome = self._queue.outcome_for(ticket)
        if outcome is None:
            return ServiceResult(success=False, errors=[f"Unknown ticket: {ticket}"])
        return ServiceResult(success=True, data=outcome.to_dict())

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def election_view(self, caller: Optional[str] = None) -> ServiceResult:
        if self._ledger is None:
            return ServiceResult(success=False, errors=["No local ledger configured"])
        data = self._ledger.describe()
        if caller:
            try:
                address = to_checksum_address(caller)
            except ValueError as e:
                return ServiceResult(success=False, errors=[f"Invalid address: {e}"])
            data["caller"] = {
                "address": address,
                "has_voted": self._ledger.has_voted(address),
                "nonce": self._ledger.voter_nonces(address),
            }
        return ServiceResult(success=True, data=data)

    def relayer_health(self) -> ServiceResult:
        try:
            return ServiceResult(success=True, data=self._queue.health())
        except (OSError, TransientSubmissionError) as e:
            return ServiceResult(success=False, errors=[str(e)])

    def queue_status(self) -> dict[str, Any]:
        return self._queue.queue_status()

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        summary: dict[str, Any] = {
            "version": __version__,
            "relayer": {
                "queue_length": self._queue.length,
                "is_processing": self._queue.is_processing,
                "counts": self._queue.queue_status()["counts"],
            },
        }
        if self._ledger is not None:
            summary["election"] = self._ledger.describe()
            summary["events"] = self._ledger.event_log.count
            summary["persistence_degraded"] = self._ledger.persistence_degraded
        return summary

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    def extend_voting(self, caller: str, new_end: int) -> ServiceResult:
        return self._owner_call(lambda ledger: ledger.set_voting_end(caller, new_end))

    def finalize(self, caller: str) -> ServiceResult:
        result = self._owner_call(lambda ledger: ledger.finalize_winner(caller))
        if result.success and self._ledger is not None:
            winner = self._ledger.winning_candidate_id
            result.data["winning_candidate_id"] = winner
            result.data["winning_candidate"] = self._ledger.candidate_name(winner)
        return result

    def transfer_ownership(self, caller: str, new_owner: str) -> ServiceResult:
        return self._owner_call(lambda ledger: ledger.transfer_ownership(caller, new_owner))

    def upgrade_logic(self, caller: str, logic: ElectionLogic) -> ServiceResult:
        return self._owner_call(lambda ledger: ledger.upgrade_logic(caller, logic))

    def _owner_call(
        self, op: Callable[[ElectionLedger], list[EventRecord]],
    ) -> ServiceResult:
        if self._ledger is None:
            return ServiceResult(success=False, errors=["No local ledger configured"])
        try:
            records = op(self._ledger)
        except (LedgerError, PersistenceError, ValueError) as e:
            return ServiceResult(success=False, errors=[str(e)])
        return ServiceResult(
            success=True,
            data={"events": [r.to_dict() for r in records]},
        )
