"""Relayer queue — accepts signed intents and serially settles them.

Submitters hand the relayer a (vote, signature) pair and get an answer
immediately: the intent is queued, not confirmed. A single drainer
then works through the FIFO queue:
1. Drop the intent if its deadline has passed.
2. Read the voter's current sequence counter; drop on mismatch (already
   applied, or superseded by a newer intent).
3. Submit, and wait for confirmation before touching the next item.

Exactly one intent is in flight at a time, so two intents from the same
voter can never race on the shared sequence counter. Ledger rejections
are terminal for that intent. Transient binding failures are retried
with exponential backoff, then dropped as failed. Any other error fails
that one intent and the drainer moves on to the next.

Every processed intent leaves a DrainOutcome in a bounded history so
submitters can detect drops and re-sign with a fresh nonce.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from relayvote.crypto.typed_vote import parse_signature
from relayvote.models.election import VoteIntent
from relayvote.relayer.binding import (
    LedgerBinding,
    SubmissionRejected,
    TransientSubmissionError,
    format_ether,
)


logger = logging.getLogger(__name__)


def _unix_now() -> int:
    return int(time.time())


class DrainStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    EXPIRED = "expired"
    NONCE_MISMATCH = "nonce_mismatch"
    REJECTED = "rejected"
    FAILED = "failed"


class EnqueueRejected(ValueError):
    """The intent is structurally unusable and was not queued."""


@dataclass(frozen=True)
class QueuedVote:
    ticket: str
    intent: VoteIntent
    signature: str
    enqueued_at: int

    def summary(self) -> dict[str, Any]:
        return {
            "ticket": self.ticket,
            "voter": self.intent.voter,
            "candidate_id": self.intent.candidate_id,
            "nonce": self.intent.nonce,
            "timestamp": self.enqueued_at,
        }


@dataclass(frozen=True)
class DrainOutcome:
    ticket: str
    voter: str
    candidate_id: int
    nonce: int
    status: DrainStatus
    detail: str = ""
    tx_hash: str = ""
    attempts: int = 0
    processed_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticket": self.ticket,
            "voter": self.voter,
            "candidate_id": self.candidate_id,
            "nonce": self.nonce,
            "status": self.status.value,
            "detail": self.detail,
            "tx_hash": self.tx_hash,
            "attempts": self.attempts,
            "processed_at": self.processed_at,
        }


class RelayerQueue:
    """FIFO of pending intents with a single cooperative drainer.

    Usage:
        queue = RelayerQueue(binding)
        queue.enqueue(intent, signature)   # returns immediately
        queue.wait_idle(timeout=30)

    With auto_drain=False nothing is submitted until drain() is called,
    which processes the queue on the calling thread.
    """

    def __init__(
        self,
        binding: LedgerBinding,
        clock: Callable[[], int] = _unix_now,
        sleep: Callable[[float], None] = time.sleep,
        auto_drain: bool = True,
        submit_interval: float = 0.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        prefilter_expired: bool = True,
        history_size: int = 100,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._binding = binding
        self._clock = clock
        self._sleep = sleep
        self._auto_drain = auto_drain
        self._submit_interval = submit_interval
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._prefilter_expired = prefilter_expired

        self._lock = threading.Lock()
        self._queue: deque[QueuedVote] = deque()
        self._draining = False
        self._in_flight: Optional[QueuedVote] = None
        self._idle = threading.Event()
        self._idle.set()
        self._ticket_counter = 0
        self._outcomes: deque[DrainOutcome] = deque(maxlen=history_size)
        self._counts: dict[str, int] = {s.value: 0 for s in DrainStatus}

    # ------------------------------------------------------------------
    # Submission side
    # ------------------------------------------------------------------

    def enqueue(self, intent: VoteIntent, signature: Union[str, bytes]) -> QueuedVote:
        """Queue an intent. Only the structure is checked here.

        Raises EnqueueRejected for a malformed signature or (when
        pre-filtering) an intent whose deadline has already passed.
        """
        try:
            raw = parse_signature(signature)
        except ValueError as e:
            raise EnqueueRejected(str(e)) from e

        now = self._clock()
        if self._prefilter_expired and intent.deadline < now:
            raise EnqueueRejected(
                f"Vote expired: deadline {intent.deadline} is before {now}"
            )

        with self._lock:
            self._ticket_counter += 1
            item = QueuedVote(
                ticket=f"Q-{self._ticket_counter:08d}",
                intent=intent,
                signature="0x" + raw.hex(),
                enqueued_at=now,
            )
            self._queue.append(item)
            self._idle.clear()
            start_drainer = self._auto_drain and not self._draining

        logger.info(
            "Vote queued from %s for candidate %d (%s)",
            intent.voter, intent.candidate_id, item.ticket,
        )
        if start_drainer:
            threading.Thread(
                target=self.drain, name="relayer-drain", daemon=True,
            ).start()
        return item

    def enqueue_wire(self, payload: dict[str, Any]) -> QueuedVote:
        """Queue a {vote: {...}, signature} request body."""
        vote = payload.get("vote")
        signature = payload.get("signature")
        if not isinstance(vote, dict) or not signature:
            raise EnqueueRejected("Missing vote or signature")
        try:
            intent = VoteIntent.from_wire(vote)
        except ValueError as e:
            raise EnqueueRejected(str(e)) from e
        return self.enqueue(intent, signature)

    # ------------------------------------------------------------------
    # Drain side
    # ------------------------------------------------------------------

    def drain(self) -> list[DrainOutcome]:
        """Process the queue until empty.

        Returns the outcomes produced by this call. If another drain is
        already running this is a no-op and returns [].
        """
        with self._lock:
            if self._draining:
                return []
            self._draining = True
            self._idle.clear()

        outcomes: list[DrainOutcome] = []
        try:
            while True:
                with self._lock:
                    if not self._queue:
                        self._draining = False
                        self._in_flight = None
                        self._idle.set()
                        return outcomes
                    item = self._queue.popleft()
                    self._in_flight = item

                try:
                    outcome = self._process(item)
                except Exception as e:
                    logger.exception(
                        "Unexpected failure relaying vote for %s (%s)",
                        item.intent.voter, item.ticket,
                    )
                    outcome = self._outcome(
                        item, DrainStatus.FAILED, detail=f"unexpected error: {e}", attempts=1,
                    )
                outcomes.append(outcome)
                with self._lock:
                    self._outcomes.append(outcome)
                    self._counts[outcome.status.value] += 1
                    self._in_flight = None
                    more = bool(self._queue)

                if outcome.status == DrainStatus.SUBMITTED and more and self._submit_interval > 0:
                    self._sleep(self._submit_interval)
        finally:
            with self._lock:
                if self._draining:
                    # The loop itself failed; release the drainer
                    self._draining = False
                    self._in_flight = None
                    if not self._queue:
                        self._idle.set()

    def _process(self, item: QueuedVote) -> DrainOutcome:
        intent = item.intent
        attempt = 0
        while True:
            attempt += 1
            now = self._clock()
            if intent.deadline < now:
                logger.info("Vote expired for %s (%s)", intent.voter, item.ticket)
                return self._outcome(item, DrainStatus.EXPIRED, attempts=attempt - 1)

            try:
                current = self._binding.voter_nonce(intent.voter)
                if current != intent.nonce:
                    logger.warning(
                        "Nonce mismatch for %s. Expected %d, got %d",
                        intent.voter, current, intent.nonce,
                    )
                    return self._outcome(
                        item, DrainStatus.NONCE_MISMATCH,
                        detail=f"expected {current}, got {intent.nonce}",
                        attempts=attempt - 1,
                    )

                logger.info(
                    "Submitting vote for %s (candidate %d)",
                    intent.voter, intent.candidate_id,
                )
                receipt = self._binding.submit_vote(intent, item.signature)
            except SubmissionRejected as e:
                logger.error("Vote for %s rejected: %s", intent.voter, e.reason)
                if "bad nonce" in e.reason or "already voted" in e.reason:
                    logger.info("Vote for %s may have already been submitted", intent.voter)
                return self._outcome(
                    item, DrainStatus.REJECTED, detail=e.reason, attempts=attempt,
                )
            except TransientSubmissionError as e:
                if attempt >= self._max_attempts:
                    logger.error(
                        "Giving up on vote for %s after %d attempts: %s",
                        intent.voter, attempt, e,
                    )
                    return self._outcome(
                        item, DrainStatus.FAILED, detail=str(e), attempts=attempt,
                    )
                delay = self._backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Transient failure for %s (attempt %d/%d), retrying in %.2fs: %s",
                    intent.voter, attempt, self._max_attempts, delay, e,
                )
                self._sleep(delay)
                continue

            logger.info(
                "Vote submitted for %s (candidate %d), tx %s",
                intent.voter, intent.candidate_id, receipt.tx_hash,
            )
            return self._outcome(
                item, DrainStatus.SUBMITTED, tx_hash=receipt.tx_hash, attempts=attempt,
            )

    def _outcome(
        self,
        item: QueuedVote,
        status: DrainStatus,
        detail: str = "",
        tx_hash: str = "",
        attempts: int = 0,
    ) -> DrainOutcome:
        return DrainOutcome(
            ticket=item.ticket,
            voter=item.intent.voter,
            candidate_id=item.intent.candidate_id,
            nonce=item.intent.nonce,
            status=status,
            detail=detail,
            tx_hash=tx_hash,
            attempts=attempts,
            processed_at=self._clock(),
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is empty and no drain is running."""
        return self._idle.wait(timeout)

    @property
    def length(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def is_processing(self) -> bool:
        with self._lock:
            return self._draining

    def pending(self) -> list[QueuedVote]:
        with self._lock:
            return list(self._queue)

    def recent_outcomes(self) -> list[DrainOutcome]:
        with self._lock:
            return list(self._outcomes)

    def outcome_for(self, ticket: str) -> Optional[DrainOutcome]:
        with self._lock:
            for outcome in reversed(self._outcomes):
                if outcome.ticket == ticket:
                    return outcome
        return None

    def health(self) -> dict[str, Any]:
        """Relayer identity, balance, network and queue length."""
        network = self._binding.network()
        return {
            "status": "healthy",
            "relayer": self._binding.relayer_address,
            "balance": format_ether(self._binding.balance_wei()),
            "network": network.name,
            "chain_id": network.chain_id,
            "contract": self._binding.ledger_address,
            "queue_length": self.length,
        }

    def queue_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "queue_length": len(self._queue),
                "is_processing": self._draining,
                "in_flight": self._in_flight.summary() if self._in_flight else None,
                "queued_votes": [q.summary() for q in self._queue],
                "recent_outcomes": [o.to_dict() for o in self._outcomes],
                "counts": dict(self._counts),
            }
