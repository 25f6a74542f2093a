"""Tests for RelayerQueue — proves serial settlement, drops and retries."""

import threading

import pytest
from eth_account import Account

from relayvote.crypto.typed_vote import sign_vote
from relayvote.ledger.election_ledger import ElectionLedger
from relayvote.models.election import VoteIntent
from relayvote.relayer.binding import (
    LocalLedgerBinding,
    TransientSubmissionError,
    format_ether,
)
from relayvote.relayer.queue import DrainStatus, EnqueueRejected, RelayerQueue


START = 1_700_000_000
WEEK = 7 * 24 * 3600

OWNER = Account.from_key("0x" + "01" * 32)
RELAYER = Account.from_key("0x" + "02" * 32)
ALICE = Account.from_key("0x" + "11" * 32)
BOB = Account.from_key("0x" + "22" * 32)


class FakeClock:
    def __init__(self, now: int = START) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FlakyBinding(LocalLedgerBinding):
    """Fails the first N submissions with a transient error."""

    def __init__(self, ledger: ElectionLedger, failures: int) -> None:
        super().__init__(ledger, RELAYER.address)
        self.failures = failures
        self.attempts = 0

    def submit_vote(self, intent, signature):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransientSubmissionError("connection reset")
        return super().submit_vote(intent, signature)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def ledger(clock: FakeClock) -> ElectionLedger:
    return ElectionLedger.create(
        name="MyElection2025",
        candidates=["Alice", "Bob", "Carol"],
        duration_seconds=WEEK,
        election_id=1,
        owner=OWNER.address,
        clock=clock,
    )


def _make_queue(binding, clock: FakeClock, sleep: RecordingSleep, **kwargs) -> RelayerQueue:
    params = {"auto_drain": False, "clock": clock, "sleep": sleep}
    params.update(kwargs)
    return RelayerQueue(binding, **params)


def _signed(
    ledger: ElectionLedger, account, candidate_id: int = 1, nonce: int = 0, ttl: int = 3600,
) -> tuple[VoteIntent, str]:
    intent = VoteIntent(
        voter=account.address,
        candidate_id=candidate_id,
        election_id=ledger.election_id,
        nonce=nonce,
        deadline=ledger.now() + ttl,
    )
    return intent, sign_vote(ledger.domain, intent, account.key)


class TestEnqueue:
    def test_returns_ticket_without_submitting(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        item = queue.enqueue(*_signed(ledger, ALICE))
        assert item.ticket == "Q-00000001"
        assert queue.length == 1
        assert ledger.tally().total_votes == 0

    def test_malformed_signature_rejected(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        intent, _ = _signed(ledger, ALICE)
        with pytest.raises(EnqueueRejected, match="Invalid signature format"):
            queue.enqueue(intent, "0x1234")
        assert queue.length == 0

    def test_expired_intent_filtered(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        intent, sig = _signed(ledger, ALICE, ttl=-1)
        with pytest.raises(EnqueueRejected, match="Vote expired"):
            queue.enqueue(intent, sig)

    def test_wire_payload_requires_signature(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        intent, _ = _signed(ledger, ALICE)
        with pytest.raises(EnqueueRejected, match="Missing vote or signature"):
            queue.enqueue_wire({"vote": intent.to_wire()})

    def test_wire_payload_requires_all_fields(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        intent, sig = _signed(ledger, ALICE)
        vote = intent.to_wire()
        del vote["deadline"]
        with pytest.raises(EnqueueRejected, match="Invalid vote structure"):
            queue.enqueue_wire({"vote": vote, "signature": sig})

    def test_wire_field_beyond_uint256_rejected(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        intent, sig = _signed(ledger, ALICE)
        vote = intent.to_wire()
        vote["deadline"] = "1" + "0" * 80
        with pytest.raises(EnqueueRejected, match="deadline exceeds uint256"):
            queue.enqueue_wire({"vote": vote, "signature": sig})
        assert queue.length == 0


class TestDrain:
    def test_submits_in_fifo_order(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE, candidate_id=0))
        queue.enqueue(*_signed(ledger, BOB, candidate_id=2))
        outcomes = queue.drain()
        assert [o.voter for o in outcomes] == [ALICE.address, BOB.address]
        assert all(o.status == DrainStatus.SUBMITTED for o in outcomes)
        assert ledger.tally().votes_by_candidate == [1, 0, 1]
        assert queue.length == 0
        assert not queue.is_processing

    def test_same_voter_intents_settle_serially(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE, candidate_id=0, nonce=0))
        queue.enqueue(*_signed(ledger, ALICE, candidate_id=1, nonce=1))
        first, second = queue.drain()
        assert first.status == DrainStatus.SUBMITTED
        assert second.status == DrainStatus.REJECTED
        assert second.detail == "already voted"
        assert ledger.voter_nonces(ALICE.address) == 1

    def test_stale_nonce_dropped(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE, candidate_id=0))
        queue.enqueue(*_signed(ledger, ALICE, candidate_id=1))
        first, second = queue.drain()
        assert first.status == DrainStatus.SUBMITTED
        assert second.status == DrainStatus.NONCE_MISMATCH
        assert second.detail == "expected 1, got 0"
        assert second.attempts == 0
        assert ledger.votes_for(1) == 0

    def test_intent_expiring_in_queue_dropped(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE, ttl=10))
        clock.now += 20
        (outcome,) = queue.drain()
        assert outcome.status == DrainStatus.EXPIRED
        assert ledger.tally().total_votes == 0

    def test_ledger_rejection_is_not_retried(self, ledger, clock, sleep) -> None:
        binding = LocalLedgerBinding(ledger, RELAYER.address)
        queue = _make_queue(binding, clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE, candidate_id=7))
        (outcome,) = queue.drain()
        assert outcome.status == DrainStatus.REJECTED
        assert outcome.detail == "bad candidate: 7"
        assert outcome.attempts == 1
        assert sleep.calls == []

    def test_transient_failure_retried_with_backoff(self, ledger, clock, sleep) -> None:
        binding = FlakyBinding(ledger, failures=2)
        queue = _make_queue(binding, clock, sleep, max_attempts=3, backoff_seconds=0.5)
        queue.enqueue(*_signed(ledger, ALICE))
        (outcome,) = queue.drain()
        assert outcome.status == DrainStatus.SUBMITTED
        assert outcome.attempts == 3
        assert sleep.calls == [0.5, 1.0]
        assert ledger.votes_for(1) == 1

    def test_transient_failure_gives_up(self, ledger, clock, sleep) -> None:
        binding = FlakyBinding(ledger, failures=3)
        queue = _make_queue(binding, clock, sleep, max_attempts=3, backoff_seconds=0.5)
        queue.enqueue(*_signed(ledger, ALICE))
        queue.enqueue(*_signed(ledger, BOB))
        first, second = queue.drain()
        assert first.status == DrainStatus.FAILED
        assert first.detail == "connection reset"
        assert first.attempts == 3
        assert binding.attempts == 4
        assert second.status == DrainStatus.SUBMITTED
        assert ledger.has_voted(BOB.address)
        assert not ledger.has_voted(ALICE.address)

    def test_paces_between_submissions(self, ledger, clock, sleep) -> None:
        binding = LocalLedgerBinding(ledger, RELAYER.address)
        queue = _make_queue(binding, clock, sleep, submit_interval=1.0)
        queue.enqueue(*_signed(ledger, ALICE))
        queue.enqueue(*_signed(ledger, BOB))
        queue.drain()
        assert sleep.calls == [1.0]

    def test_nested_drain_is_noop(self, ledger, clock, sleep) -> None:
        nested: list = []

        class ReentrantBinding(LocalLedgerBinding):
            def submit_vote(self, intent, signature):
                nested.append(queue.drain())
                return super().submit_vote(intent, signature)

        queue = _make_queue(ReentrantBinding(ledger, RELAYER.address), clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE))
        queue.enqueue(*_signed(ledger, BOB))
        outcomes = queue.drain()
        assert nested == [[], []]
        assert len(outcomes) == 2

    def test_unexpected_binding_error_does_not_stop_drain(self, ledger, clock, sleep) -> None:
        class BrokenForAlice(LocalLedgerBinding):
            def submit_vote(self, intent, signature):
                if intent.voter == ALICE.address:
                    raise RuntimeError("decoder blew up")
                return super().submit_vote(intent, signature)

        queue = _make_queue(BrokenForAlice(ledger, RELAYER.address), clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE))
        queue.enqueue(*_signed(ledger, BOB))
        first, second = queue.drain()
        assert first.status == DrainStatus.FAILED
        assert first.detail == "unexpected error: decoder blew up"
        assert second.status == DrainStatus.SUBMITTED
        assert ledger.has_voted(BOB.address)
        assert queue.length == 0
        assert not queue.is_processing
        assert queue.wait_idle(timeout=0)

        queue.enqueue(*_signed(ledger, ALICE, candidate_id=0, nonce=0))
        assert queue.drain()[0].status == DrainStatus.FAILED

    def test_empty_drain(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        assert queue.drain() == []
        assert queue.wait_idle(timeout=0)


class TestAutoDrain:
    def test_background_drain_settles_queue(self, ledger, clock) -> None:
        queue = RelayerQueue(LocalLedgerBinding(ledger, RELAYER.address), clock=clock)
        item = queue.enqueue(*_signed(ledger, ALICE, candidate_id=2))
        assert queue.wait_idle(timeout=10)
        outcome = queue.outcome_for(item.ticket)
        assert outcome is not None
        assert outcome.status == DrainStatus.SUBMITTED
        assert ledger.votes_for(2) == 1

    def test_concurrent_enqueue_settles_in_ticket_order(self, ledger, clock) -> None:
        voters = [Account.from_key("0x" + f"{0x30 + i:02x}" * 32) for i in range(6)]
        queue = RelayerQueue(LocalLedgerBinding(ledger, RELAYER.address), clock=clock)
        barrier = threading.Barrier(len(voters))

        def enqueue(account) -> None:
            barrier.wait()
            queue.enqueue(*_signed(ledger, account, candidate_id=1))

        threads = [threading.Thread(target=enqueue, args=(a,)) for a in voters]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert queue.wait_idle(timeout=10)
        outcomes = queue.recent_outcomes()
        assert len(outcomes) == len(voters)
        assert [o.status for o in outcomes] == [DrainStatus.SUBMITTED] * len(voters)
        tickets = [o.ticket for o in outcomes]
        assert tickets == sorted(tickets)
        assert ledger.votes_for(1) == len(voters)
        assert all(ledger.voter_nonces(a.address) == 1 for a in voters)
        assert queue.length == 0


class TestStatus:
    def test_health(self, ledger, clock, sleep) -> None:
        binding = LocalLedgerBinding(ledger, RELAYER.address, balance_wei=10**18)
        queue = _make_queue(binding, clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE))
        health = queue.health()
        assert health == {
            "status": "healthy",
            "relayer": RELAYER.address,
            "balance": "1",
            "network": "hardhat",
            "chain_id": 31337,
            "contract": ledger.address,
            "queue_length": 1,
        }

    def test_settlement_cost_reduces_balance(self, ledger, clock, sleep) -> None:
        binding = LocalLedgerBinding(
            ledger, RELAYER.address, balance_wei=10**18, settlement_cost_wei=5 * 10**17,
        )
        queue = _make_queue(binding, clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE))
        queue.drain()
        assert queue.health()["balance"] == "0.5"

    def test_queue_status(self, ledger, clock, sleep) -> None:
        queue = _make_queue(LocalLedgerBinding(ledger, RELAYER.address), clock, sleep)
        queue.enqueue(*_signed(ledger, ALICE))
        queue.drain()
        queue.enqueue(*_signed(ledger, BOB))
        status = queue.queue_status()
        assert status["queue_length"] == 1
        assert status["is_processing"] is False
        assert status["in_flight"] is None
        assert status["queued_votes"][0]["voter"] == BOB.address
        assert status["recent_outcomes"][0]["status"] == "submitted"
        assert status["counts"]["submitted"] == 1

    def test_format_ether(self) -> None:
        assert format_ether(0) == "0"
        assert format_ether(1_500_000_000_000_000_000) == "1.5"
