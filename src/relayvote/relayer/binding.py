"""Ledger bindings — how a relayer reaches the election ledger.

A binding exposes the narrow read/write contract the relayer needs:
read a voter's sequence counter, submit a signed vote and wait for
confirmation, and report the relayer's identity, balance and network.

Bindings classify failures:
- SubmissionRejected: the ledger refused the intent (terminal, drop).
- TransientSubmissionError: infrastructure trouble (safe to retry; the
  ledger's replay protection makes resubmitting an unconsumed intent
  harmless).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Protocol

from eth_utils import from_wei, to_checksum_address

from relayvote.ledger.election_ledger import ElectionLedger
from relayvote.ledger.errors import LedgerError, PersistenceError
from relayvote.models.election import VoteIntent


NETWORK_NAMES: dict[int, str] = {
    1: "mainnet",
    11155111: "sepolia",
    17000: "holesky",
    31337: "hardhat",
}


class SubmissionRejected(Exception):
    """The ledger rejected the intent. Retrying cannot help."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class TransientSubmissionError(Exception):
    """Submission failed for infrastructure reasons. May be retried."""


@dataclass(frozen=True)
class SubmissionReceipt:
    """Confirmation of an applied vote."""
    tx_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    events: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class NetworkInfo:
    name: str
    chain_id: int


def network_name(chain_id: int) -> str:
    return NETWORK_NAMES.get(chain_id, "unknown")


class LedgerBinding(Protocol):
    """What the relayer queue needs from a ledger."""

    @property
    def relayer_address(self) -> str: ...

    @property
    def ledger_address(self) -> str: ...

    def voter_nonce(self, voter: str) -> int: ...

    def submit_vote(self, intent: VoteIntent, signature: str) -> SubmissionReceipt: ...

    def balance_wei(self) -> int: ...

    def network(self) -> NetworkInfo: ...


class LocalLedgerBinding:
    """Binds a relayer to an in-process ElectionLedger.

    Settlement cost is modelled as a flat per-submission charge against
    a local balance, so health reports behave like an on-chain relayer.
    """

    def __init__(
        self,
        ledger: ElectionLedger,
        relayer_address: str,
        balance_wei: int = 0,
        settlement_cost_wei: int = 0,
    ) -> None:
        self._ledger = ledger
        self._relayer_address = to_checksum_address(relayer_address)
        self._balance_wei = balance_wei
        self._settlement_cost_wei = settlement_cost_wei
        self._submissions = 0

    @property
    def relayer_address(self) -> str:
        return self._relayer_address

    @property
    def ledger_address(self) -> str:
        return self._ledger.address

    @property
    def ledger(self) -> ElectionLedger:
        return self._ledger

    def voter_nonce(self, voter: str) -> int:
        return self._ledger.voter_nonces(voter)

    def submit_vote(self, intent: VoteIntent, signature: str) -> SubmissionReceipt:
        try:
            records = self._ledger.submit_vote(
                intent, signature, sender=self._relayer_address,
            )
        except LedgerError as e:
            raise SubmissionRejected(str(e)) from e
        except PersistenceError as e:
            raise TransientSubmissionError(str(e)) from e

        self._submissions += 1
        self._balance_wei = max(self._balance_wei - self._settlement_cost_wei, 0)
        return SubmissionReceipt(
            tx_hash=records[0].event_hash if records else "",
            block_number=self._submissions,
            gas_used=self._settlement_cost_wei,
            events=[
                {"kind": r.event_kind.value, "payload": r.payload} for r in records
            ],
        )

    def balance_wei(self) -> int:
        return self._balance_wei

    def network(self) -> NetworkInfo:
        return NetworkInfo(
            name=network_name(self._ledger.chain_id),
            chain_id=self._ledger.chain_id,
        )


# Minimal ABI for a deployed EIP-712 voting contract.
VOTING_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "submitVote",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "vote",
                "type": "tuple",
                "components": [
                    {"name": "voter", "type": "address"},
                    {"name": "candidateId", "type": "uint256"},
                    {"name": "electionId", "type": "uint256"},
                    {"name": "nonce", "type": "uint256"},
                    {"name": "deadline", "type": "uint256"},
                ],
            },
            {"name": "signature", "type": "bytes"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "voterNonces",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "electionId",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "votingStart",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "votingEnd",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "VoteAccepted",
        "anonymous": False,
        "inputs": [
            {"name": "voter", "type": "address", "indexed": True},
            {"name": "electionId", "type": "uint256", "indexed": True},
            {"name": "candidateId", "type": "uint256", "indexed": True},
        ],
    },
    {
        "type": "event",
        "name": "VoteRelayed",
        "anonymous": False,
        "inputs": [
            {"name": "voter", "type": "address", "indexed": True},
            {"name": "relayer", "type": "address", "indexed": True},
            {"name": "electionId", "type": "uint256", "indexed": True},
            {"name": "candidateId", "type": "uint256", "indexed": False},
        ],
    },
]


def vote_tuple(intent: VoteIntent) -> tuple[str, int, int, int, int]:
    """ABI-encodable (voter, candidateId, electionId, nonce, deadline)."""
    return (
        intent.voter,
        intent.candidate_id,
        intent.election_id,
        intent.nonce,
        intent.deadline,
    )


class Web3LedgerBinding:
    """Binds a relayer to a deployed voting contract over JSON-RPC.

    The relayer key signs and pays for every submitVote transaction.
    Reverts are terminal rejections. Connection failures, confirmation
    timeouts and any other web3 RPC error are transient.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        chain_id: Optional[int] = None,
        gas_limit: int = 200_000,
        confirmation_timeout: int = 300,
    ) -> None:
        from web3 import Web3, HTTPProvider
        from eth_account import Account

        self._w3 = Web3(HTTPProvider(rpc_url))
        self._account = Account.from_key(private_key)
        self._contract_address = to_checksum_address(contract_address)
        self._contract = self._w3.eth.contract(
            address=self._contract_address, abi=VOTING_ABI,
        )
        self._chain_id = chain_id
        self._gas_limit = gas_limit
        self._confirmation_timeout = confirmation_timeout

    @property
    def relayer_address(self) -> str:
        return self._account.address

    @property
    def ledger_address(self) -> str:
        return self._contract_address

    def voter_nonce(self, voter: str) -> int:
        from web3.exceptions import Web3Exception

        try:
            return int(self._contract.functions.voterNonces(
                to_checksum_address(voter),
            ).call())
        except OSError as e:
            raise TransientSubmissionError(f"RPC unavailable: {e}") from e
        except Web3Exception as e:
            raise TransientSubmissionError(f"RPC error: {e}") from e

    def submit_vote(self, intent: VoteIntent, signature: str) -> SubmissionReceipt:
        from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

        try:
            tx = self._contract.functions.submitVote(
                vote_tuple(intent), bytes.fromhex(signature[2:]),
            ).build_transaction({
                "from": self._account.address,
                "nonce": self._w3.eth.get_transaction_count(self._account.address),
                "gas": self._gas_limit,
                "chainId": self._resolved_chain_id(),
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._confirmation_timeout,
            )
        except ContractLogicError as e:
            raise SubmissionRejected(str(e)) from e
        except TimeExhausted as e:
            raise TransientSubmissionError(f"Confirmation timed out: {e}") from e
        except Web3Exception as e:
            raise TransientSubmissionError(f"RPC error: {e}") from e
        except OSError as e:
            raise TransientSubmissionError(f"RPC unavailable: {e}") from e

        if receipt.status != 1:
            raise SubmissionRejected(f"transaction reverted: 0x{bytes(tx_hash).hex()}")
        return SubmissionReceipt(
            tx_hash="0x" + bytes(tx_hash).hex(),
            block_number=receipt.blockNumber,
            gas_used=receipt.gasUsed,
        )

    def balance_wei(self) -> int:
        return int(self._w3.eth.get_balance(self._account.address))

    def network(self) -> NetworkInfo:
        chain_id = self._resolved_chain_id()
        return NetworkInfo(name=network_name(chain_id), chain_id=chain_id)

    def _resolved_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(self._w3.eth.chain_id)
        return self._chain_id


def format_ether(balance_wei: int) -> str:
    return format(Decimal(from_wei(balance_wei, "ether")).normalize(), "f")
