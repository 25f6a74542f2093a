"""EIP-712 typed-data signing for vote intents.

A vote signature is only valid for one ledger instance. The signing
domain binds:
1. The election name.
2. A fixed version tag ("1").
3. The chain id of the execution environment.
4. The address of the deployed ledger (verifyingContract).

The typed payload is the five VoteIntent fields. Replaying a signature
against a ledger with a different name, chain, address or election id
yields a different digest and therefore a different recovered signer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from eth_account import Account
from eth_abi.exceptions import EncodingError
from eth_account.messages import SignableMessage, encode_typed_data
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import keccak, to_checksum_address

from relayvote.models.election import VoteIntent


DOMAIN_VERSION = "1"
SIGNATURE_LENGTH = 65

_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

_VOTE_TYPE = [
    {"name": "voter", "type": "address"},
    {"name": "candidateId", "type": "uint256"},
    {"name": "electionId", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]


@dataclass(frozen=True)
class VoteDomain:
    """Domain separator material for one deployed ledger."""
    name: str
    chain_id: int
    verifying_contract: str
    version: str = DOMAIN_VERSION

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "verifying_contract", to_checksum_address(self.verifying_contract),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


def vote_typed_data(domain: VoteDomain, intent: VoteIntent) -> dict[str, Any]:
    """Return the full EIP-712 structure a wallet is asked to sign."""
    return {
        "types": {
            "EIP712Domain": _DOMAIN_TYPE,
            "Vote": _VOTE_TYPE,
        },
        "primaryType": "Vote",
        "domain": domain.as_dict(),
        "message": intent.to_wire(),
    }


def signable_vote(domain: VoteDomain, intent: VoteIntent) -> SignableMessage:
    return encode_typed_data(full_message=vote_typed_data(domain, intent))


def vote_digest(domain: VoteDomain, intent: VoteIntent) -> bytes:
    """Compute keccak256(0x19 0x01 ‖ domainSeparator ‖ hashStruct(vote))."""
    message = signable_vote(domain, intent)
    return keccak(b"\x19" + message.version + message.header + message.body)


def sign_vote(domain: VoteDomain, intent: VoteIntent, private_key: Union[str, bytes]) -> str:
    """Sign an intent the way a wallet would. Returns 0x-prefixed hex."""
    signed = Account.sign_message(signable_vote(domain, intent), private_key)
    return "0x" + bytes(signed.signature).hex()


def parse_signature(signature: Union[str, bytes]) -> bytes:
    """Validate the structural shape of a signature and return its bytes.

    Accepts raw bytes or a 0x-prefixed hex string. Only the byte shape
    (65 bytes: r ‖ s ‖ v) is checked; nothing is recovered here.
    """
    if isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    elif isinstance(signature, str):
        if not signature.startswith("0x"):
            raise ValueError("Invalid signature format: expected 0x-prefixed hex")
        try:
            raw = bytes.fromhex(signature[2:])
        except ValueError as e:
            raise ValueError(f"Invalid signature format: {e}") from e
    else:
        raise ValueError(f"Invalid signature format: {type(signature).__name__}")

    if len(raw) != SIGNATURE_LENGTH:
        raise ValueError(
            f"Invalid signature format: expected {SIGNATURE_LENGTH} bytes, got {len(raw)}"
        )
    return raw


def recover_voter(
    domain: VoteDomain, intent: VoteIntent, signature: Union[str, bytes],
) -> Optional[str]:
    """Recover the checksum address that signed this intent.

    Returns None if the signature is malformed or unrecoverable.
    """
    try:
        raw = parse_signature(signature)
        return Account.recover_message(signable_vote(domain, intent), signature=raw)
    except (BadSignature, EncodingError, ValidationError, ValueError):
        return None
