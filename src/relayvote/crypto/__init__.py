"""Cryptographic primitives — EIP-712 vote domains, digests and signer recovery."""

from relayvote.crypto.typed_vote import (
    VoteDomain,
    parse_signature,
    recover_voter,
    sign_vote,
    vote_digest,
)

__all__ = ["VoteDomain", "parse_signature", "recover_voter", "sign_vote", "vote_digest"]
