"""Core data models for relayvote."""

from relayvote.models.election import (
    Election,
    ElectionPhase,
    TallySnapshot,
    VoteIntent,
)

__all__ = [
    "Election",
    "ElectionPhase",
    "TallySnapshot",
    "VoteIntent",
]
