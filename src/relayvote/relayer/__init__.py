"""Relayer — queues signed vote intents and settles them on the voter's behalf."""

from relayvote.relayer.binding import (
    LocalLedgerBinding,
    SubmissionRejected,
    TransientSubmissionError,
    Web3LedgerBinding,
)
from relayvote.relayer.queue import DrainStatus, EnqueueRejected, RelayerQueue

__all__ = [
    "DrainStatus",
    "EnqueueRejected",
    "LocalLedgerBinding",
    "RelayerQueue",
    "SubmissionRejected",
    "TransientSubmissionError",
    "Web3LedgerBinding",
]
