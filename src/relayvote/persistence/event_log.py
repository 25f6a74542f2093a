"""Append-only event log — the ledger's observation stream.

Every accepted ledger mutation produces one or more observations
(VoteAccepted, VoteRelayed, VotingEndUpdated, ...) that are appended
here. Records are immutable once written and may be persisted to a
JSONL file. On reload each record's hash is recomputed, so a tampered
or replayed line is rejected rather than silently accepted.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of ledger observations."""
    ELECTION_INITIALIZED = "election_initialized"
    VOTE_ACCEPTED = "vote_accepted"
    VOTE_RELAYED = "vote_relayed"
    VOTING_END_UPDATED = "voting_end_updated"
    WINNER_FINALIZED = "winner_finalized"
    LOGIC_UPGRADED = "logic_upgraded"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return "sha256:" + hashlib.sha256(canonical).hexdigest()


@dataclass(frozen=True)
class EventRecord:
    """A single immutable ledger observation."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str  # SHA-256 of canonical JSON

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp: Optional[int] = None,
    ) -> EventRecord:
        """Create a record stamped with ledger time (Unix seconds)."""
        if timestamp is None:
            ts = datetime.now(timezone.utc)
        else:
            ts = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> EventRecord:
        """Rebuild a stored record, verifying its hash."""
        record = EventRecord(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            event_hash=data["event_hash"],
        )
        computed = _canonical_hash(
            record.event_id, record.event_kind.value, record.timestamp_utc,
            record.actor_id, record.payload,
        )
        if computed != record.event_hash:
            raise ValueError(
                f"event {record.event_id} stored hash {record.event_hash} "
                f"!= computed {computed}"
            )
        return record


class EventLog:
    """Append-only observation log with optional JSONL persistence."""

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValueError on a duplicate event_id."""
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        # Write durably first so a failed write leaves memory untouched
        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for_actor(self, actor_id: str) -> list[EventRecord]:
        return [e for e in self._events if e.actor_id == actor_id]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load_from_file(self, path: Path) -> None:
        """Replay a JSONL file. A tampered or repeated line aborts the load."""
        lines = path.read_text(encoding="utf-8").splitlines()
        for line_num, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                record = EventRecord.from_dict(json.loads(line))
            except ValueError as e:
                raise ValueError(f"Integrity check failed (line {line_num}): {e}") from e
            if record.event_id in self._event_ids:
                raise ValueError(
                    f"Duplicate event ID on recovery (line {line_num}): {record.event_id}"
                )
            self._events.append(record)
            self._event_ids.add(record.event_id)
