"""Data model shared by the caster, the anchor client and the tally."""

from __future__ import annotations

import dataclasses
import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


def canonical_json(obj: Any) -> bytes:
    """Deterministic JSON: sorted keys, compact separators, utf-8."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class Election:
    """An election as handed over by the administrative collaborator.

    Attributes
    - election_id: unique id, also the signing context
    - candidates: ordered candidate ids; tally output follows this order
    - starts_at, ends_at: voting window (inclusive)
    - active: administrative open/closed flag
    """

    election_id: str
    candidates: Tuple[str, ...]
    starts_at: datetime
    ends_at: datetime
    active: bool = True
    title: str = ""

    def __post_init__(self):
        object.__setattr__(self, "candidates", tuple(self.candidates))
        for name in ("starts_at", "ends_at"):
            ts = getattr(self, name)
            if ts.tzinfo is None:
                object.__setattr__(self, name, ts.replace(tzinfo=timezone.utc))
        if len(set(self.candidates)) != len(self.candidates):
            raise ValueError("candidate ids must be unique")

    def has_candidate(self, candidate_id: str) -> bool:
        return candidate_id in self.candidates

    def in_window(self, at: datetime) -> bool:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        return self.starts_at <= at <= self.ends_at

    def accepts_votes(self, at: datetime) -> bool:
        return self.active and self.in_window(at)


@dataclass(frozen=True)
class VoteCommitment:
    election_id: str
    candidate_id: str
    timestamp: datetime

    def canonical_bytes(self) -> bytes:
        return canonical_json(
            {
                "candidateId": self.candidate_id,
                "electionId": self.election_id,
                "timestamp": _iso(self.timestamp),
            }
        )

    @property
    def commitment_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


@dataclass(frozen=True)
class VoteRecord:
    """A signed vote as anchored on the ledger.

    Only election_id, commitment_hash, signature and linkability_tag go on
    the ledger; anchor_handle and confirmed_at are filled in on confirmation.
    """

    election_id: str
    commitment_hash: str
    signature: str
    linkability_tag: str
    anchor_handle: Optional[str] = None
    confirmed_at: Optional[datetime] = None

    def payload(self) -> bytes:
        return canonical_json(
            {
                "commitmentHash": self.commitment_hash,
                "electionId": self.election_id,
                "linkabilityTag": self.linkability_tag,
                "signature": self.signature,
            }
        )

    @classmethod
    def from_payload(cls, data: bytes) -> "VoteRecord":
        """Parse an anchored payload; raises ValueError if malformed."""
        try:
            text = data.decode("utf-8")
        except (UnicodeDecodeError, AttributeError):
            raise ValueError("payload is not utf-8 bytes") from None
        try:
            body = json.loads(text)
        except RecursionError:
            raise ValueError("payload nests too deeply") from None
        if not isinstance(body, dict):
            raise ValueError("payload must be a JSON object")
        fields: Dict[str, str] = {}
        for key in ("electionId", "commitmentHash", "signature", "linkabilityTag"):
            value = body.get(key)
            if not isinstance(value, str) or not value:
                raise ValueError(f"payload field {key!r} missing or not a string")
            fields[key] = value
        return cls(
            election_id=fields["electionId"],
            commitment_hash=fields["commitmentHash"],
            signature=fields["signature"],
            linkability_tag=fields["linkabilityTag"],
        )

    def confirmed(self, anchor_handle: str, at: datetime) -> "VoteRecord":
        return dataclasses.replace(self, anchor_handle=anchor_handle, confirmed_at=at)


@dataclass(frozen=True)
class TallyResult:
    candidate_id: str
    count: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidateId": self.candidate_id,
            "count": self.count,
            "percentage": self.percentage,
        }


class VoteStatus(enum.Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class VoteCastOutcome:
    """Result of one cast attempt.

    - confirmed: the record is on the ledger and will be tallied
    - rejected: the vote was definitely not counted; do not resubmit
    - failed: outcome unknown; resubmitting `record` (if set) is safe
    """

    status: VoteStatus
    record: Optional[VoteRecord] = None
    reason: str = ""

    @classmethod
    def confirmed(cls, record: VoteRecord) -> "VoteCastOutcome":
        return cls(VoteStatus.CONFIRMED, record=record)

    @classmethod
    def rejected(cls, reason: str) -> "VoteCastOutcome":
        return cls(VoteStatus.REJECTED, reason=reason)

    @classmethod
    def failed(cls, reason: str, record: Optional[VoteRecord] = None) -> "VoteCastOutcome":
        return cls(VoteStatus.FAILED, record=record, reason=reason)

    @property
    def retryable(self) -> bool:
        return self.status is VoteStatus.FAILED


def ledger_key(payload: bytes) -> Optional[str]:
    """Uniqueness key of an anchored vote payload: "<electionId>/<tag>".

    None for payloads that are not vote records.
    """
    try:
        record = VoteRecord.from_payload(payload)
    except ValueError:
        return None
    return f"{record.election_id}/{record.linkability_tag}"
