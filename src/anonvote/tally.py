"""Tally confirmed vote records per candidate.

The ledger is scanned in confirmation order. A record counts only if it
decodes, its commitment can be recovered from the commitment store and
hashes back to the anchored commitment hash, its signature verifies against
the registered voter keys for the election context, and its linkability
tag has not been counted yet (first-seen-wins). Later records with a seen
tag are skipped, never substituted.
"""

from __future__ import annotations

import hashlib
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .anchor import AnchorClient
from .errors import SignatureError
from .index import TagIndex
from .lsag import LinkableSigner
from .models import Election, TallyResult, VoteRecord, canonical_json
from .storage import MemStorage

logger = logging.getLogger(__name__)


@dataclass
class TallyAudit:
    """Results of one tally run plus what was skipped and why."""

    election_id: str
    results: List[TallyResult]
    accepted: int = 0
    duplicates: int = 0
    invalid: int = 0
    unresolved: int = 0
    skipped: Counter = field(default_factory=Counter)


def _percentages(election: Election, counts: Dict[str, int]) -> List[TallyResult]:
    total = sum(counts.values())
    out = []
    for candidate_id in election.candidates:
        n = counts.get(candidate_id, 0)
        pct = n * 100.0 / total if total else 0.0
        out.append(TallyResult(candidate_id=candidate_id, count=n, percentage=pct))
    return out


def results_hash(results: List[TallyResult]) -> str:
    """SHA-256 hex over the canonical JSON of the results list."""
    return hashlib.sha256(canonical_json([r.to_dict() for r in results])).hexdigest()


class TallyAggregator:
    def __init__(
        self,
        anchor: AnchorClient,
        storage: MemStorage,
        signer: Optional[LinkableSigner] = None,
    ):
        self.anchor = anchor
        self.storage = storage
        self.signer = signer if signer is not None else LinkableSigner()

    def _check(
        self, election: Election, record: VoteRecord, trusted
    ) -> Tuple[Optional[str], str]:
        """Return (candidate_id, "") for a countable record, else (None, reason)."""
        commitment = self.storage.get_commitment(record.commitment_hash)
        if commitment is None:
            return None, "unresolved"
        if commitment.commitment_hash != record.commitment_hash:
            return None, "commitment-mismatch"
        if commitment.election_id != election.election_id:
            return None, "wrong-election"
        if not election.has_candidate(commitment.candidate_id):
            return None, "unknown-candidate"
        if not election.in_window(commitment.timestamp):
            return None, "outside-window"
        try:
            sig = self.signer.parse(record.signature)
        except SignatureError:
            return None, "bad-signature"
        if sig.tag != record.linkability_tag or sig.context != election.election_id:
            return None, "tag-mismatch"
        if not self.signer.verify(record.commitment_hash, record.signature, trusted):
            return None, "bad-signature"
        return commitment.candidate_id, ""

    def audit(self, election_id: str) -> TallyAudit:
        election = self.storage.get_election(election_id)
        if election is None:
            raise KeyError(f"unknown election {election_id!r}")
        trusted = self.storage.public_keys()
        seen = TagIndex()
        counts: Dict[str, int] = {c: 0 for c in election.candidates}
        audit = TallyAudit(election_id=election_id, results=[])

        for entry in self.anchor.entries():
            try:
                record = VoteRecord.from_payload(entry.payload)
            except ValueError:
                # not a vote record
                continue
            if record.election_id != election_id:
                continue
            if seen.seen(election_id, record.linkability_tag):
                audit.duplicates += 1
                logger.warning("duplicate tag at ledger entry #%d skipped", entry.sequence)
                continue
            candidate_id, reason = self._check(election, record, trusted)
            if candidate_id is None:
                audit.skipped[reason] += 1
                if reason == "unresolved":
                    audit.unresolved += 1
                else:
                    audit.invalid += 1
                logger.warning("ledger entry #%d skipped: %s", entry.sequence, reason)
                continue
            seen.claim(election_id, record.linkability_tag)
            counts[candidate_id] += 1
            audit.accepted += 1

        audit.results = _percentages(election, counts)
        logger.info(
            "tally %s: %d accepted, %d duplicates, %d invalid, %d unresolved",
            election_id,
            audit.accepted,
            audit.duplicates,
            audit.invalid,
            audit.unresolved,
        )
        return audit

    def tally(self, election_id: str) -> List[TallyResult]:
        return self.audit(election_id).results

    def publish(self, election_id: str) -> Tuple[List[TallyResult], str]:
        results = self.tally(election_id)
        return results, results_hash(results)

    def verify_published(self, election_id: str, published_hash: str) -> Tuple[bool, Dict]:
        """Recompute the tally and compare its hash with `published_hash`."""
        results, recomputed = self.publish(election_id)
        ok = isinstance(published_hash, str) and published_hash == recomputed
        details = {
            "recomputed_results": [r.to_dict() for r in results],
            "recomputed_hash": recomputed,
        }
        return ok, details
