"""In-memory reference implementation of the persistence collaborator.

Uniqueness (identity handle, public key, election id, commitment hash) is
enforced at insert time under a single lock rather than by scanning.
"""

import dataclasses
import logging
import secrets
import threading
from datetime import datetime
from typing import Dict, List, Optional

from .errors import DuplicateKeyError
from .keys import PublicKey, VoterIdentity
from .models import Election, VoteCommitment, utcnow

logger = logging.getLogger(__name__)


class MemStorage:
    def __init__(self):
        self._lock = threading.Lock()
        self._voters: Dict[str, VoterIdentity] = {}
        self._voter_keys: Dict[bytes, str] = {}
        self._elections: Dict[str, Election] = {}
        self._commitments: Dict[str, VoteCommitment] = {}

    ## --- voters --------------------------------------------------------

    def put_voter(self, voter: VoterIdentity) -> None:
        key = voter.public_key.to_bytes()
        with self._lock:
            if voter.identity_handle in self._voters:
                raise DuplicateKeyError("voter already registered")
            if key in self._voter_keys:
                raise DuplicateKeyError("public key already registered")
            self._voters[voter.identity_handle] = voter
            self._voter_keys[key] = voter.identity_handle

    def get_voter(self, identity_handle: str) -> Optional[VoterIdentity]:
        with self._lock:
            return self._voters.get(identity_handle)

    def public_keys(self) -> List[PublicKey]:
        with self._lock:
            return [PublicKey(k) for k in sorted(self._voter_keys)]

    def ring_for(self, public_key: PublicKey, size: int) -> List[PublicKey]:
        """Return `public_key` plus up to size-1 randomly chosen registered keys."""
        own = public_key.to_bytes()
        with self._lock:
            others = [k for k in self._voter_keys if k != own]
        decoys = secrets.SystemRandom().sample(others, min(max(size - 1, 0), len(others)))
        return [public_key] + [PublicKey(k) for k in decoys]

    ## --- elections -----------------------------------------------------

    def put_election(self, election: Election) -> None:
        with self._lock:
            if election.election_id in self._elections:
                raise DuplicateKeyError(f"election {election.election_id!r} exists")
            self._elections[election.election_id] = election

    def get_election(self, election_id: str) -> Optional[Election]:
        with self._lock:
            return self._elections.get(election_id)

    def close_election(self, election_id: str) -> Election:
        """Mark an election inactive. Votes already confirmed stay countable."""
        with self._lock:
            election = self._elections.get(election_id)
            if election is None:
                raise KeyError(f"unknown election {election_id!r}")
            closed = dataclasses.replace(election, active=False)
            self._elections[election_id] = closed
        logger.info("election %s closed", election_id)
        return closed

    def get_active_election(self, at: Optional[datetime] = None) -> Optional[Election]:
        at = at or utcnow()
        with self._lock:
            elections = list(self._elections.values())
        return next((e for e in elections if e.accepts_votes(at)), None)

    ## --- commitments ---------------------------------------------------

    def put_commitment(self, commitment: VoteCommitment) -> str:
        """Store a commitment under its hash; storing the same one twice is a no-op."""
        digest = commitment.commitment_hash
        with self._lock:
            existing = self._commitments.get(digest)
            if existing is not None and existing != commitment:
                raise DuplicateKeyError("commitment hash collision")
            self._commitments[digest] = commitment
        return digest

    def get_commitment(self, commitment_hash: str) -> Optional[VoteCommitment]:
        with self._lock:
            return self._commitments.get(commitment_hash)
