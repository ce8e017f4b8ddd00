"""Vote casting: Building -> Signed -> Submitted -> Confirmed | Rejected | Failed.

One `VoteCaster` serves many voters. Attempts by the same voter in the same
election are serialized on a per-(election, tag) lock; different voters
proceed in parallel.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from . import config
from .anchor import AnchorClient, AnchorStatus, await_confirmation
from .errors import AnchorError, DuplicateVoteError
from .index import TagIndex
from .keys import VoterIdentity
from .lsag import LinkableSigner
from .models import VoteCastOutcome, VoteCommitment, VoteRecord, utcnow
from .storage import MemStorage

logger = logging.getLogger(__name__)

_Key = Tuple[str, str]


class VoteCaster:
    """Build, sign, anchor and confirm votes.

    Args
    - anchor: ledger client used for commit/confirm
    - storage: election lookup, commitment store and ring source
    - signer: the signing primitive; passed in, never shared implicitly
    - tag_index: confirmed tags; share it with other casters of the same
      elections so they reject each other's repeats locally
    - ring_size: number of keys a signature hides among
    - confirm_timeout, poll_interval: bound on waiting for confirmation

    One lock is kept per (election, tag) ever attempted, and records are
    remembered per (election, tag) until the caster is dropped, so memory
    grows with the number of voters served.
    """

    def __init__(
        self,
        anchor: AnchorClient,
        storage: MemStorage,
        signer: Optional[LinkableSigner] = None,
        tag_index: Optional[TagIndex] = None,
        ring_size: int = config.RING_SIZE,
        confirm_timeout: float = config.CONFIRM_TIMEOUT,
        poll_interval: float = config.CONFIRM_POLL_INTERVAL,
        clock=utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.anchor = anchor
        self.storage = storage
        self.signer = signer if signer is not None else LinkableSigner()
        self.tags = tag_index if tag_index is not None else TagIndex()
        self.ring_size = ring_size
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep
        self._guard = threading.Lock()
        self._attempt_locks: Dict[_Key, threading.Lock] = {}
        self._pending: Dict[_Key, VoteRecord] = {}
        self._confirmed: Dict[_Key, VoteRecord] = {}

    def _attempt_lock(self, key: _Key) -> threading.Lock:
        with self._guard:
            return self._attempt_locks.setdefault(key, threading.Lock())

    def cast_vote(
        self,
        election_id: str,
        candidate_id: str,
        voter: VoterIdentity,
        timeout: Optional[float] = None,
    ) -> VoteCastOutcome:
        """Cast one vote and report whether it was counted.

        Raises SignatureError for malformed keys (a caller bug); every other
        problem is reported through the returned outcome.
        """
        election = self.storage.get_election(election_id)
        if election is None:
            return VoteCastOutcome.rejected(f"unknown election {election_id!r}")
        now = self.clock()
        if not election.accepts_votes(now):
            return VoteCastOutcome.rejected("election is not accepting votes")
        if not election.has_candidate(candidate_id):
            return VoteCastOutcome.rejected(f"unknown candidate {candidate_id!r}")

        tag = self.signer.derive_linkability_tag(voter.private_key, election_id)
        key = (election_id, tag)
        with self._attempt_lock(key):
            if self.tags.seen(election_id, tag):
                logger.warning("repeat vote in election %s rejected locally", election_id)
                return VoteCastOutcome.rejected(
                    "a vote with this key was already counted in this election"
                )
            pending = self._pending.get(key)
            if pending is not None:
                previous = self.storage.get_commitment(pending.commitment_hash)
                if previous is None or previous.candidate_id != candidate_id:
                    return VoteCastOutcome.rejected(
                        "another vote for this election is still unconfirmed; resubmit it"
                    )
                return self._submit(pending, timeout)

            # Building
            commitment = VoteCommitment(election_id, candidate_id, now)
            commitment_hash = self.storage.put_commitment(commitment)
            # Signed
            ring = self.storage.ring_for(voter.public_key, self.ring_size)
            signature, signed_tag = self.signer.sign(
                commitment_hash, voter.private_key, election_id, ring
            )
            record = VoteRecord(election_id, commitment_hash, signature, signed_tag)
            self._pending[key] = record
            logger.info("vote signed for election %s (ring of %d)", election_id, len(ring))
            return self._submit(record, timeout)

    def resubmit(self, record: VoteRecord, timeout: Optional[float] = None) -> VoteCastOutcome:
        """Send a previously signed record again, unchanged.

        Safe after a Failed outcome: the ledger and the tally absorb repeats.
        """
        key = (record.election_id, record.linkability_tag)
        with self._attempt_lock(key):
            done = self._confirmed.get(key)
            if done is not None and done.commitment_hash == record.commitment_hash:
                return VoteCastOutcome.confirmed(done)
            if self.tags.seen(record.election_id, record.linkability_tag):
                return VoteCastOutcome.rejected(
                    "a vote with this key was already counted in this election"
                )
            self._pending.setdefault(key, record)
            return self._submit(record, timeout)

    def _submit(self, record: VoteRecord, timeout: Optional[float]) -> VoteCastOutcome:
        key = (record.election_id, record.linkability_tag)
        try:
            # Submitted
            handle = self.anchor.commit(record.payload())
            logger.info("vote submitted as %s", handle[:16])
            status = await_confirmation(
                self.anchor,
                handle,
                timeout=self.confirm_timeout if timeout is None else timeout,
                poll_interval=self.poll_interval,
                sleep=self.sleep,
            )
        except DuplicateVoteError as e:
            self._pending.pop(key, None)
            logger.warning("anchor rejected repeat vote in election %s", record.election_id)
            return VoteCastOutcome.rejected(str(e))
        except AnchorError as e:
            logger.warning("vote submission failed, retryable: %s", e)
            return VoteCastOutcome.failed(str(e), record)

        if status is AnchorStatus.FAILED:
            logger.warning("ledger dropped %s", handle[:16])
            return VoteCastOutcome.failed("ledger did not include the record", record)

        confirmed = record.confirmed(handle, self.clock())
        self._pending.pop(key, None)
        if not self.tags.claim(record.election_id, record.linkability_tag):
            # another caster sharing the index claimed the tag while this
            # record was on its way; ledger order decides which one counts
            logger.warning("tag claimed elsewhere after commit in election %s", record.election_id)
            return VoteCastOutcome.failed(
                "another attempt with this key was confirmed concurrently; "
                "the tally decides which one counts",
                confirmed,
            )
        self._confirmed[key] = confirmed
        logger.info("vote confirmed in election %s", record.election_id)
        return VoteCastOutcome.confirmed(confirmed)
