"""Reference runner that walks one small election end to end.

Run this script from the repository root. It registers voters through the
mock identity oracle, casts votes into an in-memory ledger, shows a
double-vote attempt and a confirmation timeout followed by resubmission,
then tallies and checks the published hash.
"""

import argparse
import os
import sys
from datetime import timedelta

SRC = os.path.join(os.path.dirname(os.path.abspath(__file__)), "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from anonvote import config  # noqa: E402
from anonvote.anchor import InMemoryLedger  # noqa: E402
from anonvote.caster import VoteCaster  # noqa: E402
from anonvote.errors import DuplicateKeyError  # noqa: E402
from anonvote.identity import MockCredentialVerifier, register_voter  # noqa: E402
from anonvote.lsag import LinkableSigner, parse_signature  # noqa: E402
from anonvote.models import Election, ledger_key, utcnow  # noqa: E402
from anonvote.storage import MemStorage  # noqa: E402
from anonvote.tally import TallyAggregator  # noqa: E402

CANDIDATES = ("alice", "bob", "carol")


def _print_heading(msg: str):
    print()
    print(msg)


def _print_kv(key: str, value: str):
    print(f"  {key}: {value}")


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--voters", type=int, default=6)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)
    config.configure_logging(args.log_level)

    storage = MemStorage()
    ledger = InMemoryLedger(confirm_after=1, unique_key=ledger_key)
    signer = LinkableSigner()
    caster = VoteCaster(ledger, storage, signer=signer, confirm_timeout=1, poll_interval=0.05)
    aggregator = TallyAggregator(ledger, storage, signer=signer)

    # Setup
    _print_heading("[1] Election setup")
    now = utcnow()
    election = Election(
        "demo-2026",
        CANDIDATES,
        starts_at=now - timedelta(minutes=5),
        ends_at=now + timedelta(hours=1),
        title="Demo election",
    )
    storage.put_election(election)
    _print_kv("election", election.election_id)
    _print_kv("candidates", ", ".join(election.candidates))

    # Registration
    _print_heading("[2] Registration")
    verifier = MockCredentialVerifier()
    voters = []
    for i in range(args.voters):
        credential = f"{100000000000 + i}"
        voter = register_voter(credential, config.ACCEPTED_OTP, verifier, storage)
        voters.append(voter)
        _print_kv(f"registered {credential}", voter.identity_handle[:12] + "..")
    try:
        register_voter("100000000000", config.ACCEPTED_OTP, verifier, storage)
    except DuplicateKeyError:
        _print_kv("second registration of 100000000000", "refused")

    # Casting
    _print_heading("[3] Casting")
    for i, voter in enumerate(voters[:-1]):
        choice = CANDIDATES[i % len(CANDIDATES)]
        out = caster.cast_vote(election.election_id, choice, voter)
        ring = parse_signature(out.record.signature).ring if out.record else ()
        _print_kv(f"voter {i}", f"{out.status.value} (ring of {len(ring)})")

    # Double vote
    _print_heading("[4] Double-vote attempt")
    out = caster.cast_vote(election.election_id, "carol", voters[0])
    _print_kv("voter 0 again", f"{out.status.value}: {out.reason}")

    # Timeout and resubmission
    _print_heading("[5] Ledger stall")
    last = voters[-1]
    ledger.stalled = True
    out = caster.cast_vote(election.election_id, "bob", last, timeout=0.2)
    _print_kv("first attempt", f"{out.status.value} (retryable={out.retryable})")
    ledger.stalled = False
    out = caster.resubmit(out.record)
    _print_kv("resubmitted", out.status.value)

    # Tally
    results, published_hash = aggregator.publish(election.election_id)
    print("\n[6] Published tally:")
    for r in results:
        print(f"  {r.candidate_id}: {r.count} ({r.percentage:.1f}%)")
    print("  hash:", published_hash)

    # Verification
    ok, details = aggregator.verify_published(election.election_id, published_hash)
    print("\n[7] Verification result:", "OK" if ok else "MISMATCH")
    if not ok:
        print("Details:", details)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
