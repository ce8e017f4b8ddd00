from datetime import timedelta

import pytest

from anonvote.keys import VoterIdentity, generate_keypair
from anonvote.models import Election, VoteCommitment, VoteRecord, VoteStatus, utcnow
from anonvote.tally import results_hash

from conftest import make_election


def anchor_vote(ledger, storage, signer, voter, candidate, election_id="e-2026", at=None):
    """Sign and anchor a vote directly, bypassing the caster."""
    digest = storage.put_commitment(VoteCommitment(election_id, candidate, at or utcnow()))
    sig, tag = signer.sign(digest, voter.private_key, election_id, storage.public_keys())
    record = VoteRecord(election_id, digest, sig, tag)
    ledger.confirm(ledger.commit(record.payload()))
    return record


def counts(results):
    return {r.candidate_id: r.count for r in results}


def test_tally_counts_and_percentages(caster, aggregator, new_voter):
    choices = ["A"] * 3 + ["B"] * 5 + ["C"] * 2
    for candidate in choices:
        assert caster.cast_vote("e-2026", candidate, new_voter()).status is VoteStatus.CONFIRMED

    results = aggregator.tally("e-2026")
    assert [(r.candidate_id, r.count, r.percentage) for r in results] == [
        ("A", 3, 30.0),
        ("B", 5, 50.0),
        ("C", 2, 20.0),
    ]
    assert sum(r.count for r in results) == 10


def test_percentages_of_uneven_split(caster, aggregator, new_voter):
    for candidate in ("A", "B", "B"):
        caster.cast_vote("e-2026", candidate, new_voter())
    results = aggregator.tally("e-2026")
    assert results[0].percentage == pytest.approx(100 / 3)
    assert sum(r.percentage for r in results) == pytest.approx(100.0)


def test_empty_election(aggregator):
    results = aggregator.tally("e-2026")
    assert [(r.candidate_id, r.count, r.percentage) for r in results] == [
        ("A", 0, 0.0),
        ("B", 0, 0.0),
        ("C", 0, 0.0),
    ]


def test_unknown_election(aggregator):
    with pytest.raises(KeyError):
        aggregator.tally("nope")


def test_first_seen_record_wins(ledger, storage, signer, aggregator, new_voter):
    voter = new_voter()
    new_voter()
    anchor_vote(ledger, storage, signer, voter, "B")
    anchor_vote(ledger, storage, signer, voter, "A")

    audit = aggregator.audit("e-2026")
    assert counts(audit.results) == {"A": 0, "B": 1, "C": 0}
    assert audit.accepted == 1
    assert audit.duplicates == 1


def test_invalid_record_does_not_shadow_a_valid_one(ledger, storage, signer, aggregator, new_voter):
    voter = new_voter()
    digest = storage.put_commitment(VoteCommitment("e-2026", "A", utcnow()))
    sig, tag = signer.sign(digest, voter.private_key, "e-2026", storage.public_keys())
    ledger.confirm(ledger.commit(VoteRecord("e-2026", digest, "{}", tag).payload()))
    ledger.confirm(ledger.commit(VoteRecord("e-2026", digest, sig, tag).payload()))

    audit = aggregator.audit("e-2026")
    assert counts(audit.results)["A"] == 1
    assert audit.invalid == 1
    assert audit.duplicates == 0


def test_unregistered_signer_is_skipped(ledger, storage, signer, aggregator):
    pub, priv = generate_keypair()
    outsider = VoterIdentity("outsider", pub, priv)
    digest = storage.put_commitment(VoteCommitment("e-2026", "A", utcnow()))
    sig, tag = signer.sign(digest, outsider.private_key, "e-2026")
    ledger.confirm(ledger.commit(VoteRecord("e-2026", digest, sig, tag).payload()))

    audit = aggregator.audit("e-2026")
    assert counts(audit.results)["A"] == 0
    assert audit.invalid == 1
    assert audit.skipped["bad-signature"] == 1


def test_unresolved_commitment_is_skipped(ledger, storage, signer, aggregator, new_voter):
    voter = new_voter()
    commitment = VoteCommitment("e-2026", "A", utcnow())
    sig, tag = signer.sign(commitment.commitment_hash, voter.private_key, "e-2026")
    record = VoteRecord("e-2026", commitment.commitment_hash, sig, tag)
    ledger.confirm(ledger.commit(record.payload()))

    audit = aggregator.audit("e-2026")
    assert audit.unresolved == 1
    assert audit.accepted == 0

    # once the commitment is known the same ledger entry counts
    storage.put_commitment(commitment)
    assert counts(aggregator.tally("e-2026"))["A"] == 1


def test_swapped_tag_is_skipped(ledger, storage, signer, aggregator, new_voter):
    voter, other = new_voter(), new_voter()
    digest = storage.put_commitment(VoteCommitment("e-2026", "B", utcnow()))
    sig, _ = signer.sign(digest, voter.private_key, "e-2026")
    other_tag = signer.derive_linkability_tag(other.private_key, "e-2026")
    ledger.confirm(ledger.commit(VoteRecord("e-2026", digest, sig, other_tag).payload()))

    audit = aggregator.audit("e-2026")
    assert audit.skipped["tag-mismatch"] == 1
    # the innocent voter can still vote
    anchor_vote(ledger, storage, signer, other, "C")
    assert counts(aggregator.tally("e-2026"))["C"] == 1


def test_signature_over_other_commitment_is_skipped(ledger, storage, signer, aggregator, new_voter):
    voter = new_voter()
    real = storage.put_commitment(VoteCommitment("e-2026", "A", utcnow()))
    swapped = storage.put_commitment(VoteCommitment("e-2026", "B", utcnow()))
    sig, tag = signer.sign(real, voter.private_key, "e-2026")
    ledger.confirm(ledger.commit(VoteRecord("e-2026", swapped, sig, tag).payload()))

    audit = aggregator.audit("e-2026")
    assert audit.skipped["bad-signature"] == 1
    assert counts(audit.results) == {"A": 0, "B": 0, "C": 0}


def test_vote_outside_window_is_skipped(ledger, storage, signer, aggregator, new_voter):
    voter = new_voter()
    anchor_vote(ledger, storage, signer, voter, "A", at=utcnow() - timedelta(hours=3))
    assert aggregator.audit("e-2026").skipped["outside-window"] == 1


def test_non_vote_payloads_and_other_elections_ignored(ledger, storage, signer, aggregator, new_voter):
    storage.put_election(make_election("e-other"))
    voter = new_voter()
    ledger.confirm(ledger.commit(b"not a vote"))
    anchor_vote(ledger, storage, signer, voter, "A", election_id="e-other")
    anchor_vote(ledger, storage, signer, voter, "B")

    audit = aggregator.audit("e-2026")
    assert counts(audit.results) == {"A": 0, "B": 1, "C": 0}
    assert audit.invalid == 0
    assert counts(aggregator.tally("e-other"))["A"] == 1


def test_tally_is_repeatable(caster, aggregator, new_voter):
    for candidate in ("C", "A"):
        caster.cast_vote("e-2026", candidate, new_voter())
    assert aggregator.tally("e-2026") == aggregator.tally("e-2026")


def test_publish_and_verify(caster, aggregator, new_voter):
    caster.cast_vote("e-2026", "A", new_voter())
    results, digest = aggregator.publish("e-2026")
    assert digest == results_hash(results)

    ok, details = aggregator.verify_published("e-2026", digest)
    assert ok
    assert details["recomputed_hash"] == digest

    caster.cast_vote("e-2026", "B", new_voter())
    ok, details = aggregator.verify_published("e-2026", digest)
    assert not ok
    assert details["recomputed_results"][1]["count"] == 1


def test_closed_election_still_tallies(caster, storage, aggregator, new_voter):
    for candidate in ("A", "B", "B"):
        assert caster.cast_vote("e-2026", candidate, new_voter()).status is VoteStatus.CONFIRMED
    storage.close_election("e-2026")

    audit = aggregator.audit("e-2026")
    assert counts(audit.results) == {"A": 1, "B": 2, "C": 0}
    assert not audit.skipped
    # closing stops new votes, not the count
    assert caster.cast_vote("e-2026", "C", new_voter()).status is VoteStatus.REJECTED


def test_election_past_its_window_still_tallies(ledger, storage, signer, aggregator, new_voter):
    ended = utcnow() - timedelta(days=1)
    storage.put_election(Election("e-ended", ("A", "B"), ended - timedelta(hours=2), ended))
    voter = new_voter()
    anchor_vote(
        ledger, storage, signer, voter, "B", election_id="e-ended", at=ended - timedelta(hours=1)
    )
    storage.close_election("e-ended")
    assert counts(aggregator.tally("e-ended")) == {"A": 0, "B": 1}


def test_deeply_nested_entries_do_not_abort_the_tally(ledger, storage, signer, aggregator, new_voter):
    voter = new_voter()
    ledger.confirm(ledger.commit(b"[" * 60000))
    digest = storage.put_commitment(VoteCommitment("e-2026", "A", utcnow()))
    _, tag = signer.sign(digest, voter.private_key, "e-2026")
    nested = VoteRecord("e-2026", digest, "[" * 60000, tag)
    ledger.confirm(ledger.commit(nested.payload()))
    anchor_vote(ledger, storage, signer, voter, "C")

    audit = aggregator.audit("e-2026")
    assert counts(audit.results)["C"] == 1
    assert audit.skipped["bad-signature"] == 1
