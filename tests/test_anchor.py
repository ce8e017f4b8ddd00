import pytest

from anonvote.anchor import AnchorStatus, InMemoryLedger, await_confirmation
from anonvote.errors import AnchorTimeoutError, AnchorUnavailableError, DuplicateVoteError
from anonvote.models import ledger_key


def test_commit_confirm_entries():
    ledger = InMemoryLedger(confirm_after=2)
    h = ledger.commit(b"record-1")
    assert ledger.confirm(h) is AnchorStatus.PENDING
    assert ledger.confirm(h) is AnchorStatus.PENDING
    assert ledger.confirm(h) is AnchorStatus.COMMITTED
    entries = list(ledger.entries())
    assert [e.payload for e in entries] == [b"record-1"]
    assert entries[0].handle == h
    assert entries[0].sequence == 0


def test_entries_follow_confirmation_order():
    ledger = InMemoryLedger()
    first = ledger.commit(b"first")
    second = ledger.commit(b"second")
    ledger.confirm(second)
    ledger.confirm(first)
    assert [e.payload for e in ledger.entries()] == [b"second", b"first"]


def test_identical_payloads_are_deduplicated():
    ledger = InMemoryLedger()
    a = ledger.commit(b"same")
    b = ledger.commit(b"same")
    assert a == b
    ledger.confirm(a)
    ledger.confirm(b)
    assert len(list(ledger.entries())) == 1
    assert ledger.commit_calls == 2


def test_at_least_once_ledger_keeps_repeats():
    ledger = InMemoryLedger(deduplicate=False)
    a = ledger.commit(b"same")
    b = ledger.commit(b"same")
    assert a != b
    assert ledger.seal() == 2
    assert [e.payload for e in ledger.entries()] == [b"same", b"same"]


def test_unknown_handle_is_failed():
    assert InMemoryLedger().confirm("nope") is AnchorStatus.FAILED


def test_commit_requires_bytes():
    with pytest.raises(TypeError):
        InMemoryLedger().commit("text")


def test_unavailable_ledger_raises():
    ledger = InMemoryLedger()
    h = ledger.commit(b"x")
    ledger.available = False
    with pytest.raises(AnchorUnavailableError):
        ledger.commit(b"y")
    with pytest.raises(AnchorUnavailableError):
        ledger.confirm(h)


def test_dropped_entry_can_be_resubmitted():
    ledger = InMemoryLedger(confirm_after=5)
    h = ledger.commit(b"x")
    ledger.drop(h)
    assert ledger.confirm(h) is AnchorStatus.FAILED
    assert ledger.commit(b"x") == h
    assert ledger.seal() == 1
    assert ledger.confirm(h) is AnchorStatus.COMMITTED


def test_unique_key_rejects_a_second_payload():
    ledger = InMemoryLedger(unique_key=lambda p: p.split(b":")[0].decode())
    ledger.commit(b"k1:first")
    # the same payload again is a harmless repeat
    ledger.commit(b"k1:first")
    with pytest.raises(DuplicateVoteError):
        ledger.commit(b"k1:second")
    ledger.commit(b"k2:other")


def test_ledger_key_ignores_non_vote_payloads():
    assert ledger_key(b"not json") is None
    assert ledger_key(b'{"electionId": "e"}') is None


def test_await_confirmation_returns_committed():
    ledger = InMemoryLedger(confirm_after=3)
    h = ledger.commit(b"x")
    sleeps = []
    assert await_confirmation(ledger, h, timeout=5, poll_interval=0.1, sleep=sleeps.append) is (
        AnchorStatus.COMMITTED
    )
    assert len(sleeps) == 3


def test_await_confirmation_returns_failed():
    ledger = InMemoryLedger()
    h = ledger.commit(b"x")
    ledger.stalled = True
    ledger.drop(h)
    assert await_confirmation(ledger, h, timeout=1, sleep=lambda s: None) is AnchorStatus.FAILED


def test_await_confirmation_times_out():
    ledger = InMemoryLedger()
    ledger.stalled = True
    h = ledger.commit(b"x")
    now = [0.0]

    def fake_sleep(seconds):
        now[0] += seconds

    with pytest.raises(AnchorTimeoutError):
        await_confirmation(
            ledger, h, timeout=2, poll_interval=0.5, sleep=fake_sleep, clock=lambda: now[0]
        )
    assert now[0] == pytest.approx(2.0)
