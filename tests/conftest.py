import os
import sys
from datetime import datetime, timedelta, timezone

import pytest


# Ensure repository src directory is on sys.path for tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from anonvote.anchor import InMemoryLedger  # noqa: E402
from anonvote.caster import VoteCaster  # noqa: E402
from anonvote.keys import VoterIdentity, generate_keypair  # noqa: E402
from anonvote.lsag import LinkableSigner  # noqa: E402
from anonvote.models import Election  # noqa: E402
from anonvote.storage import MemStorage  # noqa: E402
from anonvote.tally import TallyAggregator  # noqa: E402


def make_election(election_id="e-2026", candidates=("A", "B", "C"), active=True):
    now = datetime.now(timezone.utc)
    return Election(
        election_id=election_id,
        candidates=candidates,
        starts_at=now - timedelta(hours=1),
        ends_at=now + timedelta(hours=1),
        active=active,
    )


def make_voter(storage, handle):
    pub, priv = generate_keypair()
    voter = VoterIdentity(identity_handle=handle, public_key=pub, private_key=priv)
    storage.put_voter(voter)
    return voter


@pytest.fixture
def signer():
    return LinkableSigner()


@pytest.fixture
def storage():
    st = MemStorage()
    st.put_election(make_election())
    return st


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def caster(ledger, storage, signer):
    return VoteCaster(
        ledger, storage, signer=signer, ring_size=3, confirm_timeout=0.2, poll_interval=0.01
    )


@pytest.fixture
def aggregator(ledger, storage, signer):
    return TallyAggregator(ledger, storage, signer=signer)


@pytest.fixture
def new_voter(storage):
    """Factory registering a fresh voter in `storage`."""
    made = []

    def make():
        voter = make_voter(storage, f"voter-{len(made)}")
        made.append(voter)
        return voter

    return make
