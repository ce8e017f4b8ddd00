"""anonvote - anonymous, linkable vote signing with ledger anchoring.

Modules, leaves first:
- keys: voter keypairs on secp256k1
- lsag: linkable ring signatures and linkability tags
- anchor: ledger clients (in-memory reference ledger, HTTP client)
- caster: the per-vote Building -> Signed -> Submitted -> Confirmed flow
- tally: per-candidate counts over confirmed, non-duplicate records
"""

from .anchor import AnchorStatus, HttpAnchorClient, InMemoryLedger, await_confirmation
from .caster import VoteCaster
from .errors import (
    AnchorError,
    AnchorTimeoutError,
    AnchorUnavailableError,
    DuplicateKeyError,
    DuplicateVoteError,
    KeyGenerationError,
    RegistrationError,
    SignatureError,
    VotingError,
)
from .identity import MockCredentialVerifier, register_voter
from .keys import PrivateKey, PublicKey, VoterIdentity, generate_keypair
from .lsag import LinkableSigner
from .models import (
    Election,
    TallyResult,
    VoteCastOutcome,
    VoteCommitment,
    VoteRecord,
    VoteStatus,
)
from .storage import MemStorage
from .tally import TallyAggregator

__all__ = [
    "AnchorError",
    "AnchorStatus",
    "AnchorTimeoutError",
    "AnchorUnavailableError",
    "DuplicateKeyError",
    "DuplicateVoteError",
    "Election",
    "HttpAnchorClient",
    "InMemoryLedger",
    "KeyGenerationError",
    "LinkableSigner",
    "MemStorage",
    "MockCredentialVerifier",
    "PrivateKey",
    "PublicKey",
    "RegistrationError",
    "SignatureError",
    "TallyAggregator",
    "TallyResult",
    "VoteCastOutcome",
    "VoteCaster",
    "VoteCommitment",
    "VoteRecord",
    "VoteStatus",
    "VoterIdentity",
    "VotingError",
    "await_confirmation",
    "generate_keypair",
    "register_voter",
]
