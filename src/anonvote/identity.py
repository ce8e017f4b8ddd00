"""Identity proofing and voter registration.

The identity oracle answers one question: does this credential/one-time
code pair check out. `MockCredentialVerifier` is a stand-in that accepts
any 12-digit credential with the configured code.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re

from . import config
from .errors import DuplicateKeyError, RegistrationError
from .keys import VoterIdentity, generate_keypair
from .storage import MemStorage

logger = logging.getLogger(__name__)

_CREDENTIAL_RE = re.compile(r"[0-9]{12}")
_CODE_RE = re.compile(r"[0-9]{6}")


class MockCredentialVerifier:
    def __init__(self, accepted_code: str = config.ACCEPTED_OTP):
        self.accepted_code = accepted_code

    def verify_credential(self, credential_id: str, code: str) -> bool:
        if not isinstance(credential_id, str) or not isinstance(code, str):
            return False
        if not _CREDENTIAL_RE.fullmatch(credential_id) or not _CODE_RE.fullmatch(code):
            return False
        return hmac.compare_digest(code, self.accepted_code)


def derive_identity_handle(credential_id: str, registry_key: bytes) -> str:
    """Opaque handle for a proofed credential: HMAC(registry_key, credential_id).

    The registry can recompute it to detect a second registration without
    storing the credential itself.
    """
    if not isinstance(registry_key, (bytes, bytearray)) or not registry_key:
        raise TypeError("registry_key must be non-empty bytes")
    return hmac.new(registry_key, credential_id.encode("utf-8"), hashlib.sha256).hexdigest()


def register_voter(
    credential_id: str,
    code: str,
    verifier,
    storage: MemStorage,
    registry_key: bytes = config.REGISTRY_KEY,
) -> VoterIdentity:
    """Proof the credential, create a keypair and store the new voter.

    Raises RegistrationError if proofing fails and DuplicateKeyError if the
    credential was already registered.
    """
    if not verifier.verify_credential(credential_id, code):
        raise RegistrationError("credential verification failed")
    handle = derive_identity_handle(credential_id, registry_key)
    if storage.get_voter(handle) is not None:
        logger.warning("duplicate registration attempt")
        raise DuplicateKeyError("voter already registered")
    public_key, private_key = generate_keypair()
    voter = VoterIdentity(identity_handle=handle, public_key=public_key, private_key=private_key)
    storage.put_voter(voter)
    logger.info("registered voter %s", handle[:12])
    return voter
