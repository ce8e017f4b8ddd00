"""Exception taxonomy for the voting core.

Callers need to tell "your vote was definitely not counted" apart from
"we don't know whether it was counted": the first is a DuplicateVoteError
(do not resubmit), the second an AnchorError (safe to resubmit the same
signed record).
"""


class VotingError(Exception):
    pass


class KeyGenerationError(VotingError):
    """Key generation failed; retry only with fresh randomness."""


class SignatureError(VotingError):
    """Malformed key, message, ring or signature handed to a signing call."""


class DuplicateVoteError(VotingError):
    """The linkability tag was already used in this election."""


class AnchorError(VotingError):
    pass


class AnchorUnavailableError(AnchorError):
    pass


class AnchorTimeoutError(AnchorError):
    pass


class RegistrationError(VotingError):
    """Identity proofing rejected the credential."""


class DuplicateKeyError(KeyError):
    """A storage uniqueness constraint was violated."""
