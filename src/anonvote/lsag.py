"""Linkable ring signatures (LSAG) over secp256k1.

A signature proves that the holder of one of the private keys in a ring
signed the message, without revealing which one. Alongside it the signer
publishes a linkability tag

    I = x * H_p(context)

where x is the signer's private scalar and H_p hashes the election context
to a curve point. The tag does not depend on the message, so two votes by
the same key in the same election collide on I whatever candidate they
carry, while tags for different contexts are unlinkable (DDH on the curve).

Signatures travel as canonical JSON:

    {"c0": .., "context": .., "curve": "SECP256k1", "ring": [..],
     "s": [..], "tag": .., "v": 1}

Scalars are 64-char hex, points 33-byte compressed hex.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from functools import lru_cache
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Set, Tuple, Union

from ecdsa import numbertheory
from ecdsa.ellipticcurve import PointJacobi

from . import config
from .errors import SignatureError
from .keys import (
    CURVE,
    CURVE_NAME,
    G,
    ORDER,
    PrivateKey,
    PublicKey,
    decode_point,
    encode_point,
    rand_scalar,
)

logger = logging.getLogger(__name__)

SIGNATURE_VERSION = 1

_H2C_DOMAIN = b"anonvote/hash-to-curve/v1|"
_CHALLENGE_DOMAIN = b"anonvote/lsag-challenge/v1|"
_SCALAR_RE = re.compile(r"[0-9a-f]{64}")

Message = Union[str, bytes]
PublicKeys = Union[PublicKey, Iterable[PublicKey]]


## --- hashing helpers -----------------------------------------------------


@lru_cache(maxsize=256)
def hash_to_point(context: str) -> PointJacobi:
    """Map a context string to a curve point with unknown discrete log.

    Try-and-increment: hash (context, counter) to a candidate x until
    x^3 + 7 is a square mod p, then take the even root.
    """
    p = CURVE.curve.p()
    a = CURVE.curve.a()
    b = CURVE.curve.b()
    counter = 0
    while True:
        digest = hashlib.sha256(
            _H2C_DOMAIN + context.encode("utf-8") + b"|" + counter.to_bytes(4, "big")
        ).digest()
        counter += 1
        x = int.from_bytes(digest, "big")
        if x >= p:
            continue
        alpha = (pow(x, 3, p) + a * x + b) % p
        if numbertheory.jacobi(alpha, p) != 1:
            continue
        y = numbertheory.square_root_mod_prime(alpha, p)
        if y & 1:
            y = p - y
        return PointJacobi(CURVE.curve, x, y, 1, ORDER)


def _message_bytes(message: Message) -> bytes:
    if isinstance(message, str):
        return message.encode("utf-8")
    if isinstance(message, (bytes, bytearray)):
        return bytes(message)
    raise SignatureError("message must be str or bytes")


def _check_context(context: str) -> str:
    if not isinstance(context, str) or not context:
        raise SignatureError("context must be a non-empty string")
    return context


def _transcript(context: str, ring: Sequence[bytes], tag: bytes, message: bytes):
    h = hashlib.sha256(_CHALLENGE_DOMAIN)
    for part in (CURVE_NAME.encode(), context.encode("utf-8"), *ring, tag, message):
        h.update(len(part).to_bytes(4, "big"))
        h.update(part)
    return h


def _challenge(transcript, left, right) -> int:
    h = transcript.copy()
    h.update(encode_point(left))
    h.update(encode_point(right))
    return int.from_bytes(h.digest(), "big") % ORDER


## --- wire format -----------------------------------------------------------


@dataclass(frozen=True)
class LinkableSignature:
    context: str
    ring: Tuple[str, ...]
    c0: int
    s: Tuple[int, ...]
    tag: str
    curve: str = CURVE_NAME
    version: int = SIGNATURE_VERSION

    def to_json(self) -> str:
        body = {
            "v": self.version,
            "curve": self.curve,
            "context": self.context,
            "ring": list(self.ring),
            "c0": format(self.c0, "064x"),
            "s": [format(v, "064x") for v in self.s],
            "tag": self.tag,
        }
        return json.dumps(body, sort_keys=True, separators=(",", ":"))


def _parse_scalar(value: Any) -> int:
    if not isinstance(value, str) or not _SCALAR_RE.fullmatch(value):
        raise SignatureError("scalar must be 64 lowercase hex chars")
    n = int(value, 16)
    if n >= ORDER:
        raise SignatureError("scalar out of range")
    return n


def _parse_point_hex(value: Any) -> str:
    if not isinstance(value, str) or len(value) != 66 or value != value.lower():
        raise SignatureError("point must be 66 lowercase hex chars")
    PublicKey.from_hex(value)
    return value


def parse_signature(
    signature: Union[str, bytes],
    max_bytes: int = config.MAX_SIGNATURE_BYTES,
    max_ring_size: int = config.MAX_RING_SIZE,
) -> LinkableSignature:
    """Decode and structurally validate a serialized signature.

    Raises SignatureError on anything malformed; does not check the ring
    equation.
    """
    if isinstance(signature, (bytes, bytearray)):
        if len(signature) > max_bytes:
            raise SignatureError("signature too large")
        try:
            signature = bytes(signature).decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureError("signature is not utf-8") from None
    if not isinstance(signature, str):
        raise SignatureError("signature must be str or bytes")
    if len(signature) > max_bytes:
        raise SignatureError("signature too large")
    try:
        body = json.loads(signature)
    except (ValueError, RecursionError):
        raise SignatureError("signature is not valid JSON") from None
    if not isinstance(body, dict):
        raise SignatureError("signature must be a JSON object")
    if set(body) != {"v", "curve", "context", "ring", "c0", "s", "tag"}:
        raise SignatureError("unexpected signature fields")
    if type(body["v"]) is not int or body["v"] != SIGNATURE_VERSION:
        raise SignatureError("unsupported signature version")
    if body["curve"] != CURVE_NAME:
        raise SignatureError(f"signature is not over {CURVE_NAME}")
    ring = body["ring"]
    s = body["s"]
    if not isinstance(ring, list) or not isinstance(s, list):
        raise SignatureError("ring and responses must be lists")
    if not 1 <= len(ring) <= max_ring_size:
        raise SignatureError("ring size out of bounds")
    if len(s) != len(ring):
        raise SignatureError("ring and responses differ in length")
    parsed = LinkableSignature(
        context=_check_context(body["context"]),
        ring=tuple(_parse_point_hex(k) for k in ring),
        c0=_parse_scalar(body["c0"]),
        s=tuple(_parse_scalar(v) for v in s),
        tag=_parse_point_hex(body["tag"]),
    )
    if list(parsed.ring) != sorted(set(parsed.ring)):
        raise SignatureError("ring is not in canonical order")
    return parsed


def signature_tag(signature: Union[str, bytes]) -> str:
    return parse_signature(signature).tag


def signature_context(signature: Union[str, bytes]) -> str:
    return parse_signature(signature).context


## --- signer --------------------------------------------------------------


class LinkableSigner:
    """Signing and verification with fixed resource limits.

    Instances hold no key material and no mutable state; pass one to each
    component that signs or verifies.
    """

    def __init__(
        self,
        max_ring_size: int = config.MAX_RING_SIZE,
        max_signature_bytes: int = config.MAX_SIGNATURE_BYTES,
    ):
        self.max_ring_size = max_ring_size
        self.max_signature_bytes = max_signature_bytes

    def derive_linkability_tag(self, private_key: PrivateKey, context: str) -> str:
        if not isinstance(private_key, PrivateKey):
            raise SignatureError("private_key must be a PrivateKey")
        point = hash_to_point(_check_context(context)) * private_key.secret
        return encode_point(point).hex()

    def _canonical_ring(
        self, own: PublicKey, ring: Optional[Iterable[PublicKey]]
    ) -> List[bytes]:
        members = {own.to_bytes()}
        for key in ring or ():
            if not isinstance(key, PublicKey):
                raise SignatureError("ring members must be PublicKey")
            members.add(key.to_bytes())
        if len(members) > self.max_ring_size:
            raise SignatureError(f"ring larger than {self.max_ring_size}")
        return sorted(members)

    def sign(
        self,
        message: Message,
        private_key: PrivateKey,
        context: str,
        ring: Optional[Iterable[PublicKey]] = None,
    ) -> Tuple[str, str]:
        """Sign `message` among `ring` and return (signature_json, tag_hex).

        The signer's own public key is always part of the ring.
        """
        msg = _message_bytes(message)
        tag_hex = self.derive_linkability_tag(private_key, context)
        x = private_key.secret
        ring_bytes = self._canonical_ring(private_key.public_key(), ring)
        points = [decode_point(k) for k in ring_bytes]
        pi = ring_bytes.index(private_key.public_key().to_bytes())
        n = len(points)

        H = hash_to_point(context)
        tag_bytes = bytes.fromhex(tag_hex)
        tag_point = decode_point(tag_bytes)
        transcript = _transcript(context, ring_bytes, tag_bytes, msg)

        c = [0] * n
        s = [0] * n
        u = rand_scalar()
        c[(pi + 1) % n] = _challenge(transcript, G * u, H * u)
        i = (pi + 1) % n
        while i != pi:
            s[i] = rand_scalar()
            left = G.mul_add(s[i], points[i], c[i])
            right = H.mul_add(s[i], tag_point, c[i])
            c[(i + 1) % n] = _challenge(transcript, left, right)
            i = (i + 1) % n
        s[pi] = (u - c[pi] * x) % ORDER

        sig = LinkableSignature(
            context=context,
            ring=tuple(k.hex() for k in ring_bytes),
            c0=c[0],
            s=tuple(s),
            tag=tag_hex,
        )
        return sig.to_json(), tag_hex

    def parse(self, signature: Union[str, bytes]) -> LinkableSignature:
        return parse_signature(
            signature,
            max_bytes=self.max_signature_bytes,
            max_ring_size=self.max_ring_size,
        )

    def verify(
        self, message: Message, signature: Union[str, bytes], public_keys: PublicKeys
    ) -> bool:
        """Check a signature against a trusted key or set of trusted keys.

        Every ring member must be trusted. Never raises on malformed input.
        """
        try:
            msg = _message_bytes(message)
            sig = self.parse(signature)
            trusted = _trusted_set(public_keys)
        except (SignatureError, TypeError):
            return False
        ring_bytes = [bytes.fromhex(k) for k in sig.ring]
        if not all(k in trusted for k in ring_bytes):
            return False
        try:
            H = hash_to_point(sig.context)
            tag_bytes = bytes.fromhex(sig.tag)
            tag_point = decode_point(tag_bytes)
            transcript = _transcript(sig.context, ring_bytes, tag_bytes, msg)
            c = sig.c0
            for key, s_i in zip(ring_bytes, sig.s):
                left = G.mul_add(s_i, decode_point(key), c)
                right = H.mul_add(s_i, tag_point, c)
                c = _challenge(transcript, left, right)
        except SignatureError as exc:
            logger.debug("signature rejected: %s", exc)
            return False
        return c == sig.c0


def _trusted_set(public_keys: PublicKeys) -> Set[bytes]:
    if isinstance(public_keys, PublicKey):
        return {public_keys.to_bytes()}
    trusted = set()
    for key in public_keys:
        if not isinstance(key, PublicKey):
            raise TypeError("public_keys must contain PublicKey values")
        trusted.add(key.to_bytes())
    return trusted
