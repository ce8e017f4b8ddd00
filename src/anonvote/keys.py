"""Voter keypairs on secp256k1.

Private keys serialize to a 32-byte big-endian scalar, public keys to a
33-byte compressed point. The same curve and generator are used by the
linkable signatures in `anonvote.lsag`.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Tuple

from ecdsa import SECP256k1
from ecdsa.ellipticcurve import INFINITY, PointJacobi
from ecdsa.errors import MalformedPointError

from .errors import KeyGenerationError, SignatureError

CURVE = SECP256k1
CURVE_NAME = CURVE.name
G = CURVE.generator
ORDER = CURVE.order

PRIVATE_KEY_SIZE = 32
PUBLIC_KEY_SIZE = 33


def rand_scalar() -> int:
    # sample uniformly in [1, order-1]
    return secrets.randbelow(ORDER - 1) + 1


def encode_point(point) -> bytes:
    if point == INFINITY:
        raise SignatureError("point at infinity has no encoding")
    return point.to_bytes("compressed")


@lru_cache(maxsize=4096)
def decode_point(data: bytes) -> PointJacobi:
    """Decode a compressed point, raising SignatureError on anything else."""
    if not isinstance(data, (bytes, bytearray)) or len(data) != PUBLIC_KEY_SIZE:
        raise SignatureError("expected a 33-byte compressed point")
    try:
        point = PointJacobi.from_bytes(
            CURVE.curve, bytes(data), valid_encodings=("compressed",), order=ORDER
        )
    except (MalformedPointError, ValueError) as exc:
        raise SignatureError(f"invalid curve point: {exc}") from None
    # x >= p would give a second encoding of the same point
    if encode_point(point) != bytes(data):
        raise SignatureError("non-canonical point encoding")
    return point


@dataclass(frozen=True)
class PublicKey:
    encoded: bytes

    @property
    def point(self) -> PointJacobi:
        return decode_point(self.encoded)

    def to_bytes(self) -> bytes:
        return self.encoded

    def hex(self) -> str:
        return self.encoded.hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> "PublicKey":
        decode_point(bytes(data))
        return cls(bytes(data))

    @classmethod
    def from_hex(cls, value: str) -> "PublicKey":
        try:
            data = bytes.fromhex(value)
        except (TypeError, ValueError):
            raise SignatureError("public key is not valid hex") from None
        return cls.from_bytes(data)


@dataclass(frozen=True)
class PrivateKey:
    secret: int = field(repr=False)

    def public_key(self) -> PublicKey:
        return PublicKey(encode_point(G * self.secret))

    def to_bytes(self) -> bytes:
        return self.secret.to_bytes(PRIVATE_KEY_SIZE, "big")

    @classmethod
    def from_bytes(cls, data: bytes) -> "PrivateKey":
        if not isinstance(data, (bytes, bytearray)) or len(data) != PRIVATE_KEY_SIZE:
            raise SignatureError("expected a 32-byte private key")
        secret = int.from_bytes(data, "big")
        if not 1 <= secret < ORDER:
            raise SignatureError("private key out of range")
        return cls(secret)


@dataclass(frozen=True)
class VoterIdentity:
    """A registered voter. The private key never leaves the voter's process."""

    identity_handle: str
    public_key: PublicKey
    private_key: PrivateKey = field(repr=False)


def generate_keypair() -> Tuple[PublicKey, PrivateKey]:
    try:
        private_key = PrivateKey(rand_scalar())
        public_key = private_key.public_key()
    except (OSError, NotImplementedError, ArithmeticError) as exc:
        raise KeyGenerationError(f"could not generate keypair: {exc}") from exc
    return public_key, private_key
