"""
Key derivation.

Everything an account owns is derived from a single wallet signature over
SIGNATURE_MESSAGE, so keys are recoverable on any device without storage:

    user_key        = H(sig[0:31], sig[31:62], sig[62:65])
    user_key_hash   = H(user_key)
    view_key        = H(VIEW_DOMAIN, user_key_hash)
    nonce_commitment(n) = H(user_key_hash, n)
    encryption_key(n)   = H(view_key, n)
    public_key      = user_key * G
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property

from shielded_ledger.crypto import Field, Point, hash_fields
from shielded_ledger.errors import InputError

SIGNATURE_MESSAGE = (
    "Sign this message to unlock your shielded balance.\n\n"
    "The signature derives your private spending and viewing keys. "
    "Only sign it on a site you trust."
)
SIGNATURE_LENGTH = 65
SIGNATURE_CHUNKS = (31, 31, 3)

VIEW_DOMAIN = Field(int.from_bytes(b"viewing_key", "big"))

ZK_ADDRESS_PREFIX = "zk"


def parse_signature(signature: bytes | str) -> bytes:
    if isinstance(signature, str):
        text = signature.removeprefix("0x")
        try:
            signature = bytes.fromhex(text)
        except ValueError:
            raise InputError("signature is not valid hex") from None
    if len(signature) != SIGNATURE_LENGTH:
        raise InputError(
            f"signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)}"
        )
    return signature


def split_signature(signature: bytes | str) -> tuple[Field, Field, Field]:
    signature = parse_signature(signature)
    chunks = []
    offset = 0
    for size in SIGNATURE_CHUNKS:
        chunks.append(Field(int.from_bytes(signature[offset : offset + size], "big")))
        offset += size
    return tuple(chunks)


def derive_user_key(signature: bytes | str) -> Field:
    return hash_fields(*split_signature(signature))


@dataclass(frozen=True)
class UserKeys:
    user_key: Field

    @classmethod
    def from_signature(cls, signature: bytes | str) -> UserKeys:
        return cls(derive_user_key(signature))

    @cached_property
    def user_key_hash(self) -> Field:
        return hash_fields(self.user_key)

    @cached_property
    def view_key(self) -> Field:
        return hash_fields(VIEW_DOMAIN, self.user_key_hash)

    @cached_property
    def public_key(self) -> Point:
        return Point.generator().mul(self.user_key)

    @property
    def zk_address(self) -> str:
        return encode_zk_address(self.public_key)

    def nonce_commitment(self, nonce: int) -> Field:
        return hash_fields(self.user_key_hash, nonce)

    def encryption_key(self, nonce: int) -> Field:
        return hash_fields(self.view_key, nonce)

    def __repr__(self):
        # never print the spending key
        return f"UserKeys({self.zk_address[:12]}...)"


def encode_zk_address(public_key: Point) -> str:
    x, y = public_key.to_ints()
    return f"{ZK_ADDRESS_PREFIX}{x:064x}{y:064x}"


def decode_zk_address(address: str) -> Point:
    text = address.strip()
    for prefix in (ZK_ADDRESS_PREFIX, "0x"):
        text = text.removeprefix(prefix)
    if len(text) != 128:
        raise InputError(f"zk address must hold 128 hex digits, got {len(text)}")
    try:
        x, y = int(text[:64], 16), int(text[64:], 16)
    except ValueError:
        raise InputError(f"zk address {address!r} is not hex") from None
    try:
        public_key = Point.from_xy(x, y)
    except ValueError as e:
        raise InputError(f"zk address does not encode a curve point: {e}") from None
    if public_key.is_zero():
        raise InputError("zk address encodes the identity")
    return public_key
