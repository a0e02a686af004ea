"""
Diffie-Hellman note exchange between accounts.

A sender at nonce N uses the ephemeral scalar `user_key + N`, so notes sent at
different nonces can't be linked through the sender key:

    shared          = (user_key + N) * receiver_public_key
    shared_key_hash = H(shared.x)
    encrypted_amount = encrypt(amount, shared_key_hash, AMOUNT)
    encrypted_token  = encrypt(token, shared_key_hash, TOKEN)

The receiver recovers `shared` as `user_key * sender_public_key`.

Every note also pushes `pedersen_positive(amount, shared_key_hash, token)` onto
the receiver's note commitment stack on the ledger, which lets the receiver
check that it decrypted every note addressed to it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import reduce

from shielded_ledger.cipher import Counter, decrypt, encrypt
from shielded_ledger.crypto import Field, Opening, Point, hash_fields, pedersen_positive
from shielded_ledger.errors import ConsistencyError, StateError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedNote:
    sender_public_key: Point
    encrypted_amount: Field
    encrypted_token: Field


@dataclass(frozen=True)
class Note:
    amount: int
    token: int
    shared_key_hash: Field
    sender_public_key: Point

    def commitment(self) -> Point:
        return note_commitment(self.amount, self.shared_key_hash, self.token)


def sender_scalar(user_key: Field, nonce: int) -> Field:
    return Field(user_key) + nonce


def shared_key_hash(scalar: Field, public_key: Point) -> Field:
    return hash_fields(public_key.mul(scalar).x)


def note_commitment(amount, shared_key_hash: Field, token) -> Point:
    return pedersen_positive(amount, shared_key_hash, token)


def encrypt_note(
    scalar: Field, receiver_public_key: Point, amount, token
) -> tuple[EncryptedNote, Field]:
    key = shared_key_hash(scalar, receiver_public_key)
    note = EncryptedNote(
        sender_public_key=Point.generator().mul(scalar),
        encrypted_amount=encrypt(amount, key, Counter.AMOUNT),
        encrypted_token=encrypt(token, key, Counter.TOKEN),
    )
    return note, key


def decrypt_note(user_key: Field, note: EncryptedNote) -> Note:
    key = shared_key_hash(user_key, note.sender_public_key)
    return Note(
        amount=decrypt(note.encrypted_amount, key, Counter.AMOUNT).v,
        token=decrypt(note.encrypted_token, key, Counter.TOKEN).v,
        shared_key_hash=key,
        sender_public_key=note.sender_public_key,
    )


@dataclass(frozen=True)
class AbsorbableNotes:
    token: int
    notes: tuple[Note, ...]
    # cumulative amount of this token absorbed so far
    nullifier: int

    @property
    def total(self) -> int:
        return sum(note.amount for note in self.notes)

    @property
    def delta(self) -> int:
        return self.total - self.nullifier

    @property
    def count(self) -> int:
        return len(self.notes)

    def inner_opening(self) -> Opening:
        shared_key_hashes = sum((n.shared_key_hash for n in self.notes), Field(0))
        return Opening.of(self.total, shared_key_hashes, self.token * self.count)


@dataclass(frozen=True)
class NotesCommitments:
    """
    Commitments binding an absorb to the receiver's notes:

        inner = pedersen_positive(sum(amount), sum(shared_key_hash), token * count)
        outer = reference = pedersen_positive(pk.x, pk.y, 1)
        tot   = inner + outer + reference
    """

    inner: Point
    outer: Point
    tot: Point
    inner_opening: Opening
    outer_opening: Opening

    @classmethod
    def build(cls, public_key: Point, notes: AbsorbableNotes) -> NotesCommitments:
        inner_opening = notes.inner_opening()
        outer_opening = Opening.of(public_key.x, public_key.y, 1)
        inner = inner_opening.commit()
        outer = outer_opening.commit()
        return cls(
            inner=inner,
            outer=outer,
            tot=inner + outer + outer,
            inner_opening=inner_opening,
            outer_opening=outer_opening,
        )

    def verify(self) -> bool:
        return (
            self.inner == self.inner_opening.commit()
            and self.outer == self.outer_opening.commit()
            and self.tot == self.inner + self.outer + self.outer
        )


class NoteInbox:
    def __init__(self, ledger, keys):
        self.ledger = ledger
        self.keys = keys

    async def fetch(self) -> list[Note]:
        public_key = self.keys.public_key
        encrypted = await self.ledger.get_user_encrypted_notes(public_key)
        notes = [decrypt_note(self.keys.user_key, note) for note in encrypted]

        stack = await self.ledger.get_user_note_commitment_stack(public_key)
        recomputed = reduce(
            lambda acc, note: acc + note.commitment(), notes, Point.zero()
        )
        if recomputed != stack:
            raise ConsistencyError(
                f"decrypted {len(notes)} notes but they don't sum to the ledger's "
                "note commitment stack"
            )
        logger.debug(f"fetched {len(notes)} notes")
        return notes

    async def stack_root(self) -> Opening | None:
        """Opening of the note stack root the ledger folded into the accumulator."""
        stack = await self.ledger.get_user_note_commitment_stack(self.keys.public_key)
        return None if stack.is_zero() else Opening.of(*stack.xy, 1)

    async def nullifier(self, token: int, personal, nonce: int) -> int:
        """
        Cumulative amount of `token` absorbed up to `nonce`, recovered from the
        most recent operation on that token that published a nullifier.
        """
        for entry in reversed(personal.token_entries(token, nonce)):
            encrypted = await self.ledger.get_encrypted_nullifier(
                self.keys.nonce_commitment(entry.nonce)
            )
            if encrypted != 0:
                key = self.keys.encryption_key(entry.nonce)
                return decrypt(encrypted, key, Counter.NULLIFIER).v
        return 0

    async def absorbable(self, token: int, personal, nonce: int) -> AbsorbableNotes:
        notes = tuple(note for note in await self.fetch() if note.token == token)
        nullifier = await self.nullifier(token, personal, nonce)
        absorbable = AbsorbableNotes(token, notes, nullifier)
        if absorbable.delta <= 0:
            raise StateError(
                f"nothing to absorb for token {token:#x}: received {absorbable.total}, "
                f"already absorbed {nullifier}"
            )
        return absorbable
