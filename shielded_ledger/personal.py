"""
Personal commitment state: the per-(nonce, token) commitment to a user's balance.

    inner = non_hiding(H(balance, ukh), H(token, ukh))
    outer = non_hiding(0, token)
    tot   = inner + outer [+ non_hiding(token, ukh) the first time a token is used]

The state for a nonce is always rebuilt from the balance history recovered by
nonce discovery; it is never mutated in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shielded_ledger.crypto import Field, Point, hash_fields, pedersen_non_hiding
from shielded_ledger.errors import StateError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceEntry:
    token: int
    amount: int
    nonce: int


@dataclass(frozen=True)
class PersonalCommitmentState:
    tot: Point
    inner: Point
    outer: Point
    inner_m: Field
    outer_m: Field
    outer_r: Field
    first_use: bool

    def initializer(self, user_key_hash: Field) -> Point:
        return pedersen_non_hiding(self.outer_r, user_key_hash)

    def verify(self, user_key_hash: Field) -> bool:
        inner = pedersen_non_hiding(
            hash_fields(self.inner_m, user_key_hash),
            hash_fields(self.outer_r, user_key_hash),
        )
        outer = pedersen_non_hiding(self.outer_m, self.outer_r)
        tot = inner + outer
        if self.first_use:
            tot = tot + self.initializer(user_key_hash)
        return inner == self.inner and outer == self.outer and tot == self.tot


def reconstruct(
    amount, token, user_key_hash: Field, first_use: bool = False
) -> PersonalCommitmentState:
    inner = pedersen_non_hiding(
        hash_fields(amount, user_key_hash), hash_fields(token, user_key_hash)
    )
    outer = pedersen_non_hiding(0, token)
    tot = inner + outer
    if first_use:
        tot = tot + pedersen_non_hiding(token, user_key_hash)
    return PersonalCommitmentState(
        tot=tot,
        inner=inner,
        outer=outer,
        inner_m=Field(amount),
        outer_m=Field(0),
        outer_r=Field(token),
        first_use=first_use,
    )


class PersonalStateManager:
    def __init__(self, user_key_hash: Field, entries=()):
        self.user_key_hash = user_key_hash
        self.entries: list[BalanceEntry] = []
        self._states: dict[tuple[int, int], PersonalCommitmentState] = {}
        self.add_entries(entries)

    def add_entries(self, entries):
        for entry in entries:
            self.entries = [e for e in self.entries if e.nonce != entry.nonce]
            self.entries.append(entry)
            # a new entry may shadow reconstructions cached for later nonces
            self._states = {
                k: v for k, v in self._states.items() if k[0] < entry.nonce
            }
        self.entries.sort(key=lambda e: e.nonce)

    def latest_entry(self, token: int, nonce: int) -> BalanceEntry | None:
        if nonce < 0:
            raise StateError(f"nonce {nonce} is negative")
        matching = [e for e in self.entries if e.token == token and e.nonce <= nonce]
        return matching[-1] if matching else None

    def token_entries(self, token: int, nonce: int) -> list[BalanceEntry]:
        return [e for e in self.entries if e.token == token and e.nonce <= nonce]

    def balance(self, token: int, nonce: int) -> int:
        entry = self.latest_entry(token, nonce)
        return 0 if entry is None else entry.amount

    def get(self, nonce: int, token: int) -> PersonalCommitmentState:
        key = (nonce, token)
        if key not in self._states:
            entry = self.latest_entry(token, nonce)
            if entry is None:
                logger.debug(f"token {token:#x} unused up to nonce {nonce}")
                state = reconstruct(0, token, self.user_key_hash, first_use=True)
            else:
                state = reconstruct(entry.amount, token, self.user_key_hash)
            self._states[key] = state
        return self._states[key]

    def put(self, nonce: int, token: int, state: PersonalCommitmentState):
        self._states[(nonce, token)] = state
