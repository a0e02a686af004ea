"""
The main commitment accumulator.

Every operation adds `pedersen_positive(ref_x, ref_y, nonce_commitment)` to a
single ledger-wide commitment. To prove its next step an account splits the
current snapshot into its own previous contribution (inner) and everything
else (outer):

    inner = pedersen_positive(ref_x, ref_y, previous_nonce_commitment)
    outer = pedersen_positive(snapshot_opening - inner_opening)
    tot   = inner + outer

A send also folds the receiver's note stack root, (stack.x, stack.y, 1), into
the accumulator; an absorb takes its own root out of outer along with inner.

Outer is always rebuilt from its opening. Openings aggregate mod p while the
curve group has a different order, so `snapshot.tot - inner` is not a
commitment to anything the circuit can open once the sums wrap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shielded_ledger.cipher import encrypt_point, opens_to
from shielded_ledger.crypto import Field, Opening, Point, pedersen_positive
from shielded_ledger.errors import ConsistencyError
from shielded_ledger.ledger import SEED_OPENING

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccumulatorSnapshot:
    tot: Point
    opening: Opening


@dataclass(frozen=True)
class MainCommitments:
    tot: Point
    inner: Point
    outer: Point
    inner_point: tuple[Field, Field]
    outer_opening: Opening
    previous_nonce_commitment: Field

    def verify(self) -> bool:
        inner = pedersen_positive(*self.inner_point, self.previous_nonce_commitment)
        return (
            self.inner == inner
            and self.outer == self.outer_opening.commit()
            and self.tot == self.inner + self.outer
        )


class MainAccumulator:
    def __init__(self, ledger):
        self.ledger = ledger

    async def read(self) -> AccumulatorSnapshot:
        tot = await self.ledger.get_state_commitment()
        opening = await self.ledger.get_state_commitment_opening_values()
        return AccumulatorSnapshot(tot, opening)

    async def resolve_inner_point(
        self, keys, previous_nonce: int, personal
    ) -> tuple[Field, Field]:
        """
        Returns the encrypted personal commitment the account contributed at
        `previous_nonce`, checked against the locally reconstructed personal
        state. When the two disagree (the account switched tokens since, or
        the reference is corrupt) the pair is recomputed from the local state,
        which must then open under the account's user key hash.
        """
        key = keys.encryption_key(previous_nonce)
        stored = await self.ledger.get_personal_c_tot_reference(
            keys.nonce_commitment(previous_nonce)
        )
        if opens_to(stored, key, personal.tot):
            return tuple(stored)

        logger.info(
            f"personal reference at nonce {previous_nonce} doesn't match local state, recomputing"
        )
        if not personal.verify(keys.user_key_hash):
            raise ConsistencyError(
                f"local personal state for nonce {previous_nonce} matches neither the "
                "ledger reference nor its own opening"
            )
        return encrypt_point(personal.tot, key)

    def derive(
        self,
        snapshot: AccumulatorSnapshot,
        previous_nonce: int,
        inner_point: tuple[Field, Field],
        previous_nonce_commitment: Field,
        extra_openings=(),
    ) -> MainCommitments:
        inner_opening = Opening.of(*inner_point, previous_nonce_commitment)
        inner = inner_opening.commit()

        if previous_nonce == 0:
            outer_opening = SEED_OPENING
        else:
            outer_opening = snapshot.opening - inner_opening
            for extra in extra_openings:
                outer_opening = outer_opening - extra
        outer = outer_opening.commit()

        if logger.isEnabledFor(logging.DEBUG) and snapshot.tot - inner != outer:
            logger.debug("accumulator opening has wrapped; outer rebuilt from its opening")

        return MainCommitments(
            tot=inner + outer,
            inner=inner,
            outer=outer,
            inner_point=tuple(inner_point),
            outer_opening=outer_opening,
            previous_nonce_commitment=Field(previous_nonce_commitment),
        )
