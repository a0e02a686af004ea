from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from hashlib import sha256

from shielded_ledger.circuit import (
    EXPECTED_PUBLIC_INPUTS,
    CircuitKind,
    public_input_dict,
)
from shielded_ledger.crypto import Field, Opening, Point
from shielded_ledger.errors import ChainError
from shielded_ledger.notes import EncryptedNote
from shielded_ledger.prover import verify_mock_proof

logger = logging.getLogger(__name__)

# The accumulator is seeded with the opening (1, 1, 1) at deployment.
SEED_OPENING = Opening.of(1, 1, 1)


@dataclass(frozen=True)
class LedgerEvent:
    """What the ledger logged for the operation that used a nonce commitment."""

    kind: CircuitKind
    tx_hash: str
    # sends only
    receiver_public_key: Point | None = None


class LedgerClient(ABC):
    """
    The public ledger holding the main accumulator and per-nonce references.

    Implementations raise ChainError for failed reads and reverted writes.
    """

    @abstractmethod
    async def get_state_commitment(self) -> Point:
        pass

    @abstractmethod
    async def get_state_commitment_opening_values(self) -> Opening:
        pass

    @abstractmethod
    async def is_nonce_commitment_known(self, nonce_commitment: Field) -> bool:
        pass

    @abstractmethod
    async def get_balance_reference(self, nonce_commitment: Field) -> tuple[Field, Field]:
        """
        Returns the (amount, token) reference published at `nonce_commitment`:
        plaintext for an account's entry, encrypted otherwise, and (0, 0) when
        nothing was published.
        """
        pass

    @abstractmethod
    async def get_personal_c_tot_reference(
        self, nonce_commitment: Field
    ) -> tuple[Field, Field]:
        pass

    @abstractmethod
    async def get_encrypted_nullifier(self, nonce_commitment: Field) -> Field:
        pass

    @abstractmethod
    async def get_user_encrypted_notes(self, public_key: Point) -> list[EncryptedNote]:
        pass

    @abstractmethod
    async def get_user_note_commitment_stack(self, public_key: Point) -> Point:
        pass

    @abstractmethod
    async def get_event(self, nonce_commitment: Field) -> LedgerEvent | None:
        pass

    @abstractmethod
    async def submit(self, kind: CircuitKind, proof: bytes, public_inputs) -> str:
        """
        Submits a proof to the verifier for `kind` and returns the transaction hash.
        """
        pass

    async def init_commit(self, proof: bytes, public_inputs) -> str:
        return await self.submit(CircuitKind.ENTRY, proof, public_inputs)

    async def deposit(self, proof: bytes, public_inputs) -> str:
        return await self.submit(CircuitKind.DEPOSIT, proof, public_inputs)

    async def withdraw(self, proof: bytes, public_inputs) -> str:
        return await self.submit(CircuitKind.WITHDRAW, proof, public_inputs)

    async def send(self, proof: bytes, public_inputs) -> str:
        return await self.submit(CircuitKind.SEND, proof, public_inputs)

    async def absorb(self, proof: bytes, public_inputs) -> str:
        return await self.submit(CircuitKind.ABSORB, proof, public_inputs)


class InMemoryLedger(LedgerClient):
    """
    Synthetic ledger mirroring the contract's bookkeeping.

    The accumulator keeps the point sum and the opening sum side by side. The
    opening sum is reduced mod p while points add in a group of a different
    order, so the two only agree until the first wrap-around.
    """

    def __init__(self, verifier=verify_mock_proof):
        self.verifier = verifier
        self.state_commitment = SEED_OPENING.commit()
        self.opening = SEED_OPENING
        self.nonce_commitments: set[int] = set()
        self.balance_references: dict[int, tuple[Field, Field]] = {}
        self.personal_references: dict[int, tuple[Field, Field]] = {}
        self.encrypted_nullifiers: dict[int, Field] = {}
        self.notes: dict[tuple[int, int], list[EncryptedNote]] = defaultdict(list)
        self.note_stacks: dict[tuple[int, int], Point] = {}
        # tokens held by the contract
        self.vault: dict[int, int] = defaultdict(int)
        self.withdrawals: list[tuple[int, int, int]] = []
        self.events: dict[int, LedgerEvent] = {}

    async def get_state_commitment(self) -> Point:
        return self.state_commitment

    async def get_state_commitment_opening_values(self) -> Opening:
        return self.opening

    async def is_nonce_commitment_known(self, nonce_commitment) -> bool:
        return Field(nonce_commitment).v in self.nonce_commitments

    async def get_balance_reference(self, nonce_commitment) -> tuple[Field, Field]:
        return self.balance_references.get(
            Field(nonce_commitment).v, (Field(0), Field(0))
        )

    async def get_personal_c_tot_reference(self, nonce_commitment) -> tuple[Field, Field]:
        return self.personal_references.get(
            Field(nonce_commitment).v, (Field(0), Field(0))
        )

    async def get_encrypted_nullifier(self, nonce_commitment) -> Field:
        return self.encrypted_nullifiers.get(Field(nonce_commitment).v, Field(0))

    async def get_user_encrypted_notes(self, public_key: Point) -> list[EncryptedNote]:
        return list(self.notes.get(public_key.to_ints(), []))

    async def get_user_note_commitment_stack(self, public_key: Point) -> Point:
        return self.note_stacks.get(public_key.to_ints(), Point.zero())

    async def get_event(self, nonce_commitment) -> LedgerEvent | None:
        return self.events.get(Field(nonce_commitment).v)

    async def submit(self, kind: CircuitKind, proof: bytes, public_inputs) -> str:
        expected = EXPECTED_PUBLIC_INPUTS[kind]
        if len(public_inputs) != expected:
            raise ChainError(
                kind.value,
                f"verifier expects {expected} public inputs, got {len(public_inputs)}",
            )
        if not self.verifier(kind, proof, public_inputs):
            raise ChainError(kind.value, "proof verification reverted")

        values = public_input_dict(kind, public_inputs)
        nonce_commitment = values["nonce_commitment"]
        if nonce_commitment.v in self.nonce_commitments:
            raise ChainError(kind.value, "nonce commitment already used")
        if kind != CircuitKind.ENTRY:
            previous = values["previous_nonce_commitment"]
            if previous.v not in self.nonce_commitments:
                raise ChainError(kind.value, "unknown previous nonce commitment")
            # right after an entry the outer commitment is the seed, not a
            # split of the accumulator
            if self.events[previous.v].kind != CircuitKind.ENTRY:
                self._check_accumulator(kind, values)

        reference = (values["personal_ref_x"], values["personal_ref_y"])
        opening = Opening(*reference, nonce_commitment)
        new_inner = self._point(kind, values, "new_main_c_inner")
        if new_inner != opening.commit():
            raise ChainError(kind.value, "new inner commitment does not match its opening")
        folded = [opening]
        receiver_public_key = None

        match kind:
            case CircuitKind.ENTRY:
                self.vault[values["token_address"].v] += values["amount"].v
                balance_reference = (values["amount"], values["token_address"])
            case CircuitKind.DEPOSIT:
                self.vault[values["token_address"].v] += values["amount"].v
                balance_reference = (values["enc_balance"], values["enc_token"])
            case CircuitKind.WITHDRAW:
                token, amount = values["token_address"].v, values["amount"].v
                if self.vault[token] < amount:
                    raise ChainError(kind.value, "vault holds less than the withdrawal")
                self.vault[token] -= amount
                self.withdrawals.append((values["receiver_address"].v, token, amount))
                self.encrypted_nullifiers[nonce_commitment.v] = values["enc_nullifier"]
                balance_reference = (values["enc_balance"], values["enc_token"])
            case CircuitKind.SEND:
                receiver_public_key = self._point(kind, values, "receiver_public_key")
                receiver = receiver_public_key.to_ints()
                note = EncryptedNote(
                    sender_public_key=self._point(kind, values, "sender_public_key"),
                    encrypted_amount=values["enc_note_amount"],
                    encrypted_token=values["enc_note_token"],
                )
                stack = self.note_stacks.get(receiver, Point.zero()) + self._point(
                    kind, values, "note_commitment"
                )
                self.notes[receiver].append(note)
                self.note_stacks[receiver] = stack
                # the receiver's new stack root joins the accumulator
                folded.append(Opening.of(*stack.xy, 1))
                balance_reference = (values["enc_balance"], values["enc_token"])
            case CircuitKind.ABSORB:
                self.encrypted_nullifiers[nonce_commitment.v] = values["enc_nullifier"]
                balance_reference = (values["enc_balance"], values["enc_token"])

        self.nonce_commitments.add(nonce_commitment.v)
        self.balance_references[nonce_commitment.v] = balance_reference
        self.personal_references[nonce_commitment.v] = reference
        for contribution in folded:
            self.state_commitment = self.state_commitment + contribution.commit()
            self.opening = self.opening + contribution

        tx_hash = "0x" + sha256(proof + nonce_commitment.v.to_bytes(32, "big")).hexdigest()
        self.events[nonce_commitment.v] = LedgerEvent(kind, tx_hash, receiver_public_key)
        logger.info(f"{kind.value} accepted in {tx_hash[:10]}")
        return tx_hash

    def _check_accumulator(self, kind: CircuitKind, values: dict):
        """
        `main_c_tot` must split the current accumulator opening. An absorb
        splits it with the receiver's note stack root taken out.
        """
        opening = self.opening
        if kind == CircuitKind.ABSORB:
            receiver = self._point(kind, values, "public_key").to_ints()
            stack = self.note_stacks.get(receiver, Point.zero())
            if not stack.is_zero():
                opening = opening - Opening.of(*stack.xy, 1)
        if self._point(kind, values, "main_c_tot") not in opening.split_totals():
            raise ChainError(kind.value, "stale accumulator")

    @staticmethod
    def _point(kind: CircuitKind, values: dict, prefix: str) -> Point:
        try:
            return Point.from_xy(values[f"{prefix}_x"], values[f"{prefix}_y"])
        except ValueError as e:
            raise ChainError(kind.value, f"{prefix}: {e}") from None
