"""
Circuit ABI and a Python re-execution of the circuits.

The public-input layouts below are what the on-chain verifiers expect, in
order. `ReferenceCircuit` re-derives every public output from the private
inputs and enforces the same relations the Noir circuits do, so the mock
prover produces exactly what a real proof would expose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from shielded_ledger.cipher import Counter, encrypt, encrypt_point, opens_to
from shielded_ledger.crypto import Field, Opening, Point, pedersen_positive
from shielded_ledger.errors import ProofError
from shielded_ledger.keys import UserKeys
from shielded_ledger.notes import encrypt_note, note_commitment, sender_scalar
from shielded_ledger.personal import PersonalCommitmentState, reconstruct

logger = logging.getLogger(__name__)


class CircuitKind(Enum):
    ENTRY = "entry"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    SEND = "send"
    ABSORB = "absorb"


# Shared by every operation that moves an account from one nonce to the next.
TRANSITION = (
    "previous_nonce_commitment",
    "nonce_commitment",
    "main_c_tot_x",
    "main_c_tot_y",
    "main_c_inner_x",
    "main_c_inner_y",
    "main_c_outer_x",
    "main_c_outer_y",
    "new_main_c_inner_x",
    "new_main_c_inner_y",
    "enc_balance",
    "enc_token",
    "personal_ref_x",
    "personal_ref_y",
)

# Zero when the account submits its own proof.
RELAY_FEE = (
    "relay_fee_token_address",
    "relay_fee_amount",
    "fee_enc_balance",
    "fee_enc_token",
    "fee_personal_ref_x",
    "fee_personal_ref_y",
)

PUBLIC_INPUTS = {
    CircuitKind.ENTRY: (
        "token_address",
        "amount",
        "nonce_commitment",
        "personal_ref_x",
        "personal_ref_y",
        "new_main_c_inner_x",
        "new_main_c_inner_y",
        "public_key_x",
        "public_key_y",
    ),
    CircuitKind.DEPOSIT: ("token_address", "amount", *TRANSITION),
    CircuitKind.WITHDRAW: (
        "token_address",
        "amount",
        "receiver_address",
        "calldata_hash",
        *TRANSITION,
        "enc_nullifier",
        "public_key_x",
        "public_key_y",
        *RELAY_FEE,
        "relayer_address",
    ),
    CircuitKind.SEND: (
        *TRANSITION,
        "receiver_public_key_x",
        "receiver_public_key_y",
        "sender_public_key_x",
        "sender_public_key_y",
        "enc_note_amount",
        "enc_note_token",
        "note_commitment_x",
        "note_commitment_y",
        *RELAY_FEE,
    ),
    CircuitKind.ABSORB: (
        *TRANSITION,
        "public_key_x",
        "public_key_y",
        "enc_nullifier",
        "inner_notes_count",
        "notes_c_tot_x",
        "notes_c_tot_y",
        "notes_c_inner_x",
        "notes_c_inner_y",
        *RELAY_FEE,
    ),
}

EXPECTED_PUBLIC_INPUTS = {kind: len(names) for kind, names in PUBLIC_INPUTS.items()}


def public_input_dict(kind: CircuitKind, public_inputs) -> dict[str, Field]:
    names = PUBLIC_INPUTS[kind]
    if len(public_inputs) != len(names):
        raise ValueError(
            f"{kind.value} expects {len(names)} public inputs, got {len(public_inputs)}"
        )
    return {name: Field(value) for name, value in zip(names, public_inputs)}


def to_bytes32(value) -> str:
    return f"0x{Field(value).v:064x}"


def _scalar(inputs: dict, name: str) -> Field:
    try:
        return Field(int(inputs[name]))
    except KeyError:
        raise ProofError("input", f"missing input `{name}`") from None


def _values(inputs: dict, name: str, size: int) -> tuple[Field, ...]:
    try:
        values = inputs[name]
    except KeyError:
        raise ProofError("input", f"missing input `{name}`") from None
    if len(values) != size:
        raise ProofError("input", f"`{name}` must hold {size} elements")
    return tuple(Field(int(v)) for v in values)


def _point(inputs: dict, name: str) -> Point:
    x, y = _values(inputs, name, 2)
    try:
        return Point.from_xy(x, y)
    except ValueError as e:
        raise ProofError("input", f"`{name}`: {e}") from None


def _xy(prefix: str, point: Point) -> dict[str, Field]:
    return dict(zip((f"{prefix}_x", f"{prefix}_y"), point.xy))


@dataclass
class _Transition:
    keys: UserKeys
    token: Field
    previous_nonce: int
    personal: PersonalCommitmentState
    main_tot: Point
    main_inner: Point
    main_outer: Point

    @property
    def nonce(self) -> int:
        return self.previous_nonce + 1

    @property
    def balance(self) -> int:
        return self.personal.inner_m.v


class ReferenceCircuit:
    def execute(self, kind: CircuitKind, inputs: dict) -> dict[str, Field]:
        match kind:
            case CircuitKind.ENTRY:
                outputs = self._entry(inputs)
            case CircuitKind.DEPOSIT:
                outputs = self._deposit(inputs)
            case CircuitKind.WITHDRAW:
                outputs = self._withdraw(inputs)
            case CircuitKind.SEND:
                outputs = self._send(inputs)
            case CircuitKind.ABSORB:
                outputs = self._absorb(inputs)
        return {name: Field(outputs.get(name, 0)) for name in PUBLIC_INPUTS[kind]}

    @staticmethod
    def _require(kind: CircuitKind, condition: bool, message: str):
        if not condition:
            raise ProofError(kind.value, f"constraint failed: {message}")

    def _entry(self, inputs):
        kind = CircuitKind.ENTRY
        keys = UserKeys(_scalar(inputs, "user_key"))
        token = _scalar(inputs, "token_address")
        amount = _scalar(inputs, "amount")
        self._require(kind, token != 0, "token address is zero")
        self._require(kind, amount != 0, "amount is zero")

        nonce_commitment = keys.nonce_commitment(0)
        state = reconstruct(amount, token, keys.user_key_hash)
        ref_x, ref_y = encrypt_point(state.tot, keys.encryption_key(0))
        return {
            "token_address": token,
            "amount": amount,
            "nonce_commitment": nonce_commitment,
            "personal_ref_x": ref_x,
            "personal_ref_y": ref_y,
            **_xy("new_main_c_inner", pedersen_positive(ref_x, ref_y, nonce_commitment)),
            **_xy("public_key", keys.public_key),
        }

    def _transition(self, kind: CircuitKind, inputs) -> _Transition:
        keys = UserKeys(_scalar(inputs, "user_key"))
        token = _scalar(inputs, "token_address")
        previous_nonce = _scalar(inputs, "previous_nonce").v
        self._require(kind, token != 0, "token address is zero")

        personal = PersonalCommitmentState(
            tot=_point(inputs, "personal_c_tot"),
            inner=_point(inputs, "personal_c_inner"),
            outer=_point(inputs, "personal_c_outer"),
            inner_m=_scalar(inputs, "personal_c_inner_m"),
            outer_m=_scalar(inputs, "personal_c_outer_m"),
            outer_r=_scalar(inputs, "personal_c_outer_r"),
            first_use=_scalar(inputs, "personal_c_first_use") == 1,
        )
        self._require(kind, personal.outer_r == token, "personal outer is not bound to the token")
        self._require(
            kind, personal.verify(keys.user_key_hash), "personal commitment does not open"
        )

        previous_nonce_commitment = keys.nonce_commitment(previous_nonce)
        inner_point = _values(inputs, "main_c_inner_point", 2)
        self._require(
            kind,
            opens_to(inner_point, keys.encryption_key(previous_nonce), personal.tot),
            "main inner point does not decrypt to the personal commitment",
        )
        main_inner = _point(inputs, "main_c_inner")
        self._require(
            kind,
            main_inner == pedersen_positive(*inner_point, previous_nonce_commitment),
            "main inner commitment does not open",
        )
        main_outer = _point(inputs, "main_c_outer")
        outer_opening = Opening.of(*_values(inputs, "main_c_outer_point", 3))
        self._require(
            kind, main_outer == outer_opening.commit(), "main outer commitment does not open"
        )
        main_tot = _point(inputs, "main_c_tot")
        self._require(kind, main_tot == main_inner + main_outer, "main tot is not inner + outer")

        return _Transition(
            keys=keys,
            token=token,
            previous_nonce=previous_nonce,
            personal=personal,
            main_tot=main_tot,
            main_inner=main_inner,
            main_outer=main_outer,
        )

    def _next_state(self, t: _Transition, new_balance: int) -> dict:
        nonce_commitment = t.keys.nonce_commitment(t.nonce)
        key = t.keys.encryption_key(t.nonce)
        state = reconstruct(new_balance, t.token, t.keys.user_key_hash)
        ref_x, ref_y = encrypt_point(state.tot, key)
        return {
            "previous_nonce_commitment": t.keys.nonce_commitment(t.previous_nonce),
            "nonce_commitment": nonce_commitment,
            **_xy("main_c_tot", t.main_tot),
            **_xy("main_c_inner", t.main_inner),
            **_xy("main_c_outer", t.main_outer),
            **_xy("new_main_c_inner", pedersen_positive(ref_x, ref_y, nonce_commitment)),
            "enc_balance": encrypt(new_balance, key, Counter.AMOUNT),
            "enc_token": encrypt(t.token, key, Counter.TOKEN),
            "personal_ref_x": ref_x,
            "personal_ref_y": ref_y,
        }

    def _spend(self, kind: CircuitKind, t: _Transition, amount: Field) -> int:
        self._require(kind, amount != 0, "amount is zero")
        self._require(kind, amount.v <= t.balance, "insufficient balance")
        return t.balance - amount.v

    def _deposit(self, inputs):
        kind = CircuitKind.DEPOSIT
        t = self._transition(kind, inputs)
        amount = _scalar(inputs, "amount")
        self._require(kind, amount != 0, "amount is zero")
        return {
            "token_address": t.token,
            "amount": amount,
            **self._next_state(t, t.balance + amount.v),
        }

    def _withdraw(self, inputs):
        kind = CircuitKind.WITHDRAW
        t = self._transition(kind, inputs)
        amount = _scalar(inputs, "amount")
        receiver = _scalar(inputs, "receiver_address")
        self._require(kind, receiver != 0, "receiver address is zero")
        new_balance = self._spend(kind, t, amount)
        nullifier = _scalar(inputs, "nullifier")
        return {
            "token_address": t.token,
            "amount": amount,
            "receiver_address": receiver,
            "calldata_hash": _scalar(inputs, "calldata_hash"),
            **self._next_state(t, new_balance),
            "enc_nullifier": encrypt(
                nullifier, t.keys.encryption_key(t.nonce), Counter.NULLIFIER
            ),
            **_xy("public_key", t.keys.public_key),
        }

    def _send(self, inputs):
        kind = CircuitKind.SEND
        t = self._transition(kind, inputs)
        amount = _scalar(inputs, "amount")
        receiver = _point(inputs, "receiver_public_key")
        self._require(kind, not receiver.is_zero(), "receiver public key is the identity")
        new_balance = self._spend(kind, t, amount)

        note, shared_key_hash = encrypt_note(
            sender_scalar(t.keys.user_key, t.nonce), receiver, amount, t.token
        )
        return {
            **self._next_state(t, new_balance),
            **_xy("receiver_public_key", receiver),
            **_xy("sender_public_key", note.sender_public_key),
            "enc_note_amount": note.encrypted_amount,
            "enc_note_token": note.encrypted_token,
            **_xy("note_commitment", note_commitment(amount, shared_key_hash, t.token)),
        }

    def _absorb(self, inputs):
        kind = CircuitKind.ABSORB
        t = self._transition(kind, inputs)
        public_key = t.keys.public_key
        nullifier = _scalar(inputs, "nullifier")
        count = _scalar(inputs, "inner_notes_count")
        total, shared_key_hashes = _values(inputs, "notes_c_inner_point", 2)

        notes_inner = _point(inputs, "notes_c_inner")
        self._require(
            kind,
            notes_inner == pedersen_positive(total, shared_key_hashes, t.token * count),
            "notes inner commitment does not open",
        )
        outer_opening = _values(inputs, "notes_c_outer_point", 3)
        self._require(
            kind,
            outer_opening == (*public_key.xy, Field(1)),
            "notes outer commitment is not bound to the receiver",
        )
        notes_outer = _point(inputs, "notes_c_outer")
        self._require(
            kind,
            notes_outer == pedersen_positive(*outer_opening),
            "notes outer commitment does not open",
        )
        notes_tot = _point(inputs, "notes_c_tot")
        self._require(
            kind,
            notes_tot == notes_inner + notes_outer + notes_outer,
            "notes tot is not inner + outer + reference",
        )
        self._require(kind, total.v > nullifier.v, "nothing left to absorb")

        delta = total.v - nullifier.v
        return {
            **self._next_state(t, t.balance + delta),
            **_xy("public_key", public_key),
            "enc_nullifier": encrypt(
                total, t.keys.encryption_key(t.nonce), Counter.NULLIFIER
            ),
            "inner_notes_count": count,
            **_xy("notes_c_tot", notes_tot),
            **_xy("notes_c_inner", notes_inner),
        }
