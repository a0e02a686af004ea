"""
Assembles the private inputs each circuit is proven over.

An operation is one of Entry, Deposit, Withdraw, Send or Absorb. Every kind
other than Entry moves the account from nonce N-1 to N through the same
transition context (personal state at N-1, accumulator split); the variants
only add their own fields and balance rule.

Inputs are an ordered dict of decimal strings (lists for points and
openings), the format nargo reads from Prover.toml.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar

from shielded_ledger.accumulator import (
    AccumulatorSnapshot,
    MainAccumulator,
    MainCommitments,
)
from shielded_ledger.cipher import opens_to
from shielded_ledger.circuit import CircuitKind
from shielded_ledger.crypto import Field, Point
from shielded_ledger.errors import ConsistencyError, InputError, StateError
from shielded_ledger.keys import decode_zk_address
from shielded_ledger.notes import AbsorbableNotes, NoteInbox, NotesCommitments
from shielded_ledger.personal import PersonalCommitmentState, PersonalStateManager

logger = logging.getLogger(__name__)

ADDRESS_BITS = 160
MAX_AMOUNT = 2**128


def parse_address(value, what: str = "address") -> int:
    if value is None:
        raise InputError(f"{what} is required")
    if isinstance(value, str):
        text = value.strip().lower().removeprefix("0x")
        if len(text) != 40:
            raise InputError(f"{what} {value!r} must be 20 bytes of hex")
        try:
            value = int(text, 16)
        except ValueError:
            raise InputError(f"{what} {value!r} is not hex") from None
    if isinstance(value, bool) or not isinstance(value, int):
        raise InputError(f"{what} must be an int or hex string, got {type(value).__name__}")
    if not 0 < value < 2**ADDRESS_BITS:
        raise InputError(f"{what} {value:#x} is out of range")
    return value


def parse_amount(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InputError(f"amount must be an int, got {type(value).__name__}")
    if not 0 < value < MAX_AMOUNT:
        raise InputError(f"amount {value} must be positive and below 2^128")
    return value


def parse_public_key(value) -> Point:
    if isinstance(value, Point):
        if value.is_zero():
            raise InputError("receiver public key is the identity")
        return value
    if isinstance(value, str):
        return decode_zk_address(value)
    raise InputError(f"receiver must be a zk address or a point, got {type(value).__name__}")


@dataclass(frozen=True)
class Entry:
    kind: ClassVar[CircuitKind] = CircuitKind.ENTRY
    token: int
    amount: int

    def __post_init__(self):
        object.__setattr__(self, "token", parse_address(self.token, "token address"))
        object.__setattr__(self, "amount", parse_amount(self.amount))


@dataclass(frozen=True)
class Deposit:
    kind: ClassVar[CircuitKind] = CircuitKind.DEPOSIT
    token: int
    amount: int

    def __post_init__(self):
        object.__setattr__(self, "token", parse_address(self.token, "token address"))
        object.__setattr__(self, "amount", parse_amount(self.amount))


@dataclass(frozen=True)
class Withdraw:
    kind: ClassVar[CircuitKind] = CircuitKind.WITHDRAW
    token: int
    amount: int
    receiver_address: int
    calldata_hash: int = 0

    def __post_init__(self):
        object.__setattr__(self, "token", parse_address(self.token, "token address"))
        object.__setattr__(self, "amount", parse_amount(self.amount))
        object.__setattr__(
            self, "receiver_address", parse_address(self.receiver_address, "receiver address")
        )


@dataclass(frozen=True)
class Send:
    kind: ClassVar[CircuitKind] = CircuitKind.SEND
    token: int
    amount: int
    receiver: Point

    def __post_init__(self):
        object.__setattr__(self, "token", parse_address(self.token, "token address"))
        object.__setattr__(self, "amount", parse_amount(self.amount))
        object.__setattr__(self, "receiver", parse_public_key(self.receiver))


@dataclass(frozen=True)
class Absorb:
    kind: ClassVar[CircuitKind] = CircuitKind.ABSORB
    token: int

    def __post_init__(self):
        object.__setattr__(self, "token", parse_address(self.token, "token address"))


Operation = Entry | Deposit | Withdraw | Send | Absorb


@dataclass(frozen=True)
class TransitionContext:
    previous_nonce: int
    personal: PersonalCommitmentState
    snapshot: AccumulatorSnapshot
    main: MainCommitments
    previous_balance: int
    new_balance: int
    # cumulative absorbed amount carried by withdraw and absorb
    nullifier: int = 0
    notes: AbsorbableNotes | None = None
    notes_commitments: NotesCommitments | None = None

    @property
    def nonce(self) -> int:
        return self.previous_nonce + 1


@dataclass(frozen=True)
class CircuitInputs:
    operation: Operation
    nonce: int
    new_balance: int
    inputs: dict
    # None for entries, which don't consume the accumulator
    context: TransitionContext | None = None

    @property
    def kind(self) -> CircuitKind:
        return self.operation.kind


def _dec(value) -> str:
    return str(Field(value).v)


def _point(point: Point) -> list[str]:
    return [_dec(v) for v in point.xy]


class CircuitInputAssembler:
    def __init__(self, keys, accumulator: MainAccumulator, inbox: NoteInbox):
        self.keys = keys
        self.accumulator = accumulator
        self.inbox = inbox

    async def assemble(
        self, operation: Operation, current_nonce: int, personal: PersonalStateManager
    ) -> CircuitInputs:
        if isinstance(operation, Entry):
            if current_nonce != 0:
                raise StateError(
                    f"account already initialized, current nonce is {current_nonce}"
                )
            inputs = {
                "user_key": _dec(self.keys.user_key),
                "token_address": _dec(operation.token),
                "amount": _dec(operation.amount),
            }
            return CircuitInputs(operation, 0, operation.amount, inputs)

        if current_nonce == 0:
            raise StateError("account has no entry deposit yet")

        context = await self.context(operation, current_nonce - 1, personal)
        inputs = self._transition_inputs(operation.token, context)
        inputs.update(self._operation_inputs(operation, context))
        logger.debug(f"assembled {operation.kind.value} inputs for nonce {context.nonce}")
        return CircuitInputs(operation, context.nonce, context.new_balance, inputs, context)

    async def context(
        self, operation: Operation, previous_nonce: int, personal: PersonalStateManager
    ) -> TransitionContext:
        token = operation.token
        state = personal.get(previous_nonce, token)
        balance = state.inner_m.v
        nullifier = 0
        notes = None
        notes_commitments = None
        extra_openings = ()

        match operation:
            case Deposit(amount=amount):
                new_balance = balance + amount
            case Withdraw(amount=amount) | Send(amount=amount):
                if amount > balance:
                    raise StateError(
                        f"insufficient balance: {amount} requested, {balance} available "
                        f"for token {token:#x}"
                    )
                new_balance = balance - amount
                if isinstance(operation, Withdraw):
                    nullifier = await self.inbox.nullifier(token, personal, previous_nonce)
            case Absorb():
                notes = await self.inbox.absorbable(token, personal, previous_nonce)
                nullifier = notes.nullifier
                notes_commitments = NotesCommitments.build(self.keys.public_key, notes)
                new_balance = balance + notes.delta
                root = await self.inbox.stack_root()
                if root is not None:
                    extra_openings = (root,)
            case _:
                raise InputError(f"unsupported operation {operation!r}")

        snapshot = await self.accumulator.read()
        inner_point = await self.accumulator.resolve_inner_point(
            self.keys, previous_nonce, state
        )
        main = self.accumulator.derive(
            snapshot,
            previous_nonce,
            inner_point,
            self.keys.nonce_commitment(previous_nonce),
            extra_openings=extra_openings,
        )
        return TransitionContext(
            previous_nonce=previous_nonce,
            personal=state,
            snapshot=snapshot,
            main=main,
            previous_balance=balance,
            new_balance=new_balance,
            nullifier=nullifier,
            notes=notes,
            notes_commitments=notes_commitments,
        )

    def verify(self, circuit_inputs: CircuitInputs):
        """
        Rebuilds every commitment in the inputs from its opening before any
        proving time is spent. Raises ConsistencyError on the first mismatch.
        """
        context = circuit_inputs.context
        if context is None:
            return

        if not context.personal.verify(self.keys.user_key_hash):
            raise ConsistencyError(
                f"personal commitment at nonce {context.previous_nonce} does not open"
            )
        key = self.keys.encryption_key(context.previous_nonce)
        if not opens_to(context.main.inner_point, key, context.personal.tot):
            raise ConsistencyError("main inner point does not decrypt to the personal commitment")
        if not context.main.verify():
            raise ConsistencyError("main commitments do not open")
        if context.notes_commitments is not None and not context.notes_commitments.verify():
            raise ConsistencyError("notes commitments do not open")

    def _transition_inputs(self, token: int, context: TransitionContext) -> dict:
        personal = context.personal
        main = context.main
        return {
            "user_key": _dec(self.keys.user_key),
            "token_address": _dec(token),
            "previous_nonce": _dec(context.previous_nonce),
            "main_c_tot": _point(main.tot),
            "main_c_inner": _point(main.inner),
            "main_c_outer": _point(main.outer),
            "main_c_inner_point": [_dec(v) for v in main.inner_point],
            "main_c_outer_point": [_dec(v) for v in main.outer_opening.to_ints()],
            "personal_c_tot": _point(personal.tot),
            "personal_c_inner": _point(personal.inner),
            "personal_c_outer": _point(personal.outer),
            "personal_c_inner_m": _dec(personal.inner_m),
            "personal_c_outer_m": _dec(personal.outer_m),
            "personal_c_outer_r": _dec(personal.outer_r),
            "personal_c_first_use": _dec(int(personal.first_use)),
        }

    def _operation_inputs(self, operation: Operation, context: TransitionContext) -> dict:
        match operation:
            case Deposit():
                return {"amount": _dec(operation.amount)}
            case Withdraw():
                return {
                    "amount": _dec(operation.amount),
                    "receiver_address": _dec(operation.receiver_address),
                    "calldata_hash": _dec(operation.calldata_hash),
                    "nullifier": _dec(context.nullifier),
                }
            case Send():
                return {
                    "amount": _dec(operation.amount),
                    "receiver_public_key": _point(operation.receiver),
                }
            case Absorb():
                notes = context.notes
                commitments = context.notes_commitments
                return {
                    "nullifier": _dec(notes.nullifier),
                    "inner_notes_count": _dec(notes.count),
                    "notes_c_inner_point": [
                        _dec(v) for v in commitments.inner_opening.to_ints()[:2]
                    ],
                    "notes_c_inner": _point(commitments.inner),
                    "notes_c_outer": _point(commitments.outer),
                    "notes_c_outer_point": [
                        _dec(v) for v in commitments.outer_opening.to_ints()
                    ],
                    "notes_c_tot": _point(commitments.tot),
                }
