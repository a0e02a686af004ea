from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from shielded_ledger.accumulator import MainAccumulator
from shielded_ledger.cache import AccountCache, CachedAccount
from shielded_ledger.circuit import CircuitKind
from shielded_ledger.circuit_inputs import (
    Absorb,
    CircuitInputAssembler,
    CircuitInputs,
    Deposit,
    Entry,
    Operation,
    Send,
    Withdraw,
)
from shielded_ledger.config import Config
from shielded_ledger.crypto import Field
from shielded_ledger.discovery import NonceDiscovery
from shielded_ledger.errors import StaleProofError, StateError
from shielded_ledger.history import HistoryEntry, TransactionHistory
from shielded_ledger.keys import UserKeys
from shielded_ledger.ledger import LedgerClient
from shielded_ledger.notes import NoteInbox
from shielded_ledger.personal import BalanceEntry, PersonalStateManager
from shielded_ledger.prover import Prover, check_public_inputs

logger = logging.getLogger(__name__)


@dataclass
class Submission:
    kind: CircuitKind
    nonce: int
    token: int
    balance: int
    tx_hash: str
    public_inputs: list[Field]


class ShieldedAccount:
    def __init__(
        self,
        keys: UserKeys,
        ledger: LedgerClient,
        prover: Prover,
        config: Config | None = None,
        cache: AccountCache | None = None,
    ):
        self.keys = keys
        self.ledger = ledger
        self.prover = prover
        self.config = config or Config.default()
        self.cache = cache

        self.discovery = NonceDiscovery(ledger, keys, self.config.discovery.max_nonce)
        self.accumulator = MainAccumulator(ledger)
        self.inbox = NoteInbox(ledger, keys)
        self.assembler = CircuitInputAssembler(keys, self.accumulator, self.inbox)
        self.transactions = TransactionHistory(ledger, keys)
        self.personal = PersonalStateManager(keys.user_key_hash)
        self.current_nonce: int | None = None

    @classmethod
    def from_signature(cls, signature, ledger, prover, config=None, cache=None):
        return cls(UserKeys.from_signature(signature), ledger, prover, config, cache)

    @property
    def zk_address(self) -> str:
        return self.keys.zk_address

    async def sync(self) -> int:
        cached = self.cache.load(self.zk_address) if self.cache is not None else None
        result = await self.discovery.discover(cached)
        self.personal = PersonalStateManager(self.keys.user_key_hash, result.balance_entries)
        self.current_nonce = result.current_nonce
        self._save_cache()
        return self.current_nonce

    def balance(self, token: int) -> int:
        if self.current_nonce is None:
            raise StateError("account has not been synced")
        if self.current_nonce == 0:
            return 0
        return self.personal.balance(token, self.current_nonce - 1)

    def balances(self) -> dict[int, int]:
        tokens = {entry.token for entry in self.personal.entries}
        return {token: self.balance(token) for token in sorted(tokens)}

    async def history(self) -> list[HistoryEntry]:
        await self.sync()
        return await self.transactions.reconstruct(self.current_nonce)

    async def entry(self, token, amount) -> Submission:
        return await self.run(Entry(token, amount))

    async def deposit(self, token, amount) -> Submission:
        return await self.run(Deposit(token, amount))

    async def withdraw(self, token, amount, receiver_address, calldata_hash: int = 0) -> Submission:
        return await self.run(Withdraw(token, amount, receiver_address, calldata_hash))

    async def send(self, token, amount, receiver) -> Submission:
        return await self.run(Send(token, amount, receiver))

    async def absorb(self, token) -> Submission:
        return await self.run(Absorb(token))

    async def run(self, operation: Operation) -> Submission:
        """
        Discovers, assembles, verifies, proves and submits `operation`.

        A proof built against an accumulator snapshot that has since moved is
        discarded and rebuilt; ledger reverts are surfaced as they are.
        """
        attempts = self.config.account.stale_proof_retries + 1
        for attempt in range(1, attempts + 1):
            await self.sync()
            circuit_inputs = await self.assembler.assemble(
                operation, self.current_nonce, self.personal
            )
            self.assembler.verify(circuit_inputs)

            kind = operation.kind
            logger.info(f"proving {kind.value} at nonce {circuit_inputs.nonce}")
            result = await self.prover.prove(kind, circuit_inputs.inputs)
            check_public_inputs(kind, result.public_inputs)

            try:
                await self._check_fresh(circuit_inputs)
            except StaleProofError as e:
                if attempt == attempts:
                    raise
                logger.warning(f"discarding stale {kind.value} proof ({attempt}/{attempts}): {e}")
                continue

            tx_hash = await self.ledger.submit(kind, result.proof, result.public_inputs)
            self._record(circuit_inputs)
            return Submission(
                kind=kind,
                nonce=circuit_inputs.nonce,
                token=operation.token,
                balance=circuit_inputs.new_balance,
                tx_hash=tx_hash,
                public_inputs=result.public_inputs,
            )

    async def _check_fresh(self, circuit_inputs: CircuitInputs):
        context = circuit_inputs.context
        # from nonce 0 the outer commitment is the fixed seed, so the
        # snapshot doesn't enter the proof
        if context is None or context.previous_nonce == 0:
            return
        snapshot = await self.accumulator.read()
        if snapshot.opening != context.snapshot.opening:
            raise StaleProofError(
                context.snapshot.opening.to_ints(), snapshot.opening.to_ints()
            )

    def _record(self, circuit_inputs: CircuitInputs):
        entry = BalanceEntry(
            token=circuit_inputs.operation.token,
            amount=circuit_inputs.new_balance,
            nonce=circuit_inputs.nonce,
        )
        self.personal.add_entries([entry])
        self.current_nonce = circuit_inputs.nonce + 1
        self._save_cache()

    def _save_cache(self):
        if self.cache is None:
            return
        self.cache.save(
            CachedAccount(
                zk_address=self.zk_address,
                current_nonce=self.current_nonce,
                balance_entries=list(self.personal.entries),
                last_updated=time.time(),
            )
        )
