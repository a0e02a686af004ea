from unittest import IsolatedAsyncioTestCase

from shielded_ledger.cache import InMemoryAccountCache
from shielded_ledger.circuit import CircuitKind
from shielded_ledger.circuit_inputs import Absorb, Deposit
from shielded_ledger.config import AccountConfig, Config
from shielded_ledger.crypto import Opening
from shielded_ledger.errors import ChainError, ProofError, StaleProofError, StateError
from shielded_ledger.ledger import InMemoryLedger
from shielded_ledger.personal import reconstruct
from shielded_ledger.prover import MockProver, ProofResult

from shielded_ledger.test_common import (
    OTHER_TOKEN,
    RECEIVER_ADDRESS,
    TOKEN,
    mk_account,
)


class InterferingProver(MockProver):
    """Lets another account land an operation while the first one is proving."""

    def __init__(self, interference, times: int):
        super().__init__()
        self.interference = interference
        self.times = times

    async def generate_proof(self, kind, witness) -> ProofResult:
        if self.times > 0:
            self.times -= 1
            await self.interference()
        return await super().generate_proof(kind, witness)


class TruncatingProver(MockProver):
    async def generate_proof(self, kind, witness) -> ProofResult:
        result = await super().generate_proof(kind, witness)
        return ProofResult(result.proof, result.public_inputs[:-1])


class TestAccountLifecycle(IsolatedAsyncioTestCase):
    async def test_entry_deposit_withdraw(self):
        ledger = InMemoryLedger()
        account = mk_account(ledger)

        entry = await account.entry(TOKEN, 100)
        assert entry.nonce == 0
        assert entry.kind == CircuitKind.ENTRY
        assert len(entry.public_inputs) == 9

        deposit = await account.deposit(TOKEN, 50)
        assert deposit.nonce == 1
        assert len(deposit.public_inputs) == 16

        # a fresh session recovers everything from the ledger
        restored = mk_account(ledger)
        assert await restored.sync() == 2
        ukh = restored.keys.user_key_hash
        assert restored.personal.get(1, TOKEN).tot == reconstruct(150, TOKEN, ukh).tot
        assert restored.balance(TOKEN) == 150

        withdraw = await restored.withdraw(TOKEN, 150, RECEIVER_ADDRESS)
        assert withdraw.nonce == 2
        assert withdraw.balance == 0
        assert len(withdraw.public_inputs) == 28
        assert ledger.withdrawals == [(RECEIVER_ADDRESS, TOKEN, 150)]
        assert ledger.vault[TOKEN] == 0

        await restored.sync()
        assert restored.personal.get(2, TOKEN).inner_m == 0
        with self.assertRaises(StateError):
            await restored.withdraw(TOKEN, 1, RECEIVER_ADDRESS)

    async def test_second_token(self):
        ledger = InMemoryLedger()
        account = mk_account(ledger)
        await account.entry(TOKEN, 100)
        await account.deposit(OTHER_TOKEN, 30)
        await account.deposit(TOKEN, 5)

        await account.sync()
        assert account.balances() == {TOKEN: 105, OTHER_TOKEN: 30}

        await account.withdraw(OTHER_TOKEN, 30, RECEIVER_ADDRESS)
        await account.sync()
        assert account.balances() == {TOKEN: 105, OTHER_TOKEN: 0}

    async def test_cache_avoids_rescan(self):
        ledger = InMemoryLedger()
        cache = InMemoryAccountCache()
        account = mk_account(ledger, cache=cache)
        await account.entry(TOKEN, 100)
        await account.deposit(TOKEN, 1)

        cached = cache.load(account.zk_address)
        assert cached.current_nonce == 2
        assert [e.amount for e in cached.balance_entries] == [100, 101]

        result = await account.discovery.discover(cached)
        assert result.reads == 1

    async def test_cache_holds_no_user_key(self):
        ledger = InMemoryLedger()
        cache = InMemoryAccountCache()
        account = mk_account(ledger, cache=cache)
        await account.entry(TOKEN, 100)

        cached = cache.load(account.zk_address)
        secret = account.keys.user_key
        assert secret not in vars(cached).values()
        assert all(secret != e.amount and secret != e.token for e in cached.balance_entries)


class TestSendAbsorb(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.ledger = InMemoryLedger()
        self.alice = mk_account(self.ledger, seed=1)
        self.bob = mk_account(self.ledger, seed=2)
        await self.alice.entry(TOKEN, 100)
        await self.bob.entry(OTHER_TOKEN, 10)

    async def test_send_then_absorb(self):
        send = await self.alice.send(TOKEN, 40, self.bob.zk_address)
        assert send.balance == 60
        assert len(send.public_inputs) == 28

        notes = await self.bob.inbox.fetch()
        assert [(n.amount, n.token) for n in notes] == [(40, TOKEN)]

        absorb = await self.bob.absorb(TOKEN)
        assert absorb.balance == 40
        assert len(absorb.public_inputs) == 28
        await self.bob.sync()
        assert self.bob.balances() == {TOKEN: 40, OTHER_TOKEN: 10}

        # absorbed notes can't be absorbed twice
        with self.assertRaises(StateError):
            await self.bob.absorb(TOKEN)

        await self.alice.send(TOKEN, 15, self.bob.keys.public_key)
        absorb = await self.bob.absorb(TOKEN)
        assert absorb.balance == 55

        # the nullifier survives a withdrawal
        await self.bob.withdraw(TOKEN, 5, RECEIVER_ADDRESS)
        with self.assertRaises(StateError):
            await self.bob.absorb(TOKEN)

    async def test_send_folds_note_stack_root(self):
        before = self.ledger.opening
        await self.alice.send(TOKEN, 40, self.bob.zk_address)

        stack = await self.ledger.get_user_note_commitment_stack(self.bob.keys.public_key)
        nonce_commitment = self.alice.keys.nonce_commitment(1)
        reference = await self.ledger.get_personal_c_tot_reference(nonce_commitment)
        assert self.ledger.opening == (
            before + Opening(*reference, nonce_commitment) + Opening.of(*stack.xy, 1)
        )

    async def test_absorb_takes_note_stack_root_out_of_outer(self):
        # move bob past his entry so the absorb splits the live accumulator
        await self.bob.deposit(OTHER_TOKEN, 1)
        await self.alice.send(TOKEN, 40, self.bob.zk_address)

        await self.bob.sync()
        circuit_inputs = await self.bob.assembler.assemble(
            Absorb(TOKEN), self.bob.current_nonce, self.bob.personal
        )
        context = circuit_inputs.context
        stack = await self.ledger.get_user_note_commitment_stack(self.bob.keys.public_key)
        inner = Opening.of(
            *context.main.inner_point, self.bob.keys.nonce_commitment(context.previous_nonce)
        )
        assert context.main.outer_opening == (
            context.snapshot.opening - inner - Opening.of(*stack.xy, 1)
        )

        absorb = await self.bob.absorb(TOKEN)
        assert absorb.balance == 40

    async def test_send_more_than_balance(self):
        with self.assertRaises(StateError):
            await self.alice.send(TOKEN, 101, self.bob.zk_address)


class TestSubmission(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.ledger = InMemoryLedger()
        self.other = mk_account(self.ledger, seed=5)
        await self.other.entry(TOKEN, 1000)

    async def mk_funded(self, config: Config, prover):
        account = mk_account(self.ledger, seed=6, config=config, prover=prover)
        await account.entry(TOKEN, 100)
        # the staleness check only applies once the snapshot enters the proof
        await account.deposit(TOKEN, 1)
        return account

    async def test_stale_proof_regenerated(self):
        prover = InterferingProver(lambda: self.other.deposit(TOKEN, 1), times=0)
        account = await self.mk_funded(Config.default(), prover)

        prover.times = 1
        submission = await account.deposit(TOKEN, 10)
        assert submission.balance == 111
        assert prover.times == 0

    async def test_stale_proof_gives_up(self):
        config = Config(account=AccountConfig(stale_proof_retries=0))
        prover = InterferingProver(lambda: self.other.deposit(TOKEN, 1), times=0)
        account = await self.mk_funded(config, prover)

        prover.times = 1
        with self.assertRaises(StaleProofError):
            await account.deposit(TOKEN, 10)

        # nothing was submitted; the account can carry on
        await account.sync()
        assert account.balance(TOKEN) == 101

    async def test_ledger_rejects_stale_accumulator(self):
        account = await self.mk_funded(Config.default(), MockProver())
        circuit_inputs = await account.assembler.assemble(
            Deposit(TOKEN, 10), account.current_nonce, account.personal
        )
        result = await account.prover.prove(CircuitKind.DEPOSIT, circuit_inputs.inputs)

        await self.other.deposit(TOKEN, 1)
        with self.assertRaises(ChainError):
            await self.ledger.deposit(result.proof, result.public_inputs)

        submission = await account.deposit(TOKEN, 10)
        assert submission.balance == 111

    async def test_public_input_count_checked_before_submission(self):
        account = mk_account(self.ledger, seed=7, prover=TruncatingProver())
        with self.assertRaises(ProofError):
            await account.entry(TOKEN, 5)
        assert await account.sync() == 0
