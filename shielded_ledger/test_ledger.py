from unittest import IsolatedAsyncioTestCase

from shielded_ledger.circuit import CircuitKind
from shielded_ledger.crypto import Field, Opening
from shielded_ledger.errors import ChainError
from shielded_ledger.keys import UserKeys
from shielded_ledger.ledger import SEED_OPENING, InMemoryLedger
from shielded_ledger.prover import MockProver, mock_proof

from shielded_ledger.test_common import TOKEN


class TestInMemoryLedger(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.ledger = InMemoryLedger()
        self.keys = UserKeys(Field(8080))
        inputs = {
            "user_key": str(self.keys.user_key.v),
            "token_address": str(TOKEN),
            "amount": "100",
        }
        self.entry = await MockProver().prove(CircuitKind.ENTRY, inputs)

    async def test_entry_recorded(self):
        await self.ledger.init_commit(self.entry.proof, self.entry.public_inputs)

        nonce_commitment = self.keys.nonce_commitment(0)
        assert await self.ledger.is_nonce_commitment_known(nonce_commitment)
        assert await self.ledger.get_balance_reference(nonce_commitment) == (
            Field(100),
            Field(TOKEN),
        )
        assert self.ledger.vault[TOKEN] == 100

        opening = await self.ledger.get_state_commitment_opening_values()
        ref_x, ref_y = await self.ledger.get_personal_c_tot_reference(nonce_commitment)
        assert opening == SEED_OPENING + Opening(ref_x, ref_y, nonce_commitment)

    async def test_nonce_commitment_reuse_reverts(self):
        await self.ledger.init_commit(self.entry.proof, self.entry.public_inputs)
        with self.assertRaises(ChainError):
            await self.ledger.init_commit(self.entry.proof, self.entry.public_inputs)

    async def test_wrong_count_reverts(self):
        with self.assertRaises(ChainError):
            await self.ledger.deposit(self.entry.proof, self.entry.public_inputs)

    async def test_bad_proof_reverts(self):
        with self.assertRaises(ChainError):
            await self.ledger.init_commit(b"\x00" * 32, self.entry.public_inputs)

    async def test_tampered_inner_reverts(self):
        public_inputs = list(self.entry.public_inputs)
        # personal_ref_x no longer opens new_main_c_inner
        public_inputs[3] = public_inputs[3] + 1
        with self.assertRaises(ChainError):
            await self.ledger.init_commit(
                mock_proof(CircuitKind.ENTRY, public_inputs), public_inputs
            )

    async def test_empty_reads(self):
        assert await self.ledger.get_encrypted_nullifier(Field(5)) == 0
        assert await self.ledger.get_user_encrypted_notes(self.keys.public_key) == []
        stack = await self.ledger.get_user_note_commitment_stack(self.keys.public_key)
        assert stack.is_zero()
