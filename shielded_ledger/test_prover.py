import tempfile
from pathlib import Path
from unittest import IsolatedAsyncioTestCase
from unittest.mock import MagicMock, patch

import sh
import toml

from shielded_ledger.circuit import CircuitKind
from shielded_ledger.crypto import Field
from shielded_ledger.errors import ProofError
from shielded_ledger.prover import (
    MockProver,
    NoirProver,
    check_public_inputs,
    mock_proof,
    verify_mock_proof,
)

from shielded_ledger.test_common import TOKEN


class TestMockProver(IsolatedAsyncioTestCase):
    async def test_entry_proof(self):
        inputs = {"user_key": "5", "token_address": str(TOKEN), "amount": "100"}
        result = await MockProver().prove(CircuitKind.ENTRY, inputs)
        assert len(result.public_inputs) == 9
        assert verify_mock_proof(CircuitKind.ENTRY, result.proof, result.public_inputs)
        assert not verify_mock_proof(CircuitKind.DEPOSIT, result.proof, result.public_inputs)

    async def test_constraint_failure(self):
        inputs = {"user_key": "5", "token_address": "0", "amount": "100"}
        with self.assertRaises(ProofError):
            await MockProver().prove(CircuitKind.ENTRY, inputs)

    def test_public_input_count(self):
        check_public_inputs(CircuitKind.DEPOSIT, [0] * 16)
        with self.assertRaises(ProofError):
            check_public_inputs(CircuitKind.DEPOSIT, [0] * 15)

    def test_mock_proof_binds_inputs(self):
        assert mock_proof(CircuitKind.SEND, [1, 2]) != mock_proof(CircuitKind.SEND, [2, 1])


class TestNoirProver(IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.circuits_dir = Path(self.tmp.name)
        self.target = self.circuits_dir / "deposit" / "target"
        self.target.mkdir(parents=True)
        self.prover = NoirProver(self.circuits_dir)
        self.inputs = {"user_key": "5", "main_c_tot": ["1", "2"]}

    def tearDown(self):
        self.tmp.cleanup()

    @patch("shielded_ledger.prover.sh.Command")
    async def test_execute_writes_prover_toml(self, command):
        witness = await self.prover.execute(CircuitKind.DEPOSIT, self.inputs)

        package = self.circuits_dir / "deposit"
        assert toml.load(package / "Prover.toml") == self.inputs
        command.assert_called_with("nargo")
        command.return_value.assert_called_once_with(
            "execute", "witness", _cwd=str(package)
        )
        assert witness == self.target / "witness.gz"

    @patch("shielded_ledger.prover.sh.Command")
    async def test_generate_proof_reads_outputs(self, command):
        (self.target / "proof").write_bytes(b"proof-bytes")
        (self.target / "public_inputs").write_bytes(
            (7).to_bytes(32, "big") + (TOKEN).to_bytes(32, "big")
        )

        result = await self.prover.generate_proof(
            CircuitKind.DEPOSIT, self.target / "witness.gz"
        )

        command.assert_called_with("bb")
        args = command.return_value.call_args.args
        assert args[0] == "prove"
        assert args[args.index("-b") + 1] == str(self.target / "deposit.json")
        assert result.proof == b"proof-bytes"
        assert result.public_inputs == [Field(7), Field(TOKEN)]

    async def test_tool_failure_surfaces_stderr(self):
        failing = MagicMock(
            side_effect=sh.ErrorReturnCode_1(
                "nargo execute witness", b"", b"Failed constraint: insufficient balance"
            )
        )
        with patch("shielded_ledger.prover.sh.Command", return_value=failing):
            with self.assertRaises(ProofError) as ctx:
                await self.prover.execute(CircuitKind.DEPOSIT, self.inputs)
        assert "insufficient balance" in str(ctx.exception)

    async def test_missing_tool(self):
        with patch(
            "shielded_ledger.prover.sh.Command", side_effect=sh.CommandNotFound("nargo")
        ):
            with self.assertRaises(ProofError):
                await self.prover.execute(CircuitKind.DEPOSIT, self.inputs)

    async def test_missing_package(self):
        with self.assertRaises(ProofError):
            await self.prover.execute(CircuitKind.ABSORB, self.inputs)
