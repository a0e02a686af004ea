"""
Proving backends.

`NoirProver` drives compiled Noir circuit packages. The assumptions:
- each circuit is a nargo package at `<circuits_dir>/<kind>/` whose package
  name is the circuit kind (`entry`, `deposit`, ...)
- `nargo` and `bb` are on the PATH (or configured)

`MockProver` runs the Python reference circuit instead and emits a digest in
place of a SNARK, which the in-memory ledger accepts.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path

import portalocker
import sh
import toml

from shielded_ledger.circuit import (
    EXPECTED_PUBLIC_INPUTS,
    PUBLIC_INPUTS,
    CircuitKind,
    ReferenceCircuit,
)
from shielded_ledger.crypto import Field
from shielded_ledger.errors import ProofError

logger = logging.getLogger(__name__)

WITNESS_NAME = "witness"


@dataclass
class ProofResult:
    proof: bytes
    public_inputs: list[Field]


def check_public_inputs(kind: CircuitKind, public_inputs):
    expected = EXPECTED_PUBLIC_INPUTS[kind]
    if len(public_inputs) != expected:
        raise ProofError(
            kind.value,
            f"prover returned {len(public_inputs)} public inputs, the verifier expects {expected}",
        )


class Prover(ABC):
    @abstractmethod
    async def execute(self, kind: CircuitKind, inputs: dict):
        """
        Solves the circuit for `inputs` and returns the witness.
        Raises ProofError if any constraint fails.
        """
        pass

    @abstractmethod
    async def generate_proof(self, kind: CircuitKind, witness) -> ProofResult:
        pass

    async def prove(self, kind: CircuitKind, inputs: dict) -> ProofResult:
        witness = await self.execute(kind, inputs)
        return await self.generate_proof(kind, witness)


def mock_proof(kind: CircuitKind, public_inputs) -> bytes:
    h = sha256(kind.value.encode())
    for value in public_inputs:
        h.update(Field(value).v.to_bytes(32, "big"))
    return h.digest()


def verify_mock_proof(kind: CircuitKind, proof: bytes, public_inputs) -> bool:
    return proof == mock_proof(kind, public_inputs)


class MockProver(Prover):
    def __init__(self, circuit: ReferenceCircuit | None = None):
        self.circuit = circuit or ReferenceCircuit()

    async def execute(self, kind: CircuitKind, inputs: dict) -> dict[str, Field]:
        return self.circuit.execute(kind, inputs)

    async def generate_proof(self, kind: CircuitKind, witness) -> ProofResult:
        public_inputs = [witness[name] for name in PUBLIC_INPUTS[kind]]
        return ProofResult(mock_proof(kind, public_inputs), public_inputs)


class NoirProver(Prover):
    def __init__(self, circuits_dir: str | Path, nargo: str = "nargo", bb: str = "bb"):
        self.circuits_dir = Path(circuits_dir)
        self.nargo = nargo
        self.bb = bb

    @property
    def lock_file(self) -> Path:
        return self.circuits_dir / ".prover.lock"

    def package_dir(self, kind: CircuitKind) -> Path:
        return self.circuits_dir / kind.value

    async def execute(self, kind: CircuitKind, inputs: dict) -> Path:
        return await asyncio.to_thread(self._execute, kind, inputs)

    async def generate_proof(self, kind: CircuitKind, witness: Path) -> ProofResult:
        return await asyncio.to_thread(self._generate_proof, kind, witness)

    def _execute(self, kind: CircuitKind, inputs: dict) -> Path:
        package = self.package_dir(kind)
        if not package.is_dir():
            raise ProofError(kind.value, f"no circuit package at {package}")

        with portalocker.TemporaryFileLock(self.lock_file):
            with open(package / "Prover.toml", "w") as prover_f:
                toml.dump(inputs, prover_f)
            self._run(kind, self.nargo, "execute", WITNESS_NAME, _cwd=str(package))

        logger.info(f"solved {kind.value} witness")
        return package / "target" / f"{WITNESS_NAME}.gz"

    def _generate_proof(self, kind: CircuitKind, witness: Path) -> ProofResult:
        package = self.package_dir(kind)
        target = package / "target"

        with portalocker.TemporaryFileLock(self.lock_file):
            self._run(
                kind,
                self.bb,
                "prove",
                "-b",
                str(target / f"{kind.value}.json"),
                "-w",
                str(witness),
                "-o",
                str(target),
                _cwd=str(package),
            )
            proof = (target / "proof").read_bytes()
            raw = (target / "public_inputs").read_bytes()

        public_inputs = [
            Field(int.from_bytes(raw[i : i + 32], "big")) for i in range(0, len(raw), 32)
        ]
        logger.info(f"proved {kind.value} with {len(public_inputs)} public inputs")
        return ProofResult(proof, public_inputs)

    @staticmethod
    def _run(kind: CircuitKind, program: str, *args, **kwargs):
        try:
            command = sh.Command(program)
        except sh.CommandNotFound:
            raise ProofError(kind.value, f"`{program}` is not installed") from None
        try:
            return command(*args, **kwargs)
        except sh.ErrorReturnCode as e:
            raise ProofError(kind.value, e.stderr.decode(errors="replace")) from e
