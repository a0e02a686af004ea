import tempfile
from pathlib import Path
from unittest import TestCase

from shielded_ledger.config import Config, ProverBackend
from shielded_ledger.prover import MockProver, NoirProver

EXAMPLE = Path(__file__).resolve().parent / "config.yaml"


class TestConfig(TestCase):
    def write(self, text: str) -> str:
        f = tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False)
        self.addCleanup(Path(f.name).unlink)
        with f:
            f.write(text)
        return f.name

    def test_example_loads(self):
        config = Config.load(str(EXAMPLE))
        assert config.discovery.max_nonce == 100
        assert config.prover.backend == ProverBackend.MOCK
        assert isinstance(config.prover.build(), MockProver)

    def test_defaults_fill_missing_sections(self):
        config = Config.load(self.write("discovery:\n  max_nonce: 7\n"))
        assert config.discovery.max_nonce == 7
        assert config.account.stale_proof_retries == 1
        assert config.logging.level == "INFO"

    def test_noir_backend(self):
        config = Config.load(
            self.write("prover:\n  backend: noir\n  circuits_dir: /tmp/circuits\n")
        )
        prover = config.prover.build()
        assert isinstance(prover, NoirProver)
        assert prover.circuits_dir == Path("/tmp/circuits")

    def test_validation(self):
        with self.assertRaises(AssertionError):
            Config.load(self.write("discovery:\n  max_nonce: 0\n"))
        with self.assertRaises(AssertionError):
            Config.load(self.write("prover:\n  backend: noir\n"))
        with self.assertRaises(AssertionError):
            Config.load(self.write("logging:\n  level: LOUD\n"))
