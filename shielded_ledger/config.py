from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import dacite
import yaml


class ProverBackend(Enum):
    MOCK = "mock"
    NOIR = "noir"


@dataclass
class Config:
    discovery: DiscoveryConfig = field(default_factory=lambda: DiscoveryConfig())
    account: AccountConfig = field(default_factory=lambda: AccountConfig())
    prover: ProverConfig = field(default_factory=lambda: ProverConfig())
    logging: LoggingConfig = field(default_factory=lambda: LoggingConfig())

    @classmethod
    def load(cls, yaml_path: str) -> Config:
        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f) or {}
        config = dacite.from_dict(
            data_class=Config,
            data=data,
            config=dacite.Config(cast=[ProverBackend], strict=True),
        )
        config.validate()
        return config

    @classmethod
    def default(cls) -> Config:
        config = cls()
        config.validate()
        return config

    def validate(self):
        self.discovery.validate()
        self.account.validate()
        self.prover.validate()
        self.logging.validate()


@dataclass
class DiscoveryConfig:
    # Nonces tried before discovery gives up.
    max_nonce: int = 100

    def validate(self):
        assert self.max_nonce > 0


@dataclass
class AccountConfig:
    # How many times a proof made stale by a concurrent accumulator update
    # is regenerated before the operation fails.
    stale_proof_retries: int = 1

    def validate(self):
        assert self.stale_proof_retries >= 0


@dataclass
class ProverConfig:
    backend: ProverBackend = ProverBackend.MOCK
    # Directory holding one nargo package per circuit kind. Only used by the noir backend.
    circuits_dir: str | None = None
    nargo: str = "nargo"
    bb: str = "bb"

    def validate(self):
        if self.backend == ProverBackend.NOIR:
            assert self.circuits_dir is not None, "the noir backend needs circuits_dir"

    def build(self):
        from shielded_ledger.prover import MockProver, NoirProver

        match self.backend:
            case ProverBackend.MOCK:
                return MockProver()
            case ProverBackend.NOIR:
                return NoirProver(self.circuits_dir, nargo=self.nargo, bb=self.bb)


@dataclass
class LoggingConfig:
    level: str = "INFO"

    def validate(self):
        assert isinstance(logging.getLevelName(self.level.upper()), int), self.level

    def apply(self):
        logging.basicConfig(
            level=self.level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
