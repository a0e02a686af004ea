from hashlib import sha256

from shielded_ledger.account import ShieldedAccount
from shielded_ledger.config import Config
from shielded_ledger.ledger import InMemoryLedger
from shielded_ledger.prover import MockProver

TOKEN = 0x5FBDB2315678AFECB367F032D93F642F64180AA3
OTHER_TOKEN = 0xE7F1725E7734CE288F8367E1BB143E90BB3F0512
RECEIVER_ADDRESS = 0x70997970C51812DC3A010C7D01B50E0D17DC79C8


def mk_signature(seed: int) -> bytes:
    # 65 deterministic bytes standing in for a wallet signature
    digest = sha256(seed.to_bytes(8, "big")).digest()
    return (digest * 3)[:64] + bytes([27 + seed % 2])


def mk_account(
    ledger: InMemoryLedger, seed: int = 0, config=None, cache=None, prover=None
) -> ShieldedAccount:
    return ShieldedAccount.from_signature(
        mk_signature(seed),
        ledger,
        prover or MockProver(),
        config or Config.default(),
        cache,
    )
