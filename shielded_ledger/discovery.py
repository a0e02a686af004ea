"""
Nonce discovery: recover an account's position and balance history from the
ledger alone.

Nonce n is in use iff `H(user_key_hash, n)` is known to the ledger. The scan
reads n = 0, 1, 2, ... and the first unused nonce is the account's current
nonce. Every used nonce holds a balance reference: plaintext for the entry at
nonce 0, encrypted under `encryption_key(n)` afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shielded_ledger.cipher import Counter, decrypt
from shielded_ledger.crypto import Field
from shielded_ledger.errors import StateError
from shielded_ledger.personal import BalanceEntry

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    current_nonce: int
    balance_entries: list[BalanceEntry]
    # number of nonces read from the ledger
    reads: int


class NonceDiscovery:
    def __init__(self, ledger, keys, max_nonce: int = 100):
        self.ledger = ledger
        self.keys = keys
        self.max_nonce = max_nonce

    async def discover(self, cached=None) -> DiscoveryResult:
        """
        Scans from nonce 0, or from a cached account's current nonce when one
        is given: if that nonce is still unused the cache is current and a
        single read suffices.
        """
        entries: list[BalanceEntry] = []
        start = 0
        if cached is not None:
            start = cached.current_nonce
            entries = [e for e in cached.balance_entries if e.nonce < start]

        reads = 0
        for nonce in range(start, self.max_nonce):
            reads += 1
            entry = await self.read_entry(nonce)
            if entry is None:
                logger.info(f"current nonce is {nonce} after {reads} ledger reads")
                return DiscoveryResult(nonce, entries, reads)
            logger.debug(f"nonce {nonce} used for token {entry.token:#x}")
            entries.append(entry)

        raise StateError(f"no unused nonce below {self.max_nonce}")

    async def read_entry(self, nonce: int) -> BalanceEntry | None:
        nonce_commitment = self.keys.nonce_commitment(nonce)
        if not await self.ledger.is_nonce_commitment_known(nonce_commitment):
            return None

        reference = await self.ledger.get_balance_reference(nonce_commitment)
        amount, token = (Field(v) for v in reference)
        if amount == 0 and token == 0:
            # known commitment without a reference: treated as unused
            logger.warning(f"nonce {nonce} is known but has no balance reference")
            return None

        if nonce > 0:
            key = self.keys.encryption_key(nonce)
            amount = decrypt(amount, key, Counter.AMOUNT)
            token = decrypt(token, key, Counter.TOKEN)
        return BalanceEntry(token=token.v, amount=amount.v, nonce=nonce)
