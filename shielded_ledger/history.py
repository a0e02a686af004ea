"""
Transaction history rebuilt from the ledger.

Every nonce below the current one is read the way discovery does it, its
personal commitment reference is decrypted, and it is labelled with the
operation the ledger logged for its nonce commitment. Withdrawals and absorbs
also carry the nullifier they published.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from shielded_ledger.cipher import Counter, decrypt, decrypt_point
from shielded_ledger.circuit import CircuitKind
from shielded_ledger.crypto import Field, Point
from shielded_ledger.discovery import NonceDiscovery
from shielded_ledger.errors import ConsistencyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    kind: CircuitKind
    nonce: int
    nonce_commitment: Field
    token: int
    # balance of `token` after the operation
    balance: int
    change: int
    tx_hash: str | None
    personal_c_tot: Point
    nullifier: int | None = None
    receiver_public_key: Point | None = None


class TransactionHistory:
    def __init__(self, ledger, keys):
        self.ledger = ledger
        self.keys = keys
        self.discovery = NonceDiscovery(ledger, keys)

    async def reconstruct(self, current_nonce: int) -> list[HistoryEntry]:
        """Returns the account's operations below `current_nonce`, newest first."""
        balances: dict[int, int] = {}
        history = []
        for nonce in range(current_nonce):
            balance_entry = await self.discovery.read_entry(nonce)
            if balance_entry is None:
                logger.warning(f"nonce {nonce} holds no balance reference, skipping")
                continue

            nonce_commitment = self.keys.nonce_commitment(nonce)
            key = self.keys.encryption_key(nonce)
            event = await self.ledger.get_event(nonce_commitment)
            if event is None:
                kind = CircuitKind.ENTRY if nonce == 0 else CircuitKind.DEPOSIT
                logger.warning(f"no event logged for nonce {nonce}, assuming {kind.value}")
                tx_hash, receiver_public_key = None, None
            else:
                kind, tx_hash = event.kind, event.tx_hash
                receiver_public_key = event.receiver_public_key

            nullifier = None
            if kind in (CircuitKind.WITHDRAW, CircuitKind.ABSORB):
                encrypted = await self.ledger.get_encrypted_nullifier(nonce_commitment)
                nullifier = decrypt(encrypted, key, Counter.NULLIFIER).v

            token = balance_entry.token
            history.append(
                HistoryEntry(
                    kind=kind,
                    nonce=nonce,
                    nonce_commitment=nonce_commitment,
                    token=token,
                    balance=balance_entry.amount,
                    change=balance_entry.amount - balances.get(token, 0),
                    tx_hash=tx_hash,
                    personal_c_tot=await self._personal_c_tot(nonce, nonce_commitment, key),
                    nullifier=nullifier,
                    receiver_public_key=receiver_public_key,
                )
            )
            balances[token] = balance_entry.amount

        history.reverse()
        return history

    async def _personal_c_tot(self, nonce: int, nonce_commitment: Field, key: Field) -> Point:
        reference = await self.ledger.get_personal_c_tot_reference(nonce_commitment)
        try:
            return Point.from_xy(*decrypt_point(reference, key))
        except ValueError:
            raise ConsistencyError(
                f"personal reference at nonce {nonce} does not decrypt to a curve point"
            ) from None
