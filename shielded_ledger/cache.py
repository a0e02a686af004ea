from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from shielded_ledger.personal import BalanceEntry


@dataclass
class CachedAccount:
    # no user key: it is re-derived from the wallet signature on every session
    zk_address: str
    current_nonce: int
    balance_entries: list[BalanceEntry] = field(default_factory=list)
    last_updated: float = field(default_factory=time.time)


class AccountCache(ABC):
    """
    Local store of discovered account state, keyed by zk address.
    Spending keys are never stored; they are re-derived from the signature.
    """

    @abstractmethod
    def load(self, zk_address: str) -> CachedAccount | None:
        pass

    @abstractmethod
    def save(self, account: CachedAccount):
        pass


class InMemoryAccountCache(AccountCache):
    def __init__(self):
        self.accounts: dict[str, CachedAccount] = {}

    def load(self, zk_address: str) -> CachedAccount | None:
        return self.accounts.get(zk_address)

    def save(self, account: CachedAccount):
        self.accounts[account.zk_address] = account
