class ShieldedLedgerError(Exception):
    pass


class InputError(ShieldedLedgerError):
    """The caller handed us something we can't use: missing token, bad amount, malformed key."""


class StateError(ShieldedLedgerError):
    """The account's state doesn't allow the requested operation."""


class StaleProofError(StateError):
    def __init__(self, proven_against, current):
        super().__init__(proven_against, current)
        self.proven_against = proven_against
        self.current = current

    def __str__(self):
        return (
            "accumulator moved while proving: "
            f"proof was built against {self.proven_against}, ledger is now at {self.current}"
        )


class ConsistencyError(ShieldedLedgerError):
    """A commitment failed to reconstruct from its opening."""


class ChainError(ShieldedLedgerError):
    def __init__(self, operation: str, reason: str):
        super().__init__(operation, reason)
        self.operation = operation
        self.reason = reason

    def __str__(self):
        return f"ledger {self.operation} failed: {self.reason}"


class ProofError(ShieldedLedgerError):
    def __init__(self, circuit: str, reason: str):
        super().__init__(circuit, reason)
        self.circuit = circuit
        self.reason = reason

    def __str__(self):
        return f"{self.circuit} circuit: {self.reason}"
