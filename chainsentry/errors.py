"""Error taxonomy shared by the ingestion, balance and scoring layers."""

from __future__ import annotations


class ChainSentryError(Exception):
    """Base class for all chainsentry errors."""

    kind = "ChainSentryError"


class UnsupportedChain(ChainSentryError, ValueError):
    kind = "UnsupportedChain"

    def __init__(self, chain: str, supported: list[str] | None = None):
        self.chain = chain
        self.supported = supported or []
        msg = f"Unknown chain '{chain}'"
        if self.supported:
            msg += f". Supported: {self.supported}"
        super().__init__(msg)


class InvalidAddress(ChainSentryError):
    """The validator rejected an address. No I/O is attempted with it."""

    kind = "InvalidAddress"

    def __init__(self, address: str, chain: str, reason: str = "invalid address"):
        self.address = address
        self.chain = chain
        self.reason = reason
        super().__init__(f"Invalid {chain} address {address!r}: {reason}")


class ProviderUnavailable(ChainSentryError):
    """Primary and every fallback endpoint for a chain failed the health check."""

    kind = "ProviderUnavailable"

    def __init__(self, chain: str, reason: str = "all RPC endpoints unavailable"):
        self.chain = chain
        self.reason = reason
        super().__init__(f"{chain}: {reason}")


class ParseFailure(ChainSentryError):
    """One transaction's chain-native shape could not be decoded."""

    kind = "ParseFailure"

    def __init__(self, chain: str, tx_hash: str, reason: str):
        self.chain = chain
        self.tx_hash = tx_hash
        self.reason = reason
        super().__init__(f"{chain} transaction {tx_hash}: {reason}")


class NotFound(ChainSentryError):
    kind = "NotFound"

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")
