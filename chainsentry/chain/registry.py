"""Chain registry mapping chain name to configuration."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum

from chainsentry.errors import UnsupportedChain


class ChainFamily(str, Enum):
    ACCOUNT = "account-model"  # EVM: explicit sender/receiver/value
    INSTRUCTION = "instruction-model"  # Solana: instructions + balance deltas


@dataclass(frozen=True)
class ChainConfig:
    name: str
    display_name: str
    family: ChainFamily
    chain_id: int
    rpc_url: str
    explorer_url: str
    native_symbol: str
    native_decimals: int = 18
    fallback_urls: tuple[str, ...] = ()
    is_poa: bool = False
    block_time: float = 12.0  # seconds

    @property
    def is_evm(self) -> bool:
        return self.family is ChainFamily.ACCOUNT

    def with_rpc_url(self, rpc_url: str) -> ChainConfig:
        """Return a copy pointing at another endpoint. The original is left untouched."""
        return dataclasses.replace(self, rpc_url=rpc_url)


CHAINS: dict[str, ChainConfig] = {
    "solana": ChainConfig(
        name="solana",
        display_name="Solana",
        family=ChainFamily.INSTRUCTION,
        chain_id=101,
        rpc_url="https://api.mainnet-beta.solana.com",
        explorer_url="https://solscan.io",
        native_symbol="SOL",
        native_decimals=9,
        fallback_urls=(
            "https://api.mainnet-beta.solana.com",
            "https://solana-api.projectserum.com",
            "https://rpc.ankr.com/solana",
        ),
        block_time=0.4,
    ),
    "ethereum": ChainConfig(
        name="ethereum",
        display_name="Ethereum",
        family=ChainFamily.ACCOUNT,
        chain_id=1,
        rpc_url="https://eth.llamarpc.com",
        explorer_url="https://etherscan.io",
        native_symbol="ETH",
        fallback_urls=(
            "https://rpc.ankr.com/eth",
            "https://cloudflare-eth.com",
            "https://ethereum-rpc.publicnode.com",
        ),
    ),
    "bsc": ChainConfig(
        name="bsc",
        display_name="BNB Smart Chain",
        family=ChainFamily.ACCOUNT,
        chain_id=56,
        rpc_url="https://bsc-dataseed1.binance.org",
        explorer_url="https://bscscan.com",
        native_symbol="BNB",
        fallback_urls=(
            "https://bsc-dataseed1.binance.org",
            "https://bsc-dataseed2.binance.org",
            "https://rpc.ankr.com/bsc",
        ),
        is_poa=True,
        block_time=3.0,
    ),
    "polygon": ChainConfig(
        name="polygon",
        display_name="Polygon",
        family=ChainFamily.ACCOUNT,
        chain_id=137,
        rpc_url="https://polygon-rpc.com",
        explorer_url="https://polygonscan.com",
        native_symbol="MATIC",
        fallback_urls=(
            "https://polygon-rpc.com",
            "https://rpc-mainnet.maticvigil.com",
            "https://rpc.ankr.com/polygon",
        ),
        is_poa=True,
        block_time=2.0,
    ),
    "arbitrum": ChainConfig(
        name="arbitrum",
        display_name="Arbitrum One",
        family=ChainFamily.ACCOUNT,
        chain_id=42161,
        rpc_url="https://arb1.arbitrum.io/rpc",
        explorer_url="https://arbiscan.io",
        native_symbol="ETH",
        fallback_urls=(
            "https://arb1.arbitrum.io/rpc",
            "https://rpc.ankr.com/arbitrum",
            "https://arbitrum-one-rpc.publicnode.com",
        ),
        is_poa=True,
        block_time=0.25,
    ),
    "base": ChainConfig(
        name="base",
        display_name="Base",
        family=ChainFamily.ACCOUNT,
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        explorer_url="https://basescan.org",
        native_symbol="ETH",
        fallback_urls=(
            "https://mainnet.base.org",
            "https://developer-access-mainnet.base.org",
            "https://rpc.ankr.com/base",
        ),
        is_poa=True,
        block_time=2.0,
    ),
}

CHAIN_ID_TO_NAME: dict[int, str] = {c.chain_id: c.name for c in CHAINS.values()}


def get_chain_config(chain: str) -> ChainConfig:
    if chain not in CHAINS:
        raise UnsupportedChain(chain, list(CHAINS.keys()))
    return CHAINS[chain]


def get_chain_by_id(chain_id: int) -> ChainConfig:
    if chain_id not in CHAIN_ID_TO_NAME:
        raise UnsupportedChain(str(chain_id), list(CHAINS.keys()))
    return CHAINS[CHAIN_ID_TO_NAME[chain_id]]


def resolve_chain(name_or_id: str | int) -> ChainConfig:
    """Resolve a chain name or ID to its config."""
    if isinstance(name_or_id, int):
        return get_chain_by_id(name_or_id)
    name = str(name_or_id).lower()
    if name.isdigit():
        return get_chain_by_id(int(name))
    return get_chain_config(name)


def evm_chains() -> list[str]:
    return [c.name for c in CHAINS.values() if c.is_evm]


def is_evm_chain(chain: str) -> bool:
    config = CHAINS.get(chain)
    return config is not None and config.is_evm


def supported_chains() -> list[str]:
    return list(CHAINS.keys())


def build_chain_configs(settings=None) -> dict[str, ChainConfig]:
    """Apply RPC overrides from settings to the built-in table.

    Called once at startup; the returned configs are never mutated.
    """
    if settings is None:
        from chainsentry.config import get_settings

        settings = get_settings()

    configs: dict[str, ChainConfig] = {}
    for name, base in CHAINS.items():
        configs[name] = dataclasses.replace(
            base,
            rpc_url=settings.get_rpc_url(name, base.rpc_url),
            fallback_urls=settings.get_fallback_rpc_urls(name, base.fallback_urls),
        )
    return configs
