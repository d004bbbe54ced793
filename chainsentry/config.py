"""Centralized configuration via pydantic-settings. All secrets from .env."""

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Blockchain RPC
    infura_api_key: str = ""
    etherscan_api_key: str = ""

    # Optional per-chain RPC overrides
    solana_rpc_url: str = ""
    ethereum_rpc_url: str = ""
    bsc_rpc_url: str = ""
    polygon_rpc_url: str = ""
    arbitrum_rpc_url: str = ""
    base_rpc_url: str = ""

    # chain name -> ordered fallback URLs (JSON in env), replaces the built-in list
    fallback_rpc_urls: dict[str, list[str]] = Field(default_factory=dict)

    # Data paths
    data_dir: Path = Field(default_factory=lambda: PROJECT_ROOT / "data")
    duckdb_path: Path = Field(default_factory=lambda: PROJECT_ROOT / "data" / "chainsentry.duckdb")

    # Network behaviour
    health_check_timeout: float = 5.0
    sync_limit: int = 100
    sync_deadline: float = 60.0
    evm_scan_blocks: int = 10
    max_concurrent_requests: int = 10

    # Prices
    price_api_base: str = "https://coins.llama.fi"

    log_level: str = "INFO"

    def get_rpc_url(self, chain: str, default: str) -> str:
        """Get RPC URL for a chain, using override, Infura, then the public default."""
        overrides = {
            "solana": self.solana_rpc_url,
            "ethereum": self.ethereum_rpc_url,
            "bsc": self.bsc_rpc_url,
            "polygon": self.polygon_rpc_url,
            "arbitrum": self.arbitrum_rpc_url,
            "base": self.base_rpc_url,
        }
        if overrides.get(chain):
            return overrides[chain]
        infura_slugs = {
            "ethereum": "mainnet",
            "polygon": "polygon-mainnet",
            "arbitrum": "arbitrum-mainnet",
            "base": "base-mainnet",
        }
        slug = infura_slugs.get(chain)
        if slug and self.infura_api_key:
            return f"https://{slug}.infura.io/v3/{self.infura_api_key}"
        return default

    def get_fallback_rpc_urls(self, chain: str, default: tuple[str, ...]) -> tuple[str, ...]:
        urls = self.fallback_rpc_urls.get(chain)
        if urls:
            return tuple(urls)
        return default


@lru_cache
def get_settings() -> Settings:
    return Settings()
