"""Provider pool: one cached client per chain, health checks and fallback promotion."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from chainsentry.chain.provider import ChainClient, make_client
from chainsentry.chain.registry import ChainConfig, build_chain_configs
from chainsentry.errors import ProviderUnavailable, UnsupportedChain
from chainsentry.models.schema import ProviderHealth

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ChainConfig], ChainClient]


class ProviderPool:
    """Lazily constructed, per-chain client cache.

    Not a global singleton: each worker may hold its own pool. The client
    cache is the only mutable state; a client is stored only once fully
    constructed, and promotion to a fallback replaces both the config and the
    client instead of mutating them.
    """

    def __init__(
        self,
        configs: dict[str, ChainConfig] | None = None,
        client_factory: ClientFactory | None = None,
        health_timeout: float | None = None,
        settings=None,
    ):
        if settings is None and (configs is None or client_factory is None or health_timeout is None):
            from chainsentry.config import get_settings

            settings = get_settings()
        self._configs: dict[str, ChainConfig] = dict(configs or build_chain_configs(settings))
        self._factory: ClientFactory = client_factory or (lambda c: make_client(c, settings))
        self.health_timeout = health_timeout if health_timeout is not None else settings.health_check_timeout
        self._clients: dict[str, ChainClient] = {}

    @property
    def chains(self) -> list[str]:
        return list(self._configs.keys())

    def config(self, chain: str) -> ChainConfig:
        if chain not in self._configs:
            raise UnsupportedChain(chain, self.chains)
        return self._configs[chain]

    def get(self, chain: str) -> ChainClient:
        client = self._clients.get(chain)
        if client is not None:
            return client
        client = self._factory(self.config(chain))
        self._clients[chain] = client
        return client

    async def _probe(self, chain: str, client: ChainClient) -> ProviderHealth:
        start = time.perf_counter()
        try:
            height = await asyncio.wait_for(client.get_height(), timeout=self.health_timeout)
        except asyncio.TimeoutError:
            return ProviderHealth(
                chain=chain, healthy=False, rpc_url=client.rpc_url,
                error=f"timed out after {self.health_timeout}s",
            )
        except Exception as e:
            return ProviderHealth(chain=chain, healthy=False, rpc_url=client.rpc_url, error=str(e) or type(e).__name__)
        latency = (time.perf_counter() - start) * 1000
        return ProviderHealth(
            chain=chain, healthy=True, latency_ms=round(latency, 2), height=height, rpc_url=client.rpc_url,
        )

    async def test_health(self, chain: str) -> ProviderHealth:
        return await self._probe(chain, self.get(chain))

    async def switch_to_fallback(self, chain: str) -> bool:
        """Promote the first healthy fallback endpoint. False if none answers."""
        current = self.config(chain)
        for url in current.fallback_urls:
            if url == current.rpc_url:
                continue
            candidate_config = current.with_rpc_url(url)
            candidate = self._factory(candidate_config)
            health = await self._probe(chain, candidate)
            if not health.healthy:
                logger.debug(f"{chain}: fallback {url} unhealthy: {health.error}")
                await _close_quietly(candidate)
                continue
            old = self._clients.get(chain)
            self._configs[chain] = candidate_config
            self._clients[chain] = candidate
            if old is not None:
                await _close_quietly(old)
            logger.warning(f"{chain}: switched RPC endpoint to {url}")
            return True
        logger.warning(f"{chain}: no healthy fallback endpoint")
        return False

    async def get_healthy(self, chain: str) -> ChainClient:
        """Client for a chain that answered a health check, promoting a fallback if needed."""
        health = await self.test_health(chain)
        if health.healthy:
            return self.get(chain)
        logger.warning(f"{chain}: primary endpoint unhealthy ({health.error}), trying fallbacks")
        if await self.switch_to_fallback(chain):
            return self.get(chain)
        raise ProviderUnavailable(chain, f"primary and fallback endpoints failed: {health.error}")

    async def all_chain_health(self) -> dict[str, ProviderHealth]:
        results = await asyncio.gather(*(self.test_health(c) for c in self.chains))
        return {h.chain: h for h in results}

    def connection_info(self) -> dict[str, dict]:
        return {
            name: {
                "rpc_url": cfg.rpc_url,
                "connected": name in self._clients,
                "fallbacks": list(cfg.fallback_urls),
            }
            for name, cfg in self._configs.items()
        }

    async def refresh(self) -> None:
        """Close and drop all cached clients; the next get() reconnects."""
        await self.close()

    async def close(self) -> None:
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await _close_quietly(client)


async def _close_quietly(client: ChainClient) -> None:
    try:
        await client.close()
    except Exception as e:
        logger.debug(f"{client.chain}: error closing client: {e}")
