"""
Launch Service - wires the orchestrator and its collaborators for the API.

Provides:
- Redis-backed ledger, custodial wallets and rate limiter
- Shared aiohttp clients for Solana RPC, the venue and the mixing gateway
- Startup/shutdown hooks for the FastAPI lifespan
"""

import logging
from typing import Optional

import redis.asyncio as redis

from execution.config import DEFAULT_CONFIG, LaunchConfig
from execution.executor import TransactionExecutor
from execution.key_manager import AESKeyManager
from execution.mixing import HttpMixingClient, MixingAdapter
from execution.orchestrator import LaunchOrchestrator
from execution.pump_portal import PumpPortalClient
from execution.rpc import SolanaRpcClient
from ledger.store import RedisLedgerStore
from ledger.wallets import RedisWalletStore

from api.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


class LaunchService:
    """
    Holds one orchestrator per process.

    Everything is built in ``start()`` so importing the API never opens
    connections; tests inject a ready orchestrator instead.
    """

    def __init__(
        self,
        config: LaunchConfig = None,
        orchestrator: Optional[LaunchOrchestrator] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.orchestrator = orchestrator
        self.rate_limiter = rate_limiter
        self._redis: Optional[redis.Redis] = None
        self._clients = []

    @property
    def started(self) -> bool:
        return self.orchestrator is not None

    async def start(self) -> None:
        """Connect Redis and build the orchestrator from configuration."""
        if self.started:
            return

        cfg = self.config
        vault = AESKeyManager(cfg.encryption_secret)

        self._redis = redis.from_url(cfg.redis_url, decode_responses=True)
        await self._redis.ping()
        logger.info("✅ Redis connected")

        rpc = SolanaRpcClient(cfg.rpc_url)
        venue = PumpPortalClient(
            cfg.portal_url,
            api_key=cfg.portal_api_key or None,
            ipfs_url=cfg.ipfs_url or None,
            frontend_url=cfg.frontend_url,
        )
        mixing_client = HttpMixingClient(cfg.mixing_api_url, api_key=cfg.mixing_api_key or None)
        self._clients = [rpc, venue, mixing_client]

        self.orchestrator = LaunchOrchestrator(
            ledger=RedisLedgerStore(self._redis, lock_timeout=cfg.record_lock_timeout_seconds),
            wallets=RedisWalletStore(self._redis, vault),
            vault=vault,
            mixing=MixingAdapter(
                mixing_client,
                max_attempts=cfg.deposit_max_attempts,
                step_down=cfg.deposit_step_down,
                floor_lamports=cfg.deposit_floor_lamports,
            ),
            venue=venue,
            executor=TransactionExecutor(
                rpc,
                finality_timeout=cfg.finality_timeout_seconds,
                poll_interval=cfg.finality_poll_seconds,
            ),
            rpc=rpc,
            config=cfg,
        )
        if self.rate_limiter is None:
            self.rate_limiter = RateLimiter.from_env(self._redis)

        logger.info(f"🚀 Launch service ready | rpc={cfg.rpc_url} | portal={cfg.portal_url}")

    async def stop(self) -> None:
        for client in self._clients:
            await client.close()
        self._clients = []
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        logger.info("👋 Launch service stopped")


# Global instance
launch_service = LaunchService()
