"""Pump Portal Client - build unsigned create/sell/claim transactions on the venue."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp
import base58

from ledger.models import LaunchMetadata

from .errors import PortalError

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


def _unreachable(message: str, error: BaseException) -> PortalError:
    """The request never produced an HTTP status."""
    return PortalError(message, http_status=None, body=repr(error))


def _parse_json(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise PortalError(
            "unexpected_portal_body",
            http_status=200,
            body=raw[:200].decode(errors="replace"),
        ) from e


class TradeAction:
    CREATE = "create"
    SELL = "sell"
    COLLECT_CREATOR_FEE = "collectCreatorFee"


class PumpPortalClient:
    """
    Client for the Pump.fun portal "trade-local" API and its metadata upload.

    The portal returns serialized *unsigned* versioned transactions; signing
    and submission happen server-side in the TransactionExecutor.

    API Docs: https://pumpportal.fun/local-trading-api/trading-api
    """

    def __init__(
        self,
        portal_url: str,
        session: aiohttp.ClientSession = None,
        api_key: str = None,
        ipfs_url: str = None,
        frontend_url: str = "https://frontend-api-v3.pump.fun",
    ):
        """
        Args:
            portal_url: Portal base URL (``/trade-local`` is appended)
            session: Optional aiohttp session (created if not provided)
            api_key: Portal API key, sent as bearer and x-api-key
            ipfs_url: Metadata upload endpoint
            frontend_url: Public frontend API used to look up created coins
        """
        self.portal_url = portal_url.rstrip("/")
        self.ipfs_url = ipfs_url
        self.frontend_url = frontend_url.rstrip("/")
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests."""
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["authorization"] = f"Bearer {self._api_key}"
            headers["x-api-key"] = self._api_key
        return headers

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def upload_metadata(self, metadata: LaunchMetadata) -> str:
        """
        Upload name/ticker/description/image and socials to the venue's IPFS endpoint.

        Returns:
            The metadata URI to reference in the create transaction
        """
        if not self.ipfs_url:
            raise PortalError("PUMPFUN_IPFS_URL not configured")

        session = self._http()

        try:
            async with session.get(metadata.image_url) as image_response:
                if image_response.status != 200:
                    body = await image_response.text()
                    raise PortalError(
                        f"image_fetch_failed: {image_response.status}",
                        http_status=image_response.status,
                        body=body[:500],
                    )
                image = await image_response.read()
                content_type = image_response.headers.get("content-type", "application/octet-stream")
        except TRANSPORT_ERRORS as e:
            raise _unreachable("image_fetch_failed", e) from e

        form = aiohttp.FormData()
        form.add_field("file", image, filename="image", content_type=content_type)
        form.add_field("name", metadata.name)
        form.add_field("symbol", metadata.ticker)
        form.add_field("description", metadata.description)
        form.add_field("showName", "true")
        for social in ("twitter", "telegram", "website"):
            value = getattr(metadata, social)
            if value:
                form.add_field(social, value)

        try:
            async with session.post(self.ipfs_url, data=form) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(f"Metadata upload failed ({response.status}): {body[:200]}")
                    raise PortalError(
                        f"ipfs_upload_failed: {response.status}",
                        http_status=response.status,
                        body=body,
                    )
                raw = await response.read()
        except TRANSPORT_ERRORS as e:
            raise _unreachable("ipfs_upload_failed", e) from e

        data = _parse_json(raw)
        if not isinstance(data, dict):
            raise PortalError("unexpected_portal_body", http_status=200, body=raw[:200].decode(errors="replace"))

        uri = data.get("metadataUri") or (data.get("metadata") or {}).get("uri")
        if not uri:
            raise PortalError(f"ipfs_no_uri: {json.dumps(data)[:200]}", body=json.dumps(data))

        logger.info(f"Uploaded metadata for {metadata.ticker}: {uri}")
        return uri

    async def build_trade_transaction(self, payload: Dict[str, Any]) -> bytes:
        """
        POST a trade-local request and return the unsigned transaction bytes.

        The portal answers with raw bytes, or with JSON carrying a base58
        transaction (bare string, list, or ``transactions``/``transaction``).
        """
        url = f"{self.portal_url}/trade-local"
        action = payload.get("action")

        try:
            async with self._http().post(url, json=payload, headers=self._get_headers()) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(f"Portal {action} failed ({response.status}): {body[:200]}")
                    raise PortalError(
                        f"Portal {action} failed",
                        http_status=response.status,
                        body=body,
                    )
                content_type = response.headers.get("content-type", "")
                raw = await response.read()
        except TRANSPORT_ERRORS as e:
            logger.error(f"Portal {action} unreachable: {e!r}")
            raise _unreachable(f"Portal {action} failed", e) from e

        if "json" not in content_type and raw:
            return raw

        data = _parse_json(raw or b"null")

        first = data
        if isinstance(data, list):
            first = data[0] if data else None
        elif isinstance(data, dict):
            transactions = data.get("transactions")
            first = transactions[0] if isinstance(transactions, list) and transactions else data.get("transaction")

        if not isinstance(first, str):
            raise PortalError("unexpected_portal_body", http_status=200, body=json.dumps(data)[:200])

        try:
            return base58.b58decode(first)
        except ValueError as e:
            raise PortalError("unexpected_portal_body", http_status=200, body=first[:200]) from e

    async def build_create_transaction(
        self,
        payer: str,
        mint: str,
        metadata_uri: str,
        amount_sol: float,
        slippage: int,
        priority_fee: float,
        pool: str = "pump",
    ) -> bytes:
        """Unsigned create (+ optional initial buy) transaction, payer = launch wallet."""
        return await self.build_trade_transaction({
            "publicKey": payer,
            "action": TradeAction.CREATE,
            "tokenMetadata": {"name": "", "symbol": "", "uri": metadata_uri},
            "mint": mint,
            "denominatedInSol": "true",
            "amount": amount_sol,
            "slippage": slippage,
            "priorityFee": priority_fee,
            "pool": pool,
        })

    async def build_sell_transaction(
        self,
        public_key: str,
        mint: str,
        amount: float,
        slippage: int,
        priority_fee: float,
        pool: str = "auto",
    ) -> bytes:
        """Unsigned sell of ``amount`` tokens (UI units)."""
        return await self.build_trade_transaction({
            "publicKey": public_key,
            "action": TradeAction.SELL,
            "mint": mint,
            "denominatedInSol": "false",
            "amount": amount,
            "slippage": slippage,
            "priorityFee": priority_fee,
            "pool": pool,
        })

    async def build_collect_fee_transaction(self, public_key: str, priority_fee: float) -> bytes:
        """Unsigned transaction moving accrued creator rewards to ``public_key``."""
        return await self.build_trade_transaction({
            "publicKey": public_key,
            "action": TradeAction.COLLECT_CREATOR_FEE,
            "priorityFee": priority_fee,
        })

    async def get_created_coins(self, creator: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Coins the venue's public frontend lists as created by ``creator``, newest first."""
        url = f"{self.frontend_url}/coins/user-created-coins/{creator}"
        params = {"offset": 0, "limit": limit, "includeNsfw": "false"}

        try:
            async with self._http().get(url, params=params, headers={"accept": "application/json"}) as response:
                if response.status != 200:
                    body = await response.text()
                    raise PortalError("Upstream error", http_status=response.status, body=body)
                raw = await response.read()
        except TRANSPORT_ERRORS as e:
            raise _unreachable("Upstream error", e) from e

        data = _parse_json(raw)
        coins = data.get("coins") if isinstance(data, dict) else data
        return coins if isinstance(coins, list) else []
