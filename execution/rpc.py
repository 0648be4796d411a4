"""Solana RPC Client - JSON-RPC over aiohttp for balances, simulation and submission."""

import base64
import itertools
import logging
from typing import Any, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"


class RpcError(Exception):
    """JSON-RPC error response (or transport failure) from the Solana node."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data

    @property
    def logs(self) -> List[str]:
        """Program logs attached to preflight failures, if any."""
        if isinstance(self.data, dict):
            return list(self.data.get("logs") or [])
        return []


class SolanaRpcClient:
    """
    Minimal async Solana JSON-RPC client.

    Usage:
        async with SolanaRpcClient(rpc_url) as rpc:
            lamports = await rpc.get_balance(address)
    """

    def __init__(
        self,
        rpc_url: str,
        session: aiohttp.ClientSession = None,
        commitment: str = "confirmed",
    ):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

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

    async def _call(self, method: str, params: list) -> Any:
        if self._session is None:
            self._session = aiohttp.ClientSession()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            async with self._session.post(self.rpc_url, json=payload) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RpcError(f"{method} HTTP {response.status}: {text[:200]}")
                body = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise RpcError(f"{method} transport error: {e}") from e

        if "error" in body:
            err = body["error"] or {}
            raise RpcError(
                err.get("message", f"{method} failed"),
                code=err.get("code"),
                data=err.get("data"),
            )

        return body.get("result")

    async def get_balance(self, address: str) -> int:
        """Lamport balance of ``address``."""
        result = await self._call("getBalance", [address, {"commitment": self.commitment}])
        return int(result["value"])

    async def get_parsed_token_accounts_by_owner(
        self,
        owner: str,
        mint: Optional[str] = None,
        program_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Parsed token accounts owned by ``owner`` filtered by mint or token program."""
        if (mint is None) == (program_id is None):
            raise ValueError("Exactly one of mint or program_id is required")

        account_filter = {"mint": mint} if mint else {"programId": program_id}
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, account_filter, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        return list(result.get("value") or [])

    async def simulate_transaction(self, tx_bytes: bytes, sig_verify: bool = True) -> Dict[str, Any]:
        """Simulate a signed transaction; returns ``{"err": ..., "logs": [...]}``."""
        result = await self._call(
            "simulateTransaction",
            [
                base64.b64encode(tx_bytes).decode("ascii"),
                {
                    "encoding": "base64",
                    "sigVerify": sig_verify,
                    "commitment": self.commitment,
                },
            ],
        )
        return result.get("value") or {}

    async def send_transaction(self, tx_bytes: bytes, skip_preflight: bool = False) -> str:
        """Submit a signed transaction; returns its signature."""
        return await self._call(
            "sendTransaction",
            [
                base64.b64encode(tx_bytes).decode("ascii"),
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self.commitment,
                },
            ],
        )

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        """Status entry for one signature, or None if the node has not seen it."""
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        statuses = result.get("value") or [None]
        return statuses[0]

    async def is_blockhash_valid(self, blockhash: str) -> bool:
        """Whether transactions built on ``blockhash`` can still be included."""
        result = await self._call("isBlockhashValid", [blockhash, {"commitment": "processed"}])
        return bool(result.get("value"))
