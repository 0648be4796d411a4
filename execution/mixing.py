"""
Mixing Client - deposit/withdraw/balance against the privacy-mixing gateway.

The mixing service is a black box reached over HTTP. Status is never pushed:
readiness of a launch deposit is inferred from the owner's private balance.

Deposit step-down policy:
    attempt full amount -> on rejection retry at 90% -> at most 3 attempts,
    stopping early once the candidate falls below the floor.
The amount actually deposited is returned; callers must not assume it equals
the amount they asked for.
"""

import asyncio
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import aiohttp
from solders.pubkey import Pubkey

from ledger.status import MixingStatus

from .errors import MixingError

logger = logging.getLogger(__name__)


class MixingUpstreamError(Exception):
    """The mixing gateway rejected the request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class MixingTransportError(Exception):
    """The request may or may not have reached the gateway."""


@dataclass
class DepositReceipt:
    """Reference to a deposit accepted by the mixing service."""

    deposit_reference: Optional[str]
    deposit_address: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DepositOutcome:
    """Result of the step-down deposit policy."""

    deposited_lamports: int
    requested_lamports: int
    attempts: List[int]
    receipt: DepositReceipt


class MixingClient(Protocol):
    """Protocol for the mixing collaborator."""
    async def deposit(self, owner_secret: str, lamports: int) -> DepositReceipt: ...
    async def withdraw(self, owner_secret: str, lamports: int, to_address: str) -> Dict[str, Any]: ...
    async def balance(self, owner_secret: str) -> int: ...


class HttpMixingClient:
    """
    aiohttp client for the mixing gateway.

    Endpoints (JSON):
        POST /deposit   {owner, lamports}                    -> {depositReference, depositAddress}
        POST /withdraw  {owner, lamports, recipientAddress}  -> {...}
        POST /balance   {owner}                              -> {lamports}
    """

    def __init__(self, base_url: str, session: aiohttp.ClientSession = None, api_key: str = None):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
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

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            async with self._session.post(
                f"{self.base_url}{path}", json=payload, headers=self._get_headers()
            ) as response:
                status = response.status
                body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MixingTransportError(f"{path} transport error: {e!r}") from e

        # Gateways in front of the service answer errors with HTML pages
        try:
            data = json.loads(body) if body.strip() else {}
        except ValueError:
            data = None

        if status != 200:
            message = None
            if isinstance(data, dict):
                message = data.get("error") or data.get("message")
            raise MixingUpstreamError(str(message or f"HTTP {status}: {body[:200]}"), status=status)

        if not isinstance(data, dict):
            raise MixingUpstreamError(f"{path} returned an unexpected body: {body[:200]}", status=status)
        return data

    async def deposit(self, owner_secret: str, lamports: int) -> DepositReceipt:
        data = await self._post("/deposit", {"owner": owner_secret, "lamports": lamports})
        return DepositReceipt(
            deposit_reference=data.get("depositReference") or data.get("txSignature"),
            deposit_address=data.get("depositAddress"),
            raw=data,
        )

    async def withdraw(self, owner_secret: str, lamports: int, to_address: str) -> Dict[str, Any]:
        return await self._post(
            "/withdraw",
            {"owner": owner_secret, "lamports": lamports, "recipientAddress": to_address},
        )

    async def balance(self, owner_secret: str) -> int:
        data = await self._post("/balance", {"owner": owner_secret})
        return int(data.get("lamports", 0))


class MixingAdapter:
    """
    Wraps the mixing collaborator with typed errors and the deposit retry policy.

    Usage:
        adapter = MixingAdapter(HttpMixingClient(url))
        outcome = await adapter.deposit_with_step_down(secret, 40_000_000)
    """

    def __init__(
        self,
        client: MixingClient,
        max_attempts: int = 3,
        step_down: float = 0.9,
        floor_lamports: int = 1_000_000,
    ):
        """
        Args:
            client: Mixing collaborator
            max_attempts: Total deposit attempts
            step_down: Multiplier applied to the candidate after a rejection
            floor_lamports: Stop retrying once the candidate is below this
        """
        self.client = client
        self.max_attempts = max_attempts
        self.step_down = step_down
        self.floor_lamports = floor_lamports

    async def deposit(self, owner_secret: str, lamports: int) -> DepositReceipt:
        """Single deposit attempt, no retry."""
        try:
            return await self.client.deposit(owner_secret, lamports)
        except (MixingUpstreamError, MixingTransportError) as e:
            raise MixingError(str(e), code="deposit_failed", attempted_lamports=lamports) from e

    def step_down_sequence(self, lamports: int) -> List[int]:
        """Every candidate the policy could try for ``lamports``, in order."""
        candidates: List[int] = []
        candidate = lamports
        while len(candidates) < self.max_attempts and candidate >= self.floor_lamports:
            candidates.append(candidate)
            candidate = math.floor(candidate * self.step_down)
        return candidates

    async def deposit_with_step_down(
        self,
        owner_secret: str,
        lamports: int,
        balance_lamports: Optional[int] = None,
    ) -> DepositOutcome:
        """
        Deposit as much of ``lamports`` as the mixing service accepts.

        Raises:
            MixingError(deposit_failed): every candidate was rejected; carries the
                last attempted amount and the balance the caller reported
        """
        attempts: List[int] = []
        last_error: Optional[Exception] = None

        for candidate in self.step_down_sequence(lamports):
            attempts.append(candidate)
            try:
                receipt = await self.client.deposit(owner_secret, candidate)
            except MixingUpstreamError as e:
                last_error = e
                logger.warning(
                    f"Deposit of {candidate} lamports rejected ({e}); "
                    f"attempt {len(attempts)}/{self.max_attempts}"
                )
                continue
            except MixingTransportError as e:
                # Unknown outcome: a blind retry could deposit twice
                raise MixingError(
                    str(e),
                    code="deposit_failed",
                    attempted_lamports=candidate,
                    balance_lamports=balance_lamports,
                    attempts=attempts,
                ) from e

            if candidate != lamports:
                logger.info(f"Deposited {candidate} of {lamports} requested lamports after step-down")
            return DepositOutcome(
                deposited_lamports=candidate,
                requested_lamports=lamports,
                attempts=attempts,
                receipt=receipt,
            )

        message = str(last_error) if last_error else f"Amount {lamports} below deposit floor {self.floor_lamports}"
        raise MixingError(
            message,
            code="deposit_failed",
            attempted_lamports=attempts[-1] if attempts else lamports,
            balance_lamports=balance_lamports,
            attempts=attempts,
        )

    async def withdraw(self, owner_secret: str, lamports: int, to_address: str) -> Dict[str, Any]:
        """
        Withdraw ``lamports`` from the pool to ``to_address``.

        The recipient is validated first so a malformed address can never
        fall through to a collaborator default.
        """
        if lamports <= 0:
            raise MixingError("lamports must be > 0", code="withdraw_failed", attempted_lamports=lamports)
        try:
            Pubkey.from_string(to_address)
        except ValueError as e:
            raise MixingError(
                f"Invalid recipient address: {to_address}",
                code="withdraw_failed",
                attempted_lamports=lamports,
            ) from e

        try:
            return await self.client.withdraw(owner_secret, lamports, to_address)
        except MixingUpstreamError as e:
            raise MixingError(str(e), code="withdraw_failed", attempted_lamports=lamports, to=to_address) from e
        except MixingTransportError as e:
            raise MixingError(
                str(e),
                code="withdraw_failed",
                attempted_lamports=lamports,
                to=to_address,
                outcome_unknown=True,
            ) from e

    async def query_status(self, owner_secret: str, requested_lamports: int) -> MixingStatus:
        """Infer deposit readiness: the private balance covers the requested amount."""
        try:
            balance = await self.client.balance(owner_secret)
        except (MixingUpstreamError, MixingTransportError) as e:
            raise MixingError(str(e), code="status_failed") from e

        status = MixingStatus.OK if balance >= requested_lamports else MixingStatus.DEPOSIT_PENDING
        logger.debug(f"Mixing balance {balance} vs requested {requested_lamports} -> {status.value}")
        return status
