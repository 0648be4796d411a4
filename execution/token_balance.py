"""Token balance aggregation across the legacy and Token-2022 programs."""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Protocol

from .rpc import RpcError, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

logger = logging.getLogger(__name__)

TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)


class RpcClient(Protocol):
    """Protocol for the token-account lookup."""
    async def get_parsed_token_accounts_by_owner(
        self, owner: str, mint: Optional[str] = None, program_id: Optional[str] = None
    ) -> List[Dict[str, Any]]: ...


@dataclass
class TokenBalance:
    """UI-denominated holding of one mint by one owner."""

    owner: str
    mint: str
    balance_ui: Decimal
    decimals: Optional[int]
    accounts: int = 0

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "mint": self.mint,
            "balance_ui": str(self.balance_ui),
            "decimals": self.decimals,
            "accounts": self.accounts,
        }


def _ui_amount(token_amount: Dict[str, Any]) -> Decimal:
    """Prefer the node's uiAmountString; fall back to raw amount / 10^decimals."""
    decimals = token_amount.get("decimals")
    try:
        if token_amount.get("uiAmountString") is not None:
            return Decimal(str(token_amount["uiAmountString"]))
        if isinstance(token_amount.get("amount"), str) and isinstance(decimals, int):
            return Decimal(token_amount["amount"]).scaleb(-decimals)
    except InvalidOperation:
        logger.debug(f"Unparseable token amount: {token_amount}")
    return Decimal("0")


async def get_token_balance(rpc: RpcClient, owner: str, mint: str) -> TokenBalance:
    """
    Sum ``owner``'s balance of ``mint`` over every supported token program.

    A lookup failure for one program counts as zero for that program;
    holding no accounts under a given program is the normal case.
    """
    total = Decimal("0")
    decimals: Optional[int] = None
    seen = set()

    for program_id in TOKEN_PROGRAMS:
        try:
            accounts = await rpc.get_parsed_token_accounts_by_owner(owner, program_id=program_id)
        except RpcError as e:
            logger.debug(f"Token accounts lookup failed for program {program_id[:8]}...: {e}")
            continue

        for account in accounts:
            pubkey = account.get("pubkey")
            if pubkey in seen:
                continue
            info = (
                account.get("account", {})
                .get("data", {})
                .get("parsed", {})
                .get("info", {})
            )
            if info.get("mint") != mint:
                continue

            seen.add(pubkey)
            token_amount = info.get("tokenAmount") or {}
            total += _ui_amount(token_amount)
            if isinstance(token_amount.get("decimals"), int):
                decimals = token_amount["decimals"]

    return TokenBalance(owner=owner, mint=mint, balance_ui=total, decimals=decimals, accounts=len(seen))
