"""Tests for token balance aggregation."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from conftest import token_account
from execution.rpc import RpcError, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID
from execution.token_balance import get_token_balance

OWNER = "Owner1111111111111111111111111111111111111"
MINT = "Mint11111111111111111111111111111111111111"
OTHER_MINT = "Other1111111111111111111111111111111111111"


def rpc_with(by_program):
    """Mock RPC answering per token program (a list, or an exception to raise)."""
    async def lookup(owner, mint=None, program_id=None):
        result = by_program.get(program_id, [])
        if isinstance(result, Exception):
            raise result
        return result

    rpc = AsyncMock()
    rpc.get_parsed_token_accounts_by_owner = AsyncMock(side_effect=lookup)
    return rpc


class TestGetTokenBalance:
    """Tests for summing a mint across both token programs."""

    @pytest.mark.asyncio
    async def test_sums_both_programs(self):
        rpc = rpc_with({
            TOKEN_PROGRAM_ID: [token_account("A", MINT, "1.5")],
            TOKEN_2022_PROGRAM_ID: [token_account("B", MINT, "2.25")],
        })

        balance = await get_token_balance(rpc, OWNER, MINT)

        assert balance.balance_ui == Decimal("3.75")
        assert balance.decimals == 6
        assert balance.accounts == 2
        assert rpc.get_parsed_token_accounts_by_owner.await_count == 2

    @pytest.mark.asyncio
    async def test_ignores_other_mints(self):
        rpc = rpc_with({
            TOKEN_PROGRAM_ID: [
                token_account("A", MINT, "10"),
                token_account("B", OTHER_MINT, "99"),
            ],
        })

        balance = await get_token_balance(rpc, OWNER, MINT)

        assert balance.balance_ui == Decimal("10")
        assert balance.accounts == 1

    @pytest.mark.asyncio
    async def test_same_account_counted_once(self):
        account = token_account("A", MINT, "7")
        rpc = rpc_with({TOKEN_PROGRAM_ID: [account], TOKEN_2022_PROGRAM_ID: [account]})

        balance = await get_token_balance(rpc, OWNER, MINT)

        assert balance.balance_ui == Decimal("7")

    @pytest.mark.asyncio
    async def test_raw_amount_fallback(self):
        rpc = rpc_with({
            TOKEN_PROGRAM_ID: [token_account("A", MINT, None, decimals=6, amount="1234567")],
        })

        balance = await get_token_balance(rpc, OWNER, MINT)

        assert balance.balance_ui == Decimal("1.234567")

    @pytest.mark.asyncio
    async def test_program_failure_counts_as_zero(self):
        rpc = rpc_with({
            TOKEN_PROGRAM_ID: RpcError("Invalid param: could not find account"),
            TOKEN_2022_PROGRAM_ID: [token_account("B", MINT, "3")],
        })

        balance = await get_token_balance(rpc, OWNER, MINT)

        assert balance.balance_ui == Decimal("3")

    @pytest.mark.asyncio
    async def test_no_accounts(self):
        balance = await get_token_balance(rpc_with({}), OWNER, MINT)

        assert balance.balance_ui == Decimal("0")
        assert balance.decimals is None
        assert balance.to_dict() == {
            "owner": OWNER,
            "mint": MINT,
            "balance_ui": "0",
            "decimals": None,
            "accounts": 0,
        }
