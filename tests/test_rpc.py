"""Tests for the Solana JSON-RPC client."""

import base64

import aiohttp
import pytest

from conftest import FakeResponse, FakeSession
from execution.rpc import RpcError, SolanaRpcClient, TOKEN_PROGRAM_ID


def rpc(*responses) -> SolanaRpcClient:
    return SolanaRpcClient("https://rpc.local", session=FakeSession(*responses))


class TestSolanaRpcClient:
    """Tests for request shapes and error mapping."""

    @pytest.mark.asyncio
    async def test_get_balance(self):
        client = rpc(FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "result": {"value": 56_000_000}}))

        assert await client.get_balance("Addr") == 56_000_000
        payload = client._session.calls[0]["json"]
        assert payload["method"] == "getBalance"
        assert payload["params"][0] == "Addr"

    @pytest.mark.asyncio
    async def test_request_ids_increment(self):
        body = {"result": {"value": 1}}
        client = rpc(FakeResponse(200, body), FakeResponse(200, body))

        await client.get_balance("A")
        await client.get_balance("B")

        assert [c["json"]["id"] for c in client._session.calls] == [1, 2]

    @pytest.mark.asyncio
    async def test_token_accounts_by_program(self):
        client = rpc(FakeResponse(200, {"result": {"value": [{"pubkey": "Acc"}]}}))

        accounts = await client.get_parsed_token_accounts_by_owner("Owner", program_id=TOKEN_PROGRAM_ID)

        assert accounts == [{"pubkey": "Acc"}]
        params = client._session.calls[0]["json"]["params"]
        assert params[1] == {"programId": TOKEN_PROGRAM_ID}
        assert params[2]["encoding"] == "jsonParsed"

    @pytest.mark.asyncio
    async def test_token_accounts_needs_one_filter(self):
        with pytest.raises(ValueError):
            await rpc().get_parsed_token_accounts_by_owner("Owner")

    @pytest.mark.asyncio
    async def test_simulate_encodes_base64(self):
        client = rpc(FakeResponse(200, {"result": {"value": {"err": None, "logs": ["ok"]}}}))

        result = await client.simulate_transaction(b"\x01\x02", sig_verify=False)

        assert result == {"err": None, "logs": ["ok"]}
        params = client._session.calls[0]["json"]["params"]
        assert base64.b64decode(params[0]) == b"\x01\x02"
        assert params[1]["sigVerify"] is False

    @pytest.mark.asyncio
    async def test_send_returns_signature(self):
        client = rpc(FakeResponse(200, {"result": "Sig123"}))

        assert await client.send_transaction(b"\x01") == "Sig123"

    @pytest.mark.asyncio
    async def test_signature_status(self):
        status = {"confirmationStatus": "finalized", "err": None}
        client = rpc(FakeResponse(200, {"result": {"value": [status]}}), FakeResponse(200, {"result": {"value": [None]}}))

        assert await client.get_signature_status("Sig") == status
        assert await client.get_signature_status("Sig") is None

    @pytest.mark.asyncio
    async def test_blockhash_validity(self):
        client = rpc(FakeResponse(200, {"result": {"value": True}}), FakeResponse(200, {"result": {"value": False}}))

        assert await client.is_blockhash_valid("Hash1") is True
        assert await client.is_blockhash_valid("Hash1") is False
        payload = client._session.calls[0]["json"]
        assert payload["method"] == "isBlockhashValid"
        assert payload["params"] == ["Hash1", {"commitment": "processed"}]

    @pytest.mark.asyncio
    async def test_rpc_error_carries_logs(self):
        client = rpc(FakeResponse(200, {
            "error": {"code": -32002, "message": "preflight failed", "data": {"logs": ["Program log: x"]}},
        }))

        with pytest.raises(RpcError) as exc:
            await client.send_transaction(b"\x01")

        assert exc.value.code == -32002
        assert exc.value.logs == ["Program log: x"]

    @pytest.mark.asyncio
    async def test_http_error(self):
        client = rpc(FakeResponse(429, "Too many requests", content_type="text/plain"))

        with pytest.raises(RpcError) as exc:
            await client.get_balance("Addr")

        assert "429" in str(exc.value)

    @pytest.mark.asyncio
    async def test_transport_error(self):
        class Broken(FakeSession):
            def post(self, url, **kwargs):
                raise aiohttp.ClientConnectionError("reset")

        client = SolanaRpcClient("https://rpc.local", session=Broken())

        with pytest.raises(RpcError):
            await client.get_balance("Addr")
