"""Shared fixtures: real vault/ledger/executor, mocked network collaborators."""

import json
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from execution.config import LaunchConfig
from execution.executor import TransactionExecutor
from execution.key_manager import AESKeyManager
from execution.mixing import DepositReceipt, MixingAdapter
from execution.orchestrator import LaunchOrchestrator
from ledger.store import InMemoryLedgerStore
from ledger.wallets import InMemoryWalletStore

TEST_SECRET = "unit-test-encryption-secret-0123456789"
PLATFORM_BALANCE = 10_000_000_000

METADATA = {
    "name": "Test Token",
    "ticker": "TEST",
    "description": "A token for tests",
    "image_url": "https://example.com/token.png",
    "twitter": "https://x.com/test",
}


# ============================================================================
# Helpers
# ============================================================================

def _pubkey(value) -> Pubkey:
    return value if isinstance(value, Pubkey) else Pubkey.from_string(str(value))


def build_unsigned_tx(payer, *signers) -> bytes:
    """Serialized v0 transaction requiring ``payer`` plus ``signers``, unsigned."""
    program = Pubkey.new_unique()
    accounts = [AccountMeta(_pubkey(s), is_signer=True, is_writable=True) for s in signers]
    ix = Instruction(program, b"\x01", accounts)
    message = MessageV0.try_compile(_pubkey(payer), [ix], [], Hash.default())
    count = message.header.num_required_signatures
    return bytes(VersionedTransaction.populate(message, [Signature.default()] * count))


def token_account(pubkey: str, mint: str, ui_amount: Optional[str], decimals: int = 6,
                  amount: Optional[str] = None) -> Dict[str, Any]:
    """jsonParsed token account as returned by getTokenAccountsByOwner."""
    token_amount: Dict[str, Any] = {"decimals": decimals}
    if ui_amount is not None:
        token_amount["uiAmountString"] = ui_amount
    if amount is not None:
        token_amount["amount"] = amount
    return {
        "pubkey": pubkey,
        "account": {"data": {"parsed": {"info": {"mint": mint, "tokenAmount": token_amount}}}},
    }


class FakeResponse:
    """Stand-in for an aiohttp response used as ``async with``."""

    def __init__(self, status: int = 200, body: Any = None, content_type: str = "application/json",
                 headers: Optional[Dict[str, str]] = None):
        self.status = status
        if isinstance(body, (bytes, bytearray)):
            self._raw = bytes(body)
        elif isinstance(body, str):
            self._raw = body.encode()
        else:
            self._raw = json.dumps(body).encode()
        self.headers = {"content-type": content_type, **(headers or {})}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def read(self) -> bytes:
        return self._raw

    async def text(self) -> str:
        return self._raw.decode(errors="replace")

    async def json(self, content_type=None):
        return json.loads(self._raw or b"null")


class FakeSession:
    """Records requests and replays queued responses in order."""

    def __init__(self, *responses: FakeResponse):
        self.responses: List[FakeResponse] = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def _next(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        return self.responses.pop(0)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    async def close(self):
        pass


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def vault():
    return AESKeyManager(TEST_SECRET)


@pytest.fixture
def ledger():
    return InMemoryLedgerStore()


@pytest.fixture
def wallets(vault):
    return InMemoryWalletStore(vault)


@pytest.fixture
def config():
    return LaunchConfig(priority_fee_sol=None, finality_timeout_seconds=0.05, finality_poll_seconds=0.01)


@pytest.fixture
def mock_rpc():
    """Mock Solana RPC; balances default to a well-funded wallet."""
    rpc = AsyncMock()
    rpc.balances = {}
    rpc.get_balance = AsyncMock(side_effect=lambda address: rpc.balances.get(address, PLATFORM_BALANCE))
    rpc.get_parsed_token_accounts_by_owner = AsyncMock(return_value=[])
    rpc.simulate_transaction = AsyncMock(return_value={"err": None, "logs": ["Program log: ok"]})
    rpc.send_transaction = AsyncMock(return_value="5igSig1111111111111111111111111111")
    rpc.get_signature_status = AsyncMock(return_value={"confirmationStatus": "finalized", "err": None})
    rpc.is_blockhash_valid = AsyncMock(return_value=False)
    return rpc


@pytest.fixture
def mixing_client():
    """Mock mixing collaborator; reports nothing mixed until told otherwise."""
    client = AsyncMock()
    client.deposit = AsyncMock(return_value=DepositReceipt(deposit_reference="dep-1", deposit_address="DepositAddr111"))
    client.withdraw = AsyncMock(return_value={"ok": True})
    client.balance = AsyncMock(return_value=0)
    return client


@pytest.fixture
def mixing(mixing_client):
    return MixingAdapter(mixing_client)


@pytest.fixture
def mock_venue():
    """Mock venue adapter building real unsigned transactions for the requested signers."""
    venue = AsyncMock()
    venue.upload_metadata = AsyncMock(return_value="https://ipfs.example/meta.json")
    venue.build_create_transaction = AsyncMock(
        side_effect=lambda **kw: build_unsigned_tx(kw["payer"], kw["mint"])
    )
    venue.build_sell_transaction = AsyncMock(side_effect=lambda **kw: build_unsigned_tx(kw["public_key"]))
    venue.build_collect_fee_transaction = AsyncMock(
        side_effect=lambda **kw: build_unsigned_tx(kw["public_key"])
    )
    venue.get_created_coins = AsyncMock(return_value=[])
    return venue


@pytest.fixture
def executor(mock_rpc, config):
    return TransactionExecutor(
        mock_rpc,
        finality_timeout=config.finality_timeout_seconds,
        poll_interval=config.finality_poll_seconds,
    )


@pytest.fixture
def orchestrator(ledger, wallets, vault, mixing, mock_venue, executor, mock_rpc, config):
    """Orchestrator over in-memory stores and mocked network collaborators."""
    return LaunchOrchestrator(
        ledger=ledger,
        wallets=wallets,
        vault=vault,
        mixing=mixing,
        venue=mock_venue,
        executor=executor,
        rpc=mock_rpc,
        config=config,
    )
