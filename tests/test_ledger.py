"""Tests for the launch ledger: status machine, records, stores and wallets."""

import random
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair

from execution.key_manager import AESKeyManager
from ledger.models import LaunchMetadata, LaunchRecord
from ledger.status import (
    LaunchStatus,
    MixingStatus,
    at_least,
    can_transition,
    is_error,
    reconcile_status,
    status_rank,
)
from ledger.store import RecordLockedError, apply_partial
from ledger.wallets import InMemoryWalletStore, PlatformWalletNotInitialized, RedisWalletStore

OWNER = "user-1"
ALL_STATUSES = [s.value for s in LaunchStatus]


def make_record(vault, **kwargs) -> LaunchRecord:
    address, secret = vault.generate_keypair()
    values = dict(
        owner_id=OWNER,
        requested_amount=100_000_000,
        platform_address="Platform111",
        launch_address=address,
        launch_secret_encrypted=secret,
    )
    values.update(kwargs)
    return LaunchRecord(**values)


# ============================================================================
# Unit Tests - Status machine
# ============================================================================

class TestStatusMachine:
    """Tests for forward-only status progression."""

    @pytest.mark.parametrize("current,new", [
        ("deposit_pending", "ok"),
        ("deposit_pending", "withdrawing"),
        ("mixed", "ready"),
        ("withdrawing", "withdrawn"),
        ("withdrawn", "launched"),
        ("launched", "sold"),
        ("sold", "claimed_and_returned"),
        ("withdrawing", "withdraw_error"),
        ("withdraw_error", "withdrawing"),
        ("withdraw_error", "withdrawn"),
        ("deposit_error", "deposit_pending"),
        (None, "deposit_pending"),
    ])
    def test_allowed(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize("current,new", [
        ("ok", "deposit_pending"),
        ("withdrawn", "withdrawing"),
        ("launched", "withdrawn"),
        ("sold", "launched"),
        ("claimed_and_returned", "withdraw_error"),
        ("withdrawn", "withdraw_error"),
        ("withdrawn", "deposit_error"),
        ("ok", "deposit_error"),
        ("withdraw_error", "deposit_pending"),
        ("withdraw_error", "deposit_error"),
    ])
    def test_rejected(self, current, new):
        assert not can_transition(current, new)

    def test_unknown_collaborator_status_is_mixing_tier(self):
        assert status_rank("processing") == status_rank("mixed")
        assert can_transition("deposit_pending", "processing")
        assert not can_transition("withdrawn", "processing")

    def test_at_least(self):
        assert at_least("withdrawn", LaunchStatus.WITHDRAWING)
        assert at_least("launched", LaunchStatus.WITHDRAWN)
        assert not at_least("withdraw_error", LaunchStatus.WITHDRAWING)
        assert not at_least("ok", LaunchStatus.WITHDRAWN)

    def test_random_walk_is_forward_only(self):
        """Only allowed moves applied: non-error ranks never decrease, terminal stays terminal."""
        rng = random.Random(2024)
        for _ in range(200):
            status = "deposit_pending"
            best = 0
            for _ in range(30):
                proposal = rng.choice(ALL_STATUSES + ["processing", "weird"])
                if not can_transition(status, proposal):
                    continue
                if status_rank(status) >= status_rank("sold"):
                    assert not is_error(proposal)
                status = proposal
                if not is_error(status):
                    assert status_rank(status) >= best
                    best = status_rank(status)


class TestReconcile:
    """Tests for interpreting a mixing poll."""

    def test_ready_statuses(self):
        for reported in ("mixed", "ready", "complete", "ok", "OK"):
            result = reconcile_status("deposit_pending", "deposit_pending", reported)
            assert result.ready is True
            assert result.changed is False

    def test_new_pending_status_is_change(self):
        result = reconcile_status("deposit_pending", "deposit_pending", "processing")
        assert result.ready is False
        assert result.changed is True
        assert result.status == "processing"

    def test_same_status_is_no_change(self):
        result = reconcile_status("deposit_pending", "deposit_pending", "deposit_pending")
        assert result.changed is False

    def test_never_regresses(self):
        result = reconcile_status("withdrawn", "withdrawn", "deposit_pending")
        assert result.changed is False

    def test_missing_report_keeps_overall(self):
        result = reconcile_status(None, "deposit_pending", None)
        assert result.reported == MixingStatus.UNKNOWN
        assert result.status == "deposit_pending"

    def test_parse(self):
        assert MixingStatus.parse(" Mixed ") == MixingStatus.MIXED
        assert MixingStatus.parse("whatever") == MixingStatus.UNKNOWN
        assert MixingStatus.parse(None) == MixingStatus.UNKNOWN


# ============================================================================
# Unit Tests - Records
# ============================================================================

class TestLaunchRecord:
    """Tests for the launch record model."""

    def test_keypair_set_together(self, vault):
        with pytest.raises(ValueError):
            LaunchRecord(owner_id=OWNER, requested_amount=1, platform_address="P", launch_address="X")

    def test_public_dict_hides_secret(self, vault):
        record = make_record(vault)

        public = record.to_public_dict()

        assert "launch_secret_encrypted" not in public
        assert public["launch_address"] == record.launch_address

    def test_round_trip_ignores_unknown_keys(self, vault):
        record = make_record(vault, metadata=LaunchMetadata(name="N", ticker="T"))
        data = record.to_dict()
        data["legacy_field"] = 1
        data["trade"]["legacy"] = True

        restored = LaunchRecord.from_dict(data)

        assert restored == record

    def test_missing_metadata_fields(self):
        meta = LaunchMetadata(name="N", ticker="T")
        assert meta.missing_fields() == ["description", "image_url"]


class TestApplyPartial:
    """Tests for merging partial updates."""

    def test_nested_merge_and_version(self, vault):
        record = make_record(vault)

        updated = apply_partial(record, {"trade": {"status": "launched"}, "overall_status": "launched"})

        assert updated.trade.status == "launched"
        assert updated.trade.last_sell_signature is None
        assert updated.overall_status == "launched"
        assert updated.version == record.version + 1
        assert updated.updated_at >= record.updated_at

    def test_identity_and_keypair_immutable(self, vault):
        record = make_record(vault)

        updated = apply_partial(record, {
            "id": "other",
            "owner_id": "intruder",
            "launch_address": "Replaced",
            "launch_secret_encrypted": "Replaced",
        })

        assert updated.id == record.id
        assert updated.owner_id == OWNER
        assert updated.launch_address == record.launch_address
        assert updated.launch_secret_encrypted == record.launch_secret_encrypted

    def test_mint_write_once(self, vault):
        record = apply_partial(make_record(vault), {"trade": {"mint_address": "MintA"}})

        updated = apply_partial(record, {"trade": {"mint_address": "MintB"}})

        assert updated.trade.mint_address == "MintA"


# ============================================================================
# Unit Tests - InMemoryLedgerStore
# ============================================================================

class TestInMemoryLedgerStore:
    """Tests for the in-process ledger."""

    @pytest.mark.asyncio
    async def test_put_get_list(self, ledger, vault):
        a, b = make_record(vault), make_record(vault)
        await ledger.put(a)
        await ledger.put(b)
        await ledger.put(make_record(vault, owner_id="someone-else"))

        assert await ledger.get(a.id) == a
        assert {r.id for r in await ledger.list_owner(OWNER)} == {a.id, b.id}
        assert await ledger.get("missing") is None

    @pytest.mark.asyncio
    async def test_update_missing(self, ledger):
        assert await ledger.update_fields("missing", {"overall_status": "ok"}) is None

    @pytest.mark.asyncio
    async def test_compare_and_set(self, ledger, vault):
        record = make_record(vault)
        await ledger.put(record)

        stale = await ledger.compare_and_set_status(record.id, expected="ok", new="withdrawing")
        assert stale is None

        updated = await ledger.compare_and_set_status(
            record.id, expected="deposit_pending", new="withdrawing", partial={"mixing": {"status": "ok"}}
        )
        assert updated.overall_status == "withdrawing"
        assert updated.mixing.status == "ok"
        assert (await ledger.get(record.id)).overall_status == "withdrawing"

    @pytest.mark.asyncio
    async def test_lock_is_exclusive(self, ledger):
        async with ledger.lock("launch-1"):
            with pytest.raises(RecordLockedError):
                async with ledger.lock("launch-1"):
                    pass
            async with ledger.lock("launch-2"):
                pass

        async with ledger.lock("launch-1"):
            pass


# ============================================================================
# Unit Tests - Wallet stores
# ============================================================================

class TestWalletStore:
    """Tests for custodial platform wallets."""

    @pytest.mark.asyncio
    async def test_get_or_create_is_stable(self, wallets):
        first = await wallets.get_or_create(OWNER)
        second = await wallets.get_or_create(OWNER)

        assert first == second

    @pytest.mark.asyncio
    async def test_get_missing(self, wallets):
        with pytest.raises(PlatformWalletNotInitialized):
            await wallets.get(OWNER)

    @pytest.mark.asyncio
    async def test_secret_matches_address(self, wallets, vault):
        wallet = await wallets.get_or_create(OWNER)

        secret = await wallets.get_secret(OWNER)

        assert str(Keypair.from_base58_string(secret).pubkey()) == wallet.address

    @pytest.mark.asyncio
    async def test_login_wallet_address_is_rotated(self, vault):
        """An address equal to the owner id carries no server-held secret."""
        store = InMemoryWalletStore(vault)
        store._values[f"user:{OWNER}:platformWallet"] = OWNER
        store._values[f"user:{OWNER}:platformWalletEnc"] = vault.encrypt_secret("stale")

        wallet = await store.get_or_create(OWNER)

        assert wallet.address != OWNER

    @pytest.mark.asyncio
    async def test_redis_store_keys(self):
        vault = AESKeyManager("redis-wallet-test-passphrase")
        client = AsyncMock()
        client.mget = AsyncMock(return_value=[None, None])
        store = RedisWalletStore(client, vault)

        wallet = await store.get_or_create(OWNER)

        client.mget.assert_awaited_once_with(f"user:{OWNER}:platformWallet", f"user:{OWNER}:platformWalletEnc")
        written = client.mset.await_args.args[0]
        assert written[f"user:{OWNER}:platformWallet"] == wallet.address
        assert vault.decrypt_secret(written[f"user:{OWNER}:platformWalletEnc"])
