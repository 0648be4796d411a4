"""Tests for the Transaction Executor module."""

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from conftest import build_unsigned_tx
from execution.errors import (
    ConfirmationTimeoutError,
    InvalidTransactionError,
    NoMatchingSignerError,
    SendFailedError,
    SimulationFailedError,
)
from execution.executor import TransactionExecutor, required_signers, sign_with
from execution.rpc import RpcError

SIGNATURE = "5igSig1111111111111111111111111111"


def verify_all(raw: bytes) -> bool:
    tx = VersionedTransaction.from_bytes(raw)
    payload = to_bytes_versioned(tx.message)
    keys = tx.message.account_keys
    return all(sig.verify(keys[i], payload) for i, sig in enumerate(tx.signatures))


# ============================================================================
# Unit Tests - Signer selection
# ============================================================================

class TestSigners:
    """Tests for required-signer extraction and signing."""

    def test_required_signers_fee_payer_first(self):
        payer, mint = Keypair(), Keypair()
        tx = VersionedTransaction.from_bytes(build_unsigned_tx(payer.pubkey(), mint.pubkey()))

        assert required_signers(tx) == [str(payer.pubkey()), str(mint.pubkey())]

    def test_sign_with_places_signatures_by_address(self):
        """Candidate order does not matter; each key signs its own slot."""
        payer, mint = Keypair(), Keypair()
        tx = VersionedTransaction.from_bytes(build_unsigned_tx(payer.pubkey(), mint.pubkey()))

        signed = sign_with(tx, [mint, payer])

        assert verify_all(bytes(signed))


# ============================================================================
# Unit Tests - TransactionExecutor
# ============================================================================

class TestTransactionExecutor:
    """Tests for the sign/simulate/submit/confirm pipeline."""

    @pytest.mark.asyncio
    async def test_execute_success(self, executor, mock_rpc):
        payer, mint = Keypair(), Keypair()
        raw = build_unsigned_tx(payer.pubkey(), mint.pubkey())

        receipt = await executor.execute(raw, [payer, mint])

        assert receipt.signature == SIGNATURE
        assert receipt.fee_payer == str(payer.pubkey())
        assert set(receipt.signed_by) == {str(payer.pubkey()), str(mint.pubkey())}
        assert receipt.simulation_logs == ["Program log: ok"]

        sent = mock_rpc.send_transaction.await_args.args[0]
        assert verify_all(sent)

    @pytest.mark.asyncio
    async def test_extra_candidates_ignored(self, executor, mock_rpc):
        payer, unrelated = Keypair(), Keypair()

        receipt = await executor.execute(build_unsigned_tx(payer.pubkey()), [unrelated, payer])

        assert receipt.signed_by == [str(payer.pubkey())]

    @pytest.mark.asyncio
    async def test_missing_required_signer(self, executor, mock_rpc):
        """Required {A, B} with only A available: never simulated or sent."""
        a, b = Keypair(), Keypair()

        with pytest.raises(NoMatchingSignerError) as exc:
            await executor.execute(build_unsigned_tx(a.pubkey(), b.pubkey()), [a])

        assert exc.value.code == "no_matching_signer"
        assert exc.value.missing == [str(b.pubkey())]
        mock_rpc.simulate_transaction.assert_not_awaited()
        mock_rpc.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_candidate_matches(self, executor, mock_rpc):
        with pytest.raises(NoMatchingSignerError) as exc:
            await executor.execute(build_unsigned_tx(Pubkey.new_unique()), [Keypair()])

        assert len(exc.value.required) == 1
        mock_rpc.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_simulation_error_not_sent(self, executor, mock_rpc):
        payer = Keypair()
        mock_rpc.simulate_transaction.return_value = {
            "err": {"InstructionError": [2, {"Custom": 1}]},
            "logs": ["Program log: insufficient funds"],
        }

        with pytest.raises(SimulationFailedError) as exc:
            await executor.execute(build_unsigned_tx(payer.pubkey()), [payer])

        assert exc.value.logs == ["Program log: insufficient funds"]
        assert exc.value.details["details"] == {"InstructionError": [2, {"Custom": 1}]}
        mock_rpc.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_simulation_rpc_error_recovers_logs(self, executor, mock_rpc):
        """When the node refuses the signed simulation, logs come from an unverified one."""
        payer = Keypair()
        mock_rpc.simulate_transaction.side_effect = [
            RpcError("Transaction signature verification failure", code=-32003),
            {"err": "AccountNotFound", "logs": ["Program log: fallback"]},
        ]

        with pytest.raises(SimulationFailedError) as exc:
            await executor.execute(build_unsigned_tx(payer.pubkey()), [payer])

        assert exc.value.logs == ["Program log: fallback"]
        assert mock_rpc.simulate_transaction.await_args_list[1].kwargs == {"sig_verify": False}
        mock_rpc.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure(self, executor, mock_rpc):
        payer = Keypair()
        mock_rpc.send_transaction.side_effect = RpcError(
            "Blockhash not found", data={"logs": ["Program log: stale"]}
        )

        with pytest.raises(SendFailedError) as exc:
            await executor.execute(build_unsigned_tx(payer.pubkey()), [payer])

        assert exc.value.logs == ["Program log: stale"]
        mock_rpc.send_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_on_chain(self, executor, mock_rpc):
        payer = Keypair()
        mock_rpc.get_signature_status.return_value = {
            "confirmationStatus": "finalized",
            "err": {"InstructionError": [0, "ProgramFailedToComplete"]},
        }

        with pytest.raises(SendFailedError) as exc:
            await executor.execute(build_unsigned_tx(payer.pubkey()), [payer])

        assert exc.value.details["signature"] == SIGNATURE

    @pytest.mark.asyncio
    async def test_confirmation_timeout(self, executor, mock_rpc):
        payer = Keypair()
        mock_rpc.get_signature_status.return_value = {"confirmationStatus": "processed", "err": None}

        with pytest.raises(ConfirmationTimeoutError) as exc:
            await executor.execute(build_unsigned_tx(payer.pubkey()), [payer])

        assert exc.value.signature == SIGNATURE
        assert mock_rpc.send_transaction.await_count == 1

    @pytest.mark.asyncio
    async def test_status_poll_errors_are_retried(self, mock_rpc):
        executor = TransactionExecutor(mock_rpc, finality_timeout=2.0, poll_interval=0.01)
        payer = Keypair()
        mock_rpc.get_signature_status.side_effect = [
            RpcError("rate limited"),
            None,
            {"confirmationStatus": "finalized", "err": None},
        ]

        receipt = await executor.execute(build_unsigned_tx(payer.pubkey()), [payer])

        assert receipt.signature == SIGNATURE
        assert mock_rpc.get_signature_status.await_count == 3

    @pytest.mark.asyncio
    async def test_timeout_carries_blockhash(self, executor, mock_rpc):
        payer = Keypair()
        mock_rpc.get_signature_status.return_value = None

        with pytest.raises(ConfirmationTimeoutError) as exc:
            await executor.execute(build_unsigned_tx(payer.pubkey()), [payer])

        assert exc.value.blockhash == str(Hash.default())

    @pytest.mark.parametrize("raw", [b"", b"\x01\x02\x03", b"<html>oops</html>"])
    def test_malformed_bytes(self, executor, raw):
        with pytest.raises(InvalidTransactionError) as exc:
            executor.prepare(raw, [Keypair()])

        assert exc.value.code == "invalid_transaction"
