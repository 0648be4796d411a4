"""
Transaction Executor - sign, simulate, submit and wait for finality.

Flow:
    unsigned bytes -> required signers -> sign -> simulate -> send -> finalized

A failed simulation is never submitted. Nothing here retries a submission:
resending a signed transaction risks double execution, so any retry policy
belongs to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

import backoff
from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .errors import (
    ConfirmationTimeoutError,
    InvalidTransactionError,
    NoMatchingSignerError,
    SendFailedError,
    SimulationFailedError,
)
from .rpc import RpcError

logger = logging.getLogger(__name__)

FINALIZED = "finalized"


class RpcClient(Protocol):
    """Protocol for the Solana RPC calls the executor needs."""
    async def simulate_transaction(self, tx_bytes: bytes, sig_verify: bool = True) -> dict: ...
    async def send_transaction(self, tx_bytes: bytes, skip_preflight: bool = False) -> str: ...
    async def get_signature_status(self, signature: str) -> Optional[dict]: ...


@dataclass
class ExecutionReceipt:
    """A finalized transaction."""

    signature: str
    fee_payer: str
    signed_by: List[str] = field(default_factory=list)
    simulation_logs: List[str] = field(default_factory=list)


def required_signers(tx: VersionedTransaction) -> List[str]:
    """Signer addresses from the message header, fee payer first."""
    message = tx.message
    count = message.header.num_required_signatures
    return [str(key) for key in message.account_keys[:count]]


def sign_with(tx: VersionedTransaction, signers: Sequence[Keypair]) -> VersionedTransaction:
    """
    Add signatures from ``signers`` at their slots, keeping any existing ones.
    """
    message = tx.message
    required = required_signers(tx)
    payload = to_bytes_versioned(message)

    signatures = list(tx.signatures)
    signatures += [Signature.default()] * (len(required) - len(signatures))

    by_address: Dict[str, Keypair] = {str(kp.pubkey()): kp for kp in signers}
    for index, address in enumerate(required):
        kp = by_address.get(address)
        if kp is not None:
            signatures[index] = kp.sign_message(payload)

    return VersionedTransaction.populate(message, signatures)


def _is_settled(status: Optional[dict]) -> bool:
    if not status:
        return False
    return bool(status.get("err")) or status.get("confirmationStatus") == FINALIZED


class TransactionExecutor:
    """
    Executes venue-built transactions with server-held keys.

    Usage:
        executor = TransactionExecutor(rpc)
        receipt = await executor.execute(raw_tx, [launch_kp, mint_kp])
    """

    def __init__(
        self,
        rpc_client: RpcClient,
        finality_timeout: float = 90.0,
        poll_interval: float = 2.0,
    ):
        """
        Args:
            rpc_client: Solana RPC client
            finality_timeout: Seconds to wait for finalized commitment
            poll_interval: Seconds between status polls
        """
        self.rpc = rpc_client
        self.finality_timeout = finality_timeout
        self.poll_interval = poll_interval

    def prepare(self, raw_tx: bytes, candidates: Sequence[Keypair]) -> VersionedTransaction:
        """
        Parse and sign ``raw_tx`` with exactly the candidates it requires.

        Raises:
            InvalidTransactionError: ``raw_tx`` does not deserialize
            NoMatchingSignerError: no candidate is a required signer, or a
                required signer has no candidate key
        """
        try:
            tx = VersionedTransaction.from_bytes(bytes(raw_tx))
        except Exception as e:
            # solders raises its own serde error types here
            raise InvalidTransactionError(f"Malformed transaction bytes: {e}", size=len(raw_tx)) from e
        required = required_signers(tx)
        have = [str(kp.pubkey()) for kp in candidates]

        signers = [kp for kp in candidates if str(kp.pubkey()) in required]
        missing = [address for address in required if address not in have]

        if not signers or missing:
            logger.warning(f"No matching signer set: required={required} have={have}")
            raise NoMatchingSignerError(required=required, candidates=have, missing=missing)

        return sign_with(tx, signers)

    async def simulate(self, tx: VersionedTransaction) -> List[str]:
        """
        Preflight the signed transaction.

        Returns:
            Simulation log lines

        Raises:
            SimulationFailedError: err reported, or the node could not simulate
        """
        raw = bytes(tx)
        try:
            result = await self.rpc.simulate_transaction(raw, sig_verify=True)
        except RpcError as e:
            # Retry without signature checks only to recover diagnostic logs
            logs: List[str] = e.logs
            details = None
            try:
                fallback = await self.rpc.simulate_transaction(raw, sig_verify=False)
                logs = fallback.get("logs") or logs
                details = fallback.get("err")
            except RpcError:
                pass
            raise SimulationFailedError(str(e), logs=logs, details=details) from e

        logs = list(result.get("logs") or [])
        if result.get("err"):
            logger.warning(f"Simulation failed: {result['err']}")
            raise SimulationFailedError(
                f"Simulation error: {result['err']}",
                logs=logs,
                details=result["err"],
            )
        return logs

    async def submit(self, tx: VersionedTransaction) -> str:
        try:
            return await self.rpc.send_transaction(bytes(tx), skip_preflight=False)
        except RpcError as e:
            logger.error(f"Transaction send failed: {e}")
            raise SendFailedError(str(e), logs=e.logs) from e

    async def wait_for_finality(self, signature: str, blockhash: Optional[str] = None) -> dict:
        """
        Poll until the signature is finalized or fails on chain.

        Raises:
            SendFailedError: the transaction landed with an error
            ConfirmationTimeoutError: not settled within finality_timeout
        """
        @backoff.on_predicate(
            backoff.constant,
            predicate=lambda status: not _is_settled(status),
            interval=self.poll_interval,
            max_time=self.finality_timeout,
            jitter=None,
        )
        async def poll() -> Optional[dict]:
            try:
                return await self.rpc.get_signature_status(signature)
            except RpcError as e:
                logger.debug(f"Status poll failed for {signature[:16]}...: {e}")
                return None

        status = await poll()
        if not _is_settled(status):
            raise ConfirmationTimeoutError(signature, blockhash=blockhash)
        if status.get("err"):
            raise SendFailedError(
                f"Transaction failed on chain: {status['err']}",
                signature=signature,
                details=status["err"],
            )
        return status

    async def execute(self, raw_tx: bytes, candidates: Sequence[Keypair]) -> ExecutionReceipt:
        """Sign, simulate, submit and wait for finality."""
        tx = self.prepare(raw_tx, candidates)
        required = required_signers(tx)
        signed_by = [str(kp.pubkey()) for kp in candidates if str(kp.pubkey()) in required]

        logs = await self.simulate(tx)
        signature = await self.submit(tx)
        logger.info(f"Submitted {signature[:16]}..., waiting for finality")

        await self.wait_for_finality(signature, blockhash=str(tx.message.recent_blockhash))
        logger.info(f"✅ Finalized {signature[:16]}...")

        return ExecutionReceipt(
            signature=signature,
            fee_payer=required[0],
            signed_by=signed_by,
            simulation_logs=logs,
        )
