"""Execution Layer - Launch orchestration, mixing, venue transactions and signing."""

from .config import LaunchConfig, DEFAULT_CONFIG, LAMPORTS_PER_SOL
from .errors import (
    LaunchError,
    ValidationError,
    NotFoundError,
    ConflictError,
    MixingError,
    PortalError,
    RpcFailedError,
    TransactionError,
    NoMatchingSignerError,
    SimulationFailedError,
    SendFailedError,
    ConfirmationTimeoutError,
    InvalidTransactionError,
)
from .executor import TransactionExecutor, ExecutionReceipt
from .key_manager import AESKeyManager, KeyEncryptionError, create_key_manager, generate_encryption_secret
from .mixing import MixingAdapter, HttpMixingClient, DepositOutcome, DepositReceipt
from .orchestrator import LaunchOrchestrator, compute_buy_lamports, compute_sell_amount
from .pump_portal import PumpPortalClient
from .rpc import SolanaRpcClient, RpcError
from .token_balance import TokenBalance, get_token_balance

__all__ = [
    "LaunchConfig",
    "DEFAULT_CONFIG",
    "LAMPORTS_PER_SOL",
    "LaunchError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "MixingError",
    "PortalError",
    "RpcFailedError",
    "TransactionError",
    "NoMatchingSignerError",
    "SimulationFailedError",
    "SendFailedError",
    "ConfirmationTimeoutError",
    "InvalidTransactionError",
    "TransactionExecutor",
    "ExecutionReceipt",
    "AESKeyManager",
    "KeyEncryptionError",
    "create_key_manager",
    "generate_encryption_secret",
    "MixingAdapter",
    "HttpMixingClient",
    "DepositOutcome",
    "DepositReceipt",
    "LaunchOrchestrator",
    "compute_buy_lamports",
    "compute_sell_amount",
    "PumpPortalClient",
    "SolanaRpcClient",
    "RpcError",
    "TokenBalance",
    "get_token_balance",
]
