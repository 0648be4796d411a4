"""Ledger Layer - Launch records, status machine and custodial wallets."""

from .models import LaunchRecord, LaunchMetadata, MixingInfo, TradeInfo
from .status import (
    LaunchStatus,
    MixingStatus,
    Reconciliation,
    can_transition,
    reconcile_status,
)
from .store import (
    LedgerStore,
    RedisLedgerStore,
    InMemoryLedgerStore,
    RecordLockedError,
)
from .wallets import (
    PlatformWallet,
    PlatformWalletNotInitialized,
    RedisWalletStore,
    InMemoryWalletStore,
)

__all__ = [
    "LaunchRecord",
    "LaunchMetadata",
    "MixingInfo",
    "TradeInfo",
    "LaunchStatus",
    "MixingStatus",
    "Reconciliation",
    "can_transition",
    "reconcile_status",
    "LedgerStore",
    "RedisLedgerStore",
    "InMemoryLedgerStore",
    "RecordLockedError",
    "PlatformWallet",
    "PlatformWalletNotInitialized",
    "RedisWalletStore",
    "InMemoryWalletStore",
]
