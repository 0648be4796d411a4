"""Configuration for the launch execution layer."""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

LAMPORTS_PER_SOL = 1_000_000_000


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


@dataclass
class LaunchConfig:
    """Runtime settings and fixed amounts for the launch lifecycle."""

    # Solana RPC
    rpc_url: str = field(
        default_factory=lambda: os.getenv(
            "SOLANA_RPC_URL",
            "https://api.mainnet-beta.solana.com"
        )
    )

    # Server-wide passphrase for secrets at rest
    encryption_secret: str = field(
        default_factory=lambda: os.getenv("KEY_ENCRYPTION_SECRET", "")
    )

    # Ledger
    redis_url: str = field(
        default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )
    record_lock_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("RECORD_LOCK_TIMEOUT_SECONDS", "180"))
    )

    # Mixing gateway
    mixing_api_url: str = field(
        default_factory=lambda: os.getenv("MIXING_API_URL", "http://localhost:8700")
    )
    mixing_api_key: str = field(default_factory=lambda: os.getenv("MIXING_API_KEY", ""))

    # Trading venue (Pump.fun portal)
    portal_url: str = field(
        default_factory=lambda: os.getenv("PUMPFUN_PORTAL_URL", "https://pumpportal.fun/api")
    )
    portal_api_key: str = field(default_factory=lambda: os.getenv("PUMPFUN_PORTAL_API_KEY", ""))
    ipfs_url: str = field(default_factory=lambda: os.getenv("PUMPFUN_IPFS_URL", ""))
    frontend_url: str = field(
        default_factory=lambda: os.getenv("PUMPFUN_FRONTEND_URL", "https://frontend-api-v3.pump.fun")
    )
    priority_fee_sol: Optional[float] = field(
        default_factory=lambda: _optional_float("PUMPFUN_PRIORITY_FEE_SOL")
    )

    # Finality polling
    finality_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("FINALITY_TIMEOUT_SECONDS", "90"))
    )
    finality_poll_seconds: float = 2.0

    # Amounts (lamports)
    min_launch_lamports: int = 50_000_000       # 0.05 SOL
    create_cost_lamports: int = 50_000_000      # typical create + rent
    create_reserve_lamports: int = 5_000_000    # left in launch wallet after create
    safety_buffer_lamports: int = 1_000_000
    return_reserve_lamports: int = 6_000_000    # kept back for fees/rent on return

    # Deposit step-down
    deposit_max_attempts: int = 3
    deposit_step_down: float = 0.9
    deposit_floor_lamports: int = 1_000_000     # 0.001 SOL

    # Venue trade parameters
    create_slippage_bps: int = 1000
    sell_slippage_pct: int = 10
    create_pool: str = "pump"
    sell_pool: str = "auto"
    default_sell_priority_fee_sol: float = 0.00001
    default_claim_priority_fee_sol: float = 0.000001

    @property
    def create_slippage_pct(self) -> int:
        """Portal expects whole percent; 1000 bps -> 10."""
        return max(1, self.create_slippage_bps // 100)

    @property
    def create_priority_fee_sol(self) -> float:
        return self.priority_fee_sol or self.default_sell_priority_fee_sol

    @property
    def sell_priority_fee_sol(self) -> float:
        return self.priority_fee_sol or self.default_sell_priority_fee_sol

    @property
    def claim_priority_fee_sol(self) -> float:
        return self.priority_fee_sol or self.default_claim_priority_fee_sol


# Default configuration
DEFAULT_CONFIG = LaunchConfig()
