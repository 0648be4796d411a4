"""Launch record model - the durable unit of orchestration state."""

import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

from .status import LaunchStatus, MixingStatus


def now_ms() -> int:
    return int(time.time() * 1000)


def _known(cls, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass
class LaunchMetadata:
    """User-supplied display fields for the token."""

    name: Optional[str] = None
    ticker: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    banner_url: Optional[str] = None
    twitter: Optional[str] = None
    telegram: Optional[str] = None
    website: Optional[str] = None
    metadata_uri: Optional[str] = None  # set once uploaded to the venue

    REQUIRED = ("name", "ticker", "description", "image_url")

    def missing_fields(self) -> List[str]:
        return [name for name in self.REQUIRED if not getattr(self, name)]

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LaunchMetadata":
        return cls(**_known(cls, data))


@dataclass
class MixingInfo:
    """Mixing collaborator deposit bookkeeping."""

    deposit_reference: Optional[str] = None
    deposit_address: Optional[str] = None
    status: str = MixingStatus.DEPOSIT_PENDING.value

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MixingInfo":
        return cls(**_known(cls, data))


@dataclass
class TradeInfo:
    """Venue-side outcome of the launch."""

    tx_signature: Optional[str] = None
    mint_address: Optional[str] = None
    status: str = "pending"
    pending_mint: Optional[str] = None  # mint of a submitted but unconfirmed create
    pending_blockhash: Optional[str] = None  # blockhash that create was built on
    error: Optional[str] = None
    last_sell_signature: Optional[str] = None
    last_claim_signature: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TradeInfo":
        return cls(**_known(cls, data))


@dataclass
class LaunchRecord:
    """
    One launch, stored as a single JSON document keyed by ``id``.

    ``launch_secret_encrypted`` exists iff ``launch_address`` does, and
    both are written once at creation.
    """

    owner_id: str
    requested_amount: int
    platform_address: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    launch_address: Optional[str] = None
    launch_secret_encrypted: Optional[str] = None
    mixing: MixingInfo = field(default_factory=MixingInfo)
    trade: TradeInfo = field(default_factory=TradeInfo)
    metadata: LaunchMetadata = field(default_factory=LaunchMetadata)
    overall_status: str = LaunchStatus.DEPOSIT_PENDING.value
    version: int = 0
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    def __post_init__(self):
        if bool(self.launch_address) != bool(self.launch_secret_encrypted):
            raise ValueError("launch_address and launch_secret_encrypted must be set together")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_public_dict(self) -> Dict[str, Any]:
        """Record as returned to clients: never includes the encrypted secret."""
        data = self.to_dict()
        data.pop("launch_secret_encrypted", None)
        return data

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.overall_status,
            "metadata": asdict(self.metadata),
            "launch_address": self.launch_address,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LaunchRecord":
        values = _known(cls, data)
        values["mixing"] = MixingInfo.from_dict(data.get("mixing"))
        values["trade"] = TradeInfo.from_dict(data.get("trade"))
        values["metadata"] = LaunchMetadata.from_dict(data.get("metadata"))
        return cls(**values)
