"""Launch Orchestrator - Central hub driving a launch from deposit to settlement."""

from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union
import logging

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ledger.models import LaunchMetadata, LaunchRecord, MixingInfo
from ledger.status import (
    LaunchStatus,
    MixingStatus,
    Reconciliation,
    at_least,
    can_transition,
    reconcile_status,
)
from ledger.store import LedgerStore, RecordLockedError
from ledger.wallets import BaseWalletStore, PlatformWalletNotInitialized

from .config import DEFAULT_CONFIG, LAMPORTS_PER_SOL, LaunchConfig
from .errors import (
    ConfirmationTimeoutError,
    ConflictError,
    LaunchError,
    NotFoundError,
    RpcFailedError,
    ValidationError,
)
from .executor import TransactionExecutor
from .key_manager import AESKeyManager
from .mixing import MixingAdapter
from .rpc import RpcError
from .token_balance import TokenBalance, get_token_balance

logger = logging.getLogger(__name__)


@dataclass
class CreateLaunchResult:
    """Result of opening a launch."""

    launch_id: str
    deposit_address: Optional[str]
    launch_address: str
    status: str
    deposit_reference: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WithdrawResult:
    """Outcome of a withdraw request; ``withdrawn`` False is a status sync, not an error."""

    launch_id: str
    status: str
    withdrawn: bool = False
    changed: bool = False
    result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VenueLaunchResult:
    """Token created on the venue."""

    launch_id: str
    tx_signature: str
    mint_address: str
    buy_amount_sol: float
    metadata_uri: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SellResult:
    tx_signature: str
    mint_address: str
    sold_ui: Decimal
    balance_ui: Decimal
    percent: Decimal

    def to_dict(self) -> dict:
        return {
            "tx_signature": self.tx_signature,
            "mint_address": self.mint_address,
            "sold_ui": str(self.sold_ui),
            "balance_ui": str(self.balance_ui),
            "percent": str(self.percent),
        }


@dataclass
class ReturnResult:
    """Launch wallet funds routed back to the platform wallet through the mixer."""

    returned_lamports: int
    to: str
    balance_lamports: int
    attempts: List[int] = field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    claim_signature: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VenueScanResult:
    mint: Optional[str]
    coin: Optional[Dict[str, Any]] = None
    adopted: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class VenueClient(Protocol):
    """Protocol for the trading venue adapter."""
    async def upload_metadata(self, metadata: LaunchMetadata) -> str: ...
    async def build_create_transaction(
        self, payer: str, mint: str, metadata_uri: str, amount_sol: float,
        slippage: int, priority_fee: float, pool: str = "pump",
    ) -> bytes: ...
    async def build_sell_transaction(
        self, public_key: str, mint: str, amount: float,
        slippage: int, priority_fee: float, pool: str = "auto",
    ) -> bytes: ...
    async def build_collect_fee_transaction(self, public_key: str, priority_fee: float) -> bytes: ...
    async def get_created_coins(self, creator: str, limit: int = 10) -> List[Dict[str, Any]]: ...


class RpcClient(Protocol):
    """Protocol for the Solana reads the orchestrator makes directly."""
    async def get_balance(self, address: str) -> int: ...
    async def get_signature_status(self, signature: str) -> Optional[dict]: ...
    async def is_blockhash_valid(self, blockhash: str) -> bool: ...
    async def get_parsed_token_accounts_by_owner(
        self, owner: str, mint: Optional[str] = None, program_id: Optional[str] = None
    ) -> List[Dict[str, Any]]: ...


def compute_buy_lamports(balance_lamports: int, config: LaunchConfig = DEFAULT_CONFIG) -> int:
    """
    Initial buy for a venue create: balance minus create cost, reserve and buffer.

    A non-positive remainder means the token is created without an initial buy.
    """
    available = (
        balance_lamports
        - config.create_cost_lamports
        - config.create_reserve_lamports
        - config.safety_buffer_lamports
    )
    return max(0, available)


def validate_percent(percent: Union[int, float, str, Decimal]) -> Decimal:
    """Parse a sell percentage; must lie in (0, 100]."""
    if isinstance(percent, bool):
        raise ValidationError("percent must be a number", code="invalid_percent")
    try:
        value = Decimal(str(percent))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError("percent must be a number", code="invalid_percent") from e
    if not value.is_finite() or value <= 0 or value > 100:
        raise ValidationError("percent must be in (0, 100]", code="invalid_percent", percent=str(percent))
    return value


def compute_sell_amount(balance_ui: Decimal, percent: Decimal, decimals: Optional[int]) -> Decimal:
    """
    ``balance * percent / 100`` truncated to min(6, decimals) places.

    Truncation never rounds up, so the result can not exceed the balance.
    """
    precision = min(6, decimals if decimals is not None else 6)
    raw = max(Decimal("0"), balance_ui * percent / Decimal("100"))
    return raw.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_DOWN)


def _require_address(value: Optional[str], name: str) -> str:
    try:
        Pubkey.from_string(value or "")
    except ValueError as e:
        raise ValidationError(f"{name} is not a valid address", code="invalid_address", field=name) from e
    return value


class LaunchOrchestrator:
    """
    Drives every launch through its lifecycle.

    Flow:
        Create → (mixing) → Withdraw → CreateOnVenue → Sell* → ClaimAndReturn

    Every operation is one request: it loads the record, checks ownership,
    calls the collaborators it needs and writes the new state back. Any
    operation that may move funds or submit a transaction runs under the
    record's lease, so at most one such call is in flight per launch.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        wallets: BaseWalletStore,
        vault: AESKeyManager,
        mixing: MixingAdapter,
        venue: VenueClient,
        executor: TransactionExecutor,
        rpc: RpcClient,
        config: LaunchConfig = None,
    ):
        """
        Initialize the launch orchestrator.

        Args:
            ledger: Durable launch records
            wallets: Custodial platform wallets per principal
            vault: Encryption of wallet secrets at rest
            mixing: Mixing collaborator with deposit step-down
            venue: Trading venue transaction builder
            executor: Sign/simulate/submit/confirm pipeline
            rpc: Solana reads (balances, token accounts, signature status)
            config: Amounts, fees and venue parameters
        """
        self.ledger = ledger
        self.wallets = wallets
        self.vault = vault
        self.mixing = mixing
        self.venue = venue
        self.executor = executor
        self.rpc = rpc
        self.config = config or DEFAULT_CONFIG

    # ------------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------------

    async def _load(self, owner_id: str, launch_id: str) -> LaunchRecord:
        """Record owned by ``owner_id``; unknown and unowned are indistinguishable."""
        record = await self.ledger.get(launch_id)
        if record is None or record.owner_id != owner_id:
            raise NotFoundError()
        return record

    async def _reload(self, record: LaunchRecord) -> LaunchRecord:
        latest = await self.ledger.get(record.id)
        return latest or record

    @asynccontextmanager
    async def _exclusive(self, launch_id: str) -> AsyncIterator[None]:
        try:
            async with self.ledger.lock(launch_id):
                yield
        except RecordLockedError as e:
            raise ConflictError(
                "Another operation on this launch is in progress",
                launch_id=launch_id,
            ) from e

    async def _persist(
        self,
        record: LaunchRecord,
        status: Optional[str] = None,
        **partial: Any,
    ) -> LaunchRecord:
        """Write ``partial``; ``status`` is applied only if it does not regress the record."""
        changes = dict(partial)
        if status is not None:
            if can_transition(record.overall_status, status):
                changes["overall_status"] = status
            else:
                logger.warning(
                    f"Launch {record.id[:8]}...: refusing {record.overall_status} -> {status}"
                )
        if not changes:
            return record
        updated = await self.ledger.update_fields(record.id, changes)
        return updated or record

    @staticmethod
    def _require_launch_wallet(record: LaunchRecord) -> None:
        if not record.launch_address or not record.launch_secret_encrypted:
            raise ValidationError("No launch wallet", code="no_launch_wallet")

    def _launch_keypair(self, record: LaunchRecord) -> Keypair:
        return self.vault.load_keypair(record.launch_secret_encrypted)

    async def _platform_secret(self, owner_id: str) -> str:
        try:
            return await self.wallets.get_secret(owner_id)
        except PlatformWalletNotInitialized as e:
            raise ValidationError(str(e), code="platform_wallet_missing") from e

    async def _get_balance(self, address: str) -> int:
        try:
            return await self.rpc.get_balance(address)
        except RpcError as e:
            raise RpcFailedError(f"Balance lookup failed: {e}", address=address) from e

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _validate_amount(self, amount_lamports: Any) -> int:
        if isinstance(amount_lamports, bool) or not isinstance(amount_lamports, int):
            raise ValidationError("amount must be an integer number of lamports", code="invalid_amount")
        if amount_lamports <= 0:
            raise ValidationError("amount must be > 0", code="invalid_amount")
        if amount_lamports < self.config.min_launch_lamports:
            minimum_sol = self.config.min_launch_lamports / LAMPORTS_PER_SOL
            raise ValidationError(
                f"Minimum amount is {minimum_sol} SOL",
                code="invalid_amount",
                min_lamports=self.config.min_launch_lamports,
            )
        return amount_lamports

    async def create_launch(
        self,
        owner_id: str,
        amount_lamports: int,
        metadata: Union[LaunchMetadata, Dict[str, Any], None] = None,
    ) -> CreateLaunchResult:
        """
        Open a launch: deposit ``amount_lamports`` from the platform wallet into
        the mixer and allocate a fresh launch wallet.

        The withdraw to the launch wallet is attempted right away; a deposit
        that is not mixed yet simply leaves the record at ``deposit_pending``.

        Raises:
            ValidationError: bad amount, or the platform wallet is known to be short
            MixingError: the deposit was rejected (nothing is persisted)
        """
        amount = self._validate_amount(amount_lamports)
        meta = metadata if isinstance(metadata, LaunchMetadata) else LaunchMetadata.from_dict(metadata)

        wallet = await self.wallets.get_or_create(owner_id)

        balance: Optional[int] = None
        try:
            balance = await self.rpc.get_balance(wallet.address)
        except RpcError as e:
            logger.warning(f"Platform balance check failed for {wallet.address[:16]}..., continuing: {e}")

        if balance is not None and balance < amount:
            logger.warning(
                f"Platform wallet {wallet.address[:16]}... short: balance={balance} required={amount}"
            )
            raise ValidationError(
                "Platform wallet has insufficient funds to start the launch",
                code="insufficient_balance",
                balance_lamports=balance,
                required_lamports=amount,
                platform_address=wallet.address,
            )

        launch_address, launch_secret = self.vault.generate_keypair()

        owner_secret = self.vault.decrypt_secret(wallet.secret_encrypted)
        try:
            receipt = await self.mixing.deposit(owner_secret, amount)
        except LaunchError as e:
            raise e.with_stage("deposit", balance_lamports=balance)

        record = LaunchRecord(
            owner_id=owner_id,
            requested_amount=amount,
            platform_address=wallet.address,
            launch_address=launch_address,
            launch_secret_encrypted=launch_secret,
            mixing=MixingInfo(
                deposit_reference=receipt.deposit_reference,
                deposit_address=receipt.deposit_address,
            ),
            metadata=meta,
        )
        await self.ledger.put(record)
        logger.info(
            f"Launch {record.id[:8]}... opened for {owner_id[:16]} | "
            f"{amount / LAMPORTS_PER_SOL} SOL | launch wallet {launch_address[:16]}..."
        )

        status = record.overall_status
        try:
            outcome = await self.withdraw(owner_id, record.id)
            status = outcome.status
        except LaunchError as e:
            logger.warning(f"Immediate withdraw for {record.id[:8]}... failed: {e.code} {e.message}")
            status = (await self._reload(record)).overall_status

        return CreateLaunchResult(
            launch_id=record.id,
            deposit_address=receipt.deposit_address,
            launch_address=launch_address,
            status=status,
            deposit_reference=receipt.deposit_reference,
        )

    # ------------------------------------------------------------------
    # Withdraw
    # ------------------------------------------------------------------

    async def _query_mixing(self, record: LaunchRecord, owner_secret: str) -> Reconciliation:
        reported = await self.mixing.query_status(owner_secret, record.requested_amount)
        return reconcile_status(record.mixing.status, record.overall_status, reported.value)

    async def _sync_status(self, record: LaunchRecord, status: str) -> LaunchRecord:
        """Persist a polled mixing status, unless the record moved on meanwhile."""
        updated = await self.ledger.compare_and_set_status(
            record.id,
            expected=record.overall_status,
            new=status,
            partial={"mixing": {"status": status}},
        )
        if updated is None:
            return await self._reload(record)
        logger.info(f"Launch {record.id[:8]}... mixing status -> {status}")
        return updated

    async def withdraw(self, owner_id: str, launch_id: str) -> WithdrawResult:
        """
        Move the requested amount from the mixer to the launch wallet once mixed.

        Idempotent: a record already at ``withdrawing`` or beyond is returned
        unchanged. When the mixer is not ready this only syncs the cached status.

        Raises:
            NotFoundError: unknown or unowned launch
            ConflictError: another request holds the record
            MixingError(withdraw_failed): record moved to ``withdraw_error``
        """
        record = await self._load(owner_id, launch_id)
        self._require_launch_wallet(record)

        if at_least(record.overall_status, LaunchStatus.WITHDRAWING):
            return WithdrawResult(launch_id=launch_id, status=record.overall_status)

        async with self._exclusive(launch_id):
            record = await self._reload(record)
            if at_least(record.overall_status, LaunchStatus.WITHDRAWING):
                return WithdrawResult(launch_id=launch_id, status=record.overall_status)

            owner_secret = await self._platform_secret(owner_id)
            reconciliation = await self._query_mixing(record, owner_secret)

            if not reconciliation.ready:
                if reconciliation.changed:
                    record = await self._sync_status(record, reconciliation.status)
                    return WithdrawResult(launch_id=launch_id, status=record.overall_status, changed=True)
                return WithdrawResult(launch_id=launch_id, status=record.overall_status)

            return await self._attempt_withdraw(record, owner_secret, reconciliation)

    async def _mark_withdraw_error(self, record: LaunchRecord, unknown: bool = False) -> LaunchRecord:
        """Leave ``withdrawing``; ``unknown`` when the mixer may have executed the withdraw."""
        mixing_status = MixingStatus.UNKNOWN if unknown else MixingStatus.WITHDRAW_ERROR
        return await self._persist(
            record,
            status=LaunchStatus.WITHDRAW_ERROR.value,
            mixing={"status": mixing_status.value},
        )

    async def _attempt_withdraw(
        self,
        record: LaunchRecord,
        owner_secret: str,
        reconciliation: Reconciliation,
    ) -> WithdrawResult:
        claimed = await self.ledger.compare_and_set_status(
            record.id,
            expected=record.overall_status,
            new=LaunchStatus.WITHDRAWING.value,
            partial={"mixing": {"status": reconciliation.status}},
        )
        if claimed is None:
            raise ConflictError("Launch status changed concurrently", launch_id=record.id)

        logger.info(
            f"Withdrawing {record.requested_amount} lamports to launch wallet "
            f"{record.launch_address[:16]}... ({record.id[:8]}...)"
        )
        # Every failure leaves withdrawing. Retries re-poll the mixer balance first.
        try:
            result = await self.mixing.withdraw(owner_secret, record.requested_amount, record.launch_address)
        except LaunchError as e:
            unknown = bool(e.details.get("outcome_unknown"))
            await self._mark_withdraw_error(claimed, unknown=unknown)
            logger.error(f"Withdraw failed for {record.id[:8]}...: {e.message}")
            raise e.with_stage("withdraw")
        except Exception as e:
            await self._mark_withdraw_error(claimed, unknown=True)
            logger.exception(f"Withdraw for {record.id[:8]}... failed unexpectedly: {e!r}")
            raise

        await self._persist(
            claimed,
            status=LaunchStatus.WITHDRAWN.value,
            mixing={"status": MixingStatus.WITHDRAWN.value},
        )
        logger.info(f"✅ Launch {record.id[:8]}... withdrawn")
        return WithdrawResult(
            launch_id=record.id,
            status=LaunchStatus.WITHDRAWN.value,
            withdrawn=True,
            changed=True,
            result=result,
        )

    # ------------------------------------------------------------------
    # Venue: create
    # ------------------------------------------------------------------

    async def _resolve_unconfirmed_create(self, record: LaunchRecord) -> Optional[VenueLaunchResult]:
        """
        Settle a create whose finality was never observed.

        Returns a result if it finalized, None if it can be retried. An unseen
        signature only counts as dropped once its blockhash has expired.
        """
        signature = record.trade.tx_signature
        blockhash = record.trade.pending_blockhash
        try:
            status = await self.rpc.get_signature_status(signature)
            still_valid = status is None and blockhash is not None and await self.rpc.is_blockhash_valid(blockhash)
        except RpcError as e:
            raise RpcFailedError(f"Status lookup failed: {e}", signature=signature) from e

        if still_valid:
            raise ConflictError(
                "Earlier create transaction may still land",
                code="create_unconfirmed",
                signature=signature,
            )

        if status is None or status.get("err"):
            logger.warning(f"Earlier create {signature[:16]}... did not land, retrying")
            return None

        if status.get("confirmationStatus") != "finalized":
            raise ConflictError(
                "Earlier create transaction is not final yet",
                code="create_unconfirmed",
                signature=signature,
            )

        mint = record.trade.pending_mint
        await self._persist(
            record,
            status=LaunchStatus.LAUNCHED.value,
            trade={"mint_address": mint, "status": "launched", "error": None, "pending_blockhash": None},
        )
        return VenueLaunchResult(
            launch_id=record.id,
            tx_signature=signature,
            mint_address=mint,
            buy_amount_sol=0.0,
            metadata_uri=record.metadata.metadata_uri,
        )

    async def create_on_venue(self, owner_id: str, launch_id: str) -> VenueLaunchResult:
        """
        Create the token on the venue from the funded launch wallet.

        The launch wallet pays; whatever is left after the creation cost,
        reserve and buffer becomes the initial buy.

        Raises:
            ValidationError: not withdrawn yet, already launched, metadata incomplete
            PortalError / TransactionError: tagged ``stage="create"``; mint stays unset
        """
        record = await self._load(owner_id, launch_id)
        self._require_launch_wallet(record)

        if record.trade.mint_address:
            raise ValidationError("Token already created", code="already_launched",
                                  mint_address=record.trade.mint_address)
        if not at_least(record.overall_status, LaunchStatus.WITHDRAWN):
            raise ValidationError(
                f"Launch wallet not funded yet (status {record.overall_status})",
                code="not_ready",
                status=record.overall_status,
            )
        missing = record.metadata.missing_fields()
        if missing:
            raise ValidationError("Missing metadata", code="missing_metadata", missing=missing)

        async with self._exclusive(launch_id):
            record = await self._reload(record)
            if record.trade.mint_address:
                raise ValidationError("Token already created", code="already_launched",
                                      mint_address=record.trade.mint_address)

            if record.trade.status == "unconfirmed" and record.trade.tx_signature and record.trade.pending_mint:
                resolved = await self._resolve_unconfirmed_create(record)
                if resolved:
                    return resolved

            metadata_uri = record.metadata.metadata_uri
            if not metadata_uri:
                try:
                    metadata_uri = await self.venue.upload_metadata(record.metadata)
                except LaunchError as e:
                    raise e.with_stage("metadata")
                record = await self._persist(record, metadata={"metadata_uri": metadata_uri})

            launch_kp = self._launch_keypair(record)
            balance = await self._get_balance(record.launch_address)
            buy_lamports = compute_buy_lamports(balance, self.config)
            buy_sol = buy_lamports / LAMPORTS_PER_SOL
            if buy_lamports == 0:
                logger.warning(
                    f"Launch {launch_id[:8]}...: balance {balance} leaves no initial buy, creating without one"
                )

            mint_kp = Keypair()
            mint_address = str(mint_kp.pubkey())
            logger.info(
                f"Creating {record.metadata.ticker} on venue | mint {mint_address[:16]}... | buy {buy_sol} SOL"
            )

            try:
                raw_tx = await self.venue.build_create_transaction(
                    payer=record.launch_address,
                    mint=mint_address,
                    metadata_uri=metadata_uri,
                    amount_sol=buy_sol,
                    slippage=self.config.create_slippage_pct,
                    priority_fee=self.config.create_priority_fee_sol,
                    pool=self.config.create_pool,
                )
                receipt = await self.executor.execute(raw_tx, [launch_kp, mint_kp])

            except ConfirmationTimeoutError as e:
                await self._persist(
                    record,
                    trade={
                        "status": "unconfirmed",
                        "tx_signature": e.signature,
                        "pending_mint": mint_address,
                        "pending_blockhash": e.blockhash,
                        "error": e.code,
                    },
                )
                raise e.with_stage("create", mint_generated=mint_address)

            except LaunchError as e:
                await self._persist(record, trade={"status": "create_failed", "error": f"{e.code}: {e.message}"})
                raise e.with_stage(
                    "create",
                    payer_used=record.launch_address,
                    mint_generated=mint_address,
                    payer_balance=balance,
                )

            await self._persist(
                record,
                status=LaunchStatus.LAUNCHED.value,
                trade={
                    "tx_signature": receipt.signature,
                    "mint_address": mint_address,
                    "status": "launched",
                    "pending_mint": None,
                    "pending_blockhash": None,
                    "error": None,
                },
            )
            logger.info(f"✅ Launched {record.metadata.ticker}: {mint_address} ({receipt.signature[:16]}...)")

            return VenueLaunchResult(
                launch_id=launch_id,
                tx_signature=receipt.signature,
                mint_address=mint_address,
                buy_amount_sol=buy_sol,
                metadata_uri=metadata_uri,
            )

    async def record_external_launch(
        self,
        owner_id: str,
        launch_id: str,
        tx_signature: Optional[str] = None,
        mint: Optional[str] = None,
    ) -> LaunchRecord:
        """Mark a launch created outside the server flow (e.g. from the user's browser)."""
        if not tx_signature and not mint:
            raise ValidationError("tx_signature or mint required", code="validation_failed")
        if mint:
            _require_address(mint, "mint")

        record = await self._load(owner_id, launch_id)
        async with self._exclusive(launch_id):
            record = await self._reload(record)
            existing = record.trade.mint_address
            if mint and existing and existing != mint:
                raise ValidationError("Token already created", code="already_launched", mint_address=existing)

            trade: Dict[str, Any] = {"status": "launched"}
            if tx_signature:
                trade["tx_signature"] = tx_signature
            if mint:
                trade["mint_address"] = mint
            return await self._persist(record, status=LaunchStatus.LAUNCHED.value, trade=trade)

    async def scan_venue_mint(self, owner_id: str, launch_id: str) -> VenueScanResult:
        """Look up coins created by the launch wallet; adopt the newest mint if none is stored."""
        record = await self._load(owner_id, launch_id)
        if not record.launch_address:
            raise ValidationError("No launch wallet", code="no_launch_wallet")

        try:
            coins = await self.venue.get_created_coins(record.launch_address)
        except LaunchError as e:
            raise e.with_stage("scan")

        first = coins[0] if coins else None
        mint = (first or {}).get("mint")
        adopted = False

        if mint and not record.trade.mint_address:
            await self._persist(record, trade={"mint_address": mint})
            adopted = True
            logger.info(f"Launch {launch_id[:8]}... adopted venue mint {mint[:16]}...")
        elif mint and record.trade.mint_address != mint:
            logger.warning(
                f"Launch {launch_id[:8]}...: venue reports {mint[:16]}..., "
                f"keeping stored {record.trade.mint_address[:16]}..."
            )

        return VenueScanResult(mint=mint, coin=first, adopted=adopted)

    # ------------------------------------------------------------------
    # Venue: sell
    # ------------------------------------------------------------------

    async def sell(
        self,
        owner_id: str,
        launch_id: str,
        percent: Union[int, float, str, Decimal],
        mint_override: Optional[str] = None,
    ) -> SellResult:
        """
        Sell ``percent`` of the launch wallet's holding of the launch mint.

        Raises:
            ValidationError: bad percent (before any network call), no mint,
                or nothing to sell after truncation
        """
        pct = validate_percent(percent)

        record = await self._load(owner_id, launch_id)
        self._require_launch_wallet(record)

        mint = record.trade.mint_address or mint_override
        if not mint:
            raise ValidationError("No mint set", code="no_mint")
        _require_address(mint, "mint")

        async with self._exclusive(launch_id):
            record = await self._reload(record)
            holding = await get_token_balance(self.rpc, record.launch_address, mint)
            amount = compute_sell_amount(holding.balance_ui, pct, holding.decimals)
            if amount <= 0:
                raise ValidationError(
                    "No tokens to sell",
                    code="no_tokens_to_sell",
                    balance_ui=str(holding.balance_ui),
                )

            launch_kp = self._launch_keypair(record)
            logger.info(f"Selling {amount} of {holding.balance_ui} ({pct}%) | {mint[:16]}...")

            try:
                raw_tx = await self.venue.build_sell_transaction(
                    public_key=record.launch_address,
                    mint=mint,
                    amount=float(amount),
                    slippage=self.config.sell_slippage_pct,
                    priority_fee=self.config.sell_priority_fee_sol,
                    pool=self.config.sell_pool,
                )
                receipt = await self.executor.execute(raw_tx, [launch_kp])
            except LaunchError as e:
                raise e.with_stage("sell")

            status = LaunchStatus.SOLD.value if at_least(record.overall_status, LaunchStatus.LAUNCHED) else None
            await self._persist(record, status=status, trade={"last_sell_signature": receipt.signature})

            return SellResult(
                tx_signature=receipt.signature,
                mint_address=mint,
                sold_ui=amount,
                balance_ui=holding.balance_ui,
                percent=pct,
            )

    # ------------------------------------------------------------------
    # Rewards: claim and return
    # ------------------------------------------------------------------

    async def _claim(self, record: LaunchRecord) -> str:
        launch_kp = self._launch_keypair(record)
        try:
            raw_tx = await self.venue.build_collect_fee_transaction(
                public_key=record.launch_address,
                priority_fee=self.config.claim_priority_fee_sol,
            )
            receipt = await self.executor.execute(raw_tx, [launch_kp])
        except LaunchError as e:
            raise e.with_stage("claim")

        await self._persist(record, trade={"last_claim_signature": receipt.signature})
        logger.info(f"✅ Claimed creator rewards for {record.id[:8]}... ({receipt.signature[:16]}...)")
        return receipt.signature

    async def _return(self, record: LaunchRecord) -> ReturnResult:
        try:
            balance = await self._get_balance(record.launch_address)
            deposit_lamports = balance - self.config.return_reserve_lamports
            if deposit_lamports <= 0:
                raise ValidationError(
                    "Launch wallet balance does not cover the reserve",
                    code="insufficient_balance",
                    balance_lamports=balance,
                )

            launch_secret = self.vault.decrypt_secret(record.launch_secret_encrypted)
            outcome = await self.mixing.deposit_with_step_down(
                launch_secret, deposit_lamports, balance_lamports=balance
            )

            platform = await self.wallets.get_or_create(record.owner_id)
            result = await self.mixing.withdraw(launch_secret, outcome.deposited_lamports, platform.address)

        except LaunchError as e:
            raise e.with_stage("return")

        logger.info(
            f"✅ Returned {outcome.deposited_lamports} lamports from {record.id[:8]}... "
            f"to platform wallet {platform.address[:16]}..."
        )
        return ReturnResult(
            returned_lamports=outcome.deposited_lamports,
            to=platform.address,
            balance_lamports=balance,
            attempts=outcome.attempts,
            result=result,
        )

    async def claim_rewards(self, owner_id: str, launch_id: str) -> str:
        """Collect accrued creator rewards into the launch wallet; returns the signature."""
        record = await self._load(owner_id, launch_id)
        self._require_launch_wallet(record)
        async with self._exclusive(launch_id):
            return await self._claim(await self._reload(record))

    async def return_funds(self, owner_id: str, launch_id: str) -> ReturnResult:
        """Send the launch wallet's balance (less reserve) back to the platform wallet via the mixer."""
        record = await self._load(owner_id, launch_id)
        self._require_launch_wallet(record)
        async with self._exclusive(launch_id):
            return await self._return(await self._reload(record))

    async def claim_and_return(self, owner_id: str, launch_id: str) -> ReturnResult:
        """
        Claim rewards, then return everything to the platform wallet.

        A claim that succeeded is never hidden: if the return phase fails the
        raised error carries ``stage="return"`` and ``claim_signature``; the
        funds stay in the launch wallet and ``return_funds`` can finish later.
        """
        record = await self._load(owner_id, launch_id)
        self._require_launch_wallet(record)

        async with self._exclusive(launch_id):
            record = await self._reload(record)
            claim_signature = await self._claim(record)

            try:
                returned = await self._return(record)
            except LaunchError as e:
                logger.error(
                    f"Return after claim failed for {launch_id[:8]}...: {e.code} "
                    f"(claim {claim_signature[:16]}... succeeded)"
                )
                raise e.with_stage("return", claim_signature=claim_signature)

            returned.claim_signature = claim_signature
            status = (
                LaunchStatus.CLAIMED_AND_RETURNED.value
                if at_least(record.overall_status, LaunchStatus.LAUNCHED)
                else None
            )
            await self._persist(await self._reload(record), status=status)
            return returned

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_launches(self, owner_id: str) -> List[Dict[str, Any]]:
        records = await self.ledger.list_owner(owner_id)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return [r.summary() for r in records]

    async def get_status(self, owner_id: str, launch_id: str) -> LaunchRecord:
        """
        Current record; while the deposit is pending the mixing status is
        re-polled first. A failed poll is logged and the cached record returned.
        """
        record = await self._load(owner_id, launch_id)

        if record.mixing.deposit_reference and record.overall_status.startswith("deposit"):
            try:
                owner_secret = await self._platform_secret(owner_id)
                reconciliation = await self._query_mixing(record, owner_secret)
                if (
                    reconciliation.status != record.mixing.status
                    and reconciliation.status != record.overall_status
                    and can_transition(record.overall_status, reconciliation.status)
                ):
                    record = await self._sync_status(record, reconciliation.status)
            except LaunchError as e:
                logger.warning(f"Status sync for {launch_id[:8]}... failed: {e.code} {e.message}")

        return record

    async def platform_wallet(self, owner_id: str) -> Dict[str, Any]:
        """
        The principal's custodial funding address, created on first use.

        The balance is best effort: ``None`` when the node can not be reached.
        """
        wallet = await self.wallets.get_or_create(owner_id)
        balance: Optional[int] = None
        try:
            balance = await self.rpc.get_balance(wallet.address)
        except RpcError as e:
            logger.warning(f"Balance lookup for platform wallet {wallet.address[:16]}... failed: {e}")
        return {"platform_wallet": wallet.address, "balance_lamports": balance}

    async def token_balance(self, owner: str, mint: str) -> TokenBalance:
        _require_address(owner, "owner")
        _require_address(mint, "mint")
        return await get_token_balance(self.rpc, owner, mint)
