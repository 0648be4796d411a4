"""Launch Errors - Typed failure conditions surfaced by the launch core."""

from typing import Any, Dict, List, Optional


class LaunchError(Exception):
    """
    Base class for every failure the launch core reports to callers.

    Each error carries a machine-readable ``code``, an optional ``stage``
    tag naming the phase that failed (``claim``, ``return``, ``create``...)
    and free-form ``details`` used to report partial progress.
    """

    code = "launch_error"
    http_status = 400

    def __init__(
        self,
        message: str = "",
        code: Optional[str] = None,
        stage: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(message or code or self.code)
        if code:
            self.code = code
        self.message = message or self.code
        self.stage = stage
        self.details: Dict[str, Any] = details

    def with_stage(self, stage: str, **details: Any) -> "LaunchError":
        """Tag the error with the phase it came from and extra progress info."""
        self.stage = stage
        self.details.update(details)
        return self

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.stage:
            payload["stage"] = self.stage
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class ValidationError(LaunchError):
    """Rejected before any external call was made."""
    code = "validation_failed"


class NotFoundError(LaunchError):
    """Record is missing or owned by someone else (never distinguished)."""
    code = "not_found"
    http_status = 404

    def __init__(self, message: str = "Not found", **details: Any):
        super().__init__(message, **details)


class ConflictError(LaunchError):
    """Another request holds the record's lock."""
    code = "in_progress"
    http_status = 409


class MixingError(LaunchError):
    """Mixing collaborator rejected a deposit or withdraw."""
    code = "mixing_failed"

    def __init__(
        self,
        message: str,
        code: str,
        attempted_lamports: Optional[int] = None,
        balance_lamports: Optional[int] = None,
        **details: Any,
    ):
        super().__init__(
            message,
            code=code,
            attempted_lamports=attempted_lamports,
            balance_lamports=balance_lamports,
            **details,
        )
        self.attempted_lamports = attempted_lamports
        self.balance_lamports = balance_lamports


class PortalError(LaunchError):
    """Trading venue HTTP API returned a non-success response."""
    code = "portal_failed"

    def __init__(self, message: str, http_status: Optional[int] = None, body: str = "", **details: Any):
        super().__init__(message, status=http_status, body=body, **details)
        self.status = http_status
        self.body = body


class RpcFailedError(LaunchError):
    """Solana node could not answer a read (balance, token accounts)."""
    code = "rpc_failed"


class TransactionError(LaunchError):
    """Base for sign/simulate/submit/confirm failures."""
    code = "transaction_failed"

    def __init__(self, message: str, logs: Optional[List[str]] = None, **details: Any):
        super().__init__(message, logs=logs, **details)
        self.logs = logs or []


class NoMatchingSignerError(TransactionError):
    code = "no_matching_signer"

    def __init__(self, required: List[str], candidates: List[str], missing: List[str]):
        super().__init__(
            f"No usable signer set: required={required} have={candidates}",
            required_signers=required,
            candidates=candidates,
            missing=missing,
        )
        self.required = required
        self.candidates = candidates
        self.missing = missing


class SimulationFailedError(TransactionError):
    code = "simulate_failed"


class SendFailedError(TransactionError):
    code = "send_failed"


class ConfirmationTimeoutError(TransactionError):
    """Submitted but finality was not observed in time; the tx may still land."""
    code = "confirm_timeout"

    def __init__(self, signature: str, message: str = "", blockhash: Optional[str] = None):
        super().__init__(message or f"Finality not observed for {signature}", signature=signature, blockhash=blockhash)
        self.signature = signature
        self.blockhash = blockhash


class InvalidTransactionError(TransactionError):
    """Bytes handed to the executor are not a versioned transaction."""
    code = "invalid_transaction"
