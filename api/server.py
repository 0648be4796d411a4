"""
FastAPI Server for the launch lifecycle.

Provides:
- Launch endpoints (create, list, status, withdraw, complete, venue scan)
- Job endpoints (venue create, sell, claim, return)
- Platform wallet and token balance lookups
- Per-route Redis rate limiting

The authenticated principal arrives in the ``X-Owner-Id`` header, set by
the session layer in front of this service.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from execution.errors import LaunchError
from execution.orchestrator import LaunchOrchestrator

from api.launch_service import LaunchService, launch_service
from api.rate_limit import client_ip

logger = logging.getLogger("launch-api")


# ============================================================================
# Request models
# ============================================================================

class MetadataModel(BaseModel):
    name: Optional[str] = None
    ticker: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    banner_url: Optional[str] = None
    twitter: Optional[str] = None
    telegram: Optional[str] = None
    website: Optional[str] = None


class CreateLaunchRequest(BaseModel):
    amount_lamports: int
    metadata: Optional[MetadataModel] = None


class CompleteLaunchRequest(BaseModel):
    tx_signature: Optional[str] = None
    mint: Optional[str] = None


class JobRequest(BaseModel):
    id: str


class SellRequest(BaseModel):
    id: str
    percent: float
    mint: Optional[str] = None


# ============================================================================
# Dependencies
# ============================================================================

def get_orchestrator(request: Request) -> LaunchOrchestrator:
    service: LaunchService = request.app.state.service
    if not service.started:
        raise HTTPException(status_code=503, detail="Service not ready")
    return service.orchestrator


async def get_owner_id(x_owner_id: Optional[str] = Header(default=None)) -> str:
    if not x_owner_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_owner_id


def rate_limited(key: str):
    """Dependency enforcing the fixed-window limit for one route key."""

    async def check(request: Request) -> None:
        limiter = request.app.state.service.rate_limiter
        if limiter is None:
            return
        ip = client_ip(request.headers, fallback=request.client.host if request.client else "ip:unknown")
        result = await limiter.hit(key, ip)
        if not result.allowed:
            raise HTTPException(status_code=429, detail="Too Many Requests")

    return check


# ============================================================================
# App
# ============================================================================

def create_app(service: LaunchService = None) -> FastAPI:
    """Build the API around ``service`` (the process-wide one by default)."""
    service = service or launch_service

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.start_time = time.time()
        owns_service = not service.started
        if owns_service:
            await service.start()
        yield
        if owns_service:
            await service.stop()

    app = FastAPI(title="Launch Orchestrator", lifespan=lifespan)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LaunchError)
    async def launch_error_handler(request: Request, exc: LaunchError):
        logger.warning(f"{request.url.path} -> {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=jsonable_encoder(exc.to_dict()))

    # ------------------------------------------------------------------
    # Launches
    # ------------------------------------------------------------------

    @app.post("/api/launch", dependencies=[Depends(rate_limited("launch-create"))])
    async def create_launch(
        body: CreateLaunchRequest,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        """Open a launch and request the mixing deposit."""
        metadata = body.metadata.model_dump() if body.metadata else None
        result = await orchestrator.create_launch(owner_id, body.amount_lamports, metadata)
        return result.to_dict()

    @app.get("/api/launch", dependencies=[Depends(rate_limited("launch-list"))])
    async def list_launches(
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        return await orchestrator.list_launches(owner_id)

    @app.get("/api/launch/{launch_id}/status", dependencies=[Depends(rate_limited("launch-status"))])
    async def get_status(
        launch_id: str,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        record = await orchestrator.get_status(owner_id, launch_id)
        return record.to_public_dict()

    @app.post("/api/launch/{launch_id}/withdraw", dependencies=[Depends(rate_limited("launch-withdraw"))])
    async def withdraw(
        launch_id: str,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        """Withdraw to the launch wallet if mixed; otherwise just sync status."""
        result = await orchestrator.withdraw(owner_id, launch_id)
        return result.to_dict()

    @app.post("/api/launch/{launch_id}/complete", dependencies=[Depends(rate_limited("launch-complete"))])
    async def complete_launch(
        launch_id: str,
        body: CompleteLaunchRequest,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        """Record a launch that was created outside the server flow."""
        record = await orchestrator.record_external_launch(
            owner_id, launch_id, tx_signature=body.tx_signature, mint=body.mint
        )
        return {"ok": True, "launch": record.to_public_dict()}

    @app.get("/api/launch/{launch_id}/venue-scan", dependencies=[Depends(rate_limited("venue-scan"))])
    async def venue_scan(
        launch_id: str,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        result = await orchestrator.scan_venue_mint(owner_id, launch_id)
        return result.to_dict()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    @app.post("/api/jobs/create", dependencies=[Depends(rate_limited("job-venue-create"))])
    async def create_on_venue(
        body: JobRequest,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        result = await orchestrator.create_on_venue(owner_id, body.id)
        return {"ok": True, **result.to_dict()}

    @app.post("/api/jobs/sell", dependencies=[Depends(rate_limited("job-sell"))])
    async def sell(
        body: SellRequest,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        result = await orchestrator.sell(owner_id, body.id, body.percent, mint_override=body.mint)
        return {"ok": True, **result.to_dict()}

    @app.post("/api/jobs/rewards", dependencies=[Depends(rate_limited("job-rewards"))])
    async def claim_and_return(
        body: JobRequest,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        """Claim creator rewards, then return funds to the platform wallet."""
        result = await orchestrator.claim_and_return(owner_id, body.id)
        return {"ok": True, **result.to_dict()}

    @app.post("/api/jobs/claim-rewards", dependencies=[Depends(rate_limited("job-claim-rewards"))])
    async def claim_rewards(
        body: JobRequest,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        signature = await orchestrator.claim_rewards(owner_id, body.id)
        return {"ok": True, "tx_signature": signature}

    @app.post("/api/jobs/return-funds", dependencies=[Depends(rate_limited("job-return-funds"))])
    async def return_funds(
        body: JobRequest,
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        result = await orchestrator.return_funds(owner_id, body.id)
        return {"ok": True, **result.to_dict()}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @app.get("/api/user/wallet", dependencies=[Depends(rate_limited("user-wallet"))])
    async def platform_wallet(
        owner_id: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        """Funding address for launches, created on first request."""
        return await orchestrator.platform_wallet(owner_id)

    @app.get("/api/token-balance", dependencies=[Depends(rate_limited("token-balance"))])
    async def token_balance(
        owner: Optional[str] = None,
        mint: Optional[str] = None,
        _: str = Depends(get_owner_id),
        orchestrator: LaunchOrchestrator = Depends(get_orchestrator),
    ):
        if not owner or not mint:
            raise HTTPException(status_code=400, detail="owner and mint required")
        balance = await orchestrator.token_balance(owner, mint)
        return balance.to_dict()

    @app.get("/health")
    async def health(request: Request):
        started = getattr(request.app.state, "start_time", None)
        return {
            "status": "ok" if service.started else "starting",
            "uptime_seconds": round(time.time() - started, 1) if started else 0,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
