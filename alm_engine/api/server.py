"""
FastAPI Server for the ALM Engine.

Provides REST API endpoints for triggering reconciliation passes on demand,
inspecting accounts and reading back pass reports.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..config import build_engine, load_config
from ..engine.reconciler import ReconciliationEngine
from ..exceptions import RecordNotFound, StoreUnavailable
from ..models import PassOutcome

logger = logging.getLogger(__name__)

CONFIG_ENV = "ALM_CONFIG"


# Pydantic models for API requests/responses
class PassRequest(BaseModel):
    """On-demand pass request."""
    now: Optional[datetime] = Field(None, description="Evaluation time (default: current time)")
    verbose_audit: Optional[bool] = Field(None, description="Audit already-locked accounts too")


class AccountResponse(BaseModel):
    """Account lifecycle view."""
    username: Optional[str]
    uid: Optional[int]
    lock_state: Optional[str]
    created_at: Optional[str]
    expires_at: Optional[str]
    last_policy_check_at: Optional[str]
    decision: str
    defects: List[str]


# Global engine (initialized on startup)
engine: Optional[ReconciliationEngine] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global engine

    if engine is None:
        logger.info("Initializing ALM Engine API server components")
        engine = build_engine(load_config(os.environ.get(CONFIG_ENV)))
        logger.info("ALM Engine API server components initialized")

    yield

    logger.info("Shutting down ALM Engine API server")
    engine.cancel()


# Create FastAPI app
app = FastAPI(
    title="ALM Engine API",
    description="Account Lifecycle Manager - REST API for expiration reconciliation",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_engine() -> ReconciliationEngine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Reconciliation engine not available")
    return engine


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "ALM Engine API", "version": __version__, "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    components = {
        "engine": engine is not None,
        "store": engine is not None and engine.store is not None,
        "report_sink": engine is not None and engine.report_sink is not None,
    }
    return {
        "status": "healthy" if all(components.values()) else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "pass_running": engine.pass_lock.is_locked() if engine is not None else False,
        "components": components,
    }


@app.get("/accounts", response_model=List[AccountResponse])
def list_accounts(limit: int = Query(200, ge=1, le=10000)):
    """List managed accounts with the decision a pass would take now."""
    current = _require_engine()
    try:
        decisions = current.plan()
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e

    return [
        AccountResponse(
            username=record.username,
            uid=record.uid,
            lock_state=record.lock_state.value if record.lock_state else None,
            created_at=_iso(record.created_at),
            expires_at=_iso(record.expires_at),
            last_policy_check_at=_iso(record.last_policy_check_at),
            decision=decision.value,
            defects=record.defects,
        )
        for record, decision in decisions[:limit]
    ]


@app.get("/accounts/{username}", response_model=AccountResponse)
def get_account(username: str):
    """Get one account."""
    current = _require_engine()
    try:
        record = current.store.get_account(username)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=f"Account {username} not found") from e
    except StoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e

    decision = current.evaluator.evaluate(record, datetime.now(timezone.utc))
    return AccountResponse(
        username=record.username,
        uid=record.uid,
        lock_state=record.lock_state.value if record.lock_state else None,
        created_at=_iso(record.created_at),
        expires_at=_iso(record.expires_at),
        last_policy_check_at=_iso(record.last_policy_check_at),
        decision=decision.value,
        defects=record.defects,
    )


@app.post("/passes")
def trigger_pass(request: Optional[PassRequest] = None):
    """
    Run a reconciliation pass now.

    Returns 200 when the pass completed, 409 when another pass is already
    running and 503 when the account store is unavailable. The body is
    always the pass report.
    """
    current = _require_engine()
    request = request or PassRequest()

    report = current.run_pass(now=request.now, verbose_audit=request.verbose_audit)

    status_code = {
        PassOutcome.COMPLETED: 200,
        PassOutcome.SKIPPED: 409,
        PassOutcome.ABORTED: 503,
    }[report.outcome]
    return JSONResponse(status_code=status_code, content=report.model_dump(mode="json"))


@app.get("/passes")
def list_passes(limit: int = Query(20, ge=1, le=1000)):
    """Recent pass reports, most recent first."""
    current = _require_engine()
    sink = current.report_sink
    if sink is None or not hasattr(sink, "get_reports"):
        return []
    return [report.model_dump(mode="json") for report in sink.get_reports(limit=limit)]


def start_server(host: str = "127.0.0.1", port: int = 8000, config_path: Optional[str] = None):
    """Start the API server."""
    if config_path:
        os.environ[CONFIG_ENV] = config_path

    logger.info(f"Starting ALM Engine API server on {host}:{port}")
    uvicorn.run("alm_engine.api.server:app", host=host, port=port, reload=False, log_level="info")
