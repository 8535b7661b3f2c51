"""
Executor access API.

Identity is asserted upstream: the identity provider sets X-Executor-Identity
(or the executor_email cookie). This service only checks the assertion
against executor relationships and the owner's access code.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Cookie, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .schemas import (
    AccountsResponse,
    DispatchRunResponse,
    ErrorResponse,
    ExecutorAccountResponse,
    GrantResponse,
    HealthResponse,
    PermissionSet,
    RevokeResponse,
    SessionResponse,
    VerifyRequest,
)
from ..core import release_service
from ..core.config import VERSION, debug_enabled, smtp_config_issues
from ..core.db import health_check, init_db
from ..core.errors import GrantInvalid, ReleaseAccessError
from util.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Release Gate API",
    version=VERSION,
    description="Executor verification, release activation and letter dispatch",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _asserted_identity(header_value: Optional[str], cookie_value: Optional[str]) -> str:
    identity = (header_value or cookie_value or "").strip()
    if not identity:
        raise HTTPException(status_code=401, detail="Executor identity not asserted")
    return identity


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise GrantInvalid("Missing bearer token")
    return authorization[len("bearer "):].strip()


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint():
    """Check system health."""
    db_health = health_check()
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        mail_configured=not smtp_config_issues()
    )


@app.post("/executor/verify", response_model=GrantResponse)
def verify_executor_endpoint(
    request: VerifyRequest,
    x_executor_identity: Optional[str] = Header(None),
    executor_email: Optional[str] = Cookie(None)
):
    """Verify the asserted executor with the owner's access code and open a grant."""
    identity = _asserted_identity(x_executor_identity, executor_email)

    result = release_service.verify_executor_access(identity, request.owner_id, request.access_code)
    grant = result.grant

    return GrantResponse(
        token=grant.token,
        owner_id=grant.owner_id,
        contact_ref=grant.contact_ref,
        executor_name=result.executor_name,
        permissions=PermissionSet(**grant.permissions.to_dict()),
        issued_at=grant.issued_at,
        expires_at=grant.expires_at,
        activation=result.activation.outcome,
        dispatch_run_id=result.activation.run_id
    )


@app.get("/executor/session", response_model=SessionResponse)
def get_session_endpoint(capability: Optional[str] = None, authorization: Optional[str] = Header(None)):
    """Resolve a bearer grant, optionally requiring one capability."""
    grant = release_service.sessions.authorize(_bearer_token(authorization), capability)
    return SessionResponse(
        owner_id=grant.owner_id,
        contact_ref=grant.contact_ref,
        permissions=PermissionSet(**grant.permissions.to_dict()),
        expires_at=grant.expires_at
    )


@app.delete("/executor/session", response_model=RevokeResponse)
def revoke_session_endpoint(authorization: Optional[str] = Header(None)):
    return RevokeResponse(revoked=release_service.sessions.revoke(_bearer_token(authorization)))


@app.get("/executor/accounts", response_model=AccountsResponse)
def list_accounts_endpoint(
    x_executor_identity: Optional[str] = Header(None),
    executor_email: Optional[str] = Cookie(None)
):
    """Accounts the asserted identity is invited to or accepted for."""
    identity = _asserted_identity(x_executor_identity, executor_email)
    accounts = release_service.list_executor_accounts(identity)
    return AccountsResponse(
        accounts=[
            ExecutorAccountResponse(
                owner_id=account.owner_id,
                contact_ref=account.contact_ref,
                status=account.status,
                owner_display_name=account.owner_display_name,
                is_locked=account.is_locked,
                release_activated=account.release_activated
            )
            for account in accounts
        ]
    )


@app.get("/executor/dispatch/{run_id}", response_model=DispatchRunResponse)
def dispatch_run_endpoint(run_id: str):
    """Dispatch run status (only available in DEBUG mode)."""
    if not debug_enabled():
        raise HTTPException(status_code=403, detail="Dispatch status endpoint requires debug mode")

    report = release_service.get_dispatcher().get_run(run_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Dispatch run not found")

    return DispatchRunResponse(
        run_id=report.run_id,
        owner_id=report.owner_id,
        status=report.status,
        outcomes=dict(report.outcomes),
        error=report.error,
        started_at=report.started_at,
        finished_at=report.finished_at
    )


@app.exception_handler(ReleaseAccessError)
async def release_access_exception_handler(request, exc: ReleaseAccessError):
    """Map verification and grant errors to their status with a stable body."""
    error = ErrorResponse(error_type=exc.error_type, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=error.model_dump(mode="json"))


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)
