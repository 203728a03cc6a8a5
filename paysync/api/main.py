"""FastAPI application for the account/collection UI."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from paysync.config import Config, config
from paysync.errors import (
    AccountNotFound,
    CollectionAlreadyRunning,
    CredentialsExpired,
    MalformedSession,
    UnsupportedOperation,
)
from paysync.fetch.client import HttpxProxyClient, ProxyClient
from paysync.jobs.run_control import RunControl, RunStatus
from paysync.jobs.runner import CollectMode
from paysync.jobs.service import build_collector, check_credentials, run_collection
from paysync.jobs.session import SessionRegistry
from paysync.parse.models import UnifiedPayment
from paysync.store.credentials import Account, SqliteCredentialStore
from paysync.store.payments import SqlitePaymentStore

logger = logging.getLogger(__name__)

# API Key security (if configured)
API_KEY_HEADER = APIKeyHeader(name="X-API-KEY", auto_error=False)


def verify_api_key(api_key: str = Depends(API_KEY_HEADER)) -> bool:
    """Verify API key if configured."""
    expected_key = config.API_KEY
    if expected_key:
        if not api_key or api_key != expected_key:
            raise HTTPException(status_code=403, detail="Invalid API key")
    return True


class AccountCreate(BaseModel):
    provider: str
    alias: str = Field(..., min_length=1)
    curl: str


class CredentialsUpdate(BaseModel):
    curl: str


class CollectRequest(BaseModel):
    mode: CollectMode = CollectMode.FULL
    stop_after_minutes: Optional[float] = None
    max_errors: Optional[int] = None
    max_consecutive_errors: Optional[int] = None


class AccountOut(BaseModel):
    """Account without the stored capture."""

    id: str
    provider: str
    alias: str
    created_at: str
    updated_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountOut":
        return cls(**account.model_dump(exclude={"curl"}))


def create_app(
    credential_store: Optional[SqliteCredentialStore] = None,
    payment_store: Optional[SqlitePaymentStore] = None,
    proxy: Optional[ProxyClient] = None,
    registry: Optional[SessionRegistry] = None,
) -> FastAPI:
    """Build the app; collaborators can be injected for tests."""
    app = FastAPI(title="PaySync API", version="0.1.0")
    app.state.credentials = credential_store or SqliteCredentialStore()
    app.state.payments = payment_store or SqlitePaymentStore()
    app.state.proxy = proxy
    app.state.owns_proxy = proxy is None
    app.state.registry = registry or SessionRegistry()
    app.state.collectors = {}
    app.state.tasks = set()

    @app.on_event("startup")
    async def startup():
        """Initialize on startup."""
        await app.state.credentials.initialize()
        await app.state.payments.initialize()
        if app.state.proxy is None:
            app.state.proxy = HttpxProxyClient()

    @app.on_event("shutdown")
    async def shutdown():
        for collector in app.state.collectors.values():
            collector.request_stop()
        if app.state.tasks:
            await asyncio.gather(*app.state.tasks, return_exceptions=True)
        if app.state.owns_proxy and app.state.proxy is not None:
            await app.state.proxy.aclose()

    @app.exception_handler(MalformedSession)
    async def malformed_session(request: Request, exc: MalformedSession):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(AccountNotFound)
    async def account_not_found(request: Request, exc: AccountNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(CollectionAlreadyRunning)
    async def already_running(request: Request, exc: CollectionAlreadyRunning):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(UnsupportedOperation)
    async def unsupported(request: Request, exc: UnsupportedOperation):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(CredentialsExpired)
    async def credentials_expired(request: Request, exc: CredentialsExpired):
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    @app.get("/health")
    async def health():
        """Health check endpoint (no auth required)."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "active_runs": len(app.state.collectors),
        }

    @app.post("/accounts", response_model=AccountOut, status_code=201)
    async def create_account(body: AccountCreate, _: bool = Depends(verify_api_key)):
        account = await app.state.credentials.create_account(body.provider, body.alias, body.curl)
        return AccountOut.from_account(account)

    @app.get("/accounts", response_model=list[AccountOut])
    async def list_accounts(provider: Optional[str] = None, _: bool = Depends(verify_api_key)):
        accounts = await app.state.credentials.list_accounts(provider)
        return [AccountOut.from_account(a) for a in accounts]

    @app.put("/accounts/{account_id}/credentials", response_model=AccountOut)
    async def update_credentials(
        account_id: str, body: CredentialsUpdate, _: bool = Depends(verify_api_key)
    ):
        """Replace the session headers; a malformed capture changes nothing."""
        account = await app.state.credentials.refresh(account_id, body.curl)
        return AccountOut.from_account(account)

    @app.post("/accounts/{account_id}/test")
    async def test_account(account_id: str, _: bool = Depends(verify_api_key)):
        return await check_credentials(app.state.credentials, app.state.proxy, account_id)

    @app.post("/accounts/{account_id}/collect", status_code=202)
    async def start_collection(
        account_id: str,
        body: Optional[CollectRequest] = None,
        _: bool = Depends(verify_api_key),
    ):
        """Start a background run; 409 while another run is active for the account."""
        body = body or CollectRequest()
        account = await app.state.credentials.require_account(account_id)
        collector = build_collector(
            account,
            app.state.credentials,
            app.state.proxy,
            app.state.payments,
            mode=body.mode,
            run_control=RunControl(
                stop_after_minutes=body.stop_after_minutes,
                max_errors=body.max_errors,
                max_consecutive_errors=body.max_consecutive_errors,
            ),
        )
        session = collector.session
        app.state.registry.acquire(session)
        app.state.collectors[account_id] = collector

        async def run():
            try:
                await run_collection(collector, app.state.registry)
            except Exception as e:
                logger.error(f"Run {session.run_id} crashed: {e}", exc_info=True)
                session.error = str(e)
                session.status = RunStatus.FAILED
            finally:
                app.state.registry.release(session)
                if app.state.collectors.get(account_id) is collector:
                    del app.state.collectors[account_id]

        task = asyncio.create_task(run())
        app.state.tasks.add(task)
        task.add_done_callback(app.state.tasks.discard)
        logger.info(f"Started {body.mode.value} run {session.run_id} for {account.provider} account {account_id}")
        return {"run_id": session.run_id, "status": session.status.value}

    @app.post("/accounts/{account_id}/stop")
    async def stop_collection(account_id: str, _: bool = Depends(verify_api_key)):
        await app.state.credentials.require_account(account_id)
        collector = app.state.collectors.get(account_id)
        if collector is None:
            raise HTTPException(status_code=404, detail="No active run for this account")
        collector.request_stop()
        return {"run_id": collector.session.run_id, "stop_requested": True}

    @app.get("/accounts/{account_id}/progress")
    async def progress(account_id: str, _: bool = Depends(verify_api_key)):
        await app.state.credentials.require_account(account_id)
        session = app.state.registry.latest(account_id)
        if session is None:
            raise HTTPException(status_code=404, detail="No run for this account yet")
        return session.progress()

    @app.get("/accounts/{account_id}/payments", response_model=list[UnifiedPayment])
    async def list_payments(
        account_id: str,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        _: bool = Depends(verify_api_key),
    ):
        await app.state.credentials.require_account(account_id)
        return await app.state.payments.list_payments(account_id, limit, offset)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from paysync.logging_conf import setup_logging

    setup_logging()
    Config.validate()
    uvicorn.run(app, host="0.0.0.0", port=8000)
