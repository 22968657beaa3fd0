import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from keypool.config import settings
from keypool.core.exceptions import AppError
from keypool.credentials.router import router as pools_router
from keypool.db.session import async_session_factory, engine
from keypool.gateway.router import router as gateway_router
from keypool.pool.manager import CredentialPool

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.pool = CredentialPool(async_session_factory, settings.pool_config())
    yield
    await engine.dispose()


app = FastAPI(
    title="Credential Pool Service",
    version="1.0.0",
    description="Pooled external API keys with automatic failover and per-key circuit breaking.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
    )


# ── Pool observability ────────────────────────────────────────────────────────
app.include_router(pools_router)

# ── AI Gateway ────────────────────────────────────────────────────────────────
app.include_router(gateway_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "1.0.0"}
