import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.exceptions import register_exception_handlers
from .api.routes import (
    audit_router,
    deposit_router,
    router as accounts_router,
    rpc_router,
    store_router,
    transfer_router,
    withdrawal_router,
)
from .core.config import get_settings
from .core.db import init_db

settings = get_settings()
logging.basicConfig(level=settings.log_level)

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield

app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.include_router(accounts_router)
app.include_router(deposit_router)
app.include_router(withdrawal_router)
app.include_router(transfer_router)
app.include_router(rpc_router)
app.include_router(store_router)
app.include_router(audit_router)
register_exception_handlers(app)

@app.get("/health")
def read_health() -> dict[str, str]:
    return {"status": "ok"}
