import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .redis_client import redis_client
from .routers import client_packages, internal, package_templates, package_usages, reports
from .services.errors import LedgerError
from .services.expiration_checker import expiration_checker_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    if settings.expiration_sweep_enabled:
        task = asyncio.create_task(expiration_checker_loop())
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


app = FastAPI(title="Credit Packages API", lifespan=lifespan)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 409:
        logger.info(f"{request.method} {request.url.path}: {exc.code} {exc.context}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(package_templates.router)
app.include_router(client_packages.router)
app.include_router(package_usages.router)
app.include_router(reports.router)
app.include_router(internal.router)


@app.get("/health")
def health():
    try:
        redis_ok = bool(redis_client.ping())
    except Exception as e:
        logger.warning(f"Redis ping failed: {e}")
        redis_ok = False
    return {"redis": redis_ok}
