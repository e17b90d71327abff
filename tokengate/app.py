from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tokengate.api.error_handling import register_exception_handlers
from tokengate.api.gate import AuthenticationGate
from tokengate.api.policy import RoutePolicyMiddleware
from tokengate.api.routes import router
from tokengate.logging import get_logger, set_correlation_id
from tokengate.service.runtime import get_runtime
from tokengate.storage.errors import StoreUnavailable

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release the token store on shutdown."""
    get_runtime()
    logger.info("app_started", version=__version__)

    yield

    await get_runtime().cache.close()
    logger.info("runtime_cleanup_complete")


app = FastAPI(title="tokengate", version=__version__, lifespan=lifespan)

# Starlette runs the last-added middleware first: correlation id, then gate, then policy
app.add_middleware(RoutePolicyMiddleware)
app.add_middleware(AuthenticationGate, tokens=lambda: get_runtime().tokens)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID.

    Taken from the X-Request-ID header when the client sends one, otherwise a
    fresh UUID. It is bound for structured logging and echoed back in the
    X-Request-ID response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    runtime = get_runtime()
    try:
        await asyncio.wait_for(
            asyncio.to_thread(runtime.cache.verify_connection), HEALTH_CHECK_TIMEOUT_SECONDS
        )
    except (asyncio.TimeoutError, StoreUnavailable) as exc:
        logger.error("health_check_store_failed", error_type=type(exc).__name__)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "version": __version__})
    return {"status": "ok", "version": __version__}
