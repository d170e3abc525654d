"""FastAPI application exposing the decision analysis API."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_cors_origins, get_log_level
from decision.errors import DecisionError, StageFailure
from decision.persistence import InMemoryDecisionStore
from routers.decisions import get_decision_store, router as decisions_router

logging.basicConfig(
    level=get_log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_decision_store().close()
    logger.info("Decision store closed")


app = FastAPI(title="Decision Analysis API", lifespan=lifespan)

cors_origins = get_cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    # Browsers reject credentialed requests against a wildcard origin
    allow_credentials="*" not in cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(
    status_code: int, message: str, headers: Optional[dict[str, str]] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message},
        headers=headers,
    )


@app.exception_handler(DecisionError)
async def decision_error_handler(request: Request, exc: DecisionError) -> JSONResponse:
    if isinstance(exc, StageFailure):
        logger.error(
            "%s %s failed at stage %s: %s",
            request.method, request.url.path, exc.stage, exc.message,
        )
    elif exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return _error_response(exc.status_code, str(exc.detail), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return _error_response(400, message)


app.include_router(decisions_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/storage-info")
async def get_storage_info() -> dict[str, str]:
    """Return information about the current storage mode.

    Tells clients whether decisions persist across restarts.
    """
    in_memory = isinstance(get_decision_store(), InMemoryDecisionStore)
    return {
        "mode": "memory" if in_memory else "postgres",
        "persistent": str(not in_memory).lower(),
        "description": (
            "In-memory storage (decisions will be lost on restart)"
            if in_memory
            else "PostgreSQL database (decisions persist across restarts)"
        ),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
