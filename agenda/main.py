from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agenda.api.v1.api import api_router
from agenda.core.config import settings
from agenda.core.database import engine, init_db
from agenda.core.errors import (
    ConflictError,
    FatalError,
    NotFoundError,
    SchedulingError,
    TransientError,
    ValidationError,
)
from agenda.core.logging import setup_logging
from agenda.core.redis import redis_client, redis_enabled

logger = structlog.get_logger(__name__)

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    TransientError: status.HTTP_503_SERVICE_UNAVAILABLE,
    FatalError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await init_db()
    if redis_enabled():
        await redis_client.init_redis()
    logger.info(
        "Agenda API started",
        environment=settings.ENVIRONMENT,
        redis=redis_enabled(),
    )
    yield
    await redis_client.close()
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    if status_code >= 500:
        logger.warning("Request failed", path=request.url.path, code=exc.code)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health():
    return {"status": "ok", "version": settings.VERSION}
