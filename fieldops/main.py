import os

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .db import engine
from .errors import DomainError, PersistenceError
from .logging import setup_logging, RequestIdMiddleware
from .migrations import run_migrations
from .routes.work_orders import router as work_orders_router


def create_app() -> FastAPI:
    setup_logging()
    logger = structlog.get_logger(__name__)
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(DomainError)
    async def _domain_error(request: Request, exc: DomainError):
        if not isinstance(exc, PersistenceError):
            logger.info("domain_error", error=type(exc).__name__, detail=exc.message, path=request.url.path)
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)

    # Routers
    app.include_router(work_orders_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_migrate:
            applied = run_migrations(engine)
            logger.info("startup_migrations", applied=applied)
        logger.info("startup_complete", environment=settings.environment)

    return app


app = create_app()
