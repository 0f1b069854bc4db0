"""Main FastAPI application entry point."""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

import structlog
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.orm import Session

from kennel.api.routes import router
from kennel.clock import utcnow
from kennel.config import Settings, get_settings
from kennel.database import Base, engine, get_db
from kennel.errors import KennelError
from kennel.logging import setup_logging
# Import models to register them with SQLAlchemy Base
from kennel.models import audit, domain  # noqa: F401
from kennel.services.metrics import KennelMetrics
from kennel.services.override_tokens import OverrideTokenCodec

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    Base.metadata.create_all(bind=engine)
    logger.info("kennel_started", version=app.version)
    yield


def create_app(
    settings: Optional[Settings] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """
    Build the application and its per-app state.

    Settings, metrics, the token codec and the clock live on app.state, one
    set per app instance. The database engine is process-wide (kennel.database).
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Role-scoped kennel data access with MFA-gated override tokens and audit logging.",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.metrics = KennelMetrics()
    app.state.codec = OverrideTokenCodec(settings.OVERRIDE_HMAC_SECRET, clock=clock)
    app.state.clock = clock

    @app.exception_handler(KennelError)
    async def kennel_error_handler(request: Request, exc: KennelError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "code": exc.code, "details": exc.details},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = [
            {"field": ".".join(str(part) for part in err["loc"] if part != "body"), "message": err["msg"]}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid input data", "code": "validation_error", "details": {"fields": fields}},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        # Type and path only; the message may carry row data.
        logger.error("unhandled_error", error_type=type(exc).__name__, path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "code": "internal_error", "details": {}},
        )

    # Include API routes
    app.include_router(router, prefix="/api")

    # Health checks
    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": settings.APP_NAME}

    @app.get("/health/live")
    def liveness():
        return {"status": "alive"}

    @app.get("/health/ready")
    def readiness(db: Session = Depends(get_db)):
        db.execute(text("SELECT 1"))
        return {"status": "ready", "database": "ok"}

    @app.get("/metrics")
    def metrics():
        return Response(app.state.metrics.render(), media_type=app.state.metrics.content_type)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
