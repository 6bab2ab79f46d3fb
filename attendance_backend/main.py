# attendance_backend/main.py
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Optional
import redis.asyncio as redis
import asyncpg
import logging

from slowapi.errors import RateLimitExceeded

from .config.config import Config, settings
from .api import attendance
from .api.schemas.envelope import error_response
from .api.utilities.limiter import limiter
from .db.schema import apply_schema
from .logging.logging_config import setup_logging
from .services.errors import ServiceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Uygulama başlatıldığında ve durdurulduğunda çalışacak olan yaşam döngüsü yöneticisi.
    """
    config: Config = app.state.config
    setup_logging(config.LOG_LEVEL, config.LOG_DIR)
    logger.info("Uygulama başlatılıyor...")

    app.state.postgres_pool = None
    app.state.redis_pool = None

    try:
        postgres_pool = await asyncpg.create_pool(
            dsn=config.DATABASE_URL,
            min_size=config.DATABASE_POOL_MIN_SIZE,
            max_size=config.DATABASE_POOL_MAX_SIZE,
            command_timeout=config.DATABASE_COMMAND_TIMEOUT,
        )
        await apply_schema(postgres_pool)
        app.state.postgres_pool = postgres_pool
        logger.info("PostgreSQL bağlantı havuzu oluşturuldu.")

        if config.APPLICATION_REDIS_URL:
            app.state.redis_pool = redis.ConnectionPool.from_url(
                config.APPLICATION_REDIS_URL, decode_responses=True
            )
            logger.info("Redis bağlantı havuzu oluşturuldu; canlı oturumlar önbelleğe alınacak.")
        else:
            logger.info("APPLICATION_REDIS_URL tanımlı değil; oturum önbelleği devre dışı.")

    except Exception as e:
        logger.error(f"HATA: Başlangıç sırasında bir hata oluştu: {e}", exc_info=True)

    yield

    logger.info("Uygulama kapatılıyor...")
    if app.state.postgres_pool:
        await app.state.postgres_pool.close()
        logger.info("PostgreSQL bağlantı havuzu kapatıldı.")
    if app.state.redis_pool:
        await app.state.redis_pool.disconnect()
        logger.info("Redis bağlantı havuzu kapatıldı.")


# --- Hataları tek tip yanıt zarfına çeviren yöneticiler ---

async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"Service error on {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=error_response(str(exc)))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error_response("; ".join(messages)))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error_response(f"Rate limit exceeded: {exc.detail}"),
    )


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}.", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response("An unexpected server error occurred."),
    )


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Uygulamanın tek kompozisyon kökü: ayarları, limiter'ı ve router'ları bağlar."""
    app = FastAPI(
        title="Campus Attendance API",
        description="Attendance sessions, QR/geofenced check-in and attendance records.",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.config = config or settings
    app.state.limiter = limiter

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.include_router(attendance.router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    def health_check():
        """Uygulamanın ayakta ve sağlıklı olup olmadığını kontrol etmek için basit bir endpoint."""
        return {"status": "ok", "message": "Campus Attendance API is running."}

    return app


app = create_app()
