#attendance_backend/api/dependencies.py
from typing import Optional
from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg

from ..config.config import Config
from ..db.redis_client import RedisClient
from ..db.session_store import AttendanceSessionStore
from ..db.record_store import AttendanceRecordStore
from ..db.directory_client import DirectoryClient
from ..services.attendance_service import AttendanceService


def get_config(request: Request) -> Config:
    """Uygulama başlangıcında oluşturulan ayar nesnesini döndürür."""
    return request.app.state.config


def get_redis_pool(request: Request) -> Optional[redis.ConnectionPool]:
    """
    Uygulamanın state'inden Redis bağlantı havuzunu alır ve bir bağımlılık olarak sağlar.
    Redis yapılandırılmamışsa None döner ve oturumlar önbelleğe alınmaz.
    """
    return getattr(request.app.state, "redis_pool", None)


def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """
    Uygulamanın state'inden PostgreSQL bağlantı havuzunu alır ve bir bağımlılık olarak sağlar.
    """
    return request.app.state.postgres_pool


def get_attendance_service(
    config: Config = Depends(get_config),
    redis_pool: Optional[redis.ConnectionPool] = Depends(get_redis_pool),
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)
) -> AttendanceService:
    """
    Her istek için yeni bir AttendanceService nesnesi oluşturur.

    Uygulama başlangıcında oluşturulan paylaşımlı bağlantı havuzlarını (pools)
    kullanarak depolama nesnelerini kurar ve servise constructor ile verir.
    Servisin kendisi durum tutmadığı için her istekte yeniden oluşturmak güvenlidir.
    """
    redis_client = RedisClient(pool=redis_pool) if redis_pool is not None else None

    return AttendanceService(
        session_store=AttendanceSessionStore(pool=postgres_pool, redis_client=redis_client),
        record_store=AttendanceRecordStore(pool=postgres_pool),
        directory=DirectoryClient(pool=postgres_pool),
        code_length=config.SESSION_CODE_LENGTH,
        code_alphabet=config.SESSION_CODE_ALPHABET,
        max_code_attempts=config.SESSION_CODE_MAX_ATTEMPTS,
        qr_size=config.QR_CODE_SIZE,
    )
