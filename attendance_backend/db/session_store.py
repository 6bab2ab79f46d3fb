import logging
from typing import List, Optional
from uuid import UUID
from datetime import datetime, timezone
import asyncpg

from ..models.db_models import AttendanceSession
from ..tools.session_code import normalize_session_code
from .errors import DuplicateSessionCodeError
from .redis_client import RedisClient

logger = logging.getLogger(__name__)

_SESSION_COLUMNS = """
    id, course_id, lecturer_id, session_code, session_type, created_at, expires_at,
    latitude, longitude, radius_meters
"""


class AttendanceSessionStore:
    """
    Yoklama oturumlarını PostgreSQL'de saklayan depolama sınıfı.

    Kod seçmez, geofence doğrulamaz; tek bütünlük kuralı oturum kodunun
    benzersizliğidir ve bu kural veritabanındaki UNIQUE kısıtıyla sağlanır.
    Redis istemcisi verilirse canlı oturumlar koda göre önbelleğe alınır.
    """
    def __init__(self, pool: asyncpg.Pool, redis_client: Optional[RedisClient] = None):
        self._pool = pool
        self._redis_client = redis_client

    async def create(self, session: AttendanceSession) -> AttendanceSession:
        """
        Yeni oturumu ekler. Kod başka bir oturumun koduyla çakışırsa
        DuplicateSessionCodeError fırlatır. Ekleme tek bir ifadedir; çakışma
        kontrolü ile ekleme arasında yarış durumu oluşmaz.
        """
        session = session.model_copy(update={"session_code": normalize_session_code(session.session_code)})
        geo_fence = session.geo_fence
        query = f"""
            INSERT INTO attendance_sessions ({_SESSION_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (session_code) DO NOTHING
            RETURNING {_SESSION_COLUMNS};
        """
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                query,
                session.id, session.course_id, session.lecturer_id, session.session_code,
                session.session_type.value, session.created_at, session.expires_at,
                geo_fence.latitude if geo_fence else None,
                geo_fence.longitude if geo_fence else None,
                geo_fence.radius_meters if geo_fence else None,
            )
        if row is None:
            raise DuplicateSessionCodeError(f"Session code '{session.session_code}' is already in use.")

        created = AttendanceSession.from_row(row)
        await self._cache(created)
        return created

    async def get_by_id(self, session_id: UUID) -> Optional[AttendanceSession]:
        """Tek bir oturumu ID ile getirir."""
        query = f"SELECT {_SESSION_COLUMNS} FROM attendance_sessions WHERE id = $1;"
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(query, session_id)
            return AttendanceSession.from_row(row) if row else None

    async def get_by_code(self, session_code: str) -> Optional[AttendanceSession]:
        """
        Oturumu koduyla getirir; önce önbelleğe, sonra veritabanına bakar.

        Veritabanından okunan satır önbelleğe geri yazılmaz; önbelleği yalnızca
        `create` ve `update` doldurur.
        """
        code = normalize_session_code(session_code)

        if self._redis_client is not None:
            try:
                cached = await self._redis_client.get_live_session_by_code(code)
                if cached:
                    return cached
            except Exception:
                logger.warning(f"Redis lookup failed for session code '{code}', falling back to PostgreSQL.", exc_info=True)

        query = f"SELECT {_SESSION_COLUMNS} FROM attendance_sessions WHERE session_code = $1;"
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(query, code)
        return AttendanceSession.from_row(row) if row else None

    async def get_active_for_lecturer(self, lecturer_id: UUID, now: datetime) -> List[AttendanceSession]:
        """Bir öğretim üyesinin süresi dolmamış tüm oturumlarını getirir."""
        query = f"""
            SELECT {_SESSION_COLUMNS} FROM attendance_sessions
            WHERE lecturer_id = $1 AND expires_at > $2
            ORDER BY created_at DESC;
        """
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, lecturer_id, now)
            return [AttendanceSession.from_row(row) for row in rows]

    async def get_by_course(self, course_id: UUID) -> List[AttendanceSession]:
        """Bir dersin bütün oturumlarını getirir."""
        query = f"""
            SELECT {_SESSION_COLUMNS} FROM attendance_sessions
            WHERE course_id = $1
            ORDER BY created_at DESC;
        """
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, course_id)
            return [AttendanceSession.from_row(row) for row in rows]

    async def update(self, session: AttendanceSession) -> bool:
        """Yalnızca bitiş zamanını ve geofence bilgisini günceller."""
        geo_fence = session.geo_fence
        query = """
            UPDATE attendance_sessions
            SET expires_at = $2, latitude = $3, longitude = $4, radius_meters = $5
            WHERE id = $1;
        """
        async with self._pool.acquire() as connection:
            result = await connection.execute(
                query, session.id, session.expires_at,
                geo_fence.latitude if geo_fence else None,
                geo_fence.longitude if geo_fence else None,
                geo_fence.radius_meters if geo_fence else None,
            )
        updated = result.split()[-1] != "0"

        # A stale cached copy would keep accepting check-ins, so eviction errors propagate.
        if updated and self._redis_client is not None:
            await self._redis_client.evict_live_session(session.session_code)
            await self._cache(session)
        return updated

    async def _cache(self, session: AttendanceSession):
        if self._redis_client is None:
            return
        try:
            await self._redis_client.cache_live_session(session, now=datetime.now(timezone.utc))
        except Exception:
            logger.warning(f"Could not cache session '{session.session_code}' in Redis.", exc_info=True)
