import logging
from typing import Optional
from datetime import datetime, timezone
import redis.asyncio as redis

from ..models.db_models import AttendanceSession

logger = logging.getLogger(__name__)


class RedisClient:
    """
    Canlı (süresi dolmamış) yoklama oturumlarını koda göre önbellekleyen Redis istemcisi.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)

    @staticmethod
    def _code_key(session_code: str) -> str:
        return f"attendance_session:code:{session_code}"

    async def cache_live_session(self, session: AttendanceSession, now: Optional[datetime] = None):
        """
        Oturumu, süresi dolana kadar yaşayacak bir anahtarla kaydeder.
        Süresi zaten dolmuş oturumlar önbelleğe alınmaz.
        """
        now = now or datetime.now(timezone.utc)
        ttl_ms = int((session.expires_at - now).total_seconds() * 1000)
        if ttl_ms <= 0:
            return
        await self._redis.set(self._code_key(session.session_code), session.model_dump_json(), px=ttl_ms)

    async def get_live_session_by_code(self, session_code: str) -> Optional[AttendanceSession]:
        """Önbellekteki oturumu koduyla getirir."""
        session_json = await self._redis.get(self._code_key(session_code))
        return AttendanceSession.model_validate_json(session_json) if session_json else None

    async def evict_live_session(self, session_code: str) -> int:
        """Oturumu önbellekten siler."""
        return await self._redis.delete(self._code_key(session_code))
