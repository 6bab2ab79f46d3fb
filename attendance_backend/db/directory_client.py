import logging
from typing import List, Optional
from uuid import UUID
import asyncpg

from ..models.db_models import User, Course

logger = logging.getLogger(__name__)


class DirectoryClient:
    """
    Kullanıcı ve ders bilgilerini okuyan salt-okunur istemci.
    Bu tablolar dış CRUD servisine aittir; yoklama çekirdeği yalnızca kimlik ve
    görünen ad bilgilerine ihtiyaç duyar.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get_user(self, user_id: UUID) -> Optional[User]:
        query = "SELECT id, name, role FROM users WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, user_id)
            return User(id=record["id"], name=record["name"], role=record["role"].upper()) if record else None

    async def get_users(self, user_ids: List[UUID]) -> List[User]:
        """Verilen ID'lere göre kullanıcı listesi döndürür."""
        if not user_ids:
            return []
        query = "SELECT id, name, role FROM users WHERE id = ANY($1::uuid[]);"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, user_ids)
            return [User(id=r["id"], name=r["name"], role=r["role"].upper()) for r in records]

    async def get_course(self, course_id: UUID) -> Optional[Course]:
        query = "SELECT id, name, lecturer_id FROM courses WHERE id = $1;"
        async with self._pool.acquire() as connection:
            record = await connection.fetchrow(query, course_id)
            return Course(**record) if record else None

    async def get_courses(self, course_ids: List[UUID]) -> List[Course]:
        """Verilen ID'lere göre ders listesi döndürür."""
        if not course_ids:
            return []
        query = "SELECT id, name, lecturer_id FROM courses WHERE id = ANY($1::uuid[]);"
        async with self._pool.acquire() as connection:
            records = await connection.fetch(query, course_ids)
            return [Course(**record) for record in records]
