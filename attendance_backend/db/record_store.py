import logging
from typing import List, Optional
from uuid import UUID
from datetime import datetime
import asyncpg

from ..models.db_models import AttendanceRecord, AttendanceStatus
from .errors import DuplicateAttendanceError

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = """
    id, student_id, course_id, session_id, date, status, verification_method,
    device_id, location_latitude, location_longitude
"""


class AttendanceRecordStore:
    """
    Öğrenci yoklama kayıtlarını yöneten PostgreSQL istemcisi.
    """
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def create(self, record: AttendanceRecord) -> AttendanceRecord:
        """
        Yeni bir yoklama kaydı ekler.

        (student_id, session_id) çifti için benzersizlik, veritabanındaki UNIQUE
        kısıtı ve ON CONFLICT DO NOTHING ile tek ifadede sağlanır. Aynı anda gelen
        iki istekten yalnızca biri satır ekleyebilir; diğeri
        DuplicateAttendanceError alır.
        """
        query = f"""
            INSERT INTO attendance_records ({_RECORD_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (student_id, session_id) DO NOTHING
            RETURNING {_RECORD_COLUMNS};
        """
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                query,
                record.id, record.student_id, record.course_id, record.session_id, record.date,
                record.status.value, record.verification_method.value, record.device_id,
                record.location_latitude, record.location_longitude,
            )
        if row is None:
            raise DuplicateAttendanceError(
                f"Student {record.student_id} already has a record for session {record.session_id}."
            )
        return AttendanceRecord.from_row(row)

    async def get_by_id(self, record_id: UUID) -> Optional[AttendanceRecord]:
        query = f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE id = $1;"
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(query, record_id)
            return AttendanceRecord.from_row(row) if row else None

    async def get_by_student_and_session(self, student_id: UUID, session_id: UUID) -> Optional[AttendanceRecord]:
        query = f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE student_id = $1 AND session_id = $2;"
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(query, student_id, session_id)
            return AttendanceRecord.from_row(row) if row else None

    async def get_by_student_and_course(self, student_id: UUID, course_id: UUID) -> List[AttendanceRecord]:
        query = f"""
            SELECT {_RECORD_COLUMNS} FROM attendance_records
            WHERE student_id = $1 AND course_id = $2
            ORDER BY date;
        """
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, student_id, course_id)
            return [AttendanceRecord.from_row(row) for row in rows]

    async def get_by_session(self, session_id: UUID) -> List[AttendanceRecord]:
        query = f"SELECT {_RECORD_COLUMNS} FROM attendance_records WHERE session_id = $1 ORDER BY date;"
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, session_id)
            return [AttendanceRecord.from_row(row) for row in rows]

    async def get_by_course(
        self,
        course_id: UUID,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> List[AttendanceRecord]:
        """Bir dersin kayıtlarını, verilirse tarih aralığıyla (uçlar dahil) getirir."""
        query = f"""
            SELECT {_RECORD_COLUMNS} FROM attendance_records
            WHERE course_id = $1
              AND ($2::timestamptz IS NULL OR date >= $2)
              AND ($3::timestamptz IS NULL OR date <= $3)
            ORDER BY date;
        """
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, course_id, from_date, to_date)
            return [AttendanceRecord.from_row(row) for row in rows]

    async def update_status(self, record_id: UUID, status: AttendanceStatus) -> bool:
        """Kaydın durumunu günceller; kayıt yoksa False döner."""
        query = "UPDATE attendance_records SET status = $2 WHERE id = $1;"
        async with self._pool.acquire() as connection:
            result = await connection.execute(query, record_id, status.value)
        return result.split()[-1] != "0"
