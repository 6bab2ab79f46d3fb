# attendance_backend/db/schema.py

import logging
import asyncpg

logger = logging.getLogger(__name__)

# 'users' ve 'courses' tabloları dış CRUD servisine aittir; burada yalnızca okunur.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS attendance_sessions (
    id UUID PRIMARY KEY,
    course_id UUID NOT NULL,
    lecturer_id UUID NOT NULL,
    session_code VARCHAR(16) NOT NULL,
    session_type VARCHAR(10) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    latitude DOUBLE PRECISION,
    longitude DOUBLE PRECISION,
    radius_meters DOUBLE PRECISION,
    CONSTRAINT uq_attendance_sessions_code UNIQUE (session_code),
    CONSTRAINT ck_attendance_sessions_expiry CHECK (expires_at > created_at)
);

CREATE INDEX IF NOT EXISTS ix_attendance_sessions_lecturer_expiry
    ON attendance_sessions (lecturer_id, expires_at);
CREATE INDEX IF NOT EXISTS ix_attendance_sessions_course
    ON attendance_sessions (course_id);

CREATE TABLE IF NOT EXISTS attendance_records (
    id UUID PRIMARY KEY,
    student_id UUID NOT NULL,
    course_id UUID NOT NULL,
    session_id UUID REFERENCES attendance_sessions (id),
    date TIMESTAMPTZ NOT NULL,
    status VARCHAR(10) NOT NULL,
    verification_method VARCHAR(20) NOT NULL,
    device_id VARCHAR(255),
    location_latitude DOUBLE PRECISION,
    location_longitude DOUBLE PRECISION,
    CONSTRAINT uq_attendance_records_student_session UNIQUE (student_id, session_id)
);

CREATE INDEX IF NOT EXISTS ix_attendance_records_course_date
    ON attendance_records (course_id, date);
"""


async def apply_schema(pool: asyncpg.Pool):
    """Yoklama tablolarını ve benzersizlik kısıtlarını (yoksa) oluşturur."""
    async with pool.acquire() as connection:
        await connection.execute(SCHEMA_SQL)
    logger.info("Yoklama tablo şeması doğrulandı.")
