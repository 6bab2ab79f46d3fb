import logging
import math
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar
from uuid import UUID, uuid4
from datetime import datetime, timedelta, timezone

# --- Required stores, tools and models ---
from ..db.session_store import AttendanceSessionStore
from ..db.record_store import AttendanceRecordStore
from ..db.directory_client import DirectoryClient
from ..db.errors import StoreError, DuplicateSessionCodeError, DuplicateAttendanceError
from ..models.db_models import (
    AttendanceRecord, AttendanceSession, AttendanceStatus, Caller, Course, GeoFence,
    Location, SessionType, User, UserRole, VerificationMethod,
)
from ..tools.geo_verifier import is_within_radius
from ..tools.qr_encoder import encode_qr_png, DEFAULT_QR_SIZE
from ..tools.session_code import generate_session_code, normalize_session_code, DEFAULT_ALPHABET, DEFAULT_CODE_LENGTH
from .errors import (
    ServiceError, BadRequestError, AuthorizationError, NotFoundError, ConflictError, InternalServiceError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAFF_ROLES = {UserRole.LECTURER, UserRole.ADMIN}


# --- Enriched Model for API Responses ---
class EnrichedAttendanceRecord(AttendanceRecord):
    """Attendance record joined with the student's and the course's display names."""
    student_name: Optional[str] = None
    course_name: Optional[str] = None


class EnrichedAttendanceSession(AttendanceSession):
    """Attendance session joined with the course's and the lecturer's display names."""
    course_name: Optional[str] = None
    lecturer_name: Optional[str] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Saat dilimi belirtilmemiş zamanları UTC kabul eder."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class AttendanceService:
    """
    Service layer that runs the attendance session lifecycle and the check-in protocol.

    The service keeps no mutable state of its own; everything lives behind the
    stores, so one instance per request is cheap and safe.
    """
    def __init__(
        self,
        session_store: AttendanceSessionStore,
        record_store: AttendanceRecordStore,
        directory: DirectoryClient,
        qr_encoder: Callable[[str, int], bytes] = encode_qr_png,
        code_generator: Callable[[int, str], str] = generate_session_code,
        clock: Callable[[], datetime] = _utc_now,
        code_length: int = DEFAULT_CODE_LENGTH,
        code_alphabet: str = DEFAULT_ALPHABET,
        max_code_attempts: int = 5,
        qr_size: int = DEFAULT_QR_SIZE,
    ):
        self.session_store = session_store
        self.record_store = record_store
        self.directory = directory
        self.qr_encoder = qr_encoder
        self.code_generator = code_generator
        self.clock = clock
        self.code_length = code_length
        self.code_alphabet = code_alphabet
        self.max_code_attempts = max(1, max_code_attempts)
        self.qr_size = qr_size

    # ===== Helpers =====

    async def _store_call(self, action: str, awaitable: Awaitable[T]) -> T:
        """Awaits a persistence call and turns unexpected failures into InternalServiceError."""
        try:
            return await awaitable
        except (StoreError, ServiceError):
            raise
        except Exception as e:
            logger.error(f"Persistence error while {action}.", exc_info=True)
            raise InternalServiceError(f"A server error occurred while {action}.") from e

    @staticmethod
    def _require_role(caller: Caller, allowed: Iterable[UserRole], message: str):
        if caller.role not in allowed:
            logger.warning(f"User '{caller.user_id}' with role {caller.role.value} was denied: {message}")
            raise AuthorizationError(message)

    @staticmethod
    def _validate_geo_fence(geo_fence: Optional[GeoFence]):
        if geo_fence is None:
            raise BadRequestError("Geofence is required for physical sessions.")
        if not all(math.isfinite(v) for v in (geo_fence.latitude, geo_fence.longitude, geo_fence.radius_meters)):
            raise BadRequestError("Geofence coordinates and radius must be finite numbers.")
        if not -90 <= geo_fence.latitude <= 90:
            raise BadRequestError("Latitude must be between -90 and 90.")
        if not -180 <= geo_fence.longitude <= 180:
            raise BadRequestError("Longitude must be between -180 and 180.")
        if geo_fence.radius_meters <= 0:
            raise BadRequestError("Radius must be greater than 0 meters.")

    async def _get_course_or_raise(self, course_id: UUID) -> Course:
        course = await self._store_call("resolving the course", self.directory.get_course(course_id))
        if not course:
            raise NotFoundError("Course not found.")
        return course

    async def _get_session_or_raise(self, session_id: UUID) -> AttendanceSession:
        session = await self._store_call("loading the attendance session", self.session_store.get_by_id(session_id))
        if not session:
            raise NotFoundError("Attendance session not found.")
        return session

    async def _get_owned_session(self, caller: Caller, session_id: UUID) -> AttendanceSession:
        self._require_role(caller, {UserRole.LECTURER}, "Only lecturers can modify attendance sessions.")
        session = await self._get_session_or_raise(session_id)
        if session.lecturer_id != caller.user_id:
            raise AuthorizationError("You don't have permission to modify this attendance session.")
        return session

    async def _enrich_records(self, records: List[AttendanceRecord]) -> List[EnrichedAttendanceRecord]:
        """
        Joins records with student and course names. Records whose student or
        course cannot be resolved are skipped.
        """
        if not records:
            return []

        student_ids = list({rec.student_id for rec in records})
        course_ids = list({rec.course_id for rec in records})
        users = await self._store_call("fetching student information", self.directory.get_users(student_ids))
        courses = await self._store_call("fetching course information", self.directory.get_courses(course_ids))
        user_map = {user.id: user for user in users}
        course_map = {course.id: course for course in courses}

        enriched_records = []
        for record in records:
            student = user_map.get(record.student_id)
            course = course_map.get(record.course_id)
            if not student or not course:
                logger.warning(f"Skipping attendance record {record.id}: student or course could not be resolved.")
                continue
            enriched_records.append(
                EnrichedAttendanceRecord(**record.model_dump(), student_name=student.name, course_name=course.name)
            )
        return enriched_records

    async def _enrich_sessions(
        self, sessions: List[AttendanceSession], skip_unresolved: bool = True
    ) -> List[EnrichedAttendanceSession]:
        """
        Joins sessions with course and lecturer names. In listings, sessions whose
        course or lecturer cannot be resolved are skipped; otherwise the names stay empty.
        """
        if not sessions:
            return []

        lecturer_ids = list({s.lecturer_id for s in sessions})
        course_ids = list({s.course_id for s in sessions})
        users = await self._store_call("fetching lecturer information", self.directory.get_users(lecturer_ids))
        courses = await self._store_call("fetching course information", self.directory.get_courses(course_ids))
        user_map = {user.id: user for user in users}
        course_map = {course.id: course for course in courses}

        enriched_sessions = []
        for session in sessions:
            lecturer = user_map.get(session.lecturer_id)
            course = course_map.get(session.course_id)
            if skip_unresolved and (not lecturer or not course):
                logger.warning(f"Skipping attendance session {session.id}: course or lecturer could not be resolved.")
                continue
            enriched_sessions.append(EnrichedAttendanceSession(
                **session.model_dump(),
                course_name=course.name if course else None,
                lecturer_name=lecturer.name if lecturer else None,
            ))
        return enriched_sessions

    async def _enrich_session(self, session: AttendanceSession) -> EnrichedAttendanceSession:
        return (await self._enrich_sessions([session], skip_unresolved=False))[0]

    # ===== Session Management =====

    async def create_session(
        self,
        caller: Caller,
        course_id: UUID,
        session_type: SessionType,
        duration_minutes: int,
        geo_fence: Optional[GeoFence] = None,
    ) -> EnrichedAttendanceSession:
        logger.info(f"Lecturer '{caller.user_id}' is creating a {session_type.value} session for course {course_id}.")
        self._require_role(caller, {UserRole.LECTURER}, "Only lecturers can create attendance sessions.")

        if duration_minutes <= 0:
            raise BadRequestError("Duration must be greater than 0 minutes.")
        if session_type == SessionType.PHYSICAL or geo_fence is not None:
            self._validate_geo_fence(geo_fence)

        course = await self._get_course_or_raise(course_id)
        if course.lecturer_id != caller.user_id:
            raise AuthorizationError("You don't have permission to create sessions for this course.")

        now = self.clock()
        expires_at = now + timedelta(minutes=duration_minutes)

        for attempt in range(1, self.max_code_attempts + 1):
            new_session = AttendanceSession(
                id=uuid4(),
                course_id=course.id,
                lecturer_id=caller.user_id,
                session_code=normalize_session_code(self.code_generator(self.code_length, self.code_alphabet)),
                session_type=session_type,
                created_at=now,
                expires_at=expires_at,
                geo_fence=geo_fence,
            )
            try:
                created = await self._store_call("saving the attendance session", self.session_store.create(new_session))
            except DuplicateSessionCodeError:
                logger.warning(f"Session code collision on attempt {attempt}/{self.max_code_attempts}, regenerating.")
                continue

            logger.info(f"Attendance session {created.id} created with code {created.session_code}.")
            return await self._enrich_session(created)

        logger.error(f"Could not allocate a unique session code after {self.max_code_attempts} attempts.")
        raise ConflictError("Could not allocate a unique session code. Please try again.")

    async def get_session(self, caller: Caller, session_id: UUID) -> EnrichedAttendanceSession:
        self._require_role(caller, STAFF_ROLES, "Only lecturers and admins can view sessions by id.")
        return await self._enrich_session(await self._get_session_or_raise(session_id))

    async def get_session_by_code(self, session_code: str) -> EnrichedAttendanceSession:
        code = normalize_session_code(session_code)
        session = await self._store_call("looking up the session code", self.session_store.get_by_code(code))
        if not session:
            raise NotFoundError("Attendance session not found.")
        return await self._enrich_session(session)

    async def get_active_sessions_for_lecturer(self, caller: Caller) -> List[EnrichedAttendanceSession]:
        self._require_role(caller, {UserRole.LECTURER}, "Only lecturers have active sessions.")
        sessions = await self._store_call(
            "loading active sessions",
            self.session_store.get_active_for_lecturer(caller.user_id, self.clock()),
        )
        return await self._enrich_sessions(sessions)

    async def get_sessions_for_course(self, caller: Caller, course_id: UUID) -> List[EnrichedAttendanceSession]:
        self._require_role(caller, STAFF_ROLES, "Only lecturers and admins can list course sessions.")
        await self._get_course_or_raise(course_id)
        sessions = await self._store_call("loading course sessions", self.session_store.get_by_course(course_id))
        return await self._enrich_sessions(sessions)

    async def update_session(
        self,
        caller: Caller,
        session_id: UUID,
        duration_minutes: Optional[int] = None,
        geo_fence: Optional[GeoFence] = None,
    ) -> EnrichedAttendanceSession:
        """Extends (or shortens) a session from now and/or moves its geofence."""
        session = await self._get_owned_session(caller, session_id)
        if duration_minutes is None and geo_fence is None:
            raise BadRequestError("Nothing to update: provide a duration or a geofence.")

        changes = {}
        if duration_minutes is not None:
            if duration_minutes <= 0:
                raise BadRequestError("Duration must be greater than 0 minutes.")
            changes["expires_at"] = self.clock() + timedelta(minutes=duration_minutes)
        if geo_fence is not None:
            self._validate_geo_fence(geo_fence)
            changes["geo_fence"] = geo_fence

        updated = session.model_copy(update=changes)
        if not await self._store_call("updating the attendance session", self.session_store.update(updated)):
            raise NotFoundError("Attendance session not found.")
        logger.info(f"Attendance session {session_id} updated: {sorted(changes)}.")
        return await self._enrich_session(updated)

    async def close_session(self, caller: Caller, session_id: UUID) -> EnrichedAttendanceSession:
        """Ends a session early. Closing an already expired session changes nothing."""
        session = await self._get_owned_session(caller, session_id)
        now = self.clock()
        if session.is_expired(now):
            return await self._enrich_session(session)

        closed = session.model_copy(update={"expires_at": max(now, session.created_at + timedelta(microseconds=1))})
        if not await self._store_call("closing the attendance session", self.session_store.update(closed)):
            raise NotFoundError("Attendance session not found.")
        logger.info(f"Attendance session {session_id} closed by lecturer '{caller.user_id}'.")
        return await self._enrich_session(closed)

    # ===== QR Codes =====

    def generate_qr_code(self, session_code: str, size: Optional[int] = None) -> bytes:
        logger.debug(f"Generating QR code for session code: {session_code}")
        return self.qr_encoder(session_code, size or self.qr_size)

    async def get_session_qr(self, caller: Caller, session_id: UUID, size: Optional[int] = None) -> bytes:
        self._require_role(caller, STAFF_ROLES, "Only lecturers and admins can view sessions by id.")
        session = await self._get_session_or_raise(session_id)
        return self.generate_qr_code(session.session_code, size)

    # ===== Check-in =====

    async def mark_attendance(
        self,
        caller: Caller,
        session_code: str,
        location: Optional[Location] = None,
        device_id: Optional[str] = None,
        verification_method: VerificationMethod = VerificationMethod.QR_CODE,
    ) -> EnrichedAttendanceRecord:
        """
        Records a student's check-in for the session identified by `session_code`.

        Guards run in order: unknown code (NotFound), expired session (BadRequest),
        existing record (Conflict), geofence for physical sessions (BadRequest).
        The final insert relies on the record store's unique constraint, so two
        concurrent identical requests still produce exactly one record.
        """
        logger.info(f"Student '{caller.user_id}' is checking in with session code '{session_code}'.")
        self._require_role(caller, {UserRole.STUDENT}, "Only students can mark attendance.")

        code = normalize_session_code(session_code)
        if not code:
            raise BadRequestError("Session code is required.")

        session = await self._store_call("looking up the session code", self.session_store.get_by_code(code))
        if not session:
            logger.warning(f"Student '{caller.user_id}' used an unknown session code '{code}'.")
            raise NotFoundError("Invalid session code.")

        now = self.clock()
        if session.is_expired(now):
            logger.warning(f"Student '{caller.user_id}' tried to join expired session {session.id}.")
            raise BadRequestError("Attendance session has expired.")

        existing_record = await self._store_call(
            "checking for an existing record",
            self.record_store.get_by_student_and_session(caller.user_id, session.id),
        )
        if existing_record:
            raise ConflictError("Attendance already marked for this session.")

        student: Optional[User] = await self._store_call("resolving the student", self.directory.get_user(caller.user_id))
        if not student:
            raise NotFoundError("Student not found.")
        course = await self._get_course_or_raise(session.course_id)

        if session.session_type == SessionType.PHYSICAL and session.geo_fence is not None:
            if location is None:
                raise BadRequestError("Location is required for physical attendance.")
            fence = session.geo_fence
            if not is_within_radius(location.latitude, location.longitude, fence.latitude, fence.longitude, fence.radius_meters):
                logger.warning(f"Student '{caller.user_id}' is outside the attendance area of session {session.id}.")
                raise BadRequestError("You are not within the required attendance area.")

        new_record = AttendanceRecord(
            id=uuid4(),
            student_id=caller.user_id,
            course_id=session.course_id,
            session_id=session.id,
            date=now,
            status=AttendanceStatus.PRESENT,
            verification_method=verification_method,
            device_id=device_id,
            location_latitude=location.latitude if location else None,
            location_longitude=location.longitude if location else None,
        )
        try:
            created = await self._store_call("saving the attendance record", self.record_store.create(new_record))
        except DuplicateAttendanceError as e:
            logger.warning(f"Concurrent duplicate check-in rejected for student '{caller.user_id}' in session {session.id}.")
            raise ConflictError("Attendance already marked for this session.") from e

        logger.info(f"Attendance record {created.id} created for student '{caller.user_id}'.")
        return EnrichedAttendanceRecord(**created.model_dump(), student_name=student.name, course_name=course.name)

    async def record_manual_attendance(
        self,
        caller: Caller,
        student_id: UUID,
        course_id: UUID,
        status: AttendanceStatus = AttendanceStatus.PRESENT,
        session_id: Optional[UUID] = None,
    ) -> EnrichedAttendanceRecord:
        """Lets a lecturer (of the course) or an admin mark a student without a check-in."""
        self._require_role(caller, STAFF_ROLES, "Only lecturers and admins can mark attendance manually.")

        course = await self._get_course_or_raise(course_id)
        if caller.role == UserRole.LECTURER and course.lecturer_id != caller.user_id:
            raise AuthorizationError("You don't have permission to mark attendance for this course.")

        student = await self._store_call("resolving the student", self.directory.get_user(student_id))
        if not student:
            raise NotFoundError("Student not found.")
        if student.role != UserRole.STUDENT:
            raise BadRequestError("Attendance can only be recorded for students.")

        if session_id is not None:
            session = await self._get_session_or_raise(session_id)
            if session.course_id != course_id:
                raise BadRequestError("The session does not belong to this course.")

        new_record = AttendanceRecord(
            id=uuid4(),
            student_id=student_id,
            course_id=course_id,
            session_id=session_id,
            date=self.clock(),
            status=status,
            verification_method=VerificationMethod.MANUAL,
        )
        try:
            created = await self._store_call("saving the attendance record", self.record_store.create(new_record))
        except DuplicateAttendanceError as e:
            raise ConflictError("Attendance already marked for this session.") from e

        logger.info(f"Manual attendance record {created.id} created by '{caller.user_id}' for student '{student_id}'.")
        return EnrichedAttendanceRecord(**created.model_dump(), student_name=student.name, course_name=course.name)

    async def update_attendance_status(self, caller: Caller, record_id: UUID, status: AttendanceStatus) -> EnrichedAttendanceRecord:
        self._require_role(caller, STAFF_ROLES, "Only lecturers and admins can change attendance status.")

        record = await self._store_call("loading the attendance record", self.record_store.get_by_id(record_id))
        if not record:
            raise NotFoundError("Attendance record not found.")
        if not await self._store_call("updating the attendance status", self.record_store.update_status(record_id, status)):
            raise NotFoundError("Attendance record not found.")

        logger.info(f"Attendance record {record_id} set to {status.value} by '{caller.user_id}'.")
        updated = record.model_copy(update={"status": status})
        enriched = await self._enrich_records([updated])
        return enriched[0] if enriched else EnrichedAttendanceRecord(**updated.model_dump())

    # ===== Attendance Queries =====

    async def get_attendance_for_student(self, caller: Caller, student_id: UUID, course_id: UUID) -> List[EnrichedAttendanceRecord]:
        if caller.role == UserRole.STUDENT and caller.user_id != student_id:
            raise AuthorizationError("Students can only view their own attendance.")

        student = await self._store_call("resolving the student", self.directory.get_user(student_id))
        if not student:
            raise NotFoundError("Student not found.")
        course = await self._get_course_or_raise(course_id)

        records = await self._store_call(
            "loading attendance records",
            self.record_store.get_by_student_and_course(student_id, course_id),
        )
        return [
            EnrichedAttendanceRecord(**record.model_dump(), student_name=student.name, course_name=course.name)
            for record in records
        ]

    async def get_attendance_for_session(self, caller: Caller, session_id: UUID) -> List[EnrichedAttendanceRecord]:
        self._require_role(caller, STAFF_ROLES, "Only lecturers and admins can view session attendance.")
        await self._get_session_or_raise(session_id)
        records = await self._store_call("loading attendance records", self.record_store.get_by_session(session_id))
        return await self._enrich_records(records)

    async def get_attendance_for_course(
        self,
        caller: Caller,
        course_id: UUID,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> List[EnrichedAttendanceRecord]:
        self._require_role(caller, STAFF_ROLES, "Only lecturers and admins can view course attendance.")
        from_date, to_date = _as_utc(from_date), _as_utc(to_date)
        if from_date and to_date and from_date > to_date:
            raise BadRequestError("fromDate must not be later than toDate.")

        await self._get_course_or_raise(course_id)
        records = await self._store_call(
            "loading attendance records",
            self.record_store.get_by_course(course_id, from_date, to_date),
        )
        return await self._enrich_records(records)
