import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# Test edilecek servis ve modeller
from attendance_backend.services.attendance_service import (
    AttendanceService, EnrichedAttendanceRecord, EnrichedAttendanceSession,
)
from attendance_backend.services.errors import (
    AuthorizationError, BadRequestError, ConflictError, InternalServiceError, NotFoundError,
)
from attendance_backend.db.errors import DuplicateAttendanceError, DuplicateSessionCodeError
from attendance_backend.models.db_models import (
    AttendanceRecord, AttendanceSession, AttendanceStatus, Caller, Course, GeoFence, Location,
    SessionType, User, UserRole, VerificationMethod,
)
from tests.fakes import FakeClock, InMemoryDirectory, InMemoryRecordStore, InMemorySessionStore

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

# --- Test Fixtures ---

@pytest.fixture
def lecturer() -> User:
    return User(id=uuid.uuid4(), name="Dr. Ada Lovelace", role=UserRole.LECTURER)

@pytest.fixture
def other_lecturer() -> User:
    return User(id=uuid.uuid4(), name="Dr. Grace Hopper", role=UserRole.LECTURER)

@pytest.fixture
def student() -> User:
    return User(id=uuid.uuid4(), name="Test Student", role=UserRole.STUDENT)

@pytest.fixture
def course(lecturer) -> Course:
    return Course(id=uuid.uuid4(), name="Software Architecture", lecturer_id=lecturer.id)

@pytest.fixture
def lecturer_caller(lecturer) -> Caller:
    return Caller(user_id=lecturer.id, role=UserRole.LECTURER)

@pytest.fixture
def student_caller(student) -> Caller:
    return Caller(user_id=student.id, role=UserRole.STUDENT)

@pytest.fixture
def admin_caller() -> Caller:
    return Caller(user_id=uuid.uuid4(), role=UserRole.ADMIN)

@pytest.fixture
def physical_session(course, lecturer) -> AttendanceSession:
    """A live physical session fenced 100 m around (0, 0)."""
    return AttendanceSession(
        id=uuid.uuid4(),
        course_id=course.id,
        lecturer_id=lecturer.id,
        session_code="ABC123",
        session_type=SessionType.PHYSICAL,
        created_at=NOW - timedelta(minutes=5),
        expires_at=NOW + timedelta(minutes=10),
        geo_fence=GeoFence(latitude=0.0, longitude=0.0, radius_meters=100.0),
    )

@pytest.fixture
def online_session(course, lecturer) -> AttendanceSession:
    return AttendanceSession(
        id=uuid.uuid4(),
        course_id=course.id,
        lecturer_id=lecturer.id,
        session_code="ONL456",
        session_type=SessionType.ONLINE,
        created_at=NOW - timedelta(minutes=5),
        expires_at=NOW + timedelta(minutes=10),
    )

@pytest_asyncio.fixture
async def service_instance():
    """Creates an AttendanceService with mocked stores and a fixed clock for each test."""
    mock_session_store = AsyncMock()
    mock_record_store = AsyncMock()
    mock_directory = AsyncMock()
    mock_session_store.create.side_effect = lambda session: session
    mock_record_store.create.side_effect = lambda record: record
    mock_record_store.get_by_student_and_session.return_value = None
    service = AttendanceService(
        session_store=mock_session_store,
        record_store=mock_record_store,
        directory=mock_directory,
        qr_encoder=lambda data, size: f"{data}:{size}".encode(),
        clock=lambda: NOW,
    )
    return service, mock_session_store, mock_record_store, mock_directory


def _record(student_id, course_id, session_id=None, **kwargs) -> AttendanceRecord:
    return AttendanceRecord(
        id=uuid.uuid4(), student_id=student_id, course_id=course_id, session_id=session_id, date=NOW, **kwargs
    )


# --- Test Scenarios ---

@pytest.mark.asyncio
class TestSessionManagement:

    async def test_create_physical_session_success(self, service_instance, lecturer_caller, course):
        """Scenario: A lecturer opens a fenced physical session for their own course."""
        service, mock_session_store, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        fence = GeoFence(latitude=41.0, longitude=29.0, radius_meters=50)

        session = await service.create_session(lecturer_caller, course.id, SessionType.PHYSICAL, 15, fence)

        mock_session_store.create.assert_called_once()
        assert session.course_id == course.id
        assert session.lecturer_id == lecturer_caller.user_id
        assert session.created_at == NOW
        assert session.expires_at == NOW + timedelta(minutes=15)
        assert session.geo_fence == fence
        assert len(session.session_code) == 6
        assert session.session_code == session.session_code.upper()

    async def test_create_online_session_without_geofence(self, service_instance, lecturer_caller, course):
        service, _, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course

        session = await service.create_session(lecturer_caller, course.id, SessionType.ONLINE, 30)

        assert session.session_type == SessionType.ONLINE
        assert session.geo_fence is None

    async def test_create_session_by_student_is_forbidden(self, service_instance, student_caller, course):
        service, mock_session_store, _, _ = service_instance
        with pytest.raises(AuthorizationError):
            await service.create_session(student_caller, course.id, SessionType.ONLINE, 30)
        mock_session_store.create.assert_not_called()

    @pytest.mark.parametrize("duration", [0, -5])
    async def test_create_session_with_non_positive_duration(self, service_instance, lecturer_caller, course, duration):
        service, _, _, _ = service_instance
        with pytest.raises(BadRequestError, match="Duration must be greater than 0"):
            await service.create_session(lecturer_caller, course.id, SessionType.ONLINE, duration)

    async def test_create_physical_session_without_geofence(self, service_instance, lecturer_caller, course):
        service, _, _, _ = service_instance
        with pytest.raises(BadRequestError, match="Geofence is required"):
            await service.create_session(lecturer_caller, course.id, SessionType.PHYSICAL, 15)

    @pytest.mark.parametrize("fence, message", [
        (GeoFence(latitude=95.0, longitude=0.0, radius_meters=50), "Latitude"),
        (GeoFence(latitude=0.0, longitude=-181.0, radius_meters=50), "Longitude"),
        (GeoFence(latitude=0.0, longitude=0.0, radius_meters=0), "Radius"),
    ])
    async def test_create_session_with_invalid_geofence(self, service_instance, lecturer_caller, course, fence, message):
        service, mock_session_store, _, _ = service_instance
        with pytest.raises(BadRequestError, match=message):
            await service.create_session(lecturer_caller, course.id, SessionType.PHYSICAL, 15, fence)
        mock_session_store.create.assert_not_called()

    async def test_create_session_for_unknown_course(self, service_instance, lecturer_caller):
        service, _, _, mock_directory = service_instance
        mock_directory.get_course.return_value = None
        with pytest.raises(NotFoundError, match="Course not found"):
            await service.create_session(lecturer_caller, uuid.uuid4(), SessionType.ONLINE, 15)

    async def test_create_session_for_someone_elses_course(self, service_instance, other_lecturer, course):
        """Scenario: A lecturer who does not own the course cannot open sessions for it."""
        service, mock_session_store, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        caller = Caller(user_id=other_lecturer.id, role=UserRole.LECTURER)
        with pytest.raises(AuthorizationError):
            await service.create_session(caller, course.id, SessionType.ONLINE, 15)
        mock_session_store.create.assert_not_called()

    async def test_create_session_retries_on_code_collision(self, service_instance, lecturer_caller, course):
        """Scenario: The first generated code is taken, the second attempt succeeds."""
        service, mock_session_store, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        codes = iter(["taken1", "FREE22"])
        service.code_generator = lambda length, alphabet: next(codes)
        calls = []
        async def create(session):
            calls.append(session.session_code)
            if session.session_code == "TAKEN1":
                raise DuplicateSessionCodeError("TAKEN1")
            return session
        mock_session_store.create.side_effect = create

        session = await service.create_session(lecturer_caller, course.id, SessionType.ONLINE, 15)

        assert calls == ["TAKEN1", "FREE22"]
        assert session.session_code == "FREE22"

    async def test_create_session_gives_up_after_max_attempts(self, service_instance, lecturer_caller, course):
        service, mock_session_store, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        service.max_code_attempts = 3
        mock_session_store.create.side_effect = DuplicateSessionCodeError("AAAAAA")

        with pytest.raises(ConflictError, match="unique session code"):
            await service.create_session(lecturer_caller, course.id, SessionType.ONLINE, 15)
        assert mock_session_store.create.call_count == 3

    async def test_store_failure_becomes_internal_error(self, service_instance, lecturer_caller, course):
        service, mock_session_store, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        mock_session_store.create.side_effect = ConnectionError("database is gone")

        with pytest.raises(InternalServiceError):
            await service.create_session(lecturer_caller, course.id, SessionType.ONLINE, 15)

    async def test_get_session_by_code_is_case_insensitive(self, service_instance, online_session):
        service, mock_session_store, _, _ = service_instance
        mock_session_store.get_by_code.return_value = online_session

        session = await service.get_session_by_code("  onl456 ")

        mock_session_store.get_by_code.assert_called_once_with("ONL456")
        assert session.id == online_session.id

    async def test_get_session_by_unknown_code(self, service_instance):
        service, mock_session_store, _, _ = service_instance
        mock_session_store.get_by_code.return_value = None
        with pytest.raises(NotFoundError):
            await service.get_session_by_code("NOPE00")

    async def test_get_session_by_id_requires_staff(self, service_instance, student_caller, online_session):
        service, _, _, _ = service_instance
        with pytest.raises(AuthorizationError):
            await service.get_session(student_caller, online_session.id)

    async def test_get_active_sessions_uses_clock(self, service_instance, lecturer_caller, lecturer, course, online_session):
        service, mock_session_store, _, mock_directory = service_instance
        mock_session_store.get_active_for_lecturer.return_value = [online_session]
        mock_directory.get_users.return_value = [lecturer]
        mock_directory.get_courses.return_value = [course]

        sessions = await service.get_active_sessions_for_lecturer(lecturer_caller)

        mock_session_store.get_active_for_lecturer.assert_called_once_with(lecturer_caller.user_id, NOW)
        assert [s.id for s in sessions] == [online_session.id]

    async def test_update_session_extends_from_now(self, service_instance, lecturer_caller, online_session):
        service, mock_session_store, _, _ = service_instance
        mock_session_store.get_by_id.return_value = online_session
        mock_session_store.update.return_value = True

        updated = await service.update_session(lecturer_caller, online_session.id, duration_minutes=45)

        assert updated.expires_at == NOW + timedelta(minutes=45)
        assert mock_session_store.update.call_args[0][0].expires_at == NOW + timedelta(minutes=45)

    async def test_update_session_requires_a_change(self, service_instance, lecturer_caller, online_session):
        service, mock_session_store, _, _ = service_instance
        mock_session_store.get_by_id.return_value = online_session
        with pytest.raises(BadRequestError, match="Nothing to update"):
            await service.update_session(lecturer_caller, online_session.id)

    async def test_update_session_of_another_lecturer(self, service_instance, other_lecturer, online_session):
        service, mock_session_store, _, _ = service_instance
        mock_session_store.get_by_id.return_value = online_session
        caller = Caller(user_id=other_lecturer.id, role=UserRole.LECTURER)
        with pytest.raises(AuthorizationError):
            await service.update_session(caller, online_session.id, duration_minutes=10)
        mock_session_store.update.assert_not_called()

    async def test_close_session_sets_expiry_to_now(self, service_instance, lecturer_caller, online_session):
        service, mock_session_store, _, _ = service_instance
        mock_session_store.get_by_id.return_value = online_session
        mock_session_store.update.return_value = True

        closed = await service.close_session(lecturer_caller, online_session.id)

        assert closed.expires_at == NOW
        assert not closed.is_expired(NOW)
        assert closed.is_expired(NOW + timedelta(microseconds=1))

    async def test_close_already_expired_session_is_noop(self, service_instance, lecturer_caller, course):
        service, mock_session_store, _, _ = service_instance
        expired = AttendanceSession(
            id=uuid.uuid4(), course_id=course.id, lecturer_id=lecturer_caller.user_id, session_code="OLD000",
            session_type=SessionType.ONLINE, created_at=NOW - timedelta(hours=2), expires_at=NOW - timedelta(hours=1),
        )
        mock_session_store.get_by_id.return_value = expired

        result = await service.close_session(lecturer_caller, expired.id)

        assert result.expires_at == expired.expires_at
        mock_session_store.update.assert_not_called()

    async def test_get_session_qr_uses_session_code(self, service_instance, lecturer_caller, online_session):
        service, mock_session_store, _, _ = service_instance
        mock_session_store.get_by_id.return_value = online_session

        png = await service.get_session_qr(lecturer_caller, online_session.id)

        assert png == b"ONL456:300"
        assert service.generate_qr_code("ONL456", 500) == b"ONL456:500"


    async def test_session_read_includes_display_names(self, service_instance, lecturer_caller, lecturer, course, online_session):
        service, mock_session_store, _, mock_directory = service_instance
        mock_session_store.get_by_id.return_value = online_session
        mock_directory.get_users.return_value = [lecturer]
        mock_directory.get_courses.return_value = [course]

        session = await service.get_session(lecturer_caller, online_session.id)

        assert isinstance(session, EnrichedAttendanceSession)
        assert session.course_name == course.name
        assert session.lecturer_name == lecturer.name

    async def test_single_session_read_keeps_unresolved_names_empty(self, service_instance, online_session):
        service, mock_session_store, _, mock_directory = service_instance
        mock_session_store.get_by_code.return_value = online_session
        mock_directory.get_users.return_value = []
        mock_directory.get_courses.return_value = []

        session = await service.get_session_by_code("ONL456")

        assert session.id == online_session.id
        assert session.course_name is None
        assert session.lecturer_name is None

    async def test_course_session_listing_skips_unresolved_lecturers(self, service_instance, lecturer_caller, lecturer, course, online_session):
        """Scenario: Sessions whose lecturer is missing from the directory are left out of the listing."""
        service, mock_session_store, _, mock_directory = service_instance
        orphan = online_session.model_copy(update={"id": uuid.uuid4(), "lecturer_id": uuid.uuid4(), "session_code": "ORPH01"})
        mock_directory.get_course.return_value = course
        mock_session_store.get_by_course.return_value = [online_session, orphan]
        mock_directory.get_users.return_value = [lecturer]
        mock_directory.get_courses.return_value = [course]

        sessions = await service.get_sessions_for_course(lecturer_caller, course.id)

        assert [s.id for s in sessions] == [online_session.id]
        assert sessions[0].lecturer_name == lecturer.name

    async def test_created_session_carries_display_names(self, service_instance, lecturer_caller, lecturer, course):
        service, _, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        mock_directory.get_users.return_value = [lecturer]
        mock_directory.get_courses.return_value = [course]

        session = await service.create_session(lecturer_caller, course.id, SessionType.ONLINE, 15)

        assert session.course_name == course.name
        assert session.lecturer_name == lecturer.name

    @pytest.mark.parametrize("fence", [
        GeoFence(latitude=0.0, longitude=0.0, radius_meters=float("nan")),
        GeoFence(latitude=0.0, longitude=0.0, radius_meters=float("inf")),
        GeoFence(latitude=float("nan"), longitude=0.0, radius_meters=50),
    ])
    async def test_create_session_with_non_finite_geofence(self, service_instance, lecturer_caller, course, fence):
        service, mock_session_store, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        with pytest.raises(BadRequestError, match="finite"):
            await service.create_session(lecturer_caller, course.id, SessionType.PHYSICAL, 15, fence)
        mock_session_store.create.assert_not_called()


@pytest.mark.asyncio
class TestMarkAttendance:

    async def _arrange(self, service_instance, session, student, course):
        service, mock_session_store, mock_record_store, mock_directory = service_instance
        mock_session_store.get_by_code.return_value = session
        mock_directory.get_user.return_value = student
        mock_directory.get_course.return_value = course
        return service, mock_record_store

    async def test_mark_inside_geofence_success(self, service_instance, student_caller, student, course, physical_session):
        """Scenario: A student about 55 m from the center checks in successfully."""
        service, mock_record_store = await self._arrange(service_instance, physical_session, student, course)

        record = await service.mark_attendance(
            student_caller, "abc123", location=Location(latitude=0.0, longitude=0.0005), device_id="device-1"
        )

        mock_record_store.create.assert_called_once()
        assert isinstance(record, EnrichedAttendanceRecord)
        assert record.student_id == student.id
        assert record.session_id == physical_session.id
        assert record.course_id == course.id
        assert record.status == AttendanceStatus.PRESENT
        assert record.verification_method == VerificationMethod.QR_CODE
        assert record.device_id == "device-1"
        assert record.location_longitude == 0.0005
        assert record.student_name == student.name
        assert record.course_name == course.name
        assert record.date == NOW

    async def test_mark_outside_geofence(self, service_instance, student_caller, student, course, physical_session):
        """Scenario: A student about 1.1 km away is rejected and nothing is written."""
        service, mock_record_store = await self._arrange(service_instance, physical_session, student, course)

        with pytest.raises(BadRequestError, match="not within the required attendance area"):
            await service.mark_attendance(student_caller, "ABC123", location=Location(latitude=0.0, longitude=0.01))
        mock_record_store.create.assert_not_called()

    async def test_mark_physical_without_location(self, service_instance, student_caller, student, course, physical_session):
        service, mock_record_store = await self._arrange(service_instance, physical_session, student, course)

        with pytest.raises(BadRequestError, match="Location is required"):
            await service.mark_attendance(student_caller, "ABC123")
        mock_record_store.create.assert_not_called()

    async def test_mark_online_session_ignores_location(self, service_instance, student_caller, student, course, online_session):
        service, mock_record_store = await self._arrange(service_instance, online_session, student, course)

        record = await service.mark_attendance(student_caller, "ONL456", location=Location(latitude=60.0, longitude=60.0))

        assert record.session_id == online_session.id
        mock_record_store.create.assert_called_once()

    async def test_mark_with_unknown_code(self, service_instance, student_caller):
        service, mock_session_store, mock_record_store, _ = service_instance
        mock_session_store.get_by_code.return_value = None

        with pytest.raises(NotFoundError, match="Invalid session code"):
            await service.mark_attendance(student_caller, "ZZZZZZ")
        mock_record_store.create.assert_not_called()

    async def test_mark_expired_session_regardless_of_geofence(self, service_instance, student_caller, student, course, physical_session):
        """Scenario: Expiry wins over the geofence, even when no location is sent."""
        service, mock_record_store = await self._arrange(service_instance, physical_session, student, course)
        service.clock = lambda: physical_session.expires_at + timedelta(seconds=1)

        with pytest.raises(BadRequestError, match="expired"):
            await service.mark_attendance(student_caller, "ABC123")
        mock_record_store.get_by_student_and_session.assert_not_called()
        mock_record_store.create.assert_not_called()

    async def test_mark_exactly_at_expiry_is_accepted(self, service_instance, student_caller, student, course, online_session):
        service, mock_record_store = await self._arrange(service_instance, online_session, student, course)
        service.clock = lambda: online_session.expires_at

        await service.mark_attendance(student_caller, "ONL456")
        mock_record_store.create.assert_called_once()

    async def test_mark_twice_is_conflict(self, service_instance, student_caller, student, course, online_session):
        service, mock_record_store = await self._arrange(service_instance, online_session, student, course)
        mock_record_store.get_by_student_and_session.return_value = _record(student.id, course.id, online_session.id)

        with pytest.raises(ConflictError, match="already marked"):
            await service.mark_attendance(student_caller, "ONL456")
        mock_record_store.create.assert_not_called()

    async def test_duplicate_rejected_by_store_is_conflict(self, service_instance, student_caller, student, course, online_session):
        service, mock_record_store = await self._arrange(service_instance, online_session, student, course)
        mock_record_store.create.side_effect = DuplicateAttendanceError(str(student.id))

        with pytest.raises(ConflictError):
            await service.mark_attendance(student_caller, "ONL456")

    async def test_mark_by_lecturer_is_forbidden(self, service_instance, lecturer_caller):
        service, mock_session_store, _, _ = service_instance
        with pytest.raises(AuthorizationError):
            await service.mark_attendance(lecturer_caller, "ABC123")
        mock_session_store.get_by_code.assert_not_called()

    async def test_mark_with_blank_code(self, service_instance, student_caller):
        service, _, _, _ = service_instance
        with pytest.raises(BadRequestError):
            await service.mark_attendance(student_caller, "   ")

    async def test_mark_when_student_is_unknown(self, service_instance, student_caller, course, online_session):
        service, mock_record_store = await self._arrange(service_instance, online_session, None, course)
        with pytest.raises(NotFoundError, match="Student not found"):
            await service.mark_attendance(student_caller, "ONL456")
        mock_record_store.create.assert_not_called()


@pytest.mark.asyncio
class TestManualAttendanceAndStatus:

    async def test_manual_attendance_by_owner(self, service_instance, lecturer_caller, student, course):
        service, _, mock_record_store, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        mock_directory.get_user.return_value = student

        record = await service.record_manual_attendance(lecturer_caller, student.id, course.id, AttendanceStatus.LATE)

        mock_record_store.create.assert_called_once()
        assert record.verification_method == VerificationMethod.MANUAL
        assert record.status == AttendanceStatus.LATE
        assert record.session_id is None

    async def test_manual_attendance_by_admin_for_any_course(self, service_instance, admin_caller, student, course):
        service, _, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        mock_directory.get_user.return_value = student

        record = await service.record_manual_attendance(admin_caller, student.id, course.id)
        assert record.student_name == student.name

    async def test_manual_attendance_by_non_owner_lecturer(self, service_instance, other_lecturer, student, course):
        service, _, mock_record_store, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        caller = Caller(user_id=other_lecturer.id, role=UserRole.LECTURER)

        with pytest.raises(AuthorizationError):
            await service.record_manual_attendance(caller, student.id, course.id)
        mock_record_store.create.assert_not_called()

    async def test_manual_attendance_for_non_student(self, service_instance, lecturer_caller, lecturer, course):
        service, _, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        mock_directory.get_user.return_value = lecturer

        with pytest.raises(BadRequestError, match="only be recorded for students"):
            await service.record_manual_attendance(lecturer_caller, lecturer.id, course.id)

    async def test_manual_attendance_with_session_of_other_course(self, service_instance, lecturer_caller, student, course, online_session):
        service, mock_session_store, _, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        mock_directory.get_user.return_value = student
        mock_session_store.get_by_id.return_value = online_session.model_copy(update={"course_id": uuid.uuid4()})

        with pytest.raises(BadRequestError, match="does not belong"):
            await service.record_manual_attendance(lecturer_caller, student.id, course.id, session_id=online_session.id)

    async def test_update_status_success(self, service_instance, lecturer_caller, student, course):
        service, _, mock_record_store, mock_directory = service_instance
        record = _record(student.id, course.id)
        mock_record_store.get_by_id.return_value = record
        mock_record_store.update_status.return_value = True
        mock_directory.get_users.return_value = [student]
        mock_directory.get_courses.return_value = [course]

        updated = await service.update_attendance_status(lecturer_caller, record.id, AttendanceStatus.ABSENT)

        mock_record_store.update_status.assert_called_once_with(record.id, AttendanceStatus.ABSENT)
        assert updated.status == AttendanceStatus.ABSENT
        assert updated.student_name == student.name

    async def test_update_status_of_unknown_record(self, service_instance, lecturer_caller):
        service, _, mock_record_store, _ = service_instance
        mock_record_store.get_by_id.return_value = None
        with pytest.raises(NotFoundError):
            await service.update_attendance_status(lecturer_caller, uuid.uuid4(), AttendanceStatus.LATE)

    async def test_update_status_by_student_is_forbidden(self, service_instance, student_caller):
        service, _, mock_record_store, _ = service_instance
        with pytest.raises(AuthorizationError):
            await service.update_attendance_status(student_caller, uuid.uuid4(), AttendanceStatus.PRESENT)
        mock_record_store.update_status.assert_not_called()


@pytest.mark.asyncio
class TestAttendanceQueries:

    async def test_course_attendance_skips_unresolved_students(self, service_instance, lecturer_caller, student, course):
        """Scenario: Records of students missing from the directory are left out of the join."""
        service, _, mock_record_store, mock_directory = service_instance
        known = _record(student.id, course.id)
        orphan = _record(uuid.uuid4(), course.id)
        mock_directory.get_course.return_value = course
        mock_record_store.get_by_course.return_value = [known, orphan]
        mock_directory.get_users.return_value = [student]
        mock_directory.get_courses.return_value = [course]

        records = await service.get_attendance_for_course(lecturer_caller, course.id)

        assert [r.id for r in records] == [known.id]
        assert records[0].student_name == student.name

    async def test_course_attendance_with_inverted_range(self, service_instance, lecturer_caller, course):
        service, _, _, _ = service_instance
        with pytest.raises(BadRequestError):
            await service.get_attendance_for_course(lecturer_caller, course.id, NOW, NOW - timedelta(days=1))

    async def test_course_attendance_with_mixed_timezone_bounds(self, service_instance, lecturer_caller, course):
        """Scenario: One bound carries an offset and the other does not; the naive one is read as UTC."""
        service, _, mock_record_store, mock_directory = service_instance
        mock_directory.get_course.return_value = course
        mock_record_store.get_by_course.return_value = []

        await service.get_attendance_for_course(
            lecturer_caller, course.id, datetime(2025, 3, 1, tzinfo=timezone.utc), datetime(2025, 3, 31)
        )

        mock_record_store.get_by_course.assert_called_once_with(
            course.id, datetime(2025, 3, 1, tzinfo=timezone.utc), datetime(2025, 3, 31, tzinfo=timezone.utc)
        )

    async def test_course_attendance_with_mixed_inverted_bounds(self, service_instance, lecturer_caller, course):
        service, _, _, _ = service_instance
        with pytest.raises(BadRequestError):
            await service.get_attendance_for_course(
                lecturer_caller, course.id, datetime(2025, 3, 31), datetime(2025, 3, 1, tzinfo=timezone.utc)
            )

    async def test_course_attendance_for_unknown_course(self, service_instance, lecturer_caller):
        service, _, _, mock_directory = service_instance
        mock_directory.get_course.return_value = None
        with pytest.raises(NotFoundError):
            await service.get_attendance_for_course(lecturer_caller, uuid.uuid4())

    async def test_session_attendance_for_unknown_session(self, service_instance, lecturer_caller):
        service, mock_session_store, _, _ = service_instance
        mock_session_store.get_by_id.return_value = None
        with pytest.raises(NotFoundError):
            await service.get_attendance_for_session(lecturer_caller, uuid.uuid4())

    async def test_student_can_only_read_own_attendance(self, service_instance, student_caller, course):
        service, _, _, _ = service_instance
        with pytest.raises(AuthorizationError):
            await service.get_attendance_for_student(student_caller, uuid.uuid4(), course.id)

    async def test_student_reads_own_attendance(self, service_instance, student_caller, student, course):
        service, _, mock_record_store, mock_directory = service_instance
        mock_directory.get_user.return_value = student
        mock_directory.get_course.return_value = course
        mock_record_store.get_by_student_and_course.return_value = [_record(student.id, course.id)]

        records = await service.get_attendance_for_student(student_caller, student.id, course.id)

        assert len(records) == 1
        assert records[0].course_name == course.name


# --- In-memory scenarios ---

@pytest.fixture
def second_student() -> User:
    return User(id=uuid.uuid4(), name="Second Student", role=UserRole.STUDENT)


@pytest.fixture
def in_memory(lecturer, student, second_student, course):
    clock = FakeClock(NOW)
    service = AttendanceService(
        session_store=InMemorySessionStore(),
        record_store=InMemoryRecordStore(),
        directory=InMemoryDirectory(users=[lecturer, student, second_student], courses=[course]),
        clock=clock,
    )
    return service, clock


@pytest.mark.asyncio
class TestAttendanceFlow:

    async def test_physical_session_end_to_end(self, in_memory, lecturer_caller, student_caller, second_student, course):
        """Scenario: Check in from ~55 m, retry is a conflict, a second student ~1.1 km away is rejected, then expiry."""
        service, clock = in_memory
        session = await service.create_session(
            lecturer_caller, course.id, SessionType.PHYSICAL, 10,
            GeoFence(latitude=0.0, longitude=0.0, radius_meters=100),
        )

        inside = Location(latitude=0.0, longitude=0.0005)
        record = await service.mark_attendance(student_caller, session.session_code.lower(), location=inside)
        assert record.session_id == session.id
        assert record.status == AttendanceStatus.PRESENT

        with pytest.raises(ConflictError):
            await service.mark_attendance(student_caller, session.session_code, location=inside)

        far_away = Caller(user_id=second_student.id, role=UserRole.STUDENT)
        with pytest.raises(BadRequestError, match="not within"):
            await service.mark_attendance(far_away, session.session_code, location=Location(latitude=0.0, longitude=0.01))

        session_records = await service.get_attendance_for_session(lecturer_caller, session.id)
        assert [r.id for r in session_records] == [record.id]

        clock.advance(minutes=11)
        other_student = Caller(user_id=uuid.uuid4(), role=UserRole.STUDENT)
        with pytest.raises(BadRequestError, match="expired"):
            await service.mark_attendance(other_student, session.session_code, location=inside)

    async def test_concurrent_duplicate_check_in_creates_one_record(self, in_memory, lecturer_caller, student_caller, course):
        """Scenario: Two identical check-ins race past the pre-check; exactly one is stored."""
        service, _ = in_memory
        session = await service.create_session(lecturer_caller, course.id, SessionType.ONLINE, 10)

        results = await asyncio.gather(
            service.mark_attendance(student_caller, session.session_code),
            service.mark_attendance(student_caller, session.session_code),
            return_exceptions=True,
        )

        created = [r for r in results if isinstance(r, EnrichedAttendanceRecord)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 1
        assert len(await service.record_store.get_by_session(session.id)) == 1

    async def test_closed_session_rejects_check_in(self, in_memory, lecturer_caller, student_caller, course):
        service, clock = in_memory
        session = await service.create_session(lecturer_caller, course.id, SessionType.ONLINE, 30)

        await service.close_session(lecturer_caller, session.id)
        clock.advance(seconds=1)

        with pytest.raises(BadRequestError, match="expired"):
            await service.mark_attendance(student_caller, session.session_code)
        assert await service.get_active_sessions_for_lecturer(lecturer_caller) == []
