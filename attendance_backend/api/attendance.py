from fastapi import APIRouter, Depends, Query, Request, Response, status
from typing import List, Optional
from uuid import UUID
from datetime import datetime

from ..services.attendance_service import AttendanceService
from ..services.errors import BadRequestError
from ..models.db_models import AttendanceStatus, Caller
from .schemas.envelope import ApiResponse, success_response
from .schemas.session import SessionCreateRequest, SessionUpdateRequest, SessionResponse
from .schemas.attendance_record import (
    AttendanceRecordResponse,
    ManualAttendanceRequest,
    MarkAttendanceRequest,
)
from .auth import get_current_user
from .dependencies import get_attendance_service
from .utilities.limiter import limiter

router = APIRouter(prefix="/attendance", tags=["Attendance Endpoints"])


def _sessions(sessions) -> dict:
    return success_response([SessionResponse.from_session(s) for s in sessions])


def _records(records) -> dict:
    return success_response([AttendanceRecordResponse.from_record(r) for r in records])


# === BÖLÜM 1: YOKLAMA OTURUMU YÖNETİMİ ===

@router.post("/sessions", response_model=ApiResponse[SessionResponse], status_code=status.HTTP_201_CREATED, summary="Create a new attendance session")
@limiter.limit("10/minute")
async def create_session(request: Request, create_request: SessionCreateRequest, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    session = await service.create_session(
        caller=caller,
        course_id=create_request.course_id,
        session_type=create_request.session_type,
        duration_minutes=create_request.duration_minutes,
        geo_fence=create_request.geo_fence.to_domain() if create_request.geo_fence else None,
    )
    return success_response(SessionResponse.from_session(session))


@router.get("/sessions/lecturer/active", response_model=ApiResponse[List[SessionResponse]], summary="List the caller's active sessions")
@limiter.limit("60/minute")
async def get_active_sessions(request: Request, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    return _sessions(await service.get_active_sessions_for_lecturer(caller))


@router.get("/sessions/course/{course_id}", response_model=ApiResponse[List[SessionResponse]], summary="List every session of a course")
@limiter.limit("60/minute")
async def get_sessions_for_course(request: Request, course_id: UUID, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    return _sessions(await service.get_sessions_for_course(caller, course_id))


@router.get("/sessions/code/{code}", response_model=ApiResponse[SessionResponse], summary="Look up a session by its code")
@limiter.limit("30/minute")
async def get_session_by_code(request: Request, code: str, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    session = await service.get_session_by_code(code)
    return success_response(SessionResponse.from_session(session))


@router.get("/sessions/{session_id}", response_model=ApiResponse[SessionResponse], summary="Get an attendance session")
@limiter.limit("60/minute")
async def get_session(request: Request, session_id: UUID, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    session = await service.get_session(caller, session_id)
    return success_response(SessionResponse.from_session(session))


@router.get("/sessions/{session_id}/qr", response_class=Response, summary="Render the session code as a PNG QR code",
            responses={200: {"content": {"image/png": {}}}})
@limiter.limit("30/minute")
async def get_session_qr(request: Request, session_id: UUID, size: Optional[int] = Query(None, ge=100, le=1000), caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    png_bytes = await service.get_session_qr(caller, session_id, size)
    return Response(content=png_bytes, media_type="image/png")


@router.patch("/sessions/{session_id}", response_model=ApiResponse[SessionResponse], summary="Extend a session or move its geofence")
@limiter.limit("10/minute")
async def update_session(request: Request, session_id: UUID, update_request: SessionUpdateRequest, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    session = await service.update_session(
        caller=caller,
        session_id=session_id,
        duration_minutes=update_request.duration_minutes,
        geo_fence=update_request.geo_fence.to_domain() if update_request.geo_fence else None,
    )
    return success_response(SessionResponse.from_session(session))


@router.post("/sessions/{session_id}/close", response_model=ApiResponse[SessionResponse], summary="Stop accepting check-ins for a session")
@limiter.limit("10/minute")
async def close_session(request: Request, session_id: UUID, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    session = await service.close_session(caller, session_id)
    return success_response(SessionResponse.from_session(session))


# === BÖLÜM 2: YOKLAMA KAYDI ===

@router.post("/mark", response_model=ApiResponse[AttendanceRecordResponse], status_code=status.HTTP_201_CREATED, summary="Check in to a session with its code")
@limiter.limit("10/minute")
async def mark_attendance(request: Request, mark_request: MarkAttendanceRequest, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    record = await service.mark_attendance(
        caller=caller,
        session_code=mark_request.session_code,
        location=mark_request.location.to_domain() if mark_request.location else None,
        device_id=mark_request.device_id,
    )
    return success_response(AttendanceRecordResponse.from_record(record))


@router.post("/manual", response_model=ApiResponse[AttendanceRecordResponse], status_code=status.HTTP_201_CREATED, summary="Manually record a student's attendance")
@limiter.limit("200/minute")
async def record_manual_attendance(request: Request, manual_request: ManualAttendanceRequest, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    record = await service.record_manual_attendance(
        caller=caller,
        student_id=manual_request.student_id,
        course_id=manual_request.course_id,
        status=manual_request.status,
        session_id=manual_request.session_id,
    )
    return success_response(AttendanceRecordResponse.from_record(record))


@router.put("/{record_id}/status/{new_status}", response_model=ApiResponse[AttendanceRecordResponse], summary="Override the status of an attendance record")
@limiter.limit("200/minute")
async def update_attendance_status(request: Request, record_id: UUID, new_status: str, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    try:
        parsed_status = AttendanceStatus(new_status.strip().upper())
    except ValueError:
        raise BadRequestError(f"Invalid status: {new_status}")
    record = await service.update_attendance_status(caller, record_id, parsed_status)
    return success_response(AttendanceRecordResponse.from_record(record))


# === BÖLÜM 3: YOKLAMA SORGULARI ===

@router.get("/course/{course_id}", response_model=ApiResponse[List[AttendanceRecordResponse]], summary="List attendance for a course")
@limiter.limit("60/minute")
async def get_attendance_for_course(
    request: Request,
    course_id: UUID,
    from_date: Optional[datetime] = Query(None, alias="fromDate"),
    to_date: Optional[datetime] = Query(None, alias="toDate"),
    caller: Caller = Depends(get_current_user),
    service: AttendanceService = Depends(get_attendance_service)
):
    return _records(await service.get_attendance_for_course(caller, course_id, from_date, to_date))


@router.get("/session/{session_id}", response_model=ApiResponse[List[AttendanceRecordResponse]], summary="List attendance for a session")
@limiter.limit("60/minute")
async def get_attendance_for_session(request: Request, session_id: UUID, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    return _records(await service.get_attendance_for_session(caller, session_id))


@router.get("/student/course/{course_id}", response_model=ApiResponse[List[AttendanceRecordResponse]], summary="List my own attendance in a course")
@limiter.limit("60/minute")
async def get_my_attendance_for_course(request: Request, course_id: UUID, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    return _records(await service.get_attendance_for_student(caller, caller.user_id, course_id))


@router.get("/student/{student_id}/course/{course_id}", response_model=ApiResponse[List[AttendanceRecordResponse]], summary="List a student's attendance in a course")
@limiter.limit("60/minute")
async def get_attendance_for_student(request: Request, student_id: UUID, course_id: UUID, caller: Caller = Depends(get_current_user), service: AttendanceService = Depends(get_attendance_service)):
    return _records(await service.get_attendance_for_student(caller, student_id, course_id))
