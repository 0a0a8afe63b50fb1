from datetime import date

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from lateness_engine.db import get_db
from lateness_engine.schemas import (
    AttendanceDayRead,
    CheckInRequest,
    CheckInResponse,
    CheckOutRequest,
    CheckOutResponse,
)
from lateness_engine.services.attendance import get_attendance_day, on_check_in, on_check_out

router = APIRouter(tags=["attendance"])


@router.post("/api/attendance/check-in", response_model=CheckInResponse)
def check_in(
    payload: CheckInRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> CheckInResponse:
    request.state.employee_id = payload.employee_id
    outcome = on_check_in(
        db,
        company_id=payload.company_id,
        employee_id=payload.employee_id,
        ts_utc=payload.ts_utc,
    )
    request.state.attendance_id = outcome.attendance_id
    return CheckInResponse.model_validate(outcome)


@router.post("/api/attendance/check-out", response_model=CheckOutResponse)
def check_out(
    payload: CheckOutRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> CheckOutResponse:
    request.state.employee_id = payload.employee_id
    outcome = on_check_out(
        db,
        company_id=payload.company_id,
        employee_id=payload.employee_id,
        ts_utc=payload.ts_utc,
    )
    request.state.attendance_id = outcome.attendance_id
    return CheckOutResponse.model_validate(outcome)


@router.get("/api/employees/{employee_id}/attendance/{day_date}", response_model=AttendanceDayRead)
def attendance_day(
    employee_id: int,
    day_date: date,
    db: Session = Depends(get_db),
) -> AttendanceDayRead:
    record = get_attendance_day(db, employee_id=employee_id, day_date=day_date)
    return AttendanceDayRead.model_validate(record)
