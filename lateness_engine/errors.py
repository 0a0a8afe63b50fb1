from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class DuplicateAttendanceError(ApiError):
    def __init__(self, message: str = "An open attendance record already exists for this day.") -> None:
        super().__init__(409, "DUPLICATE_ATTENDANCE", message)


class NoOpenAttendanceError(ApiError):
    def __init__(self, message: str = "No open check-in found within the lookback window.") -> None:
        super().__init__(409, "NO_OPEN_ATTENDANCE", message)


class AlreadyAppliedError(ApiError):
    def __init__(self, deduction_id: int) -> None:
        super().__init__(
            409,
            "DEDUCTION_ALREADY_APPLIED",
            f"Deduction {deduction_id} has already been applied to payroll and cannot be cancelled.",
        )
        self.deduction_id = deduction_id


class InvalidShiftConfigurationError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(422, "INVALID_SHIFT_CONFIGURATION", message)


class PolicyConfigurationError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(422, "INVALID_DEDUCTION_POLICY", message)


class LedgerConsistencyError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(409, "LEDGER_INCONSISTENT", message)


class LedgerConflictError(ApiError):
    def __init__(self, message: str = "Grace balance was modified concurrently. Retry the request.") -> None:
        super().__init__(409, "LEDGER_CONFLICT", message)


class EmployeeNotFoundError(ApiError):
    def __init__(self, employee_id: int) -> None:
        super().__init__(404, "EMPLOYEE_NOT_FOUND", f"Employee {employee_id} not found.")


class DeductionNotFoundError(ApiError):
    def __init__(self, deduction_id: int) -> None:
        super().__init__(404, "DEDUCTION_NOT_FOUND", f"Deduction {deduction_id} not found.")


class InvalidDeductionStateError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(409, "INVALID_DEDUCTION_STATE", message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
