from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidClassCoordinate(ServiceError):
    """A batch/year/semester/section/department value could not be normalized."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class InvalidYearSemesterCombination(ServiceError):
    def __init__(self, year: str, semester: int, valid: List[int]) -> None:
        super().__init__(
            f"Invalid semester {semester} for {year}. Valid semesters are: {', '.join(str(s) for s in valid)}",
            status.HTTP_400_BAD_REQUEST,
        )
        self.year = year
        self.semester = semester
        self.valid_semesters = valid


class ClassAlreadyAssigned(ServiceError):
    """Another faculty already holds the active assignment for the class."""

    def __init__(self, class_id: str, holder_user_id: Optional[UUID] = None) -> None:
        super().__init__(
            f"Another faculty is already assigned as class advisor for {class_id}",
            status.HTTP_409_CONFLICT,
        )
        self.class_id = class_id
        self.holder_user_id = holder_user_id


class UnresolvableFacultyBinding(ServiceError):
    def __init__(self, class_id: str) -> None:
        super().__init__(f"No valid faculty found for class {class_id}", status.HTTP_404_NOT_FOUND)
        self.class_id = class_id


class BindingValidationFailed(ServiceError):
    def __init__(self, faculty_user_id: UUID, class_id: str) -> None:
        super().__init__(
            f"Faculty {faculty_user_id} is not the active advisor of {class_id}",
            status.HTTP_409_CONFLICT,
        )
        self.faculty_user_id = faculty_user_id
        self.class_id = class_id


class ConcurrentAssignmentConflict(ServiceError):
    """Lost a race on the active-assignment unique index. Safe to retry: nothing was written."""

    def __init__(self, class_id: str) -> None:
        super().__init__(
            f"Concurrent assignment change detected for {class_id}; retry the request",
            status.HTTP_409_CONFLICT,
        )
        self.class_id = class_id


class OrphanedRecordDetected(ServiceError):
    def __init__(self, message: str, record_ids: Optional[Dict[str, List[UUID]]] = None) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)
        self.record_ids = record_ids or {}


class ReassignmentIncomplete(ServiceError):
    """Reassignment rolled back after step 1. `step` is the step that failed."""

    def __init__(
        self,
        class_id: str,
        step: int,
        previous_assignments: Optional[List[Dict[str, Any]]] = None,
        cause: Optional[str] = None,
    ) -> None:
        message = f"Reassignment of {class_id} failed at step {step}; no changes were kept"
        if cause:
            message = f"{message} ({cause})"
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.class_id = class_id
        self.step = step
        self.previous_assignments = previous_assignments or []
