from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.schemas import ClassCoordinates, ClassInfo


class ClassAssignmentCreate(ClassCoordinates):
    faculty_user_id: UUID = Field(..., description="Faculty auth user id (not the faculty profile id)")
    notes: Optional[str] = Field(None, max_length=500)
    replace_existing: bool = Field(
        False, description="Deactivate another faculty's active assignment for this class instead of failing"
    )


class ClassAssignmentResponse(BaseModel):
    id: UUID
    faculty_user_id: UUID
    class_id: str
    department: str
    batch: str
    year: str
    semester: int
    section: str
    active: bool
    assigned_by: UUID
    assigned_at: datetime
    deactivated_at: Optional[datetime] = None
    notes: Optional[str] = None
    class_display: str

    class Config:
        from_attributes = True


class ReassignmentResponse(BaseModel):
    assignment: ClassAssignmentResponse
    class_info: ClassInfo
    previous_assignments: List[Dict[str, Any]] = Field(
        default_factory=list, description="Coordinates of assignments deactivated by this request"
    )
    students_updated: int = 0


class CurrentAdvisorResponse(BaseModel):
    class_info: ClassInfo
    faculty_user_id: UUID
    faculty_profile_id: UUID
    faculty_name: str
    source: str
    assignment_id: Optional[UUID] = None


class AdvisorAvailabilityResponse(BaseModel):
    available: bool
    class_info: ClassInfo
    existing_advisor: Optional[Dict[str, Any]] = None


class ClassGroup(BaseModel):
    class_info: ClassInfo
    assignments: List[ClassAssignmentResponse]


class DepartmentAssignmentsResponse(BaseModel):
    assignments: List[ClassGroup]
    total: int
    active_count: int
    inactive_count: int


class AvailableClassesResponse(BaseModel):
    available_classes: List[ClassInfo]
    assigned_classes: List[ClassInfo]
    total_available: int
    total_assigned: int
    batch_ranges: List[str]


class AssignmentRemovalResponse(BaseModel):
    removed_assignment: ClassInfo
    assignment_id: UUID
    cache_entries_removed: int
