from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.schemas import ClassCoordinates, ClassInfo


class FacultyRemovalResponse(BaseModel):
    faculty_profile_id: UUID
    faculty_user_id: UUID
    assignments_removed: int
    cache_entries_removed: int
    students_unbound: int
    user_removed: bool


class StudentMigrationRequest(BaseModel):
    from_class: ClassCoordinates = Field(..., alias="from")
    to_class: ClassCoordinates = Field(..., alias="to")

    model_config = {"populate_by_name": True}


class StudentMigrationResponse(BaseModel):
    migrated: int
    from_class: ClassInfo
    to_class: ClassInfo


class FacultyClassesResponse(BaseModel):
    faculty_user_id: UUID
    faculty_name: str
    department: str
    active_classes: List[ClassInfo]
    assignment_history: List[Dict[str, Any]] = Field(default_factory=list)
    legacy_class: Optional[ClassInfo] = None
