from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.core.schemas import ClassCoordinates, ClassInfo


class StudentRow(BaseModel):
    """One already-normalized ingestion row. Header mapping happens upstream."""

    roll_number: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None


class StudentCreate(ClassCoordinates):
    roll_number: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None


class StudentBulkCreate(ClassCoordinates):
    rows: List[Dict[str, Any]] = Field(..., min_length=1, max_length=1000)


class StudentResponse(BaseModel):
    id: UUID
    roll_number: str
    name: str
    email: Optional[str] = None
    class_id: Optional[str] = None
    department: str
    batch: str
    year: str
    semester: int
    section: str
    faculty_user_id: Optional[UUID] = None
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class RowFailure(BaseModel):
    row: int
    roll_number: Optional[str] = None
    error: str


class BulkCreateResponse(BaseModel):
    class_info: ClassInfo
    faculty_user_id: UUID
    source: str
    created: List[StudentResponse]
    failures: List[RowFailure]
    total_rows: int


class StudentRemovalResponse(BaseModel):
    student_id: UUID
    status: str
    attendance_records_updated: Optional[int] = None
    roster_entries_updated: Optional[int] = None
    cascade_errors: List[str] = Field(default_factory=list)


class BackfillReport(BaseModel):
    scanned: int
    updated: int
    invalid: List[Dict[str, Any]] = Field(default_factory=list)
    dry_run: bool = False


class BindingRepairReport(BaseModel):
    classes_checked: int
    students_repaired: int
    by_source: Dict[str, int] = Field(default_factory=dict)
    unresolved: List[Dict[str, Any]] = Field(default_factory=list)
    dry_run: bool = False


class OrphanReport(BaseModel):
    assignments_without_faculty: List[UUID] = Field(default_factory=list)
    students_with_missing_faculty: List[UUID] = Field(default_factory=list)
    students_without_faculty: List[UUID] = Field(default_factory=list)

    @property
    def has_orphans(self) -> bool:
        return bool(self.assignments_without_faculty or self.students_with_missing_faculty)
