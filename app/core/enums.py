from enum import Enum


class YearLevel(str, Enum):
    FIRST = "1st Year"
    SECOND = "2nd Year"
    THIRD = "3rd Year"
    FOURTH = "4th Year"


class SectionCode(str, Enum):
    A = "A"
    B = "B"
    C = "C"


class RecordStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class ResolutionSource(str, Enum):
    ASSIGNMENT_STORE = "assignment_store"
    EMBEDDED_CACHE = "embedded_cache"
    CREATOR_FALLBACK = "creator_fallback"


class AuditOperation(str, Enum):
    FACULTY_RESOLUTION = "faculty_resolution"
    REASSIGNMENT = "reassignment"
    RELEASE = "release"
    STUDENT_MIGRATION = "student_migration"
    FACULTY_REMOVAL = "faculty_removal"
    ASSIGNMENT_REMOVAL = "assignment_removal"
    STUDENT_REMOVAL = "student_removal"
    MANUAL_CREATE = "manual_create"
    BULK_UPLOAD = "bulk_upload"
    AUTO_REPAIR = "auto_repair"


class AuditStatus(str, Enum):
    success = "success"
    partial_success = "partial_success"
    failed = "failed"
