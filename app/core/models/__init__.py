# User must be registered before the relationships below are configured.
from app.auth.models import User  # noqa: F401
from app.core.models.audit_log import FacultyAuditLog
from app.core.models.class_assignment import ClassAssignment
from app.core.models.faculty_profile import FacultyClassEntry, FacultyProfile
from app.core.models.student import Student
from app.core.models.student_attendance import StudentAttendance
from app.core.models.student_daily_attendance import ClassAttendance, ClassAttendanceEntry

__all__ = [
    "ClassAssignment",
    "ClassAttendance",
    "ClassAttendanceEntry",
    "FacultyAuditLog",
    "FacultyClassEntry",
    "FacultyProfile",
    "Student",
    "StudentAttendance",
]
