"""
Canonical class identity: batch x year x semester x section within a department.

Every component that needs a class identifier goes through build_key / to_canonical_string;
class ids are never assembled by hand. Canonical form: "2023-2027_2nd Year_Sem 3_A".
Department is not part of the canonical string, so lookups are keyed by (class_id, department).
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from app.core.config import settings
from app.core.enums import SectionCode, YearLevel
from app.core.exceptions import InvalidClassCoordinate, InvalidYearSemesterCombination


BATCH_PATTERN = re.compile(r"^\d{4}-\d{4}$")
_YEAR_PATTERN = re.compile(r"^([1-4])(?:st|nd|rd|th)?(?:\s*year)?$")
_SEMESTER_PATTERN = re.compile(r"^(?:sem(?:ester)?\.?\s*)?(\d+)$")

YEAR_SEMESTERS: Dict[YearLevel, List[int]] = {
    YearLevel.FIRST: [1, 2],
    YearLevel.SECOND: [3, 4],
    YearLevel.THIRD: [5, 6],
    YearLevel.FOURTH: [7, 8],
}

_YEARS_BY_DIGIT = {
    "1": YearLevel.FIRST,
    "2": YearLevel.SECOND,
    "3": YearLevel.THIRD,
    "4": YearLevel.FOURTH,
}


class ClassKey(BaseModel):
    """Immutable, normalized class coordinates. Build with build_key()."""

    model_config = ConfigDict(frozen=True)

    batch: str
    year: YearLevel
    semester: int
    section: SectionCode
    department: str

    @property
    def class_id(self) -> str:
        return to_canonical_string(self)

    @property
    def display(self) -> str:
        return f"{self.year.value} | Semester {self.semester} | Section {self.section.value}"

    def coordinates(self) -> Dict[str, Any]:
        return {
            "batch": self.batch,
            "year": self.year.value,
            "semester": self.semester,
            "section": self.section.value,
            "department": self.department,
        }


def normalize_year(value: Any) -> YearLevel:
    """'2', '2nd', '2nd Year', ' 2ND year ' and 2 all map to YearLevel.SECOND."""
    if isinstance(value, YearLevel):
        return value
    if isinstance(value, bool) or value is None:
        raise InvalidClassCoordinate(f"Invalid year: {value!r}")
    text = " ".join(str(value).split()).lower()
    match = _YEAR_PATTERN.match(text)
    if not match:
        raise InvalidClassCoordinate(f"Invalid year: {value!r}")
    return _YEARS_BY_DIGIT[match.group(1)]


def normalize_semester(value: Any) -> int:
    """Accepts 3, '3', 'Sem 3', 'sem3' or 'Semester 3'. Result is in 1..8."""
    if isinstance(value, bool) or value is None:
        raise InvalidClassCoordinate(f"Invalid semester: {value!r}")
    if isinstance(value, int):
        number = value
    else:
        match = _SEMESTER_PATTERN.match(str(value).strip().lower())
        if not match:
            raise InvalidClassCoordinate(f"Invalid semester: {value!r}")
        number = int(match.group(1))
    if not 1 <= number <= 8:
        raise InvalidClassCoordinate(f"Semester must be between 1 and 8, got {value!r}")
    return number


def normalize_section(value: Any) -> SectionCode:
    if isinstance(value, SectionCode):
        return value
    text = str(value or "").strip().upper()
    try:
        return SectionCode(text)
    except ValueError:
        raise InvalidClassCoordinate(f"Section must be one of: A, B, C (got {value!r})")


def normalize_department(value: Any) -> str:
    text = str(value or "").strip()
    for code in settings.department_codes:
        if code.lower() == text.lower():
            return code
    raise InvalidClassCoordinate(f"Unknown department: {value!r}")


def normalize_batch(value: Any) -> str:
    text = str(value or "").strip()
    if not BATCH_PATTERN.match(text):
        raise InvalidClassCoordinate(f"Batch must be in format YYYY-YYYY (got {value!r})")
    return text


def build_key(batch: Any, year: Any, semester: Any, section: Any, department: Any) -> ClassKey:
    norm_year = normalize_year(year)
    norm_semester = normalize_semester(semester)
    valid = YEAR_SEMESTERS[norm_year]
    if norm_semester not in valid:
        raise InvalidYearSemesterCombination(norm_year.value, norm_semester, valid)
    return ClassKey(
        batch=normalize_batch(batch),
        year=norm_year,
        semester=norm_semester,
        section=normalize_section(section),
        department=normalize_department(department),
    )


def build_key_from(coordinates: Dict[str, Any], department: Optional[Any] = None) -> ClassKey:
    """build_key over a mapping with batch/year/semester/section(/department) entries."""
    dept = department if department is not None else coordinates.get("department")
    return build_key(
        coordinates.get("batch"),
        coordinates.get("year"),
        coordinates.get("semester"),
        coordinates.get("section"),
        dept,
    )


def to_canonical_string(key: ClassKey) -> str:
    return f"{key.batch}_{key.year.value}_Sem {key.semester}_{key.section.value}"


def parse_canonical_string(value: str, department: Any) -> ClassKey:
    """Inverse of to_canonical_string. The department is supplied by the caller."""
    parts = (value or "").split("_")
    if len(parts) != 4:
        raise InvalidClassCoordinate(f"Malformed class id: {value!r}")
    batch, year, semester, section = parts
    return build_key(batch, year, semester, section, department)
