from typing import Optional, Union

from pydantic import BaseModel, Field

from app.core.class_key import ClassKey, build_key


class ClassCoordinates(BaseModel):
    """Raw class coordinates as callers send them. Normalized by to_key(); not validated here."""

    batch: str = Field(..., description="YYYY-YYYY, e.g. 2023-2027")
    year: Union[str, int] = Field(..., description="1 | 1st | 1st Year ...")
    semester: Union[int, str] = Field(..., description="1..8 or 'Sem N'")
    section: str = Field(..., description="A | B | C")
    department: Optional[str] = Field(None, description="Defaults to the caller's department")

    def to_key(self, default_department: Optional[str] = None) -> ClassKey:
        return build_key(
            self.batch,
            self.year,
            self.semester,
            self.section,
            self.department or default_department,
        )


class ClassInfo(BaseModel):
    class_id: str
    batch: str
    year: str
    semester: int
    section: str
    department: str
    class_display: str

    @classmethod
    def from_key(cls, key: ClassKey) -> "ClassInfo":
        return cls(class_id=key.class_id, class_display=key.display, **key.coordinates())
