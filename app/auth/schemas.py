from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated caller as supplied by the identity layer.
    department is trusted for cross-department scoping and never re-derived here."""

    id: UUID
    role: str
    department: Optional[str] = None

    @property
    def is_hod_or_above(self) -> bool:
        return self.role in ("admin", "principal", "hod")

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "principal")
