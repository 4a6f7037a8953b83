from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AuditLogResponse(BaseModel):
    id: UUID
    operation: str
    class_id: Optional[str] = None
    department: Optional[str] = None
    faculty_user_id: Optional[UUID] = None
    source: Optional[str] = Field(None, description="assignment_store | embedded_cache | creator_fallback")
    performed_by: Optional[UUID] = None
    status: str
    details: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True
