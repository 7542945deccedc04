from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class FileCreate(BaseModel):
    """Schema for recording an upload's metadata."""
    original_filename: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1, max_length=255)
    file_size: int = Field(..., gt=0)


class FileResponse(BaseModel):
    """Schema for file metadata returned to clients."""
    id: UUID
    filename: str
    original_filename: str
    mime_type: str
    file_size: int
    url: str
    created_at: datetime
