import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Text, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from chatcore.database import Base, utcnow


class File(Base):
    """Metadata of an uploaded file. The bytes live in external storage."""

    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    filename: Mapped[str] = mapped_column(Text)           # stored name
    original_filename: Mapped[str] = mapped_column(Text)  # name from the client
    mime_type: Mapped[str] = mapped_column(Text)
    file_size: Mapped[int] = mapped_column(BigInteger)
    storage_path: Mapped[str] = mapped_column(Text)
    uploaded_by: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        index=True
    )

    def __repr__(self) -> str:
        return f"<File {self.filename} ({self.mime_type})>"
