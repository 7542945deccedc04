"""
Attachment metadata.

Bytes are written to external storage by the caller; this service only
validates the upload against the configured limits and records where it
lives.
"""
import logging
import os
import uuid
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.config import get_settings
from chatcore.core.exceptions import ForbiddenException, NotFoundException, ValidationException
from chatcore.core.transactions import transactional
from chatcore.core.validation import parse_input
from chatcore.models.file import File
from chatcore.models.user import User
from chatcore.schemas.file import FileCreate, FileResponse

logger = logging.getLogger(__name__)


class FileService:
    """Service for uploaded file metadata."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def public_url(file: File) -> str:
        settings = get_settings()
        return f"{settings.upload_base_url.rstrip('/')}/{file.filename}"

    def to_response(self, file: File) -> FileResponse:
        return FileResponse(
            id=file.id,
            filename=file.filename,
            original_filename=file.original_filename,
            mime_type=file.mime_type,
            file_size=file.file_size,
            url=self.public_url(file),
            created_at=file.created_at,
        )

    @transactional
    async def record_upload(
        self,
        uploaded_by: UUID,
        original_filename: str,
        mime_type: str,
        file_size: int,
        storage_path: str | None = None,
    ) -> File:
        """
        Record an upload.

        The stored name is a fresh ``<uuid>.<ext>`` keeping the client's
        extension; the storage path defaults to ``upload_dir/<stored name>``.
        """
        settings = get_settings()
        data = parse_input(
            FileCreate,
            original_filename=original_filename,
            mime_type=mime_type,
            file_size=file_size,
        )

        if data.file_size > settings.max_upload_size_bytes:
            raise ValidationException(
                f"File too large. Maximum size is {settings.max_upload_size_mb}MB"
            )
        if data.mime_type not in settings.allowed_upload_mime_types:
            raise ValidationException(f"File type {data.mime_type} is not allowed")

        result = await self.db.execute(
            select(User.id).where(User.id == uploaded_by, User.deleted_at.is_(None))
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundException("User not found")

        ext = os.path.splitext(data.original_filename)[1].lower()
        filename = f"{uuid.uuid4()}{ext}"

        file = File(
            filename=filename,
            original_filename=data.original_filename,
            mime_type=data.mime_type,
            file_size=data.file_size,
            storage_path=storage_path or os.path.join(settings.upload_dir, filename),
            uploaded_by=uploaded_by,
        )
        self.db.add(file)
        await self.db.flush()

        logger.info(f"[FileService] Recorded {filename} ({data.mime_type}, {data.file_size} bytes) for {uploaded_by}")
        return file

    async def get_file(self, file_id: UUID) -> File:
        result = await self.db.execute(select(File).where(File.id == file_id))
        file = result.scalar_one_or_none()
        if file is None:
            raise NotFoundException("File not found")
        return file

    async def list_user_files(self, user_id: UUID) -> list[File]:
        """Files uploaded by a user, newest first."""
        result = await self.db.execute(
            select(File)
            .where(File.uploaded_by == user_id)
            .order_by(File.created_at.desc())
        )
        return list(result.scalars().all())

    @transactional
    async def delete_file(self, file_id: UUID, acting_user_id: UUID) -> None:
        """Remove the metadata row. Deleting the stored bytes is up to the caller."""
        file = await self.get_file(file_id)
        if file.uploaded_by != acting_user_id:
            raise ForbiddenException("Only the uploader can delete this file")

        await self.db.delete(file)
        await self.db.flush()
        logger.info(f"[FileService] Deleted file {file_id}")
