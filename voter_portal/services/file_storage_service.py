import asyncio
import os
import re
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from fastapi import UploadFile
from minio import Minio
from minio.error import S3Error

from voter_portal.config.settings import settings
from voter_portal.schemas.submission_schemas import StoredFile
from voter_portal.utils.datetime_utils import naive_utc_now
from voter_portal.utils.errors import DataValidationError, FileStorageError, NotFoundError
from voter_portal.utils.logging import get_logger

logger = get_logger()

MB = 1024 * 1024

PUBLIC_ALLOWED_TYPES = ("image/jpeg", "image/jpg", "image/png", "application/pdf")
TEAM_ALLOWED_TYPES = PUBLIC_ALLOWED_TYPES + ("image/gif",)

DANGEROUS_EXTENSIONS = {
    ".exe", ".bat", ".cmd", ".com", ".pif", ".scr", ".vbs", ".js", ".jar",
    ".sh", ".php", ".asp", ".aspx", ".jsp", ".py", ".rb", ".pl", ".dll",
}

SUBMISSION_FILE_FIELDS = (
    "degreeCertificate",
    "aadhaarCard",
    "residentialProof",
    "marriageCertificate",
    "signaturePhoto",
)


def sanitize_filename(filename: str) -> str:
    name = os.path.basename(filename or "upload")
    name = re.sub(r"[^A-Za-z0-9._-]", "_", name)
    return name[:120] or "upload"


def upload_size(file: UploadFile) -> int:
    """Size of an upload, measured from the spooled file when the client sent none."""
    if file.size is not None:
        return file.size
    current = file.file.tell()
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(current)
    return size


def validate_upload(
    field_name: str, file: UploadFile, max_size_mb: int, allowed_types: Iterable[str]
) -> Optional[Dict[str, str]]:
    """Return the error entry for one upload, or None when it is acceptable"""
    extension = os.path.splitext(file.filename or "")[1].lower()
    if extension in DANGEROUS_EXTENSIONS:
        return {"field": field_name, "message": f"File type {extension} is not allowed"}

    allowed = set(allowed_types)
    if (file.content_type or "").lower() not in allowed:
        return {
            "field": field_name,
            "message": f"Invalid file type {file.content_type}, "
            f"allowed: {', '.join(sorted(allowed))}",
        }

    size = upload_size(file)
    if size == 0:
        return {"field": field_name, "message": "File is empty"}
    if size > max_size_mb * MB:
        return {"field": field_name, "message": f"File is larger than {max_size_mb}MB"}
    return None


def validate_uploads(
    files: Iterable[Tuple[str, UploadFile]],
    max_size_mb: int,
    allowed_types: Iterable[str],
    max_files: Optional[int] = None,
) -> None:
    """Check every upload and report all offending fields together."""
    files = list(files)
    allowed_types = tuple(allowed_types)
    errors: List[Dict[str, str]] = []

    if max_files is not None and len(files) > max_files:
        errors.append(
            {"field": "files", "message": f"At most {max_files} files are allowed"}
        )

    for field_name, file in files:
        error = validate_upload(field_name, file, max_size_mb, allowed_types)
        if error:
            errors.append(error)

    if errors:
        raise DataValidationError(errors, message="File validation failed")


class FileStorageService:
    """Uploaded documents in MinIO; the database only keeps their metadata"""

    def __init__(self, client: Optional[Minio] = None, bucket_name: Optional[str] = None):
        self.client = client or Minio(
            endpoint=settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        self.bucket_name = bucket_name or settings.MINIO_BUCKET_NAME
        self._bucket_checked = False

    async def _run(self, func, *args, **kwargs):
        # MinIO client is synchronous
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def _ensure_bucket_exists(self):
        if self._bucket_checked:
            return
        try:
            if not await self._run(self.client.bucket_exists, self.bucket_name):
                await self._run(self.client.make_bucket, self.bucket_name)
        except S3Error as e:
            raise FileStorageError(f"Failed to ensure bucket exists: {str(e)}")
        self._bucket_checked = True

    async def save_upload(
        self, field_name: str, file: UploadFile, prefix: str = "submissions"
    ) -> StoredFile:
        """
        Store one upload and return its metadata.

        Args:
            field_name: Logical form field, e.g. ``aadhaarCard``
            file: FastAPI UploadFile object
            prefix: Object name prefix inside the bucket

        Returns:
            StoredFile metadata for the submission's ``files`` map
        """
        await self._ensure_bucket_exists()

        original_name = file.filename or field_name
        timestamp = naive_utc_now().strftime("%Y%m%d_%H%M%S")
        object_name = (
            f"{prefix}/{field_name}_{timestamp}_{uuid4().hex[:8]}_"
            f"{sanitize_filename(original_name)}"
        )
        size = upload_size(file)
        content_type = file.content_type or "application/octet-stream"

        await file.seek(0)
        try:
            await self._run(
                self.client.put_object,
                bucket_name=self.bucket_name,
                object_name=object_name,
                data=file.file,
                length=size,
                content_type=content_type,
            )
        except S3Error as e:
            raise FileStorageError(f"Failed to upload file to MinIO: {str(e)}")

        logger.info(f"Stored {field_name} upload as {object_name} ({size} bytes)")
        return StoredFile(
            field_name=field_name,
            filename=object_name,
            original_name=original_name,
            size=size,
            mime_type=content_type,
            uploaded_at=naive_utc_now(),
        )

    async def save_uploads(
        self, files: Iterable[Tuple[str, UploadFile]], prefix: str = "submissions"
    ) -> List[StoredFile]:
        return [
            await self.save_upload(field_name, file, prefix)
            for field_name, file in files
        ]

    async def delete_files(self, object_names: Iterable[str]) -> None:
        """Best-effort cleanup of objects whose submission was not stored"""
        for object_name in object_names:
            try:
                await self._run(self.client.remove_object, self.bucket_name, object_name)
            except S3Error as e:
                logger.warning(f"Failed to remove orphaned object {object_name}: {str(e)}")

    async def generate_presigned_url(
        self, object_name: str, expires_in_hours: Optional[int] = None
    ) -> str:
        """Short-lived download URL for a stored document"""
        expires_in_hours = expires_in_hours or settings.MINIO_URL_EXPIRE_HOURS
        try:
            await self._run(self.client.stat_object, self.bucket_name, object_name)
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise NotFoundError(f"File '{object_name}' not found", "FILE_NOT_FOUND")
            raise FileStorageError(f"Failed to read file metadata: {str(e)}")

        try:
            return await self._run(
                self.client.presigned_get_object,
                bucket_name=self.bucket_name,
                object_name=object_name,
                expires=timedelta(hours=expires_in_hours),
            )
        except S3Error as e:
            raise FileStorageError(f"Failed to generate presigned URL: {str(e)}")


_file_storage_service: Optional[FileStorageService] = None


def get_file_storage_service() -> FileStorageService:
    """Dependency to get the file storage service instance"""
    global _file_storage_service
    if _file_storage_service is None:
        _file_storage_service = FileStorageService()
    return _file_storage_service
