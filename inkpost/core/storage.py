# inkpost/core/storage.py
"""
Object store with named buckets, backed by the local filesystem or AWS S3.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import aiofiles

from inkpost.core.exceptions import FileValidationError
from inkpost.core.formatting import check_file_size, file_extension, is_image_file

logger = logging.getLogger(__name__)

POSTS_BUCKET = "posts"
AVATARS_BUCKET = "avatars"


@dataclass
class FileUpload:
    """A file received from a client, fully read into memory."""
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return file_extension(self.filename)


def validate_image_upload(file: FileUpload, max_size_mb: float, label: str = "File") -> None:
    """Reject non-image or oversized files before anything touches the store."""
    if not is_image_file(file):
        raise FileValidationError(f"{label} {file.filename} must be a JPEG, PNG, WEBP or GIF image")
    if not check_file_size(file, max_size_mb):
        raise FileValidationError(f"{label} {file.filename} must be less than {max_size_mb}MB")


class StorageService:
    """
    Service for storing and retrieving blobs in named buckets.
    Supports both local filesystem and S3 storage.
    """

    def __init__(
        self,
        storage_backend: str = "local",
        upload_dir: str = "./uploads",
        public_base_url: str = "http://localhost:8000",
        s3_bucket_prefix: Optional[str] = None,
        s3_region: Optional[str] = None,
    ):
        """
        Initialize storage service.

        Args:
            storage_backend: "local" or "s3"
            upload_dir: Directory for local storage
            public_base_url: Base URL that public object URLs are built on
            s3_bucket_prefix: Prefix of the S3 bucket names (if using S3)
            s3_region: S3 region (if using S3)
        """
        self.storage_backend = storage_backend
        self.upload_dir = Path(upload_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.s3_bucket_prefix = s3_bucket_prefix
        self.s3_region = s3_region

        # Create upload directory if using local storage
        if storage_backend == "local":
            self.upload_dir.mkdir(parents=True, exist_ok=True)

        # Initialize S3 client if using S3
        self.s3_client = None
        if storage_backend == "s3":
            try:
                import boto3
                self.s3_client = boto3.client("s3", region_name=s3_region)
                logger.info(f"S3 storage initialized: prefix={s3_bucket_prefix}, region={s3_region}")
            except Exception as e:
                logger.error(f"Failed to initialize S3 client: {e}")
                raise

    def _s3_bucket(self, bucket: str) -> str:
        return f"{self.s3_bucket_prefix}-{bucket}" if self.s3_bucket_prefix else bucket

    def local_path(self, bucket: str, path: str) -> Path:
        root = (self.upload_dir / bucket).resolve()
        target = (root / path).resolve()
        if root not in target.parents:
            raise ValueError(f"Path escapes bucket: {path}")
        return target

    async def upload(self, bucket: str, path: str, file: FileUpload) -> str:
        """
        Store a file under `path` inside `bucket`.

        Returns:
            The storage path that was written
        """
        if self.storage_backend == "local":
            file_path = self.local_path(bucket, path)
            file_path.parent.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(file_path, "wb") as f:
                await f.write(file.content)

            logger.info(f"Saved file locally: {bucket}/{path}")
        else:
            try:
                self.s3_client.put_object(
                    Bucket=self._s3_bucket(bucket),
                    Key=path,
                    Body=file.content,
                    ContentType=file.content_type,
                )
                logger.info(f"Saved file to S3: {bucket}/{path}")
            except Exception as e:
                logger.error(f"Failed to save file to S3: {e}")
                raise

        return path

    async def remove(self, bucket: str, paths: List[str]) -> bool:
        """
        Delete files from a bucket.

        Returns:
            True if every file was deleted, False if any deletion failed
        """
        ok = True
        for file_path in paths:
            try:
                if self.storage_backend == "local":
                    path = self.local_path(bucket, file_path)
                    if path.exists():
                        path.unlink()
                        logger.info(f"Deleted file: {bucket}/{file_path}")
                else:
                    self.s3_client.delete_object(Bucket=self._s3_bucket(bucket), Key=file_path)
                    logger.info(f"Deleted file from S3: {bucket}/{file_path}")
            except Exception as e:
                logger.error(f"Failed to delete file {bucket}/{file_path}: {e}")
                ok = False
        return ok

    async def download(self, bucket: str, path: str) -> bytes:
        if self.storage_backend == "local":
            async with aiofiles.open(self.local_path(bucket, path), "rb") as f:
                return await f.read()
        response = self.s3_client.get_object(Bucket=self._s3_bucket(bucket), Key=path)
        return response["Body"].read()

    def get_public_url(self, bucket: str, path: str) -> str:
        if self.storage_backend == "local":
            return f"{self.public_base_url}/storage/{bucket}/{path}"
        return f"https://{self._s3_bucket(bucket)}.s3.{self.s3_region}.amazonaws.com/{path}"

    def path_from_public_url(self, bucket: str, url: str) -> Optional[str]:
        """Inverse of get_public_url; None when the URL does not belong to the bucket."""
        prefix = self.get_public_url(bucket, "")
        if not url.startswith(prefix):
            return None
        return url[len(prefix):] or None


class UploadBatch:
    """
    Sequential uploads that are undone together.

    Used as an async context manager: when the block raises, every blob the
    batch uploaded is removed again before the error propagates.

        async with UploadBatch(storage, POSTS_BUCKET) as batch:
            url = await batch.upload(path, file)
            ...
    """

    def __init__(self, storage: StorageService, bucket: str):
        self.storage = storage
        self.bucket = bucket
        self.uploaded: List[Tuple[str, str]] = []  # (path, public url)

    async def upload(self, path: str, file: FileUpload) -> str:
        await self.storage.upload(self.bucket, path, file)
        url = self.storage.get_public_url(self.bucket, path)
        self.uploaded.append((path, url))
        return url

    async def rollback(self) -> None:
        if not self.uploaded:
            return
        paths = [path for path, _ in self.uploaded]
        if not await self.storage.remove(self.bucket, paths):
            logger.warning(f"Rollback left orphaned blobs in {self.bucket}: {paths}")
        self.uploaded = []

    async def __aenter__(self) -> "UploadBatch":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            logger.info(f"Rolling back {len(self.uploaded)} upload(s) in {self.bucket}")
            await self.rollback()
        return False


def create_storage_service(settings) -> StorageService:
    return StorageService(
        storage_backend=settings.STORAGE_BACKEND,
        upload_dir=settings.UPLOAD_DIR,
        public_base_url=settings.PUBLIC_BASE_URL,
        s3_bucket_prefix=settings.S3_BUCKET_PREFIX,
        s3_region=settings.S3_REGION,
    )
