"""Receipt archive on S3-compatible object storage (MinIO).

Every processed document is archived as "<YYYYMMDD>/<name>" in a single
bucket. The sheet row carries a presigned link to the archived copy, so the
link expires after ``storage_url_expiry_seconds``.

MinIO Python SDK reference:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
from datetime import timedelta

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from receiptflow.shared.config import Settings

logger = logging.getLogger(__name__)


class UploadResult(BaseModel):
    """Outcome of archiving one document.

    ``url`` is only set on success. On failure ``error`` holds a short reason
    and the caller writes the sheet row with an empty link.
    """

    success: bool
    url: str | None = None
    object_name: str | None = None
    bucket: str | None = None
    size: int | None = None
    error: str | None = None


def object_path(name: str, folder_path: str) -> str:
    folder = folder_path.strip("/")
    return f"{folder}/{name}" if folder else name


class DocumentStorage:
    """Archives original receipts and hands out links to them."""

    def __init__(self, settings: Settings, client: Minio | None = None) -> None:
        self.settings = settings
        self._client = client
        self._ready_buckets: set[str] = set()

    def _get_client(self) -> Minio:
        """Return the MinIO client, connecting on first use.

        Raises:
            ValueError: If no access/secret key pair is configured
        """
        if self._client is not None:
            return self._client

        if not (self.settings.storage_access_key and self.settings.storage_secret_key):
            raise ValueError(
                "Storage credentials not configured. "
                "Set APP_STORAGE_ACCESS_KEY and APP_STORAGE_SECRET_KEY."
            )
        self._client = Minio(
            endpoint=self.settings.storage_endpoint,
            access_key=self.settings.storage_access_key,
            secret_key=self.settings.storage_secret_key,
            secure=self.settings.storage_secure,
        )
        logger.info(f"Connected receipt archive at {self.settings.storage_endpoint}")
        return self._client

    def is_available(self) -> bool:
        """Whether archiving is switched on and can authenticate."""
        if not self.settings.storage_enabled:
            return False
        return self._client is not None or bool(
            self.settings.storage_access_key and self.settings.storage_secret_key
        )

    def health_check(self) -> bool:
        """Probe the server with list_buckets; any failure counts as unhealthy."""
        if not self.is_available():
            return False

        try:
            self._get_client().list_buckets()
        except Exception as e:
            logger.warning(f"Receipt archive unreachable: {e}")
            return False
        return True

    def _prepare_bucket(self, client: Minio, bucket: str) -> None:
        # Checked once per process; buckets are never deleted by this service
        if bucket in self._ready_buckets:
            return
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created archive bucket {bucket}")
        self._ready_buckets.add(bucket)

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put(self, bucket: str, object_name: str, data: bytes, mime_type: str) -> str:
        """Write the object and sign a download link for it."""
        client = self._get_client()
        self._prepare_bucket(client, bucket)
        client.put_object(
            bucket_name=bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=mime_type,
        )
        return client.presigned_get_object(
            bucket_name=bucket,
            object_name=object_name,
            expires=timedelta(seconds=self.settings.storage_url_expiry_seconds),
        )

    def upload_document(
        self, data: bytes, name: str, mime_type: str, folder_path: str
    ) -> UploadResult:
        """Archive a document and return a link to it.

        Never raises: S3 errors are retried and then reported in the result,
        as is any other failure.

        Args:
            data: Document bytes
            name: File name inside the folder
            mime_type: MIME type stored with the object
            folder_path: Folder, the processing day as YYYYMMDD

        Returns:
            UploadResult with the presigned URL or the error
        """
        bucket = self.settings.storage_bucket
        object_name = object_path(name, folder_path)
        failed = UploadResult(success=False, object_name=object_name, bucket=bucket)

        try:
            url = self._put(bucket, object_name, data, mime_type)
        except S3Error as e:
            logger.error(f"Archiving {object_name} failed after retries: {e}")
            return failed.model_copy(update={"error": f"S3 error: {e.code} - {e.message}"})
        except Exception as e:
            logger.error(f"Archiving {object_name} failed: {e}")
            return failed.model_copy(update={"error": str(e)})

        logger.info(f"Archived {object_name} in {bucket} ({len(data)} bytes)")
        return UploadResult(
            success=True, url=url, object_name=object_name, bucket=bucket, size=len(data)
        )
