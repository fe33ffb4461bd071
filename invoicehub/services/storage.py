# invoicehub/services/storage.py
from typing import BinaryIO, Callable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
import structlog

from invoicehub.exceptions import BlobStorageError

logger = structlog.get_logger()


class BlobStorage:
    """S3-compatible object storage for invoice attachments."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        region: str = "auto",
        public_base_url: Optional[str] = None,
        presigned_expires_in: int = 3600,
        client=None,
    ):
        self.s3 = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(signature_version="s3v4"),
            region_name=region,
        )
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.presigned_expires_in = presigned_expires_in

    @classmethod
    def from_settings(cls, settings) -> "BlobStorage":
        return cls(
            bucket=settings.BLOB_BUCKET_NAME,
            endpoint_url=settings.BLOB_ENDPOINT_URL or None,
            access_key_id=settings.BLOB_ACCESS_KEY_ID or None,
            secret_access_key=settings.BLOB_SECRET_ACCESS_KEY or None,
            region=settings.BLOB_REGION,
            public_base_url=settings.BLOB_PUBLIC_BASE_URL or None,
            presigned_expires_in=settings.PRESIGNED_URL_EXPIRES_IN,
        )

    def upload(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str,
        on_bytes: Optional[Callable[[int], None]] = None,
    ) -> str:
        """Stream ``fileobj`` to ``key``. ``on_bytes`` receives byte counts as they are sent."""
        try:
            self.s3.upload_fileobj(
                fileobj,
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
                Callback=on_bytes,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("blob_upload_failed", key=key, error=str(e))
            raise BlobStorageError(key, str(e)) from e
        logger.info("blob_uploaded", key=key)
        return key

    def get_presigned_url(self, key: str, expires_in: Optional[int] = None) -> str:
        return self.s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in or self.presigned_expires_in,
        )

    def get_url(self, key: str) -> str:
        """Stable public URL when a public base is configured, else a presigned one."""
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self.get_presigned_url(key)

    def delete(self, key: str):
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error("blob_delete_failed", key=key, error=str(e))
            raise BlobStorageError(key, str(e)) from e
        logger.info("blob_deleted", key=key)

    def ping(self) -> None:
        self.s3.head_bucket(Bucket=self.bucket)
