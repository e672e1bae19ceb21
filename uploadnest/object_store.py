from typing import Any, BinaryIO, Dict, Optional
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from uploadnest.config import Settings
from uploadnest.errors import InternalServerError
from uploadnest.logging_config import get_logger

logger = get_logger(__name__)

store_registry: Dict[str, "ObjectStore"] = {}

def attachment_disposition(filename: str) -> str:
    safe_name = filename.replace('"', "").replace("\\", "").replace("\r", "").replace("\n", "")
    ascii_name = safe_name.encode("ascii", "ignore").decode("ascii") or "download"
    if ascii_name == safe_name:
        return f'attachment;filename="{safe_name}"'
    return f"attachment;filename=\"{ascii_name}\";filename*=UTF-8''{quote(safe_name)}"

class ObjectStore:
    """Thin gateway over an S3-compatible bucket.

    The boto3 client is blocking, so the async methods hand each call to the
    threadpool. The ``open_read_stream`` and ``upload_stream`` variants are
    synchronous on purpose: the zip pipeline already runs them on worker
    threads. Every failure is logged with the key and re-raised.
    """

    def __init__(self, client: Any, bucket: str, default_expires: int = 60):
        self.client = client
        self.bucket = bucket
        self.default_expires = default_expires

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStore":
        client = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            aws_access_key_id=settings.AWS_ACCESS_KEY or None,
            aws_secret_access_key=settings.AWS_SECRET_KEY or None,
            region_name=settings.AWS_REGION,
            config=Config(
                signature_version="s3v4",
                connect_timeout=settings.S3_CONNECT_TIMEOUT,
                read_timeout=settings.S3_READ_TIMEOUT,
                retries={"max_attempts": settings.S3_MAX_ATTEMPTS, "mode": "standard"},
            ),
        )
        return cls(client, settings.AWS_S3_BUCKET, default_expires=settings.SIGNED_URL_EXPIRES)

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> None:
        params = {"Bucket": self.bucket, "Key": key, "Body": data, "ContentType": content_type}
        if metadata:
            params["Metadata"] = metadata
        try:
            await run_in_threadpool(self.client.put_object, **params)
        except Exception as e:
            logger.error(f"S3 put_object failed for key {key}: {e}")
            raise
        logger.debug(f"Stored {len(data)} bytes at {key}")

    async def delete(self, key: str) -> None:
        try:
            await run_in_threadpool(self.client.delete_object, Bucket=self.bucket, Key=key)
        except Exception as e:
            logger.error(f"S3 delete_object failed for key {key}: {e}")
            raise

    def open_read_stream(self, key: str):
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Error getting S3 stream for key {key}: {e}")
            raise InternalServerError("Failed to retrieve file") from e

        body = response.get("Body")
        if body is None:
            logger.error(f"No body returned for key: {key}")
            raise InternalServerError("No body returned for key")
        return body

    async def get_read_stream(self, key: str):
        return await run_in_threadpool(self.open_read_stream, key)

    def upload_stream(self, key: str, fileobj: BinaryIO, content_type: str) -> None:
        try:
            self.client.upload_fileobj(fileobj, self.bucket, key, ExtraArgs={"ContentType": content_type})
        except Exception as e:
            logger.error(f"S3 streaming upload failed for key {key}: {e}")
            raise

    async def get_signed_url(
        self,
        key: str,
        expires_in: Optional[int] = None,
        download_filename: Optional[str] = None,
        content_type: Optional[str] = None
    ) -> str:
        params = {"Bucket": self.bucket, "Key": key}
        if download_filename:
            params["ResponseContentDisposition"] = attachment_disposition(download_filename)
        else:
            params["ResponseContentDisposition"] = "inline"
            if content_type:
                params["ResponseContentType"] = content_type

        try:
            return self.client.generate_presigned_url(
                ClientMethod="get_object",
                Params=params,
                ExpiresIn=expires_in or self.default_expires
            )
        except Exception as e:
            logger.error(f"Failed to sign URL for key {key}: {e}")
            raise

def get_object_store() -> ObjectStore:
    return store_registry["store"]
