"""Object store boundary: put/get/delete by opaque key."""
import asyncio
import logging
from abc import ABC, abstractmethod

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from mediagen.config import settings
from mediagen.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store `data` under `key` and return its URL."""
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def copy(self, source_key: str, dest_key: str, content_type: str) -> str:
        return await self.put(dest_key, await self.get(source_key), content_type)


def get_s3_client():
    return boto3.client(
        "s3",
        endpoint_url=settings.aws_endpoint,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        region_name=settings.aws_region,
    )


class S3ObjectStore(ObjectStore):
    """boto3 is blocking; every call runs in a worker thread."""

    def __init__(self, bucket: str | None = None, client=None, public_base_url: str | None = None):
        self.bucket = bucket or settings.s3_bucket
        self._client = client or get_s3_client()
        self._public_base_url = (public_base_url or settings.media_public_base_url).rstrip("/")

    def url_for(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{key}"
        return f"s3://{self.bucket}/{key}"

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to upload {key}: {exc}")
            raise StorageError() from exc
        return self.url_for(key)

    async def get(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self.bucket, Key=key
            )
            return await asyncio.to_thread(response["Body"].read)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to load {key}: {exc}")
            raise StorageError("Media could not be loaded") from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to delete {key}: {exc}")
            raise StorageError("Media could not be deleted") from exc

    async def copy(self, source_key: str, dest_key: str, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._client.copy_object,
                Bucket=self.bucket,
                Key=dest_key,
                CopySource={"Bucket": self.bucket, "Key": source_key},
                ContentType=content_type,
                MetadataDirective="REPLACE",
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Failed to copy {source_key} -> {dest_key}: {exc}")
            raise StorageError("Media could not be saved") from exc
        return self.url_for(dest_key)


_store: ObjectStore | None = None


def get_object_store() -> ObjectStore:
    global _store
    if _store is None:
        _store = S3ObjectStore()
    return _store
