"""
S3 audit store — durable home of session snapshots.

Objects live under ``<folder>/<user_id>/<request_id>/``.  Writing the
same snapshot twice overwrites the same keys, so a write is idempotent.
boto3 is blocking, so uploads run in a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import Any

import boto3
from botocore.config import Config

from gateway.core.config import Settings
from gateway.core.logging import get_logger
from gateway.pipeline.session import SnapshotObject

logger = get_logger(__name__)


class S3AuditStore:
    """Writes session snapshots to an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        folder: str,
        region: str,
        client: Any | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
    ) -> None:
        self.bucket = bucket
        self.folder = folder.strip("/")
        self.region = region
        self._client = client
        self._access_key_id = access_key_id or None
        self._secret_access_key = secret_access_key or None

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3AuditStore":
        return cls(
            bucket=settings.S3_BUCKET_NAME,
            folder=settings.S3_FOLDER,
            region=settings.AWS_REGION,
            access_key_id=settings.AWS_ACCESS_KEY_ID,
            secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                config=Config(region_name=self.region, signature_version="s3v4"),
            )
        return self._client

    def base_path(self, user_id: str, request_id: str) -> str:
        return f"{self.folder}/{user_id}/{request_id}"

    def snapshot_url(self, user_id: str, request_id: str) -> str:
        """Console link to the snapshot folder."""
        return (
            f"https://s3.console.aws.amazon.com/s3/buckets/{self.bucket}"
            f"?region={self.region}&bucketType=general"
            f"&prefix={self.base_path(user_id, request_id)}/"
        )

    async def put_snapshot(
        self,
        user_id: str,
        request_id: str,
        objects: list[SnapshotObject],
    ) -> None:
        await asyncio.to_thread(self._put_all, self.base_path(user_id, request_id), objects)
        logger.info(
            "Snapshot uploaded",
            bucket=self.bucket,
            prefix=self.base_path(user_id, request_id),
            objects=len(objects),
        )

    def _put_all(self, base_path: str, objects: list[SnapshotObject]) -> None:
        for obj in objects:
            key = f"{base_path}/{obj.key}"
            if obj.source_path is not None:
                with open(obj.source_path, "rb") as body:
                    self.client.put_object(
                        Bucket=self.bucket, Key=key, Body=body, ContentType=obj.content_type,
                    )
            else:
                self.client.put_object(
                    Bucket=self.bucket, Key=key, Body=obj.body or b"", ContentType=obj.content_type,
                )
