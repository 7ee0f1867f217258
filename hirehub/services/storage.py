# hirehub/services/storage.py
"""
Resume file storage: S3-compatible bucket (R2 / MinIO / AWS) when configured,
local directory otherwise. boto3 calls are blocking and run in a thread pool.
"""

import asyncio
import logging
import uuid
from functools import partial
from pathlib import Path
from typing import Optional

import aiofiles
import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from hirehub.core.errors import NotFoundError

logger = logging.getLogger(__name__)


class StoredFile(BaseModel):
    key: str
    url: str
    backend: str  # "s3" | "local"


class ResumeStorage:
    def __init__(self, settings, s3_client=None):
        self.bucket = settings.S3_BUCKET
        self.local_dir = Path(settings.LOCAL_UPLOAD_DIR)
        self._s3 = s3_client if s3_client is not None else self._build_s3_client(settings)

    @staticmethod
    def _build_s3_client(settings):
        """
        Return a boto3 S3 client configured for R2 / MinIO / AWS.
        If bucket or credentials are missing, returns None (local fallback).
        """
        if not settings.S3_BUCKET or not settings.S3_ACCESS_KEY or not settings.S3_SECRET_KEY:
            return None
        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT or None,
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            # signature s3v4 for R2 & MinIO compatibility
            config=Config(signature_version="s3v4"),
            region_name=settings.S3_REGION or None,
        )

    @property
    def uses_s3(self) -> bool:
        return self._s3 is not None

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    async def store_resume_bytes(self, data: bytes, filename: Optional[str] = None,
                                 content_type: Optional[str] = None) -> StoredFile:
        ext = Path(filename or "").suffix.lower()
        key = f"resumes/{uuid.uuid4().hex}{ext}"

        if self._s3 is not None:
            try:
                await self._run(
                    self._s3.put_object,
                    Bucket=self.bucket,
                    Key=key,
                    Body=data,
                    ContentType=content_type or "application/octet-stream",
                )
                return StoredFile(key=key, url=f"s3://{self.bucket}/{key}", backend="s3")
            except (BotoCoreError, ClientError) as exc:
                logger.warning("S3 upload failed, falling back to local storage: %r", exc)

        path = self.local_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "wb") as out:
            await out.write(data)
        return StoredFile(key=key, url=path.resolve().as_uri(), backend="local")

    async def download_to_bytes(self, key: str) -> bytes:
        local = self.local_dir / key
        if local.exists():
            async with aiofiles.open(local, "rb") as fh:
                return await fh.read()
        if self._s3 is None:
            raise NotFoundError(f"Stored file {key} not found")
        try:
            resp = await self._run(self._s3.get_object, Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFoundError(f"Stored file {key} not found") from exc
            raise
        return await self._run(resp["Body"].read)
