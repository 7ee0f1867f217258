# tests/test_storage.py
from io import BytesIO

import pytest
from botocore.exceptions import ClientError

from hirehub.core.config import Settings
from hirehub.core.errors import NotFoundError
from hirehub.services.storage import ResumeStorage


class DummyS3Client:
    def __init__(self, fail_puts=False):
        self.objects = {}
        self.fail_puts = fail_puts

    def put_object(self, Bucket, Key, Body, ContentType=None):
        if self.fail_puts:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.objects[(Bucket, Key)] = (Body, ContentType)
        return {"ETag": '"dummy-etag"'}

    def get_object(self, Bucket, Key):
        stored = self.objects.get((Bucket, Key))
        if stored is None:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": BytesIO(stored[0])}


def _settings(tmp_path, **extra):
    return Settings(LOCAL_UPLOAD_DIR=str(tmp_path), **extra)


@pytest.mark.asyncio
async def test_s3_upload_and_download(tmp_path):
    dummy = DummyS3Client()
    storage = ResumeStorage(_settings(tmp_path, S3_BUCKET="unit-test-bucket"), s3_client=dummy)

    stored = await storage.store_resume_bytes(b"hello unit test", "CV.PDF", "application/pdf")

    assert stored.backend == "s3"
    assert stored.key.startswith("resumes/") and stored.key.endswith(".pdf")
    assert stored.url == f"s3://unit-test-bucket/{stored.key}"
    assert dummy.objects[("unit-test-bucket", stored.key)] == (b"hello unit test", "application/pdf")
    assert await storage.download_to_bytes(stored.key) == b"hello unit test"


@pytest.mark.asyncio
async def test_s3_failure_falls_back_to_local_directory(tmp_path):
    storage = ResumeStorage(_settings(tmp_path, S3_BUCKET="b"), s3_client=DummyS3Client(fail_puts=True))

    stored = await storage.store_resume_bytes(b"resume body", "resume.txt")

    assert stored.backend == "local"
    assert (tmp_path / stored.key).read_bytes() == b"resume body"
    assert await storage.download_to_bytes(stored.key) == b"resume body"


@pytest.mark.asyncio
async def test_missing_s3_object_is_not_found(tmp_path):
    storage = ResumeStorage(_settings(tmp_path, S3_BUCKET="b"), s3_client=DummyS3Client())
    with pytest.raises(NotFoundError):
        await storage.download_to_bytes("resumes/nope.pdf")


def test_without_credentials_no_s3_client_is_built(tmp_path):
    storage = ResumeStorage(_settings(tmp_path, S3_BUCKET="b"))
    assert storage.uses_s3 is False
