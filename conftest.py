import io
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError


def _client_error(code, operation):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls r2.py makes."""

    def __init__(self):
        self.objects = {}
        self.fail_put_suffixes = set()
        self.fail_delete_keys = set()
        self.put_keys = []
        self.deleted_keys = []

    def add(self, key, body, content_type=None, last_modified=None):
        self.objects[key] = {
            "Body": body,
            "ContentType": content_type,
            "LastModified": last_modified or datetime.now(timezone.utc),
        }

    def put_object(self, Bucket, Key, Body, ContentType, CacheControl=None):
        if any(Key.endswith(suffix) for suffix in self.fail_put_suffixes):
            raise _client_error("InternalError", "PutObject")
        self.put_keys.append(Key)
        self.add(Key, bytes(Body), ContentType)

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        obj = self.objects[Key]
        return {
            "Body": io.BytesIO(obj["Body"]),
            "ContentType": obj["ContentType"],
            "ContentLength": len(obj["Body"]),
        }

    def delete_object(self, Bucket, Key):
        if Key in self.fail_delete_keys:
            raise _client_error("InternalError", "DeleteObject")
        self.deleted_keys.append(Key)
        self.objects.pop(Key, None)

    def list_objects_v2(self, Bucket, Prefix, MaxKeys=1000, ContinuationToken=None):
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start:start + MaxKeys]
        response = {
            "Contents": [
                {"Key": k, "LastModified": self.objects[k]["LastModified"]} for k in page
            ],
            "IsTruncated": start + MaxKeys < len(keys),
        }
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + MaxKeys)
        return response

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://signed.example.com/{Params['Key']}?op={operation}&expires={ExpiresIn}"

    def has_url(self, url):
        prefix = "https://cdn.example.com/"
        return url.startswith(prefix) and url[len(prefix):] in self.objects


@pytest.fixture
def fake_s3(monkeypatch):
    monkeypatch.setenv("R2_PUBLIC_URL", "https://cdn.example.com")
    monkeypatch.setenv("R2_BUCKET", "test-bucket")
    client = FakeS3Client()
    with patch("ingest_shared.r2.get_s3_client", return_value=client):
        yield client


class InMemoryCatalog:
    def __init__(self):
        self.records = {}
        self.fail_with = None

    async def create(self, record):
        if self.fail_with is not None:
            raise self.fail_with
        record_id = f"{len(self.records) + 1:024x}"
        created = dict(record, id=record_id)
        self.records[record_id] = created
        return created

    async def find_by_id(self, record_id):
        return self.records.get(record_id)


@pytest.fixture
def catalog():
    return InMemoryCatalog()


class RecordingPublisher:
    def __init__(self):
        self.messages = []
        self.fail = False

    async def __call__(self, subject, data):
        if self.fail:
            raise ConnectionError("nats down")
        self.messages.append((subject, data))

    def on(self, subject):
        return [data for s, data in self.messages if s == subject]


@pytest.fixture
def publisher():
    return RecordingPublisher()
