"""Shared Cloudflare R2 (S3-compatible) helpers.

All functions use env vars for defaults:
- R2_ACCOUNT_ID, R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY for auth
- R2_BUCKET for the bucket name
- R2_PUBLIC_URL for the public base URL (custom domain); falls back to the
  r2.dev subdomain of the account

Uploads raise TransientExternalError on failure. Deletes used for cleanup
go through delete_quietly(), which logs and swallows errors.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ingest_shared.errors import ObjectNotFoundError, TransientExternalError

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000, immutable"
PRESIGN_EXPIRES_IN = 300
LIST_PAGE_SIZE = 1000

# Every suffix a logical asset can be stored under, see variants.py
ASSET_SUFFIXES = (
    "-thumbnail.webp",
    "-small.webp",
    "-regular.webp",
    ".webp",
    "-original.jpg",
    "-original.png",
    "-original.webp",
    "-original.tiff",
    ".gif",
    ".svg",
    ".bmp",
    ".ico",
    ".mp4",
    ".webm",
    ".mov",
    "-thumb.jpg",
)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}

# Module-level cached client
_s3_client = None


@dataclass(frozen=True)
class R2Object:
    body: bytes
    content_type: str | None
    content_length: int


@dataclass(frozen=True)
class R2Listing:
    key: str
    last_modified: datetime


def get_s3_client():
    """Get or create a cached S3 client using env vars."""
    global _s3_client
    if _s3_client is None:
        account_id = os.environ.get("R2_ACCOUNT_ID")
        _s3_client = boto3.client(
            "s3",
            endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=os.environ.get("R2_ACCESS_KEY_ID"),
            aws_secret_access_key=os.environ.get("R2_SECRET_ACCESS_KEY"),
            region_name="auto",
        )
    return _s3_client


def get_bucket() -> str:
    return os.environ.get("R2_BUCKET", "photo-app")


def public_url_for(key: str) -> str:
    """Public URL of a key. Custom domains serve from the bucket root."""
    base = os.environ.get("R2_PUBLIC_URL")
    if not base:
        base = f"https://pub-{os.environ.get('R2_ACCOUNT_ID')}.r2.dev"
    return f"{base.rstrip('/')}/{key}"


def key_from_url(key_or_url: str) -> str:
    """Accept either a bare key or a full public URL and return the key."""
    if key_or_url.startswith(("http://", "https://")):
        return urlparse(key_or_url).path.lstrip("/")
    return key_or_url


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "UNKNOWN")
    return "UNKNOWN"


def upload_to_r2(key: str, body: bytes, content_type: str) -> str:
    """Upload bytes to R2 and return the public URL. Uses R2_BUCKET env var."""
    try:
        get_s3_client().put_object(
            Bucket=get_bucket(),
            Key=key,
            Body=body,
            ContentType=content_type,
            CacheControl=CACHE_CONTROL,
        )
    except (ClientError, BotoCoreError) as e:
        code = _error_code(e)
        logger.error(f"R2 upload failed: key={key} code={code}")
        raise TransientExternalError(f"Failed to upload to R2 ({code}): {e}") from e
    return public_url_for(key)


def download_from_r2(key_or_url: str) -> R2Object:
    """Download an object from R2. Uses R2_BUCKET env var."""
    key = key_from_url(key_or_url)
    try:
        response = get_s3_client().get_object(Bucket=get_bucket(), Key=key)
    except ClientError as e:
        if _error_code(e) in _NOT_FOUND_CODES:
            raise ObjectNotFoundError(key) from e
        raise TransientExternalError(f"Failed to get {key} from R2: {e}") from e
    except BotoCoreError as e:
        raise TransientExternalError(f"Failed to get {key} from R2: {e}") from e

    body = response["Body"].read()
    return R2Object(
        body=body,
        content_type=response.get("ContentType"),
        content_length=response.get("ContentLength", len(body)),
    )


def delete_from_r2(key: str):
    """Delete a single object. Deleting a missing key is not an error."""
    try:
        get_s3_client().delete_object(Bucket=get_bucket(), Key=key)
    except (ClientError, BotoCoreError) as e:
        raise TransientExternalError(f"Failed to delete {key} from R2: {e}") from e


def delete_quietly(key: str) -> bool:
    """Delete for cleanup paths: log failures, never raise."""
    try:
        delete_from_r2(key)
    except TransientExternalError as e:
        logger.warning(f"Cleanup delete failed for {key}: {e}")
        return False
    return True


def delete_asset_from_r2(public_id: str, folder: str) -> int:
    """Delete every known size/format of a logical asset.

    Fixed fan-out over ASSET_SUFFIXES rather than a prefix scan, so missing
    individual objects are tolerated silently. Returns the number of delete
    calls that succeeded.
    """
    deleted = 0
    for suffix in ASSET_SUFFIXES:
        if delete_quietly(f"{folder}/{public_id}{suffix}"):
            deleted += 1
    return deleted


def presign_upload_url(key: str, content_type: str | None,
                       expires_in: int = PRESIGN_EXPIRES_IN) -> str:
    """Pre-signed PUT URL so clients can upload straight to the staging key."""
    return get_s3_client().generate_presigned_url(
        "put_object",
        Params={
            "Bucket": get_bucket(),
            "Key": key,
            "ContentType": content_type or "application/octet-stream",
        },
        ExpiresIn=expires_in,
    )


def list_r2_objects(prefix: str) -> list[R2Listing]:
    """List every object under prefix, following continuation tokens."""
    listings = []
    params = {"Bucket": get_bucket(), "Prefix": prefix, "MaxKeys": LIST_PAGE_SIZE}
    while True:
        response = get_s3_client().list_objects_v2(**params)
        for item in response.get("Contents", []):
            if item.get("LastModified") is None:
                continue
            listings.append(R2Listing(key=item["Key"], last_modified=item["LastModified"]))
        token = response.get("NextContinuationToken")
        if not response.get("IsTruncated") or not token:
            break
        params["ContinuationToken"] = token
    return listings
