import logging
import os
from typing import Optional

import boto3
from botocore.client import Config

from .config import (
    PRESIGN_EXPIRES,
    S3_ACCESS_KEY,
    S3_BUCKET,
    S3_ENDPOINT,
    S3_REGION,
    S3_SECRET_KEY,
    STATIC_DIR,
    USE_S3,
)

logger = logging.getLogger("letmecook-kitchen")

os.makedirs(STATIC_DIR, exist_ok=True)

_DIRECT_PREFIXES = ("http://", "https://", "file://")

_s3 = None
if USE_S3 and S3_BUCKET and S3_ACCESS_KEY and S3_SECRET_KEY and S3_ENDPOINT:
    _s3 = boto3.client(
        "s3",
        endpoint_url=S3_ENDPOINT,
        aws_access_key_id=S3_ACCESS_KEY,
        aws_secret_access_key=S3_SECRET_KEY,
        region_name=S3_REGION,
        config=Config(signature_version="s3v4"),
    )


def storage_mode() -> str:
    return "s3" if _s3 else "local"


def make_key(*parts: str) -> str:
    return "/".join([p.strip("/") for p in parts])


def put_object(key: str, data: bytes, content_type: str) -> str:
    if _s3:
        try:
            _s3.put_object(Bucket=S3_BUCKET, Key=key, Body=data, ContentType=content_type)
            return key
        except Exception as e:
            logger.warning("S3 put_object failed, falling back to local storage: %s", e)
    path = os.path.join(STATIC_DIR, key)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    return key


def delete_object(key: str) -> None:
    """Best-effort removal of an image; failures are only logged."""
    if not key or key.startswith(_DIRECT_PREFIXES):
        return
    if _s3:
        try:
            _s3.delete_object(Bucket=S3_BUCKET, Key=key)
            return
        except Exception as e:
            logger.warning("S3 delete_object failed, falling back to local delete: %s", e)
    path = os.path.join(STATIC_DIR, key)
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning("Local delete failed for %s: %s", path, e)


def presign_url(key: str, expires: int = PRESIGN_EXPIRES) -> Optional[str]:
    if _s3:
        try:
            return _s3.generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": S3_BUCKET, "Key": key},
                ExpiresIn=expires,
            )
        except Exception as e:
            logger.warning("S3 presign failed, falling back to local assets: %s", e)
    path = os.path.join(STATIC_DIR, key)
    return f"/assets/{key}" if os.path.exists(path) else None


def resolve_image_url(image_ref: str) -> Optional[str]:
    """Turn a job's image reference into something a client can load.

    Full URLs are used as they are; anything else is treated as a storage key.
    """
    if not image_ref:
        return None
    if image_ref.startswith(_DIRECT_PREFIXES):
        return image_ref
    return presign_url(image_ref)
