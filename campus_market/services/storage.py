"""Presigned image uploads to the S3-compatible bucket (Cloudflare R2).

Clients PUT the bytes straight to the bucket; the API only signs the URL
and hands back the public address the listing should store.
"""
from dataclasses import dataclass
from typing import Optional
import logging
import uuid

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from campus_market.core.config import settings
from campus_market.core.errors import InvalidOperation, StorageError

logger = logging.getLogger(__name__)

# Content type -> extension used when the filename carries no usable one
ALLOWED_CONTENT_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}
ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "webp"}


@dataclass(frozen=True)
class SignedUpload:
    url: str
    key: str
    public_url: str


def build_object_key(filename: str, content_type: str, folder: str = "products") -> str:
    """``<folder>/<uuid>.<ext>``; the client's filename only contributes its extension."""
    _, dot, extension = filename.rpartition(".")
    extension = extension.lower()
    if not dot or extension not in ALLOWED_EXTENSIONS:
        extension = ALLOWED_CONTENT_TYPES[content_type]
    return f"{folder}/{uuid.uuid4()}.{extension}"


class ObjectStorage:
    def __init__(
        self,
        bucket: str,
        public_url: str,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        expires_in: int = 300,
        client=None,
    ):
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self.expires_in = expires_in
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            region_name="auto",
            config=Config(signature_version="s3v4"),
        )

    def create_upload_url(self, filename: str, content_type: str, folder: str = "products") -> SignedUpload:
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise InvalidOperation("Invalid file type. Only JPEG, PNG, and WebP are allowed.")

        key = build_object_key(filename, content_type, folder)
        try:
            # Signing is local; no request reaches the bucket here
            url = self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self.expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Could not sign upload for {key}: {str(e)}")
            raise StorageError("Failed to generate upload URL")

        return SignedUpload(url=url, key=key, public_url=f"{self.public_url}/{key}")


_storage: Optional[ObjectStorage] = None

def get_object_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        _storage = ObjectStorage(
            bucket=settings.CLOUDFLARE_R2_BUCKET,
            public_url=settings.CLOUDFLARE_R2_PUBLIC_URL,
            endpoint_url=settings.CLOUDFLARE_R2_ENDPOINT,
            access_key=settings.CLOUDFLARE_R2_ACCESS_KEY,
            secret_key=settings.CLOUDFLARE_R2_SECRET_KEY,
            expires_in=settings.UPLOAD_URL_EXPIRES,
        )
    return _storage
