"""Receipt uploads to Cloudflare R2 (S3 API) and signed read links."""
import logging
import os
import time
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Depends
from slugify import slugify

from bookpay.config import Settings, get_settings
from bookpay.errors import ConfigurationError, DependencyError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_RECEIPT_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "application/pdf": "pdf",
}


def receipt_prefix(purchase_id: str) -> str:
    return f"receipts/{purchase_id}/"


class ReceiptStorage:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._client = None

    @property
    def configured(self) -> bool:
        s = self.settings
        return all([s.r2_account_id, s.r2_access_key_id, s.r2_secret_access_key, s.r2_bucket_name])

    @property
    def client(self):
        if not self.configured:
            raise ConfigurationError("Receipt storage is not configured")
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=f"https://{self.settings.r2_account_id}.r2.cloudflarestorage.com",
                aws_access_key_id=self.settings.r2_access_key_id,
                aws_secret_access_key=self.settings.r2_secret_access_key,
                region_name="auto",
            )
        return self._client

    def upload_receipt(self, content: bytes, content_type: str, purchase_id: str, filename: Optional[str] = None) -> str:
        ext = ALLOWED_RECEIPT_TYPES.get(content_type)
        if ext is None:
            raise ValidationError("Receipt must be a JPEG, PNG, WebP or PDF file")
        if not content:
            raise ValidationError("Receipt file is empty")
        if len(content) > self.settings.max_receipt_size_mb * 1024 * 1024:
            raise ValidationError(f"Receipt exceeds {self.settings.max_receipt_size_mb} MB")

        stem = slugify(os.path.splitext(filename or "")[0]) or "receipt"
        key = f"{receipt_prefix(purchase_id)}{stem}_{int(time.time() * 1000)}.{ext}"

        try:
            self.client.put_object(
                Bucket=self.settings.r2_bucket_name,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Receipt upload failed for purchase {purchase_id}: {e}")
            raise DependencyError("Receipt upload failed")

        logger.info(f"Receipt stored at {key} ({len(content)} bytes)")
        return key

    def get_signed_url(self, key: str, ttl_seconds: Optional[int] = None) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.settings.r2_bucket_name, "Key": key},
                ExpiresIn=ttl_seconds or self.settings.receipt_url_ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Could not sign receipt url for {key}: {e}")
            raise DependencyError("Could not create receipt link")


def get_receipt_storage(settings: Settings = Depends(get_settings)) -> ReceiptStorage:
    return ReceiptStorage(settings)
