import asyncio
import logging
import mimetypes
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from mediaproc.config import Settings
from mediaproc.core.pipeline.errors import PublishError, PublishReason
from mediaproc.core.pipeline.models import PublishResult

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "video/mp4"

# Platform mime tables disagree on some of these (.ts, .mkv, .webm)
MEDIA_CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/x-m4v",
    ".mov": "video/quicktime",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".ts": "video/mp2t",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".gif": "image/gif",
}

MAX_UPLOAD_ATTEMPTS = 3
MAX_CONNECT_TIMEOUT = 10.0

AUTH_ERROR_CODES = frozenset({
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "InvalidToken",
    "ExpiredToken",
    "Forbidden",
    "Unauthorized",
    "401",
    "403",
})


def attempt_timeouts(budget: float, attempts: int = MAX_UPLOAD_ATTEMPTS) -> Tuple[float, float]:
    """Split an upload budget into per-attempt connect and read timeouts.

    Every attempt together stays within ``budget`` seconds, not counting
    the short backoff botocore sleeps between retries.
    """
    per_attempt = budget / attempts
    connect_timeout = min(MAX_CONNECT_TIMEOUT, per_attempt / 2)
    return connect_timeout, per_attempt - connect_timeout


def join_public_url(base: str, key: str) -> str:
    """Join a base address and a percent-encoded key with exactly one slash between them."""
    return f"{base.rstrip('/')}/{quote(key.lstrip('/'), safe='/')}"


def content_type_for(key: str) -> str:
    suffix = PurePosixPath(key).suffix.lower()
    if suffix in MEDIA_CONTENT_TYPES:
        return MEDIA_CONTENT_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(key)
    return guessed or DEFAULT_CONTENT_TYPE


class Publisher:
    """Uploads artifacts to an S3-compatible bucket (Cloudflare R2)."""

    def __init__(self, settings: Settings, client: Optional[Any] = None):
        self.endpoint = settings.storage_endpoint
        self.bucket = settings.storage_bucket
        self.public_base_url = settings.storage_public_base_url
        self.timeout_seconds = settings.publish_timeout_seconds
        self._settings = settings
        self._client = client

    def missing_settings(self) -> List[str]:
        settings = self._settings
        required = {
            "R2_ENDPOINT_URL": settings.storage_endpoint,
            "R2_BUCKET_NAME": settings.storage_bucket,
            "R2_ACCESS_KEY_ID": settings.storage_access_key_id,
            "R2_SECRET_ACCESS_KEY": settings.storage_secret_access_key,
        }
        return [name for name, value in required.items() if not value]

    @property
    def is_configured(self) -> bool:
        return not self.missing_settings()

    def ensure_configured(self) -> None:
        missing = self.missing_settings()
        if missing:
            raise PublishError(
                PublishReason.NOT_CONFIGURED,
                f"Object storage is not configured (missing {', '.join(missing)})",
            )

    def get_client(self):
        if self._client is None:
            settings = self._settings
            connect_timeout, read_timeout = attempt_timeouts(self.timeout_seconds)
            session = boto3.session.Session()
            self._client = session.client(
                "s3",
                endpoint_url=settings.storage_endpoint,
                aws_access_key_id=settings.storage_access_key_id,
                aws_secret_access_key=settings.storage_secret_access_key,
                # Cloudflare R2 requires signature version 4 (sigv4)
                config=Config(
                    signature_version="s3v4",
                    s3={"addressing_style": settings.storage_addressing_style},
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={"max_attempts": MAX_UPLOAD_ATTEMPTS, "mode": "standard"},
                ),
                region_name=settings.storage_region,
            )
        return self._client

    def public_url_for(self, key: str) -> str:
        if self.public_base_url:
            return join_public_url(self.public_base_url, key)
        return join_public_url(join_public_url(self.endpoint, self.bucket), key)

    async def publish(
        self,
        local_path: Path,
        storage_key: str,
        content_type: Optional[str] = None,
    ) -> PublishResult:
        """
        Upload ``local_path`` under ``storage_key``. An existing object is replaced.

        The upload is bounded by the client's connect/read timeouts and retry
        budget, and is always awaited to completion: once this returns or
        raises, no write for ``storage_key`` is still in flight.

        Raises:
            PublishError: notConfigured, authRejected or storeUnreachable.
        """
        self.ensure_configured()
        content_type = content_type or content_type_for(storage_key)

        # Read the whole artifact so the store gets a known length and a retryable body
        body = await asyncio.to_thread(Path(local_path).read_bytes)

        upload = asyncio.ensure_future(
            asyncio.to_thread(self._put_object, storage_key, body, content_type)
        )
        try:
            await asyncio.shield(upload)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; hold the caller until it settles
            await asyncio.wait([upload])
            if not upload.cancelled() and upload.exception() is None:
                logger.warning("Upload of %s finished after cancellation", storage_key)
            raise

        public_url = self.public_url_for(storage_key)
        logger.info("Uploaded %d bytes to %s/%s", len(body), self.bucket, storage_key)
        return PublishResult(
            storage_key=storage_key,
            public_url=public_url,
            content_type=content_type,
            size_bytes=len(body),
        )

    def _put_object(self, key: str, body: bytes, content_type: str) -> Dict[str, Any]:
        client = self.get_client()
        try:
            return client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                ContentLength=len(body),
            )
        except ClientError as exc:
            error = exc.response.get("Error", {})
            code = str(error.get("Code", ""))
            status = str(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", ""))
            logger.error("Failed to upload %s: %s", key, exc)
            if code in AUTH_ERROR_CODES or status in {"401", "403"}:
                raise PublishError(PublishReason.AUTH_REJECTED, f"Storage rejected credentials: {code}") from exc
            raise PublishError(PublishReason.STORE_UNREACHABLE, f"Storage error: {code or exc}") from exc
        except NoCredentialsError as exc:
            raise PublishError(PublishReason.AUTH_REJECTED, "No storage credentials available") from exc
        except BotoCoreError as exc:
            logger.error("Failed to reach storage for %s: %s", key, exc)
            raise PublishError(PublishReason.STORE_UNREACHABLE, f"Storage unreachable: {exc}") from exc
