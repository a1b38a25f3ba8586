"""
Object storage for uploaded submission files and reviewer CVs.

This module provides functionality for:
- Validating upload extensions per document kind
- Uploading file streams to S3 under collision-free keys
- Generating presigned URLs for time-limited downloads

When no bucket is configured (local development), uploads are skipped with a
warning and callers receive ``None`` instead of a URI.
"""

from __future__ import annotations

import logging
from typing import BinaryIO, Iterable, Optional, Tuple
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import StorageSettings
from .errors import DependencyUnavailable, ValidationError
from .utils import has_allowed_extension, sanitize_filename

logger = logging.getLogger(__name__)

S3_SCHEME = "s3://"


def split_s3_uri(uri: str) -> Tuple[str, str]:
    """
    Split an ``s3://bucket/key`` URI into bucket and key.

    Example:
        >>> split_s3_uri("s3://papers/uploads/a/b.pdf")
        ("papers", "uploads/a/b.pdf")
    """
    if not uri.startswith(S3_SCHEME):
        raise ValueError(f"Not an S3 URI: {uri}")
    bucket, _, key = uri[len(S3_SCHEME):].partition("/")
    return bucket, key


def check_extension(filename: str, allowed: Iterable[str]) -> None:
    allowed = tuple(allowed)
    if not has_allowed_extension(filename, allowed):
        raise ValidationError(f"Unsupported file type for '{filename}'. Allowed: {', '.join(allowed)}")


class ObjectStorage:
    def __init__(self, settings: StorageSettings, client=None):
        self.settings = settings
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.settings.bucket)

    def _get_client(self):
        """Create the S3 client on first use."""
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def build_key(self, folder: str, filename: str) -> str:
        prefix = self.settings.prefix.strip("/")
        parts = [p for p in (prefix, folder.strip("/"), uuid4().hex, sanitize_filename(filename)) if p]
        return "/".join(parts)

    def upload(
        self,
        fileobj: BinaryIO,
        filename: str,
        folder: str,
        allowed: Iterable[str],
        content_type: Optional[str] = None,
    ) -> Optional[str]:
        """
        Upload a file stream and return its ``s3://`` URI.

        Args:
            fileobj: Readable binary stream
            filename: Client-supplied filename, used for the extension and key
            folder: Logical folder, e.g. ``papers`` or ``cvs``
            allowed: Accepted extensions (lowercase, with dot)
            content_type: Optional MIME type stored with the object

        Returns:
            The object URI, or None when no bucket is configured

        Raises:
            ValidationError: If the extension is not allowed
            DependencyUnavailable: If the upload fails
        """
        check_extension(filename, allowed)

        if not self.configured:
            logger.warning(f"S3 bucket not configured, skipping upload of {filename}")
            return None

        key = self.build_key(folder, filename)
        extra_args = {"ContentType": content_type} if content_type else None
        try:
            logger.info(f"Uploading {filename} to s3://{self.settings.bucket}/{key}")
            self._get_client().upload_fileobj(fileobj, self.settings.bucket, key, ExtraArgs=extra_args)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed: {e}")
            raise DependencyUnavailable("File upload failed, please try again later") from e
        return f"{S3_SCHEME}{self.settings.bucket}/{key}"

    def presigned_url(self, uri: str, expiration: Optional[int] = None) -> Optional[str]:
        """
        Generate a presigned download URL for a stored object.

        Returns None if storage is not configured or signing fails.
        """
        if not self.configured or not uri:
            return None
        expiration = expiration or self.settings.presign_expiration
        try:
            bucket, key = split_s3_uri(uri)
            return self._get_client().generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expiration,
            )
        except (ValueError, ClientError, BotoCoreError) as e:
            logger.error(f"Failed to generate presigned URL for {uri}: {e}")
            return None
