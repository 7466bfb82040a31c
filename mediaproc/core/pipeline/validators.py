"""
Request validation for the processing pipeline.

Runs before any workspace is acquired, so a malformed request never
consumes scratch space or reaches the network.
"""

import re
from typing import Iterable, Optional, Union
from urllib.parse import urlparse

from mediaproc.core.pipeline.errors import ValidationError, ValidationReason
from mediaproc.core.pipeline.models import ProcessRequest, TransformSpec

MAX_URL_LENGTH = 2048
MAX_KEY_LENGTH = 1024
MAX_STYLE_LENGTH = 64
MAX_EXTRA_ARGS = 32

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_source_location(url: Optional[str], allowed_hosts: Iterable[str] = ()) -> str:
    """
    Validate the source URL.

    Raises:
        ValidationError: If the URL is missing, malformed or from a disallowed host.
    """
    if url is None or not isinstance(url, str) or not url.strip():
        raise ValidationError(ValidationReason.MISSING_SOURCE, "sourceLocation is required", field="sourceLocation")

    url = url.strip()
    if len(url) > MAX_URL_LENGTH:
        raise ValidationError(
            ValidationReason.INVALID_SOURCE,
            f"sourceLocation exceeds maximum length of {MAX_URL_LENGTH}",
            field="sourceLocation",
        )
    if _CONTROL_CHARS.search(url):
        raise ValidationError(
            ValidationReason.INVALID_SOURCE,
            "sourceLocation contains control characters",
            field="sourceLocation",
        )

    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        raise ValidationError(ValidationReason.INVALID_SOURCE, "Invalid URL format", field="sourceLocation")

    if parsed.scheme not in ("http", "https"):
        raise ValidationError(
            ValidationReason.INVALID_SOURCE,
            "sourceLocation must use HTTP or HTTPS",
            field="sourceLocation",
        )
    if not hostname:
        raise ValidationError(ValidationReason.INVALID_SOURCE, "Invalid URL: missing host", field="sourceLocation")

    allowed = {host.lower() for host in allowed_hosts}
    if allowed and hostname.lower() not in allowed:
        raise ValidationError(
            ValidationReason.SOURCE_HOST_NOT_ALLOWED,
            f"Source host {hostname} is not allowed",
            field="sourceLocation",
        )
    return url


def normalize_output_identity(identity: Optional[str]) -> str:
    """
    Normalize the caller's storage key.

    Surrounding whitespace and leading slashes are dropped, so ``/out/a.mp4``
    and ``out/a.mp4`` name the same object.
    """
    if identity is None or not isinstance(identity, str):
        raise ValidationError(
            ValidationReason.MISSING_OUTPUT_IDENTITY,
            "outputIdentity is required",
            field="outputIdentity",
        )

    key = identity.strip().lstrip("/")
    if not key:
        raise ValidationError(
            ValidationReason.MISSING_OUTPUT_IDENTITY,
            "outputIdentity must not be empty",
            field="outputIdentity",
        )
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(
            ValidationReason.INVALID_OUTPUT_IDENTITY,
            f"outputIdentity exceeds maximum length of {MAX_KEY_LENGTH}",
            field="outputIdentity",
        )
    if _CONTROL_CHARS.search(key) or "\\" in key:
        raise ValidationError(
            ValidationReason.INVALID_OUTPUT_IDENTITY,
            "outputIdentity contains invalid characters",
            field="outputIdentity",
        )

    segments = key.split("/")
    if any(segment in ("", ".", "..") for segment in segments[:-1]) or segments[-1] in ("", ".", ".."):
        raise ValidationError(
            ValidationReason.INVALID_OUTPUT_IDENTITY,
            "outputIdentity must not contain empty, '.' or '..' segments",
            field="outputIdentity",
        )
    return key


def validate_transform(transform: Union[None, str, TransformSpec]) -> TransformSpec:
    """Shape-check a transform. Argument resolution happens in the transcoder."""
    if transform is None:
        transform = TransformSpec()
    elif isinstance(transform, str):
        transform = TransformSpec(style=transform.strip() or None)
    elif not isinstance(transform, TransformSpec):
        raise ValidationError(ValidationReason.INVALID_TRANSFORM, "Unsupported transform", field="transform")

    if transform.style and transform.filter:
        raise ValidationError(
            ValidationReason.INVALID_TRANSFORM,
            "transform accepts a style or a filter, not both",
            field="transform",
        )
    if transform.style and len(transform.style) > MAX_STYLE_LENGTH:
        raise ValidationError(ValidationReason.INVALID_TRANSFORM, "style name is too long", field="transform.style")
    if len(transform.args) > MAX_EXTRA_ARGS:
        raise ValidationError(
            ValidationReason.INVALID_TRANSFORM,
            f"transform accepts at most {MAX_EXTRA_ARGS} extra arguments",
            field="transform.args",
        )
    if any(not isinstance(arg, str) for arg in transform.args):
        raise ValidationError(ValidationReason.INVALID_TRANSFORM, "transform arguments must be strings", field="transform.args")
    return transform


def validate_request(
    request_id: str,
    source_location: Optional[str],
    output_identity: Optional[str],
    transform: Union[None, str, TransformSpec] = None,
    allowed_source_hosts: Iterable[str] = (),
) -> ProcessRequest:
    return ProcessRequest(
        request_id=request_id,
        source_location=validate_source_location(source_location, allowed_source_hosts),
        output_identity=normalize_output_identity(output_identity),
        transform=validate_transform(transform),
    )
