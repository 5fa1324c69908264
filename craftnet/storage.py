"""Supabase Storage helpers: uploads and signed URLs.

A stored file is referenced as ``"<bucket>/<path>"``. Older rows may hold a
full URL or a bare path; :func:`signed_url` accepts all three.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from supabase import Client

from .config import Settings, get_settings
from .errors import RemoteFailure, ValidationError
from .logging_config import get_logger

logger = get_logger("craftnet.storage")

CV_BUCKET = "cvs"
DISPUTE_EVIDENCE_BUCKET = "dispute-evidence"
PROGRESS_FILES_BUCKET = "progress-files"

CV_CONTENT_TYPES = {
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "txt",
}


def _millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def is_url(reference: str) -> bool:
    return reference.startswith("http://") or reference.startswith("https://")


async def upload_file(
    db: Client,
    bucket: str,
    path: str,
    content: bytes,
    content_type: str | None = None,
) -> str:
    """Upload bytes and return the ``"<bucket>/<path>"`` reference."""
    options = {"content-type": content_type or "application/octet-stream", "upsert": "false"}

    def _upload():
        return db.storage.from_(bucket).upload(path, content, options)

    try:
        await asyncio.to_thread(_upload)
    except Exception as e:
        logger.error(f"Upload to {bucket}/{path} failed: {type(e).__name__}: {e}")
        raise RemoteFailure(f"Failed to upload file: {e}") from e
    return f"{bucket}/{path}"


async def upload_cv(
    db: Client,
    user_id: str,
    filename: str,
    content: bytes,
    content_type: str | None,
    settings: Settings | None = None,
) -> str:
    """Validate and upload an apprentice CV. Returns its storage reference."""
    settings = settings or get_settings()
    ext = CV_CONTENT_TYPES.get(content_type or "")
    if ext is None:
        raise ValidationError("CV must be a PDF, DOC, DOCX or TXT file", field="cv-upload")
    if len(content) > settings.max_cv_bytes:
        raise ValidationError("CV file must be 10MB or smaller", field="cv-upload")
    return await upload_file(db, CV_BUCKET, f"{user_id}/cv-{_millis()}.{ext}", content, content_type)


async def upload_dispute_evidence(
    db: Client,
    user_id: str,
    filename: str,
    content: bytes,
    content_type: str | None,
    settings: Settings | None = None,
) -> str:
    settings = settings or get_settings()
    if len(content) > settings.max_evidence_bytes:
        raise ValidationError(f"Evidence file {filename} is too large", field="dispute-evidence")
    path = f"{user_id}/disputes/{_millis()}-{filename}"
    return await upload_file(db, DISPUTE_EVIDENCE_BUCKET, path, content, content_type)


def _strip_bucket(bucket: str, reference: str) -> str:
    prefix = f"{bucket}/"
    return reference[len(prefix):] if reference.startswith(prefix) else reference


async def signed_url(
    db: Client,
    bucket: str,
    reference: str,
    expires_in: int | None = None,
) -> str:
    """Return a time-limited URL for a stored file.

    URLs are returned unchanged; ``"<bucket>/"`` prefixes are stripped before
    signing.
    """
    if is_url(reference):
        return reference
    expires_in = expires_in or get_settings().signed_url_expiry_seconds
    path = _strip_bucket(bucket, reference)

    def _sign():
        return db.storage.from_(bucket).create_signed_url(path, expires_in)

    try:
        result = await asyncio.to_thread(_sign)
    except Exception as e:
        raise RemoteFailure(f"Failed to sign {bucket}/{path}: {e}") from e

    url = result.get("signedURL") or result.get("signedUrl")
    if not url:
        raise RemoteFailure(f"No signed URL returned for {bucket}/{path}")
    return url


def public_url(db: Client, bucket: str, path: str) -> str:
    return db.storage.from_(bucket).get_public_url(_strip_bucket(bucket, path))
