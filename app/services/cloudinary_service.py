# app/services/cloudinary_service.py
"""
Cloudinary client — uploads snapshot images under the 'eli-events' folder.

Requests are signed: SHA-1 over the sorted key=value pairs of the signed
params joined with '&', with the API secret appended.

None of the functions here raise. Missing credentials, non-2xx responses and
network errors all come back as success=False so the caller can fall back to
the path the camera reported.
"""

import base64
import hashlib
import re
import time
from dataclasses import dataclass
from typing import Optional, Union
import httpx
from app.config import settings
from app.utils.logger import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


@dataclass
class UploadResult:
    success: bool
    url: Optional[str] = None
    public_id: Optional[str] = None
    format: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    bytes: Optional[int] = None
    error: Optional[str] = None


@dataclass
class DeleteResult:
    success: bool
    error: Optional[str] = None


def is_cloudinary_configured() -> bool:
    return settings.CLOUDINARY_CONFIGURED


def generate_signature(params: dict, api_secret: str) -> str:
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha1((to_sign + api_secret).encode("utf-8")).hexdigest()


def build_public_id(event_id: str, snapshot_type: str, timestamp_ms: Optional[int] = None) -> str:
    """<event>_<type>_<epoch ms>, restricted to characters Cloudinary accepts in ids."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{_UNSAFE_CHARS.sub('_', event_id)}_{_UNSAFE_CHARS.sub('_', snapshot_type or 'UNKNOWN')}_{timestamp_ms}"


def to_data_uri(image: Union[bytes, str]) -> str:
    """Bare base64 (or raw bytes) is assumed to be JPEG — what the cameras send."""
    if isinstance(image, bytes):
        return "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")
    if image.startswith("data:"):
        return image
    return f"data:image/jpeg;base64,{image}"


def _api_url(action: str) -> str:
    return f"{settings.CLOUDINARY_API_BASE.rstrip('/')}/{settings.CLOUDINARY_CLOUD_NAME}/image/{action}"


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.CLOUDINARY_TIMEOUT_SECONDS)


async def _signed_upload(file: str, event_id: str, snapshot_type: str) -> UploadResult:
    if not is_cloudinary_configured():
        return UploadResult(success=False, error="Cloudinary not configured - missing credentials")

    public_id = build_public_id(event_id, snapshot_type)
    signed = {
        "folder": settings.CLOUDINARY_FOLDER,
        "public_id": public_id,
        "timestamp": int(time.time()),
    }
    form = {
        **signed,
        "file": file,
        "api_key": settings.CLOUDINARY_API_KEY,
        "signature": generate_signature(signed, settings.CLOUDINARY_API_SECRET),
    }

    try:
        async with _http_client() as client:
            response = await client.post(_api_url("upload"), data=form)
        if response.status_code // 100 != 2:
            logger.error(f"[CLOUDINARY] Upload failed for {event_id}: HTTP {response.status_code} {response.text[:200]}")
            return UploadResult(success=False, error=f"Upload failed: {response.status_code} {response.reason_phrase}")

        result = response.json()
        logger.info(f"[CLOUDINARY] Uploaded {result.get('public_id')} ({result.get('bytes')} bytes)")
        return UploadResult(
            success=True,
            url=result.get("secure_url") or result.get("url"),
            public_id=result.get("public_id"),
            format=result.get("format"),
            width=result.get("width"),
            height=result.get("height"),
            bytes=result.get("bytes"),
        )
    except Exception as e:
        logger.error(f"[CLOUDINARY] Upload error for {event_id}: {e}")
        return UploadResult(success=False, error=str(e) or type(e).__name__)


async def upload_image(image: Union[bytes, str], event_id: str, snapshot_type: str = "UNKNOWN") -> UploadResult:
    """Upload inline image data (raw bytes, base64 or data URI)."""
    if not image:
        return UploadResult(success=False, error="No image data")
    if not isinstance(image, (str, bytes)):
        return UploadResult(success=False, error=f"Unsupported image data: {type(image).__name__}")
    return await _signed_upload(to_data_uri(image), event_id, snapshot_type)


async def upload_image_from_url(image_url: str, event_id: str, snapshot_type: str = "UNKNOWN") -> UploadResult:
    """Let Cloudinary fetch a remote image by URL."""
    return await _signed_upload(image_url, event_id, snapshot_type)


async def delete_image(public_id: str) -> DeleteResult:
    """Remove an uploaded image. Used by retention/purge flows."""
    if not is_cloudinary_configured():
        return DeleteResult(success=False, error="Cloudinary not configured - missing credentials")

    signed = {"public_id": public_id, "timestamp": int(time.time())}
    form = {
        **signed,
        "api_key": settings.CLOUDINARY_API_KEY,
        "signature": generate_signature(signed, settings.CLOUDINARY_API_SECRET),
    }
    try:
        async with _http_client() as client:
            response = await client.post(_api_url("destroy"), data=form)
        if response.status_code // 100 != 2:
            return DeleteResult(success=False, error=f"Delete failed: {response.status_code} - {response.text[:200]}")
        outcome = response.json().get("result")
        if outcome != "ok":
            return DeleteResult(success=False, error=f"Delete returned: {outcome}")
        logger.info(f"[CLOUDINARY] Deleted {public_id}")
        return DeleteResult(success=True)
    except Exception as e:
        logger.error(f"[CLOUDINARY] Delete error for {public_id}: {e}")
        return DeleteResult(success=False, error=str(e) or type(e).__name__)
