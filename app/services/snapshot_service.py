# app/services/snapshot_service.py
"""
Snapshot service — decides, per snapshot, whether the image goes to
Cloudinary and resolves the reference stored on the snapshot row.

Flow per snapshot:
    throttle.admit() → upload (inline image or remote URL) → throttle.record_decision()

A snapshot always ends up with some usable reference: the Cloudinary URL when
the upload happened, otherwise the path the camera reported.
"""

from dataclasses import dataclass
from typing import Optional
from app.services import cloudinary_service
from app.services.event_parser import RawSnapshot
from app.services.throttle import AdmissionController, throttle as default_throttle
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ResolvedSnapshot:
    type: str
    path: Optional[str]
    image_url: Optional[str]
    public_id: Optional[str] = None
    admitted: bool = False

    @property
    def uploaded(self) -> bool:
        return self.public_id is not None


async def resolve_snapshot(snapshot: RawSnapshot, event_id: str, index: int, total: int,
                           controller: Optional[AdmissionController] = None) -> ResolvedSnapshot:
    controller = controller or default_throttle
    resolved = ResolvedSnapshot(type=snapshot.type, path=snapshot.path, image_url=snapshot.path)

    # Nothing to upload: the reported path is all we have
    if not snapshot.image and not snapshot.remote_url:
        return resolved

    resolved.admitted = controller.admit(index, total)
    if not resolved.admitted:
        controller.record_decision(False)
        return resolved

    if snapshot.image:
        result = await cloudinary_service.upload_image(snapshot.image, event_id, snapshot.type)
    else:
        result = await cloudinary_service.upload_image_from_url(snapshot.remote_url, event_id, snapshot.type)
    controller.record_decision(result.success)

    if result.success and result.url:
        resolved.image_url = result.url
        resolved.public_id = result.public_id
    else:
        logger.warning(f"[SNAPSHOT] Upload failed for {event_id} #{index} ({snapshot.type}): "
                       f"{result.error} — keeping source path")
    return resolved
