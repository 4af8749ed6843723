# helpcast/core/broadcast/media.py
"""
Best-effort migration of inline request media to object storage.

Clients may submit images as ``data:`` URIs (or bare base64) to keep the
create call fast.  After the response is sent, each inline item is
uploaded and replaced by its public URL.  An item that fails to upload
keeps its inline form, so media is never dropped.
"""
from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from helpcast.core.broadcast.domain import DispatchPlan
from helpcast.core.broadcast.ports import MediaUploader, RequestStore
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import AppMetrics
from helpcast.infra.timeouts import with_timeout

logger = get_logger(__name__)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]+)*)?;base64,(?P<data>.+)$", re.DOTALL)

_EXT_BY_MIME = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/heic": "heic",
}


@dataclass(frozen=True)
class InlineMedia:
    data: bytes
    content_type: str

    @property
    def ext(self) -> str:
        return _EXT_BY_MIME.get(self.content_type, "bin")


def is_remote_url(item: str) -> bool:
    return item.startswith("http://") or item.startswith("https://")


def decode_inline(item: str) -> InlineMedia:
    """Decode a ``data:<mime>;base64,<payload>`` URI or bare base64 (assumed JPEG).

    Raises:
        ValueError: payload is not valid base64
    """
    content_type = "image/jpeg"
    payload = item
    if item.startswith("data:"):
        match = _DATA_URI_RE.match(item)
        if match:
            content_type = (match.group("mime") or content_type).lower()
            payload = match.group("data")
        else:
            payload = item.split(",", 1)[1] if "," in item else ""

    # Line-wrapped base64 is common; anything else outside the alphabet is not media
    payload = re.sub(r"\s+", "", payload)
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64 media: {exc}") from exc
    if not data:
        raise ValueError("empty media payload")
    return InlineMedia(data=data, content_type=content_type)


def storage_key(user_id: str, request_id: str, timestamp_ms: int, index: int, ext: str) -> str:
    return f"service-requests/{user_id}/{request_id}/{timestamp_ms}_{index}.{ext}"


@dataclass(frozen=True)
class SideloadOutcome:
    images: list[str]
    migrated: int
    kept_inline: int
    updated: bool


class MediaSideloader:
    def __init__(
        self,
        uploader: Optional[MediaUploader],
        requests: RequestStore,
        *,
        call_timeout: float = 8.0,
    ):
        self._uploader = uploader
        self._requests = requests
        self._call_timeout = call_timeout

    async def sideload(self, plan: DispatchPlan) -> SideloadOutcome:
        images = list(plan.images)
        if not images:
            return SideloadOutcome(images=[], migrated=0, kept_inline=0, updated=False)

        if self._uploader is None:
            inline = sum(1 for item in images if not is_remote_url(item))
            logger.info(f"Object storage not configured; keeping {inline} inline media item(s)")
            return SideloadOutcome(images=images, migrated=0, kept_inline=inline, updated=False)

        timestamp_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
        result: list[str] = []
        migrated = 0
        kept_inline = 0

        for index, item in enumerate(images):
            if is_remote_url(item):
                AppMetrics.media_item(outcome="passthrough")
                result.append(item)
                continue

            url = await self._upload_one(plan, item, index, timestamp_ms)
            if url is None:
                kept_inline += 1
                result.append(item)
            else:
                migrated += 1
                result.append(url)

        updated = False
        if migrated:
            await with_timeout(
                self._requests.update_images(plan.request_id, result),
                self._call_timeout,
                "update_request_images",
            )
            updated = True

        logger.info(
            f"Media sideload done: request={plan.request_id[:8]}, items={len(images)}, "
            f"migrated={migrated}, kept_inline={kept_inline}",
            extra={"service_request_id": plan.request_id},
        )
        return SideloadOutcome(images=result, migrated=migrated, kept_inline=kept_inline, updated=updated)

    async def _upload_one(self, plan: DispatchPlan, item: str, index: int, timestamp_ms: int) -> Optional[str]:
        try:
            media = decode_inline(item)
            key = storage_key(plan.requester_id, plan.request_id, timestamp_ms, index, media.ext)
            url = await with_timeout(
                self._uploader.upload(key, media.data, media.content_type),
                self._call_timeout,
                "media_upload",
            )
        except Exception as exc:
            AppMetrics.media_item(outcome="kept_inline")
            logger.warning(
                f"Media upload failed, keeping inline data: request={plan.request_id[:8]}, "
                f"index={index}: {exc}",
                extra={"service_request_id": plan.request_id},
            )
            return None

        AppMetrics.media_item(outcome="migrated")
        return url
