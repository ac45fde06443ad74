# app/services/event_parser.py
"""
Parses IREX webhook bodies and normalises each event into a strict
ParsedIrexEvent. All field aliases are resolved here, once, so the rest
of the pipeline only ever sees the dataclasses below.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional
from app.utils.json_parser import safe_parse_json, first_present, to_float
from app.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LEVEL = 1
INT64_MIN, INT64_MAX = -(2 ** 63), 2 ** 63 - 1
LEVEL_NAMES = {"low": 0, "info": 1, "medium": 1, "high": 2, "critical": 3}
EVENT_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "eli/irex/events")


class PayloadError(ValueError):
    """The request body as a whole cannot be processed."""


class EmptyPayloadError(PayloadError):
    """Body is empty, an empty array, or not an object/array."""


class MalformedPayloadError(PayloadError):
    """Body is not valid JSON."""


class EventValidationError(ValueError):
    """A single event is missing required fields; only that event is skipped."""


@dataclass
class ParsedChannel:
    id: str
    name: Optional[str] = None
    channel_type: str = "STREAM"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[dict] = None
    tags: Any = None
    status: str = "active"          # every sighting marks the camera active
    region: Optional[str] = None


@dataclass
class RawSnapshot:
    type: str = "UNKNOWN"
    path: Optional[str] = None
    image: Optional[str] = None     # base64 or data URI

    @property
    def remote_url(self) -> Optional[str]:
        if self.path and self.path.startswith(("http://", "https://")):
            return self.path
        return None


@dataclass
class ParsedIrexEvent:
    id: str                         # server-side row id
    source_id: str                  # upstream body.id
    event_id: str                   # upstream event_id, falls back to id
    channel: ParsedChannel
    monitor_id: Optional[str] = None
    topic: str = "Unknown"
    module: str = "Unknown"
    level: int = DEFAULT_LEVEL
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    params: Optional[dict] = None
    tags: Any = None
    snapshots: List[RawSnapshot] = field(default_factory=list)


def parse_webhook_body(raw_body: bytes) -> List[Any]:
    """Decode the body into a list of raw event records. IREX batches, but single objects are accepted."""
    if not raw_body or not raw_body.strip():
        raise EmptyPayloadError("Empty payload")

    data = safe_parse_json(raw_body)
    if data is None:
        raise MalformedPayloadError("Request body is not valid JSON")

    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        if not data:
            raise EmptyPayloadError("Empty payload")
        return data
    raise EmptyPayloadError(f"Expected a JSON object or array, got {type(data).__name__}")


def make_event_row_id(source: str, source_id: str) -> str:
    """Stable row id: redelivery of the same upstream event lands on the same row."""
    return f"evt_{uuid.uuid5(EVENT_ID_NAMESPACE, f'{source}:{source_id}').hex}"


def _to_int(value: Any) -> Optional[int]:
    """int() of a number or numeric string; None for junk, NaN, infinities and anything past 64 bits."""
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(number):
        return None
    result = int(number)
    if not INT64_MIN <= result <= INT64_MAX:
        return None
    return result


def parse_level(value: Any) -> int:
    if value is None or value == "" or isinstance(value, bool):
        return DEFAULT_LEVEL
    if isinstance(value, str) and value.strip().lower() in LEVEL_NAMES:
        return LEVEL_NAMES[value.strip().lower()]
    level = _to_int(value)
    if level is None:
        logger.debug(f"Unrecognised level {value!r}, using {DEFAULT_LEVEL}")
        return DEFAULT_LEVEL
    return max(0, min(3, level))


def parse_epoch_millis(value: Any) -> Optional[int]:
    """Accepts epoch millis (int/float/numeric string) or an ISO-8601 timestamp."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if INT64_MIN <= value <= INT64_MAX else None
    if isinstance(value, float):
        return _to_int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            float(text)
        except ValueError:
            pass
        else:
            return _to_int(text)
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Unparseable timestamp {value!r}")
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return None


def _parse_channel(body: dict) -> ParsedChannel:
    embedded = body.get("channel")
    if embedded is not None and not isinstance(embedded, dict):
        # Some senders only put the channel id in `channel`
        embedded = {"id": embedded}
    if embedded is None and body.get("channel_id") in (None, ""):
        raise EventValidationError("missing channel")

    src = {**body, "channel": embedded or {}}
    channel_id = first_present(src, ("channel", "id"), "channel_id")
    if channel_id is None:
        raise EventValidationError("missing channel id")

    address = first_present(src, ("channel", "address"), "channel_address")
    if not isinstance(address, dict):
        address = {"street": address} if isinstance(address, str) else None

    region = None
    if address:
        region = address.get("city") or address.get("region")

    return ParsedChannel(
        id=str(channel_id),
        name=first_present(src, ("channel", "name"), "channel_name"),
        channel_type=first_present(src, ("channel", "channel_type"), "channel_type", default="STREAM"),
        latitude=to_float(first_present(src, ("channel", "latitude"), "channel_latitude")),
        longitude=to_float(first_present(src, ("channel", "longitude"), "channel_longitude")),
        address=address,
        tags=first_present(src, ("channel", "tags"), "channel_tags"),
        region=region,
    )


def _text_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _parse_snapshots(body: dict) -> List[RawSnapshot]:
    raw = body.get("snapshots")
    if not isinstance(raw, list):
        return []
    result = []
    for snap in raw:
        if not isinstance(snap, dict):
            logger.debug(f"Ignoring non-object snapshot entry: {snap!r}")
            continue
        result.append(RawSnapshot(
            type=str(snap.get("type") or "UNKNOWN"),
            path=_text_or_none(snap.get("path")),
            image=_text_or_none(snap.get("image")),
        ))
    return result


def normalize_event(body: Any, source: str = "irex") -> ParsedIrexEvent:
    """Validate one raw event record. Raises EventValidationError when id or channel is missing."""
    if not isinstance(body, dict):
        raise EventValidationError(f"event is not an object: {type(body).__name__}")
    if body.get("id") in (None, ""):
        raise EventValidationError("missing id")

    channel = _parse_channel(body)
    source_id = str(body["id"])
    params = body.get("params")

    return ParsedIrexEvent(
        id=make_event_row_id(source, source_id),
        source_id=source_id,
        event_id=str(first_present(body, "event_id", "id")),
        monitor_id=str(body["monitor_id"]) if body.get("monitor_id") not in (None, "") else None,
        topic=body.get("topic") or "Unknown",
        module=body.get("module") or "Unknown",
        level=parse_level(body.get("level")),
        start_time=parse_epoch_millis(body.get("start_time")),
        end_time=parse_epoch_millis(body.get("end_time")),
        params=params if isinstance(params, dict) else None,
        tags=body.get("tags") if body.get("tags") is not None else channel.tags,
        channel=channel,
        snapshots=_parse_snapshots(body),
    )
