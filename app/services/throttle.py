# app/services/throttle.py
"""
Image throttle — admission control for snapshot uploads.

Only a configured fraction of incoming snapshot images is sent to the image
service (and, through the upload gate, to the graph store). Two sampling
methods are supported:

  interval  deterministic equal spacing over a process-wide counter of images
            seen: image n is admitted when floor(n*r) > floor((n-1)*r).
            Exactly floor(N*r) of the first N images are admitted, however
            they are batched.
  random    each image is admitted when a uniform draw is < r.

Both honour a hard per-hour ceiling (max_per_hour) on admitted images.

Counters live in memory and reset on restart; they are approximate
operational data, not an audit trail. Durable history goes to InfluxDB via
metrics_service.
"""

import math
import random
import threading
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional
from app.config import settings
from app.utils.logger import get_logger

logger = get_logger(__name__)

SAMPLING_METHODS = ("interval", "random")
BUCKET_RETENTION_HOURS = 24


@dataclass
class ThrottleConfig:
    enabled: bool
    process_ratio: float
    max_per_hour: int
    sampling_method: str = "interval"
    description: str = ""
    last_updated: str = ""

    @classmethod
    def from_settings(cls, s=settings) -> "ThrottleConfig":
        config = cls(
            enabled=s.THROTTLE_ENABLED,
            process_ratio=_clamp_ratio(s.THROTTLE_PROCESS_RATIO),
            max_per_hour=max(1, int(s.THROTTLE_MAX_PER_HOUR)),
            sampling_method=s.THROTTLE_SAMPLING_METHOD if s.THROTTLE_SAMPLING_METHOD in SAMPLING_METHODS else "interval",
            last_updated=datetime.now(timezone.utc).isoformat(),
        )
        config.description = describe(config)
        return config


@dataclass
class _HourBucket:
    received: int = 0
    processed: int = 0
    skipped: int = 0
    admitted: int = 0


def _clamp_ratio(ratio: float) -> float:
    return max(0.0, min(1.0, float(ratio)))


def _hour_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H")


def describe(config: ThrottleConfig) -> str:
    if not config.enabled:
        return "Throttle disabled: Processing all images (Production mode)"
    per_100k = round(config.process_ratio * 100000)
    return (
        f"Throttle active: Processing ~{per_100k} images per 100,000 incoming "
        f"({config.process_ratio * 100:.2f}%, {config.sampling_method} sampling, max {config.max_per_hour}/hour)"
    )


class AdmissionController:
    """
    Process-wide image admission controller.

    All state sits behind one lock and no method does I/O, so admit() and
    record_decision() form a single ordered sequence even when events are
    handled concurrently.
    """

    def __init__(self, config: ThrottleConfig,
                 clock: Optional[Callable[[], datetime]] = None,
                 rng: Optional[Callable[[], float]] = None):
        self._config = config
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._random = rng or random.random
        self._lock = threading.Lock()
        self._reset_counters()

    def _reset_counters(self):
        self._images_seen = 0
        self._total_received = 0
        self._total_processed = 0
        self._total_skipped = 0
        self._last_event_at: Optional[str] = None
        self._buckets: Dict[str, _HourBucket] = {}

    @property
    def config(self) -> ThrottleConfig:
        with self._lock:
            return replace(self._config)

    def _current_bucket(self, now: datetime) -> _HourBucket:
        key = _hour_key(now)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = _HourBucket()
            cutoff = _hour_key(now - timedelta(hours=BUCKET_RETENTION_HOURS))
            for old in [k for k in self._buckets if k < cutoff]:
                del self._buckets[old]
        return bucket

    def admit(self, image_index: int = 0, images_in_batch: int = 1) -> bool:
        """
        Decide whether one image may be uploaded.
        image_index/images_in_batch are informational; the decision depends only
        on the global sequence so the ratio holds for any batching.
        """
        try:
            with self._lock:
                config = self._config
                if not config.enabled:
                    return True

                bucket = self._current_bucket(self._clock())
                if config.sampling_method == "random":
                    sampled = self._random() < config.process_ratio
                else:
                    self._images_seen += 1
                    n = self._images_seen
                    sampled = math.floor(n * config.process_ratio) > math.floor((n - 1) * config.process_ratio)

                if not sampled:
                    return False
                if bucket.admitted >= config.max_per_hour:
                    logger.debug(f"[THROTTLE] Hourly limit {config.max_per_hour} reached — image "
                                 f"{image_index + 1}/{images_in_batch} denied")
                    return False
                bucket.admitted += 1
                return True
        except Exception as e:
            # Fail closed: never let a controller fault open the flood gates
            logger.error(f"[THROTTLE] Admission check failed, denying image: {e}", exc_info=True)
            return False

    def record_decision(self, processed: bool) -> None:
        """Account one image: processed means it was actually uploaded."""
        try:
            with self._lock:
                now = self._clock()
                bucket = self._current_bucket(now)
                self._last_event_at = now.isoformat()
                self._total_received += 1
                bucket.received += 1
                if processed:
                    self._total_processed += 1
                    bucket.processed += 1
                else:
                    self._total_skipped += 1
                    bucket.skipped += 1
        except Exception as e:
            logger.error(f"[THROTTLE] Failed to record decision: {e}", exc_info=True)

    def stats(self) -> dict:
        """Point-in-time copy of every counter."""
        with self._lock:
            bucket = self._buckets.get(_hour_key(self._clock()), _HourBucket())
            received = self._total_received
            return {
                "total_received": received,
                "total_processed": self._total_processed,
                "total_skipped": self._total_skipped,
                "last_hour_received": bucket.received,
                "last_hour_processed": bucket.processed,
                "last_hour_skipped": bucket.skipped,
                "last_hour_admitted": bucket.admitted,
                # Without the throttle every received image would have been uploaded
                "projected_if_no_throttle": received,
                "effective_ratio": (self._total_processed / received) if received else 0.0,
                "images_seen": self._images_seen,
                "last_event_at": self._last_event_at,
                "hourly_stats": [
                    {"hour": hour, "received": b.received, "processed": b.processed, "skipped": b.skipped}
                    for hour, b in sorted(self._buckets.items())
                ][-BUCKET_RETENTION_HOURS:],
            }

    def reset(self) -> None:
        with self._lock:
            self._reset_counters()
        logger.info("[THROTTLE] Statistics reset")

    def update_config(self, enabled: Optional[bool] = None, process_ratio: Optional[float] = None,
                      max_per_hour: Optional[int] = None, sampling_method: Optional[str] = None) -> ThrottleConfig:
        """Apply a partial runtime update. Raises ValueError for an unknown sampling method."""
        if sampling_method is not None and sampling_method not in SAMPLING_METHODS:
            raise ValueError(f"samplingMethod must be one of {', '.join(SAMPLING_METHODS)}")

        with self._lock:
            config = replace(self._config)
            if enabled is not None:
                config.enabled = bool(enabled)
            if process_ratio is not None:
                config.process_ratio = _clamp_ratio(process_ratio)
            if max_per_hour is not None:
                config.max_per_hour = max(1, math.floor(max_per_hour))
            if sampling_method is not None:
                config.sampling_method = sampling_method
            config.last_updated = self._clock().isoformat()
            config.description = describe(config)
            self._config = config

        logger.info(f"[THROTTLE] Configuration updated: {asdict(config)}")
        return replace(config)


throttle = AdmissionController(ThrottleConfig.from_settings(settings))
