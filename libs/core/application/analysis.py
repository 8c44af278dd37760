"""Simulated analysis provider used until a real detector backend is wired in."""

from __future__ import annotations

import random
from typing import Callable

from libs.core.application.contracts import DetectedEvent
from libs.core.domain.entities import BoundingBox, Video

SIMULATED_EVENT_TYPES = ("uap", "satellite", "airplane", "meteor", "star", "cloud")
MIN_EVENTS_PER_VIDEO = 1
MAX_EVENTS_PER_VIDEO = 10
MIN_DURATION_SEC = 60
MAX_DURATION_SEC = 360
MIN_EVENT_SPAN_SEC = 2.0
EVENT_SPAN_RANGE_SEC = 10.0
MIN_CONFIDENCE = 0.6
CONFIDENCE_RANGE = 0.4
FALLBACK_DURATION_SEC = 120.0


class SimulatedAnalysisProvider:
    """Randomized stand-in for the detection backend."""

    def __init__(
        self,
        rng: random.Random | None = None,
        duration_probe: Callable[[Video], float] | None = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._duration_probe = duration_probe

    def probe_duration(self, video: Video) -> float:
        if self._duration_probe is not None:
            return self._duration_probe(video)
        return float(self._rng.randrange(MIN_DURATION_SEC, MAX_DURATION_SEC))

    def analyze(self, video: Video) -> list[DetectedEvent]:
        duration = video.duration_seconds or FALLBACK_DURATION_SEC
        count = self._rng.randint(MIN_EVENTS_PER_VIDEO, MAX_EVENTS_PER_VIDEO)
        return [self._build_event(duration) for _ in range(count)]

    def _build_event(self, duration: float) -> DetectedEvent:
        start_time = self._rng.random() * duration
        span = MIN_EVENT_SPAN_SEC + self._rng.random() * EVENT_SPAN_RANGE_SEC
        return DetectedEvent(
            start_time=start_time,
            end_time=min(start_time + span, duration),
            event_type=self._rng.choice(SIMULATED_EVENT_TYPES),
            confidence=MIN_CONFIDENCE + self._rng.random() * CONFIDENCE_RANGE,
            bbox=self._build_bbox(),
            metadata={"source": "simulated"},
        )

    def _build_bbox(self) -> BoundingBox:
        width = 5.0 + self._rng.random() * 10.0
        height = 5.0 + self._rng.random() * 10.0
        return BoundingBox(
            x=round(self._rng.random() * (100.0 - width), 2),
            y=round(self._rng.random() * (100.0 - height), 2),
            width=round(width, 2),
            height=round(height, 2),
        )
