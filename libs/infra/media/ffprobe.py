"""Media duration probing with ffprobe."""

from __future__ import annotations

import json
import logging
import subprocess

from libs.core.application.contracts import BlobStore
from libs.core.application.errors import AnalysisError
from libs.core.domain.entities import Video

logger = logging.getLogger(__name__)


class FfprobeDurationProbe:
    """Reads a video's container duration from its stored media."""

    def __init__(
        self,
        blob_store: BlobStore,
        ffprobe_path: str = "ffprobe",
        timeout_sec: float = 60.0,
    ) -> None:
        self._blobs = blob_store
        self._ffprobe_path = ffprobe_path
        self._timeout_sec = timeout_sec

    def __call__(self, video: Video) -> float:
        if not video.storage_path:
            raise AnalysisError(f"Video {video.video_id} has no stored media")

        source = self._blobs.public_url(video.storage_path)
        cmd = [
            self._ffprobe_path,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "json",
            source,
        ]
        try:
            out = subprocess.check_output(
                cmd,
                stderr=subprocess.STDOUT,
                timeout=self._timeout_sec,
            )
        except (OSError, subprocess.SubprocessError) as error:
            raise AnalysisError(f"ffprobe failed for {source}: {error}") from error

        return parse_ffprobe_duration(out.decode("utf-8", errors="ignore"))


def parse_ffprobe_duration(raw: str) -> float:
    try:
        payload = json.loads(raw or "{}")
        duration = float((payload.get("format") or {})["duration"])
    except (ValueError, KeyError, TypeError, AttributeError) as error:
        raise AnalysisError("ffprobe returned no duration") from error
    if duration <= 0:
        raise AnalysisError(f"ffprobe returned invalid duration {duration}")
    logger.debug(f"Probed duration {duration:.2f}s")
    return duration
