"""Client-side batch upload: select, request targets, upload in parallel, commit."""

from __future__ import annotations

import http.client
import json
import logging
import mimetypes
import threading
from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Protocol
from urllib import error as urlerror
from urllib import request

from libs.core.application.errors import (
    BatchCommitFailed,
    BatchUploadIncomplete,
    UploadTransportError,
    ValidationError,
    VideoReviewError,
)

logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = {".mp4", ".avi", ".mov", ".mkv", ".webm"}
CHUNK_SIZE = 256 * 1024

ProgressCallback = Callable[[int], None]
Uploader = Callable[[str, Path, ProgressCallback], None]


@dataclass
class UploadProgress:
    """Upload state of one file in a batch."""

    file_id: str
    filename: str
    status: str = "queued"
    progress: int = 0
    error: str | None = None


class BatchApi(Protocol):
    def request_upload(self, files: list[Path]) -> dict[str, Any]:
        ...

    def mark_uploaded(self, video_id: str) -> None:
        ...

    def commit_batch(self, batch_id: str) -> None:
        ...


def is_video_file(path: Path) -> bool:
    if path.suffix.lower() in ACCEPTED_EXTENSIONS:
        return True
    media_type, _ = mimetypes.guess_type(path.name)
    return media_type is not None and media_type.startswith("video/")


def select_video_files(paths: Iterable[str | Path]) -> list[Path]:
    return [Path(item) for item in paths if is_video_file(Path(item))]


class ReviewApiClient:
    """JSON client for the review gateway."""

    def __init__(self, api_base: str, timeout: float = 30.0) -> None:
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    def request_upload(self, files: list[Path]) -> dict[str, Any]:
        payload = {
            "files": [{"filename": path.name, "size": path.stat().st_size} for path in files]
        }
        return self._request_json("POST", "/upload/request", payload)

    def mark_uploaded(self, video_id: str) -> None:
        self._request_json(
            "PATCH", f"/videos/{video_id}/status", {"upload_status": "completed"}
        )

    def commit_batch(self, batch_id: str) -> None:
        self._request_json("POST", f"/batches/{batch_id}/commit", {})

    def get_summary(self, batch_id: str) -> dict[str, Any]:
        return self._request_json("GET", f"/batches/{batch_id}/summary")

    def _request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = request.Request(
            url=f"{self._api_base}{path}",
            data=data,
            headers={"Content-Type": "application/json"},
            method=method,
        )
        try:
            with request.urlopen(req, timeout=self._timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urlerror.HTTPError as http_error:
            raise UploadTransportError(_error_message(http_error)) from http_error
        except (urlerror.URLError, http.client.HTTPException, OSError) as transport_error:
            raise UploadTransportError(str(transport_error)) from transport_error


def put_file(url: str, path: Path, on_progress: ProgressCallback, timeout: float = 300.0) -> None:
    """PUT the file bytes to a signed target, reporting whole-percent progress."""
    total = path.stat().st_size
    media_type, _ = mimetypes.guess_type(path.name)

    def chunks() -> Iterator[bytes]:
        sent = 0
        on_progress(0)
        with path.open("rb") as handle:
            while True:
                chunk = handle.read(CHUNK_SIZE)
                if not chunk:
                    break
                sent += len(chunk)
                on_progress(round(sent / total * 100) if total else 100)
                yield chunk

    req = request.Request(
        url=url,
        data=chunks(),
        headers={
            "Content-Type": media_type or "application/octet-stream",
            "Content-Length": str(total),
        },
        method="PUT",
    )
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            resp.read()
    except urlerror.HTTPError as http_error:
        raise UploadTransportError(
            f"Upload failed with status {http_error.code}"
        ) from http_error
    except (urlerror.URLError, http.client.HTTPException, OSError) as transport_error:
        raise UploadTransportError(str(transport_error)) from transport_error
    on_progress(100)


class UploadCoordinator:
    """Uploads one batch of files concurrently and commits it when all succeed."""

    def __init__(
        self,
        api: BatchApi,
        uploader: Uploader = put_file,
        max_workers: int | None = None,
        observer: Callable[[UploadProgress], None] | None = None,
    ) -> None:
        self._api = api
        self._uploader = uploader
        self._max_workers = max_workers
        self._observer = observer
        self._lock = threading.Lock()
        self._progress: dict[str, UploadProgress] = {}

    def progress(self) -> list[UploadProgress]:
        with self._lock:
            return [replace(item) for item in self._progress.values()]

    def run(self, paths: Iterable[str | Path]) -> str:
        files = select_video_files(paths)
        if not files:
            raise ValidationError("No video files selected")

        ticket = self._api.request_upload(files)
        batch_id = ticket["batchId"]
        targets = ticket["signedUrls"]
        if len(targets) != len(files):
            raise ValidationError("Upload targets do not match the selected files")

        with self._lock:
            self._progress = {
                target["videoId"]: UploadProgress(file_id=target["videoId"], filename=path.name)
                for path, target in zip(files, targets)
            }
        logger.info(f"Batch {batch_id}: uploading {len(files)} files")

        workers = min(self._max_workers or len(files), len(files))
        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            futures = [
                pool.submit(self._upload_one, path, target)
                for path, target in zip(files, targets)
            ]
            wait(futures, return_when=ALL_COMPLETED)

        snapshot = self.progress()
        failed = [item for item in snapshot if item.status != "completed"]
        if failed:
            logger.warning(f"Batch {batch_id}: {len(failed)} files failed to upload")
            raise BatchUploadIncomplete(batch_id, snapshot)

        try:
            self._api.commit_batch(batch_id)
        except VideoReviewError as error:
            logger.error(f"Batch {batch_id}: commit failed: {error}")
            raise BatchCommitFailed(batch_id, str(error)) from error

        logger.info(f"Batch {batch_id} committed")
        return batch_id

    def _upload_one(self, path: Path, target: dict[str, Any]) -> None:
        video_id = target["videoId"]
        self._update(video_id, status="uploading", progress=0)
        try:
            self._uploader(
                target["uploadUrl"],
                path,
                lambda percent: self._update(video_id, progress=percent),
            )
            self._api.mark_uploaded(video_id)
        except (VideoReviewError, OSError) as error:
            logger.warning(f"Upload of {path.name} failed: {error}")
            self._update(video_id, status="error", error=str(error))
            return
        except Exception as error:
            logger.exception(f"Upload of {path.name} failed unexpectedly")
            self._update(
                video_id, status="error", error=f"{type(error).__name__}: {error}"
            )
            return
        self._update(video_id, status="completed", progress=100)

    def _update(self, video_id: str, **changes: Any) -> None:
        with self._lock:
            current = self._progress.get(video_id)
            if current is None:
                return
            updated = replace(current, **changes)
            self._progress[video_id] = updated
        if self._observer is not None:
            self._observer(replace(updated))


def _error_message(http_error: urlerror.HTTPError) -> str:
    try:
        body = json.loads(http_error.read().decode("utf-8"))
    except (ValueError, OSError):
        return f"Request failed with status {http_error.code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"Request failed with status {http_error.code}"
