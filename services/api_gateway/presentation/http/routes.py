import logging
import mimetypes
from typing import NoReturn

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from libs.core.application.batch_service import UploadFileSpec
from libs.core.application.errors import (
    BatchStateConflict,
    NotFound,
    PreconditionFailed,
    UpstreamStoreError,
    ValidationError,
    VideoReviewError,
)
from libs.core.domain.entities import Batch, Event, Video
from libs.infra.storage.local_blob_store import LocalBlobStore
from services.api_gateway.dependencies import (
    get_analysis_runner,
    get_batch_service,
    get_blob_store,
    get_watched_folder_scanner,
)
from services.api_gateway.infrastructure.analysis_runner import AnalysisTaskState
from services.api_gateway.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


class UploadFileRequest(BaseModel):
    filename: str
    size: int = Field(ge=0)


class UploadRequest(BaseModel):
    files: list[UploadFileRequest]


class VideoStatusRequest(BaseModel):
    upload_status: str | None = None
    analysis_status: str | None = None


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
def ready() -> dict[str, str]:
    return {"status": "ready"}


@router.get("/version")
def version() -> dict[str, str]:
    return {"version": "0.1.0"}


@router.post("/upload/request")
def request_upload(payload: UploadRequest) -> dict[str, object]:
    service = get_batch_service()
    try:
        ticket = service.request_upload(
            [UploadFileSpec(filename=item.filename, size=item.size) for item in payload.files]
        )
    except VideoReviewError as error:
        _raise_http(error)

    return {
        "batchId": ticket.batch.batch_id,
        "videos": [
            {"id": video.video_id, "filename": video.filename, "size": video.file_size}
            for video in ticket.videos
        ],
        "signedUrls": [
            {
                "videoId": video.video_id,
                "uploadUrl": upload.upload_url,
                "token": upload.token,
                "path": upload.path,
            }
            for video, upload in zip(ticket.videos, ticket.uploads)
        ],
    }


@router.patch("/videos/{video_id}/status")
def update_video_status(video_id: str, payload: VideoStatusRequest) -> dict[str, bool]:
    service = get_batch_service()
    try:
        service.update_video_status(
            video_id,
            upload_status=payload.upload_status,
            analysis_status=payload.analysis_status,
        )
    except VideoReviewError as error:
        _raise_http(error)
    return {"success": True}


@router.post("/batches/{batch_id}/commit")
def commit_batch(batch_id: str) -> dict[str, object]:
    service = get_batch_service()
    try:
        service.commit_batch(batch_id)
    except VideoReviewError as error:
        _raise_http(error)
    return {"success": True, "message": "Batch committed, analysis started"}


@router.get("/batches/{batch_id}/summary")
def get_batch_summary(batch_id: str) -> dict[str, object]:
    service = get_batch_service()
    try:
        summary = service.get_batch_summary(batch_id)
    except VideoReviewError as error:
        _raise_http(error)

    payload: dict[str, object] = {
        "batch": _batch_to_dict(summary.batch),
        "videos": [_video_to_dict(video) for video in summary.videos],
        "total_events": summary.total_events,
        "event_breakdown": summary.event_breakdown,
    }
    if summary.process_folder_url:
        payload["process_folder_url"] = summary.process_folder_url
    return payload


@router.delete("/batches/{batch_id}")
def delete_batch(batch_id: str, delete_originals: bool = False) -> dict[str, bool]:
    service = get_batch_service()
    try:
        service.delete_batch(batch_id, delete_originals=delete_originals)
    except VideoReviewError as error:
        _raise_http(error)
    return {"success": True}


@router.get("/batches/{batch_id}/analysis-task")
def get_analysis_task(batch_id: str) -> dict[str, object]:
    service = get_batch_service()
    try:
        service.get_batch(batch_id)
    except VideoReviewError as error:
        _raise_http(error)
    return _task_to_dict(batch_id, get_analysis_runner().get_state(batch_id))


@router.post("/batches/{batch_id}/analysis-task/cancel")
def cancel_analysis_task(batch_id: str) -> dict[str, object]:
    service = get_batch_service()
    try:
        service.get_batch(batch_id)
    except VideoReviewError as error:
        _raise_http(error)

    state = get_analysis_runner().cancel(batch_id)
    if state is None:
        raise HTTPException(status_code=404, detail="No analysis task for batch")
    return _task_to_dict(batch_id, state)


@router.get("/videos/{video_id}/events")
def list_video_events(video_id: str, at: float | None = None) -> list[dict[str, object]]:
    service = get_batch_service()
    try:
        events = service.list_video_events(video_id, at=at)
    except VideoReviewError as error:
        _raise_http(error)
    return [_event_to_dict(event) for event in events]


@router.get("/videos/{video_id}/playback")
def get_video_playback(video_id: str) -> dict[str, str]:
    service = get_batch_service()
    try:
        url = service.get_playback_url(video_id)
    except VideoReviewError as error:
        _raise_http(error)
    return {"videoId": video_id, "url": url}


@router.get("/download/process-folder/{batch_id}")
def download_process_folder(batch_id: str) -> dict[str, object]:
    service = get_batch_service()
    try:
        manifest = service.get_process_folder_manifest(batch_id)
    except VideoReviewError as error:
        _raise_http(error)

    return {
        "process_folder": manifest.batch.process_folder,
        "batch": _batch_to_dict(manifest.batch),
        "videos": [
            {
                **_video_to_dict(video),
                "events": [
                    _event_to_dict(event)
                    for event in manifest.events_by_video.get(video.video_id, [])
                ],
            }
            for video in manifest.videos
        ],
    }


@router.post("/scan-watched-folder")
def scan_watched_folder(
    x_cron_token: str | None = Header(default=None),
) -> dict[str, object]:
    expected = get_settings().cron_token
    if not expected or x_cron_token != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")

    found = get_watched_folder_scanner().scan()
    return {
        "success": True,
        "message": f"Watched folder scan finished, {len(found)} new files",
    }


@router.put("/storage/upload/{path:path}")
async def upload_blob(path: str, token: str, request: Request) -> dict[str, object]:
    store = _local_blob_store()
    if not store.verify_token(path, token):
        raise HTTPException(status_code=403, detail="Invalid or expired upload token")

    try:
        written = await _stream_to_store(store, path, request)
    except VideoReviewError as error:
        _raise_http(error)
    return {"path": path, "size": written}


@router.get("/storage/object/{path:path}")
def download_blob(path: str) -> FileResponse:
    store = _local_blob_store()
    try:
        file_path = store.open_path(path)
    except VideoReviewError as error:
        _raise_http(error)

    media_type, _ = mimetypes.guess_type(file_path.name)
    return FileResponse(
        path=file_path,
        media_type=media_type or "application/octet-stream",
        filename=file_path.name,
    )


async def _stream_to_store(store: LocalBlobStore, path: str, request: Request) -> int:
    upload = await run_in_threadpool(store.open_upload, path)
    try:
        async for chunk in request.stream():
            if chunk:
                await run_in_threadpool(upload.append, chunk)
    except Exception:
        await run_in_threadpool(upload.discard)
        raise
    return await run_in_threadpool(upload.commit)


def _local_blob_store() -> LocalBlobStore:
    store = get_blob_store()
    if not isinstance(store, LocalBlobStore):
        raise HTTPException(status_code=404, detail="Local storage is not enabled")
    return store


def _raise_http(error: VideoReviewError) -> NoReturn:
    if isinstance(error, BatchStateConflict):
        raise HTTPException(status_code=409, detail=str(error)) from error
    if isinstance(error, (ValidationError, PreconditionFailed)):
        raise HTTPException(status_code=400, detail=str(error)) from error
    if isinstance(error, NotFound):
        raise HTTPException(status_code=404, detail=str(error)) from error
    if isinstance(error, UpstreamStoreError):
        logger.error(f"Store failure: {error}")
    else:
        logger.error(f"Unhandled application error: {type(error).__name__}: {error}")
    raise HTTPException(status_code=500, detail="Internal server error") from error


def _batch_to_dict(batch: Batch) -> dict[str, object]:
    return {
        "id": batch.batch_id,
        "status": batch.status,
        "video_count": batch.video_count,
        "total_duration_minutes": batch.total_duration_minutes,
        "total_events": batch.total_events,
        "process_folder": batch.process_folder,
        "created_at": batch.created_at,
        "completed_at": batch.completed_at,
    }


def _video_to_dict(video: Video) -> dict[str, object]:
    return {
        "id": video.video_id,
        "batch_id": video.batch_id,
        "filename": video.filename,
        "file_size": video.file_size,
        "duration_seconds": video.duration_seconds,
        "upload_status": video.upload_status,
        "analysis_status": video.analysis_status,
        "event_count": video.event_count,
        "storage_path": video.storage_path,
        "created_at": video.created_at,
        "updated_at": video.updated_at,
    }


def _event_to_dict(event: Event) -> dict[str, object]:
    bbox = event.bbox
    return {
        "id": event.event_id,
        "video_id": event.video_id,
        "start_time": event.start_time,
        "end_time": event.end_time,
        "event_type": event.event_type,
        "confidence": event.confidence,
        "bbox": None
        if bbox is None
        else {"x": bbox.x, "y": bbox.y, "width": bbox.width, "height": bbox.height},
        "metadata": event.metadata,
        "created_at": event.created_at,
    }


def _task_to_dict(batch_id: str, state: AnalysisTaskState | None) -> dict[str, object]:
    if state is None:
        return {
            "batch_id": batch_id,
            "state": "none",
            "scheduled_at": None,
            "started_at": None,
            "settled_at": None,
            "error": None,
        }
    return {
        "batch_id": batch_id,
        "state": state.state,
        "scheduled_at": state.scheduled_at,
        "started_at": state.started_at,
        "settled_at": state.settled_at,
        "error": state.error,
    }
