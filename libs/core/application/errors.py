"""Error taxonomy shared by the lifecycle engine, stores and upload client."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from libs.client.upload_coordinator import UploadProgress


class VideoReviewError(Exception):
    """Base class for application errors."""


class ValidationError(VideoReviewError):
    """Malformed request or input."""


class PreconditionFailed(VideoReviewError):
    """Operation attempted before its preconditions hold."""


class BatchStateConflict(PreconditionFailed):
    """Batch is no longer in the status the operation expects."""


class NotFound(VideoReviewError):
    """Requested entity does not exist."""


class UpstreamStoreError(VideoReviewError):
    """Relational or blob store call failed."""


class UploadTransportError(VideoReviewError):
    """Byte transfer of a single file failed."""


class AnalysisError(VideoReviewError):
    """Analysis provider could not process a video."""


class TaskCancelled(VideoReviewError):
    """Background task was cancelled while waiting."""


class BatchUploadIncomplete(VideoReviewError):
    """At least one file of a batch did not finish uploading."""

    def __init__(self, batch_id: str, progress: list[UploadProgress]) -> None:
        super().__init__("Some files failed to upload")
        self.batch_id = batch_id
        self.progress = progress


class BatchCommitFailed(VideoReviewError):
    """Every file uploaded but the batch could not be committed."""

    def __init__(self, batch_id: str, reason: str) -> None:
        super().__init__("Upload completed but failed to start analysis")
        self.batch_id = batch_id
        self.reason = reason
