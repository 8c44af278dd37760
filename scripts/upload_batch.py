from __future__ import annotations

import argparse
import time
from pathlib import Path

from libs.client.upload_coordinator import (
    ReviewApiClient,
    UploadCoordinator,
    UploadProgress,
    select_video_files,
)
from libs.core.application.errors import (
    BatchCommitFailed,
    BatchUploadIncomplete,
    UploadTransportError,
)

SETTLED_STATUSES = {"completed", "error"}


def collect_paths(inputs: list[str]) -> list[Path]:
    paths: list[Path] = []
    for item in inputs:
        path = Path(item)
        if path.is_dir():
            paths.extend(sorted(child for child in path.iterdir() if child.is_file()))
        elif path.exists():
            paths.append(path)
        else:
            raise SystemExit(f"path not found: {path}")
    return paths


def print_progress(item: UploadProgress) -> None:
    suffix = f" ({item.error})" if item.error else ""
    print(f"[UPLOAD] {item.filename}: {item.status} {item.progress}%{suffix}")


def wait_for_summary(client: ReviewApiClient, batch_id: str, interval: float) -> dict:
    while True:
        summary = client.get_summary(batch_id)
        status = summary["batch"]["status"]
        print(f"[BATCH] {batch_id} status={status}")
        if status in SETTLED_STATUSES:
            return summary
        time.sleep(interval)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "paths",
        nargs="+",
        help="Video files or directories with video files",
    )
    parser.add_argument("--api-base", default="http://127.0.0.1:8000")
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Optional cap on parallel uploads (default: one per file)",
    )
    parser.add_argument(
        "--wait",
        action="store_true",
        help="Poll the batch summary until analysis settles",
    )
    parser.add_argument("--poll-interval", type=float, default=2.0)
    args = parser.parse_args()

    files = select_video_files(collect_paths(args.paths))
    if not files:
        raise SystemExit("no video files found")

    client = ReviewApiClient(args.api_base)
    coordinator = UploadCoordinator(
        client,
        max_workers=args.workers,
        observer=print_progress,
    )
    print(f"[INFO] files={len(files)}")

    try:
        batch_id = coordinator.run(files)
    except BatchUploadIncomplete as error:
        for item in error.progress:
            print_progress(item)
        raise SystemExit(f"{error} (batch {error.batch_id})") from error
    except BatchCommitFailed as error:
        raise SystemExit(f"{error}: {error.reason}") from error
    except UploadTransportError as error:
        raise SystemExit(f"upload request failed: {error}") from error

    print(f"[DONE] batch_id={batch_id}")
    if not args.wait:
        print(f"Check summary: {args.api_base}/batches/{batch_id}/summary")
        return

    summary = wait_for_summary(client, batch_id, args.poll_interval)
    print(
        f"[SUMMARY] events={summary['total_events']} "
        f"breakdown={summary['event_breakdown']}"
    )
    if summary.get("process_folder_url"):
        print(f"Process folder: {args.api_base}{summary['process_folder_url']}")


if __name__ == "__main__":
    main()
