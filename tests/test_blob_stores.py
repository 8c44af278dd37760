"""Local and S3 blob store tests."""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from libs.core.application.errors import NotFound, UpstreamStoreError, ValidationError
from libs.infra.storage.local_blob_store import LocalBlobStore
from libs.infra.storage.s3_blob_store import S3BlobStore

PATH = "videos/batch-1/video-1-clip.mp4"


class FixedClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _local_store(tmp_path, clock: FixedClock | None = None) -> LocalBlobStore:
    return LocalBlobStore(
        root_dir=tmp_path,
        base_url="http://gateway.test/",
        secret="secret",
        token_ttl_sec=60,
        clock=clock or FixedClock(1_000.0),
    )


def test_signed_upload_token_verifies_for_its_path_only(tmp_path) -> None:
    store = _local_store(tmp_path)

    upload = store.create_signed_upload(PATH)

    assert upload.path == PATH
    assert upload.upload_url == (
        f"http://gateway.test/storage/upload/{PATH}?token={upload.token}"
    )
    assert store.verify_token(PATH, upload.token) is True
    assert store.verify_token("videos/batch-1/other.mp4", upload.token) is False
    assert store.verify_token(PATH, "garbage") is False


def test_signed_upload_token_expires(tmp_path) -> None:
    clock = FixedClock(1_000.0)
    store = _local_store(tmp_path, clock)
    upload = store.create_signed_upload(PATH)

    clock.now = 1_061.0

    assert store.verify_token(PATH, upload.token) is False


def test_write_open_and_delete(tmp_path) -> None:
    store = _local_store(tmp_path)

    written = store.write(PATH, io.BytesIO(b"x" * 10))
    stored = store.open_path(PATH)

    assert written == 10
    assert stored.read_bytes() == b"x" * 10
    assert not stored.with_name(f"{stored.name}.part").exists()
    assert store.public_url(PATH) == f"http://gateway.test/storage/object/{PATH}"

    store.delete(PATH)

    with pytest.raises(NotFound):
        store.open_path(PATH)


def test_paths_outside_root_are_rejected(tmp_path) -> None:
    store = _local_store(tmp_path / "blobs")

    with pytest.raises(ValidationError):
        store.create_signed_upload("../escape.mp4")
    with pytest.raises(ValidationError):
        store.write("../../escape.mp4", io.BytesIO(b"data"))


def _s3_store(client: MagicMock) -> S3BlobStore:
    return S3BlobStore(
        endpoint_url="https://s3.test/",
        bucket="videos",
        access_key_id="key",
        secret_access_key="secret",
        client=client,
    )


def test_s3_signed_upload_uses_presigned_put() -> None:
    client = MagicMock()
    client.generate_presigned_url.return_value = (
        f"https://s3.test/videos/{PATH}?X-Amz-Expires=3600&X-Amz-Signature=abc123"
    )
    store = _s3_store(client)

    upload = store.create_signed_upload(PATH)

    client.generate_presigned_url.assert_called_once_with(
        "put_object",
        Params={"Bucket": "videos", "Key": PATH},
        ExpiresIn=3600,
    )
    assert upload.token == "abc123"
    assert upload.upload_url.startswith("https://s3.test/videos/")
    assert store.public_url(PATH) == f"https://s3.test/videos/{PATH}"


def test_s3_errors_become_store_errors() -> None:
    client = MagicMock()
    error = ClientError({"Error": {"Code": "500", "Message": "boom"}}, "DeleteObject")
    client.delete_object.side_effect = error
    client.generate_presigned_url.side_effect = error
    store = _s3_store(client)

    with pytest.raises(UpstreamStoreError):
        store.delete(PATH)
    with pytest.raises(UpstreamStoreError):
        store.create_signed_upload(PATH)


def test_partial_upload_appends_chunks_then_moves_in_place(tmp_path) -> None:
    store = _local_store(tmp_path)
    upload = store.open_upload(PATH)

    upload.append(b"abc")
    upload.append(b"defg")

    assert not (tmp_path / PATH).exists()
    assert upload.commit() == 7
    assert store.open_path(PATH).read_bytes() == b"abcdefg"
    assert not (tmp_path / f"{PATH}.part").exists()


def test_discarded_partial_upload_leaves_nothing(tmp_path) -> None:
    store = _local_store(tmp_path)
    upload = store.open_upload(PATH)
    upload.append(b"half a video")

    upload.discard()

    assert not (tmp_path / f"{PATH}.part").exists()
    with pytest.raises(NotFound):
        store.open_path(PATH)
