"""Local-directory blob store served through the API gateway."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import time
from pathlib import Path
from typing import BinaryIO, Callable
from urllib.parse import quote

from libs.core.application.contracts import SignedUpload
from libs.core.application.errors import NotFound, UpstreamStoreError, ValidationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalBlobStore:
    """Stores objects under a root directory with HMAC-signed upload tokens."""

    def __init__(
        self,
        root_dir: str | Path,
        base_url: str,
        secret: str,
        token_ttl_sec: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._root = Path(root_dir).resolve()
        self._base_url = base_url.rstrip("/")
        self._secret = secret.encode("utf-8")
        self._token_ttl_sec = token_ttl_sec
        self._clock = clock

    def create_signed_upload(self, path: str) -> SignedUpload:
        self._resolve(path)
        expires = int(self._clock()) + self._token_ttl_sec
        token = f"{expires}.{self._sign(path, expires)}"
        return SignedUpload(
            upload_url=f"{self._base_url}/storage/upload/{quote(path)}?token={token}",
            token=token,
            path=path,
        )

    def verify_token(self, path: str, token: str) -> bool:
        expires_raw, _, signature = token.partition(".")
        try:
            expires = int(expires_raw)
        except ValueError:
            return False
        if expires < self._clock():
            return False
        return hmac.compare_digest(signature, self._sign(path, expires))

    def open_upload(self, path: str) -> PartialUpload:
        return PartialUpload(path, self._resolve(path))

    def write(self, path: str, stream: BinaryIO) -> int:
        upload = self.open_upload(path)
        try:
            while chunk := stream.read(CHUNK_SIZE):
                upload.append(chunk)
        except OSError as error:
            upload.discard()
            raise UpstreamStoreError("Failed to store uploaded file") from error
        return upload.commit()

    def open_path(self, path: str) -> Path:
        target = self._resolve(path)
        if not target.is_file():
            raise NotFound("Stored object not found")
        return target

    def public_url(self, path: str) -> str:
        return f"{self._base_url}/storage/object/{quote(path)}"

    def delete(self, path: str) -> None:
        try:
            self._resolve(path).unlink(missing_ok=True)
        except OSError as error:
            logger.error(f"Failed to delete {path}: {error}")
            raise UpstreamStoreError("Failed to delete stored file") from error

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root) or target == self._root:
            raise ValidationError(f"Invalid storage path: {path}")
        return target

    def _sign(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()


class PartialUpload:
    """Incoming object written chunk by chunk to a `.part` file, then moved in place."""

    def __init__(self, path: str, target: Path) -> None:
        self.path = path
        self.written = 0
        self._target = target
        self._partial = target.with_name(f"{target.name}.part")
        self._buffer: BinaryIO | None = None

    def append(self, chunk: bytes) -> None:
        try:
            self._open().write(chunk)
        except OSError as error:
            self._fail(error)
        self.written += len(chunk)

    def commit(self) -> int:
        try:
            self._open().close()
            os.replace(self._partial, self._target)
        except OSError as error:
            self._fail(error)
        logger.info(f"Stored {self.written} bytes at {self._target}")
        return self.written

    def discard(self) -> None:
        if self._buffer is not None:
            self._buffer.close()
        self._partial.unlink(missing_ok=True)

    def _open(self) -> BinaryIO:
        if self._buffer is None:
            self._target.parent.mkdir(parents=True, exist_ok=True)
            self._buffer = self._partial.open("wb")
        return self._buffer

    def _fail(self, error: OSError) -> None:
        logger.error(f"Failed to store {self.path}: {error}")
        self.discard()
        raise UpstreamStoreError("Failed to store uploaded file") from error
