"""S3-compatible blob store using presigned PUT URLs."""

import logging
from urllib.parse import parse_qs, urlparse

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from libs.core.application.contracts import SignedUpload
from libs.core.application.errors import UpstreamStoreError

logger = logging.getLogger(__name__)

SIGNATURE_PARAM = "X-Amz-Signature"


class S3BlobStore:
    """Blob store wrapper around a boto3 S3 client."""

    def __init__(
        self,
        endpoint_url: str,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        region: str = "us-east-1",
        upload_expiration_sec: int = 3600,
        client=None,
    ) -> None:
        self.bucket = bucket
        self._endpoint_url = endpoint_url.rstrip("/")
        self._upload_expiration_sec = upload_expiration_sec
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=region,
            config=Config(s3={"addressing_style": "path"}, signature_version="s3v4"),
        )
        logger.info(f"S3 blob store initialized for bucket: {self.bucket}")

    def create_signed_upload(self, path: str) -> SignedUpload:
        """Generate a presigned PUT URL for a direct client upload.

        The token is the request signature carried by the URL, so clients that
        expect a separate token field still receive one.
        """
        try:
            url = self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": path},
                ExpiresIn=self._upload_expiration_sec,
            )
        except (BotoCoreError, ClientError) as error:
            logger.error(f"Failed to generate presigned URL for {path}: {error}")
            raise UpstreamStoreError("Failed to create signed upload URL") from error

        token = parse_qs(urlparse(url).query).get(SIGNATURE_PARAM, [""])[0]
        logger.debug(f"Generated presigned upload URL for {path}")
        return SignedUpload(upload_url=url, token=token, path=path)

    def public_url(self, path: str) -> str:
        return f"{self._endpoint_url}/{self.bucket}/{path}"

    def delete(self, path: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=path)
            logger.info(f"Deleted s3://{self.bucket}/{path}")
        except (BotoCoreError, ClientError) as error:
            logger.error(f"Failed to delete {path}: {error}")
            raise UpstreamStoreError("Failed to delete stored file") from error
