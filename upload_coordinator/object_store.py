"""Object store adapter.

Wraps the multipart upload primitives the coordinator needs:
- Create a multipart upload
- Upload a part, or presign a direct-upload URL for it
- List the parts the store holds
- Complete or abort the upload

S3ObjectStore implements them on a boto3 client, built from ServiceConfig
by S3ObjectStore.from_config. Every botocore failure
is re-raised as UpstreamError with the original chained.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from upload_coordinator.errors import UpstreamError
from upload_coordinator.models import MultipartHandle, ServiceConfig

logger = logging.getLogger(__name__)

# Error codes that mean the bucket is already there
BUCKET_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}

# Seconds; a read covers one part of up to MAX_CHUNK_SIZE bytes
S3_CONNECT_TIMEOUT = 10
S3_READ_TIMEOUT = 120


class ObjectStore(ABC):
    """Multipart capabilities of an object store."""

    @abstractmethod
    def create_multipart(self, key: str, content_type: Optional[str]) -> MultipartHandle:
        """Start a multipart upload and return its handle."""
        pass

    @abstractmethod
    def upload_part(self, handle: MultipartHandle, part_number: int, body: bytes) -> str:
        """Store one part and return its ETag."""
        pass

    @abstractmethod
    def presign_part_url(
        self, handle: MultipartHandle, part_number: int, ttl_seconds: int
    ) -> str:
        """Return a time-boxed PUT URL for one part."""
        pass

    @abstractmethod
    def list_parts(self, handle: MultipartHandle) -> list[dict[str, Any]]:
        """Return the stored parts as ``{"partNumber", "etag", "size"}`` dicts."""
        pass

    @abstractmethod
    def complete_multipart(
        self, handle: MultipartHandle, ordered_parts: list[dict[str, Any]]
    ) -> dict[str, Optional[str]]:
        """Assemble the parts and return ``{"location", "etag"}``."""
        pass

    @abstractmethod
    def abort_multipart(self, handle: MultipartHandle) -> None:
        """Abort the upload and release its stored parts."""
        pass


class S3ObjectStore(ObjectStore):
    """ObjectStore backed by a boto3 S3 client.

    Args:
        s3_client: boto3 S3 client
        bucket_name: Bucket that receives every upload
        region_name: Region used when the bucket has to be created
    """

    def __init__(self, s3_client: Any, bucket_name: str, region_name: str = "us-east-1"):
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.region_name = region_name

    @classmethod
    def from_config(cls, config: ServiceConfig) -> "S3ObjectStore":
        """Build the adapter and its boto3 client from service configuration.

        Credentials left unset fall through to boto3's default chain.
        Presigned part URLs need s3v4 signing. Calls are made exactly once
        because a failed part is retried by the uploading client, which
        holds the bytes.
        """
        boto_config = Config(
            signature_version="s3v4",
            s3={"addressing_style": config.addressing_style},
            retries={"total_max_attempts": 1},
            connect_timeout=S3_CONNECT_TIMEOUT,
            read_timeout=S3_READ_TIMEOUT,
        )
        s3_client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.aws_access_key_id,
            aws_secret_access_key=config.aws_secret_access_key,
            region_name=config.region_name,
            config=boto_config,
        )
        return cls(s3_client, config.bucket_name, config.region_name)

    def _call(self, operation: str, **kwargs: Any) -> Any:
        """Invoke an S3 operation, translating failures to UpstreamError."""
        try:
            return getattr(self.s3_client, operation)(**kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error("S3 %s failed: %s", operation, e)
            raise UpstreamError(f"S3 {operation} failed: {e}") from e

    def ensure_bucket(self) -> None:
        """Create the upload bucket if it does not exist.

        Failures are logged rather than raised so the service can still
        start against a bucket it is not allowed to create.
        """
        params: dict[str, Any] = {"Bucket": self.bucket_name}
        if self.region_name and self.region_name != "us-east-1":
            params["CreateBucketConfiguration"] = {
                "LocationConstraint": self.region_name,
            }

        try:
            self.s3_client.create_bucket(**params)
            logger.info("Created bucket %s", self.bucket_name)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in BUCKET_EXISTS_CODES:
                logger.info("Bucket %s already exists", self.bucket_name)
            else:
                logger.warning("Could not ensure bucket %s: %s", self.bucket_name, e)
        except BotoCoreError as e:
            logger.warning("Could not ensure bucket %s: %s", self.bucket_name, e)

    def create_multipart(self, key: str, content_type: Optional[str]) -> MultipartHandle:
        params: dict[str, Any] = {"Bucket": self.bucket_name, "Key": key}
        if content_type:
            params["ContentType"] = content_type

        response = self._call("create_multipart_upload", **params)
        return MultipartHandle(key=key, upload_id=response["UploadId"])

    def upload_part(self, handle: MultipartHandle, part_number: int, body: bytes) -> str:
        response = self._call(
            "upload_part",
            Bucket=self.bucket_name,
            Key=handle.key,
            UploadId=handle.upload_id,
            PartNumber=part_number,
            Body=body,
        )
        return response["ETag"]

    def presign_part_url(
        self, handle: MultipartHandle, part_number: int, ttl_seconds: int
    ) -> str:
        return self._call(
            "generate_presigned_url",
            ClientMethod="upload_part",
            Params={
                "Bucket": self.bucket_name,
                "Key": handle.key,
                "UploadId": handle.upload_id,
                "PartNumber": part_number,
            },
            ExpiresIn=ttl_seconds,
            HttpMethod="PUT",
        )

    def list_parts(self, handle: MultipartHandle) -> list[dict[str, Any]]:
        """List every stored part, following pagination markers."""
        parts: list[dict[str, Any]] = []
        params: dict[str, Any] = {
            "Bucket": self.bucket_name,
            "Key": handle.key,
            "UploadId": handle.upload_id,
        }

        while True:
            response = self._call("list_parts", **params)
            for part in response.get("Parts", []):
                parts.append({
                    "partNumber": part["PartNumber"],
                    "etag": part["ETag"],
                    "size": part["Size"],
                })
            if not response.get("IsTruncated"):
                break
            params["PartNumberMarker"] = response["NextPartNumberMarker"]

        return parts

    def complete_multipart(
        self, handle: MultipartHandle, ordered_parts: list[dict[str, Any]]
    ) -> dict[str, Optional[str]]:
        response = self._call(
            "complete_multipart_upload",
            Bucket=self.bucket_name,
            Key=handle.key,
            UploadId=handle.upload_id,
            MultipartUpload={
                "Parts": [
                    {"PartNumber": part["partNumber"], "ETag": part["etag"]}
                    for part in ordered_parts
                ],
            },
        )
        return {"location": response.get("Location"), "etag": response.get("ETag")}

    def abort_multipart(self, handle: MultipartHandle) -> None:
        self._call(
            "abort_multipart_upload",
            Bucket=self.bucket_name,
            Key=handle.key,
            UploadId=handle.upload_id,
        )
