"""
Storage Adapter

Thin transport to an S3-compatible endpoint. Every operation returns an
``OperationResult``: either a success payload (version id, ETag, upload id,
retention record ...) or a structured failure carrying the HTTP status and
the service error code. No object-lock policy is interpreted here; the
driver does that through the oracle.

``StorageAdapter`` is the interface, ``S3Client`` the boto3 implementation.
"""

import abc
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from s3lock.config import MIN_PART_SIZE, BackendConfig, HarnessSettings
from s3lock.log import get_logger
from s3lock.retention import RetentionMode, RetentionRecord

logger = get_logger("s3_client")


@dataclass
class OperationResult:
    ok: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    status: int = 200
    error_code: str = ""
    message: str = ""

    @classmethod
    def success(cls, status: int = 200, **payload: Any) -> "OperationResult":
        return cls(ok=True, payload=payload, status=status)

    @classmethod
    def failure(cls, status: int, error_code: str, message: str = "") -> "OperationResult":
        return cls(ok=False, status=status, error_code=error_code, message=message)

    def describe(self) -> str:
        if self.ok:
            return f"OK {self.status}"
        return f"{self.status} {self.error_code}: {self.message}"


def plan_parts(size: int, part_size: int = MIN_PART_SIZE) -> List[Tuple[int, int, int]]:
    """
    Split ``size`` bytes into multipart parts.

    Returns (part_number, start, end) triples with 1-based part numbers.
    Every part but the last is exactly ``part_size`` bytes.
    """
    if part_size < MIN_PART_SIZE:
        raise ValueError(
            f"part size {part_size} is below the S3 minimum of {MIN_PART_SIZE}"
        )
    if size <= 0:
        raise ValueError("multipart upload needs a non-empty payload")
    parts = []
    for number, start in enumerate(range(0, size, part_size), start=1):
        parts.append((number, start, min(start + part_size, size)))
    return parts


def endpoint_reachable(endpoint_url: str, timeout: float = 5) -> bool:
    """True if anything answers HTTP at ``endpoint_url``, error statuses included"""
    req = urllib.request.Request(endpoint_url, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=timeout):
            return True
    except urllib.error.HTTPError:
        # 403 from an unauthenticated GET still means the server is up
        return True
    except (urllib.error.URLError, OSError, ValueError):
        return False


class StorageAdapter(abc.ABC):
    """Capability set the driver needs from an object store"""

    @abc.abstractmethod
    def create_bucket(self, bucket: str, object_lock: bool = False) -> OperationResult:
        ...

    @abc.abstractmethod
    def delete_bucket(self, bucket: str) -> OperationResult:
        ...

    @abc.abstractmethod
    def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        lock_mode: RetentionMode = RetentionMode.NONE,
        retain_until: Optional[datetime] = None,
        legal_hold: Optional[bool] = None,
    ) -> OperationResult:
        ...

    @abc.abstractmethod
    def delete_object(
        self,
        bucket: str,
        key: str,
        version_id: Optional[str] = None,
        bypass_governance: bool = False,
    ) -> OperationResult:
        ...

    @abc.abstractmethod
    def put_object_retention(
        self,
        bucket: str,
        key: str,
        version_id: Optional[str],
        mode: RetentionMode,
        retain_until: Optional[datetime] = None,
        bypass_governance: bool = False,
    ) -> OperationResult:
        ...

    @abc.abstractmethod
    def get_object_retention(
        self, bucket: str, key: str, version_id: Optional[str] = None
    ) -> OperationResult:
        ...

    @abc.abstractmethod
    def put_object_legal_hold(
        self, bucket: str, key: str, version_id: Optional[str], on: bool
    ) -> OperationResult:
        ...

    @abc.abstractmethod
    def get_object_legal_hold(
        self, bucket: str, key: str, version_id: Optional[str] = None
    ) -> OperationResult:
        ...

    @abc.abstractmethod
    def list_object_versions(self, bucket: str) -> OperationResult:
        ...

    @abc.abstractmethod
    def list_multipart_uploads(self, bucket: str) -> OperationResult:
        ...

    @abc.abstractmethod
    def create_multipart_upload(
        self,
        bucket: str,
        key: str,
        lock_mode: RetentionMode = RetentionMode.NONE,
        retain_until: Optional[datetime] = None,
        legal_hold: Optional[bool] = None,
    ) -> OperationResult:
        ...

    @abc.abstractmethod
    def upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, body: bytes
    ) -> OperationResult:
        ...

    @abc.abstractmethod
    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: List[Tuple[int, str]]
    ) -> OperationResult:
        ...

    @abc.abstractmethod
    def abort_multipart_upload(
        self, bucket: str, key: str, upload_id: str
    ) -> OperationResult:
        ...

    def upload_multipart(
        self,
        bucket: str,
        key: str,
        data: bytes,
        part_size: int = MIN_PART_SIZE,
        lock_mode: RetentionMode = RetentionMode.NONE,
        retain_until: Optional[datetime] = None,
        legal_hold: Optional[bool] = None,
    ) -> OperationResult:
        """
        Upload ``data`` as a multipart object.

        Lock settings are given at create time. If any part or the
        completion fails, the upload is aborted before the failure is
        returned so no session is left dangling.
        """
        plan = plan_parts(len(data), part_size)
        created = self.create_multipart_upload(
            bucket, key, lock_mode=lock_mode, retain_until=retain_until,
            legal_hold=legal_hold,
        )
        if not created.ok:
            return created
        upload_id = created.payload["upload_id"]

        etags = []
        for number, start, end in plan:
            part = self.upload_part(bucket, key, upload_id, number, data[start:end])
            if not part.ok:
                self._abort(bucket, key, upload_id)
                return part
            etags.append((number, part.payload["etag"]))

        completed = self.complete_multipart_upload(bucket, key, upload_id, etags)
        if not completed.ok:
            self._abort(bucket, key, upload_id)
        return completed

    def _abort(self, bucket: str, key: str, upload_id: str) -> None:
        aborted = self.abort_multipart_upload(bucket, key, upload_id)
        if not aborted.ok:
            logger.warning(
                "AbortMultipartUpload %s on %s/%s failed: %s",
                upload_id, bucket, key, aborted.describe(),
            )


class S3Client(StorageAdapter):
    """
    boto3-backed adapter

    ``client`` is the raw boto3 client, kept public so tests can attach a
    ``botocore.stub.Stubber`` or make calls the adapter does not wrap.
    """

    def __init__(
        self,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        region: str = "us-east-1",
        use_ssl: bool = False,
        verify_ssl: bool = False,
        connect_timeout: float = 10,
        read_timeout: float = 60,
        max_attempts: int = 1,
    ):
        self.region = region
        self.client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            use_ssl=use_ssl,
            verify=verify_ssl,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"total_max_attempts": max_attempts, "mode": "standard"},
            ),
        )

    @classmethod
    def from_backend(
        cls, backend: BackendConfig, settings: Optional[HarnessSettings] = None
    ) -> "S3Client":
        settings = settings or HarnessSettings()
        return cls(
            endpoint_url=backend.endpoint_url,
            access_key=backend.access_key,
            secret_key=backend.secret_key,
            region=backend.region,
            use_ssl=backend.use_ssl,
            verify_ssl=backend.verify_ssl,
            read_timeout=settings.scenario_timeout,
        )

    def _call(self, method: str, **params: Any) -> Tuple[Optional[Dict], Optional[OperationResult]]:
        """Invoke a boto3 method; return (response, None) or (None, failure)"""
        try:
            return getattr(self.client, method)(**params), None
        except ClientError as e:
            error = e.response.get("Error", {})
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
            return None, OperationResult.failure(
                status, error.get("Code", ""), error.get("Message", str(e))
            )
        except BotoCoreError as e:
            return None, OperationResult.failure(0, type(e).__name__, str(e))

    @staticmethod
    def _status(response: Dict) -> int:
        return response.get("ResponseMetadata", {}).get("HTTPStatusCode", 200)

    @staticmethod
    def _versioned(params: Dict[str, Any], version_id: Optional[str]) -> Dict[str, Any]:
        if version_id:
            params["VersionId"] = version_id
        return params

    def create_bucket(self, bucket: str, object_lock: bool = False) -> OperationResult:
        params: Dict[str, Any] = {"Bucket": bucket}
        if object_lock:
            params["ObjectLockEnabledForBucket"] = True
        if self.region and self.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        response, failure = self._call("create_bucket", **params)
        if failure:
            return failure
        return OperationResult.success(self._status(response), bucket=bucket)

    def delete_bucket(self, bucket: str) -> OperationResult:
        response, failure = self._call("delete_bucket", Bucket=bucket)
        if failure:
            return failure
        return OperationResult.success(self._status(response))

    def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        lock_mode: RetentionMode = RetentionMode.NONE,
        retain_until: Optional[datetime] = None,
        legal_hold: Optional[bool] = None,
    ) -> OperationResult:
        params: Dict[str, Any] = {"Bucket": bucket, "Key": key, "Body": body}
        params.update(_lock_params(lock_mode, retain_until, legal_hold))
        response, failure = self._call("put_object", **params)
        if failure:
            return failure
        return OperationResult.success(
            self._status(response),
            version_id=response.get("VersionId"),
            etag=response.get("ETag"),
        )

    def delete_object(
        self,
        bucket: str,
        key: str,
        version_id: Optional[str] = None,
        bypass_governance: bool = False,
    ) -> OperationResult:
        params = self._versioned({"Bucket": bucket, "Key": key}, version_id)
        if bypass_governance:
            params["BypassGovernanceRetention"] = True
        response, failure = self._call("delete_object", **params)
        if failure:
            return failure
        return OperationResult.success(
            self._status(response),
            version_id=response.get("VersionId"),
            delete_marker=bool(response.get("DeleteMarker")),
        )

    def put_object_retention(
        self,
        bucket: str,
        key: str,
        version_id: Optional[str],
        mode: RetentionMode,
        retain_until: Optional[datetime] = None,
        bypass_governance: bool = False,
    ) -> OperationResult:
        retention: Dict[str, Any] = {}
        if mode is not RetentionMode.NONE:
            retention["Mode"] = mode.value
        if retain_until is not None:
            retention["RetainUntilDate"] = retain_until
        params = self._versioned(
            {"Bucket": bucket, "Key": key, "Retention": retention}, version_id
        )
        if bypass_governance:
            params["BypassGovernanceRetention"] = True
        response, failure = self._call("put_object_retention", **params)
        if failure:
            return failure
        return OperationResult.success(self._status(response))

    def get_object_retention(
        self, bucket: str, key: str, version_id: Optional[str] = None
    ) -> OperationResult:
        params = self._versioned({"Bucket": bucket, "Key": key}, version_id)
        response, failure = self._call("get_object_retention", **params)
        if failure:
            return failure
        retention = response.get("Retention", {})
        record = RetentionRecord(
            mode=RetentionMode.parse(retention.get("Mode")),
            retain_until=retention.get("RetainUntilDate"),
        )
        return OperationResult.success(self._status(response), retention=record)

    def put_object_legal_hold(
        self, bucket: str, key: str, version_id: Optional[str], on: bool
    ) -> OperationResult:
        params = self._versioned(
            {
                "Bucket": bucket,
                "Key": key,
                "LegalHold": {"Status": "ON" if on else "OFF"},
            },
            version_id,
        )
        response, failure = self._call("put_object_legal_hold", **params)
        if failure:
            return failure
        return OperationResult.success(self._status(response))

    def get_object_legal_hold(
        self, bucket: str, key: str, version_id: Optional[str] = None
    ) -> OperationResult:
        params = self._versioned({"Bucket": bucket, "Key": key}, version_id)
        response, failure = self._call("get_object_legal_hold", **params)
        if failure:
            return failure
        status = response.get("LegalHold", {}).get("Status")
        return OperationResult.success(self._status(response), legal_hold=status == "ON")

    def list_object_versions(self, bucket: str) -> OperationResult:
        """All versions and delete markers of the bucket, following pagination"""
        versions = []
        params: Dict[str, Any] = {"Bucket": bucket}
        while True:
            response, failure = self._call("list_object_versions", **params)
            if failure:
                return failure
            for entry in response.get("Versions", []):
                versions.append(
                    {
                        "key": entry["Key"],
                        "version_id": entry.get("VersionId"),
                        "is_delete_marker": False,
                    }
                )
            for entry in response.get("DeleteMarkers", []):
                versions.append(
                    {
                        "key": entry["Key"],
                        "version_id": entry.get("VersionId"),
                        "is_delete_marker": True,
                    }
                )
            if not response.get("IsTruncated"):
                break
            params["KeyMarker"] = response.get("NextKeyMarker")
            params["VersionIdMarker"] = response.get("NextVersionIdMarker")
        return OperationResult.success(versions=versions)

    def list_multipart_uploads(self, bucket: str) -> OperationResult:
        response, failure = self._call("list_multipart_uploads", Bucket=bucket)
        if failure:
            return failure
        uploads = [
            {"key": u["Key"], "upload_id": u["UploadId"]}
            for u in response.get("Uploads", [])
        ]
        return OperationResult.success(self._status(response), uploads=uploads)

    def create_multipart_upload(
        self,
        bucket: str,
        key: str,
        lock_mode: RetentionMode = RetentionMode.NONE,
        retain_until: Optional[datetime] = None,
        legal_hold: Optional[bool] = None,
    ) -> OperationResult:
        params: Dict[str, Any] = {"Bucket": bucket, "Key": key}
        params.update(_lock_params(lock_mode, retain_until, legal_hold))
        response, failure = self._call("create_multipart_upload", **params)
        if failure:
            return failure
        return OperationResult.success(
            self._status(response), upload_id=response["UploadId"]
        )

    def upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, body: bytes
    ) -> OperationResult:
        response, failure = self._call(
            "upload_part",
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=body,
        )
        if failure:
            return failure
        return OperationResult.success(self._status(response), etag=response["ETag"])

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: List[Tuple[int, str]]
    ) -> OperationResult:
        response, failure = self._call(
            "complete_multipart_upload",
            Bucket=bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={
                "Parts": [{"PartNumber": n, "ETag": etag} for n, etag in parts]
            },
        )
        if failure:
            return failure
        return OperationResult.success(
            self._status(response),
            version_id=response.get("VersionId"),
            etag=response.get("ETag"),
        )

    def abort_multipart_upload(
        self, bucket: str, key: str, upload_id: str
    ) -> OperationResult:
        response, failure = self._call(
            "abort_multipart_upload", Bucket=bucket, Key=key, UploadId=upload_id
        )
        if failure:
            return failure
        return OperationResult.success(self._status(response))


def _lock_params(
    lock_mode: RetentionMode,
    retain_until: Optional[datetime],
    legal_hold: Optional[bool],
) -> Dict[str, Any]:
    """Object-lock headers shared by PutObject and CreateMultipartUpload"""
    params: Dict[str, Any] = {}
    if lock_mode is not RetentionMode.NONE:
        params["ObjectLockMode"] = lock_mode.value
    if retain_until is not None:
        params["ObjectLockRetainUntilDate"] = retain_until
    if legal_hold is not None:
        params["ObjectLockLegalHoldStatus"] = "ON" if legal_hold else "OFF"
    return params
