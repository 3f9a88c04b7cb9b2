"""
Scoped bucket fixture

Names buckets, generates payloads and tears everything down again. Cleanup
is unconditional and never raises: every failure is logged and returned so
the caller can report it without letting it change a verdict.
"""

import os
import random
import string
import time
from datetime import datetime
from typing import Callable, List, Optional

from s3lock.config import HarnessSettings
from s3lock.log import get_logger
from s3lock.retention import utcnow
from s3lock.s3_client import OperationResult, StorageAdapter

logger = get_logger("fixtures")

MAX_BUCKET_NAME = 63


def random_string(length: int = 8) -> str:
    """Lowercase alphanumerics, safe inside bucket names"""
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


class TestFixture:
    """Bucket lifecycle for one scenario or test"""

    # keep pytest from collecting this as a test class
    __test__ = False

    def __init__(
        self,
        adapter: StorageAdapter,
        settings: Optional[HarnessSettings] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.adapter = adapter
        self.settings = settings or HarnessSettings()
        self.clock = clock
        self.sleep = sleep
        self.created_buckets: List[str] = []

    def generate_bucket_name(self, prefix: str = "") -> str:
        parts = [self.settings.bucket_prefix, prefix, random_string()]
        name = "-".join(p for p in parts if p).lower().replace("_", "-")
        if len(name) > MAX_BUCKET_NAME:
            name = name[: MAX_BUCKET_NAME - 9].rstrip("-") + "-" + random_string()
        return name

    @staticmethod
    def generate_random_data(size: int) -> bytes:
        return os.urandom(size)

    def track(self, bucket: str) -> None:
        if bucket not in self.created_buckets:
            self.created_buckets.append(bucket)

    def cleanup(self, compliance_until: Optional[datetime] = None) -> List[str]:
        """
        Remove every tracked bucket with all of its versions.

        ``compliance_until`` is the latest COMPLIANCE retain-until date in
        the buckets. Cleanup waits for it to pass when that fits inside
        ``settings.cleanup_wait``; otherwise those versions are reported as
        leftovers.
        """
        errors: List[str] = []
        if compliance_until is not None:
            self._wait_for_expiry(compliance_until)
        for bucket in list(self.created_buckets):
            errors.extend(self._cleanup_bucket(bucket))
            self.created_buckets.remove(bucket)
        for error in errors:
            logger.warning("cleanup: %s", error)
        return errors

    def _wait_for_expiry(self, until: datetime) -> None:
        remaining = (until - self.clock()).total_seconds()
        if remaining <= 0:
            return
        if remaining > self.settings.cleanup_wait:
            logger.warning(
                "COMPLIANCE retention ends in %.0fs, beyond the %.0fs cleanup wait",
                remaining, self.settings.cleanup_wait,
            )
            return
        logger.debug("waiting %.1fs for COMPLIANCE retention to expire", remaining)
        # one extra second for servers that round retain-until up
        self.sleep(remaining + 1)

    def _retry_once(self, call: Callable[[], OperationResult]) -> OperationResult:
        result = call()
        if not result.ok:
            result = call()
        return result

    def _cleanup_bucket(self, bucket: str) -> List[str]:
        errors = []
        adapter = self.adapter

        uploads = self._retry_once(lambda: adapter.list_multipart_uploads(bucket))
        for upload in uploads.payload.get("uploads", []) if uploads.ok else []:
            aborted = self._retry_once(
                lambda: adapter.abort_multipart_upload(
                    bucket, upload["key"], upload["upload_id"]
                )
            )
            if not aborted.ok:
                errors.append(
                    f"abort {bucket}/{upload['key']} {upload['upload_id']}: "
                    f"{aborted.describe()}"
                )

        listed = self._retry_once(lambda: adapter.list_object_versions(bucket))
        if not listed.ok:
            errors.append(f"list versions of {bucket}: {listed.describe()}")
        for version in listed.payload.get("versions", []) if listed.ok else []:
            key, version_id = version["key"], version["version_id"]
            if version["is_delete_marker"]:
                deleted = self._retry_once(
                    lambda: adapter.delete_object(bucket, key, version_id=version_id)
                )
                if not deleted.ok:
                    errors.append(
                        f"delete marker {bucket}/{key}@{version_id}: {deleted.describe()}"
                    )
                continue
            deleted = adapter.delete_object(
                bucket, key, version_id=version_id, bypass_governance=True
            )
            if not deleted.ok:
                # a legal hold blocks even bypass deletes
                adapter.put_object_legal_hold(bucket, key, version_id, on=False)
                deleted = adapter.delete_object(
                    bucket, key, version_id=version_id, bypass_governance=True
                )
            if not deleted.ok:
                errors.append(
                    f"delete {bucket}/{key}@{version_id}: {deleted.describe()}"
                )

        removed = self._retry_once(lambda: adapter.delete_bucket(bucket))
        if not removed.ok:
            errors.append(f"delete bucket {bucket}: {removed.describe()}")
        return errors
