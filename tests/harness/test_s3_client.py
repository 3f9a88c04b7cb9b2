#!/usr/bin/env python3
"""
Storage adapter tests

Drives S3Client through botocore's Stubber: checks the object-lock request
parameters sent on the wire and the mapping of service errors to
OperationResult failures.
"""

import sys
import os
from datetime import datetime, timezone

import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.stub import ANY, Stubber

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../..")))

from s3lock.config import MIB, BackendConfig, HarnessSettings
from s3lock.retention import RetentionMode, RetentionRecord
from s3lock.s3_client import S3Client, plan_parts

UNTIL = datetime(2030, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    return S3Client(
        endpoint_url="http://localhost:9000",
        access_key="test-access",
        secret_key="test-secret",
    )


@pytest.fixture
def stubber(client):
    with Stubber(client.client) as stub:
        yield stub
        stub.assert_no_pending_responses()


def test_from_backend_uses_settings_timeout():
    backend = BackendConfig(
        name="local", endpoint_url="https://s3.local", access_key="a", secret_key="b"
    )
    adapter = S3Client.from_backend(backend, HarnessSettings(scenario_timeout=12))
    assert adapter.client.meta.config.read_timeout == 12
    assert adapter.client.meta.config.retries["total_max_attempts"] == 1
    assert adapter.client.meta.endpoint_url == "https://s3.local"


def test_create_bucket_with_object_lock(client, stubber):
    stubber.add_response(
        "create_bucket",
        {"Location": "/lock-bucket"},
        {"Bucket": "lock-bucket", "ObjectLockEnabledForBucket": True},
    )
    result = client.create_bucket("lock-bucket", object_lock=True)
    assert result.ok
    assert result.payload["bucket"] == "lock-bucket"


def test_create_bucket_not_implemented(client, stubber):
    stubber.add_client_error(
        "create_bucket",
        service_error_code="NotImplemented",
        service_message="A header you provided implies functionality that is not implemented",
        http_status_code=501,
    )
    result = client.create_bucket("lock-bucket", object_lock=True)
    assert not result.ok
    assert result.status == 501
    assert result.error_code == "NotImplemented"
    assert "not implemented" in result.message


def test_put_object_sends_lock_headers(client, stubber):
    stubber.add_response(
        "put_object",
        {"VersionId": "v-123", "ETag": '"abc"'},
        {
            "Bucket": "b",
            "Key": "k",
            "Body": ANY,
            "ObjectLockMode": "GOVERNANCE",
            "ObjectLockRetainUntilDate": UNTIL,
            "ObjectLockLegalHoldStatus": "ON",
        },
    )
    result = client.put_object(
        "b", "k", b"content",
        lock_mode=RetentionMode.GOVERNANCE, retain_until=UNTIL, legal_hold=True,
    )
    assert result.ok
    assert result.payload == {"version_id": "v-123", "etag": '"abc"'}


def test_put_object_without_lock_sends_no_lock_headers(client, stubber):
    stubber.add_response(
        "put_object",
        {"VersionId": "v-1"},
        {"Bucket": "b", "Key": "k", "Body": ANY},
    )
    assert client.put_object("b", "k", b"content").ok


def test_delete_object_with_bypass(client, stubber):
    stubber.add_response(
        "delete_object",
        {},
        {
            "Bucket": "b",
            "Key": "k",
            "VersionId": "v-1",
            "BypassGovernanceRetention": True,
        },
    )
    result = client.delete_object("b", "k", version_id="v-1", bypass_governance=True)
    assert result.ok
    assert result.payload["delete_marker"] is False


def test_unversioned_delete_reports_marker(client, stubber):
    stubber.add_response(
        "delete_object",
        {"DeleteMarker": True, "VersionId": "marker-1"},
        {"Bucket": "b", "Key": "k"},
    )
    result = client.delete_object("b", "k")
    assert result.payload == {"version_id": "marker-1", "delete_marker": True}


def test_delete_locked_version_maps_error(client, stubber):
    stubber.add_client_error(
        "delete_object",
        service_error_code="AccessDenied",
        service_message="Access Denied because object protected by object lock.",
        http_status_code=403,
    )
    result = client.delete_object("b", "k", version_id="v-1")
    assert not result.ok
    assert (result.status, result.error_code) == (403, "AccessDenied")


def test_put_retention(client, stubber):
    stubber.add_response(
        "put_object_retention",
        {},
        {
            "Bucket": "b",
            "Key": "k",
            "VersionId": "v-1",
            "Retention": {"Mode": "COMPLIANCE", "RetainUntilDate": UNTIL},
        },
    )
    assert client.put_object_retention(
        "b", "k", "v-1", RetentionMode.COMPLIANCE, retain_until=UNTIL
    ).ok


def test_clear_retention_sends_empty_retention(client, stubber):
    stubber.add_response(
        "put_object_retention",
        {},
        {
            "Bucket": "b",
            "Key": "k",
            "VersionId": "v-1",
            "Retention": {},
            "BypassGovernanceRetention": True,
        },
    )
    assert client.put_object_retention(
        "b", "k", "v-1", RetentionMode.NONE, bypass_governance=True
    ).ok


def test_get_retention_returns_record(client, stubber):
    stubber.add_response(
        "get_object_retention",
        {"Retention": {"Mode": "GOVERNANCE", "RetainUntilDate": UNTIL}},
        {"Bucket": "b", "Key": "k", "VersionId": "v-1"},
    )
    result = client.get_object_retention("b", "k", "v-1")
    assert result.payload["retention"] == RetentionRecord(
        mode=RetentionMode.GOVERNANCE, retain_until=UNTIL
    )


def test_get_retention_not_configured(client, stubber):
    stubber.add_client_error(
        "get_object_retention",
        service_error_code="NoSuchObjectLockConfiguration",
        http_status_code=404,
    )
    result = client.get_object_retention("b", "k", "v-1")
    assert result.error_code == "NoSuchObjectLockConfiguration"


def test_legal_hold_round_trip(client, stubber):
    stubber.add_response(
        "put_object_legal_hold",
        {},
        {"Bucket": "b", "Key": "k", "VersionId": "v-1", "LegalHold": {"Status": "OFF"}},
    )
    stubber.add_response(
        "get_object_legal_hold",
        {"LegalHold": {"Status": "OFF"}},
        {"Bucket": "b", "Key": "k", "VersionId": "v-1"},
    )
    assert client.put_object_legal_hold("b", "k", "v-1", on=False).ok
    assert client.get_object_legal_hold("b", "k", "v-1").payload["legal_hold"] is False


def test_list_object_versions_follows_pagination(client, stubber):
    stubber.add_response(
        "list_object_versions",
        {
            "IsTruncated": True,
            "NextKeyMarker": "k",
            "NextVersionIdMarker": "v-2",
            "Versions": [
                {"Key": "k", "VersionId": "v-1"},
                {"Key": "k", "VersionId": "v-2"},
            ],
        },
        {"Bucket": "b"},
    )
    stubber.add_response(
        "list_object_versions",
        {
            "IsTruncated": False,
            "DeleteMarkers": [{"Key": "k", "VersionId": "m-1"}],
        },
        {"Bucket": "b", "KeyMarker": "k", "VersionIdMarker": "v-2"},
    )
    result = client.list_object_versions("b")
    assert result.payload["versions"] == [
        {"key": "k", "version_id": "v-1", "is_delete_marker": False},
        {"key": "k", "version_id": "v-2", "is_delete_marker": False},
        {"key": "k", "version_id": "m-1", "is_delete_marker": True},
    ]


def test_multipart_upload_with_lock(client, stubber):
    data = b"x" * (11 * MIB)
    stubber.add_response(
        "create_multipart_upload",
        {"UploadId": "u-1"},
        {
            "Bucket": "b",
            "Key": "k",
            "ObjectLockMode": "GOVERNANCE",
            "ObjectLockRetainUntilDate": UNTIL,
        },
    )
    for number in (1, 2, 3):
        stubber.add_response(
            "upload_part",
            {"ETag": f'"p{number}"'},
            {
                "Bucket": "b",
                "Key": "k",
                "UploadId": "u-1",
                "PartNumber": number,
                "Body": ANY,
            },
        )
    stubber.add_response(
        "complete_multipart_upload",
        {"VersionId": "v-9", "ETag": '"whole-3"'},
        {
            "Bucket": "b",
            "Key": "k",
            "UploadId": "u-1",
            "MultipartUpload": {
                "Parts": [
                    {"PartNumber": 1, "ETag": '"p1"'},
                    {"PartNumber": 2, "ETag": '"p2"'},
                    {"PartNumber": 3, "ETag": '"p3"'},
                ]
            },
        },
    )
    result = client.upload_multipart(
        "b", "k", data, lock_mode=RetentionMode.GOVERNANCE, retain_until=UNTIL
    )
    assert result.ok
    assert result.payload["version_id"] == "v-9"


def test_multipart_aborts_on_part_failure(client, stubber):
    data = b"x" * (11 * MIB)
    stubber.add_response("create_multipart_upload", {"UploadId": "u-1"})
    stubber.add_response("upload_part", {"ETag": '"p1"'})
    stubber.add_client_error(
        "upload_part", service_error_code="InternalError", http_status_code=500
    )
    stubber.add_response(
        "abort_multipart_upload",
        {},
        {"Bucket": "b", "Key": "k", "UploadId": "u-1"},
    )
    result = client.upload_multipart("b", "k", data)
    assert not result.ok
    assert result.error_code == "InternalError"


def test_multipart_aborts_on_complete_failure(client, stubber):
    data = b"x" * (6 * MIB)
    stubber.add_response("create_multipart_upload", {"UploadId": "u-1"})
    stubber.add_response("upload_part", {"ETag": '"p1"'})
    stubber.add_response("upload_part", {"ETag": '"p2"'})
    stubber.add_client_error(
        "complete_multipart_upload", service_error_code="InvalidPart", http_status_code=400
    )
    stubber.add_response("abort_multipart_upload", {})
    result = client.upload_multipart("b", "k", data)
    assert result.error_code == "InvalidPart"


def test_transport_errors_become_failures(client, monkeypatch):
    def unreachable(**kwargs):
        raise EndpointConnectionError(endpoint_url="http://localhost:9000")

    monkeypatch.setattr(client.client, "delete_bucket", unreachable)
    result = client.delete_bucket("b")
    assert not result.ok
    assert result.status == 0
    assert result.error_code == "EndpointConnectionError"


def test_plan_parts():
    assert plan_parts(15 * MIB, 5 * MIB) == [
        (1, 0, 5 * MIB),
        (2, 5 * MIB, 10 * MIB),
        (3, 10 * MIB, 15 * MIB),
    ]
    last = plan_parts(11 * MIB, 5 * MIB)[-1]
    assert last == (3, 10 * MIB, 11 * MIB)
    assert plan_parts(1, 5 * MIB) == [(1, 0, 1)]


@pytest.mark.parametrize("size,part_size", [(10 * MIB, 4 * MIB), (0, 5 * MIB)])
def test_plan_parts_rejects(size, part_size):
    with pytest.raises(ValueError):
        plan_parts(size, part_size)
