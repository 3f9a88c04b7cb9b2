#!/usr/bin/env python3
"""
Retention model tests

Covers the pure object-lock rules:
- Building and attaching retention records
- Extension-only date updates
- Clearing rules per mode, bypass and expiry
- Version lookup and delete protection inside a bucket model
"""

import random
import sys
import os
from datetime import datetime, timedelta, timezone

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../..")))

from s3lock.errors import (
    ComplianceImmutable,
    DenyReason,
    GovernanceBypassRequired,
    InvalidRetention,
    LegalHoldActive,
    RetentionNotExtended,
)
from s3lock.retention import (
    BucketState,
    ObjectVersion,
    RetentionMode,
    RetentionRecord,
    apply,
    check_delete,
    clear,
    extend,
    truncate_to_second,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
GOVERNANCE = RetentionMode.GOVERNANCE
COMPLIANCE = RetentionMode.COMPLIANCE


def record(mode, seconds):
    return RetentionRecord(mode=mode, retain_until=NOW + timedelta(seconds=seconds))


@pytest.mark.parametrize("mode", [GOVERNANCE, COMPLIANCE])
def test_apply_attaches_record(mode):
    version = ObjectVersion(version_id="v1")
    until = NOW + timedelta(minutes=1)

    result = apply(version, mode, until, now=NOW)

    assert result == RetentionRecord(mode=mode, retain_until=until)
    assert version.retention is result
    assert result.is_active(NOW)


@pytest.mark.parametrize(
    "mode,offset",
    [
        (GOVERNANCE, timedelta(0)),
        (GOVERNANCE, timedelta(seconds=-1)),
        (COMPLIANCE, timedelta(days=-1)),
        (GOVERNANCE, None),
        (COMPLIANCE, None),
        (RetentionMode.NONE, timedelta(minutes=1)),
    ],
)
def test_apply_rejects_invalid_retention(mode, offset):
    version = ObjectVersion(version_id="v1")
    until = NOW + offset if offset is not None else None

    with pytest.raises(InvalidRetention) as exc_info:
        apply(version, mode, until, now=NOW)

    assert exc_info.value.reason is DenyReason.INVALID_RETENTION
    assert version.retention is None


def test_apply_rejects_delete_marker():
    marker = ObjectVersion(version_id="m1", is_delete_marker=True)
    with pytest.raises(InvalidRetention):
        apply(marker, GOVERNANCE, NOW + timedelta(minutes=1), now=NOW)
    assert marker.retention is None


def test_apply_none_clears_record():
    version = ObjectVersion(version_id="v1", retention=record(GOVERNANCE, 60))
    apply(version, RetentionMode.NONE, None, now=NOW)
    assert version.retention is None


def test_extend_accepts_later_date_and_keeps_mode():
    current = record(COMPLIANCE, 60)
    extended = extend(current, NOW + timedelta(minutes=2))
    assert extended.mode is COMPLIANCE
    assert extended.retain_until == NOW + timedelta(minutes=2)
    # records are values, the original is untouched
    assert current.retain_until == NOW + timedelta(minutes=1)


@pytest.mark.parametrize("seconds", [60, 59, 0])
def test_extend_rejects_equal_or_earlier(seconds):
    with pytest.raises(RetentionNotExtended) as exc_info:
        extend(record(GOVERNANCE, 60), NOW + timedelta(seconds=seconds))
    assert exc_info.value.reason is DenyReason.RETENTION_NOT_EXTENDED


def test_extend_sequence_never_moves_backwards():
    """Random update sequences: the accepted dates only ever increase"""
    rng = random.Random(1234)
    current = record(GOVERNANCE, 60)
    for _ in range(500):
        candidate = current.retain_until + timedelta(seconds=rng.randint(-120, 120))
        try:
            updated = extend(current, candidate)
        except RetentionNotExtended:
            assert candidate <= current.retain_until
            continue
        assert updated.retain_until > current.retain_until
        assert updated.mode is current.mode
        current = updated


@pytest.mark.parametrize("bypass", [False, True])
def test_clear_active_compliance_always_refused(bypass):
    with pytest.raises(ComplianceImmutable) as exc_info:
        clear(record(COMPLIANCE, 60), bypass=bypass, now=NOW)
    assert exc_info.value.reason is DenyReason.COMPLIANCE_IMMUTABLE


def test_clear_active_governance_needs_bypass():
    with pytest.raises(GovernanceBypassRequired):
        clear(record(GOVERNANCE, 60), bypass=False, now=NOW)
    clear(record(GOVERNANCE, 60), bypass=True, now=NOW)


@pytest.mark.parametrize("mode", [GOVERNANCE, COMPLIANCE])
@pytest.mark.parametrize("bypass", [False, True])
def test_clear_expired_record(mode, bypass):
    expired = record(mode, 60)
    later = NOW + timedelta(seconds=61)
    assert not expired.is_active(later)
    clear(expired, bypass=bypass, now=later)


def test_record_expires_exactly_at_retain_until():
    r = record(COMPLIANCE, 60)
    assert r.is_active(NOW + timedelta(seconds=59))
    assert not r.is_active(NOW + timedelta(seconds=60))


def test_same_as_ignores_sub_second_precision():
    until = NOW + timedelta(minutes=1, microseconds=654321)
    local = RetentionRecord(mode=GOVERNANCE, retain_until=until)
    reported = RetentionRecord(
        mode=GOVERNANCE, retain_until=truncate_to_second(until)
    )
    assert local.same_as(reported)
    assert not local.same_as(RetentionRecord(mode=COMPLIANCE, retain_until=until))
    assert not local.same_as(None)


def test_truncate_to_second_assumes_utc_for_naive_dates():
    naive = datetime(2026, 3, 1, 12, 0, 0, 999999)
    assert truncate_to_second(naive) == NOW


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, RetentionMode.NONE),
        ("", RetentionMode.NONE),
        ("GOVERNANCE", GOVERNANCE),
        ("compliance", COMPLIANCE),
    ],
)
def test_mode_parse(value, expected):
    assert RetentionMode.parse(value) is expected


def test_check_delete_rules():
    check_delete(ObjectVersion(version_id="v1"), bypass=False, now=NOW)

    held = ObjectVersion(version_id="v2", legal_hold=True, retention=record(GOVERNANCE, 60))
    with pytest.raises(LegalHoldActive):
        check_delete(held, bypass=True, now=NOW)

    governed = ObjectVersion(version_id="v3", retention=record(GOVERNANCE, 60))
    with pytest.raises(GovernanceBypassRequired):
        check_delete(governed, bypass=False, now=NOW)
    check_delete(governed, bypass=True, now=NOW)

    complied = ObjectVersion(version_id="v4", retention=record(COMPLIANCE, 60))
    with pytest.raises(ComplianceImmutable):
        check_delete(complied, bypass=True, now=NOW)
    check_delete(complied, bypass=False, now=NOW + timedelta(minutes=5))


def test_delete_marker_is_never_protected():
    marker = ObjectVersion(version_id="m1", is_delete_marker=True, legal_hold=True)
    assert not marker.is_protected(NOW)
    check_delete(marker, bypass=False, now=NOW)


def test_bucket_state_lookup_and_removal():
    state = BucketState(name="bucket")
    state.add_version("k", ObjectVersion(version_id="id-1", label="v1"))
    state.add_version("k", ObjectVersion(version_id="id-2", label="v2"))
    state.add_version("k", ObjectVersion(version_id="id-3", is_delete_marker=True))

    assert state.find("k", "v1").version_id == "id-1"
    assert state.find("k", "id-2").label == "v2"
    assert state.find("k", "missing") is None
    assert state.find("other", "v1") is None
    assert state.current("k").is_delete_marker

    removed = state.remove_version("k", "id-3")
    assert removed.version_id == "id-3"
    assert state.current("k").label == "v2"
    assert state.remove_version("k", "id-3") is None
    assert [v.version_id for v in state.all_versions()] == ["id-1", "id-2"]


def test_bucket_state_to_dict():
    state = BucketState(name="bucket")
    state.add_version(
        "k", ObjectVersion(version_id="id-1", label="v1", retention=record(COMPLIANCE, 60))
    )
    snapshot = state.to_dict()
    assert snapshot["name"] == "bucket"
    entry = snapshot["versions"]["k"][0]
    assert entry["retention"] == {
        "mode": "COMPLIANCE",
        "retain_until": (NOW + timedelta(seconds=60)).isoformat(),
    }
    assert entry["legal_hold"] is None
