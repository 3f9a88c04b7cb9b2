"""
Scenario Oracle

Predicts the outcome an S3-compatible server must produce for an object-lock
operation, given the current model state. The oracle never touches the
network; the driver executes the operation and hands the observed result back
through ``Expectation.check`` and ``Oracle.advance``.

Delete decisions:

    delete without versionId            ALLOW (creates a delete marker)
    delete of a delete marker           ALLOW, always
    delete of an unprotected version    ALLOW
    delete under legal hold             DENY(LegalHoldActive)
    delete under GOVERNANCE             DENY(GovernanceBypassRequired) unless bypass
    delete under COMPLIANCE             DENY(ComplianceImmutable) until expiry

Retention updates:

    extend the date                     ALLOW
    equal or earlier date               DENY(RetentionNotExtended)
    clear GOVERNANCE                    ALLOW with bypass, DENY otherwise
    clear or change COMPLIANCE          DENY(ComplianceImmutable)
    GOVERNANCE -> COMPLIANCE            ALLOW with bypass, DENY otherwise
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, Optional, Union

from s3lock.errors import DenyReason, RetentionError
from s3lock.retention import (
    BucketState,
    ObjectVersion,
    RetentionMode,
    RetentionRecord,
    build_record,
    check_delete,
    clear,
    extend,
    utcnow,
)

# Servers disagree on the error code for the same refusal (MinIO, Ceph RGW
# and AWS all differ), so each reason accepts a set.
LOCKED_CODES = frozenset({"AccessDenied", "ObjectLocked", "InvalidRequest"})

ACCEPTED_ERROR_CODES: Dict[DenyReason, FrozenSet[str]] = {
    DenyReason.GOVERNANCE_BYPASS_REQUIRED: LOCKED_CODES,
    DenyReason.COMPLIANCE_IMMUTABLE: LOCKED_CODES,
    DenyReason.LEGAL_HOLD_ACTIVE: LOCKED_CODES,
    DenyReason.RETENTION_NOT_EXTENDED: LOCKED_CODES | {"InvalidArgument"},
    DenyReason.INVALID_RETENTION: frozenset(
        {"InvalidArgument", "InvalidRequest", "MalformedXML", "MethodNotAllowed"}
    ),
    DenyReason.NO_RETENTION_CONFIGURED: frozenset(
        {
            "NoSuchObjectLockConfiguration",
            "ObjectLockConfigurationNotFoundError",
            "InvalidRequest",
        }
    ),
}


# --------------------------------------------------------------------------------------
# Operations
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class PutObject:
    """Upload a new version; ``retain_for`` is relative to the scenario anchor"""

    label: str
    mode: RetentionMode = RetentionMode.NONE
    retain_for: Optional[timedelta] = None
    legal_hold: bool = False
    multipart: bool = False
    size: Optional[int] = None

    name = "PutObject"


@dataclass(frozen=True)
class DeleteObject:
    """
    Delete a version by label, or the key itself when ``label`` is None.

    An unversioned delete creates a delete marker, which is registered in the
    model under ``marker_label``.
    """

    label: Optional[str] = None
    bypass: bool = False
    marker_label: str = ""

    name = "DeleteObject"


@dataclass(frozen=True)
class PutRetention:
    """Set, extend, reduce or (mode NONE) clear a version's retention"""

    label: str
    mode: RetentionMode = RetentionMode.NONE
    retain_for: Optional[timedelta] = None
    bypass: bool = False

    name = "PutObjectRetention"


@dataclass(frozen=True)
class GetRetention:
    label: str

    name = "GetObjectRetention"


@dataclass(frozen=True)
class PutLegalHold:
    label: str
    on: bool = True

    name = "PutObjectLegalHold"


@dataclass(frozen=True)
class GetLegalHold:
    label: str

    name = "GetObjectLegalHold"


Operation = Union[
    PutObject, DeleteObject, PutRetention, GetRetention, PutLegalHold, GetLegalHold
]


def describe(op: Operation) -> str:
    """One-line rendering of an operation for logs and failure details"""
    fields = []
    for key, value in vars(op).items():
        if value in (None, "", False):
            continue
        if isinstance(value, RetentionMode):
            value = value.value
        elif isinstance(value, timedelta):
            value = f"+{int(value.total_seconds())}s"
        fields.append(f"{key}={value}")
    return f"{op.name}({', '.join(fields)})"


# --------------------------------------------------------------------------------------
# Expectations
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class Expectation:
    allowed: bool
    reason: Optional[DenyReason] = None
    record: Optional[RetentionRecord] = None
    legal_hold: Optional[bool] = None

    def __str__(self) -> str:
        if self.allowed:
            return "ALLOW"
        return f"DENY({self.reason.value})"

    def check(self, result: Any, strict_codes: bool = False) -> Optional[str]:
        """
        Compare an adapter result with this expectation.

        Returns None on a match, otherwise a description of what was
        actually observed. ``result`` needs ``ok``, ``status``,
        ``error_code`` and ``payload`` attributes.
        """
        if self.allowed:
            if not result.ok:
                return f"failure {result.status} {result.error_code}: {result.message}"
            if self.record is not None:
                observed = result.payload.get("retention")
                if not self.record.same_as(observed):
                    shown = observed.to_dict() if observed else None
                    return f"success with retention {shown}"
            if self.legal_hold is not None:
                observed = result.payload.get("legal_hold")
                if observed is not self.legal_hold:
                    return f"success with legal hold {observed}"
            return None

        if result.ok:
            return "success"
        # a crash or a dropped connection is not a refusal
        if result.status == 0 or result.status >= 500:
            return f"failure {result.status} {result.error_code}: {result.message}"
        if strict_codes and result.error_code not in ACCEPTED_ERROR_CODES[self.reason]:
            return f"failure {result.status} {result.error_code} (unexpected code)"
        return None

    def describe(self) -> str:
        text = str(self)
        if self.record is not None:
            text += f" with retention {self.record.to_dict()}"
        if self.legal_hold is not None:
            text += f" with legal hold {'ON' if self.legal_hold else 'OFF'}"
        return text


ALLOW = Expectation(allowed=True)


def deny(reason: DenyReason) -> Expectation:
    return Expectation(allowed=False, reason=reason)


# --------------------------------------------------------------------------------------
# Oracle
# --------------------------------------------------------------------------------------


class Oracle:
    """
    Decision table over a ``BucketState`` for a single object key.

    ``anchor`` is the instant retention offsets are resolved against; it is
    fixed for the lifetime of a scenario so that "+2min then +1min" always
    means a reduction.
    """

    def __init__(
        self,
        state: BucketState,
        key: str,
        anchor: Optional[datetime] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.state = state
        self.key = key
        self.clock = clock
        self.anchor = anchor or clock()
        # label -> version id, kept after the version is deleted
        self.version_ids: Dict[str, str] = {
            v.label: v.version_id for v in state.versions.get(key, []) if v.label
        }

    def resolve(self, offset: Optional[timedelta]) -> Optional[datetime]:
        if offset is None:
            return None
        return self.anchor + offset

    def version(self, label: str) -> ObjectVersion:
        version = self.state.find(self.key, label)
        if version is None:
            raise KeyError(f"no version labelled {label!r} on {self.key}")
        return version

    def version_id(self, label: str) -> str:
        """Version id a label was bound to, even once that version is gone"""
        if label not in self.version_ids:
            raise KeyError(f"no version labelled {label!r} on {self.key}")
        return self.version_ids[label]

    def expect(self, op: Operation) -> Expectation:
        handlers = {
            PutObject: self._expect_put_object,
            DeleteObject: self._expect_delete_object,
            PutRetention: self._expect_put_retention,
            GetRetention: self._expect_get_retention,
            PutLegalHold: self._expect_put_legal_hold,
            GetLegalHold: self._expect_get_legal_hold,
        }
        return handlers[type(op)](op)

    def _expect_put_object(self, op: PutObject) -> Expectation:
        try:
            build_record(op.mode, self.resolve(op.retain_for), now=self.clock())
        except RetentionError as e:
            return deny(e.reason)
        return ALLOW

    def _expect_delete_object(self, op: DeleteObject) -> Expectation:
        if op.label is None:
            return ALLOW
        version = self.state.find(self.key, op.label)
        # S3 answers success for a version id that no longer exists
        if version is None or version.is_delete_marker:
            return ALLOW
        try:
            check_delete(version, op.bypass, now=self.clock())
        except RetentionError as e:
            return deny(e.reason)
        return ALLOW

    def _expect_put_retention(self, op: PutRetention) -> Expectation:
        now = self.clock()
        version = self.version(op.label)
        if version.is_delete_marker:
            return deny(DenyReason.INVALID_RETENTION)
        current = version.retention
        if current is not None and not current.is_active(now):
            current = None

        if op.mode is RetentionMode.NONE:
            try:
                build_record(op.mode, self.resolve(op.retain_for), now=now)
            except RetentionError as e:
                return deny(e.reason)
            if current is None:
                return ALLOW
            try:
                clear(current, op.bypass, now=now)
            except RetentionError as e:
                return deny(e.reason)
            return ALLOW

        new_until = self.resolve(op.retain_for)
        try:
            build_record(op.mode, new_until, now=now)
        except RetentionError as e:
            return deny(e.reason)
        if current is None:
            return ALLOW

        if current.mode is RetentionMode.COMPLIANCE:
            if op.mode is not RetentionMode.COMPLIANCE:
                return deny(DenyReason.COMPLIANCE_IMMUTABLE)
        elif op.bypass:
            return ALLOW
        elif op.mode is not current.mode:
            return deny(DenyReason.GOVERNANCE_BYPASS_REQUIRED)

        try:
            extend(current, new_until)
        except RetentionError as e:
            return deny(e.reason)
        return ALLOW

    def _expect_get_retention(self, op: GetRetention) -> Expectation:
        version = self.version(op.label)
        if version.retention is None:
            return deny(DenyReason.NO_RETENTION_CONFIGURED)
        return Expectation(allowed=True, record=version.retention)

    def _expect_put_legal_hold(self, op: PutLegalHold) -> Expectation:
        if self.version(op.label).is_delete_marker:
            return deny(DenyReason.INVALID_RETENTION)
        return ALLOW

    def _expect_get_legal_hold(self, op: GetLegalHold) -> Expectation:
        version = self.version(op.label)
        if version.legal_hold is None:
            return deny(DenyReason.NO_RETENTION_CONFIGURED)
        return Expectation(allowed=True, legal_hold=version.legal_hold)

    def advance(self, op: Operation, payload: Optional[Dict[str, Any]] = None) -> None:
        """
        Move the model forward after an operation the server accepted.

        Refused operations leave the state untouched, so callers only invoke
        this for ALLOW outcomes.
        """
        payload = payload or {}
        if isinstance(op, PutObject):
            self.version_ids[op.label] = payload["version_id"]
            until = self.resolve(op.retain_for)
            retention = None
            if op.mode is not RetentionMode.NONE:
                retention = RetentionRecord(mode=op.mode, retain_until=until)
            self.state.add_version(
                self.key,
                ObjectVersion(
                    version_id=payload["version_id"],
                    label=op.label,
                    retention=retention,
                    legal_hold=True if op.legal_hold else None,
                ),
            )
        elif isinstance(op, DeleteObject):
            if op.label is None:
                if op.marker_label:
                    self.version_ids[op.marker_label] = payload["version_id"]
                self.state.add_version(
                    self.key,
                    ObjectVersion(
                        version_id=payload["version_id"],
                        label=op.marker_label,
                        is_delete_marker=True,
                    ),
                )
                return
            version = self.state.find(self.key, op.label)
            if version is not None:
                self.state.remove_version(self.key, version.version_id)
        elif isinstance(op, PutRetention):
            version = self.version(op.label)
            if op.mode is RetentionMode.NONE:
                version.retention = None
            else:
                version.retention = RetentionRecord(
                    mode=op.mode, retain_until=self.resolve(op.retain_for)
                )
        elif isinstance(op, PutLegalHold):
            self.version(op.label).legal_hold = op.on
