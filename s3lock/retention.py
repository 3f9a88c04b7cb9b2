"""
S3 Object Lock Retention Model

Pure data and rules for object-lock retention, with no I/O:

- Retention modes (GOVERNANCE / COMPLIANCE) and retain-until dates
- Extension-only updates of a retention period
- Clearing rules (GOVERNANCE with bypass, COMPLIANCE never before expiry)
- Versions, delete markers and legal holds inside a versioned bucket

Every function that depends on the current time takes an optional ``now``
so the rules can be evaluated against a controlled clock.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from s3lock.errors import (
    ComplianceImmutable,
    GovernanceBypassRequired,
    InvalidRetention,
    LegalHoldActive,
    RetentionNotExtended,
)


class RetentionMode(str, Enum):
    NONE = ""
    GOVERNANCE = "GOVERNANCE"
    COMPLIANCE = "COMPLIANCE"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RetentionMode":
        """Map a wire value (None, "", "GOVERNANCE", ...) to a mode"""
        if not value:
            return cls.NONE
        return cls(value.upper())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_to_second(value: datetime) -> datetime:
    """Servers keep retain-until dates at second precision"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


# --------------------------------------------------------------------------------------
# Data Model
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class RetentionRecord:
    """Lock mode plus retain-until date attached to one object version"""

    mode: RetentionMode = RetentionMode.NONE
    retain_until: Optional[datetime] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.mode is RetentionMode.NONE or self.retain_until is None:
            return False
        return (now or utcnow()) < self.retain_until

    def same_as(self, other: Optional["RetentionRecord"]) -> bool:
        """Compare two records the way a server reports them back"""
        if other is None:
            return False
        if self.mode is not other.mode:
            return False
        if self.retain_until is None or other.retain_until is None:
            return self.retain_until is other.retain_until
        return truncate_to_second(self.retain_until) == truncate_to_second(
            other.retain_until
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value or None,
            "retain_until": (
                self.retain_until.isoformat() if self.retain_until else None
            ),
        }


@dataclass
class ObjectVersion:
    version_id: str
    label: str = ""
    is_delete_marker: bool = False
    retention: Optional[RetentionRecord] = None
    legal_hold: Optional[bool] = None

    def is_protected(self, now: Optional[datetime] = None) -> bool:
        if self.is_delete_marker:
            return False
        if self.legal_hold:
            return True
        return self.retention is not None and self.retention.is_active(now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version_id": self.version_id,
            "label": self.label,
            "is_delete_marker": self.is_delete_marker,
            "retention": self.retention.to_dict() if self.retention else None,
            "legal_hold": self.legal_hold,
        }


@dataclass
class BucketState:
    """
    Model of a versioned bucket

    Versions are kept per key in creation order; the last entry is the
    current version. ``object_lock_enabled`` is fixed at creation.
    """

    name: str
    object_lock_enabled: bool = True
    versions: Dict[str, List[ObjectVersion]] = field(default_factory=dict)

    def add_version(self, key: str, version: ObjectVersion) -> ObjectVersion:
        self.versions.setdefault(key, []).append(version)
        return version

    def remove_version(self, key: str, version_id: str) -> Optional[ObjectVersion]:
        history = self.versions.get(key, [])
        for i, version in enumerate(history):
            if version.version_id == version_id:
                return history.pop(i)
        return None

    def find(self, key: str, ref: str) -> Optional[ObjectVersion]:
        """Look a version up by scenario label or by version id"""
        for version in self.versions.get(key, []):
            if ref in (version.label, version.version_id):
                return version
        return None

    def current(self, key: str) -> Optional[ObjectVersion]:
        history = self.versions.get(key)
        return history[-1] if history else None

    def all_versions(self) -> List[ObjectVersion]:
        return [v for history in self.versions.values() for v in history]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "object_lock_enabled": self.object_lock_enabled,
            "versions": {
                key: [v.to_dict() for v in history]
                for key, history in self.versions.items()
            },
        }


# --------------------------------------------------------------------------------------
# Transition rules
# --------------------------------------------------------------------------------------


def build_record(
    mode: RetentionMode,
    retain_until: Optional[datetime],
    now: Optional[datetime] = None,
) -> RetentionRecord:
    """
    Validate a mode/date pair and return the record it describes.

    Raises InvalidRetention when a locking mode has no date, when a date is
    given without a mode, or when the date is not strictly in the future.
    """
    now = now or utcnow()
    if mode is RetentionMode.NONE:
        if retain_until is not None:
            raise InvalidRetention("retain-until date given without a lock mode")
        return RetentionRecord()
    if retain_until is None:
        raise InvalidRetention(f"{mode.value} retention requires a retain-until date")
    if retain_until <= now:
        raise InvalidRetention(
            f"retain-until {retain_until.isoformat()} is not in the future"
        )
    return RetentionRecord(mode=mode, retain_until=retain_until)


def apply(
    version: ObjectVersion,
    mode: RetentionMode,
    retain_until: Optional[datetime],
    now: Optional[datetime] = None,
) -> RetentionRecord:
    """Construct a record and attach it to ``version``, replacing any prior one"""
    if version.is_delete_marker:
        raise InvalidRetention("delete markers cannot carry retention")
    record = build_record(mode, retain_until, now=now)
    version.retention = record if record.mode is not RetentionMode.NONE else None
    return record


def extend(record: RetentionRecord, new_until: datetime) -> RetentionRecord:
    """
    Push a retain-until date further out.

    Only strictly later dates are accepted; an equal or earlier date raises
    RetentionNotExtended. That is a date rule, not a permission failure.
    """
    if record.retain_until is None:
        raise InvalidRetention("record has no retain-until date to extend")
    if new_until <= record.retain_until:
        raise RetentionNotExtended(
            f"{new_until.isoformat()} does not extend "
            f"{record.retain_until.isoformat()}"
        )
    return dataclasses.replace(record, retain_until=new_until)


def clear(
    record: RetentionRecord, bypass: bool, now: Optional[datetime] = None
) -> None:
    """
    Check that ``record`` may be removed.

    Expired records clear naturally. An active GOVERNANCE record needs the
    bypass privilege. An active COMPLIANCE record cannot be cleared at all.
    """
    if not record.is_active(now):
        return
    if record.mode is RetentionMode.COMPLIANCE:
        raise ComplianceImmutable(
            f"COMPLIANCE retention holds until {record.retain_until.isoformat()}"
        )
    if not bypass:
        raise GovernanceBypassRequired(
            "GOVERNANCE retention requires BypassGovernanceRetention"
        )


def check_delete(
    version: ObjectVersion, bypass: bool, now: Optional[datetime] = None
) -> None:
    """
    Raise the rule a delete of this exact version would break, if any.

    Delete markers never carry protection. A legal hold refuses the delete
    regardless of bypass; otherwise the retention record decides.
    """
    if version.is_delete_marker:
        return
    if version.legal_hold:
        raise LegalHoldActive(f"legal hold is ON for version {version.version_id}")
    if version.retention is not None:
        clear(version.retention, bypass, now=now)
