"""
Error taxonomy for the object-lock harness

Two families live here:

- Retention rule errors, raised by the pure model in ``s3lock.retention``
  when an operation violates object-lock semantics. Each carries the
  ``DenyReason`` the oracle reports for it.
- Harness errors, raised by the driver while running a scenario against a
  live endpoint. They decide the verdict (FAIL or SKIPPED).
"""

from enum import Enum
from typing import Any, Dict, Optional


class DenyReason(str, Enum):
    """Why an operation is expected to be refused by the server"""

    GOVERNANCE_BYPASS_REQUIRED = "GovernanceBypassRequired"
    COMPLIANCE_IMMUTABLE = "ComplianceImmutable"
    RETENTION_NOT_EXTENDED = "RetentionNotExtended"
    INVALID_RETENTION = "InvalidRetention"
    LEGAL_HOLD_ACTIVE = "LegalHoldActive"
    NO_RETENTION_CONFIGURED = "NoRetentionConfigured"


# Retention rule errors


class RetentionError(Exception):
    """Base class for object-lock rule violations"""

    reason: DenyReason = DenyReason.INVALID_RETENTION

    def __init__(self, message: str = ""):
        super().__init__(message or self.reason.value)


class InvalidRetention(RetentionError):
    reason = DenyReason.INVALID_RETENTION


class RetentionNotExtended(RetentionError):
    reason = DenyReason.RETENTION_NOT_EXTENDED


class GovernanceBypassRequired(RetentionError):
    reason = DenyReason.GOVERNANCE_BYPASS_REQUIRED


class ComplianceImmutable(RetentionError):
    reason = DenyReason.COMPLIANCE_IMMUTABLE


class LegalHoldActive(RetentionError):
    reason = DenyReason.LEGAL_HOLD_ACTIVE


# Harness errors


class HarnessError(Exception):
    """Base class for errors raised while running a scenario"""


class SetupError(HarnessError):
    """Bucket creation failed for a reason other than missing object lock"""


class UnsupportedFeature(HarnessError):
    """The endpoint does not implement object lock / versioning"""


class ScenarioTimeout(HarnessError):
    """The scenario ran past its wall-clock budget"""


class AssertionMismatch(HarnessError):
    """
    Observed outcome differs from the oracle's prediction

    Keeps enough context to diagnose the failure without re-running:
    the operation, what was expected, what actually happened and a
    snapshot of the model state at the time.
    """

    def __init__(
        self,
        operation: str,
        expected: str,
        actual: str,
        state: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation
        self.expected = expected
        self.actual = actual
        self.state = state or {}
        super().__init__(
            f"{operation}: expected {expected}, got {actual}"
        )
