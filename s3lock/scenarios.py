"""
Object-lock scenario catalog

Each scenario stages versions of one key and then walks a fixed sequence of
deletes and retention changes. Expected outcomes are not written down here;
the oracle derives them from the model as the scenario runs.
"""

from datetime import timedelta
from typing import Dict, List

from s3lock.driver import Scenario
from s3lock.oracle import (
    DeleteObject,
    GetLegalHold,
    GetRetention,
    PutLegalHold,
    PutObject,
    PutRetention,
)
from s3lock.retention import RetentionMode

GOVERNANCE = RetentionMode.GOVERNANCE
COMPLIANCE = RetentionMode.COMPLIANCE
CLEAR = RetentionMode.NONE

ONE_MINUTE = timedelta(minutes=1)
TWO_MINUTES = timedelta(minutes=2)
ONE_HOUR = timedelta(hours=1)


def _locked_versions(name: str, mode: RetentionMode, retain_for: timedelta) -> Scenario:
    """
    Three versions (plain, locked, plain) plus a delete marker.

    The unversioned delete always succeeds because it only adds a marker.
    Deleting the locked version by id is refused; the plain versions and the
    marker go away.
    """
    return Scenario(
        name=name,
        uploads=(
            PutObject("v1"),
            PutObject("v2", mode=mode, retain_for=retain_for),
            PutObject("v3"),
        ),
        steps=(
            DeleteObject(marker_label="marker"),
            DeleteObject("v1"),
            DeleteObject("v2"),
            DeleteObject("v3"),
            DeleteObject("marker"),
        ),
        description=f"versioned deletes next to a {mode.value} version",
    )


def _put_get_retention(name: str, mode: RetentionMode) -> Scenario:
    """
    Extend, read back, reduce and clear the retention of one version.

    Reducing the date is refused for a date reason, not a permission
    reason. Clearing without bypass is refused in both modes; with bypass
    it succeeds for GOVERNANCE only.
    """
    return Scenario(
        name=name,
        uploads=(PutObject("v1", mode=mode, retain_for=ONE_MINUTE),),
        steps=(
            PutRetention("v1", mode=mode, retain_for=TWO_MINUTES),
            GetRetention("v1"),
            GetRetention("v1"),
            PutRetention("v1", mode=mode, retain_for=ONE_MINUTE),
            PutRetention("v1", mode=CLEAR),
            PutRetention("v1", mode=CLEAR, bypass=True),
        ),
        description=f"{mode.value} retention extension and reduction rules",
    )


def _catalog() -> List[Scenario]:
    return [
        _locked_versions("locking_retention_governance", GOVERNANCE, ONE_HOUR),
        Scenario(
            name="locking_retention_governance_multipart",
            uploads=(
                PutObject("v1", mode=GOVERNANCE, retain_for=ONE_HOUR, multipart=True),
            ),
            steps=(GetRetention("v1"),),
            description="multipart upload keeps the lock given at create time",
        ),
        _locked_versions("locking_retention_compliance", COMPLIANCE, ONE_MINUTE),
        _put_get_retention("put_get_delete_retention_governance", GOVERNANCE),
        _put_get_retention("put_get_retention_compliance", COMPLIANCE),
        Scenario(
            name="delete_marker_always_removable",
            uploads=(
                PutObject("governed", mode=GOVERNANCE, retain_for=ONE_HOUR),
                PutObject("held", legal_hold=True),
            ),
            steps=(
                DeleteObject(marker_label="marker"),
                DeleteObject("governed"),
                DeleteObject("held"),
                DeleteObject("marker"),
                PutLegalHold("held", on=False),
                DeleteObject("held"),
                DeleteObject("governed", bypass=True),
            ),
            description="delete markers ignore the protection of sibling versions",
        ),
        Scenario(
            name="governance_bypass_delete",
            uploads=(PutObject("v1", mode=GOVERNANCE, retain_for=ONE_HOUR),),
            steps=(
                DeleteObject("v1"),
                PutRetention("v1", mode=GOVERNANCE, retain_for=ONE_MINUTE),
                PutRetention("v1", mode=COMPLIANCE, retain_for=ONE_HOUR),
                DeleteObject("v1", bypass=True),
            ),
            description="BypassGovernanceRetention lifts GOVERNANCE protection",
        ),
        Scenario(
            name="legal_hold_blocks_delete",
            uploads=(PutObject("v1"),),
            steps=(
                GetLegalHold("v1"),
                PutLegalHold("v1", on=True),
                GetLegalHold("v1"),
                DeleteObject("v1", bypass=True),
                PutLegalHold("v1", on=False),
                GetLegalHold("v1"),
                DeleteObject("v1"),
            ),
            description="a legal hold refuses deletes even with bypass",
        ),
    ]


SCENARIOS: Dict[str, Scenario] = {s.name: s for s in _catalog()}


def all_scenarios() -> List[Scenario]:
    return list(SCENARIOS.values())


def get_scenario(name: str) -> Scenario:
    try:
        return SCENARIOS[name]
    except KeyError:
        raise KeyError(
            f"Unknown scenario '{name}'; available: {', '.join(SCENARIOS)}"
        ) from None
