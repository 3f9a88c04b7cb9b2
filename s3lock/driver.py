"""
Test Driver

Runs object-lock scenarios against a live endpoint:

    INIT -> BUCKET_READY -> UPLOADING -> UPLOADED -> ASSERTING
         -> PASS | FAIL -> CLEANED_UP
    INIT -> SKIPPED -> CLEANED_UP          (endpoint lacks object lock)
    INIT -> FAIL                           (bucket creation failed)

Each operation is predicted by the oracle, executed through the storage
adapter and compared. The first mismatch fails the scenario. Once the bucket
exists, cleanup runs no matter how the scenario ends, and its problems are
reported next to the verdict without changing it.
"""

import functools
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from s3lock.config import HarnessSettings
from s3lock.errors import (
    AssertionMismatch,
    ScenarioTimeout,
    SetupError,
    UnsupportedFeature,
)
from s3lock.fixtures import TestFixture
from s3lock.log import get_logger, log_verdict, verdict_entry
from s3lock.oracle import (
    DeleteObject,
    GetLegalHold,
    GetRetention,
    Operation,
    Oracle,
    PutLegalHold,
    PutObject,
    PutRetention,
    describe,
)
from s3lock.retention import BucketState, RetentionMode, utcnow
from s3lock.s3_client import OperationResult, StorageAdapter

logger = get_logger("driver")

# Error codes an endpoint answers with when it has no object lock support
UNSUPPORTED_CODES = frozenset({"NotImplemented", "InvalidArgument"})

SMALL_BODY = b"content"


class Status(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SKIPPED = "SKIPPED"


class ScenarioState(str, Enum):
    INIT = "INIT"
    BUCKET_READY = "BUCKET_READY"
    UPLOADING = "UPLOADING"
    UPLOADED = "UPLOADED"
    ASSERTING = "ASSERTING"
    PASS = "PASS"
    FAIL = "FAIL"
    SKIPPED = "SKIPPED"
    CLEANED_UP = "CLEANED_UP"


@dataclass(frozen=True)
class Scenario:
    """Uploads to stage, then steps to assert, all against one key"""

    name: str
    uploads: Tuple[PutObject, ...]
    steps: Tuple[Operation, ...] = ()
    key: str = "testObject"
    description: str = ""

    def args(self) -> Dict[str, Any]:
        return {
            "objectName": self.key,
            "uploads": [describe(op) for op in self.uploads],
            "steps": [describe(op) for op in self.steps],
        }

    def compliance_horizon(self) -> Optional[timedelta]:
        """Longest COMPLIANCE retention any operation may leave behind"""
        offsets = [
            op.retain_for
            for op in self.uploads + self.steps
            if isinstance(op, (PutObject, PutRetention))
            and op.mode is RetentionMode.COMPLIANCE
            and op.retain_for is not None
        ]
        return max(offsets) if offsets else None


@dataclass
class Verdict:
    status: Status
    scenario: str
    detail: str = ""
    duration: float = 0.0
    args: Dict[str, Any] = field(default_factory=dict)
    cleanup_errors: List[str] = field(default_factory=list)
    states: List[ScenarioState] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status is Status.PASS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "status": self.status.value,
            "detail": self.detail,
            "duration": self.duration,
            "args": self.args,
            "cleanup_errors": self.cleanup_errors,
            "states": [s.value for s in self.states],
        }


class Driver:
    """Composes oracle and adapter into runnable scenarios"""

    def __init__(
        self,
        adapter: StorageAdapter,
        settings: Optional[HarnessSettings] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.adapter = adapter
        self.settings = settings or HarnessSettings()
        self.clock = clock
        self.sleep = sleep
        self.monotonic = monotonic

    def bind(self, scenario: Scenario) -> Callable[[], Verdict]:
        """The no-argument callable handed to entry points"""
        return functools.partial(self.run, scenario)

    def run(self, scenario: Scenario) -> Verdict:
        started = self.monotonic()
        deadline = started + self.settings.scenario_timeout
        fixture = TestFixture(self.adapter, self.settings, self.clock, self.sleep)
        bucket = fixture.generate_bucket_name(scenario.name)
        verdict = Verdict(
            status=Status.PASS,
            scenario=scenario.name,
            args={"bucketName": bucket, **scenario.args()},
        )
        self._enter(verdict, ScenarioState.INIT)

        try:
            self._create_bucket(bucket)
        except UnsupportedFeature as e:
            verdict.status, verdict.detail = Status.SKIPPED, str(e)
            self._enter(verdict, ScenarioState.SKIPPED)
            self._enter(verdict, ScenarioState.CLEANED_UP)
            return self._finish(verdict, started)
        except SetupError as e:
            verdict.status, verdict.detail = Status.FAIL, str(e)
            self._enter(verdict, ScenarioState.FAIL)
            return self._finish(verdict, started)

        fixture.track(bucket)
        self._enter(verdict, ScenarioState.BUCKET_READY)
        oracle = Oracle(BucketState(name=bucket), scenario.key, clock=self.clock)

        try:
            self._enter(verdict, ScenarioState.UPLOADING)
            for op in scenario.uploads:
                self._execute(oracle, op, deadline)
            self._enter(verdict, ScenarioState.UPLOADED)

            self._enter(verdict, ScenarioState.ASSERTING)
            for op in scenario.steps:
                self._execute(oracle, op, deadline)
            self._enter(verdict, ScenarioState.PASS)
        except (AssertionMismatch, ScenarioTimeout) as e:
            verdict.status, verdict.detail = Status.FAIL, str(e)
            if isinstance(e, AssertionMismatch):
                verdict.args["state"] = e.state
            self._enter(verdict, ScenarioState.FAIL)
        except Exception as e:
            logger.exception("%s: unexpected error", scenario.name)
            verdict.status = Status.FAIL
            verdict.detail = f"{type(e).__name__}: {e}"
            self._enter(verdict, ScenarioState.FAIL)
        finally:
            horizon = scenario.compliance_horizon()
            until = oracle.anchor + horizon if horizon is not None else None
            verdict.cleanup_errors = fixture.cleanup(compliance_until=until)
            self._enter(verdict, ScenarioState.CLEANED_UP)

        return self._finish(verdict, started)

    def _enter(self, verdict: Verdict, state: ScenarioState) -> None:
        verdict.states.append(state)
        logger.debug("%s -> %s", verdict.scenario, state.value)

    def _finish(self, verdict: Verdict, started: float) -> Verdict:
        verdict.duration = self.monotonic() - started
        entry = verdict_entry(
            function=verdict.scenario,
            args=verdict.args,
            status=verdict.status.value,
            duration=verdict.duration,
            message=verdict.detail,
            error="; ".join(verdict.cleanup_errors),
        )
        log_verdict(logger, entry)
        return verdict

    def _create_bucket(self, bucket: str) -> None:
        result = self.adapter.create_bucket(bucket, object_lock=True)
        if result.ok:
            return
        if result.status == 501 or result.error_code in UNSUPPORTED_CODES:
            raise UnsupportedFeature(
                f"Object lock is not implemented: {result.describe()}"
            )
        raise SetupError(f"CreateBucket {bucket} failed: {result.describe()}")

    def _execute(self, oracle: Oracle, op: Operation, deadline: float) -> None:
        budget = self.settings.scenario_timeout
        if self.monotonic() > deadline:
            raise ScenarioTimeout(f"{describe(op)} not started within {budget:.0f}s")

        expected = oracle.expect(op)
        result = self._perform(oracle, op)
        if self.monotonic() > deadline:
            raise ScenarioTimeout(f"{describe(op)} did not finish within {budget:.0f}s")

        mismatch = expected.check(result, strict_codes=self.settings.strict_error_codes)
        if mismatch is None and expected.allowed and _creates_version(op):
            if not result.payload.get("version_id"):
                mismatch = "success without a VersionId"
        if mismatch is not None:
            raise AssertionMismatch(
                describe(op), expected.describe(), mismatch, state=oracle.state.to_dict()
            )

        logger.debug("%s: %s as expected", describe(op), expected)
        if expected.allowed:
            oracle.advance(op, result.payload)

    def _perform(self, oracle: Oracle, op: Operation) -> OperationResult:
        adapter = self.adapter
        bucket, key = oracle.state.name, oracle.key

        if isinstance(op, PutObject):
            until = oracle.resolve(op.retain_for)
            legal_hold = True if op.legal_hold else None
            if op.multipart:
                data = TestFixture.generate_random_data(
                    op.size or self.settings.multipart_size
                )
                return adapter.upload_multipart(
                    bucket, key, data,
                    part_size=self.settings.part_size,
                    lock_mode=op.mode, retain_until=until, legal_hold=legal_hold,
                )
            body = SMALL_BODY if op.size is None else TestFixture.generate_random_data(op.size)
            return adapter.put_object(
                bucket, key, body,
                lock_mode=op.mode, retain_until=until, legal_hold=legal_hold,
            )

        if isinstance(op, DeleteObject):
            version_id = oracle.version_id(op.label) if op.label else None
            return adapter.delete_object(
                bucket, key, version_id=version_id, bypass_governance=op.bypass
            )

        version_id = oracle.version(op.label).version_id
        if isinstance(op, PutRetention):
            return adapter.put_object_retention(
                bucket, key, version_id, op.mode,
                retain_until=oracle.resolve(op.retain_for),
                bypass_governance=op.bypass,
            )
        if isinstance(op, GetRetention):
            return adapter.get_object_retention(bucket, key, version_id)
        if isinstance(op, PutLegalHold):
            return adapter.put_object_legal_hold(bucket, key, version_id, op.on)
        if isinstance(op, GetLegalHold):
            return adapter.get_object_legal_hold(bucket, key, version_id)
        raise TypeError(f"unsupported operation {op!r}")


def _creates_version(op: Operation) -> bool:
    return isinstance(op, PutObject) or (
        isinstance(op, DeleteObject) and op.label is None
    )
