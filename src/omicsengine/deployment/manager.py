#!/usr/bin/env python3
"""
Deployment Manager - owns the versioned lifecycle of named workflows.

Versions live in a table keyed by (workflow_id, version_name). Creation is
serialized per workflow and uses compare-and-insert, so concurrent attempts
for one key yield exactly one success. A version starts PENDING and moves
once to ACTIVE or FAILED; terminal versions are never reopened or retried,
a corrected bundle always needs a new version name.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import dataclasses
import logging
import threading
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from omicsengine.config.loader import EngineConfig
from omicsengine.core.errors import (
    ConfigurationError,
    DeploymentError,
    DuplicateVersionError,
    StateTransitionError,
    ValidationFailedError,
    VersionNotFoundError,
    create_error_context,
)
from omicsengine.core.registry import RegistryMapSet, resolve_all
from omicsengine.deployment.base import (
    RunRecord,
    StateRecord,
    VersionState,
    WorkflowVersion,
    semver_key,
    utc_now,
    validate_version_name,
)
from omicsengine.deployment.service_client import (
    ServiceCallError,
    WorkflowServiceClient,
    translate_service_error,
)
from omicsengine.deployment.state_store import VersionStateStore
from omicsengine.diagnostics.classifier import Diagnosis, RunFailure, StatusClass, classify, parse_code
from omicsengine.utils.retry import call_with_retry
from omicsengine.validation.base import WorkflowBundle
from omicsengine.validation.bundle_validator import ValidationReport, validate
from omicsengine.validation.parameters import validate_parameters
from omicsengine.validation.resource_auditor import AuditFinding, audit, has_blocking_findings


logger = logging.getLogger(__name__)

_SERVICE_STATES = {"ACTIVE": VersionState.ACTIVE, "FAILED": VersionState.FAILED}


class DeploymentManager:
    """
    Versioned deployment state machine.

    Args:
        config: Engine configuration (bounds, bundle ceiling, retry policy)
        client: Service client; required only for service operations
        map_set: Registry mappings used to resolve container images
        store: Optional persistence for the version table; defaults to a
            VersionStateStore on config.state_file when that is set
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        client: Optional[WorkflowServiceClient] = None,
        map_set: Optional[RegistryMapSet] = None,
        store: Optional[VersionStateStore] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.config = config or EngineConfig()
        self.client = client
        self.map_set = map_set or RegistryMapSet()
        if store is None and self.config.state_file:
            store = VersionStateStore(self.config.state_file)
        self.store = store
        self._sleep = sleep

        self._versions: Dict[Tuple[str, str], WorkflowVersion] = {}
        self._history: List[StateRecord] = []
        self._runs: Dict[str, RunRecord] = {}
        self._table_lock = threading.Lock()
        self._workflow_locks: Dict[str, threading.Lock] = {}

        if self.store is not None:
            versions, history = self.store.load()
            self._versions = {v.key: v for v in versions}
            self._history = list(history)
            logger.debug("Loaded %d version(s) from %s", len(versions), self.store.path)

    # ------------------------------------------------------------------
    # Version table
    # ------------------------------------------------------------------

    def _workflow_lock(self, workflow_id: str) -> threading.Lock:
        with self._table_lock:
            return self._workflow_locks.setdefault(workflow_id, threading.Lock())

    def _persist(self) -> None:
        # Caller holds _table_lock.
        if self.store is not None:
            self.store.save(self._versions.values(), self._history)

    def _commit(self, version: WorkflowVersion, record: Optional[StateRecord] = None) -> None:
        # Caller holds _table_lock. The table is rolled back if persisting fails,
        # so memory never holds a version the store does not.
        previous = self._versions.get(version.key)
        self._versions[version.key] = version
        if record is not None:
            self._history.append(record)
        try:
            self._persist()
        except Exception:
            if previous is None:
                del self._versions[version.key]
            else:
                self._versions[version.key] = previous
            if record is not None:
                self._history.pop()
            logger.error("Failed to persist %s %s; change rolled back", *version.key)
            raise

    def _put(self, version: WorkflowVersion, record: Optional[StateRecord] = None) -> None:
        with self._table_lock:
            self._commit(version, record)

    def get_version(self, workflow_id: str, version_name: str) -> WorkflowVersion:
        with self._table_lock:
            version = self._versions.get((workflow_id, version_name))
        if version is None:
            raise VersionNotFoundError(workflow_id, version_name)
        return version

    def has_version(self, workflow_id: str, version_name: str) -> bool:
        with self._table_lock:
            return (workflow_id, version_name) in self._versions

    def list_versions(self, workflow_id: str) -> List[WorkflowVersion]:
        """Versions of a workflow in semantic-version order."""
        with self._table_lock:
            versions = [v for (wid, _), v in self._versions.items() if wid == workflow_id]
        return sorted(versions, key=lambda v: semver_key(v.version_name))

    def history(self, workflow_id: Optional[str] = None, version_name: Optional[str] = None) -> List[StateRecord]:
        with self._table_lock:
            records = list(self._history)
        return [
            r for r in records
            if (workflow_id is None or r.workflow_id == workflow_id)
            and (version_name is None or r.version_name == version_name)
        ]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def validate_bundle(
        self,
        bundle: WorkflowBundle,
        cancel_event: Optional[threading.Event] = None,
    ) -> Tuple[ValidationReport, List[AuditFinding]]:
        """Run the bundle validator and resource auditor on a bundle."""
        report = validate(bundle.entries, self.config.max_bundle_bytes, cancel_event=cancel_event)
        findings = audit(bundle.tasks, self.config.bounds, cancel_event=cancel_event)
        return report, findings

    def create_version(
        self,
        workflow_id: str,
        version_name: str,
        bundle: WorkflowBundle,
        cancel_event: Optional[threading.Event] = None,
    ) -> WorkflowVersion:
        """
        Create a PENDING version from a validated bundle.

        Args:
            workflow_id: Workflow identifier
            version_name: Semantic version string
            bundle: Candidate bundle
            cancel_event: Cancels validation between entries/tasks

        Returns:
            The new WorkflowVersion

        Raises:
            InvalidVersionNameError: version_name is not a semantic version
            DuplicateVersionError: (workflow_id, version_name) already exists
            ValidationFailedError: Blocking validator or auditor findings
            UnresolvedReferenceError: Strict resolution and an image matched no mapping
        """
        if not workflow_id:
            raise ConfigurationError("workflow_id must not be empty")
        validate_version_name(version_name)

        if self.has_version(workflow_id, version_name):
            raise DuplicateVersionError(workflow_id, version_name)

        report, findings = self.validate_bundle(bundle, cancel_event=cancel_event)
        if not report.is_valid or has_blocking_findings(findings):
            problems = [f.kind.value for f in report.findings] + [f.kind.value for f in findings]
            raise ValidationFailedError(
                f"Bundle for {workflow_id} {version_name} failed validation: "
                + ", ".join(sorted(set(problems))),
                report=report,
                findings=findings,
                context=create_error_context(
                    operation="create_version",
                    component="DeploymentManager",
                    workflow_id=workflow_id,
                    version_name=version_name,
                ),
            )

        resolution = resolve_all(
            bundle.container_images, self.map_set, require_all=self.config.strict_resolution
        )

        with self._workflow_lock(workflow_id):
            with self._table_lock:
                if (workflow_id, version_name) in self._versions:
                    raise DuplicateVersionError(workflow_id, version_name)

                version = WorkflowVersion(
                    workflow_id=workflow_id,
                    version_name=version_name,
                    bundle_digest=bundle.digest,
                    engine=bundle.engine,
                    resolved_images=tuple(
                        (r.reference.raw or r.reference.canonical, r.uri) for r in resolution.resolved
                    ),
                    flagged_images=tuple(
                        r.reference.raw or r.reference.canonical for r in resolution.flagged
                    ),
                )
                self._commit(version, StateRecord(workflow_id, version_name, VersionState.PENDING))

        logger.info("Created version %s of workflow %s (PENDING)", version_name, workflow_id)
        return version

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        workflow_id: str,
        version_name: str,
        target: VersionState,
        reason: Optional[str] = None,
    ) -> WorkflowVersion:
        with self._workflow_lock(workflow_id):
            current = self.get_version(workflow_id, version_name)

            if current.state == target:
                return current
            if current.state != VersionState.PENDING or target == VersionState.PENDING:
                raise StateTransitionError(
                    current.state.value,
                    target.value,
                    context=create_error_context(
                        operation="transition",
                        workflow_id=workflow_id,
                        version_name=version_name,
                    ),
                )

            updated = dataclasses.replace(
                current, state=target, failure_reason=reason, updated_at=utc_now()
            )
            self._put(updated, StateRecord(workflow_id, version_name, target, reason=reason))

        logger.info("Version %s of workflow %s is now %s", version_name, workflow_id, target.value)
        return updated

    def mark_active(self, workflow_id: str, version_name: str) -> WorkflowVersion:
        """Record a successful build/registration. Idempotent."""
        return self._transition(workflow_id, version_name, VersionState.ACTIVE)

    def promote(self, workflow_id: str, version_name: str) -> WorkflowVersion:
        """Alias of mark_active."""
        return self.mark_active(workflow_id, version_name)

    def mark_failed(self, workflow_id: str, version_name: str, reason: Optional[str] = None) -> WorkflowVersion:
        """Record a build error. Idempotent; the version is never retried."""
        return self._transition(workflow_id, version_name, VersionState.FAILED, reason)

    # ------------------------------------------------------------------
    # Service operations
    # ------------------------------------------------------------------

    def _require_client(self) -> WorkflowServiceClient:
        if self.client is None:
            raise ConfigurationError("No workflow service client configured")
        return self.client

    def _call_service(self, operation: str, func: Callable, *args, **kwargs):
        def invoke():
            try:
                return func(*args, timeout=self.config.service_timeout, **kwargs)
            except ServiceCallError as e:
                raise translate_service_error(e, operation)

        retry_kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        return call_with_retry(
            invoke, policy=self.config.retry_policy, operation=operation, **retry_kwargs
        )

    def register_workflow(self, workflow_id: str, **kwargs) -> str:
        """Create the workflow on the service; returns the service id."""
        client = self._require_client()
        return self._call_service("create_workflow", client.create_workflow, workflow_id, **kwargs)

    def submit_version(self, workflow_id: str, version_name: str) -> WorkflowVersion:
        """
        Register a PENDING version with the service.

        Already-submitted versions are returned unchanged.
        """
        client = self._require_client()
        version = self.get_version(workflow_id, version_name)
        if version.service_version_id is not None:
            return version
        if version.state != VersionState.PENDING:
            raise StateTransitionError(version.state.value, "SUBMITTED")

        service_id = self._call_service(
            "create_version",
            client.create_version,
            workflow_id,
            version_name,
            bundle_digest=version.bundle_digest,
            container_images=[uri for _, uri in version.resolved_images],
        )

        with self._workflow_lock(workflow_id):
            current = self.get_version(workflow_id, version_name)
            updated = dataclasses.replace(current, service_version_id=service_id, updated_at=utc_now())
            self._put(updated)

        logger.info("Submitted version %s of workflow %s as %s", version_name, workflow_id, service_id)
        return updated

    def refresh_version(self, workflow_id: str, version_name: str) -> WorkflowVersion:
        """Poll the service once and apply a reported terminal state."""
        client = self._require_client()
        version = self.get_version(workflow_id, version_name)
        if version.is_terminal:
            return version

        status = self._call_service(
            "get_version_status", client.get_version_status, workflow_id, version_name
        )
        target = _SERVICE_STATES.get(str(status.get("status", "")).upper())
        if target == VersionState.ACTIVE:
            return self.mark_active(workflow_id, version_name)
        if target == VersionState.FAILED:
            return self.mark_failed(workflow_id, version_name, status.get("reason"))
        return version

    def start_run(
        self,
        workflow_id: str,
        version_name: str,
        role_arn: str,
        parameters: Dict[str, Any],
        workflow_name: Optional[str] = None,
        declared_parameters: Optional[Iterable[str]] = None,
        **kwargs,
    ) -> RunRecord:
        """
        Start a run of an ACTIVE version.

        Raises:
            DeploymentError: If the version is not ACTIVE
            ValidationFailedError: If the parameter document has findings
        """
        client = self._require_client()
        version = self.get_version(workflow_id, version_name)
        if version.state != VersionState.ACTIVE:
            raise DeploymentError(
                f"Version {version_name} of workflow {workflow_id} is {version.state.value}, not ACTIVE"
            )
        if not role_arn:
            raise ConfigurationError("A service role ARN is required to start a run")

        findings = validate_parameters(parameters, workflow_name, declared_parameters)
        if findings:
            raise ValidationFailedError(
                "Parameter document failed validation: "
                + ", ".join(f"{f.kind.value}({f.name})" for f in findings),
                findings=findings,
            )

        request_id = str(uuid.uuid4())
        run_id = self._call_service(
            "start_run",
            client.start_run,
            workflow_id,
            version_name,
            role_arn=role_arn,
            parameters=dict(parameters),
            request_id=request_id,
            **kwargs,
        )

        record = RunRecord(
            run_id=run_id,
            workflow_id=workflow_id,
            version_name=version_name,
            role_arn=role_arn,
            parameters=dict(parameters),
            request_id=request_id,
        )
        with self._table_lock:
            self._runs[run_id] = record
        logger.info("Started run %s of %s %s with role %s", run_id, workflow_id, version_name, role_arn)
        return record

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        with self._table_lock:
            return self._runs.get(run_id)

    def fetch_run_failure(self, run_id: str) -> RunFailure:
        """Build a RunFailure from the service's run status and logs."""
        client = self._require_client()
        status = self._call_service("get_run_status", client.get_run_status, run_id)
        if str(status.get("status", "")).upper() != "FAILED":
            raise DeploymentError(f"Run {run_id} has not failed (status {status.get('status')})")

        task_name = status.get("failedTask")
        failure_class = status.get("failureClass")
        excerpt = self._call_service("get_logs", client.get_logs, run_id, task_name)

        raw_code = status.get("statusCode")
        status_code = parse_code(raw_code)
        if raw_code is not None and status_code is None:
            # Unparsable code: drop every status signal so the run classifies as Unknown.
            failure_class = None

        return RunFailure(
            status_class=StatusClass(failure_class) if failure_class in ("SERVICE", "CUSTOMER") else None,
            status_code=status_code,
            log_refs=tuple(status.get("logRefs") or ()),
            task_name=task_name,
            exit_code=parse_code(status.get("exitCode")),
            log_excerpt=excerpt,
            run_id=run_id,
        )

    def diagnose_run(self, run_id: str) -> Diagnosis:
        """Fetch a failed run's telemetry and classify it."""
        diagnosis = classify(self.fetch_run_failure(run_id))
        logger.info(
            "Run %s: %s (retryable=%s)", run_id, diagnosis.category.value, diagnosis.retryable
        )
        return diagnosis
