"""Utility functions for tests.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

# built-in modules
import itertools
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

# project modules
from omicsengine.deployment.service_client import ServiceCallError, WorkflowServiceClient
from omicsengine.validation.base import BundleEntry, EntryRole, TaskResourceSpec, WorkflowBundle

ACCOUNT_ID = "123456789012"
REGION = "us-west-2"
ECR_HOST = f"{ACCOUNT_ID}.dkr.ecr.{REGION}.amazonaws.com"
ROLE_ARN = "arn:aws:iam::123456789012:role/OmicsWorkflowRole"

MAIN_WDL = """version 1.0

import "tasks/align.wdl" as align

workflow germline {
  input {
    File fastq
  }
  call align.bwa_mem { input: fastq = fastq }
}
"""

ALIGN_WDL = """version 1.0

import "../lib/common.wdl"

task bwa_mem {
  input {
    File fastq
  }
  command <<<
    bwa mem ref.fa ~{fastq} > out.sam
  >>>
  runtime {
    docker: "quay.io/biocontainers/bwa:0.7.17--h5bf99c6_8"
    cpu: 8
    memory: "32 GiB"
  }
  output {
    File sam = "out.sam"
  }
}
"""

COMMON_WDL = """version 1.0

struct Sample {
  String name
}
"""


def write_bundle(root: Path) -> Path:
    """Write a small valid WDL bundle under root."""
    files = {
        "main.wdl": MAIN_WDL,
        "tasks/align.wdl": ALIGN_WDL,
        "lib/common.wdl": COMMON_WDL,
        "README.md": "# germline\n",
        ".git/config": "[core]\n",
    }
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


def make_bundle(
    images=("quay.io/biocontainers/bwa:0.7.17--h5bf99c6_8",),
    tasks=None,
    entries=None,
) -> WorkflowBundle:
    """Build an in-memory bundle that passes validation by default."""
    if entries is None:
        entries = (
            BundleEntry("main.wdl", EntryRole.ENTRYPOINT, 200, ("tasks/align.wdl",)),
            BundleEntry("tasks/align.wdl", EntryRole.IMPORT, 300),
        )
    if tasks is None:
        tasks = (TaskResourceSpec("bwa_mem", cpu=8, memory_gib=32),)
    return WorkflowBundle(
        entries=tuple(entries),
        tasks=tuple(tasks),
        container_images=tuple(images),
        engine="WDL",
    )


class FakeServiceClient(WorkflowServiceClient):
    """In-memory service client.

    ``failures`` maps an operation name to a list of status codes; each call
    to that operation pops one and raises ServiceCallError with it (None
    meaning a timeout) until the list is empty.
    """

    def __init__(self, failures: Optional[Dict[str, List[Optional[int]]]] = None):
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.calls: List[Dict[str, Any]] = []
        self.version_status: Dict[tuple, Dict[str, Any]] = {}
        self.run_status: Dict[str, Dict[str, Any]] = {}
        self.logs: Dict[str, str] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _record(self, operation: str, **kwargs) -> None:
        with self._lock:
            self.calls.append(dict(operation=operation, **kwargs))
            pending = self.failures.get(operation)
            if pending:
                code = pending.pop(0)
                raise ServiceCallError(f"{operation} failed", status_code=code)

    def calls_for(self, operation: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["operation"] == operation]

    def create_workflow(self, workflow_id, *, timeout, **kwargs):
        self._record("create_workflow", workflow_id=workflow_id, timeout=timeout, **kwargs)
        return f"wf-{next(self._ids)}"

    def create_version(self, workflow_id, version_name, *, bundle_digest, container_images, timeout, **kwargs):
        self._record(
            "create_version",
            workflow_id=workflow_id,
            version_name=version_name,
            bundle_digest=bundle_digest,
            container_images=list(container_images),
            timeout=timeout,
        )
        return f"ver-{next(self._ids)}"

    def get_version_status(self, workflow_id, version_name, *, timeout):
        self._record("get_version_status", workflow_id=workflow_id, version_name=version_name, timeout=timeout)
        return self.version_status.get((workflow_id, version_name), {"status": "CREATING"})

    def start_run(self, workflow_id, version_name, *, role_arn, parameters, request_id, timeout, **kwargs):
        self._record(
            "start_run",
            workflow_id=workflow_id,
            version_name=version_name,
            role_arn=role_arn,
            parameters=parameters,
            request_id=request_id,
            timeout=timeout,
        )
        return f"run-{next(self._ids)}"

    def get_run_status(self, run_id, *, timeout):
        self._record("get_run_status", run_id=run_id, timeout=timeout)
        return self.run_status.get(run_id, {"status": "RUNNING"})

    def get_logs(self, run_id, task_name=None, *, timeout):
        self._record("get_logs", run_id=run_id, task_name=task_name, timeout=timeout)
        return self.logs.get(run_id, "")
