#!/usr/bin/env python3
"""
Resource declaration auditing.

Checks every task's declared CPU and memory against service bounds. The
auditor reports, it never fixes: out-of-bound values are findings, not
clamped values. Adding defaults is a separate, explicit step
(apply_resource_defaults) whose changes are returned for review.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import dataclasses
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from omicsengine.validation.base import ResourceBounds, TaskResourceSpec, check_cancelled


class AuditFindingKind(Enum):
    """Resource violations."""

    MISSING = "Missing"
    BELOW_MINIMUM = "BelowMinimum"
    ABOVE_MAXIMUM = "AboveMaximum"


BLOCKING_AUDIT_KINDS = frozenset(AuditFindingKind)


@dataclass(frozen=True)
class AuditFinding:
    """A single resource violation for one task and field."""

    task_name: str
    kind: AuditFindingKind
    field: Optional[str] = None
    value: Optional[float] = None
    bound: Optional[float] = None

    @property
    def message(self) -> str:
        if self.kind == AuditFindingKind.MISSING:
            if self.field:
                return f"Task '{self.task_name}' does not declare {self.field}"
            return f"Task '{self.task_name}' declares no resources"
        relation = "below minimum" if self.kind == AuditFindingKind.BELOW_MINIMUM else "above maximum"
        return f"Task '{self.task_name}' {self.field}={self.value:g} is {relation} {self.bound:g}"


@dataclass(frozen=True)
class ResourceChange:
    """One default applied by apply_resource_defaults."""

    task_name: str
    field: str
    old_value: Optional[float]
    new_value: float


def _check_field(
    task: TaskResourceSpec,
    field: str,
    value: Optional[float],
    minimum: float,
    maximum: float,
) -> Optional[AuditFinding]:
    if value is None:
        return AuditFinding(task.task_name, AuditFindingKind.MISSING, field)
    if value < minimum:
        return AuditFinding(task.task_name, AuditFindingKind.BELOW_MINIMUM, field, value, minimum)
    if value > maximum:
        return AuditFinding(task.task_name, AuditFindingKind.ABOVE_MAXIMUM, field, value, maximum)
    return None


def audit(
    tasks: Iterable[TaskResourceSpec],
    bounds: ResourceBounds = ResourceBounds(),
    cancel_event: Optional[threading.Event] = None,
) -> List[AuditFinding]:
    """
    Audit task resource declarations.

    Args:
        tasks: Task resource specs; never mutated
        bounds: Service minimum and maximum values
        cancel_event: Checked between tasks

    Returns:
        Findings in task order, cpu before memory
    """
    findings: List[AuditFinding] = []

    for task in tasks:
        check_cancelled(cancel_event, "Resource audit")

        if not task.declared:
            findings.append(AuditFinding(task.task_name, AuditFindingKind.MISSING))
            continue

        for field, value, minimum, maximum in (
            ("cpu", task.cpu, bounds.min_cpu, bounds.max_cpu),
            ("memory_gib", task.memory_gib, bounds.min_memory_gib, bounds.max_memory_gib),
        ):
            finding = _check_field(task, field, value, minimum, maximum)
            if finding is not None:
                findings.append(finding)

    return findings


def has_blocking_findings(findings: Iterable[AuditFinding]) -> bool:
    return any(f.kind in BLOCKING_AUDIT_KINDS for f in findings)


def apply_resource_defaults(
    tasks: Iterable[TaskResourceSpec],
    cpu: float,
    memory_gib: float,
) -> Tuple[List[TaskResourceSpec], List[ResourceChange]]:
    """
    Fill in missing CPU/memory declarations with explicit defaults.

    Only absent values are filled; declared values, even out-of-bound ones,
    are left for the author to correct.

    Returns:
        (new task specs, list of changes applied)
    """
    updated: List[TaskResourceSpec] = []
    changes: List[ResourceChange] = []

    for task in tasks:
        new_cpu = task.cpu
        new_memory = task.memory_gib
        if not task.declared or task.cpu is None:
            new_cpu = cpu
            changes.append(ResourceChange(task.task_name, "cpu", task.cpu, cpu))
        if not task.declared or task.memory_gib is None:
            new_memory = memory_gib
            changes.append(ResourceChange(task.task_name, "memory_gib", task.memory_gib, memory_gib))
        updated.append(
            dataclasses.replace(task, cpu=new_cpu, memory_gib=new_memory, declared=True)
        )

    return updated, changes
