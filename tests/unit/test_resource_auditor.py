#!/usr/bin/env python3
"""
Unit tests for the task resource auditor.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import threading

import pytest

from omicsengine.core.errors import OperationCancelledError
from omicsengine.validation import (
    AuditFindingKind,
    ResourceBounds,
    TaskResourceSpec,
    apply_resource_defaults,
    audit,
    has_blocking_findings,
)

BOUNDS = ResourceBounds(min_cpu=2, max_cpu=96, min_memory_gib=4, max_memory_gib=768)


@pytest.mark.unit
class TestAudit:
    """Test bound checks on declared resources."""

    def test_task_within_bounds(self):
        assert audit([TaskResourceSpec("align", cpu=8, memory_gib=32)], BOUNDS) == []

    def test_bounds_are_inclusive(self):
        tasks = [
            TaskResourceSpec("low", cpu=2, memory_gib=4),
            TaskResourceSpec("high", cpu=96, memory_gib=768),
        ]

        assert audit(tasks, BOUNDS) == []

    def test_undeclared_task_is_missing(self):
        findings = audit([TaskResourceSpec("qc", declared=False)], BOUNDS)

        assert len(findings) == 1
        assert findings[0].kind == AuditFindingKind.MISSING
        assert findings[0].field is None
        assert "declares no resources" in findings[0].message

    def test_declared_task_missing_one_field(self):
        findings = audit([TaskResourceSpec("qc", cpu=4)], BOUNDS)

        assert [(f.kind, f.field) for f in findings] == [(AuditFindingKind.MISSING, "memory_gib")]

    def test_below_minimum(self):
        findings = audit([TaskResourceSpec("sort", cpu=1, memory_gib=8)], BOUNDS)

        assert findings[0].kind == AuditFindingKind.BELOW_MINIMUM
        assert findings[0].field == "cpu"
        assert findings[0].value == 1
        assert findings[0].bound == 2

    def test_above_maximum_is_not_clamped(self):
        task = TaskResourceSpec("call", cpu=8, memory_gib=1024)

        findings = audit([task], BOUNDS)

        assert findings[0].kind == AuditFindingKind.ABOVE_MAXIMUM
        assert findings[0].value == 1024
        assert findings[0].bound == 768
        assert task.memory_gib == 1024

    def test_findings_for_every_task_in_order(self):
        findings = audit(
            [
                TaskResourceSpec("a", cpu=1, memory_gib=1),
                TaskResourceSpec("b", cpu=8, memory_gib=8),
                TaskResourceSpec("c", declared=False),
            ],
            BOUNDS,
        )

        assert [(f.task_name, f.field) for f in findings] == [
            ("a", "cpu"),
            ("a", "memory_gib"),
            ("c", None),
        ]

    def test_message_mentions_value_and_bound(self):
        finding = audit([TaskResourceSpec("call", cpu=128, memory_gib=8)], BOUNDS)[0]

        assert finding.message == "Task 'call' cpu=128 is above maximum 96"

    def test_custom_bounds(self):
        bounds = ResourceBounds(min_cpu=1, max_cpu=4, min_memory_gib=1, max_memory_gib=8)

        assert audit([TaskResourceSpec("t", cpu=1, memory_gib=1)], bounds) == []

    def test_cancelled(self):
        event = threading.Event()
        event.set()

        with pytest.raises(OperationCancelledError):
            audit([TaskResourceSpec("t", cpu=2, memory_gib=4)], BOUNDS, cancel_event=event)

    def test_has_blocking_findings(self):
        assert not has_blocking_findings([])
        assert has_blocking_findings(audit([TaskResourceSpec("t", declared=False)], BOUNDS))


@pytest.mark.unit
class TestApplyResourceDefaults:
    """Test the explicit default-filling step."""

    def test_fills_only_missing_values(self):
        tasks = [
            TaskResourceSpec("a", declared=False),
            TaskResourceSpec("b", cpu=8),
            TaskResourceSpec("c", cpu=1, memory_gib=2000),
        ]

        updated, changes = apply_resource_defaults(tasks, cpu=2, memory_gib=4)

        assert updated[0] == TaskResourceSpec("a", cpu=2, memory_gib=4, declared=True)
        assert updated[1].cpu == 8 and updated[1].memory_gib == 4
        assert updated[2] == tasks[2]
        assert [(c.task_name, c.field, c.new_value) for c in changes] == [
            ("a", "cpu", 2),
            ("a", "memory_gib", 4),
            ("b", "memory_gib", 4),
        ]

    def test_input_is_not_mutated(self):
        tasks = [TaskResourceSpec("a", declared=False)]

        apply_resource_defaults(tasks, cpu=2, memory_gib=4)

        assert tasks[0].declared is False
        assert tasks[0].cpu is None

    def test_defaulted_tasks_pass_audit(self):
        updated, _ = apply_resource_defaults([TaskResourceSpec("a", declared=False)], cpu=2, memory_gib=4)

        assert audit(updated, BOUNDS) == []


@pytest.mark.unit
class TestMinimumBounds:
    """A task under both minimums is flagged on each field; a modest task passes."""

    def test_cpu_one_memory_two(self):
        findings = audit([TaskResourceSpec("small", cpu=1, memory_gib=2)], BOUNDS)

        assert [(f.kind, f.field) for f in findings] == [
            (AuditFindingKind.BELOW_MINIMUM, "cpu"),
            (AuditFindingKind.BELOW_MINIMUM, "memory_gib"),
        ]

    def test_cpu_four_memory_eight(self):
        assert audit([TaskResourceSpec("modest", cpu=4, memory_gib=8)], BOUNDS) == []
