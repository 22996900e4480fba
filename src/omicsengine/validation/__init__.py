"""
Validation layer: bundle structure, task resources and run parameters.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from .base import (
    BundleEntry,
    EntryRole,
    ResourceBounds,
    TaskResourceSpec,
    WorkflowBundle,
)
from .bundle_validator import (
    DEFAULT_MAX_BUNDLE_BYTES,
    BundleErrorKind,
    BundleFinding,
    ValidationReport,
    validate,
)
from .resource_auditor import (
    AuditFinding,
    AuditFindingKind,
    ResourceChange,
    apply_resource_defaults,
    audit,
    has_blocking_findings,
)
from .bundle_scanner import scan_archive, scan_directory

__all__ = [
    "BundleEntry",
    "EntryRole",
    "ResourceBounds",
    "TaskResourceSpec",
    "WorkflowBundle",
    "DEFAULT_MAX_BUNDLE_BYTES",
    "BundleErrorKind",
    "BundleFinding",
    "ValidationReport",
    "validate",
    "AuditFinding",
    "AuditFindingKind",
    "ResourceChange",
    "apply_resource_defaults",
    "audit",
    "has_blocking_findings",
    "scan_archive",
    "scan_directory",
]
