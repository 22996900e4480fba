#!/usr/bin/env python3
"""
Base types for the deployment layer.

Defines the version lifecycle (PENDING -> ACTIVE | FAILED), the immutable
WorkflowVersion record, the append-only StateRecord history and the
RunRecord kept for every launched run.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from omicsengine.core.errors import InvalidVersionNameError


# https://semver.org/#is-there-a-suggested-regular-expression-regex-to-check-a-semver-string
SEMVER_RE = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<buildmetadata>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


class VersionState(Enum):
    """Lifecycle states of a workflow version."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (VersionState.ACTIVE, VersionState.FAILED)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_version_name(version_name: str) -> None:
    """
    Raises:
        InvalidVersionNameError: If version_name is not a SemVer 2.0.0 string
    """
    if not isinstance(version_name, str) or not SEMVER_RE.match(version_name):
        raise InvalidVersionNameError(str(version_name))


def semver_key(version_name: str) -> Tuple:
    """Sort key implementing SemVer precedence (build metadata ignored)."""
    match = SEMVER_RE.match(version_name)
    if not match:
        return (float("inf"),)
    core = (int(match.group("major")), int(match.group("minor")), int(match.group("patch")))
    prerelease = match.group("prerelease")
    if prerelease is None:
        return core + (1, ())
    identifiers = tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in prerelease.split(".")
    )
    return core + (0, identifiers)


@dataclass(frozen=True)
class WorkflowVersion:
    """One deployed version of a workflow.

    Instances are immutable; a state change replaces the table entry with a
    new instance and is only allowed while the version is PENDING.
    """

    workflow_id: str
    version_name: str
    bundle_digest: str
    state: VersionState = VersionState.PENDING
    engine: Optional[str] = None
    resolved_images: Tuple[Tuple[str, str], ...] = ()
    flagged_images: Tuple[str, ...] = ()
    service_version_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.workflow_id, self.version_name)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "version_name": self.version_name,
            "bundle_digest": self.bundle_digest,
            "state": self.state.value,
            "engine": self.engine,
            "resolved_images": [list(pair) for pair in self.resolved_images],
            "flagged_images": list(self.flagged_images),
            "service_version_id": self.service_version_id,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowVersion":
        return cls(
            workflow_id=data["workflow_id"],
            version_name=data["version_name"],
            bundle_digest=data["bundle_digest"],
            state=VersionState(data.get("state", "PENDING")),
            engine=data.get("engine"),
            resolved_images=tuple(tuple(pair) for pair in data.get("resolved_images", [])),
            flagged_images=tuple(data.get("flagged_images", [])),
            service_version_id=data.get("service_version_id"),
            failure_reason=data.get("failure_reason"),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class StateRecord:
    """Append-only history entry for a version state change."""

    workflow_id: str
    version_name: str
    state: VersionState
    timestamp: str = field(default_factory=utc_now)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "version_name": self.version_name,
            "state": self.state.value,
            "timestamp": self.timestamp,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateRecord":
        return cls(
            workflow_id=data["workflow_id"],
            version_name=data["version_name"],
            state=VersionState(data["state"]),
            timestamp=data.get("timestamp") or utc_now(),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class RunRecord:
    """A run launched from an ACTIVE version.

    The role ARN is recorded as supplied; it is never evaluated.
    """

    run_id: str
    workflow_id: str
    version_name: str
    role_arn: str
    parameters: Dict[str, Any] = field(default_factory=dict, compare=False)
    request_id: Optional[str] = None
    started_at: str = field(default_factory=utc_now)
