"""
Deployment layer: versioned workflow lifecycle and the service boundary.

Architecture:
- WorkflowVersion / VersionState: immutable version records and lifecycle
- DeploymentManager: version table, transitions and service operations
- WorkflowServiceClient: abstract client implemented outside the engine
- VersionStateStore: JSON persistence of the version table

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from .base import (
    RunRecord,
    StateRecord,
    VersionState,
    WorkflowVersion,
    semver_key,
    validate_version_name,
)
from .manager import DeploymentManager
from .service_client import ServiceCallError, WorkflowServiceClient, translate_service_error
from .state_store import VersionStateStore

__all__ = [
    "RunRecord",
    "StateRecord",
    "VersionState",
    "WorkflowVersion",
    "semver_key",
    "validate_version_name",
    "DeploymentManager",
    "ServiceCallError",
    "WorkflowServiceClient",
    "translate_service_error",
    "VersionStateStore",
]
