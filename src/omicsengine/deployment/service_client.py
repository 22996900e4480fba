#!/usr/bin/env python3
"""
Boundary to the managed workflow deployment/execution service.

The engine owns no network transport. Concrete clients implement
WorkflowServiceClient and report service failures by raising
ServiceCallError with the HTTP-style status code; translate_service_error
maps those onto the engine's error taxonomy.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from omicsengine.core.errors import (
    CustomerRunError,
    DeploymentError,
    OmicsEngineError,
    TransientServiceError,
    create_error_context,
)
from omicsengine.diagnostics.classifier import StatusClass, status_class_for_code


class ServiceCallError(Exception):
    """Raised by service clients for any unsuccessful call.

    Attributes:
        status_code: HTTP-style status code, None for timeouts and connection errors
        message: Service message
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class WorkflowServiceClient(ABC):
    """
    Abstract client for the deployment/execution service.

    Every method accepts a ``timeout`` keyword (seconds) that implementations
    must honour.
    """

    @abstractmethod
    def create_workflow(self, workflow_id: str, *, timeout: float, **kwargs) -> str:
        """Register a workflow; returns the service workflow id."""

    @abstractmethod
    def create_version(
        self,
        workflow_id: str,
        version_name: str,
        *,
        bundle_digest: str,
        container_images: List[str],
        timeout: float,
        **kwargs,
    ) -> str:
        """Register a version; returns the service version id."""

    @abstractmethod
    def get_version_status(self, workflow_id: str, version_name: str, *, timeout: float) -> Dict[str, Any]:
        """Return ``{"status": ..., "reason": ...}`` for a version."""

    @abstractmethod
    def start_run(
        self,
        workflow_id: str,
        version_name: str,
        *,
        role_arn: str,
        parameters: Dict[str, Any],
        request_id: str,
        timeout: float,
        **kwargs,
    ) -> str:
        """Start a run; returns the run id."""

    @abstractmethod
    def get_run_status(self, run_id: str, *, timeout: float) -> Dict[str, Any]:
        """
        Return run status, e.g.::

            {"status": "FAILED", "statusCode": 400, "failureClass": "CUSTOMER",
             "failedTask": "align", "exitCode": 1, "logRefs": [...]}
        """

    @abstractmethod
    def get_logs(self, run_id: str, task_name: Optional[str] = None, *, timeout: float) -> str:
        """Return a log excerpt for a run or one of its tasks."""


def translate_service_error(error: ServiceCallError, operation: str) -> OmicsEngineError:
    """
    Map a ServiceCallError onto the engine error taxonomy.

    Timeouts and connection failures (no status code) count as transient.
    """
    context = create_error_context(operation=operation, component="WorkflowServiceClient")
    status_class = status_class_for_code(error.status_code)

    if error.status_code is None or status_class == StatusClass.SERVICE:
        return TransientServiceError(
            f"{operation}: {error.message}",
            status_code=error.status_code,
            context=context,
            cause=error,
        )
    if status_class == StatusClass.CUSTOMER:
        return CustomerRunError(
            f"{operation} rejected ({error.status_code}): {error.message}",
            status_code=error.status_code,
            context=context,
            cause=error,
        )
    return DeploymentError(
        f"{operation} returned unexpected status {error.status_code}: {error.message}",
        context=context,
        cause=error,
    )
