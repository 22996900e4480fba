#!/usr/bin/env python3
"""
Unified error handling for omicsengine.

Every failure raised by the engine is a structured value derived from
OmicsEngineError. Errors carry a category, an optional ErrorContext, the
offending field/value where one exists, remediation suggestions and the
underlying cause. The ErrorHandler renders them with Rich for CLI users.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.text import Text


class ErrorCategory(Enum):
    """Error categories used for display and routing."""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    DEPLOYMENT = "deployment"
    SERVICE = "service"
    RUN = "run"
    CANCELLED = "cancelled"


@dataclass
class ErrorContext:
    """Context information attached to an error."""

    operation: str
    phase: Optional[str] = None
    component: Optional[str] = None
    workflow_id: Optional[str] = None
    version_name: Optional[str] = None
    file_path: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class OmicsEngineError(Exception):
    """
    Base class for all omicsengine errors.

    Attributes:
        message: Human readable message
        category: ErrorCategory of the failure
        context: Optional ErrorContext
        recoverable: Whether retrying the operation unchanged may succeed
        suggestions: Remediation hints shown to the user
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        context: Optional[ErrorContext] = None,
        recoverable: bool = False,
        suggestions: Optional[List[str]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context
        self.recoverable = recoverable
        self.suggestions = suggestions or []
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class ConfigurationError(OmicsEngineError):
    """Malformed or ambiguous configuration. Fatal, never retried."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.CONFIGURATION, recoverable=False, **kwargs)


class AmbiguousMappingError(ConfigurationError):
    """Two registry mappings share the same upstream registry."""

    def __init__(self, upstream_registry_url: str, **kwargs):
        self.upstream_registry_url = upstream_registry_url
        super().__init__(
            f"Ambiguous registry mapping: upstream registry "
            f"'{upstream_registry_url}' is mapped more than once",
            **kwargs,
        )


class InvalidVersionNameError(ConfigurationError):
    """Version name is not a valid semantic version string."""

    def __init__(self, version_name: str, **kwargs):
        self.version_name = version_name
        kwargs.setdefault(
            "suggestions", ["Use a semantic version such as 1.0.0 or 2.1.0-rc.1"]
        )
        super().__init__(f"Invalid version name: '{version_name}'", **kwargs)


class ValidationError(OmicsEngineError):
    """Bundle, reference or resource validation failure."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.VALIDATION, recoverable=False, **kwargs)


class InvalidReferenceError(ValidationError):
    """A container image string could not be parsed."""

    def __init__(self, image: str, reason: str, **kwargs):
        self.image = image
        self.reason = reason
        super().__init__(f"Invalid container reference '{image}': {reason}", **kwargs)


class UnresolvedReferenceError(ValidationError):
    """One or more container references matched no mapping in strict mode."""

    def __init__(self, images: List[str], **kwargs):
        self.images = list(images)
        kwargs.setdefault(
            "suggestions",
            [
                "Add an imageMappings or registryMappings entry for each image",
                "Or resolve in permissive mode and review the audit log",
            ],
        )
        super().__init__(
            f"{len(self.images)} container reference(s) did not resolve: "
            + ", ".join(self.images),
            **kwargs,
        )


class ValidationFailedError(ValidationError):
    """Blocking validator or auditor findings prevented version creation."""

    def __init__(self, message: str, report=None, findings=None, **kwargs):
        self.report = report
        self.findings = list(findings or [])
        kwargs.setdefault(
            "suggestions",
            ["Correct the bundle and create the version again"],
        )
        super().__init__(message, **kwargs)


class DeploymentError(OmicsEngineError):
    """Deployment state table errors."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCategory.DEPLOYMENT, recoverable=False, **kwargs)


class DuplicateVersionError(DeploymentError):
    """(workflow_id, version_name) already exists."""

    def __init__(self, workflow_id: str, version_name: str, **kwargs):
        self.workflow_id = workflow_id
        self.version_name = version_name
        kwargs.setdefault(
            "suggestions", ["Versions are immutable; choose a new version name"]
        )
        super().__init__(
            f"Version '{version_name}' already exists for workflow '{workflow_id}'",
            **kwargs,
        )


class VersionNotFoundError(DeploymentError):
    """No version registered under (workflow_id, version_name)."""

    def __init__(self, workflow_id: str, version_name: str, **kwargs):
        self.workflow_id = workflow_id
        self.version_name = version_name
        super().__init__(
            f"Version '{version_name}' not found for workflow '{workflow_id}'",
            **kwargs,
        )


class StateTransitionError(DeploymentError):
    """Requested lifecycle transition is not allowed."""

    def __init__(self, current_state: str, requested_state: str, **kwargs):
        self.current_state = current_state
        self.requested_state = requested_state
        super().__init__(
            f"Cannot transition from {current_state} to {requested_state}",
            **kwargs,
        )


class TransientServiceError(OmicsEngineError):
    """5xx-class response from the deployment/execution service."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.SERVICE, recoverable=True, **kwargs)


class ServiceUnavailableError(OmicsEngineError):
    """Transient service errors persisted after all retries."""

    def __init__(self, message: str, attempts: int = 0, **kwargs):
        self.attempts = attempts
        kwargs.setdefault("suggestions", ["Check the service health and try again later"])
        super().__init__(message, ErrorCategory.SERVICE, recoverable=False, **kwargs)


class CustomerRunError(OmicsEngineError):
    """4xx-class rejection. Never retried automatically."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        log_refs: Optional[List[str]] = None,
        **kwargs,
    ):
        self.status_code = status_code
        self.log_refs = list(log_refs or [])
        super().__init__(message, ErrorCategory.RUN, recoverable=False, **kwargs)


class OperationCancelledError(OmicsEngineError):
    """A validation or audit pass was cancelled between iterations."""

    def __init__(self, message: str = "Operation cancelled", **kwargs):
        super().__init__(message, ErrorCategory.CANCELLED, recoverable=True, **kwargs)


_CATEGORY_TITLES = {
    ErrorCategory.CONFIGURATION: ("⚙️", "Configuration Error", "yellow"),
    ErrorCategory.VALIDATION: ("⚠️", "Validation Error", "yellow"),
    ErrorCategory.DEPLOYMENT: ("📦", "Deployment Error", "red"),
    ErrorCategory.SERVICE: ("🔌", "Service Error", "red"),
    ErrorCategory.RUN: ("🧬", "Run Error", "red"),
    ErrorCategory.CANCELLED: ("🛑", "Cancelled", "blue"),
}


class ErrorHandler:
    """Renders errors to a Rich console and logs them."""

    def __init__(self, console: Optional[Console] = None, verbose: bool = False):
        self.console = console or Console()
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)

    def handle_error(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None,
        show_traceback: bool = False,
    ) -> None:
        """
        Display an error panel and log the failure.

        Args:
            error: Exception to report
            context: Context to use when the error does not carry one
            show_traceback: Print the traceback (verbose mode only)
        """
        if isinstance(error, OmicsEngineError):
            emoji, title, style = _CATEGORY_TITLES.get(
                error.category, ("❌", "Error", "red")
            )
            body = self._build_body(error, error.context or context)
            panel_title = f"{emoji} {title}"
        else:
            style = "red"
            body = self._build_body(error, context)
            panel_title = f"❌ {type(error).__name__}"

        self.console.print(Panel(body, title=panel_title, border_style=style))
        self.logger.debug("Handled error: %r", error)

        if show_traceback and self.verbose:
            self.console.print_exception()

    def _build_body(self, error: BaseException, context: Optional[ErrorContext]) -> Text:
        text = Text(str(error), style="bold")

        if context is not None:
            for label, value in (
                ("Operation", context.operation),
                ("Component", context.component),
                ("Workflow", context.workflow_id),
                ("Version", context.version_name),
                ("File", context.file_path),
            ):
                if value:
                    text.append(f"\n{label}: ", style="dim")
                    text.append(str(value))

        suggestions = getattr(error, "suggestions", None)
        if suggestions:
            text.append("\n\nSuggestions:", style="cyan")
            for suggestion in suggestions:
                text.append(f"\n  • {suggestion}")

        cause = getattr(error, "cause", None)
        if cause is not None:
            text.append("\n\nCaused by: ", style="dim")
            text.append(f"{type(cause).__name__}: {cause}")

        return text


_error_handler: Optional[ErrorHandler] = None


def set_error_handler(handler: Optional[ErrorHandler]) -> None:
    """Install the global error handler."""
    global _error_handler
    _error_handler = handler


def get_error_handler() -> Optional[ErrorHandler]:
    """Return the global error handler, if any."""
    return _error_handler


def handle_error(
    error: BaseException,
    context: Optional[ErrorContext] = None,
    show_traceback: bool = False,
) -> None:
    """Report an error through the global handler, or log it."""
    if _error_handler is not None:
        _error_handler.handle_error(error, context=context, show_traceback=show_traceback)
    else:
        logging.error("%s: %s", type(error).__name__, error)


def create_error_context(operation: str, **kwargs) -> ErrorContext:
    """Convenience constructor for ErrorContext."""
    return ErrorContext(operation=operation, **kwargs)
