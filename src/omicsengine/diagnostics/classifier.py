#!/usr/bin/env python3
"""
Run failure classification.

Maps a failed run's status code and status class to a retry decision. 5xx
or SERVICE failures are transient and may be resubmitted unchanged; 4xx or
CUSTOMER failures need a corrected workflow or input; everything else is
Unknown and never retried, so that nothing loops on an unexplained failure.

Log excerpts and exit codes are scanned for well-known signatures to add
remediation hints. Hints never change the retry decision.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple


logger = logging.getLogger(__name__)


class StatusClass(Enum):
    SERVICE = "SERVICE"
    CUSTOMER = "CUSTOMER"


class DiagnosisCategory(Enum):
    TRANSIENT_SERVICE_ERROR = "TransientServiceError"
    CONFIGURATION_OR_INPUT_ERROR = "ConfigurationOrInputError"
    UNKNOWN = "Unknown"


RESUBMIT_ACTION = "resubmit run unchanged."
REMEDIATE_ACTION = (
    "inspect logRefs for the failing task, correct the workflow or input, "
    "create a new version, resubmit."
)
INSPECT_ACTION = "inspect logRefs manually before resubmitting; the failure is not classified."


@dataclass(frozen=True)
class RunFailure:
    """Failure telemetry of a terminated run."""

    status_class: Optional[StatusClass] = None
    status_code: Optional[int] = None
    log_refs: Tuple[str, ...] = ()
    task_name: Optional[str] = None
    exit_code: Optional[int] = None
    log_excerpt: Optional[str] = None
    run_id: Optional[str] = None


@dataclass(frozen=True)
class Diagnosis:
    retryable: bool
    category: DiagnosisCategory
    suggested_action: str
    hints: Tuple[str, ...] = ()
    task_name: Optional[str] = None
    log_refs: Tuple[str, ...] = ()


# (pattern, hint)
LOG_HINT_PATTERNS = [
    (
        re.compile(r"OutOfMemoryError|out of memory|OOMKilled|Cannot allocate memory|\bKilled\b", re.IGNORECASE),
        "Task ran out of memory; raise its memory declaration in a new version",
    ),
    (
        re.compile(r"No such file or directory|FileNotFoundError|NoSuchKey", re.IGNORECASE),
        "A referenced file is missing; check the parameter document and bundle imports",
    ),
    (
        re.compile(r"AccessDenied|Access Denied|403 Forbidden|not authorized", re.IGNORECASE),
        "The run role lacks access to an input, output location or image",
    ),
    (
        re.compile(r"pull access denied|manifest unknown|CannotPullContainer|repository does not exist", re.IGNORECASE),
        "Container image could not be pulled; check the registry mappings",
    ),
    (
        re.compile(r"Segmentation fault|SIGSEGV"),
        "Tool crashed with a segmentation fault",
    ),
]

EXIT_CODE_HINTS = {
    137: "Exit code 137: task was killed, usually for exceeding its memory",
    127: "Exit code 127: command not found in the container image",
    139: "Exit code 139: tool crashed with a segmentation fault",
}


def parse_code(value: Any) -> Optional[int]:
    """
    Coerce a status or exit code reported by the service to an int.

    Services may report codes as strings (``"503"``). Returns None when the
    value is absent or is not an integer.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        logger.warning("Ignoring unparsable code %r", value)
        return None


def status_class_for_code(status_code: Any) -> Optional[StatusClass]:
    """Map an HTTP-style status code to its status class."""
    status_code = parse_code(status_code)
    if status_code is None:
        return None
    if 500 <= status_code <= 599:
        return StatusClass.SERVICE
    if 400 <= status_code <= 499:
        return StatusClass.CUSTOMER
    return None


def collect_hints(failure: RunFailure) -> Tuple[str, ...]:
    hints: List[str] = []
    exit_code = parse_code(failure.exit_code)
    if exit_code in EXIT_CODE_HINTS:
        hints.append(EXIT_CODE_HINTS[exit_code])
    if failure.log_excerpt:
        for pattern, hint in LOG_HINT_PATTERNS:
            if pattern.search(failure.log_excerpt) and hint not in hints:
                hints.append(hint)
    return tuple(hints)


def classify(failure: RunFailure) -> Diagnosis:
    """
    Classify a run failure.

    A status code and an explicit status class that disagree are treated as
    Unknown, as is a status code that is not an integer.
    """
    code = parse_code(failure.status_code)
    code_class = status_class_for_code(code)
    if failure.status_code is not None and code is None:
        # Unparsable code classifies as Unknown.
        effective = None
    elif code_class and failure.status_class and code_class != failure.status_class:
        effective = None
    else:
        effective = code_class or failure.status_class

    if effective == StatusClass.SERVICE:
        retryable, category, action = True, DiagnosisCategory.TRANSIENT_SERVICE_ERROR, RESUBMIT_ACTION
    elif effective == StatusClass.CUSTOMER:
        retryable, category, action = False, DiagnosisCategory.CONFIGURATION_OR_INPUT_ERROR, REMEDIATE_ACTION
    else:
        retryable, category, action = False, DiagnosisCategory.UNKNOWN, INSPECT_ACTION

    return Diagnosis(
        retryable=retryable,
        category=category,
        suggested_action=action,
        hints=collect_hints(failure),
        task_name=failure.task_name,
        log_refs=tuple(failure.log_refs),
    )
