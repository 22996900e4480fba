#!/usr/bin/env python3
"""
Classify command for omicsengine CLI

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from collections import deque
from typing import Annotated, List, Optional

import typer

from omicsengine.diagnostics.classifier import RunFailure, StatusClass, classify as classify_failure

from ..constants import ExitCode, LOG_EXCERPT_LINES, VALID_STATUS_CLASSES
from ..utils import console, display_diagnosis, save_summary_with_feedback, setup_logging


def _read_log_tail(path: str) -> str:
    with open(path, "r", errors="replace") as f:
        return "".join(deque(f, maxlen=LOG_EXCERPT_LINES))


def classify(
    status_code: Annotated[
        Optional[int], typer.Option("--status-code", help="HTTP-style status code of the failed run")
    ] = None,
    status_class: Annotated[
        Optional[str],
        typer.Option("--status-class", help=f"Failure class reported by the service: {VALID_STATUS_CLASSES}"),
    ] = None,
    exit_code: Annotated[
        Optional[int], typer.Option("--exit-code", help="Exit code of the failing task")
    ] = None,
    task: Annotated[
        Optional[str], typer.Option("--task", help="Name of the failing task")
    ] = None,
    log_refs: Annotated[
        List[str], typer.Option("--log-ref", help="Log reference (can specify multiple)")
    ] = [],
    log_file: Annotated[
        Optional[str], typer.Option("--log-file", help="Local copy of the task log to scan for hints")
    ] = None,
    summary_output: Annotated[
        Optional[str],
        typer.Option("--summary-output", "-s", help="Output file for the diagnosis JSON"),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
    ] = False,
) -> None:
    """
    🩺 Classify a failed run as retryable or requiring remediation.
    """
    setup_logging(verbose)

    parsed_class = None
    if status_class:
        if status_class.upper() not in VALID_STATUS_CLASSES:
            console.print(
                f"❌ Invalid status class: [red]{status_class}[/red]. "
                f"Valid options: {VALID_STATUS_CLASSES}"
            )
            raise typer.Exit(ExitCode.INVALID_ARGS)
        parsed_class = StatusClass(status_class.upper())

    log_excerpt = None
    if log_file:
        try:
            log_excerpt = _read_log_tail(log_file)
        except OSError as e:
            console.print(f"❌ Failed to read log file: [red]{e}[/red]")
            raise typer.Exit(ExitCode.INVALID_ARGS)

    diagnosis = classify_failure(
        RunFailure(
            status_class=parsed_class,
            status_code=status_code,
            log_refs=tuple(log_refs),
            task_name=task,
            exit_code=exit_code,
            log_excerpt=log_excerpt,
        )
    )
    display_diagnosis(diagnosis)

    save_summary_with_feedback(
        {
            "retryable": diagnosis.retryable,
            "category": diagnosis.category.value,
            "suggested_action": diagnosis.suggested_action,
            "task": diagnosis.task_name,
            "log_refs": list(diagnosis.log_refs),
            "hints": list(diagnosis.hints),
        },
        summary_output,
        "Diagnosis",
    )
