#!/usr/bin/env python3
"""
Utility functions for the omicsengine CLI

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from omicsengine.config.loader import EngineConfig, load_engine_config
from omicsengine.core.errors import (
    ErrorHandler,
    OmicsEngineError,
    create_error_context,
    handle_error,
    set_error_handler,
)
from omicsengine.core.registry import RegistryMapSet, ResolutionReport, load_registry_map
from omicsengine.diagnostics.classifier import Diagnosis
from omicsengine.validation.base import WorkflowBundle
from omicsengine.validation.bundle_scanner import scan_archive, scan_directory
from omicsengine.validation.bundle_validator import DEFAULT_MAX_BUNDLE_BYTES, ValidationReport
from omicsengine.validation.resource_auditor import AuditFinding, ResourceChange
from .constants import ExitCode


# Initialize Rich console
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Setup Rich logging configuration and unified error handler."""
    log_level = logging.DEBUG if verbose else logging.INFO

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=verbose,
        markup=True,
        rich_tracebacks=True,
    )

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[rich_handler],
    )

    error_handler = ErrorHandler(console=console, verbose=verbose)
    set_error_handler(error_handler)


def fail(error: OmicsEngineError, operation: str, exit_code: int = ExitCode.FAILURE) -> None:
    """Report an engine error and exit."""
    handle_error(error, context=create_error_context(operation=operation, component="cli"))
    raise typer.Exit(exit_code)


def load_config_or_exit(
    config_file: Optional[str],
    overrides: Optional[Dict[str, Any]] = None,
) -> EngineConfig:
    """Load the engine configuration, exiting with INVALID_ARGS on error."""
    try:
        return load_engine_config(config_file, overrides)
    except OmicsEngineError as e:
        fail(e, "load_config", ExitCode.INVALID_ARGS)


def load_bundle_or_exit(
    path: str,
    entrypoint: Optional[str] = None,
    max_bundle_bytes: int = DEFAULT_MAX_BUNDLE_BYTES,
) -> WorkflowBundle:
    """Scan a workflow directory or zip archive."""
    try:
        if Path(path).is_file():
            return scan_archive(path, entrypoint, max_bundle_bytes)
        return scan_directory(path, entrypoint)
    except OmicsEngineError as e:
        fail(e, "scan_bundle", ExitCode.INVALID_ARGS)


def load_map_set_or_exit(config: EngineConfig, registry_map: Optional[str]) -> RegistryMapSet:
    """Load the registry map named on the command line or in the config."""
    map_file = registry_map or config.registry_map_file
    if not map_file:
        return RegistryMapSet()
    try:
        return load_registry_map(map_file, config.ecr_account_id, config.ecr_region)
    except OmicsEngineError as e:
        fail(e, "load_registry_map", ExitCode.INVALID_ARGS)


def save_summary_with_feedback(
    summary: Dict, output_path: Optional[str], summary_type: str
) -> None:
    """Save summary to file with user feedback."""
    if output_path:
        try:
            with open(output_path, "w") as f:
                json.dump(summary, f, indent=2)
            console.print(
                f"💾 {summary_type} summary saved to: [cyan]{output_path}[/cyan]"
            )
        except IOError as e:
            console.print(f"❌ Failed to save {summary_type} summary: [red]{e}[/red]")
            raise typer.Exit(ExitCode.FAILURE)


def display_validation_report(report: ValidationReport) -> None:
    table = Table(title="📦 Bundle Validation", show_header=True, header_style="bold magenta")
    table.add_column("Index", justify="right", style="dim")
    table.add_column("Kind", style="bold red")
    table.add_column("Path", style="cyan")
    table.add_column("Detail")

    for index, finding in enumerate(report.findings, start=1):
        table.add_row(str(index), finding.kind.value, finding.path or "-", finding.detail)

    if report.is_valid:
        table.add_row("1", "[green]✅ Valid[/green]", report.entrypoint or "", "")

    console.print(table)


def display_audit_findings(findings: List[AuditFinding]) -> None:
    table = Table(title="🧮 Resource Audit", show_header=True, header_style="bold magenta")
    table.add_column("Task", style="cyan")
    table.add_column("Finding", style="bold red")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_column("Bound", justify="right")

    for finding in findings:
        table.add_row(
            finding.task_name,
            finding.kind.value,
            finding.field or "-",
            "-" if finding.value is None else f"{finding.value:g}",
            "-" if finding.bound is None else f"{finding.bound:g}",
        )

    if not findings:
        table.add_row("[green]all tasks[/green]", "[green]✅ Within bounds[/green]", "", "", "")

    console.print(table)


def display_resource_changes(changes: List[ResourceChange]) -> None:
    table = Table(title="✏️ Proposed Resource Defaults", show_header=True, header_style="bold magenta")
    table.add_column("Task", style="cyan")
    table.add_column("Field")
    table.add_column("Old", justify="right")
    table.add_column("New", justify="right", style="green")

    for change in changes:
        old = "-" if change.old_value is None else f"{change.old_value:g}"
        table.add_row(change.task_name, change.field, old, f"{change.new_value:g}")

    console.print(table)


def display_resolution_report(report: ResolutionReport) -> None:
    table = Table(title="🐳 Container References", show_header=True, header_style="bold magenta")
    table.add_column("Source", style="cyan")
    table.add_column("Destination", style="green")
    table.add_column("Rule")

    for resolved in report.resolved:
        rule = resolved.rule.value
        if resolved.flagged:
            rule = f"[yellow]⚠️ {rule}[/yellow]"
        table.add_row(resolved.reference.raw or resolved.reference.canonical, resolved.uri, rule)

    for unresolved in report.unresolved:
        table.add_row(
            unresolved.reference.raw or unresolved.reference.canonical,
            "[red]unresolved[/red]",
            unresolved.reason,
        )

    console.print(table)


def display_diagnosis(diagnosis: Diagnosis) -> None:
    style = "green" if diagnosis.retryable else "red"
    console.print(f"Category: [bold {style}]{diagnosis.category.value}[/bold {style}]")
    console.print(f"Retryable: [{style}]{diagnosis.retryable}[/{style}]")
    console.print(f"Suggested action: {diagnosis.suggested_action}")
    if diagnosis.task_name:
        console.print(f"Failing task: [cyan]{diagnosis.task_name}[/cyan]")
    for ref in diagnosis.log_refs:
        console.print(f"  📄 {ref}")
    for hint in diagnosis.hints:
        console.print(f"  💡 {hint}")
