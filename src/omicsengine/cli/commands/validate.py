#!/usr/bin/env python3
"""
Validate command for omicsengine CLI

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from typing import Annotated, Optional

import typer
from rich.panel import Panel

from omicsengine.core.errors import OmicsEngineError, UnresolvedReferenceError
from omicsengine.core.registry import resolve_all
from omicsengine.validation.bundle_validator import validate as validate_entries
from omicsengine.validation.resource_auditor import audit as audit_tasks
from omicsengine.validation.resource_auditor import has_blocking_findings

from ..constants import ExitCode
from ..utils import (
    console,
    display_audit_findings,
    display_resolution_report,
    display_validation_report,
    fail,
    load_bundle_or_exit,
    load_config_or_exit,
    load_map_set_or_exit,
    save_summary_with_feedback,
    setup_logging,
)


def validate(
    bundle_path: Annotated[
        str, typer.Argument(help="Workflow directory or zip archive")
    ],
    entrypoint: Annotated[
        Optional[str],
        typer.Option("--entrypoint", "-e", help="Bundle-relative path of the main definition file"),
    ] = None,
    config_file: Annotated[
        Optional[str],
        typer.Option("--config", "-c", help="Engine configuration file (JSON or YAML)"),
    ] = None,
    registry_map: Annotated[
        Optional[str],
        typer.Option("--registry-map", "-m", help="Registry map document (JSON or YAML)"),
    ] = None,
    account_id: Annotated[
        Optional[str], typer.Option("--account-id", help="Private registry account id")
    ] = None,
    region: Annotated[
        Optional[str], typer.Option("--region", help="Private registry region")
    ] = None,
    strict: Annotated[
        Optional[bool],
        typer.Option("--strict/--permissive", help="Fail on container references no mapping matches"),
    ] = None,
    max_bundle_bytes: Annotated[
        Optional[int],
        typer.Option("--max-bundle-bytes", help="Aggregate bundle size ceiling in bytes"),
    ] = None,
    summary_output: Annotated[
        Optional[str],
        typer.Option("--summary-output", "-s", help="Output file for the validation summary JSON"),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
    ] = False,
) -> None:
    """
    📦 Validate a workflow bundle before creating a version.

    Checks the bundle structure, audits task resource declarations and
    resolves container references against the registry map.
    """
    setup_logging(verbose)

    overrides = {
        "registry": {
            "ecr_account_id": account_id,
            "ecr_region": region,
            "strict": strict,
            "map_file": registry_map,
        },
        "bundle": {"max_bytes": max_bundle_bytes},
    }
    config = load_config_or_exit(config_file, overrides)

    console.print(
        Panel(
            f"📦 [bold cyan]Validating Workflow Bundle[/bold cyan]\n"
            f"Bundle: [yellow]{bundle_path}[/yellow]\n"
            f"Resolution: [yellow]{'strict' if config.strict_resolution else 'permissive'}[/yellow]",
            title="Bundle Validation",
            border_style="blue",
        )
    )

    bundle = load_bundle_or_exit(bundle_path, entrypoint, config.max_bundle_bytes)
    map_set = load_map_set_or_exit(config, registry_map)

    report = validate_entries(bundle.entries, config.max_bundle_bytes)
    findings = audit_tasks(bundle.tasks, config.bounds)
    display_validation_report(report)
    display_audit_findings(findings)

    exit_code = ExitCode.SUCCESS
    summary = {
        "bundle": bundle_path,
        "engine": bundle.engine,
        "digest": bundle.digest,
        "entrypoint": report.entrypoint,
        "total_size_bytes": report.total_size_bytes,
        "bundle_findings": [
            {"kind": f.kind.value, "path": f.path, "detail": f.detail} for f in report.findings
        ],
        "resource_findings": [
            {"task": f.task_name, "kind": f.kind.value, "field": f.field, "message": f.message}
            for f in findings
        ],
        "images": {},
    }

    try:
        resolution = resolve_all(
            bundle.container_images, map_set, require_all=config.strict_resolution
        )
        display_resolution_report(resolution)
        summary["images"] = resolution.uri_map
        for flagged in resolution.flagged:
            console.print(
                f"⚠️  [yellow]No mapping for {flagged.uri}; passed through unchanged[/yellow]"
            )
    except UnresolvedReferenceError as e:
        save_summary_with_feedback(summary, summary_output, "Validation")
        fail(e, "resolve_references", ExitCode.UNRESOLVED_REFERENCES)
    except OmicsEngineError as e:
        save_summary_with_feedback(summary, summary_output, "Validation")
        fail(e, "resolve_references", ExitCode.VALIDATION_FAILURE)

    if not report.is_valid or has_blocking_findings(findings):
        exit_code = ExitCode.VALIDATION_FAILURE

    save_summary_with_feedback(summary, summary_output, "Validation")

    if exit_code == ExitCode.SUCCESS:
        console.print("✅ [bold green]Bundle is ready for version creation[/bold green]")
    else:
        console.print(
            f"❌ [bold red]Validation found {len(report.findings)} bundle and "
            f"{len(findings)} resource problem(s)[/bold red]"
        )
        raise typer.Exit(exit_code)
