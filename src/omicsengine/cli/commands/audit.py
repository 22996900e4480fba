#!/usr/bin/env python3
"""
Audit command for omicsengine CLI

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from typing import Annotated, Optional

import typer
from rich.panel import Panel

from omicsengine.validation.resource_auditor import (
    apply_resource_defaults,
    audit as audit_tasks,
    has_blocking_findings,
)

from ..constants import ExitCode
from ..utils import (
    console,
    display_audit_findings,
    display_resource_changes,
    load_bundle_or_exit,
    load_config_or_exit,
    save_summary_with_feedback,
    setup_logging,
)


def audit(
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
    apply_defaults: Annotated[
        bool,
        typer.Option("--apply-defaults", help="Show the tasks with missing declarations filled in from defaults"),
    ] = False,
    summary_output: Annotated[
        Optional[str],
        typer.Option("--summary-output", "-s", help="Output file for the audit summary JSON"),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
    ] = False,
) -> None:
    """
    🧮 Audit task CPU and memory declarations against service bounds.
    """
    setup_logging(verbose)
    config = load_config_or_exit(config_file)
    bounds = config.bounds

    console.print(
        Panel(
            f"🧮 [bold cyan]Auditing Task Resources[/bold cyan]\n"
            f"Bundle: [yellow]{bundle_path}[/yellow]\n"
            f"CPU: [yellow]{bounds.min_cpu:g}-{bounds.max_cpu:g}[/yellow]  "
            f"Memory (GiB): [yellow]{bounds.min_memory_gib:g}-{bounds.max_memory_gib:g}[/yellow]",
            title="Resource Audit",
            border_style="blue",
        )
    )

    bundle = load_bundle_or_exit(bundle_path, entrypoint, config.max_bundle_bytes)
    tasks = list(bundle.tasks)
    changes = []
    if apply_defaults:
        tasks, changes = apply_resource_defaults(
            tasks, config.default_cpu, config.default_memory_gib
        )
        if changes:
            display_resource_changes(changes)
        else:
            console.print("ℹ️  [dim]Every task already declares CPU and memory[/dim]")

    findings = audit_tasks(tasks, bounds)
    display_audit_findings(findings)

    save_summary_with_feedback(
        {
            "bundle": bundle_path,
            "tasks": len(tasks),
            "findings": [
                {"task": f.task_name, "kind": f.kind.value, "field": f.field, "message": f.message}
                for f in findings
            ],
            "applied_defaults": [
                {"task": c.task_name, "field": c.field, "old": c.old_value, "new": c.new_value}
                for c in changes
            ],
        },
        summary_output,
        "Audit",
    )

    if has_blocking_findings(findings):
        console.print(f"❌ [bold red]{len(findings)} resource finding(s)[/bold red]")
        raise typer.Exit(ExitCode.VALIDATION_FAILURE)

    console.print(f"✅ [bold green]{len(tasks)} task(s) within service bounds[/bold green]")
