#!/usr/bin/env python3
"""
Resolve command for omicsengine CLI

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from typing import Annotated, List, Optional

import typer

from omicsengine.core.errors import OmicsEngineError, UnresolvedReferenceError
from omicsengine.core.registry import resolve_all

from ..constants import ExitCode
from ..utils import (
    console,
    display_resolution_report,
    fail,
    load_config_or_exit,
    load_map_set_or_exit,
    save_summary_with_feedback,
    setup_logging,
)


def resolve(
    images: Annotated[
        List[str], typer.Argument(help="Container image references to resolve")
    ],
    registry_map: Annotated[
        Optional[str],
        typer.Option("--registry-map", "-m", help="Registry map document (JSON or YAML)"),
    ] = None,
    config_file: Annotated[
        Optional[str],
        typer.Option("--config", "-c", help="Engine configuration file (JSON or YAML)"),
    ] = None,
    account_id: Annotated[
        Optional[str], typer.Option("--account-id", help="Private registry account id")
    ] = None,
    region: Annotated[
        Optional[str], typer.Option("--region", help="Private registry region")
    ] = None,
    strict: Annotated[
        Optional[bool],
        typer.Option("--strict/--permissive", help="Fail on references no mapping matches"),
    ] = None,
    summary_output: Annotated[
        Optional[str],
        typer.Option("--summary-output", "-s", help="Output file for the source to destination map"),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
    ] = False,
) -> None:
    """
    🐳 Resolve container references to private registry URIs.
    """
    setup_logging(verbose)

    overrides = {
        "registry": {
            "ecr_account_id": account_id,
            "ecr_region": region,
            "strict": strict,
            "map_file": registry_map,
        }
    }
    config = load_config_or_exit(config_file, overrides)
    map_set = load_map_set_or_exit(config, registry_map)

    try:
        report = resolve_all(images, map_set, require_all=config.strict_resolution)
    except UnresolvedReferenceError as e:
        fail(e, "resolve", ExitCode.UNRESOLVED_REFERENCES)
    except OmicsEngineError as e:
        fail(e, "resolve", ExitCode.INVALID_ARGS)

    display_resolution_report(report)
    save_summary_with_feedback(report.uri_map, summary_output, "Resolution")

    if report.flagged:
        console.print(
            f"⚠️  [yellow]{len(report.flagged)} reference(s) passed through without a mapping[/yellow]"
        )
    else:
        console.print(f"✅ [bold green]Resolved {len(report.resolved)} reference(s)[/bold green]")
