#!/usr/bin/env python3
"""
CLI Package for omicsengine

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from .app import app, cli_main
from .constants import ExitCode, VALID_STATUS_CLASSES
from .utils import (
    setup_logging,
    save_summary_with_feedback,
    display_validation_report,
    display_audit_findings,
    display_resolution_report,
    display_diagnosis,
)

__all__ = [
    "app",
    "cli_main",
    "ExitCode",
    "VALID_STATUS_CLASSES",
    "setup_logging",
    "save_summary_with_feedback",
    "display_validation_report",
    "display_audit_findings",
    "display_resolution_report",
    "display_diagnosis",
]
