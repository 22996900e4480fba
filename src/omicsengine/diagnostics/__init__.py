"""
Run diagnostics.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from .classifier import (
    Diagnosis,
    DiagnosisCategory,
    RunFailure,
    StatusClass,
    classify,
    parse_code,
    status_class_for_code,
)

__all__ = [
    "Diagnosis",
    "DiagnosisCategory",
    "RunFailure",
    "StatusClass",
    "classify",
    "parse_code",
    "status_class_for_code",
]
