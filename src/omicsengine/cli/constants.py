#!/usr/bin/env python3
"""
Constants and configuration for the omicsengine CLI

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""


# Exit codes
class ExitCode:
    """Exit codes for CLI commands."""

    SUCCESS = 0
    FAILURE = 1
    VALIDATION_FAILURE = 2
    UNRESOLVED_REFERENCES = 3
    INVALID_ARGS = 4


VALID_STATUS_CLASSES = ["SERVICE", "CUSTOMER"]

# Lines of a log file passed to the classifier
LOG_EXCERPT_LINES = 200
