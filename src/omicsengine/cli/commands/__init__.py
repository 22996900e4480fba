#!/usr/bin/env python3
"""
CLI Commands Package for omicsengine

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from .validate import validate
from .audit import audit
from .resolve import resolve
from .classify import classify

__all__ = ["validate", "audit", "resolve", "classify"]
