"""
omicsengine - workflow deployment and validation engine for genomics workflows.

Resolves container references against registry mappings, validates workflow
bundles and task resource declarations, tracks versioned deployment state and
classifies run failures.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
