"""
Engine configuration.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

from .loader import ConfigLoader, EngineConfig, load_engine_config

__all__ = ["ConfigLoader", "EngineConfig", "load_engine_config"]
