#!/usr/bin/env python3
"""
JSON persistence for the version table.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Tuple, Union

from omicsengine.core.errors import ConfigurationError
from omicsengine.deployment.base import StateRecord, WorkflowVersion


class VersionStateStore:
    """Stores versions and their state history in a single JSON file.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so readers never see a partial file.
    """

    FORMAT_VERSION = 1

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Tuple[List[WorkflowVersion], List[StateRecord]]:
        if not self.path.exists():
            return [], []

        try:
            with open(self.path) as f:
                data = json.load(f)
            versions = [WorkflowVersion.from_dict(v) for v in data.get("versions", [])]
            history = [StateRecord.from_dict(r) for r in data.get("history", [])]
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise ConfigurationError(f"Corrupt deployment state file {self.path}: {e}", cause=e)

        return versions, history

    def save(self, versions: Iterable[WorkflowVersion], history: Iterable[StateRecord]) -> None:
        payload = {
            "format_version": self.FORMAT_VERSION,
            "versions": [v.to_dict() for v in sorted(versions, key=lambda v: v.key)],
            "history": [r.to_dict() for r in history],
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
