#!/usr/bin/env python3
"""
Value types shared by the bundle validator, resource auditor and scanner.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import hashlib
import json
import posixpath
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from omicsengine.core.errors import OperationCancelledError


REMOTE_IMPORT_PREFIXES = ("http://", "https://", "s3://", "gs://", "ftp://")


class EntryRole(Enum):
    """Role of a file inside a workflow bundle."""

    ENTRYPOINT = "ENTRYPOINT"
    IMPORT = "IMPORT"
    OTHER = "OTHER"


@dataclass(frozen=True)
class BundleEntry:
    """A single file of a workflow bundle.

    Attributes:
        relative_path: Path relative to the bundle root
        role: ENTRYPOINT, IMPORT or OTHER
        size_bytes: File size
        imports: Import paths declared by this file, as written
        content_sha256: Optional content digest, folded into the bundle digest
    """

    relative_path: str
    role: EntryRole
    size_bytes: int = 0
    imports: Tuple[str, ...] = ()
    content_sha256: Optional[str] = None


@dataclass(frozen=True)
class ResourceBounds:
    """Service-imposed resource limits for a single task."""

    min_cpu: float = 2
    max_cpu: float = 96
    min_memory_gib: float = 4
    max_memory_gib: float = 768


@dataclass(frozen=True)
class TaskResourceSpec:
    """Resources declared by one workflow task.

    ``declared`` is False when the task has no resource block at all. A
    declared task may still leave ``cpu`` or ``memory_gib`` unset.
    """

    task_name: str
    cpu: Optional[float] = None
    memory_gib: Optional[float] = None
    declared: bool = True
    source_path: Optional[str] = None


@dataclass(frozen=True)
class WorkflowBundle:
    """Candidate bundle submitted for deployment."""

    entries: Tuple[BundleEntry, ...]
    tasks: Tuple[TaskResourceSpec, ...] = ()
    container_images: Tuple[str, ...] = ()
    engine: Optional[str] = None
    root: Optional[str] = field(default=None, compare=False)

    @property
    def total_size_bytes(self) -> int:
        return sum(e.size_bytes for e in self.entries)

    @property
    def digest(self) -> str:
        """Stable sha256 over the bundle's entries."""
        payload = [
            [e.relative_path, e.role.value, e.size_bytes, list(e.imports), e.content_sha256]
            for e in sorted(self.entries, key=lambda e: e.relative_path)
        ]
        encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
        return "sha256:" + hashlib.sha256(encoded).hexdigest()


def is_remote_import(path: str) -> bool:
    return path.strip().lower().startswith(REMOTE_IMPORT_PREFIXES)


def normalize_bundle_path(path: str) -> Optional[str]:
    """
    Normalize a bundle-relative path.

    Returns:
        POSIX path without ``./`` or ``..`` segments, or None if the path is
        absolute, empty or escapes the bundle root
    """
    if path is None:
        return None
    text = path.strip().replace("\\", "/")
    if not text or text.startswith("/") or (len(text) > 1 and text[1] == ":"):
        return None
    normalized = posixpath.normpath(text)
    if normalized in (".", "..") or normalized.startswith("../"):
        return None
    return normalized


def resolve_import_path(importer: str, import_path: str) -> Optional[str]:
    """Resolve an import relative to the directory of the importing file."""
    base = posixpath.dirname(importer)
    return normalize_bundle_path(posixpath.join(base, import_path.strip()))


def check_cancelled(cancel_event: Optional[threading.Event], operation: str) -> None:
    """Raise OperationCancelledError if the caller has set the cancel event."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError(f"{operation} cancelled")
