#!/usr/bin/env python3
"""
Structural validation of workflow bundles.

The validator checks packaging invariants only: a single root entrypoint,
unique case-insensitive paths, an aggregate size ceiling and an import graph
whose every edge lands inside the bundle and which contains no cycles. It
never executes or type-checks the workflow language.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from omicsengine.validation.base import (
    BundleEntry,
    EntryRole,
    check_cancelled,
    is_remote_import,
    normalize_bundle_path,
    resolve_import_path,
)


logger = logging.getLogger(__name__)

# Inline definition upload limit of the managed workflow service.
DEFAULT_MAX_BUNDLE_BYTES = 4 * 1024 * 1024


class BundleErrorKind(Enum):
    """Distinct structural violations."""

    MULTIPLE_ENTRYPOINTS = "MultipleEntrypoints"
    MISSING_ENTRYPOINT = "MissingEntrypoint"
    UNRESOLVED_IMPORT = "UnresolvedImport"
    PATH_COLLISION = "PathCollision"
    OVERSIZED_BUNDLE = "OversizedBundle"
    CIRCULAR_IMPORT = "CircularImport"
    INVALID_PATH = "InvalidPath"


@dataclass(frozen=True)
class BundleFinding:
    """One structural violation.

    Attributes:
        kind: Violation kind
        path: Offending bundle path (or import as written when unresolvable)
        detail: Human readable explanation
        related: Other paths involved (importer, colliding path, cycle)
        value: Offending value for size findings
        bound: Bound violated for size findings
    """

    kind: BundleErrorKind
    path: Optional[str]
    detail: str
    related: Tuple[str, ...] = ()
    value: Optional[int] = None
    bound: Optional[int] = None

    def sort_key(self):
        return (self.kind.value, self.path or "", self.related)


@dataclass(frozen=True)
class ValidationReport:
    """Result of validating a bundle."""

    findings: Tuple[BundleFinding, ...]
    entrypoint: Optional[str]
    total_size_bytes: int
    reachable: Tuple[str, ...]

    @property
    def is_valid(self) -> bool:
        return not self.findings

    def kinds(self) -> Set[BundleErrorKind]:
        return {f.kind for f in self.findings}

    def by_kind(self, kind: BundleErrorKind) -> List[BundleFinding]:
        return [f for f in self.findings if f.kind == kind]


class _ImportWalker:
    """Depth-first import walk with a visited set and an explicit stack.

    The walk keeps its own stack of ``(path, pending imports)`` frames so
    that arbitrarily long import chains do not hit the interpreter
    recursion limit.
    """

    def __init__(self, by_path: Dict[str, BundleEntry], cancel_event: Optional[threading.Event]):
        self.by_path = by_path
        self.cancel_event = cancel_event
        self.visited: Set[str] = set()
        self.stack: List[str] = []
        # path -> index in self.stack, for paths currently on the stack
        self.on_stack: Dict[str, int] = {}
        self.findings: Set[BundleFinding] = set()

    def _enter(self, path: str, frames: List[Tuple[str, Iterator[str]]]) -> None:
        check_cancelled(self.cancel_event, "Bundle validation")
        self.visited.add(path)
        self.on_stack[path] = len(self.stack)
        self.stack.append(path)
        frames.append((path, iter(self.by_path[path].imports)))

    def visit(self, start: str) -> None:
        frames: List[Tuple[str, Iterator[str]]] = []
        self._enter(start, frames)

        while frames:
            path, pending = frames[-1]
            declared = next(pending, None)
            if declared is None:
                frames.pop()
                self.stack.pop()
                del self.on_stack[path]
                continue

            if is_remote_import(declared):
                continue

            target = resolve_import_path(path, declared)
            if target is None or target not in self.by_path:
                self.findings.add(
                    BundleFinding(
                        kind=BundleErrorKind.UNRESOLVED_IMPORT,
                        path=target or declared,
                        detail=f"'{path}' imports '{declared}', which is not in the bundle",
                        related=(path,),
                    )
                )
            elif target in self.on_stack:
                cycle = tuple(self.stack[self.on_stack[target]:]) + (target,)
                self.findings.add(
                    BundleFinding(
                        kind=BundleErrorKind.CIRCULAR_IMPORT,
                        path=target,
                        detail="Import cycle: " + " -> ".join(cycle),
                        related=cycle,
                    )
                )
            elif target not in self.visited:
                self._enter(target, frames)


def validate(
    entries: Iterable[BundleEntry],
    max_bundle_bytes: int = DEFAULT_MAX_BUNDLE_BYTES,
    cancel_event: Optional[threading.Event] = None,
) -> ValidationReport:
    """
    Validate the structure of a workflow bundle.

    Args:
        entries: Bundle entries
        max_bundle_bytes: Aggregate size ceiling of the packaging transport
        cancel_event: Checked between entries; setting it aborts validation

    Returns:
        ValidationReport; identical for identical input

    Raises:
        OperationCancelledError: If cancel_event was set
    """
    findings: Set[BundleFinding] = set()
    by_path: Dict[str, BundleEntry] = {}
    folded: Dict[str, str] = {}
    total_size = 0

    for entry in entries:
        check_cancelled(cancel_event, "Bundle validation")
        total_size += entry.size_bytes

        normalized = normalize_bundle_path(entry.relative_path)
        if normalized is None:
            findings.add(
                BundleFinding(
                    kind=BundleErrorKind.INVALID_PATH,
                    path=entry.relative_path,
                    detail="Path is empty, absolute or escapes the bundle root",
                )
            )
            continue

        key = normalized.casefold()
        if key in folded:
            findings.add(
                BundleFinding(
                    kind=BundleErrorKind.PATH_COLLISION,
                    path=normalized,
                    detail=f"'{normalized}' collides with '{folded[key]}' on a case-insensitive filesystem",
                    related=(folded[key],),
                )
            )
            continue

        folded[key] = normalized
        by_path[normalized] = entry

    root_entrypoints = sorted(
        p for p, e in by_path.items() if e.role == EntryRole.ENTRYPOINT and "/" not in p
    )
    nested_entrypoints = sorted(
        p for p, e in by_path.items() if e.role == EntryRole.ENTRYPOINT and "/" in p
    )

    if not root_entrypoints:
        detail = "No entrypoint file at the bundle root"
        if nested_entrypoints:
            detail += f" (nested entrypoints ignored: {', '.join(nested_entrypoints)})"
        findings.add(BundleFinding(BundleErrorKind.MISSING_ENTRYPOINT, None, detail))
    elif len(root_entrypoints) > 1:
        findings.add(
            BundleFinding(
                kind=BundleErrorKind.MULTIPLE_ENTRYPOINTS,
                path=root_entrypoints[0],
                detail=f"{len(root_entrypoints)} entrypoints at the bundle root",
                related=tuple(root_entrypoints),
            )
        )

    if total_size > max_bundle_bytes:
        findings.add(
            BundleFinding(
                kind=BundleErrorKind.OVERSIZED_BUNDLE,
                path=None,
                detail=f"Bundle is {total_size} bytes, limit is {max_bundle_bytes}",
                value=total_size,
                bound=max_bundle_bytes,
            )
        )

    walker = _ImportWalker(by_path, cancel_event)
    for entrypoint in root_entrypoints:
        if entrypoint not in walker.visited:
            walker.visit(entrypoint)
    findings.update(walker.findings)

    report = ValidationReport(
        findings=tuple(sorted(findings, key=BundleFinding.sort_key)),
        entrypoint=root_entrypoints[0] if len(root_entrypoints) == 1 else None,
        total_size_bytes=total_size,
        reachable=tuple(sorted(walker.visited)),
    )
    logger.debug(
        "Validated bundle: %d entries, %d finding(s)", len(by_path), len(report.findings)
    )
    return report
