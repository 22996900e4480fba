#!/usr/bin/env python3
"""
Bundle scanning - builds a WorkflowBundle from a definition tree or zip.

Scanning is metadata inspection only. For each WDL, Nextflow or CWL file it
extracts declared imports, container images and per-task CPU/memory
declarations using the surface syntax of the language; nothing is parsed
beyond what is needed for those three things.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import hashlib
import logging
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import yaml

from omicsengine.core.errors import ConfigurationError, ValidationError
from omicsengine.validation.base import BundleEntry, EntryRole, TaskResourceSpec, WorkflowBundle
from omicsengine.validation.bundle_validator import DEFAULT_MAX_BUNDLE_BYTES


logger = logging.getLogger(__name__)

DEFINITION_SUFFIXES = {".wdl": "WDL", ".nf": "NEXTFLOW", ".cwl": "CWL"}
ENTRYPOINT_NAMES = ("main.wdl", "main.nf", "main.cwl")
# Archives declaring more than this multiple of the bundle ceiling are not read.
ARCHIVE_READ_LIMIT_FACTOR = 16

# Runtime and directive keys are matched on a key boundary rather than a line
# start so that one-line blocks such as ``runtime { cpu: 4 memory: "8 GiB" }``
# are read the same as multi-line ones.
_KEY = r"(?:^|(?<=[{\s;,]))"
_VALUE = r"""("[^"\n]*"|'[^'\n]*'|[^\s#;,}]+)"""

_WDL_IMPORT_RE = re.compile(r"""^\s*import\s+["']([^"']+)["']""", re.MULTILINE)
_WDL_TASK_RE = re.compile(r"^\s*task\s+(\w+)\s*\{", re.MULTILINE)
_WDL_RUNTIME_RE = re.compile(r"\b(?:runtime|requirements)\s*\{")
_WDL_CPU_RE = re.compile(_KEY + r"cpu\s*:\s*" + _VALUE, re.MULTILINE)
_WDL_MEMORY_RE = re.compile(_KEY + r"memory\s*:\s*" + _VALUE, re.MULTILINE)
_WDL_CONTAINER_RE = re.compile(_KEY + r"""(?:docker|container)\s*:\s*["']([^"'\n]+)["']""", re.MULTILINE)

_NF_INCLUDE_RE = re.compile(r"""^\s*include\s*\{[^}]*\}\s*from\s*["']([^"']+)["']""", re.MULTILINE)
_NF_INCLUDE_CONFIG_RE = re.compile(r"""^\s*includeConfig\s+["']([^"']+)["']""", re.MULTILINE)
_NF_PROCESS_RE = re.compile(r"^\s*process\s+(\w+)\s*\{", re.MULTILINE)
_NF_CPUS_RE = re.compile(_KEY + r"cpus\s*=?\s*" + _VALUE, re.MULTILINE)
_NF_MEMORY_RE = re.compile(_KEY + r"memory\s*=?\s*" + _VALUE, re.MULTILINE)
_NF_CONTAINER_RE = re.compile(_KEY + r"""container\s*=?\s*["']([^"'\n]+)["']""", re.MULTILINE)
# Directives end where the process body switches to its script section.
_NF_SCRIPT_RE = re.compile(r"""(?:^|(?<=[{\s;]))(?:script|shell|exec)\s*:|\"\"\"|'''""", re.MULTILINE)

# Interpolated images (WDL ``~{img}``/``${img}``, Groovy ``${img}``/``$img``)
# are only known at run time.
_INTERPOLATION_RE = re.compile(r"~\{|\$")

_NUMBER_RE = re.compile(r"""^["']?\s*([0-9]+(?:\.[0-9]+)?)\s*["']?$""")
_MEMORY_RE = re.compile(r"""^["']?\s*([0-9]+(?:\.[0-9]+)?)\s*\.?\s*([A-Za-z]*)\s*["']?$""")

_DECIMAL_UNITS = {"": 1, "B": 1, "K": 10**3, "KB": 10**3, "M": 10**6, "MB": 10**6,
                  "G": 10**9, "GB": 10**9, "T": 10**12, "TB": 10**12}
_BINARY_UNITS = {"KI": 2**10, "KIB": 2**10, "MI": 2**20, "MIB": 2**20,
                 "GI": 2**30, "GIB": 2**30, "TI": 2**40, "TIB": 2**40}
_BINARY_DEFAULT = {"": 1, "B": 1, "K": 2**10, "KB": 2**10, "M": 2**20, "MB": 2**20,
                   "G": 2**30, "GB": 2**30, "T": 2**40, "TB": 2**40}


@dataclass
class FileScan:
    """Metadata extracted from one definition file."""

    imports: List[str] = field(default_factory=list)
    containers: List[str] = field(default_factory=list)
    dynamic_containers: List[str] = field(default_factory=list)
    tasks: List[TaskResourceSpec] = field(default_factory=list)


def memory_to_gib(text: str, binary_units: bool = False) -> Optional[float]:
    """
    Convert a literal memory declaration to GiB.

    Args:
        text: e.g. ``"8 GiB"``, ``"4G"``, ``8.GB``
        binary_units: Treat K/M/G/T as powers of 1024 (Nextflow semantics)

    Returns:
        Amount in GiB, or None when the value is not a literal
    """
    match = _MEMORY_RE.match(text.strip().rstrip(";"))
    if not match:
        return None
    amount, unit = float(match.group(1)), match.group(2).upper()
    factor = _BINARY_UNITS.get(unit)
    if factor is None:
        factor = (_BINARY_DEFAULT if binary_units else _DECIMAL_UNITS).get(unit)
    if factor is None:
        return None
    return amount * factor / 2**30


def _literal_number(text: str) -> Optional[float]:
    match = _NUMBER_RE.match(text.strip().rstrip(";"))
    return float(match.group(1)) if match else None


def _iter_blocks(text: str, header_re: re.Pattern) -> Iterator[Tuple[str, str]]:
    """Yield (name, body) for each ``header {...}`` block, matching braces."""
    for match in header_re.finditer(text):
        start = match.end()
        depth = 1
        i = start
        while i < len(text) and depth:
            if text[i] == "{":
                depth += 1
            elif text[i] == "}":
                depth -= 1
            i += 1
        name = match.group(1) if match.groups() else ""
        yield name, text[start:i - 1]


def _strip_comments(text: str, marker: str) -> str:
    return "\n".join(
        line for line in text.splitlines() if not line.lstrip().startswith(marker)
    )


def _collect_containers(scan: FileScan, images: List[str], task_name: str, path: str) -> None:
    for image in images:
        if _INTERPOLATION_RE.search(image):
            logger.warning(
                "Container for task %s in %s is interpolated (%s); it is resolved at run time and not checked",
                task_name, path or "<string>", image,
            )
            scan.dynamic_containers.append(image)
        else:
            scan.containers.append(image)


def scan_wdl(text: str, path: str = "") -> FileScan:
    """Extract imports, containers and task resources from WDL source."""
    text = _strip_comments(text, "#")
    scan = FileScan(imports=_WDL_IMPORT_RE.findall(text))

    for task_name, body in _iter_blocks(text, _WDL_TASK_RE):
        runtimes = [b for _, b in _iter_blocks(body, _WDL_RUNTIME_RE)]
        runtime = runtimes[0] if runtimes else ""

        _collect_containers(scan, _WDL_CONTAINER_RE.findall(runtime), task_name, path)

        cpu_match = _WDL_CPU_RE.search(runtime)
        memory_match = _WDL_MEMORY_RE.search(runtime)
        scan.tasks.append(
            TaskResourceSpec(
                task_name=task_name,
                cpu=_literal_number(cpu_match.group(1)) if cpu_match else None,
                memory_gib=memory_to_gib(memory_match.group(1)) if memory_match else None,
                declared=bool(cpu_match or memory_match),
                source_path=path or None,
            )
        )

    return scan


def _nextflow_include_path(path: str) -> Optional[str]:
    if path.startswith("plugin/"):
        return None
    if PurePosixPath(path).suffix not in (".nf", ".config"):
        path = f"{path}.nf"
    return path


def scan_nextflow(text: str, path: str = "") -> FileScan:
    """Extract includes, containers and process resources from Nextflow source."""
    text = _strip_comments(text, "//")
    scan = FileScan()

    for declared in _NF_INCLUDE_RE.findall(text) + _NF_INCLUDE_CONFIG_RE.findall(text):
        include_path = _nextflow_include_path(declared)
        if include_path:
            scan.imports.append(include_path)

    for process_name, body in _iter_blocks(text, _NF_PROCESS_RE):
        script = _NF_SCRIPT_RE.search(body)
        if script:
            body = body[:script.start()]
        _collect_containers(scan, _NF_CONTAINER_RE.findall(body), process_name, path)

        cpus_match = _NF_CPUS_RE.search(body)
        memory_match = _NF_MEMORY_RE.search(body)
        scan.tasks.append(
            TaskResourceSpec(
                task_name=process_name,
                cpu=_literal_number(cpus_match.group(1)) if cpus_match else None,
                memory_gib=(
                    memory_to_gib(memory_match.group(1), binary_units=True)
                    if memory_match else None
                ),
                declared=bool(cpus_match or memory_match),
                source_path=path or None,
            )
        )

    return scan


def _cwl_requirements(document: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Merge ``requirements`` and ``hints`` (list or map form) by class."""
    merged: Dict[str, Dict[str, Any]] = {}
    for key in ("hints", "requirements"):
        section = document.get(key) or []
        if isinstance(section, dict):
            section = [dict(value or {}, **{"class": name}) for name, value in section.items()]
        for item in section:
            if isinstance(item, dict) and "class" in item:
                merged[item["class"]] = item
    return merged


def _cwl_imports(node: Any, found: List[str]) -> None:
    if isinstance(node, dict):
        for key, value in node.items():
            if key in ("$import", "$include", "run") and isinstance(value, str):
                target = value.split("#", 1)[0]
                if target:
                    found.append(target)
            else:
                _cwl_imports(value, found)
    elif isinstance(node, list):
        for item in node:
            _cwl_imports(item, found)


def scan_cwl(text: str, path: str = "") -> FileScan:
    """Extract step imports, DockerRequirement and ResourceRequirement from CWL."""
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.warning("Could not parse CWL document %s: %s", path or "<string>", e)
        return FileScan()
    if not isinstance(document, dict):
        return FileScan()

    scan = FileScan()
    _cwl_imports(document, scan.imports)

    requirements = _cwl_requirements(document)
    docker = requirements.get("DockerRequirement", {})
    if isinstance(docker.get("dockerPull"), str):
        _collect_containers(scan, [docker["dockerPull"]], str(document.get("id") or "tool"), path)

    if document.get("class") in ("CommandLineTool", "ExpressionTool"):
        resources = requirements.get("ResourceRequirement")
        cores = ram = None
        if resources:
            cores = resources.get("coresMin", resources.get("coresMax"))
            ram = resources.get("ramMin", resources.get("ramMax"))
        name = document.get("id") or PurePosixPath(path).stem or "tool"
        scan.tasks.append(
            TaskResourceSpec(
                task_name=str(name).lstrip("#"),
                cpu=float(cores) if isinstance(cores, (int, float)) else None,
                memory_gib=float(ram) / 1024 if isinstance(ram, (int, float)) else None,
                declared=resources is not None,
                source_path=path or None,
            )
        )

    return scan


_SCANNERS = {"WDL": scan_wdl, "NEXTFLOW": scan_nextflow, "CWL": scan_cwl}


def scan_file(relative_path: str, data: bytes) -> FileScan:
    """Scan one file; non-definition files yield an empty FileScan."""
    language = DEFINITION_SUFFIXES.get(PurePosixPath(relative_path).suffix.lower())
    if relative_path.endswith("nextflow.config"):
        text = _strip_comments(data.decode("utf-8", errors="replace"), "//")
        return FileScan(imports=_NF_INCLUDE_CONFIG_RE.findall(text))
    if language is None:
        return FileScan()
    return _SCANNERS[language](data.decode("utf-8", errors="replace"), relative_path)


def _role_for(relative_path: str, entrypoint: Optional[str]) -> EntryRole:
    if entrypoint is not None:
        if relative_path == entrypoint:
            return EntryRole.ENTRYPOINT
    elif "/" not in relative_path and relative_path in ENTRYPOINT_NAMES:
        return EntryRole.ENTRYPOINT
    if PurePosixPath(relative_path).suffix.lower() in DEFINITION_SUFFIXES:
        return EntryRole.IMPORT
    return EntryRole.OTHER


def _build_bundle(
    files: List[Tuple[str, bytes]],
    entrypoint: Optional[str],
    root: str,
) -> WorkflowBundle:
    entries: List[BundleEntry] = []
    tasks: List[TaskResourceSpec] = []
    containers: List[str] = []
    engine = None

    for relative_path, data in sorted(files):
        scan = scan_file(relative_path, data)
        role = _role_for(relative_path, entrypoint)
        if role == EntryRole.ENTRYPOINT and engine is None:
            engine = DEFINITION_SUFFIXES.get(PurePosixPath(relative_path).suffix.lower())

        entries.append(
            BundleEntry(
                relative_path=relative_path,
                role=role,
                size_bytes=len(data),
                imports=tuple(scan.imports),
                content_sha256=hashlib.sha256(data).hexdigest(),
            )
        )
        tasks.extend(scan.tasks)
        for image in scan.containers:
            if image not in containers:
                containers.append(image)

    logger.info(
        "Scanned %s: %d file(s), %d task(s), %d container image(s)",
        root, len(entries), len(tasks), len(containers),
    )
    return WorkflowBundle(
        entries=tuple(entries),
        tasks=tuple(tasks),
        container_images=tuple(containers),
        engine=engine,
        root=root,
    )


def scan_directory(root: Union[str, Path], entrypoint: Optional[str] = None) -> WorkflowBundle:
    """
    Build a WorkflowBundle from a workflow definition directory.

    Args:
        root: Directory containing the workflow definition tree
        entrypoint: Bundle-relative entrypoint path; defaults to a root
            ``main.wdl``, ``main.nf`` or ``main.cwl``

    Raises:
        ConfigurationError: If root is not a directory
    """
    root_path = Path(root)
    if not root_path.is_dir():
        raise ConfigurationError(f"Workflow directory not found: {root_path}")

    files = []
    for path in root_path.rglob("*"):
        relative = path.relative_to(root_path)
        if not path.is_file() or any(part.startswith(".") for part in relative.parts):
            continue
        files.append((relative.as_posix(), path.read_bytes()))

    return _build_bundle(files, entrypoint, str(root_path))


def scan_archive(
    archive: Union[str, Path],
    entrypoint: Optional[str] = None,
    max_bundle_bytes: int = DEFAULT_MAX_BUNDLE_BYTES,
) -> WorkflowBundle:
    """
    Build a WorkflowBundle from a zipped workflow definition.

    Member sizes are summed from the archive directory before anything is
    decompressed. Archives slightly over ``max_bundle_bytes`` are still
    scanned so the validator can report OversizedBundle; archives
    ARCHIVE_READ_LIMIT_FACTOR times over the ceiling are refused unread.

    Raises:
        ConfigurationError: If the archive is missing or not a zip file
        ValidationError: If the declared uncompressed size is far past the ceiling
    """
    archive_path = Path(archive)
    if not archive_path.is_file():
        raise ConfigurationError(f"Workflow archive not found: {archive_path}")

    try:
        with zipfile.ZipFile(archive_path) as zf:
            members = [info for info in zf.infolist() if not info.is_dir()]
            declared = sum(info.file_size for info in members)
            if declared > max_bundle_bytes * ARCHIVE_READ_LIMIT_FACTOR:
                raise ValidationError(
                    f"Archive {archive_path} declares {declared} uncompressed bytes, "
                    f"far past the {max_bundle_bytes} byte bundle limit",
                    suggestions=["Remove data files from the workflow definition bundle"],
                )
            files = [(info.filename, zf.read(info)) for info in members]
    except zipfile.BadZipFile as e:
        raise ConfigurationError(f"Not a valid zip archive: {archive_path}", cause=e)

    return _build_bundle(files, entrypoint, str(archive_path))
