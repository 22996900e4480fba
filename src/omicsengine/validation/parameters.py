#!/usr/bin/env python3
"""
Parameter document checks.

Run parameters are a flat mapping of unqualified names to values. Keys that
carry the workflow name as a namespace (``main.input_bam``) are rejected, as
are names the workflow does not declare when a declaration list is given.
Existence of remote objects is delegated to a storage-check callable.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import yaml

from omicsengine.core.errors import ConfigurationError


REMOTE_URI_PREFIXES = ("s3://", "omics://", "gs://", "https://", "http://")


class ParameterFindingKind(Enum):
    NAMESPACED_PARAMETER = "NamespacedParameter"
    UNKNOWN_PARAMETER = "UnknownParameter"
    MISSING_PARAMETER = "MissingParameter"
    MISSING_REMOTE_OBJECT = "MissingRemoteObject"


@dataclass(frozen=True)
class ParameterFinding:
    kind: ParameterFindingKind
    name: str
    value: Optional[str] = None
    detail: str = ""


def load_parameter_document(path: Union[str, Path]) -> Dict[str, Any]:
    """Load a JSON or YAML parameter document."""
    param_path = Path(path)
    if not param_path.exists():
        raise ConfigurationError(f"Parameter document not found: {param_path}")
    try:
        with open(param_path) as f:
            document = json.load(f) if param_path.suffix.lower() == ".json" else yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not parse parameter document {param_path}: {e}", cause=e)
    if not isinstance(document, dict):
        raise ConfigurationError(f"Parameter document must be a mapping: {param_path}")
    return document


def validate_parameters(
    parameters: Dict[str, Any],
    workflow_name: Optional[str] = None,
    declared: Optional[Iterable[str]] = None,
    required: Iterable[str] = (),
) -> List[ParameterFinding]:
    """
    Check that a parameter document is flat and matches the declarations.

    Args:
        parameters: Parameter name -> value
        workflow_name: Name of the workflow; ``<name>.<param>`` keys are flagged
        declared: Known parameter names, if available
        required: Parameter names that must be present

    Returns:
        Findings sorted by parameter name
    """
    findings: List[ParameterFinding] = []
    declared_names = set(declared) if declared is not None else None

    for name in sorted(parameters):
        if workflow_name and name.startswith(f"{workflow_name}."):
            findings.append(
                ParameterFinding(
                    ParameterFindingKind.NAMESPACED_PARAMETER,
                    name,
                    detail=f"use '{name[len(workflow_name) + 1:]}' without the workflow prefix",
                )
            )
        elif declared_names is not None and name not in declared_names:
            findings.append(ParameterFinding(ParameterFindingKind.UNKNOWN_PARAMETER, name))

    for name in sorted(set(required) - set(parameters)):
        findings.append(ParameterFinding(ParameterFindingKind.MISSING_PARAMETER, name))

    return findings


def remote_object_refs(parameters: Dict[str, Any]) -> Dict[str, List[str]]:
    """Collect remote object URIs per parameter, descending into lists and maps."""
    refs: Dict[str, List[str]] = {}

    def collect(name: str, value: Any) -> None:
        if isinstance(value, str) and value.lower().startswith(REMOTE_URI_PREFIXES):
            refs.setdefault(name, []).append(value)
        elif isinstance(value, dict):
            for item in value.values():
                collect(name, item)
        elif isinstance(value, (list, tuple)):
            for item in value:
                collect(name, item)

    for name, value in parameters.items():
        collect(name, value)
    return refs


def check_remote_objects(
    parameters: Dict[str, Any],
    exists: Callable[[str], bool],
) -> List[ParameterFinding]:
    """
    Report remote objects that the storage checker cannot find.

    Args:
        parameters: Parameter document
        exists: External storage check, returns True when the URI exists
    """
    findings = []
    for name, uris in sorted(remote_object_refs(parameters).items()):
        for uri in uris:
            if not exists(uri):
                findings.append(
                    ParameterFinding(
                        ParameterFindingKind.MISSING_REMOTE_OBJECT,
                        name,
                        value=uri,
                        detail="remote object does not exist",
                    )
                )
    return findings
