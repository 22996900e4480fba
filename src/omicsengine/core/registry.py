#!/usr/bin/env python3
"""
Container reference resolution for omicsengine.

This module parses free-form container image strings into ContainerReference
values and resolves them against a RegistryMapSet: exact image mappings are
checked first, then registry (pull-through) mappings that rewrite the host to
the private ECR registry of the target account.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from omicsengine.core.errors import (
    AmbiguousMappingError,
    ConfigurationError,
    InvalidReferenceError,
    UnresolvedReferenceError,
    create_error_context,
)


logger = logging.getLogger(__name__)

DOCKER_HUB_HOST = "registry-1.docker.io"
DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", "registry-1.docker.io")
DEFAULT_TAG = "latest"

_PATH_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[0-9a-fA-F]{32,}$")
_HOST_RE = re.compile(r"^[a-z0-9]([a-z0-9.-]*[a-z0-9])?(:[0-9]+)?$")
_ACCOUNT_RE = re.compile(r"^[0-9]{12}$")
_REGION_RE = re.compile(r"^[a-z]{2}(-[a-z]+)+-[0-9]+$")


@dataclass(frozen=True)
class ContainerReference:
    """Parsed container image reference.

    Either tag or digest is always set. When a digest is present it pins the
    image and the tag is dropped.
    """

    registry_host: str
    repository_path: str
    tag: Optional[str] = None
    digest: Optional[str] = None
    raw: str = field(default="", compare=False)

    @property
    def canonical(self) -> str:
        """Canonical string used for exact image mapping matches."""
        base = f"{self.registry_host}/{self.repository_path}"
        if self.digest:
            return f"{base}@{self.digest}"
        return f"{base}:{self.tag}"

    def __str__(self) -> str:
        return self.canonical


@dataclass(frozen=True)
class RegistryMapping:
    """Rewrites every image of an upstream registry into an ECR prefix."""

    upstream_registry_url: str
    ecr_repository_prefix: str


@dataclass(frozen=True)
class ImageMapping:
    """Full override of a single source image."""

    source_image: str
    destination_image: str


class ResolutionRule(Enum):
    """How a reference was resolved."""

    IMAGE_MAPPING = "image_mapping"
    REGISTRY_MAPPING = "registry_mapping"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class ResolvedReference:
    """Successful (or, in permissive mode, flagged passthrough) resolution."""

    reference: ContainerReference
    uri: str
    rule: ResolutionRule
    flagged: bool = False

    @property
    def is_resolved(self) -> bool:
        return True


@dataclass(frozen=True)
class Unresolved:
    """No mapping matched the reference in strict mode."""

    reference: ContainerReference
    reason: str

    @property
    def is_resolved(self) -> bool:
        return False


@dataclass(frozen=True)
class ResolutionReport:
    """Outcome of resolving a batch of references."""

    resolved: Tuple[ResolvedReference, ...]
    unresolved: Tuple[Unresolved, ...]

    @property
    def flagged(self) -> Tuple[ResolvedReference, ...]:
        """Passthrough references the caller must audit."""
        return tuple(r for r in self.resolved if r.flagged)

    @property
    def uri_map(self) -> Dict[str, str]:
        """Original image string -> resolved URI."""
        return {r.reference.raw or r.reference.canonical: r.uri for r in self.resolved}


def normalize_registry_host(url: str) -> str:
    """
    Normalize a registry host or URL.

    Lower-cases the host, strips a scheme and trailing slashes and folds the
    Docker Hub aliases into a single host name.

    Raises:
        ConfigurationError: If the value is not a bare registry host
    """
    host = (url or "").strip().lower()
    for scheme in ("https://", "http://"):
        if host.startswith(scheme):
            host = host[len(scheme):]
    host = host.rstrip("/")

    if not host or "/" in host or not _HOST_RE.match(host):
        raise ConfigurationError(f"Invalid registry host: '{url}'")

    if host in DOCKER_HUB_ALIASES:
        return DOCKER_HUB_HOST
    return host


def _looks_like_host(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


def parse_reference(image: str) -> ContainerReference:
    """
    Parse a free-form image string into a ContainerReference.

    Accepted forms follow the Docker reference grammar, e.g. ``ubuntu``,
    ``quay.io/biocontainers/samtools:1.17--h00cdaf9_0`` or
    ``public.ecr.aws/lts/ubuntu@sha256:<hex>``.

    Raises:
        InvalidReferenceError: If the string is not a valid reference
    """
    raw = image
    text = (image or "").strip()
    if not text:
        raise InvalidReferenceError(image, "empty reference")
    if any(ch.isspace() for ch in text):
        raise InvalidReferenceError(image, "whitespace in reference")

    for scheme in ("https://", "http://", "docker://"):
        if text.lower().startswith(scheme):
            text = text[len(scheme):]

    digest = None
    if "@" in text:
        text, digest = text.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise InvalidReferenceError(image, f"malformed digest '{digest}'")

    parts = text.split("/")
    if len(parts) > 1 and _looks_like_host(parts[0]):
        try:
            host = normalize_registry_host(parts[0])
        except ConfigurationError as e:
            raise InvalidReferenceError(image, f"invalid registry host '{parts[0]}'", cause=e)
        path_parts = parts[1:]
    else:
        host = DOCKER_HUB_HOST
        path_parts = parts

    tag = None
    last = path_parts[-1]
    if ":" in last:
        last, tag = last.rsplit(":", 1)
        if not _TAG_RE.match(tag):
            raise InvalidReferenceError(image, f"malformed tag '{tag}'")
        path_parts = path_parts[:-1] + [last]

    for component in path_parts:
        if not _PATH_COMPONENT_RE.match(component):
            raise InvalidReferenceError(
                image, f"invalid repository path component '{component}'"
            )

    if host == DOCKER_HUB_HOST and len(path_parts) == 1:
        path_parts = ["library"] + path_parts

    if digest:
        tag = None
    elif tag is None:
        tag = DEFAULT_TAG

    return ContainerReference(
        registry_host=host,
        repository_path="/".join(path_parts),
        tag=tag,
        digest=digest,
        raw=raw,
    )


def ecr_registry_host(account_id: str, region: str) -> str:
    """Return the private ECR host for an account and region."""
    return f"{account_id}.dkr.ecr.{region}.amazonaws.com"


class RegistryMapSet:
    """
    Ordered image mappings followed by registry mappings.

    Image mappings are matched on the canonical form of their source image;
    the first mapping for a given source wins. Registry mappings are keyed
    by normalized upstream host and must be unique.

    Raises:
        AmbiguousMappingError: Two registry mappings share one upstream host
        ConfigurationError: Malformed mappings or ECR coordinates
    """

    def __init__(
        self,
        image_mappings: Iterable[ImageMapping] = (),
        registry_mappings: Iterable[RegistryMapping] = (),
        ecr_account_id: Optional[str] = None,
        ecr_region: Optional[str] = None,
    ):
        self.image_mappings: Tuple[ImageMapping, ...] = tuple(image_mappings)
        self.registry_mappings: Tuple[RegistryMapping, ...] = tuple(registry_mappings)
        self.ecr_account_id = ecr_account_id
        self.ecr_region = ecr_region

        self._by_source: Dict[str, ImageMapping] = {}
        for mapping in self.image_mappings:
            if not mapping.destination_image:
                raise ConfigurationError(
                    f"Image mapping for '{mapping.source_image}' has no destinationImage"
                )
            try:
                canonical = parse_reference(mapping.source_image).canonical
            except InvalidReferenceError as e:
                raise ConfigurationError(
                    f"Invalid sourceImage in image mapping: {e}", cause=e
                )
            if canonical in self._by_source:
                logger.warning(
                    "Duplicate image mapping for %s ignored; first mapping wins", canonical
                )
                continue
            self._by_source[canonical] = mapping

        self._by_host: Dict[str, RegistryMapping] = {}
        for mapping in self.registry_mappings:
            host = normalize_registry_host(mapping.upstream_registry_url)
            if host in self._by_host:
                raise AmbiguousMappingError(
                    mapping.upstream_registry_url,
                    context=create_error_context(
                        operation="load_registry_map", component="RegistryMapSet"
                    ),
                )
            prefix = mapping.ecr_repository_prefix.strip("/")
            if not prefix or not all(_PATH_COMPONENT_RE.match(p) for p in prefix.split("/")):
                raise ConfigurationError(
                    f"Invalid ecrRepositoryPrefix '{mapping.ecr_repository_prefix}' "
                    f"for upstream '{mapping.upstream_registry_url}'"
                )
            self._by_host[host] = RegistryMapping(host, prefix)

        if self._by_host:
            if not ecr_account_id or not _ACCOUNT_RE.match(str(ecr_account_id)):
                raise ConfigurationError(
                    f"Registry mappings require a 12-digit ECR account id, got '{ecr_account_id}'"
                )
            if not ecr_region or not _REGION_RE.match(ecr_region):
                raise ConfigurationError(
                    f"Registry mappings require a valid ECR region, got '{ecr_region}'"
                )

    @property
    def ecr_host(self) -> Optional[str]:
        if self.ecr_account_id and self.ecr_region:
            return ecr_registry_host(self.ecr_account_id, self.ecr_region)
        return None

    def match_image(self, ref: ContainerReference) -> Optional[ImageMapping]:
        return self._by_source.get(ref.canonical)

    def match_registry(self, ref: ContainerReference) -> Optional[RegistryMapping]:
        return self._by_host.get(ref.registry_host)

    @classmethod
    def from_document(
        cls,
        document: Dict[str, Any],
        ecr_account_id: Optional[str] = None,
        ecr_region: Optional[str] = None,
    ) -> "RegistryMapSet":
        """
        Build a map set from a registry map document.

        Args:
            document: Dict with ``registryMappings`` and/or ``imageMappings``
            ecr_account_id: Account owning the private ECR repositories
            ecr_region: Region of the private ECR repositories

        Returns:
            RegistryMapSet instance
        """
        if not isinstance(document, dict):
            raise ConfigurationError("Registry map document must be a mapping")

        registry_mappings = []
        for i, entry in enumerate(document.get("registryMappings") or []):
            if not isinstance(entry, dict) or not entry.get("upstreamRegistryUrl") \
                    or not entry.get("ecrRepositoryPrefix"):
                raise ConfigurationError(
                    f"registryMappings[{i}] requires upstreamRegistryUrl and ecrRepositoryPrefix"
                )
            registry_mappings.append(
                RegistryMapping(entry["upstreamRegistryUrl"], entry["ecrRepositoryPrefix"])
            )

        image_mappings = []
        for i, entry in enumerate(document.get("imageMappings") or []):
            if not isinstance(entry, dict) or not entry.get("sourceImage") \
                    or not entry.get("destinationImage"):
                raise ConfigurationError(
                    f"imageMappings[{i}] requires sourceImage and destinationImage"
                )
            image_mappings.append(ImageMapping(entry["sourceImage"], entry["destinationImage"]))

        return cls(image_mappings, registry_mappings, ecr_account_id, ecr_region)


def load_registry_map(
    path: Union[str, Path],
    ecr_account_id: Optional[str] = None,
    ecr_region: Optional[str] = None,
) -> RegistryMapSet:
    """
    Load a registry map document (JSON or YAML) from disk.

    Raises:
        ConfigurationError: If the file is missing, unparsable or ambiguous
    """
    map_path = Path(path)
    if not map_path.exists():
        raise ConfigurationError(f"Registry map not found: {map_path}")

    try:
        with open(map_path) as f:
            if map_path.suffix.lower() == ".json":
                document = json.load(f)
            else:
                document = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Could not parse registry map {map_path}: {e}",
            context=create_error_context(operation="load_registry_map", file_path=str(map_path)),
            cause=e,
        )

    map_set = RegistryMapSet.from_document(document or {}, ecr_account_id, ecr_region)
    logger.debug(
        "Loaded registry map %s: %d image mapping(s), %d registry mapping(s)",
        map_path,
        len(map_set.image_mappings),
        len(map_set.registry_mappings),
    )
    return map_set


def _rewrite_for_registry(ref: ContainerReference, mapping: RegistryMapping, ecr_host: str) -> ContainerReference:
    return ContainerReference(
        registry_host=ecr_host,
        repository_path=f"{mapping.ecr_repository_prefix}/{ref.repository_path}",
        tag=ref.tag,
        digest=ref.digest,
    )


def resolve(
    ref: Union[ContainerReference, str],
    map_set: RegistryMapSet,
    require_all: bool = False,
) -> Union[ResolvedReference, Unresolved]:
    """
    Resolve a container reference to its destination URI.

    Args:
        ref: Parsed reference or raw image string
        map_set: Mapping rules
        require_all: Strict mode; unmatched references return Unresolved
            instead of passing through

    Returns:
        ResolvedReference or Unresolved
    """
    if isinstance(ref, str):
        ref = parse_reference(ref)

    image_mapping = map_set.match_image(ref)
    if image_mapping is not None:
        return ResolvedReference(ref, image_mapping.destination_image, ResolutionRule.IMAGE_MAPPING)

    registry_mapping = map_set.match_registry(ref)
    if registry_mapping is not None:
        destination = _rewrite_for_registry(ref, registry_mapping, map_set.ecr_host)
        return ResolvedReference(ref, destination.canonical, ResolutionRule.REGISTRY_MAPPING)

    if require_all:
        return Unresolved(ref, f"no mapping matches '{ref.canonical}'")

    logger.warning("Unresolved container reference passed through: %s", ref.raw or ref.canonical)
    return ResolvedReference(
        ref, ref.raw or ref.canonical, ResolutionRule.PASSTHROUGH, flagged=True
    )


def resolve_all(
    images: Iterable[Union[ContainerReference, str]],
    map_set: RegistryMapSet,
    require_all: bool = False,
) -> ResolutionReport:
    """
    Resolve a batch of references.

    Raises:
        UnresolvedReferenceError: In strict mode, if any reference is unresolved
    """
    resolved: List[ResolvedReference] = []
    unresolved: List[Unresolved] = []
    seen = set()

    for image in images:
        ref = parse_reference(image) if isinstance(image, str) else image
        if ref.canonical in seen:
            continue
        seen.add(ref.canonical)

        result = resolve(ref, map_set, require_all=require_all)
        if isinstance(result, Unresolved):
            unresolved.append(result)
        else:
            resolved.append(result)

    if require_all and unresolved:
        raise UnresolvedReferenceError([u.reference.raw or u.reference.canonical for u in unresolved])

    return ResolutionReport(tuple(resolved), tuple(unresolved))
