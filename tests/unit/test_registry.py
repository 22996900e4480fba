#!/usr/bin/env python3
"""
Unit tests for container reference parsing and registry resolution.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import json

import pytest

from omicsengine.core.errors import (
    AmbiguousMappingError,
    ConfigurationError,
    InvalidReferenceError,
    UnresolvedReferenceError,
)
from omicsengine.core.registry import (
    DOCKER_HUB_HOST,
    ImageMapping,
    RegistryMapSet,
    RegistryMapping,
    ResolutionRule,
    Unresolved,
    load_registry_map,
    normalize_registry_host,
    parse_reference,
    resolve,
    resolve_all,
)

ACCOUNT = "123456789012"
REGION = "us-east-1"
ECR = f"{ACCOUNT}.dkr.ecr.{REGION}.amazonaws.com"


@pytest.fixture
def map_set():
    return RegistryMapSet(
        image_mappings=[
            ImageMapping("ubuntu:22.04", f"{ECR}/base/ubuntu:22.04-patched"),
        ],
        registry_mappings=[
            RegistryMapping("quay.io", "quay"),
            RegistryMapping("https://docker.io/", "docker-hub"),
        ],
        ecr_account_id=ACCOUNT,
        ecr_region=REGION,
    )


@pytest.mark.unit
class TestParseReference:
    """Test parsing of free-form image strings."""

    def test_bare_docker_hub_name(self):
        ref = parse_reference("ubuntu")

        assert ref.registry_host == DOCKER_HUB_HOST
        assert ref.repository_path == "library/ubuntu"
        assert ref.tag == "latest"
        assert ref.canonical == "registry-1.docker.io/library/ubuntu:latest"

    def test_fully_qualified_reference(self):
        ref = parse_reference("quay.io/biocontainers/samtools:1.17--h00cdaf9_0")

        assert ref.registry_host == "quay.io"
        assert ref.repository_path == "biocontainers/samtools"
        assert ref.tag == "1.17--h00cdaf9_0"

    def test_registry_with_port(self):
        ref = parse_reference("localhost:5000/tools/bwa:0.7.17")

        assert ref.registry_host == "localhost:5000"
        assert ref.repository_path == "tools/bwa"
        assert ref.tag == "0.7.17"

    def test_digest_drops_tag(self):
        digest = "sha256:" + "a" * 64
        ref = parse_reference(f"public.ecr.aws/lts/ubuntu:22.04@{digest}")

        assert ref.digest == digest
        assert ref.tag is None
        assert ref.canonical.endswith(f"@{digest}")

    def test_docker_hub_aliases_are_equivalent(self):
        assert parse_reference("docker.io/library/ubuntu:22.04") == parse_reference("ubuntu:22.04")
        assert parse_reference("index.docker.io/library/ubuntu:22.04") == parse_reference("ubuntu:22.04")

    def test_scheme_is_stripped(self):
        assert parse_reference("docker://quay.io/org/tool:1").canonical == "quay.io/org/tool:1"

    def test_raw_string_is_preserved(self):
        assert parse_reference("ubuntu").raw == "ubuntu"

    @pytest.mark.parametrize(
        "image",
        ["", "   ", "Ubuntu:22.04", "ubuntu:bad tag", "quay.io/org/tool@sha256:xyz", "ubuntu:-bad", "bad_host.io:abc/x"],
    )
    def test_invalid_references(self, image):
        with pytest.raises(InvalidReferenceError):
            parse_reference(image)


@pytest.mark.unit
class TestNormalizeRegistryHost:
    """Test registry host normalization."""

    def test_scheme_and_slash_removed(self):
        assert normalize_registry_host("https://Quay.io/") == "quay.io"

    def test_docker_hub_folded(self):
        assert normalize_registry_host("docker.io") == DOCKER_HUB_HOST

    def test_path_rejected(self):
        with pytest.raises(ConfigurationError):
            normalize_registry_host("quay.io/biocontainers")


@pytest.mark.unit
class TestRegistryMapSet:
    """Test map set construction rules."""

    def test_duplicate_upstream_is_ambiguous(self):
        with pytest.raises(AmbiguousMappingError):
            RegistryMapSet(
                registry_mappings=[
                    RegistryMapping("quay.io", "quay"),
                    RegistryMapping("https://QUAY.io", "other"),
                ],
                ecr_account_id=ACCOUNT,
                ecr_region=REGION,
            )

    def test_duplicate_image_mapping_first_wins(self):
        map_set = RegistryMapSet(
            image_mappings=[
                ImageMapping("ubuntu", f"{ECR}/first:1"),
                ImageMapping("docker.io/library/ubuntu:latest", f"{ECR}/second:1"),
            ]
        )

        assert resolve("ubuntu", map_set).uri == f"{ECR}/first:1"

    def test_registry_mapping_requires_account(self):
        with pytest.raises(ConfigurationError):
            RegistryMapSet(registry_mappings=[RegistryMapping("quay.io", "quay")], ecr_region=REGION)

    def test_registry_mapping_requires_region(self):
        with pytest.raises(ConfigurationError):
            RegistryMapSet(registry_mappings=[RegistryMapping("quay.io", "quay")], ecr_account_id=ACCOUNT)

    def test_invalid_prefix(self):
        with pytest.raises(ConfigurationError):
            RegistryMapSet(
                registry_mappings=[RegistryMapping("quay.io", "Bad Prefix")],
                ecr_account_id=ACCOUNT,
                ecr_region=REGION,
            )

    def test_from_document_reads_camel_case_keys(self):
        map_set = RegistryMapSet.from_document(
            {
                "registryMappings": [{"upstreamRegistryUrl": "quay.io", "ecrRepositoryPrefix": "quay"}],
                "imageMappings": [{"sourceImage": "ubuntu", "destinationImage": f"{ECR}/u:1"}],
            },
            ACCOUNT,
            REGION,
        )

        assert len(map_set.registry_mappings) == 1
        assert len(map_set.image_mappings) == 1

    def test_from_document_missing_field(self):
        with pytest.raises(ConfigurationError):
            RegistryMapSet.from_document({"imageMappings": [{"sourceImage": "ubuntu"}]})


@pytest.mark.unit
class TestResolve:
    """Test single and batch resolution."""

    def test_image_mapping_takes_precedence(self, map_set):
        result = resolve("docker.io/library/ubuntu:22.04", map_set)

        assert result.rule == ResolutionRule.IMAGE_MAPPING
        assert result.uri == f"{ECR}/base/ubuntu:22.04-patched"
        assert not result.flagged

    def test_registry_mapping_rewrites_host(self, map_set):
        result = resolve("quay.io/biocontainers/samtools:1.17", map_set)

        assert result.rule == ResolutionRule.REGISTRY_MAPPING
        assert result.uri == f"{ECR}/quay/biocontainers/samtools:1.17"

    def test_registry_mapping_for_docker_hub(self, map_set):
        result = resolve("python:3.11", map_set)

        assert result.uri == f"{ECR}/docker-hub/library/python:3.11"

    def test_registry_mapping_keeps_digest(self, map_set):
        digest = "sha256:" + "b" * 64
        result = resolve(f"quay.io/org/tool@{digest}", map_set)

        assert result.uri == f"{ECR}/quay/org/tool@{digest}"

    def test_strict_unmatched_is_unresolved(self, map_set):
        result = resolve("ghcr.io/org/tool:1", map_set, require_all=True)

        assert isinstance(result, Unresolved)
        assert not result.is_resolved

    def test_permissive_unmatched_is_flagged_passthrough(self, map_set):
        result = resolve("ghcr.io/org/tool:1", map_set)

        assert result.rule == ResolutionRule.PASSTHROUGH
        assert result.flagged
        assert result.uri == "ghcr.io/org/tool:1"

    def test_resolution_is_deterministic(self, map_set):
        images = ["ubuntu:22.04", "quay.io/org/tool:1", "ghcr.io/x/y:2"]

        assert resolve_all(images, map_set) == resolve_all(images, map_set)

    def test_resolve_all_deduplicates_equivalent_references(self, map_set):
        report = resolve_all(["ubuntu:22.04", "docker.io/library/ubuntu:22.04"], map_set)

        assert len(report.resolved) == 1

    def test_resolve_all_strict_raises_with_every_unresolved_image(self, map_set):
        with pytest.raises(UnresolvedReferenceError) as exc_info:
            resolve_all(["ghcr.io/a/b:1", "quay.io/org/tool:1", "gcr.io/c/d:2"], map_set, require_all=True)

        message = str(exc_info.value)
        assert "ghcr.io/a/b:1" in message
        assert "gcr.io/c/d:2" in message

    def test_report_flagged_and_uri_map(self, map_set):
        report = resolve_all(["quay.io/org/tool:1", "ghcr.io/x/y:2"], map_set)

        assert [r.uri for r in report.flagged] == ["ghcr.io/x/y:2"]
        assert report.uri_map["quay.io/org/tool:1"] == f"{ECR}/quay/org/tool:1"


@pytest.mark.unit
class TestLoadRegistryMap:
    """Test loading registry map documents from disk."""

    def test_load_json(self, tmp_path):
        path = tmp_path / "map.json"
        path.write_text(json.dumps({
            "registryMappings": [{"upstreamRegistryUrl": "quay.io", "ecrRepositoryPrefix": "quay"}],
        }))

        map_set = load_registry_map(path, ACCOUNT, REGION)

        assert map_set.ecr_host == ECR

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "map.yaml"
        path.write_text(
            "imageMappings:\n"
            "  - sourceImage: ubuntu\n"
            f"    destinationImage: {ECR}/ubuntu:1\n"
        )

        map_set = load_registry_map(path)

        assert resolve("ubuntu", map_set).uri == f"{ECR}/ubuntu:1"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_registry_map(tmp_path / "absent.json")

    def test_unparsable_file(self, tmp_path):
        path = tmp_path / "map.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_registry_map(path)
