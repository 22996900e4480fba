#!/usr/bin/env python3
"""
Unit tests for run parameter document checks.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import json

import pytest

from omicsengine.core.errors import ConfigurationError
from omicsengine.validation.parameters import (
    ParameterFindingKind,
    check_remote_objects,
    load_parameter_document,
    remote_object_refs,
    validate_parameters,
)


@pytest.mark.unit
class TestValidateParameters:
    """Test parameter name checks."""

    def test_flat_document_is_valid(self):
        assert validate_parameters({"fastq": "s3://bucket/a.fq", "threads": 4}, "germline") == []

    def test_namespaced_parameter(self):
        findings = validate_parameters({"germline.fastq": "x"}, "germline")

        assert findings[0].kind == ParameterFindingKind.NAMESPACED_PARAMETER
        assert "'fastq'" in findings[0].detail

    def test_unknown_parameter(self):
        findings = validate_parameters({"fastq": "x", "typo": 1}, declared=["fastq"])

        assert [(f.kind, f.name) for f in findings] == [(ParameterFindingKind.UNKNOWN_PARAMETER, "typo")]

    def test_missing_required(self):
        findings = validate_parameters({}, required=["reference", "fastq"])

        assert [f.name for f in findings] == ["fastq", "reference"]
        assert all(f.kind == ParameterFindingKind.MISSING_PARAMETER for f in findings)

    def test_no_declarations_accepts_any_name(self):
        assert validate_parameters({"anything": 1}) == []


@pytest.mark.unit
class TestRemoteObjects:
    """Test remote object collection and existence checks."""

    def test_refs_collected_from_nested_values(self):
        refs = remote_object_refs({
            "fastqs": ["s3://b/1.fq", "s3://b/2.fq"],
            "reference": {"fasta": "omics://ref/123", "name": "hg38"},
            "threads": 4,
        })

        assert refs == {"fastqs": ["s3://b/1.fq", "s3://b/2.fq"], "reference": ["omics://ref/123"]}

    def test_missing_remote_object(self):
        existing = {"s3://b/1.fq"}

        findings = check_remote_objects({"fastqs": ["s3://b/1.fq", "s3://b/2.fq"]}, existing.__contains__)

        assert len(findings) == 1
        assert findings[0].kind == ParameterFindingKind.MISSING_REMOTE_OBJECT
        assert findings[0].value == "s3://b/2.fq"


@pytest.mark.unit
class TestLoadParameterDocument:
    """Test loading parameter documents."""

    def test_load_json(self, tmp_path):
        path = tmp_path / "params.json"
        path.write_text(json.dumps({"fastq": "s3://b/a.fq"}))

        assert load_parameter_document(path) == {"fastq": "s3://b/a.fq"}

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "params.yaml"
        path.write_text("threads: 4\n")

        assert load_parameter_document(path) == {"threads": 4}

    def test_list_document_rejected(self, tmp_path):
        path = tmp_path / "params.yaml"
        path.write_text("- 1\n")

        with pytest.raises(ConfigurationError):
            load_parameter_document(path)

    def test_missing_document(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_parameter_document(tmp_path / "absent.json")
