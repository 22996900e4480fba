#!/usr/bin/env python3
"""
Unit tests for version table persistence.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import json

import pytest

from omicsengine.config.loader import EngineConfig
from omicsengine.core.errors import ConfigurationError
from omicsengine.deployment import (
    DeploymentManager,
    StateRecord,
    VersionState,
    VersionStateStore,
    WorkflowVersion,
)

from tests.fixtures.utils import make_bundle


@pytest.mark.unit
class TestVersionStateStore:
    """Test load/save of the version table."""

    def test_missing_file_is_empty(self, tmp_path):
        assert VersionStateStore(tmp_path / "state.json").load() == ([], [])

    def test_round_trip(self, tmp_path):
        store = VersionStateStore(tmp_path / "nested" / "state.json")
        version = WorkflowVersion(
            "wf", "1.0.0", "sha256:abc",
            state=VersionState.FAILED,
            resolved_images=(("ubuntu", "ecr/ubuntu:latest"),),
            failure_reason="build error",
        )
        record = StateRecord("wf", "1.0.0", VersionState.FAILED, reason="build error")

        store.save([version], [record])

        assert store.load() == ([version], [record])

    def test_no_temporary_files_left(self, tmp_path):
        store = VersionStateStore(tmp_path / "state.json")
        store.save([], [])

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{broken")

        with pytest.raises(ConfigurationError):
            VersionStateStore(path).load()

    def test_unknown_state_is_corrupt(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "versions": [{"workflow_id": "wf", "version_name": "1.0.0", "bundle_digest": "d", "state": "DELETED"}],
        }))

        with pytest.raises(ConfigurationError):
            VersionStateStore(path).load()


@pytest.mark.unit
class TestManagerPersistence:
    """Test that the manager reloads its table from the store."""

    def test_manager_state_survives_restart(self, tmp_path):
        store = VersionStateStore(tmp_path / "state.json")
        first = DeploymentManager(store=store)
        first.create_version("wf", "1.0.0", make_bundle(images=()))
        first.mark_failed("wf", "1.0.0", "compile error")

        second = DeploymentManager(store=VersionStateStore(tmp_path / "state.json"))

        version = second.get_version("wf", "1.0.0")
        assert version.state == VersionState.FAILED
        assert version.failure_reason == "compile error"
        assert [r.state for r in second.history("wf")] == [VersionState.PENDING, VersionState.FAILED]

    def test_manager_uses_configured_state_file(self, tmp_path):
        config = EngineConfig(state_file=str(tmp_path / "state" / "versions.json"))
        DeploymentManager(config=config).create_version("wf", "1.0.0", make_bundle(images=()))

        restarted = DeploymentManager(config=config)

        assert restarted.store.path == tmp_path / "state" / "versions.json"
        assert restarted.has_version("wf", "1.0.0")
