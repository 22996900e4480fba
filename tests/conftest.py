"""
Pytest configuration and shared fixtures for omicsengine tests.

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import pytest

from omicsengine.config.loader import EngineConfig
from omicsengine.core.errors import set_error_handler
from omicsengine.core.registry import RegistryMapSet, RegistryMapping
from omicsengine.deployment import DeploymentManager
from omicsengine.utils.retry import RetryPolicy

from tests.fixtures.utils import ACCOUNT_ID, REGION, FakeServiceClient, make_bundle, write_bundle


@pytest.fixture(autouse=True)
def reset_global_error_handler():
    """CLI commands install a global handler; keep tests independent."""
    yield
    set_error_handler(None)


@pytest.fixture
def map_set():
    return RegistryMapSet(
        registry_mappings=[RegistryMapping("quay.io", "quay")],
        ecr_account_id=ACCOUNT_ID,
        ecr_region=REGION,
    )


@pytest.fixture
def engine_config():
    return EngineConfig(retry_policy=RetryPolicy(max_attempts=3, base_delay=0.01, max_delay=0.05))


@pytest.fixture
def fake_client():
    return FakeServiceClient()


@pytest.fixture
def sleeps():
    """Records retry back-off delays instead of sleeping."""
    return []


@pytest.fixture
def manager(engine_config, fake_client, map_set, sleeps):
    return DeploymentManager(
        config=engine_config, client=fake_client, map_set=map_set, sleep=sleeps.append
    )


@pytest.fixture
def bundle():
    return make_bundle()


@pytest.fixture
def bundle_dir(tmp_path):
    return write_bundle(tmp_path / "bundle")
