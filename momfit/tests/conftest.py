"""
Shared test fixtures for the MomFit test suite.
"""

import os
import random
import sys
import tempfile
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure momfit is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from momfit.services.registry import ServiceRegistry
from momfit.shared.audit_log import GenerationAuditLog
from momfit.shared.config import AppConfig, StoreConfig
from momfit.store.json_store import JSONDataStore


def make_llm(text: str = "", error=None, embedding=None, configured: bool = True):
    """Mock ILLMClient returning a fixed completion and embedding."""
    llm = MagicMock()
    llm.is_configured = configured
    llm.complete = AsyncMock(return_value={
        "text": text, "error": error, "input_tokens": 0, "output_tokens": 0,
    })
    llm.embed = AsyncMock(return_value={
        "embedding": embedding if embedding is not None else [0.1] * 8,
        "error": None,
    })
    llm.get_usage = AsyncMock(return_value={"total_input_tokens": 0, "total_output_tokens": 0})
    return llm


@pytest.fixture
def tmp_dir():
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def store_config(tmp_dir):
    return StoreConfig(
        file_path=os.path.join(tmp_dir, "data", "test_store.json"),
        backup_on_write=False,
    )


@pytest.fixture
def store(store_config):
    return JSONDataStore(store_config)


@pytest.fixture
def audit(store):
    return GenerationAuditLog(store)


@pytest.fixture
def app_config(store_config):
    return AppConfig(store=store_config, environment="test")


@pytest.fixture
def llm():
    return make_llm()


@pytest.fixture
def unconfigured_llm():
    return make_llm(error="no_api_key", configured=False)


@pytest.fixture
def registry(app_config, store, llm):
    return ServiceRegistry(app_config, store, llm, rng=random.Random(7))


async def seed_community(registry, requires_approval=False):
    """A community created by "owner" with "member" already joined."""
    created = await registry.communities.create(
        "owner", "Stroller Fit Moms", "Workouts with the little ones",
        tags=["fitness", "postpartum"],
    )
    await registry.communities.join("member", created.id)
    if requires_approval:
        await registry.store.update("communities", {"id": created.id}, {"requires_approval": True})
    return created
