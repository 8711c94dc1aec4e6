"""Shared pytest fixtures"""

import pytest

from core.model_router import ModelRouter
from core.providers import MockGenerationProvider
from core.storage import BlobStore, StateStore
from core.studio import StoryboardStudio
from tests.mocks.fixtures import SleepRecorder, make_settings


# ============================================================
# Settings and Stores
# ============================================================

@pytest.fixture
def settings(tmp_path):
    """Settings with zero delays and a temporary state directory"""
    return make_settings(tmp_path)


@pytest.fixture
def state_store(tmp_path):
    return StateStore(tmp_path)


@pytest.fixture
def blob_store(tmp_path):
    return BlobStore(tmp_path)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


# ============================================================
# Mock Backend
# ============================================================

@pytest.fixture
def mock_provider():
    """Fresh mock backend for each test"""
    provider = MockGenerationProvider()
    yield provider
    provider.reset()


@pytest.fixture
def router(mock_provider, settings):
    return ModelRouter.single(mock_provider, settings)


@pytest.fixture
def studio(router, settings, state_store, sleep_recorder):
    """Studio on the mock backend with inline (data URL) media"""
    return StoryboardStudio(router, settings, state_store=state_store, sleep=sleep_recorder)


@pytest.fixture
def blob_studio(router, settings, state_store, blob_store, sleep_recorder):
    """Studio that keeps generated media in a blob store"""
    return StoryboardStudio(router, settings, state_store=state_store, blob_store=blob_store,
                            sleep=sleep_recorder)


# ============================================================
# Markers Configuration
# ============================================================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "live_api: marks tests that hit real APIs (requires keys)"
    )
