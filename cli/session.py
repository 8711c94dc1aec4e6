"""Shared studio setup for CLI commands"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from core.config import Settings, get_settings
from core.model_router import ModelRouter
from core.providers import MockGenerationProvider
from core.storage import BlobStore, StateStore
from core.studio import StoryboardStudio


def build_router(settings: Settings, mock: bool, store: Optional[StateStore] = None) -> ModelRouter:
    """Mock runs send every role to the mock backend"""
    if mock:
        return ModelRouter.single(MockGenerationProvider(), settings)
    return ModelRouter(settings=settings, store=store)


@asynccontextmanager
async def open_studio(mock: bool = False, settings: Optional[Settings] = None) -> AsyncIterator[StoryboardStudio]:
    """
    Studio backed by the state directory, closed on exit.

    Usage:
        async with open_studio(mock=True) as studio:
            await studio.restore()
    """
    settings = settings or get_settings()
    state_store = StateStore(settings.state_dir)
    blob_store = BlobStore(settings.state_dir)
    router = build_router(settings, mock, state_store)
    await router.load()
    studio = StoryboardStudio(router, settings, state_store=state_store, blob_store=blob_store)
    try:
        yield studio
    finally:
        await studio.aclose()
        await router.aclose()
