"""
Role-based routing of generation requests to backends.

Callers say what kind of work they need (ModelRole) and the router resolves
it once, at call time, into a concrete provider and default model name.
The role -> backend table comes from Settings and can be changed at runtime;
changes are persisted under the "model_config" key of the state store.
"""

import logging
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from core.providers import (
    Content,
    ContentOptions,
    ContentResponse,
    GenerationProvider,
    InlineMedia,
    ProviderType,
    VideoOperation,
    VideoOptions,
    create_provider,
)

logger = logging.getLogger(__name__)


class ModelRole(str, Enum):
    """Capability a request needs"""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


DEFAULT_MODELS: Dict[Tuple[ProviderType, ModelRole], str] = {
    (ProviderType.T8STAR, ModelRole.TEXT): "gemini-3-flash-preview",
    (ProviderType.T8STAR, ModelRole.IMAGE): "nano-banana-2-2k",
    (ProviderType.T8STAR, ModelRole.VIDEO): "veo3.1-components",
    (ProviderType.T8STAR, ModelRole.AUDIO): "tts-1-1106",
    (ProviderType.POLO, ModelRole.TEXT): "gemini-3-flash-preview",
    (ProviderType.POLO, ModelRole.IMAGE): "gemini-3-pro-image-preview",
    (ProviderType.POLO, ModelRole.VIDEO): "veo3.1-components",
    (ProviderType.MOCK, ModelRole.TEXT): "mock-text",
    (ProviderType.MOCK, ModelRole.IMAGE): "mock-image",
    (ProviderType.MOCK, ModelRole.VIDEO): "mock-video",
    (ProviderType.MOCK, ModelRole.AUDIO): "mock-tts",
}

CONFIG_KEY = "model_config"


class ModelRouter:
    """
    Resolves ModelRole to (provider, model).

    Providers are created lazily, one instance per backend, and shared by
    every role that maps to that backend.
    """

    def __init__(
        self,
        settings=None,
        providers: Optional[Dict[ProviderType, GenerationProvider]] = None,
        store=None,
        provider_factory: Callable[..., GenerationProvider] = create_provider,
    ):
        self.settings = settings
        self.store = store
        self._factory = provider_factory
        self._providers: Dict[ProviderType, GenerationProvider] = dict(providers or {})
        self.roles: Dict[ModelRole, ProviderType] = {
            role: ProviderType(getattr(settings, f"{role.value}_provider", "t8star"))
            if settings is not None else ProviderType.T8STAR
            for role in ModelRole
        }
        self.model_overrides: Dict[ModelRole, str] = {}

    @classmethod
    def single(cls, provider: GenerationProvider, settings=None) -> "ModelRouter":
        """Router that sends every role to one provider (mock runs, tests)"""
        router = cls(settings=settings, providers={provider.provider_type: provider})
        router.roles = {role: provider.provider_type for role in ModelRole}
        return router

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    async def load(self) -> Dict[str, str]:
        """Merge the persisted role table over the settings defaults"""
        if self.store is None:
            return self.describe()
        stored = await self.store.load(CONFIG_KEY) or {}
        for role_name, provider_name in stored.items():
            try:
                self.roles[ModelRole(role_name)] = ProviderType(provider_name)
            except ValueError:
                logger.warning(f"Ignoring unknown model config entry {role_name}={provider_name}")
        return self.describe()

    async def set_provider(self, role: ModelRole, provider_type: ProviderType) -> None:
        self.roles[role] = provider_type
        logger.info(f"Routing {role.value} requests to {provider_type.value}")
        if self.store is not None:
            await self.store.save(CONFIG_KEY, self.describe())

    def describe(self) -> Dict[str, str]:
        return {role.value: provider.value for role, provider in self.roles.items()}

    def provider_for(self, role: ModelRole) -> GenerationProvider:
        return self._provider(self.roles[role])

    def model_for(self, role: ModelRole) -> str:
        if role in self.model_overrides:
            return self.model_overrides[role]
        provider_type = self.roles[role]
        model = DEFAULT_MODELS.get((provider_type, role))
        if model is None:
            # No native model (e.g. speech on Polo); the call will report
            # the missing capability
            return DEFAULT_MODELS[(ProviderType.T8STAR, role)]
        return model

    def _provider(self, provider_type: ProviderType) -> GenerationProvider:
        if provider_type not in self._providers:
            self._providers[provider_type] = self._factory(provider_type, self.settings)
        return self._providers[provider_type]

    # =========================================================================
    # DISPATCH
    # =========================================================================

    async def generate_content(
        self,
        role: ModelRole,
        content: Content,
        options: Optional[ContentOptions] = None,
        model: Optional[str] = None,
    ) -> ContentResponse:
        if role not in (ModelRole.TEXT, ModelRole.IMAGE):
            raise ValueError(f"generate_content does not serve the {role.value} role")
        return await self.provider_for(role).generate_content(
            model or self.model_for(role), content, options
        )

    async def generate_videos(
        self,
        prompt: str,
        image: Optional[InlineMedia] = None,
        options: Optional[VideoOptions] = None,
        model: Optional[str] = None,
    ) -> VideoOperation:
        provider = self.provider_for(ModelRole.VIDEO)
        return await provider.generate_videos(model or self.model_for(ModelRole.VIDEO), prompt, image, options)

    async def get_operation(self, operation: VideoOperation) -> VideoOperation:
        """Poll with the backend that issued the operation"""
        provider_type = operation.provider or self.roles[ModelRole.VIDEO]
        return await self._provider(provider_type).get_operation(operation)

    async def speech(self, text: str, voice: str, model: Optional[str] = None) -> bytes:
        return await self.provider_for(ModelRole.AUDIO).speech(
            text, voice, model or self.model_for(ModelRole.AUDIO)
        )

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
