"""Generation backends behind one provider contract"""

from typing import Any, Dict, List, Optional

from .base import (
    Content,
    ContentOptions,
    ContentPart,
    ContentResponse,
    GenerationProvider,
    InlineMedia,
    OperationStatus,
    ProviderConfig,
    ProviderError,
    ProviderHTTPError,
    ProviderType,
    UnsupportedCapabilityError,
    VideoOperation,
    VideoOptions,
)
from .mock import MockGenerationProvider
from .polo import PoloProvider
from .t8star import T8StarProvider

__all__ = [
    # Contract
    "Content",
    "ContentOptions",
    "ContentPart",
    "ContentResponse",
    "GenerationProvider",
    "InlineMedia",
    "OperationStatus",
    "ProviderConfig",
    "ProviderType",
    "VideoOperation",
    "VideoOptions",
    # Errors
    "ProviderError",
    "ProviderHTTPError",
    "UnsupportedCapabilityError",
    # Backends
    "MockGenerationProvider",
    "PoloProvider",
    "T8StarProvider",
    # Registry
    "PROVIDER_REGISTRY",
    "get_all_providers",
    "get_provider_info",
    "build_provider_config",
    "create_provider",
]


# Provider Registry for CLI introspection
PROVIDER_REGISTRY: Dict[str, Dict[str, Any]] = {
    "polo": {
        "name": "polo",
        "class": PoloProvider,
        "capabilities": ["text", "image", "video"],
        "api_key_env": ["POLO_TEXT_API_KEY", "POLO_IMAGE_API_KEY", "POLO_VIDEO_API_KEY"],
        "video_shapes": "chat (veo3-*) or multipart job API",
    },
    "t8star": {
        "name": "t8star",
        "class": T8StarProvider,
        "capabilities": ["text", "image", "video", "audio"],
        "api_key_env": ["T8_TEXT_API_KEY", "T8_IMAGE_API_KEY", "T8_VIDEO_API_KEY", "T8_AUDIO_API_KEY"],
        "video_shapes": "v2 job API (veo*) or multipart job API",
    },
    "mock": {
        "name": "mock",
        "class": MockGenerationProvider,
        "capabilities": ["text", "image", "video", "audio"],
        "api_key_env": [],
        "video_shapes": "simulated",
    },
}


def get_all_providers() -> List[Dict[str, Any]]:
    return list(PROVIDER_REGISTRY.values())


def get_provider_info(name: str) -> Optional[Dict[str, Any]]:
    return PROVIDER_REGISTRY.get(name)


def build_provider_config(provider_type: ProviderType, settings) -> ProviderConfig:
    """Build a ProviderConfig for one backend from Settings"""
    if provider_type == ProviderType.POLO:
        return ProviderConfig(
            provider_type=provider_type,
            base_url=settings.polo_base_url,
            text_api_key=settings.api_key("POLO_TEXT_API_KEY"),
            image_api_key=settings.api_key("POLO_IMAGE_API_KEY"),
            video_api_key=settings.api_key("POLO_VIDEO_API_KEY"),
            timeout=settings.request_timeout,
        )
    if provider_type == ProviderType.T8STAR:
        return ProviderConfig(
            provider_type=provider_type,
            base_url=settings.t8_base_url,
            media_base_url=settings.t8_media_base_url,
            text_api_key=settings.api_key("T8_TEXT_API_KEY"),
            image_api_key=settings.api_key("T8_IMAGE_API_KEY"),
            video_api_key=settings.api_key("T8_VIDEO_API_KEY"),
            audio_api_key=settings.api_key("T8_AUDIO_API_KEY"),
            timeout=settings.request_timeout,
        )
    return ProviderConfig(provider_type=ProviderType.MOCK)


def create_provider(provider_type: ProviderType, settings=None, **kwargs) -> GenerationProvider:
    """
    Instantiate a backend.

    Args:
        provider_type: Which backend
        settings: core.config.Settings (not needed for the mock backend)
        **kwargs: Passed to the provider constructor (e.g. transport=)
    """
    info = PROVIDER_REGISTRY[provider_type.value]
    if provider_type == ProviderType.MOCK:
        return info["class"](**kwargs)
    if settings is None:
        raise ValueError(f"Settings are required to create the {provider_type.value} provider")
    return info["class"](build_provider_config(provider_type, settings), **kwargs)
