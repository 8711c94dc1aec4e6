"""Agent implementations"""

# Agents are imported lazily to avoid circular imports with core.studio
# Example: from agents.script_writer import ScriptWriterAgent

__all__ = [
    "StudioAgent",
    "JSONExtractor",
    "AssetExtractorAgent",
    "ExtractionResult",
    "ScriptWriterAgent",
    "ScriptResult",
    "ImageGeneratorAgent",
    "AssetImage",
    "VideoGeneratorAgent",
    "AudioGeneratorAgent",
    "AGENT_REGISTRY",
    "get_all_agents",
]

_LAZY = {
    "StudioAgent": ".base",
    "JSONExtractor": ".base",
    "AssetExtractorAgent": ".asset_extractor",
    "ExtractionResult": ".asset_extractor",
    "ScriptWriterAgent": ".script_writer",
    "ScriptResult": ".script_writer",
    "ImageGeneratorAgent": ".image_generator",
    "AssetImage": ".image_generator",
    "VideoGeneratorAgent": ".video_generator",
    "AudioGeneratorAgent": ".audio_generator",
}


def __getattr__(name):
    """Lazy imports to avoid circular dependencies"""
    if name in _LAZY:
        import importlib
        module = importlib.import_module(_LAZY[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


# Agent Registry for CLI introspection
AGENT_REGISTRY = {
    "asset_extractor": {
        "name": "asset_extractor",
        "class": "AssetExtractorAgent",
        "module": "agents.asset_extractor",
        "role": "text",
        "description": "Finds characters, locations and items and the visual DNA of the style",
        "inputs": {
            "text": "str - Unit text",
            "existing_assets": "List[Asset] - Assets already known to the project",
        },
        "outputs": "ExtractionResult - visual DNA and assets",
    },
    "script_writer": {
        "name": "script_writer",
        "class": "ScriptWriterAgent",
        "module": "agents.script_writer",
        "role": "text",
        "description": "Breaks a unit into scenes with prompts, camera notes and dialogue",
        "inputs": {
            "text": "str - Unit text",
            "assets": "List[Asset] - Assets available to the scenes",
            "previous_context": "str - Last narration of the previous unit",
        },
        "outputs": "ScriptResult - ordered scenes",
    },
    "image_generator": {
        "name": "image_generator",
        "class": "ImageGeneratorAgent",
        "module": "agents.image_generator",
        "role": "image",
        "description": "Storyboard frames and asset reference sheets",
        "inputs": {
            "scene": "Scene - Scene to draw",
            "assets": "List[Asset] - Assets with resolved reference images",
        },
        "outputs": "str - data URL or http URL",
    },
    "video_generator": {
        "name": "video_generator",
        "class": "VideoGeneratorAgent",
        "module": "agents.video_generator",
        "role": "video",
        "description": "Animates a storyboard frame; retries the whole job with backoff",
        "inputs": {
            "scene": "Scene - Scene with an image",
            "storyboard_image": "str - The scene frame",
        },
        "outputs": "Optional[str] - video URI, None after exhausting attempts",
    },
    "audio_generator": {
        "name": "audio_generator",
        "class": "AudioGeneratorAgent",
        "module": "agents.audio_generator",
        "role": "audio",
        "description": "Narration speech as WAV",
        "inputs": {
            "text": "str - Narration",
            "voice": "str - Studio voice name",
        },
        "outputs": "bytes - WAV audio",
    },
}


def get_all_agents():
    """Return the registry entries as a list"""
    return list(AGENT_REGISTRY.values())
