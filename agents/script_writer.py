"""Script Writer Agent - Breaks a text unit into an ordered list of scenes"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from core.history import ensure_unique_id
from core.models.storyboard import Asset, GlobalStyle, Scene
from .base import StudioAgent

logger = logging.getLogger(__name__)


SCENE_SCHEMA = {
    "type": "object",
    "properties": {
        "scenes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "narration": {"type": "string"},
                    "visual_desc": {"type": "string"},
                    "video_lens": {"type": "string"},
                    "video_camera": {"type": "string"},
                    "video_duration": {"type": "string"},
                    "video_vfx": {"type": "string"},
                    "np_prompt": {"type": "string"},
                    "video_prompt": {"type": "string"},
                    "audio_dialogue": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {"speaker": {"type": "string"}, "text": {"type": "string"}},
                        },
                    },
                    "audio_sfx": {"type": "string"},
                    "audio_bgm": {"type": "string"},
                    "assetIds": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["id", "narration", "visual_desc", "np_prompt"],
            },
        }
    },
}


def script_instruction(
    language: str,
    assets: Sequence[Asset],
    style: GlobalStyle,
    previous_context: str,
) -> str:
    asset_map = "\n".join(f"{a.asset_id}: {a.name} ({a.description})" for a in assets) or "(none)"
    director = style.director.effective or "None"
    work = style.work.effective or "None"
    return f"""You are a showrunner adapting prose into a fast-paced storyboard.

Cover every sentence of the input. One action per shot; do not merge or summarize.
All text fields MUST be written in {language}.

For each scene give narration, a detailed visual_desc (composition, lighting,
action), lens, camera movement, duration, VFX, dialogue, BGM and SFX notes.
List the ids of the assets that appear in the scene in assetIds, and write
np_prompt as "{{{{asset_id}}}} performing action...".

Style: {director}, {work}
Previous scene: {previous_context or '(start of story)'}

Available assets:
{asset_map}

Return JSON: {{"scenes": [...]}}"""


def style_prefix(style: GlobalStyle, visual_dna: str) -> str:
    """(Style: <work>, <dna>) or "" when no work/texture reference is set"""
    work = style.work.effective or ""
    texture = style.texture.effective or ""
    if not (work or texture):
        return ""
    visuals = visual_dna or style.visual_tags or texture
    parts = []
    if work:
        parts.append(f"Style: {work}")
    if visuals and visuals != work:
        parts.append(visuals)
    return f"({', '.join(parts)})" if parts else ""


def inject_assets(prompt: str, assets: Sequence[Asset], global_dna: str = "") -> str:
    """Replace {{asset_id}} / {asset_id} placeholders with the asset's description"""
    for asset in assets:
        pattern = re.compile(r"\{\{?" + re.escape(asset.asset_id) + r"\}?\}", re.IGNORECASE)
        dna = asset.visual_dna if asset.visual_dna and asset.visual_dna != global_dna else ""
        injection = f"({asset.name}, {asset.description}{', ' + dna if dna else ''})"
        prompt = pattern.sub(lambda _m: injection, prompt)
    return prompt


@dataclass
class ScriptResult:
    """Scenes plus the visual DNA used to build their prompts"""
    scenes: List[Scene] = field(default_factory=list)
    visual_dna: str = ""


class ScriptWriterAgent(StudioAgent):
    """
    Turns one unit of text into scenes.

    Image prompts come back with asset placeholders; they are expanded here
    and prefixed with the global style so every scene image shares one look.
    """

    async def write(
        self,
        text: str,
        assets: Sequence[Asset] = (),
        style: Optional[GlobalStyle] = None,
        previous_context: str = "",
        language: Optional[str] = None,
    ) -> ScriptResult:
        if not text.strip():
            return ScriptResult()
        style = style or GlobalStyle()
        language = language or self.settings.language

        data = await self._query_json(
            text,
            script_instruction(language, assets, style, previous_context),
            SCENE_SCHEMA,
            fallback={"scenes": []},
            label="script",
        )
        raw_scenes = data if isinstance(data, list) else (data or {}).get("scenes", [])
        if not raw_scenes:
            logger.warning(f"Model returned no scenes for text starting {self._truncate_text(text, 60)!r}")

        visual_dna = await self._analyze_visual_dna(style, language)
        prefix = style_prefix(style, visual_dna)

        scenes: List[Scene] = []
        seen_ids = set()
        for i, item in enumerate(raw_scenes):
            if not isinstance(item, dict):
                continue
            scene = Scene.from_dict(item)
            scene.scene_id = ensure_unique_id(scene.scene_id or f"scene_{i + 1}", seen_ids)
            seen_ids.add(scene.scene_id)
            prompt = inject_assets(scene.np_prompt, assets, style.visual_tags)
            scene.np_prompt = f"{prefix}, {prompt}" if prefix else prompt
            scenes.append(scene)

        logger.info(f"Scripted {len(scenes)} scenes")
        return ScriptResult(scenes=scenes, visual_dna=visual_dna)
