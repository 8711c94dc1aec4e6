"""Video Generator Agent - Animates a storyboard frame through the video role"""

import logging
import re
from typing import List, Optional, Sequence

from core.lro import OperationPoller
from core.models.storyboard import Asset, GlobalStyle, Scene
from core.providers import VideoOptions
from core.providers.parsing import is_http_url, parse_data_url
from core.retry import MissingPrerequisiteError
from .base import StudioAgent

logger = logging.getLogger(__name__)

MAX_VIDEO_PROMPT_LENGTH = 800
MAX_VIDEO_REFERENCES = 3

EXPLICIT_ID_SCORE = 100
NAME_MATCH_SCORE = 50
TOKEN_OVERLAP_SCORE = 5

_TOKEN_RE = re.compile(r"\W+")
_NON_ASCII_RE = re.compile(r"[^\x00-\x7F]")


def build_video_prompt(scene: Scene) -> str:
    """Shot description plus camera/VFX/atmosphere/dialogue notes"""
    if scene.video_prompt:
        return scene.video_prompt[:MAX_VIDEO_PROMPT_LENGTH]
    parts = [
        f"Cinematic Shot: {scene.visual_desc}",
        f"Camera Movement: {scene.video_camera}" if scene.video_camera else "",
        f"VFX: {scene.video_vfx}" if scene.video_vfx else "",
        f"Atmosphere: {scene.audio_bgm}" if scene.audio_bgm else "",
    ]
    if scene.audio_dialogue:
        parts.append("Character Dialogue: " + " ".join(d.text for d in scene.audio_dialogue))
    return ". ".join(p for p in parts if p)[:MAX_VIDEO_PROMPT_LENGTH]


def _tokens(text: str) -> set:
    return {t for t in _TOKEN_RE.split((text or "").lower()) if len(t) > 2}


def match_assets_to_prompt(prompt: str, assets: Sequence[Asset], explicit_ids: Sequence[str] = ()) -> List[Asset]:
    """
    Rank assets with reference images by relevance to the prompt.

    Explicit ids score 100, a name mention 50, and every shared description
    token longer than two characters 5. Zero-score assets are dropped.
    """
    prompt_tokens = _tokens(prompt)
    scored = []
    for asset in assets:
        if not asset.ref_image_url:
            continue
        score = 0
        if asset.asset_id in explicit_ids:
            score += EXPLICIT_ID_SCORE
        if asset.name and asset.name in prompt:
            score += NAME_MATCH_SCORE
        score += TOKEN_OVERLAP_SCORE * len(_tokens(asset.description) & prompt_tokens)
        if score > 0:
            scored.append((score, asset))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [asset for _, asset in scored]


class VideoGeneratorAgent(StudioAgent):
    """Submits scene videos and drives them to completion with an OperationPoller"""

    def __init__(self, router, settings=None, poller: Optional[OperationPoller] = None):
        super().__init__(router, settings)
        self.poller = poller or OperationPoller.from_settings(router, self.settings)

    def reference_images(self, scene: Scene, storyboard_image: str, assets: Sequence[Asset]) -> List[str]:
        """Top matching asset images, then the storyboard frame to fill up to three"""
        images: List[str] = []
        if scene.use_assets:
            explicit = scene.video_asset_ids or scene.asset_ids
            matched = match_assets_to_prompt(scene.visual_desc, assets, explicit)
            images = [a.ref_image_url for a in matched[:MAX_VIDEO_REFERENCES]]
        if len(images) < MAX_VIDEO_REFERENCES:
            images.append(storyboard_image)
        return images

    async def generate(
        self,
        scene: Scene,
        storyboard_image: Optional[str],
        assets: Sequence[Asset] = (),
        style: Optional[GlobalStyle] = None,
    ) -> Optional[str]:
        """
        Generate the video for one scene.

        Args:
            scene: Scene to animate
            storyboard_image: The scene's frame as a data URL or http URL

        Returns:
            Video URI, or None once every attempt has failed

        Raises:
            MissingPrerequisiteError: if the scene has no image yet
        """
        if not storyboard_image:
            raise MissingPrerequisiteError(f"Scene {scene.scene_id} has no image to animate")
        style = style or GlobalStyle()

        prompt = build_video_prompt(scene)
        options = VideoOptions(
            aspect_ratio=style.aspect_ratio,
            enhance_prompt=bool(_NON_ASCII_RE.search(prompt)),
            reference_images=self.reference_images(scene, storyboard_image, assets),
        )
        frame = parse_data_url(storyboard_image) if not is_http_url(storyboard_image) else None

        logger.info(f"Submitting video for scene {scene.scene_id} ({len(options.reference_images)} reference images)")
        return await self.poller.run(
            lambda: self.router.generate_videos(prompt, frame, options),
            label=f"video {scene.scene_id}",
        )
