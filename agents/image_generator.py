"""Image Generator Agent - Storyboard frames and asset reference sheets"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from core.model_router import ModelRole
from core.models.storyboard import Asset, AssetCategory, GlobalStyle, Scene
from core.providers import ContentOptions, ContentPart, ContentResponse
from core.providers.parsing import find_image_url_in_text, is_http_url, parse_data_url
from core.retry import GenerationError
from .base import StudioAgent

logger = logging.getLogger(__name__)

MAX_REFERENCE_IMAGES = 3
MAX_PROMPT_LENGTH = 1500
IMAGE_MAX_RETRIES = 2

SCENE_NEGATIVE = (
    "comic panels, multiple panels, split screen, collage, grid, multiple views, "
    "frame, border, speech bubble, text, watermark, blurry"
)
PERIOD_NEGATIVE = (
    "television, phone, smartphone, computer, laptop, car, modern building, "
    "skyscraper, electric light, modern clothing, plastic, electronic device"
)
PERIOD_MARKERS = ("ancient", "wuxia", "period", "historical", "medieval", "dynasty")

ASSET_NEGATIVE = (
    "text, watermark, signature, blurry, low quality, messy, comic panels, "
    "collage, grid, frame, border, speech bubble"
)
REALISM_MARKERS = ("real", "photo", "movie", "film")


class ImageRefusalError(GenerationError):
    """The image model answered with text instead of an image"""


@dataclass
class AssetImage:
    """Generated reference image and the prompt that produced it"""
    image: str
    prompt: str


def image_from_response(response: ContentResponse) -> str:
    """
    Data URL or http URL of the generated image.

    Raises:
        ImageRefusalError: when the reply carries neither
    """
    if response.inline_media is not None:
        return response.inline_media.to_data_url()
    text = (response.text or "").strip()
    if text.startswith("! "):
        text = text[2:].strip()
    url = find_image_url_in_text(text)
    if url:
        return url
    if text:
        raise ImageRefusalError(f"Model Refusal: {text[:300]}")
    raise ImageRefusalError("No image data returned.")


def reference_part(image: str) -> Optional[ContentPart]:
    """Prompt part for a stored reference image (data URL or http URL)"""
    media = parse_data_url(image)
    if media is not None:
        return ContentPart(image=media)
    if is_http_url(image):
        return ContentPart.of_image_url(image)
    return None


def select_scene_assets(scene: Scene, assets: Sequence[Asset]) -> List[Asset]:
    """Explicit asset ids first, name mentions in the prompt otherwise; images only"""
    if scene.asset_ids:
        wanted = set(scene.asset_ids)
        used = [a for a in assets if a.asset_id in wanted and a.ref_image_url]
    else:
        used = [a for a in assets if a.ref_image_url and a.name and a.name in scene.np_prompt]
    return used[:MAX_REFERENCE_IMAGES]


def is_period_style(style: GlobalStyle) -> bool:
    text = " ".join(
        filter(None, [style.director.effective, style.work.effective,
                      style.texture.effective, style.visual_tags])
    ).lower()
    return any(marker in text for marker in PERIOD_MARKERS)


class ImageGeneratorAgent(StudioAgent):
    """
    Generates scene frames and asset reference images through the IMAGE role.

    Reference images must already be resolved to data URLs or http URLs in
    `Asset.ref_image_url`; assets without one are never sent as references.
    """

    async def generate_scene_image(
        self,
        scene: Scene,
        assets: Sequence[Asset] = (),
        style: Optional[GlobalStyle] = None,
    ) -> str:
        style = style or GlobalStyle()
        prompt = scene.np_prompt[:MAX_PROMPT_LENGTH]
        used = select_scene_assets(scene, assets) if scene.use_assets else []

        parts: List[ContentPart] = []
        instructions = []
        for asset in used:
            part = reference_part(asset.ref_image_url)
            if part is None:
                continue
            parts.append(part)
            instructions.append(
                f"Reference Image {len(instructions) + 1} is {asset.name} ({asset.category.value})."
            )

        text = prompt
        if instructions:
            text = (
                f"STRICTLY FOLLOW REFERENCES. {' '.join(instructions)} {prompt}. "
                "Use the exact visual appearance of Reference Images for consistency."
            )
        negative = SCENE_NEGATIVE
        if is_period_style(style):
            negative = f"{negative}, {PERIOD_NEGATIVE}"
        parts.append(ContentPart.of_text(f"{text}. Exclude: {negative}"))

        logger.debug(f"Scene {scene.scene_id} image with {len(instructions)} references")
        response = await self._generate(
            ModelRole.IMAGE,
            parts,
            ContentOptions(aspect_ratio=style.aspect_ratio),
            label=f"scene image {scene.scene_id}",
            max_retries=IMAGE_MAX_RETRIES,
        )
        return image_from_response(response)

    async def generate_asset_image(
        self,
        asset: Asset,
        style: Optional[GlobalStyle] = None,
        notes: str = "",
        reference_image: Optional[str] = None,
    ) -> AssetImage:
        """
        Reference sheet for one asset.

        Args:
            asset: Asset to draw
            style: Global style (work/texture/visual DNA)
            notes: Extra user constraints appended to the prompt
            reference_image: Parent asset image for variants
        """
        style = style or GlobalStyle()
        prompt = self.asset_prompt(asset, style, notes, has_reference=bool(reference_image))

        parts: List[ContentPart] = []
        ref = reference_part(reference_image) if reference_image else None
        if ref is not None:
            parts.append(ref)
        parts.append(ContentPart.of_text(prompt))

        response = await self._generate(
            ModelRole.IMAGE,
            parts,
            ContentOptions(aspect_ratio="16:9"),
            label=f"asset image {asset.asset_id}",
            max_retries=IMAGE_MAX_RETRIES,
        )
        return AssetImage(image=image_from_response(response), prompt=prompt)

    def asset_prompt(self, asset: Asset, style: GlobalStyle, notes: str = "", has_reference: bool = False) -> str:
        work = style.work.effective or ""
        texture = style.texture.effective or "Realistic"
        realistic = any(m in texture.lower() or m in work.lower() for m in REALISM_MARKERS)
        realism = "photorealistic, 8k, raw photo, highly detailed, cinematic lighting" if realistic else ""
        header = ", ".join(filter(None, [
            "(Best quality, masterpiece)",
            f"((Art Style: {work})), ((Texture: {texture}))",
            f"{texture} style",
            realism,
        ]))
        subject = ", ".join(filter(None, [asset.description, asset.visual_dna, style.visual_tags]))
        extra = f"Additional constraints: {notes.strip()}" if notes.strip() else ""
        negative = ASSET_NEGATIVE

        if asset.category == AssetCategory.CHARACTER:
            negative += ", multiple different characters, crowd, visual effects, glowing aura"
            layout = (
                "Widescreen split composition (16:9): left third an extreme close-up portrait "
                f"of {asset.name}'s face; right two-thirds a full body character sheet of "
                f"{asset.name} with front, side and back views. Simple clean white background."
            )
            ref = "Use the attached image as the primary reference for the character's appearance." if has_reference else ""
        elif asset.category == AssetCategory.ITEM:
            negative += ", person, hand, holding, table, floor, room, environment, shadow, reflection"
            layout = (
                f"Flat layout on pure white: left a macro close-up of {asset.name}; right three "
                "orthographic views (front, side, top) at the same scale. No shadows."
            )
            ref = "Match the attached reference image's lighting and rendering style." if has_reference else ""
        else:
            layout = f"Establishing shot, environment design, scenery only: {asset.name}."
            ref = "Use the attached image as the reference for the location's style and elements." if has_reference else ""

        return "\n".join(filter(None, [
            f"{header}.",
            layout,
            f"Subject: {asset.name}. Description: {subject}.",
            extra,
            ref,
            f"NO TEXT. Exclude: {negative}",
        ]))
