"""Storyboard models: units of source text, their assets and scenes"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Dict, Any, Optional


class UnitStatus(str, Enum):
    """Lifecycle stage of a text unit"""
    IDLE = "idle"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    SCRIPTING = "scripting"
    SCRIPTED = "scripted"
    SHOOTING = "shooting"
    COMPLETED = "completed"


class AssetCategory(str, Enum):
    """Kind of reusable visual entity"""
    CHARACTER = "character"
    LOCATION = "location"
    ITEM = "item"

    @classmethod
    def coerce(cls, value: Any) -> "AssetCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.CHARACTER


# Prefix of asset ids that point back at a scene's own storyboard image
SCENE_IMAGE_REF_PREFIX = "scene_img_"


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key (wire or python spelling)"""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class DialogueLine:
    """One spoken line within a scene"""
    speaker: str
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"speaker": self.speaker, "text": self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DialogueLine":
        return cls(speaker=str(data.get("speaker", "")), text=str(data.get("text", "")))


@dataclass
class Asset:
    """
    A reusable visual entity (character, location or item).

    The studio keeps one global copy per asset_id; units hold views of it.
    A variant points at its base asset through parent_id.
    """
    asset_id: str
    name: str
    description: str = ""
    category: AssetCategory = AssetCategory.CHARACTER
    visual_dna: Optional[str] = None
    ref_image_url: Optional[str] = None
    ref_image_blob_id: Optional[str] = None
    prompt: Optional[str] = None
    parent_id: Optional[str] = None
    variant_name: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return bool(self.ref_image_url or self.ref_image_blob_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "visual_dna": self.visual_dna,
            "ref_image_url": self.ref_image_url,
            "ref_image_blob_id": self.ref_image_blob_id,
            "prompt": self.prompt,
            "parent_id": self.parent_id,
            "variant_name": self.variant_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Asset":
        return cls(
            asset_id=str(_pick(data, "asset_id", "id", default="")),
            name=str(_pick(data, "name", default="")),
            description=str(_pick(data, "description", default="")),
            category=AssetCategory.coerce(_pick(data, "category", "type", default="character")),
            visual_dna=_pick(data, "visual_dna", "visualDna"),
            ref_image_url=_pick(data, "ref_image_url", "refImageUrl"),
            ref_image_blob_id=_pick(data, "ref_image_blob_id", "refImageAssetId"),
            prompt=_pick(data, "prompt"),
            parent_id=_pick(data, "parent_id", "parentId"),
            variant_name=_pick(data, "variant_name", "variantName"),
        )


@dataclass
class Scene:
    """A single shot of a unit's script"""
    scene_id: str
    narration: str = ""
    visual_desc: str = ""
    np_prompt: str = ""
    video_prompt: Optional[str] = None

    # Camera / shot notes used to build the video prompt
    video_duration: Optional[str] = None
    video_camera: Optional[str] = None
    video_lens: Optional[str] = None
    video_vfx: Optional[str] = None

    audio_dialogue: List[DialogueLine] = field(default_factory=list)
    audio_sfx: Optional[str] = None
    audio_bgm: Optional[str] = None

    asset_ids: List[str] = field(default_factory=list)
    video_asset_ids: List[str] = field(default_factory=list)
    use_assets: bool = True

    # Generated media handles (url or blob id)
    image_url: Optional[str] = None
    image_blob_id: Optional[str] = None
    video_url: Optional[str] = None
    video_blob_id: Optional[str] = None
    narration_audio_url: Optional[str] = None
    narration_blob_id: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return bool(self.image_url or self.image_blob_id)

    @property
    def has_video(self) -> bool:
        return bool(self.video_url or self.video_blob_id)

    @property
    def has_narration_audio(self) -> bool:
        return bool(self.narration_audio_url or self.narration_blob_id)

    @property
    def self_ref_id(self) -> str:
        return f"{SCENE_IMAGE_REF_PREFIX}{self.scene_id}"

    def copy(self, **changes) -> "Scene":
        """Deep-enough copy: lists are not shared with the original"""
        clone = replace(
            self,
            audio_dialogue=[DialogueLine(d.speaker, d.text) for d in self.audio_dialogue],
            asset_ids=list(self.asset_ids),
            video_asset_ids=list(self.video_asset_ids),
        )
        return replace(clone, **changes) if changes else clone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scene_id": self.scene_id,
            "narration": self.narration,
            "visual_desc": self.visual_desc,
            "np_prompt": self.np_prompt,
            "video_prompt": self.video_prompt,
            "video_duration": self.video_duration,
            "video_camera": self.video_camera,
            "video_lens": self.video_lens,
            "video_vfx": self.video_vfx,
            "audio_dialogue": [d.to_dict() for d in self.audio_dialogue],
            "audio_sfx": self.audio_sfx,
            "audio_bgm": self.audio_bgm,
            "asset_ids": list(self.asset_ids),
            "video_asset_ids": list(self.video_asset_ids),
            "use_assets": self.use_assets,
            "image_url": self.image_url,
            "image_blob_id": self.image_blob_id,
            "video_url": self.video_url,
            "video_blob_id": self.video_blob_id,
            "narration_audio_url": self.narration_audio_url,
            "narration_blob_id": self.narration_blob_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scene":
        dialogue = _pick(data, "audio_dialogue", default=[]) or []
        return cls(
            scene_id=str(_pick(data, "scene_id", "id", default="")),
            narration=str(_pick(data, "narration", default="")),
            visual_desc=str(_pick(data, "visual_desc", default="")),
            np_prompt=str(_pick(data, "np_prompt", default="")),
            video_prompt=_pick(data, "video_prompt"),
            video_duration=_pick(data, "video_duration"),
            video_camera=_pick(data, "video_camera"),
            video_lens=_pick(data, "video_lens"),
            video_vfx=_pick(data, "video_vfx"),
            audio_dialogue=[DialogueLine.from_dict(d) for d in dialogue if isinstance(d, dict)],
            audio_sfx=_pick(data, "audio_sfx"),
            audio_bgm=_pick(data, "audio_bgm"),
            asset_ids=list(_pick(data, "asset_ids", "assetIds", default=[]) or []),
            video_asset_ids=list(_pick(data, "video_asset_ids", "videoAssetIds", default=[]) or []),
            use_assets=bool(_pick(data, "use_assets", "useAssets", default=True)),
            image_url=_pick(data, "image_url", "imageUrl"),
            image_blob_id=_pick(data, "image_blob_id", "imageAssetId"),
            video_url=_pick(data, "video_url", "videoUrl"),
            video_blob_id=_pick(data, "video_blob_id", "videoAssetId"),
            narration_audio_url=_pick(data, "narration_audio_url", "narrationAudioUrl"),
            narration_blob_id=_pick(data, "narration_blob_id"),
        )


@dataclass
class Unit:
    """One segment of the source text with its own lifecycle"""
    unit_id: str
    index: int
    text: str
    status: UnitStatus = UnitStatus.IDLE
    assets: List[Asset] = field(default_factory=list)
    scenes: List[Scene] = field(default_factory=list)
    title: Optional[str] = None

    @property
    def all_scenes_have_images(self) -> bool:
        return bool(self.scenes) and all(s.has_image for s in self.scenes)

    @property
    def all_assets_have_images(self) -> bool:
        return all(a.has_image for a in self.assets)

    def find_scene(self, scene_id: str) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.scene_id == scene_id:
                return scene
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "index": self.index,
            "text": self.text,
            "status": self.status.value,
            "title": self.title,
            "assets": [a.to_dict() for a in self.assets],
            "scenes": [s.to_dict() for s in self.scenes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Unit":
        return cls(
            unit_id=str(_pick(data, "unit_id", "id", default="")),
            index=int(_pick(data, "index", default=0)),
            text=str(_pick(data, "text", default="")),
            status=UnitStatus(_pick(data, "status", default="idle")),
            title=_pick(data, "title"),
            assets=[Asset.from_dict(a) for a in data.get("assets", [])],
            scenes=[Scene.from_dict(s) for s in data.get("scenes", [])],
        )


@dataclass
class StyleSetting:
    """One style axis (director, work reference, texture)"""
    selected: str = "None"
    custom: str = ""
    strength: int = 100
    seed: Optional[int] = None

    @property
    def effective(self) -> Optional[str]:
        if self.custom.strip():
            return self.custom.strip()
        if self.selected and self.selected != "None":
            return self.selected
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"selected": self.selected, "custom": self.custom,
                "strength": self.strength, "seed": self.seed}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StyleSetting":
        return cls(
            selected=data.get("selected", "None"),
            custom=data.get("custom", ""),
            strength=int(data.get("strength", 100)),
            seed=data.get("seed"),
        )


@dataclass
class GlobalStyle:
    """Style applied across every unit of a project"""
    director: StyleSetting = field(default_factory=StyleSetting)
    work: StyleSetting = field(default_factory=StyleSetting)
    texture: StyleSetting = field(default_factory=StyleSetting)
    aspect_ratio: str = "16:9"
    visual_tags: str = ""
    narration_voice: str = "Kore"

    def describe(self) -> str:
        """Compact style line prepended to generation prompts"""
        parts = []
        if self.director.effective:
            parts.append(f"Director style: {self.director.effective}")
        if self.work.effective:
            parts.append(f"Reference work: {self.work.effective}")
        if self.texture.effective:
            parts.append(f"Texture: {self.texture.effective}")
        if self.visual_tags:
            parts.append(f"Visual DNA: {self.visual_tags}")
        return ". ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "director": self.director.to_dict(),
            "work": self.work.to_dict(),
            "texture": self.texture.to_dict(),
            "aspect_ratio": self.aspect_ratio,
            "visual_tags": self.visual_tags,
            "narration_voice": self.narration_voice,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GlobalStyle":
        return cls(
            director=StyleSetting.from_dict(data.get("director", {})),
            work=StyleSetting.from_dict(data.get("work", {})),
            texture=StyleSetting.from_dict(data.get("texture", {})),
            aspect_ratio=data.get("aspect_ratio", "16:9"),
            visual_tags=data.get("visual_tags", ""),
            narration_voice=data.get("narration_voice", "Kore"),
        )
