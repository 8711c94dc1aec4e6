"""Data models for Storyboard Studio"""

from .storyboard import (
    SCENE_IMAGE_REF_PREFIX,
    Asset,
    AssetCategory,
    DialogueLine,
    GlobalStyle,
    Scene,
    StyleSetting,
    Unit,
    UnitStatus,
)

__all__ = [
    "SCENE_IMAGE_REF_PREFIX",
    "Asset",
    "AssetCategory",
    "DialogueLine",
    "GlobalStyle",
    "Scene",
    "StyleSetting",
    "Unit",
    "UnitStatus",
]
