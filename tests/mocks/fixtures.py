"""Test data factories for consistent test setup"""

from typing import List

from core.config import Settings
from core.models.storyboard import Asset, AssetCategory, Scene, Unit, UnitStatus

# 1x1 PNG as a data URL
PNG_DATA_URL = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


def make_settings(tmp_path=None, **kwargs) -> Settings:
    """Settings that never read .env and never wait"""
    defaults = {
        "_env_file": None,
        "content_initial_delay": 0.0,
        "video_base_delay": 0.0,
        "video_poll_interval": 0.0,
        "autosave_delay": 0.0,
    }
    if tmp_path is not None:
        defaults["state_dir"] = tmp_path
    defaults.update(kwargs)
    return Settings(**defaults)


def make_asset(
    asset_id: str = "asset_hero",
    name: str = "Hero",
    description: str = "A young traveler in a grey cloak",
    category: AssetCategory = AssetCategory.CHARACTER,
    **kwargs
) -> Asset:
    """Factory for Asset objects"""
    return Asset(asset_id=asset_id, name=name, description=description, category=category, **kwargs)


def make_scene(
    scene_id: str = "scene_1",
    narration: str = "The traveler reaches the gate.",
    visual_desc: str = "A traveler at a city gate",
    np_prompt: str = "Hero at the gate, dusk",
    **kwargs
) -> Scene:
    """Factory for Scene objects"""
    return Scene(scene_id=scene_id, narration=narration, visual_desc=visual_desc,
                 np_prompt=np_prompt, **kwargs)


def make_scene_list(count: int = 3, **kwargs) -> List[Scene]:
    """Factory for list of scenes"""
    return [make_scene(scene_id=f"scene_{i + 1}", **kwargs) for i in range(count)]


def make_unit(
    unit_id: str = "unit_1",
    index: int = 0,
    text: str = "Once upon a time.",
    status: UnitStatus = UnitStatus.IDLE,
    **kwargs
) -> Unit:
    """Factory for Unit objects"""
    return Unit(unit_id=unit_id, index=index, text=text, status=status, **kwargs)


class SleepRecorder:
    """Injectable sleep that records delays and returns immediately"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
