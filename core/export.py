"""
Unit archives.

A unit exports to a zip with this layout:

    assets.txt                         human readable asset list
    data.json                          {unit_id, text, assets, scenes}
    images/<scene_id>.png              storyboard frames
    videos/<scene_id>.mp4              scene videos
    narration/<scene_id>_narration.wav narration audio
    asset_refs/<asset_id>_<name>.png   asset reference images

Media handles are not written to data.json; importing reattaches the files
by entity id.
"""

import json
import logging
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from core.models.storyboard import Asset, Scene, Unit, UnitStatus

logger = logging.getLogger(__name__)

MediaLoader = Callable[[Optional[str], Optional[str]], Awaitable[Optional[bytes]]]

_UNSAFE_NAME_RE = re.compile(r"[^\w.-]+", re.UNICODE)

_SCENE_MEDIA_FIELDS = ("image_url", "image_blob_id", "video_url", "video_blob_id",
                       "narration_audio_url", "narration_blob_id")
_ASSET_MEDIA_FIELDS = ("ref_image_url", "ref_image_blob_id")


class ArchiveError(Exception):
    """Raised for archives that are not unit exports"""


def safe_name(name: str) -> str:
    return _UNSAFE_NAME_RE.sub("_", name).strip("_") or "asset"


def image_path(scene_id: str) -> str:
    return f"images/{scene_id}.png"


def video_path(scene_id: str) -> str:
    return f"videos/{scene_id}.mp4"


def narration_path(scene_id: str) -> str:
    return f"narration/{scene_id}_narration.wav"


def asset_ref_path(asset: Asset) -> str:
    return f"asset_refs/{asset.asset_id}_{safe_name(asset.name)}.png"


def _strip(data: dict, fields: Sequence[str]) -> dict:
    return {k: v for k, v in data.items() if k not in fields}


def describe_assets(assets: Sequence[Asset]) -> str:
    lines = []
    for asset in assets:
        lines.append(f"[{asset.category.value}] {asset.name} ({asset.asset_id})")
        if asset.parent_id:
            lines.append(f"  variant of: {asset.parent_id}")
        if asset.description:
            lines.append(f"  {asset.description}")
        lines.append("")
    return "\n".join(lines)


@dataclass
class UnitArchive:
    """Contents of an imported archive"""
    unit_id: str
    text: str
    assets: List[Asset] = field(default_factory=list)
    scenes: List[Scene] = field(default_factory=list)
    # archive path -> bytes
    media: Dict[str, bytes] = field(default_factory=dict)

    def infer_status(self) -> UnitStatus:
        """All videos -> completed, all images -> shooting, otherwise scripted"""
        if not self.scenes:
            return UnitStatus.EXTRACTED if self.assets else UnitStatus.IDLE
        if all(video_path(s.scene_id) in self.media for s in self.scenes):
            return UnitStatus.COMPLETED
        if all(image_path(s.scene_id) in self.media for s in self.scenes):
            return UnitStatus.SHOOTING
        return UnitStatus.SCRIPTED


async def write_unit_archive(
    path: Path,
    unit: Unit,
    assets: Sequence[Asset],
    load_media: MediaLoader,
) -> Path:
    """
    Write one unit to a zip archive.

    Args:
        path: Destination file (parent directories are created)
        unit: Unit to export
        assets: Assets shown for the unit (own and borrowed)
        load_media: Returns the bytes behind a (url, blob_id) handle

    Returns:
        The written path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    entries: Dict[str, bytes] = {}
    for scene in unit.scenes:
        for archive_path, url, blob_id in (
            (image_path(scene.scene_id), scene.image_url, scene.image_blob_id),
            (video_path(scene.scene_id), scene.video_url, scene.video_blob_id),
            (narration_path(scene.scene_id), scene.narration_audio_url, scene.narration_blob_id),
        ):
            if url or blob_id:
                data = await load_media(url, blob_id)
                if data:
                    entries[archive_path] = data
                else:
                    logger.warning(f"Skipping {archive_path}: media not available")
    for asset in assets:
        if asset.has_image:
            data = await load_media(asset.ref_image_url, asset.ref_image_blob_id)
            if data:
                entries[asset_ref_path(asset)] = data

    document = {
        "unit_id": unit.unit_id,
        "text": unit.text,
        "assets": [_strip(a.to_dict(), _ASSET_MEDIA_FIELDS) for a in assets],
        "scenes": [_strip(s.to_dict(), _SCENE_MEDIA_FIELDS) for s in unit.scenes],
    }

    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("assets.txt", describe_assets(assets))
        archive.writestr("data.json", json.dumps(document, indent=2, ensure_ascii=False))
        for name, data in entries.items():
            archive.writestr(name, data)

    logger.info(f"Exported unit {unit.unit_id} to {path} ({len(entries)} media files)")
    return path


def read_unit_archive(path: Path) -> UnitArchive:
    """Read an archive written by write_unit_archive"""
    try:
        archive = zipfile.ZipFile(path)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"{path} is not a zip archive") from e

    with archive:
        try:
            document = json.loads(archive.read("data.json").decode("utf-8"))
        except KeyError as e:
            raise ArchiveError(f"{path} has no data.json") from e
        except json.JSONDecodeError as e:
            raise ArchiveError(f"{path} has an unreadable data.json: {e}") from e

        media = {
            info.filename: archive.read(info)
            for info in archive.infolist()
            if not info.is_dir() and info.filename.split("/", 1)[0] in
            ("images", "videos", "narration", "asset_refs")
        }

    return UnitArchive(
        unit_id=str(document.get("unit_id", "")),
        text=str(document.get("text", "")),
        assets=[Asset.from_dict(a) for a in document.get("assets", [])],
        scenes=[Scene.from_dict(s) for s in document.get("scenes", [])],
        media=media,
    )
