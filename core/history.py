"""Undo/redo of structural scene edits"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Set, Tuple

from core.models.storyboard import SCENE_IMAGE_REF_PREFIX, Scene


DUPLICATE_SCENE = "duplicate_scene"


@dataclass
class HistoryAction:
    """A reversible edit with enough snapshot data to undo and redo it"""
    kind: str
    unit_id: str
    insert_index: int
    scene_id: str
    scene_snapshot: Scene


def ensure_unique_id(desired_id: str, existing_ids: Set[str]) -> str:
    """desired_id, or desired_id_2, desired_id_3... if taken"""
    if desired_id not in existing_ids:
        return desired_id
    i = 2
    while f"{desired_id}_{i}" in existing_ids:
        i += 1
    return f"{desired_id}_{i}"


def remap_self_asset_ids(ids: List[str], old_scene_id: str, new_scene_id: str) -> List[str]:
    """Point scene_img_<old> references at the renamed scene"""
    old_ref = f"{SCENE_IMAGE_REF_PREFIX}{old_scene_id}"
    new_ref = f"{SCENE_IMAGE_REF_PREFIX}{new_scene_id}"
    return [new_ref if i == old_ref else i for i in ids]


def _renamed(scene: Scene, new_id: str) -> Scene:
    return scene.copy(
        scene_id=new_id,
        asset_ids=remap_self_asset_ids(scene.asset_ids, scene.scene_id, new_id),
        video_asset_ids=remap_self_asset_ids(scene.video_asset_ids, scene.scene_id, new_id),
    )


def duplicate_scene(
    unit_id: str, scenes: Sequence[Scene], scene_id: str
) -> Optional[Tuple[List[Scene], HistoryAction]]:
    """Insert a copy of scene_id right after it; None if the scene is unknown"""
    index = next((i for i, s in enumerate(scenes) if s.scene_id == scene_id), -1)
    if index < 0:
        return None

    existing = {s.scene_id for s in scenes}
    source = scenes[index]
    clone = _renamed(source, ensure_unique_id(f"{source.scene_id}_copy", existing))
    action = HistoryAction(
        kind=DUPLICATE_SCENE,
        unit_id=unit_id,
        insert_index=index + 1,
        scene_id=clone.scene_id,
        scene_snapshot=clone.copy(),
    )
    new_scenes = list(scenes[:index + 1]) + [clone] + list(scenes[index + 1:])
    return new_scenes, action


def undo_duplicate(
    scenes: Sequence[Scene], action: HistoryAction
) -> Optional[Tuple[List[Scene], HistoryAction]]:
    """Remove the duplicated scene; the returned action re-inserts it. None if it is already gone"""
    index = next((i for i, s in enumerate(scenes) if s.scene_id == action.scene_id), -1)
    if index < 0:
        return None
    removed = scenes[index]
    redo_action = HistoryAction(
        kind=action.kind,
        unit_id=action.unit_id,
        insert_index=action.insert_index,
        scene_id=action.scene_id,
        scene_snapshot=removed.copy(),
    )
    return list(scenes[:index]) + list(scenes[index + 1:]), redo_action


def redo_duplicate(scenes: Sequence[Scene], action: HistoryAction) -> Tuple[List[Scene], HistoryAction]:
    """Re-insert the snapshot, renaming it if its id has been taken since"""
    index = min(max(action.insert_index, 0), len(scenes))
    snapshot = action.scene_snapshot.copy()
    final_id = ensure_unique_id(snapshot.scene_id, {s.scene_id for s in scenes})
    if final_id != snapshot.scene_id:
        snapshot = _renamed(snapshot, final_id)

    undo_action = HistoryAction(
        kind=action.kind,
        unit_id=action.unit_id,
        insert_index=index,
        scene_id=snapshot.scene_id,
        scene_snapshot=snapshot.copy(),
    )
    return list(scenes[:index]) + [snapshot] + list(scenes[index:]), undo_action


class CommandHistory:
    """Undo and redo stacks; a new recorded edit clears redo"""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self._undo: List[HistoryAction] = []
        self._redo: List[HistoryAction] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def record(self, action: HistoryAction) -> None:
        self._push_undo(action)
        self._redo.clear()

    def pop_undo(self) -> Optional[HistoryAction]:
        return self._undo.pop() if self._undo else None

    def pop_redo(self) -> Optional[HistoryAction]:
        return self._redo.pop() if self._redo else None

    def push_redo(self, action: HistoryAction) -> None:
        self._redo.append(action)

    def push_undo(self, action: HistoryAction) -> None:
        """Re-record after a redo (keeps the remaining redo stack)"""
        self._push_undo(action)

    def clear_redo(self) -> None:
        self._redo.clear()

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    def _push_undo(self, action: HistoryAction) -> None:
        self._undo.append(action)
        if len(self._undo) > self.limit:
            del self._undo[0]
