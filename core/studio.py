"""
Storyboard Studio - owns the project state and drives every unit operation

    load_text -> extract -> script -> shoot -> make_film / generate_narration

The studio is the single owner of the global asset collection and the unit
list. Both are replaced as whole snapshots on every change: an operation that
awaits a network call re-reads the latest snapshot before committing, so
concurrent callbacks never overwrite each other's results. Listeners (the
automation loop, autosave) are called synchronously after each commit.
"""

import asyncio
import base64
import logging
import uuid
from dataclasses import replace
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

import httpx

from agents.asset_extractor import AssetExtractorAgent
from agents.audio_generator import AudioGeneratorAgent
from agents.image_generator import ImageGeneratorAgent
from agents.script_writer import ScriptWriterAgent
from agents.video_generator import VideoGeneratorAgent
from core.batch import BatchReport, BatchRunner, BatchTask, CancellationToken, CompletionCallback
from core.config import Settings
from core.export import (
    UnitArchive,
    asset_ref_path,
    image_path,
    narration_path,
    read_unit_archive,
    video_path,
    write_unit_archive,
)
from core.history import CommandHistory, duplicate_scene, redo_duplicate, undo_duplicate
from core.lro import OperationPoller
from core.model_router import ModelRouter
from core.models.storyboard import (
    SCENE_IMAGE_REF_PREFIX,
    Asset,
    AssetCategory,
    GlobalStyle,
    Scene,
    Unit,
    UnitStatus,
)
from core.providers.parsing import decode_media, is_data_url, is_http_url, parse_data_url
from core.retry import GenerationError, SleepFn
from core.state_machine import (
    EXTRACT_FROM,
    SCRIPT_FROM,
    SHOOT_FROM,
    InFlightGuard,
    InvalidTransitionError,
    derive_shoot_status,
    validate_transition,
)
from core.storage import BlobStore, StateStore

logger = logging.getLogger(__name__)

SESSION_KEY = "storyboard_session"
SESSION_VERSION = 1

Listener = Callable[["StoryboardStudio"], None]


class StudioError(Exception):
    """Base class for studio operation errors"""


class UnitNotFoundError(StudioError):
    """No unit with the given id"""


class EmptyScriptError(StudioError):
    """Scripting produced no scenes"""


class StoryboardStudio:
    """
    Orchestrator for one storyboard project.

    Args:
        router: ModelRouter used by every agent
        settings: Studio settings (concurrency ceilings, retry constants...)
        state_store: Optional StateStore for save/restore
        blob_store: Optional BlobStore; generated media is kept there as
            blob ids instead of inline data URLs when configured
        sleep: Injectable sleep for the video poller
        autosave: Save the session shortly after every change
    """

    def __init__(
        self,
        router: ModelRouter,
        settings: Optional[Settings] = None,
        state_store: Optional[StateStore] = None,
        blob_store: Optional[BlobStore] = None,
        sleep: SleepFn = asyncio.sleep,
        autosave: bool = False,
    ):
        self.router = router
        self.settings = settings or Settings()
        self.state_store = state_store
        self.blob_store = blob_store
        self.autosave = autosave

        self.extractor = AssetExtractorAgent(router, self.settings)
        self.script_writer = ScriptWriterAgent(router, self.settings)
        self.image_generator = ImageGeneratorAgent(router, self.settings)
        self.video_generator = VideoGeneratorAgent(
            router, self.settings, poller=OperationPoller.from_settings(router, self.settings, sleep)
        )
        self.audio_generator = AudioGeneratorAgent(router, self.settings)

        self._units: Tuple[Unit, ...] = ()
        self._assets: Tuple[Asset, ...] = ()
        self.style = GlobalStyle(aspect_ratio=self.settings.aspect_ratio)
        self.filename: Optional[str] = None
        self.active_unit_id: Optional[str] = None
        self.history = CommandHistory()

        self.guards: Dict[str, InFlightGuard] = {
            name: InFlightGuard(name)
            for name in ("extract", "script", "shoot", "film", "narrate", "asset_image")
        }
        self._listeners: List[Listener] = []
        self._autosave_handle: Optional[asyncio.TimerHandle] = None
        self._background: set = set()

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    @property
    def units(self) -> List[Unit]:
        return sorted(self._units, key=lambda u: u.index)

    @property
    def assets(self) -> List[Asset]:
        return list(self._assets)

    def get_unit(self, unit_id: str) -> Unit:
        for unit in self._units:
            if unit.unit_id == unit_id:
                return unit
        raise UnitNotFoundError(f"Unit not found: {unit_id}")

    def find_unit(self, unit_id: Optional[str]) -> Optional[Unit]:
        return next((u for u in self._units if u.unit_id == unit_id), None)

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        return next((a for a in self._assets if a.asset_id == asset_id), None)

    def next_unit(self, unit_id: str) -> Optional[Unit]:
        ordered = self.units
        for i, unit in enumerate(ordered):
            if unit.unit_id == unit_id:
                return ordered[i + 1] if i + 1 < len(ordered) else None
        return None

    def previous_unit(self, unit_id: str) -> Optional[Unit]:
        ordered = self.units
        for i, unit in enumerate(ordered):
            if unit.unit_id == unit_id:
                return ordered[i - 1] if i > 0 else None
        return None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it"""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception(f"Studio listener {listener!r} failed")
        if self.autosave and self.state_store is not None:
            self._schedule_autosave()

    def _commit_units(self, units: Sequence[Unit]) -> None:
        self._units = tuple(units)
        self._notify()

    def _commit_assets(self, assets: Sequence[Asset]) -> None:
        self._assets = tuple(assets)

    def _update_unit(self, unit_id: str, change: Callable[[Unit], Unit]) -> Optional[Unit]:
        """Apply change to the latest version of a unit and commit; None if it is gone"""
        current = self.find_unit(unit_id)
        if current is None:
            logger.debug(f"Unit {unit_id} disappeared before commit")
            return None
        updated = change(current)
        self._commit_units([updated if u.unit_id == unit_id else u for u in self._units])
        return updated

    def _set_status(self, unit_id: str, status: UnitStatus) -> Optional[Unit]:
        def change(unit: Unit) -> Unit:
            if unit.status != status:
                validate_transition(unit.status, status)
                logger.info(f"Unit {unit.index + 1}: {unit.status.value} -> {status.value}")
            return replace(unit, status=status)
        return self._update_unit(unit_id, change)

    def _with_completion(self, unit: Unit) -> Unit:
        """Completion check for units in the shooting stage"""
        if unit.status in (UnitStatus.SHOOTING, UnitStatus.COMPLETED):
            return replace(unit, status=derive_shoot_status(unit.all_scenes_have_images))
        return unit

    def _update_scene_in_place(self, unit_id: str, scene_id: str, **changes) -> Optional[Scene]:
        result: Dict[str, Scene] = {}

        def change(unit: Unit) -> Unit:
            scenes = []
            for scene in unit.scenes:
                if scene.scene_id == scene_id:
                    scene = scene.copy(**changes)
                    result["scene"] = scene
                scenes.append(scene)
            return self._with_completion(replace(unit, scenes=scenes))

        self._update_unit(unit_id, change)
        return result.get("scene")

    # =========================================================================
    # TEXT
    # =========================================================================

    def load_text(self, text: str, filename: Optional[str] = None) -> List[Unit]:
        """Split text into units of settings.chunk_size characters"""
        size = self.settings.chunk_size
        chunks = [text[i:i + size] for i in range(0, len(text), size)] if text.strip() else []
        units = [
            Unit(unit_id=f"unit_{uuid.uuid4().hex[:8]}", index=i, text=chunk, title=f"Part {i + 1}")
            for i, chunk in enumerate(chunks)
        ]
        self.filename = filename
        self._assets = ()
        self.history.clear()
        self.active_unit_id = units[0].unit_id if units else None
        logger.info(f"Loaded {len(text)} characters into {len(units)} units")
        self._commit_units(units)
        return units

    def set_active(self, unit_id: Optional[str]) -> None:
        if unit_id is not None:
            self.get_unit(unit_id)
        self.active_unit_id = unit_id
        self._notify()

    # =========================================================================
    # EXTRACT / SCRIPT
    # =========================================================================

    async def extract(self, unit_id: str) -> Optional[Unit]:
        """
        Extract assets for a unit.

        Returns:
            The updated unit, or None if an extraction for it is already running

        Raises:
            InvalidTransitionError: if the unit is past extraction
            Exception: whatever the extractor raised (status is rolled back)
        """
        unit = self.get_unit(unit_id)
        guard = self.guards["extract"]
        if not guard.try_acquire(unit_id):
            logger.warning(f"Extraction already running for unit {unit.index + 1}")
            return None

        with guard.hold(unit_id):
            if unit.status not in EXTRACT_FROM:
                raise InvalidTransitionError(unit.status, UnitStatus.EXTRACTING,
                                             "extraction is only allowed before scripting")
            previous = unit.status
            self._set_status(unit_id, UnitStatus.EXTRACTING)
            try:
                result = await self.extractor.extract(
                    unit.text, self.assets, self.style, self.settings.language
                )
            except Exception:
                logger.warning(f"Extraction failed for unit {unit.index + 1}")
                self._set_status(unit_id, previous)
                raise

            if result.visual_dna:
                self.style = replace(self.style, visual_tags=result.visual_dna)

            # Merge into the latest global snapshot; known ids keep their global version
            known = {a.asset_id for a in self._assets}
            new_assets = [a for a in result.assets if a.asset_id not in known]
            self._commit_assets(list(self._assets) + new_assets)
            extracted_ids = [a.asset_id for a in result.assets]
            view = [a for a in (self.get_asset(i) for i in extracted_ids) if a is not None]

            logger.info(f"Unit {unit.index + 1}: {len(view)} assets ({len(new_assets)} new)")
            return self._update_unit(unit_id, lambda u: replace(
                u, assets=view, status=validate_transition(u.status, UnitStatus.EXTRACTED)
            ))

    async def script(self, unit_id: str) -> Optional[Unit]:
        """
        Write the scenes of an extracted unit.

        Returns:
            The updated unit, or None if scripting for it is already running

        Raises:
            InvalidTransitionError: if the unit is not extracted or already has scenes
            EmptyScriptError: if the model produced no scenes
        """
        unit = self.get_unit(unit_id)
        guard = self.guards["script"]
        if not guard.try_acquire(unit_id):
            logger.warning(f"Scripting already running for unit {unit.index + 1}")
            return None

        with guard.hold(unit_id):
            if unit.status not in SCRIPT_FROM:
                raise InvalidTransitionError(unit.status, UnitStatus.SCRIPTING, "unit is not extracted")
            if unit.scenes:
                raise InvalidTransitionError(unit.status, UnitStatus.SCRIPTING, "unit already has scenes")

            previous = unit.status
            previous_unit = self.previous_unit(unit_id)
            context = ""
            if previous_unit is not None and previous_unit.scenes:
                context = previous_unit.scenes[-1].narration

            self._set_status(unit_id, UnitStatus.SCRIPTING)
            try:
                result = await self.script_writer.write(
                    unit.text,
                    self.displayed_assets(unit_id),
                    self.style,
                    previous_context=context,
                    language=self.settings.language,
                )
                if not result.scenes:
                    raise EmptyScriptError(f"Scripting unit {unit.index + 1} produced no scenes")
            except Exception:
                logger.warning(f"Scripting failed for unit {unit.index + 1}")
                self._set_status(unit_id, previous)
                raise

            if result.visual_dna:
                self.style = replace(self.style, visual_tags=result.visual_dna)
            self.history.clear_redo()
            logger.info(f"Unit {unit.index + 1}: {len(result.scenes)} scenes")
            return self._update_unit(unit_id, lambda u: replace(
                u, scenes=result.scenes, status=validate_transition(u.status, UnitStatus.SCRIPTED)
            ))

    # =========================================================================
    # MEDIA BATCHES
    # =========================================================================

    async def shoot(self, unit_id: str, cancel_token: Optional[CancellationToken] = None) -> Optional[BatchReport]:
        """
        Generate the missing scene images of a unit.

        Returns:
            The batch report, or None if the unit is already being shot

        Raises:
            InvalidTransitionError: if the unit has no scenes
        """
        unit = self.get_unit(unit_id)
        if not unit.scenes:
            raise InvalidTransitionError(unit.status, UnitStatus.SHOOTING, "unit has no scenes")
        if unit.status not in SHOOT_FROM:
            raise InvalidTransitionError(unit.status, UnitStatus.SHOOTING, "unit is not scripted")

        guard = self.guards["shoot"]
        if not guard.try_acquire(unit_id):
            logger.info(f"Unit {unit.index + 1} is already shooting")
            return None

        with guard.hold(unit_id):
            self._set_status(unit_id, UnitStatus.SHOOTING)
            references = await self._resolved_assets(self.displayed_assets(unit_id))
            tasks = [
                BatchTask(scene.scene_id, partial(self._shoot_scene, unit_id, scene, references))
                for scene in unit.scenes if not scene.has_image
            ]
            runner = BatchRunner(self.settings.image_concurrency, name="scene images")
            report = await runner.run(tasks, cancel_token)

            updated = self._update_unit(unit_id, self._with_completion)
            if updated is not None:
                logger.info(f"Unit {updated.index + 1} shoot finished: {updated.status.value}")
            return report

    async def _shoot_scene(self, unit_id: str, scene: Scene, references: Sequence[Asset]) -> str:
        image = await self.image_generator.generate_scene_image(scene, references, self.style)
        url, blob_id = await self._store_media(image, "image/png")
        self._update_scene_in_place(unit_id, scene.scene_id, image_url=url, image_blob_id=blob_id)
        return scene.scene_id

    async def make_film(self, unit_id: str, cancel_token: Optional[CancellationToken] = None) -> Optional[BatchReport]:
        """Generate videos for scenes that have an image and no video"""
        unit = self.get_unit(unit_id)
        guard = self.guards["film"]
        if not guard.try_acquire(unit_id):
            logger.info(f"Videos already generating for unit {unit.index + 1}")
            return None

        with guard.hold(unit_id):
            references = await self._resolved_assets(self._video_reference_pool(unit))
            tasks = [
                BatchTask(scene.scene_id, partial(self._film_scene, unit_id, scene, references))
                for scene in unit.scenes if scene.has_image and not scene.has_video
            ]
            runner = BatchRunner(self.settings.video_concurrency, name="scene videos")
            return await runner.run(tasks, cancel_token)

    async def _film_scene(self, unit_id: str, scene: Scene, references: Sequence[Asset]) -> str:
        frame = await self._media_ref(scene.image_url, scene.image_blob_id)
        uri = await self.video_generator.generate(
            scene, frame, references if scene.use_assets else [], self.style
        )
        if uri is None:
            raise GenerationError(f"Video for scene {scene.scene_id} failed after all attempts")
        url, blob_id = await self._store_media(uri, "video/mp4")
        self._update_scene_in_place(unit_id, scene.scene_id, video_url=url, video_blob_id=blob_id)
        return uri

    def _video_reference_pool(self, unit: Unit) -> List[Asset]:
        """Displayed assets plus other scenes' frames addressable as scene_img_<id>"""
        pool = self.displayed_assets(unit.unit_id)
        for scene in unit.scenes:
            if scene.has_image:
                pool.append(Asset(
                    asset_id=scene.self_ref_id,
                    name=f"Scene {scene.scene_id}",
                    category=AssetCategory.LOCATION,
                    ref_image_url=scene.image_url,
                    ref_image_blob_id=scene.image_blob_id,
                ))
        return pool

    async def generate_narration(
        self, unit_id: str, cancel_token: Optional[CancellationToken] = None
    ) -> Optional[BatchReport]:
        """Speech for scenes with narration text and no audio yet"""
        unit = self.get_unit(unit_id)
        guard = self.guards["narrate"]
        if not guard.try_acquire(unit_id):
            logger.info(f"Narration already generating for unit {unit.index + 1}")
            return None

        with guard.hold(unit_id):
            tasks = [
                BatchTask(scene.scene_id, partial(self._narrate_scene, unit_id, scene))
                for scene in unit.scenes if scene.narration.strip() and not scene.has_narration_audio
            ]
            runner = BatchRunner(self.settings.narration_concurrency, name="narration")
            return await runner.run(tasks, cancel_token)

    async def _narrate_scene(self, unit_id: str, scene: Scene) -> str:
        wav = await self.audio_generator.narrate(scene.narration, self.style.narration_voice)
        url, blob_id = await self._store_bytes(wav, "audio/wav")
        self._update_scene_in_place(unit_id, scene.scene_id, narration_audio_url=url, narration_blob_id=blob_id)
        return scene.scene_id

    async def generate_asset_images(
        self,
        unit_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_complete: Optional[CompletionCallback] = None,
    ) -> BatchReport:
        """
        Reference images for assets that have a description and no image.

        Limited to the assets displayed for unit_id when given. Assets whose
        image is already being generated are left out of this batch.
        """
        candidates = self.displayed_assets(unit_id) if unit_id else self.assets
        guard = self.guards["asset_image"]
        acquired = [
            a.asset_id for a in candidates
            if not a.has_image and a.description.strip() and guard.try_acquire(a.asset_id)
        ]
        tasks = [BatchTask(asset_id, partial(self._draw_asset, asset_id)) for asset_id in acquired]
        runner = BatchRunner(self.settings.asset_concurrency, name="asset images")
        try:
            return await runner.run(tasks, cancel_token, on_complete)
        finally:
            for asset_id in acquired:
                guard.release(asset_id)

    async def _draw_asset(self, asset_id: str) -> str:
        asset = self.get_asset(asset_id)
        if asset is None:
            raise GenerationError(f"Asset {asset_id} was deleted")
        reference = None
        if asset.parent_id:
            parent = self.get_asset(asset.parent_id)
            if parent is not None and parent.has_image:
                reference = await self._media_ref(parent.ref_image_url, parent.ref_image_blob_id)

        result = await self.image_generator.generate_asset_image(asset, self.style, reference_image=reference)
        url, blob_id = await self._store_media(result.image, "image/png")
        self.update_asset(asset_id, ref_image_url=url, ref_image_blob_id=blob_id, prompt=result.prompt)
        return asset_id

    # =========================================================================
    # ASSETS
    # =========================================================================

    def displayed_assets(self, unit_id: Optional[str]) -> List[Asset]:
        """
        The unit's own assets plus assets borrowed by its scenes.

        Borrowed ids are scene asset ids that are not in the unit's view but
        exist globally; scene_img_* references are not assets.
        """
        unit = self.find_unit(unit_id) if unit_id else None
        if unit is None:
            return self.assets
        own = [self.get_asset(a.asset_id) or a for a in unit.assets]
        own_ids = {a.asset_id for a in own}
        borrowed: List[Asset] = []
        for scene in unit.scenes:
            for asset_id in scene.asset_ids + scene.video_asset_ids:
                if asset_id.startswith(SCENE_IMAGE_REF_PREFIX) or asset_id in own_ids:
                    continue
                asset = self.get_asset(asset_id)
                if asset is not None:
                    borrowed.append(asset)
                    own_ids.add(asset_id)
        return own + borrowed

    def add_asset(self, asset: Asset, unit_id: Optional[str] = None) -> Asset:
        """
        Add an asset to the global collection.

        A new asset is attached to the focused unit (unit_id, else the active
        unit). An existing id is treated as an update.
        """
        if self.get_asset(asset.asset_id) is not None:
            changes = {k: v for k, v in asset.__dict__.items() if k != "asset_id"}
            return self.update_asset(asset.asset_id, **changes)

        self._commit_assets(list(self._assets) + [asset])
        focus = unit_id or self.active_unit_id
        if self.find_unit(focus) is not None:
            self._update_unit(focus, lambda u: replace(u, assets=list(u.assets) + [asset]))
        else:
            self._notify()
        return asset

    def update_asset(self, asset_id: str, **changes) -> Asset:
        """Update the global asset and every unit view that holds it"""
        current = self.get_asset(asset_id)
        if current is None:
            raise StudioError(f"Asset not found: {asset_id}")
        updated = replace(current, **changes)
        self._commit_assets([updated if a.asset_id == asset_id else a for a in self._assets])
        self._commit_units([
            replace(u, assets=[updated if a.asset_id == asset_id else a for a in u.assets])
            if any(a.asset_id == asset_id for a in u.assets) else u
            for u in self._units
        ])
        return updated

    def delete_asset(self, asset_id: str, unit_id: Optional[str] = None) -> None:
        """Remove from the focused unit's view, or globally when no unit is focused"""
        focus = unit_id or self.active_unit_id
        if self.find_unit(focus) is not None:
            self._update_unit(focus, lambda u: replace(
                u, assets=[a for a in u.assets if a.asset_id != asset_id]
            ))
            return
        self._commit_assets([a for a in self._assets if a.asset_id != asset_id])
        self._commit_units([
            replace(u, assets=[a for a in u.assets if a.asset_id != asset_id]) for u in self._units
        ])

    # =========================================================================
    # STRUCTURAL EDITS
    # =========================================================================

    def update_scene(self, unit_id: str, scene_id: str, **changes) -> Scene:
        unit = self.get_unit(unit_id)
        if unit.find_scene(scene_id) is None:
            raise StudioError(f"Scene not found: {scene_id}")
        self.history.clear_redo()
        return self._update_scene_in_place(unit_id, scene_id, **changes)

    def delete_scene(self, unit_id: str, scene_id: str) -> None:
        self.get_unit(unit_id)
        self.history.clear_redo()
        self._update_unit(unit_id, lambda u: self._with_completion(
            replace(u, scenes=[s for s in u.scenes if s.scene_id != scene_id])
        ))

    def delete_unit(self, unit_id: str) -> None:
        self.get_unit(unit_id)
        self.history.clear_redo()
        if self.active_unit_id == unit_id:
            self.active_unit_id = None
        self._commit_units([u for u in self._units if u.unit_id != unit_id])

    def duplicate_scene(self, unit_id: str, scene_id: str) -> Optional[Scene]:
        """Insert a copy right after the scene; recorded for undo"""
        unit = self.get_unit(unit_id)
        result = duplicate_scene(unit_id, unit.scenes, scene_id)
        if result is None:
            return None
        scenes, action = result
        self.history.record(action)
        self._update_unit(unit_id, lambda u: self._with_completion(replace(u, scenes=scenes)))
        return action.scene_snapshot

    def undo(self) -> bool:
        action = self.history.pop_undo()
        if action is None:
            return False
        unit = self.find_unit(action.unit_id)
        if unit is None:
            logger.warning(f"Cannot undo: unit {action.unit_id} no longer exists")
            return False
        undone = undo_duplicate(unit.scenes, action)
        if undone is None:
            logger.warning(f"Cannot undo: scene {action.scene_id} no longer exists")
            return False
        scenes, redo_action = undone
        self.history.push_redo(redo_action)
        self._update_unit(action.unit_id, lambda u: self._with_completion(replace(u, scenes=scenes)))
        return True

    def redo(self) -> bool:
        action = self.history.pop_redo()
        if action is None:
            return False
        unit = self.find_unit(action.unit_id)
        if unit is None:
            logger.warning(f"Cannot redo: unit {action.unit_id} no longer exists")
            return False
        scenes, undo_action = redo_duplicate(unit.scenes, action)
        self.history.push_undo(undo_action)
        self._update_unit(action.unit_id, lambda u: self._with_completion(replace(u, scenes=scenes)))
        return True

    # =========================================================================
    # MEDIA HANDLES
    # =========================================================================

    async def _store_bytes(self, data: bytes, mime_type: str) -> Tuple[Optional[str], Optional[str]]:
        """(url, blob_id): a blob when a BlobStore is configured, else a data URL"""
        if self.blob_store is not None:
            return None, await self.blob_store.save_bytes(data, mime_type)
        return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}", None

    async def _store_media(self, ref: str, mime_type: str) -> Tuple[Optional[str], Optional[str]]:
        """Move inline media into the blob store; remote URLs are kept as they are"""
        if is_data_url(ref) and self.blob_store is not None:
            media = parse_data_url(ref)
            if media is not None:
                return None, await self.blob_store.save_bytes(decode_media(media), media.mime_type)
        return ref, None

    async def _media_ref(self, url: Optional[str], blob_id: Optional[str]) -> Optional[str]:
        """A data URL or http URL that providers can consume"""
        if url and not url.startswith("file://"):
            return url
        if blob_id and self.blob_store is not None:
            data = await self.blob_store.load_bytes(blob_id)
            if data is not None:
                mime = self.blob_store.mime_type(blob_id) or "image/png"
                return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
        return url

    async def _resolved_assets(self, assets: Sequence[Asset]) -> List[Asset]:
        resolved = []
        for asset in assets:
            if asset.has_image:
                asset = replace(asset, ref_image_url=await self._media_ref(asset.ref_image_url, asset.ref_image_blob_id))
            resolved.append(asset)
        return resolved

    async def resolve_media(self, blob_id: str) -> Optional[str]:
        """Dereferenceable URL for a stored blob (loaded lazily)"""
        if self.blob_store is None:
            return None
        return await self.blob_store.load_url(blob_id)

    async def _media_bytes(self, url: Optional[str], blob_id: Optional[str]) -> Optional[bytes]:
        if blob_id and self.blob_store is not None:
            data = await self.blob_store.load_bytes(blob_id)
            if data is not None:
                return data
        if not url:
            return None
        if is_data_url(url):
            media = parse_data_url(url)
            return decode_media(media) if media else None
        if url.startswith("file://"):
            path = Path(unquote(urlparse(url).path))
            return path.read_bytes() if path.exists() else None
        if is_http_url(url):
            try:
                async with httpx.AsyncClient(timeout=self.settings.request_timeout,
                                             follow_redirects=True) as client:
                    response = await client.get(url)
                    response.raise_for_status()
                    return response.content
            except httpx.HTTPError as e:
                logger.warning(f"Could not download {url}: {e}")
                return None
        return None

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def to_dict(self) -> dict:
        """Session document; media with a blob id is saved without its URL"""
        units = []
        for unit in self.units:
            data = unit.to_dict()
            for scene in data["scenes"]:
                for url_key, blob_key in (("image_url", "image_blob_id"),
                                          ("video_url", "video_blob_id"),
                                          ("narration_audio_url", "narration_blob_id")):
                    if scene.get(blob_key):
                        scene[url_key] = None
            for asset in data["assets"]:
                if asset.get("ref_image_blob_id"):
                    asset["ref_image_url"] = None
            units.append(data)
        assets = []
        for asset in self._assets:
            data = asset.to_dict()
            if data.get("ref_image_blob_id"):
                data["ref_image_url"] = None
            assets.append(data)
        return {
            "version": SESSION_VERSION,
            "filename": self.filename,
            "active_unit_id": self.active_unit_id,
            "style": self.style.to_dict(),
            "assets": assets,
            "units": units,
        }

    async def save(self) -> None:
        if self.state_store is None:
            raise StudioError("No state store configured")
        await self.state_store.save(SESSION_KEY, self.to_dict())
        logger.debug(f"Session saved ({len(self._units)} units, {len(self._assets)} assets)")

    async def restore(self) -> bool:
        """Load the saved session; False when there is none"""
        if self.state_store is None:
            raise StudioError("No state store configured")
        data = await self.state_store.load(SESSION_KEY)
        if not data:
            return False
        self.filename = data.get("filename")
        self.style = GlobalStyle.from_dict(data.get("style", {}))
        self._assets = tuple(Asset.from_dict(a) for a in data.get("assets", []))
        units = [Unit.from_dict(u) for u in data.get("units", [])]
        self.active_unit_id = data.get("active_unit_id")
        self.history.clear()
        logger.info(f"Restored session: {len(units)} units, {len(self._assets)} assets")
        self._commit_units(units)
        return True

    async def clear(self) -> None:
        """Reset the project and delete the saved session and media"""
        self._units = ()
        self._assets = ()
        self.style = GlobalStyle(aspect_ratio=self.settings.aspect_ratio)
        self.filename = None
        self.active_unit_id = None
        self.history.clear()
        if self.state_store is not None:
            await self.state_store.clear(SESSION_KEY)
        if self.blob_store is not None:
            await self.blob_store.clear()
        self._notify()

    def _schedule_autosave(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._autosave_handle is not None:
            self._autosave_handle.cancel()
        self._autosave_handle = loop.call_later(self.settings.autosave_delay, self._start_autosave)

    def _start_autosave(self) -> None:
        self._autosave_handle = None
        task = asyncio.ensure_future(self.save())
        self._background.add(task)
        task.add_done_callback(self._autosave_done)

    def _autosave_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Autosave failed: {task.exception()}")

    async def aclose(self) -> None:
        """Flush a pending autosave"""
        if self._autosave_handle is not None:
            self._autosave_handle.cancel()
            self._autosave_handle = None
            if self.autosave and self.state_store is not None:
                await self.save()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # =========================================================================
    # IMPORT / EXPORT
    # =========================================================================

    async def export_unit(self, unit_id: str, path: Path) -> Path:
        unit = self.get_unit(unit_id)
        return await write_unit_archive(path, unit, self.displayed_assets(unit_id), self._media_bytes)

    async def import_unit(self, path: Path) -> Unit:
        """
        Add an exported unit as a new unit at the end of the list.

        The unit gets a fresh id. Its assets are merged into the global
        collection (known ids keep their global version) and its status is
        inferred from the media present in the archive.
        """
        archive: UnitArchive = read_unit_archive(path)

        known = {a.asset_id for a in self._assets}
        new_assets = []
        for asset in archive.assets:
            if asset.asset_id in known:
                continue
            data = archive.media.get(asset_ref_path(asset))
            if data:
                url, blob_id = await self._store_bytes(data, "image/png")
                asset = replace(asset, ref_image_url=url, ref_image_blob_id=blob_id)
            new_assets.append(asset)
        self._commit_assets(list(self._assets) + new_assets)
        view = [self.get_asset(a.asset_id) for a in archive.assets]

        scenes = []
        for scene in archive.scenes:
            changes = {}
            for archive_path, mime, url_key, blob_key in (
                (image_path(scene.scene_id), "image/png", "image_url", "image_blob_id"),
                (video_path(scene.scene_id), "video/mp4", "video_url", "video_blob_id"),
                (narration_path(scene.scene_id), "audio/wav", "narration_audio_url", "narration_blob_id"),
            ):
                data = archive.media.get(archive_path)
                if data:
                    changes[url_key], changes[blob_key] = await self._store_bytes(data, mime)
            scenes.append(scene.copy(**changes))

        index = max((u.index for u in self._units), default=-1) + 1
        unit = Unit(
            unit_id=f"unit_{uuid.uuid4().hex[:8]}",
            index=index,
            text=archive.text,
            status=archive.infer_status(),
            assets=[a for a in view if a is not None],
            scenes=scenes,
            title=f"Part {index + 1}",
        )
        logger.info(f"Imported unit from {path} as part {index + 1} ({unit.status.value})")
        self._commit_units(list(self._units) + [unit])
        return unit
