"""Unit tests for the automation loop"""

import pytest

from core.models.storyboard import UnitStatus
from core.retry import GenerationError
from workflows.automation import AutomationLoop


class TestAutomationRun:

    @pytest.mark.asyncio
    async def test_drives_every_unit_to_completion(self, studio, mock_provider):
        units = studio.load_text("x" * 5100, "story.txt")
        loop = AutomationLoop(studio)

        await loop.run()

        assert loop.error is None
        assert loop.stop_reason == "all units completed"
        assert not loop.enabled
        assert [studio.get_unit(u.unit_id).status for u in units] == [UnitStatus.COMPLETED] * 2
        # 2 shared asset sheets + 3 frames per unit
        assert len(mock_provider.calls_of("image")) == 8
        assert all(a.has_image for a in studio.assets)

    @pytest.mark.asyncio
    async def test_films_and_narration_after_completion(self, studio):
        unit = studio.load_text("The hero walked into the old town.")[0]
        loop = AutomationLoop(studio, make_films=True, narrate=True)

        await loop.run()

        scenes = studio.get_unit(unit.unit_id).scenes
        assert scenes and all(s.has_video and s.has_narration_audio for s in scenes)

    @pytest.mark.asyncio
    async def test_extraction_failure_stops_automation(self, studio, monkeypatch):
        unit = studio.load_text("The hero walked.")[0]

        async def boom(*args, **kwargs):
            raise RuntimeError("extractor down")
        monkeypatch.setattr(studio.extractor, "extract", boom)
        loop = AutomationLoop(studio)

        await loop.run()

        assert isinstance(loop.error, RuntimeError)
        assert loop.stop_reason == "extraction failed: extractor down"
        assert studio.get_unit(unit.unit_id).status == UnitStatus.IDLE

    @pytest.mark.asyncio
    async def test_scripting_failure_stops_automation(self, studio, mock_provider):
        mock_provider.scene_count = 0
        unit = studio.load_text("The hero walked.")[0]
        loop = AutomationLoop(studio)

        await loop.run()

        assert loop.stop_reason.startswith("scripting failed")
        assert studio.get_unit(unit.unit_id).status == UnitStatus.EXTRACTED
        assert not loop.enabled

    @pytest.mark.asyncio
    async def test_nothing_to_automate(self, studio):
        loop = AutomationLoop(studio)

        await loop.run()

        assert loop.finished.is_set()
        assert loop.stop_reason is None


class TestConvergence:

    @pytest.mark.asyncio
    async def test_failed_asset_images_block_shoot(self, studio, mock_provider, monkeypatch):
        unit = studio.load_text("The hero walked into the old town.")[0]

        async def refuse(*args, **kwargs):
            raise RuntimeError("sheet refused")
        monkeypatch.setattr(studio.image_generator, "generate_asset_image", refuse)
        loop = AutomationLoop(studio)

        await loop.run()

        assert studio.get_unit(unit.unit_id).status == UnitStatus.SCRIPTED
        assert not any(a.has_image for a in studio.assets)
        assert mock_provider.calls_of("image") == []
        assert isinstance(loop.error, GenerationError)
        assert loop.stop_reason == "asset images failed: sheet refused"
        assert not loop.enabled

    @pytest.mark.asyncio
    async def test_shoot_is_triggered_once(self, studio, monkeypatch):
        unit_id = studio.load_text("The hero walked into the old town.")[0].unit_id
        await studio.extract(unit_id)
        await studio.script(unit_id)
        await studio.generate_asset_images(unit_id)
        loop = AutomationLoop(studio, shoot_trigger_reset=60)
        loop.enabled = True
        loop.active_unit_id = unit_id
        spawned = []
        monkeypatch.setattr(loop, "_spawn", lambda key, factory: spawned.append(key))

        loop.evaluate()
        loop.evaluate()

        assert spawned == [("shoot", unit_id)]

    @pytest.mark.asyncio
    async def test_no_shoot_while_asset_image_missing(self, studio, monkeypatch):
        unit_id = studio.load_text("The hero walked into the old town.")[0].unit_id
        await studio.extract(unit_id)
        await studio.script(unit_id)
        loop = AutomationLoop(studio)
        loop.enabled = True
        loop.active_unit_id = unit_id
        spawned = []
        monkeypatch.setattr(loop, "_spawn", lambda key, factory: spawned.append(key))

        loop.evaluate()

        assert spawned == [("assets", unit_id)]


class TestRestart:

    @pytest.mark.asyncio
    async def test_restart_after_cancelled_stop_resumes(self, studio):
        unit = studio.load_text("The hero walked into the old town.")[0]
        loop = AutomationLoop(studio)
        loop.start()
        loop.stop("paused", cancel_pending=True)
        await loop.wait_idle()

        await loop.run()

        assert loop.stop_reason == "all units completed"
        assert not loop.cancel_token.cancelled
        assert studio.get_unit(unit.unit_id).status == UnitStatus.COMPLETED


class TestLookAhead:

    def test_asset_batch_starts_next_extraction(self, studio, monkeypatch):
        first, second = studio.load_text("x" * 5100)
        loop = AutomationLoop(studio)
        loop.enabled = True
        loop.active_unit_id = first.unit_id
        started = []
        monkeypatch.setattr(loop, "_start_extract", started.append)

        loop.on_asset_batch_complete(first.unit_id)

        # look-ahead first, then the active unit self-heals from idle
        assert started == [second.unit_id, first.unit_id]

    def test_no_look_ahead_when_disabled(self, studio, monkeypatch):
        first, _ = studio.load_text("x" * 5100)
        loop = AutomationLoop(studio)
        loop.active_unit_id = first.unit_id
        started = []
        monkeypatch.setattr(loop, "_start_extract", started.append)

        loop.on_asset_batch_complete(first.unit_id)

        assert started == []
        assert first.unit_id in loop._asset_batch_done

    def test_stop_is_idempotent(self, studio):
        loop = AutomationLoop(studio)
        loop.stop("manual")
        loop.stop("again", cancel_pending=True)

        assert loop.finished.is_set()
        assert loop.cancel_token.cancelled
