"""Unit tests for StoryboardStudio on the mock backend"""

import json
import zipfile

import pytest

from core.models.storyboard import Asset, AssetCategory, UnitStatus
from core.state_machine import InvalidTransitionError
from core.storage import BlobStore
from core.studio import SESSION_KEY, EmptyScriptError, StoryboardStudio
from tests.mocks.fixtures import PNG_DATA_URL, make_asset

STORY = "The hero walked into the old town at dusk."


async def scripted(studio, text=STORY) -> str:
    """Load text and run extract + script on the first unit"""
    unit = studio.load_text(text, "story.txt")[0]
    await studio.extract(unit.unit_id)
    await studio.script(unit.unit_id)
    return unit.unit_id


class TestLoadText:

    def test_splits_into_chunks(self, studio):
        units = studio.load_text("x" * 12000, "long.txt")

        assert [len(u.text) for u in units] == [5000, 5000, 2000]
        assert [u.index for u in units] == [0, 1, 2]
        assert units[2].title == "Part 3"
        assert all(u.status == UnitStatus.IDLE for u in units)
        assert studio.active_unit_id == units[0].unit_id
        assert studio.filename == "long.txt"

    def test_empty_text(self, studio):
        assert studio.load_text("   \n") == []
        assert studio.active_unit_id is None

    def test_new_text_starts_a_new_project(self, studio):
        studio.add_asset(make_asset())
        studio.load_text(STORY)
        assert studio.assets == []


class TestExtract:

    @pytest.mark.asyncio
    async def test_extract(self, studio):
        unit = studio.load_text(STORY)[0]

        updated = await studio.extract(unit.unit_id)

        assert updated.status == UnitStatus.EXTRACTED
        assert [a.asset_id for a in updated.assets] == ["asset_hero", "asset_town"]
        assert [a.asset_id for a in studio.assets] == ["asset_hero", "asset_town"]

    @pytest.mark.asyncio
    async def test_known_assets_keep_global_version(self, studio):
        first, second = studio.load_text("x" * 5100)[:2]
        await studio.extract(first.unit_id)
        studio.update_asset("asset_hero", description="Edited by hand")

        await studio.extract(second.unit_id)

        assert len(studio.assets) == 2
        assert studio.get_unit(second.unit_id).assets[0].description == "Edited by hand"

    @pytest.mark.asyncio
    async def test_visual_dna_updates_style(self, studio):
        studio.style.work.selected = "Spirited Away"
        unit = studio.load_text(STORY)[0]

        await studio.extract(unit.unit_id)

        assert studio.style.visual_tags == "muted earth tones, soft film grain, lantern light"

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self, studio, monkeypatch):
        unit = studio.load_text(STORY)[0]

        async def boom(*args, **kwargs):
            raise RuntimeError("extractor down")
        monkeypatch.setattr(studio.extractor, "extract", boom)

        with pytest.raises(RuntimeError, match="extractor down"):
            await studio.extract(unit.unit_id)
        assert studio.get_unit(unit.unit_id).status == UnitStatus.IDLE
        assert unit.unit_id not in studio.guards["extract"]

    @pytest.mark.asyncio
    async def test_not_allowed_after_scripting(self, studio):
        unit_id = await scripted(studio)
        with pytest.raises(InvalidTransitionError):
            await studio.extract(unit_id)

    @pytest.mark.asyncio
    async def test_second_invocation_is_refused(self, studio, mock_provider):
        unit = studio.load_text(STORY)[0]
        studio.guards["extract"].try_acquire(unit.unit_id)

        assert await studio.extract(unit.unit_id) is None
        assert mock_provider.calls == []


class TestScript:

    @pytest.mark.asyncio
    async def test_script(self, studio):
        unit_id = await scripted(studio)

        unit = studio.get_unit(unit_id)
        assert unit.status == UnitStatus.SCRIPTED
        assert [s.scene_id for s in unit.scenes] == ["scene_1", "scene_2", "scene_3"]

    @pytest.mark.asyncio
    async def test_requires_extraction(self, studio):
        unit = studio.load_text(STORY)[0]
        with pytest.raises(InvalidTransitionError):
            await studio.script(unit.unit_id)

    @pytest.mark.asyncio
    async def test_refuses_unit_with_scenes(self, studio):
        unit_id = await scripted(studio)
        with pytest.raises(InvalidTransitionError, match="already has scenes"):
            await studio.script(unit_id)

    @pytest.mark.asyncio
    async def test_empty_script_rolls_back(self, studio, mock_provider):
        mock_provider.scene_count = 0
        unit = studio.load_text(STORY)[0]
        await studio.extract(unit.unit_id)

        with pytest.raises(EmptyScriptError):
            await studio.script(unit.unit_id)
        assert studio.get_unit(unit.unit_id).status == UnitStatus.EXTRACTED


class TestShoot:

    @pytest.mark.asyncio
    async def test_shoot_completes_unit(self, studio, mock_provider):
        unit_id = await scripted(studio)

        report = await studio.shoot(unit_id)

        unit = studio.get_unit(unit_id)
        assert unit.status == UnitStatus.COMPLETED
        assert len(report.succeeded) == 3
        assert all(s.image_url.startswith("data:image/png;base64,") for s in unit.scenes)
        assert len(mock_provider.calls_of("image")) == 3

    @pytest.mark.asyncio
    async def test_only_missing_images_are_generated(self, studio, mock_provider):
        unit_id = await scripted(studio)
        studio.update_scene(unit_id, "scene_2", image_url=PNG_DATA_URL)

        await studio.shoot(unit_id)

        assert len(mock_provider.calls_of("image")) == 2
        assert studio.get_unit(unit_id).status == UnitStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_scene_keeps_unit_shooting(self, studio, monkeypatch):
        unit_id = await scripted(studio)
        original = studio.image_generator.generate_scene_image

        async def flaky(scene, assets=(), style=None):
            if scene.scene_id == "scene_2":
                raise RuntimeError("refused")
            return await original(scene, assets, style)
        monkeypatch.setattr(studio.image_generator, "generate_scene_image", flaky)

        report = await studio.shoot(unit_id)

        assert [o.target_id for o in report.failed] == ["scene_2"]
        unit = studio.get_unit(unit_id)
        assert unit.status == UnitStatus.SHOOTING
        assert [s.has_image for s in unit.scenes] == [True, False, True]

        monkeypatch.setattr(studio.image_generator, "generate_scene_image", original)
        await studio.shoot(unit_id)
        assert studio.get_unit(unit_id).status == UnitStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unit_without_scenes(self, studio):
        unit = studio.load_text(STORY)[0]
        await studio.extract(unit.unit_id)
        with pytest.raises(InvalidTransitionError, match="no scenes"):
            await studio.shoot(unit.unit_id)

    @pytest.mark.asyncio
    async def test_second_invocation_is_refused(self, studio):
        unit_id = await scripted(studio)
        studio.guards["shoot"].try_acquire(unit_id)
        assert await studio.shoot(unit_id) is None


class TestMedia:

    @pytest.mark.asyncio
    async def test_asset_images(self, studio, mock_provider):
        unit = studio.load_text(STORY)[0]
        await studio.extract(unit.unit_id)

        report = await studio.generate_asset_images(unit.unit_id)

        assert len(report.succeeded) == 2
        assert all(a.has_image and a.prompt for a in studio.assets)
        assert all(a.has_image for a in studio.get_unit(unit.unit_id).assets)

        again = await studio.generate_asset_images(unit.unit_id)
        assert again.nothing_to_do
        assert len(mock_provider.calls_of("image")) == 2

    @pytest.mark.asyncio
    async def test_variant_uses_parent_image(self, studio, mock_provider):
        studio.add_asset(make_asset(ref_image_url=PNG_DATA_URL))
        studio.add_asset(make_asset("asset_hero_old", "Old Hero", "Grey beard", parent_id="asset_hero"))

        await studio.generate_asset_images()

        prompt = mock_provider.calls_of("image")[0]["prompt"]
        assert "primary reference" in prompt

    @pytest.mark.asyncio
    async def test_make_film(self, studio, mock_provider):
        unit_id = await scripted(studio)
        await studio.shoot(unit_id)

        report = await studio.make_film(unit_id)

        assert len(report.succeeded) == 3
        unit = studio.get_unit(unit_id)
        assert all(s.video_url.startswith("https://mock-cdn.example.com/videos/") for s in unit.scenes)
        assert all(c["has_image"] for c in mock_provider.calls_of("video"))

    @pytest.mark.asyncio
    async def test_make_film_skips_scenes_without_image(self, studio, mock_provider):
        unit_id = await scripted(studio)

        report = await studio.make_film(unit_id)

        assert report.nothing_to_do
        assert mock_provider.calls_of("video") == []

    @pytest.mark.asyncio
    async def test_narration(self, studio, mock_provider):
        unit_id = await scripted(studio)

        report = await studio.generate_narration(unit_id)

        assert len(report.succeeded) == 3
        unit = studio.get_unit(unit_id)
        assert all(s.narration_audio_url.startswith("data:audio/wav;base64,") for s in unit.scenes)
        assert mock_provider.calls_of("speech")[0]["voice"] == "nova"


class TestEdits:

    @pytest.mark.asyncio
    async def test_duplicate_undo_redo(self, studio):
        unit_id = await scripted(studio)

        copy = studio.duplicate_scene(unit_id, "scene_1")

        assert copy.scene_id == "scene_1_copy"
        ids = [s.scene_id for s in studio.get_unit(unit_id).scenes]
        assert ids == ["scene_1", "scene_1_copy", "scene_2", "scene_3"]

        assert studio.undo() is True
        assert [s.scene_id for s in studio.get_unit(unit_id).scenes] == ["scene_1", "scene_2", "scene_3"]

        assert studio.redo() is True
        assert [s.scene_id for s in studio.get_unit(unit_id).scenes] == ids
        assert studio.redo() is False

    @pytest.mark.asyncio
    async def test_edit_clears_redo(self, studio):
        unit_id = await scripted(studio)
        studio.duplicate_scene(unit_id, "scene_1")
        studio.undo()

        studio.update_scene(unit_id, "scene_2", narration="Rewritten")

        assert studio.redo() is False
        assert studio.get_unit(unit_id).find_scene("scene_2").narration == "Rewritten"

    @pytest.mark.asyncio
    async def test_undo_after_duplicate_was_deleted(self, studio):
        unit_id = await scripted(studio)
        copy = studio.duplicate_scene(unit_id, "scene_1")
        studio.delete_scene(unit_id, copy.scene_id)

        assert studio.undo() is False
        assert studio.redo() is False
        assert [s.scene_id for s in studio.get_unit(unit_id).scenes] == ["scene_1", "scene_2", "scene_3"]

    @pytest.mark.asyncio
    async def test_duplicate_unknown_scene(self, studio):
        unit_id = await scripted(studio)
        assert studio.duplicate_scene(unit_id, "nope") is None
        assert studio.undo() is False

    @pytest.mark.asyncio
    async def test_edits_after_shoot_reopen_completion(self, studio):
        unit_id = await scripted(studio)
        studio.update_scene(unit_id, "scene_1", image_url=PNG_DATA_URL)
        studio.delete_scene(unit_id, "scene_2")
        studio.delete_scene(unit_id, "scene_3")
        await studio.shoot(unit_id)
        assert studio.get_unit(unit_id).status == UnitStatus.COMPLETED

        studio.duplicate_scene(unit_id, "scene_1")
        studio.update_scene(unit_id, "scene_1_copy", image_url=None)

        assert studio.get_unit(unit_id).status == UnitStatus.SHOOTING

    def test_delete_unit(self, studio):
        units = studio.load_text("x" * 5100)
        studio.delete_unit(units[0].unit_id)

        assert [u.unit_id for u in studio.units] == [units[1].unit_id]
        assert studio.active_unit_id is None


class TestAssetViews:

    def test_add_attaches_to_active_unit(self, studio):
        unit = studio.load_text(STORY)[0]

        studio.add_asset(make_asset("asset_cat", "Cat", category=AssetCategory.CHARACTER))

        assert studio.get_asset("asset_cat") is not None
        assert [a.asset_id for a in studio.get_unit(unit.unit_id).assets] == ["asset_cat"]

    def test_add_existing_id_updates(self, studio):
        studio.load_text(STORY)
        studio.add_asset(make_asset())
        studio.add_asset(make_asset(description="Older now"))

        assert len(studio.assets) == 1
        assert studio.get_asset("asset_hero").description == "Older now"

    def test_delete_with_focus_keeps_global(self, studio):
        unit = studio.load_text(STORY)[0]
        studio.add_asset(make_asset())

        studio.delete_asset("asset_hero", unit.unit_id)

        assert studio.get_unit(unit.unit_id).assets == []
        assert studio.get_asset("asset_hero") is not None

    def test_delete_without_focus_is_global(self, studio):
        unit = studio.load_text(STORY)[0]
        studio.add_asset(make_asset())
        studio.set_active(None)

        studio.delete_asset("asset_hero")

        assert studio.get_asset("asset_hero") is None
        assert studio.get_unit(unit.unit_id).assets == []

    @pytest.mark.asyncio
    async def test_borrowed_assets_are_displayed(self, studio):
        unit_id = await scripted(studio)
        studio.add_asset(Asset(asset_id="asset_cat", name="Cat"), unit_id="elsewhere")
        studio.update_scene(unit_id, "scene_1", asset_ids=["asset_hero", "asset_cat", "scene_img_scene_2"])

        shown = [a.asset_id for a in studio.displayed_assets(unit_id)]

        assert shown == ["asset_hero", "asset_town", "asset_cat"]


class TestPersistence:

    @pytest.mark.asyncio
    async def test_save_and_restore_with_blobs(self, blob_studio, router, settings, state_store, blob_store):
        unit_id = await scripted(blob_studio)
        await blob_studio.shoot(unit_id)
        await blob_studio.save()

        scene = blob_studio.get_unit(unit_id).scenes[0]
        assert scene.image_url is None and scene.image_blob_id

        restored = StoryboardStudio(router, settings, state_store=state_store, blob_store=blob_store)
        assert await restored.restore() is True

        unit = restored.get_unit(unit_id)
        assert unit.status == UnitStatus.COMPLETED
        assert unit.scenes[0].image_blob_id == scene.image_blob_id
        assert (await restored.resolve_media(scene.image_blob_id)).startswith("file://")
        assert restored.filename == "story.txt"

    @pytest.mark.asyncio
    async def test_inline_media_is_saved_as_data_url(self, studio, state_store):
        unit_id = await scripted(studio)
        await studio.shoot(unit_id)
        await studio.save()

        saved = await state_store.load(SESSION_KEY)
        assert saved["units"][0]["scenes"][0]["image_url"].startswith("data:image/png")

    @pytest.mark.asyncio
    async def test_clear(self, studio):
        studio.load_text(STORY)
        await studio.save()

        await studio.clear()

        assert studio.units == []
        assert await studio.restore() is False

    @pytest.mark.asyncio
    async def test_autosave(self, router, settings, state_store):
        studio = StoryboardStudio(router, settings, state_store=state_store, autosave=True)
        studio.load_text(STORY)

        await studio.aclose()

        saved = await state_store.load(SESSION_KEY)
        assert len(saved["units"]) == 1

    def test_listeners(self, studio):
        seen = []
        remove = studio.add_listener(lambda s: seen.append(len(s.units)))

        studio.load_text(STORY)
        remove()
        studio.load_text(STORY + STORY)

        assert seen == [1]


class TestImportExport:

    @pytest.mark.asyncio
    async def test_round_trip_through_archive(self, blob_studio, router, settings, state_store, tmp_path):
        unit_id = await scripted(blob_studio)
        await blob_studio.generate_asset_images(unit_id)
        await blob_studio.shoot(unit_id)

        path = await blob_studio.export_unit(unit_id, tmp_path / "out" / "unit.zip")

        with zipfile.ZipFile(path) as archive:
            names = set(archive.namelist())
            document = json.loads(archive.read("data.json"))
        assert {"assets.txt", "data.json", "images/scene_1.png",
                "asset_refs/asset_hero_Hero.png"} <= names
        assert "image_blob_id" not in document["scenes"][0]

        other = StoryboardStudio(router, settings, state_store=state_store,
                                 blob_store=BlobStore(tmp_path / "other"))
        other.load_text("Prologue text.")
        unit = await other.import_unit(path)

        assert unit.index == 1
        assert unit.unit_id != unit_id
        assert unit.status == UnitStatus.SHOOTING
        assert all(s.image_blob_id for s in unit.scenes)
        assert other.get_asset("asset_hero").ref_image_blob_id
        assert len(other.units) == 2
