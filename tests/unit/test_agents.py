"""Unit tests for the studio agents on the mock backend"""

import io
import wave

import pytest

from agents.asset_extractor import AssetExtractorAgent
from agents.audio_generator import AudioGeneratorAgent, normalize_voice, pcm_to_wav
from agents.base import JSONExtractor
from agents.image_generator import (
    PERIOD_NEGATIVE,
    SCENE_NEGATIVE,
    ImageGeneratorAgent,
    ImageRefusalError,
    image_from_response,
    select_scene_assets,
)
from agents.script_writer import ScriptWriterAgent, inject_assets, style_prefix
from agents.video_generator import (
    VideoGeneratorAgent,
    build_video_prompt,
    match_assets_to_prompt,
)
from core.lro import OperationPoller
from core.model_router import ModelRouter
from core.models.storyboard import AssetCategory, DialogueLine, GlobalStyle, StyleSetting
from core.providers import ContentResponse, InlineMedia, ProviderHTTPError
from core.retry import MissingPrerequisiteError
from tests.mocks.fixtures import PNG_DATA_URL, SleepRecorder, make_asset, make_scene
from tests.mocks.scripted_provider import ScriptedProvider

MOCK_DNA = "muted earth tones, soft film grain, lantern light"


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def agent_router(provider, settings):
    return ModelRouter.single(provider, settings)


def styled(work="Spirited Away", **kwargs) -> GlobalStyle:
    return GlobalStyle(work=StyleSetting(selected=work), **kwargs)


class TestJSONExtractor:

    def test_fenced_block(self):
        assert JSONExtractor.extract('```json\n{"a": 1}\n```') == {"a": 1}

    def test_object_inside_chatter(self):
        assert JSONExtractor.extract('Sure! Here: {"a": [1, 2]} hope it helps') == {"a": [1, 2]}

    def test_top_level_array(self):
        assert JSONExtractor.extract('[{"a": 1}, {"b": 2}]') == [{"a": 1}, {"b": 2}]

    def test_no_json(self):
        with pytest.raises(ValueError):
            JSONExtractor.extract("no json here")
        with pytest.raises(ValueError):
            JSONExtractor.extract("   ")

    def test_safe_parse_fallback(self):
        assert JSONExtractor.safe_parse(None, {"assets": []}) == {"assets": []}


class TestAssetExtractor:

    @pytest.mark.asyncio
    async def test_extracts_assets_without_dna_when_no_style(self, agent_router, provider, settings):
        agent = AssetExtractorAgent(agent_router, settings)

        result = await agent.extract("The hero walked into the old town.")

        assert [a.asset_id for a in result.assets] == ["asset_hero", "asset_town"]
        assert result.assets[1].category == AssetCategory.LOCATION
        assert result.visual_dna == ""
        assert len(provider.calls_of("text")) == 1

    @pytest.mark.asyncio
    async def test_style_reference_adds_dna_call(self, agent_router, provider, settings):
        agent = AssetExtractorAgent(agent_router, settings)

        result = await agent.extract("text", style=styled())

        assert result.visual_dna == MOCK_DNA
        assert len(provider.calls_of("text")) == 2

    @pytest.mark.asyncio
    async def test_known_assets_are_listed_for_the_model(self, agent_router, provider, settings):
        agent = AssetExtractorAgent(agent_router, settings)
        await agent.extract("text", existing_assets=[make_asset("asset_cat", "Cat")])

        instruction = provider.requests[0]["options"].system_instruction
        assert "- asset_cat: Cat" in instruction

    @pytest.mark.asyncio
    async def test_normalizes_model_output(self, agent_router, provider, settings):
        provider.queue([
            {"id": "a1", "name": "Lantern", "type": "ITEM"},
            {"id": "x", "name": ""},
            {"id": "a1", "name": "Duplicate"},
            {"name": "No Id"},
            "junk",
        ])
        agent = AssetExtractorAgent(agent_router, settings)

        result = await agent.extract("text")

        assert len(result.assets) == 2
        assert result.assets[0].asset_id == "a1"
        assert result.assets[0].category == AssetCategory.ITEM
        assert result.assets[1].asset_id.startswith("asset_")
        assert result.assets[1].name == "No Id"

    @pytest.mark.asyncio
    async def test_asset_call_errors_propagate(self, agent_router, provider, settings):
        provider.queue(ValueError("backend exploded"))
        agent = AssetExtractorAgent(agent_router, settings)

        with pytest.raises(ValueError, match="backend exploded"):
            await agent.extract("text")

    @pytest.mark.asyncio
    async def test_dna_failure_is_tolerated(self, agent_router, provider, settings):
        provider.queue(ProviderHTTPError(400, "bad request"))
        agent = AssetExtractorAgent(agent_router, settings)

        result = await agent.extract("text", style=styled())

        assert result.visual_dna == ""
        assert len(result.assets) == 2


class TestScriptWriter:

    def test_inject_assets(self):
        hero = make_asset()
        town = make_asset("asset_town", "Old Town", "Narrow cobbled streets",
                          AssetCategory.LOCATION, visual_dna="wet stone")
        prompt = inject_assets("{{asset_hero}} walks into {ASSET_TOWN}", [hero, town])

        assert prompt == (
            "(Hero, A young traveler in a grey cloak) walks into "
            "(Old Town, Narrow cobbled streets, wet stone)"
        )

    def test_inject_assets_skips_dna_equal_to_global(self):
        town = make_asset("asset_town", "Old Town", "streets", visual_dna="wet stone")
        assert inject_assets("{{asset_town}}", [town], global_dna="wet stone") == "(Old Town, streets)"

    def test_style_prefix(self):
        assert style_prefix(GlobalStyle(), "anything") == ""
        assert style_prefix(styled(), "soft grain") == "(Style: Spirited Away, soft grain)"
        texture_only = GlobalStyle(texture=StyleSetting(custom="watercolor"))
        assert style_prefix(texture_only, "") == "(watercolor)"

    @pytest.mark.asyncio
    async def test_writes_scenes_with_style_prefix(self, agent_router, settings):
        agent = ScriptWriterAgent(agent_router, settings)

        result = await agent.write("The hero walked.", [make_asset()], styled())

        assert [s.scene_id for s in result.scenes] == ["scene_1", "scene_2", "scene_3"]
        assert result.visual_dna == MOCK_DNA
        assert result.scenes[0].np_prompt == (
            f"(Style: Spirited Away, {MOCK_DNA}), Hero in Old Town, cinematic still 1"
        )
        assert result.scenes[0].asset_ids == ["asset_hero", "asset_town"]
        assert result.scenes[0].audio_dialogue[0].text == "We are close."

    @pytest.mark.asyncio
    async def test_scene_ids_are_made_unique(self, agent_router, provider, settings):
        provider.queue({"scenes": [{"id": "s", "np_prompt": "a"}, {"id": "s"}, {"narration": "x"}, "junk"]})
        agent = ScriptWriterAgent(agent_router, settings)

        result = await agent.write("text")

        assert [s.scene_id for s in result.scenes] == ["s", "s_2", "scene_3"]

    @pytest.mark.asyncio
    async def test_previous_context_reaches_the_model(self, agent_router, provider, settings):
        agent = ScriptWriterAgent(agent_router, settings)
        await agent.write("text", previous_context="The gate closed behind them.")

        assert "Previous scene: The gate closed behind them." in provider.requests[0]["options"].system_instruction

    @pytest.mark.asyncio
    async def test_empty_text_makes_no_call(self, agent_router, provider, settings):
        result = await ScriptWriterAgent(agent_router, settings).write("   ")
        assert result.scenes == []
        assert provider.calls == []


class TestImageGenerator:

    def test_image_from_response(self):
        inline = ContentResponse(inline_media=InlineMedia("image/png", "AAAA"))
        assert image_from_response(inline) == "data:image/png;base64,AAAA"
        linked = ContentResponse(text="! ![img](https://cdn.test/a.png)")
        assert image_from_response(linked) == "https://cdn.test/a.png"

    def test_refusals(self):
        with pytest.raises(ImageRefusalError, match="Model Refusal: I can't draw that"):
            image_from_response(ContentResponse(text="I can't draw that."))
        with pytest.raises(ImageRefusalError, match="No image data returned"):
            image_from_response(ContentResponse(text=""))

    def test_select_scene_assets(self):
        hero = make_asset(ref_image_url=PNG_DATA_URL)
        town = make_asset("asset_town", "Old Town", ref_image_url=PNG_DATA_URL)
        bare = make_asset("asset_cat", "Cat")

        explicit = make_scene(asset_ids=["asset_hero", "asset_cat"])
        assert select_scene_assets(explicit, [hero, town, bare]) == [hero]

        by_name = make_scene(np_prompt="A cat sleeps in Old Town")
        assert select_scene_assets(by_name, [hero, town, bare]) == [town]

    @pytest.mark.asyncio
    async def test_scene_image_with_references(self, agent_router, provider, settings):
        hero = make_asset(ref_image_url=PNG_DATA_URL)
        town = make_asset("asset_town", "Old Town", category=AssetCategory.LOCATION,
                          ref_image_url="https://cdn.test/town.png")
        scene = make_scene(np_prompt="Hero in Old Town", asset_ids=["asset_hero", "asset_town"])
        agent = ImageGeneratorAgent(agent_router, settings)

        image = await agent.generate_scene_image(scene, [hero, town], GlobalStyle(aspect_ratio="9:16"))

        assert image.startswith("data:image/png;base64,")
        request = provider.requests[0]
        parts = request["content"]
        assert parts[0].image is not None
        assert parts[1].image_url == "https://cdn.test/town.png"
        assert parts[2].text.startswith(
            "STRICTLY FOLLOW REFERENCES. Reference Image 1 is Hero (character). "
            "Reference Image 2 is Old Town (location). Hero in Old Town."
        )
        assert parts[2].text.endswith(f"Exclude: {SCENE_NEGATIVE}")
        assert request["options"].aspect_ratio == "9:16"

    @pytest.mark.asyncio
    async def test_scene_image_without_assets(self, agent_router, provider, settings):
        hero = make_asset(ref_image_url=PNG_DATA_URL)
        scene = make_scene(np_prompt="Hero alone", asset_ids=["asset_hero"], use_assets=False)
        agent = ImageGeneratorAgent(agent_router, settings)

        await agent.generate_scene_image(scene, [hero], styled("wuxia epic"))

        parts = provider.requests[0]["content"]
        assert len(parts) == 1
        assert parts[0].text.startswith("Hero alone. Exclude:")
        assert PERIOD_NEGATIVE in parts[0].text

    @pytest.mark.asyncio
    async def test_refusal_is_not_retried(self, agent_router, provider, settings):
        provider.queue(ContentResponse(text="I cannot help with that."))
        agent = ImageGeneratorAgent(agent_router, settings)

        with pytest.raises(ImageRefusalError):
            await agent.generate_scene_image(make_scene(), [])
        assert len(provider.requests) == 1

    @pytest.mark.asyncio
    async def test_asset_image_with_parent_reference(self, agent_router, provider, settings):
        agent = ImageGeneratorAgent(agent_router, settings)
        variant = make_asset("asset_hero_old", "Old Hero", parent_id="asset_hero")

        result = await agent.generate_asset_image(variant, GlobalStyle(), reference_image=PNG_DATA_URL)

        parts = provider.requests[0]["content"]
        assert parts[0].image is not None
        assert parts[-1].text == result.prompt
        assert "character sheet of Old Hero" in result.prompt
        assert "primary reference" in result.prompt
        assert provider.requests[0]["options"].aspect_ratio == "16:9"


class TestVideoGenerator:

    def test_build_video_prompt(self):
        scene = make_scene(
            visual_desc="A gate", video_camera="slow pan", audio_bgm="drums",
            audio_dialogue=[DialogueLine("Hero", "We are close.")],
        )
        assert build_video_prompt(scene) == (
            "Cinematic Shot: A gate. Camera Movement: slow pan. Atmosphere: drums. "
            "Character Dialogue: We are close."
        )

    def test_explicit_video_prompt_is_truncated(self):
        scene = make_scene(video_prompt="x" * 1000)
        assert build_video_prompt(scene) == "x" * 800

    def test_asset_ranking(self):
        hero = make_asset(description="A young traveler", ref_image_url="https://cdn.test/hero.png")
        town = make_asset("asset_town", "Old Town", "Narrow cobbled streets", ref_image_url="https://cdn.test/town.png")
        lantern = make_asset("asset_lantern", "Lantern", "paper lantern", ref_image_url="https://cdn.test/l.png")
        bare = make_asset("asset_cat", "Cat", "The Hero crosses")

        ranked = match_assets_to_prompt(
            "The Hero crosses the cobbled bridge", [town, hero, lantern, bare], ["asset_lantern"]
        )

        assert ranked == [lantern, hero, town]

    def test_reference_images(self, agent_router, settings):
        agent = VideoGeneratorAgent(agent_router, settings)
        hero = make_asset(ref_image_url="https://cdn.test/hero.png")
        scene = make_scene(visual_desc="Hero runs", asset_ids=["asset_hero"])

        assert agent.reference_images(scene, PNG_DATA_URL, [hero]) == ["https://cdn.test/hero.png", PNG_DATA_URL]
        scene.use_assets = False
        assert agent.reference_images(scene, PNG_DATA_URL, [hero]) == [PNG_DATA_URL]

    @pytest.mark.asyncio
    async def test_missing_frame_is_fatal(self, agent_router, settings):
        agent = VideoGeneratorAgent(agent_router, settings)
        with pytest.raises(MissingPrerequisiteError):
            await agent.generate(make_scene(), None)

    @pytest.mark.asyncio
    async def test_generates_video_through_poller(self, agent_router, provider, settings):
        sleep = SleepRecorder()
        poller = OperationPoller(agent_router.get_operation, poll_interval=5.0, sleep=sleep)
        agent = VideoGeneratorAgent(agent_router, settings, poller=poller)

        uri = await agent.generate(make_scene(visual_desc="Hero runs"), PNG_DATA_URL)
        await agent.generate(make_scene("scene_2", visual_desc="主角走进古城"), PNG_DATA_URL)

        assert uri == "https://mock-cdn.example.com/videos/mock_job_1.mp4"
        assert provider.calls_of("video")[0]["has_image"] is True
        assert provider.video_options[0].enhance_prompt is False
        assert provider.video_options[1].enhance_prompt is True
        assert sleep.delays == [5.0, 5.0]


class TestAudioGenerator:

    def test_normalize_voice(self):
        assert normalize_voice("Kore") == "nova"
        assert normalize_voice("NOVA") == "nova"
        assert normalize_voice(None) == "alloy"
        assert normalize_voice("robot") == "alloy"

    def test_pcm_to_wav(self):
        wav_bytes = pcm_to_wav(b"\x00\x00" * 10)
        with wave.open(io.BytesIO(wav_bytes)) as wav:
            assert wav.getnchannels() == 1
            assert wav.getsampwidth() == 2
            assert wav.getframerate() == 24000
            assert wav.getnframes() == 10

    @pytest.mark.asyncio
    async def test_narrate_wraps_pcm(self, agent_router, provider, settings):
        audio = await AudioGeneratorAgent(agent_router, settings).narrate("Hello there", "Kore")

        assert audio[:4] == b"RIFF"
        assert provider.calls_of("speech")[0]["voice"] == "nova"

    @pytest.mark.asyncio
    async def test_wav_from_backend_passes_through(self, agent_router, provider, settings):
        provider.speech_reply = b"RIFF\x24\x00\x00\x00WAVEfmt "
        audio = await AudioGeneratorAgent(agent_router, settings).narrate("Hello")
        assert audio == b"RIFF\x24\x00\x00\x00WAVEfmt "

    @pytest.mark.asyncio
    async def test_empty_text(self, agent_router, provider, settings):
        assert await AudioGeneratorAgent(agent_router, settings).narrate("  ") == b""
        assert provider.calls == []


def test_agent_registry_entries_resolve():
    import importlib

    import agents

    for entry in agents.get_all_agents():
        module = importlib.import_module(entry["module"])
        assert getattr(agents, entry["class"]) is getattr(module, entry["class"])
