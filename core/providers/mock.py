"""Mock generation provider for running the pipeline without API keys"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from .base import (
    Content,
    ContentOptions,
    ContentResponse,
    GenerationProvider,
    InlineMedia,
    OperationStatus,
    ProviderConfig,
    ProviderType,
    VideoOperation,
    VideoOptions,
)
from .parsing import collect_text

# 1x1 PNG
MOCK_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

MOCK_ASSETS = [
    {"id": "asset_hero", "name": "Hero", "type": "character",
     "description": "A young traveler in a weathered grey cloak"},
    {"id": "asset_town", "name": "Old Town", "type": "location",
     "description": "Narrow cobbled streets under paper lanterns"},
]


def _mock_scenes(count: int = 3) -> List[Dict[str, Any]]:
    return [
        {
            "id": f"scene_{i + 1}",
            "narration": f"Narration for scene {i + 1}.",
            "visual_desc": f"The hero walks through the old town, shot {i + 1}.",
            "np_prompt": f"Hero in Old Town, cinematic still {i + 1}",
            "video_camera": "slow dolly in",
            "assetIds": ["asset_hero", "asset_town"],
            "audio_dialogue": [{"speaker": "Hero", "text": "We are close."}] if i == 0 else [],
        }
        for i in range(count)
    ]


class MockGenerationProvider(GenerationProvider):
    """
    Deterministic provider that simulates every capability.

    Used for:
    - Testing without API keys
    - `storyboard-studio run --mock` dry runs
    - Counting calls made by the orchestration layers
    """

    provider_type = ProviderType.MOCK

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        latency: float = 0.0,
        polls_until_done: int = 1,
        scene_count: int = 3,
    ):
        if config is None:
            config = ProviderConfig(provider_type=ProviderType.MOCK)
        super().__init__(config)
        self.latency = latency
        self.polls_until_done = polls_until_done
        self.scene_count = scene_count
        self.calls: List[Dict[str, Any]] = []
        self.jobs: Dict[str, int] = {}
        self.generation_count = 0

    async def _simulate(self, kind: str, **details) -> None:
        self.calls.append({"kind": kind, **details})
        if self.latency:
            await asyncio.sleep(self.latency)

    def calls_of(self, kind: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == kind]

    async def generate_content(
        self,
        model: str,
        content: Content,
        options: Optional[ContentOptions] = None,
    ) -> ContentResponse:
        options = options or ContentOptions()
        prompt = content if isinstance(content, str) else collect_text(
            [{"text": p.text} for p in content if p.text]
        )

        if options.wants_image:
            await self._simulate("image", model=model, prompt=prompt)
            return ContentResponse(inline_media=InlineMedia("image/png", MOCK_PNG_BASE64))

        await self._simulate("text", model=model, prompt=prompt)
        properties = (options.response_schema or {}).get("properties", {})
        if "visual_dna" in properties:
            payload: Any = {"visual_dna": "muted earth tones, soft film grain, lantern light"}
        elif "assets" in properties:
            payload = {"assets": MOCK_ASSETS}
        elif "scenes" in properties:
            payload = {"scenes": _mock_scenes(self.scene_count)}
        elif options.json_response:
            payload = {}
        else:
            return ContentResponse(text=f"Mock response from {model}")
        return ContentResponse(text=json.dumps(payload))

    async def generate_videos(
        self,
        model: str,
        prompt: str,
        image: Optional[InlineMedia] = None,
        options: Optional[VideoOptions] = None,
    ) -> VideoOperation:
        await self._simulate("video", model=model, prompt=prompt, has_image=image is not None)
        self.generation_count += 1
        job_id = f"mock_job_{self.generation_count}"
        self.jobs[job_id] = 0
        return VideoOperation(
            operation_id=job_id,
            status=OperationStatus.SUBMITTED,
            provider=self.provider_type,
            model=model,
        )

    async def get_operation(self, operation: VideoOperation) -> VideoOperation:
        if operation.done:
            return operation
        await self._simulate("poll", operation_id=operation.operation_id)
        if operation.operation_id not in self.jobs:
            return VideoOperation(
                operation_id=operation.operation_id,
                status=OperationStatus.FAILED,
                error=f"Job {operation.operation_id} not found",
                provider=self.provider_type,
            )

        self.jobs[operation.operation_id] += 1
        if self.jobs[operation.operation_id] < self.polls_until_done:
            return VideoOperation(
                operation_id=operation.operation_id,
                status=OperationStatus.IN_PROGRESS,
                provider=self.provider_type,
                model=operation.model,
            )
        return VideoOperation(
            operation_id=operation.operation_id,
            status=OperationStatus.SUCCEEDED,
            result_uri=f"https://mock-cdn.example.com/videos/{operation.operation_id}.mp4",
            provider=self.provider_type,
            model=operation.model,
        )

    async def speech(self, text: str, voice: str, model: Optional[str] = None) -> bytes:
        await self._simulate("speech", text=text, voice=voice)
        # 0.1s of 24kHz 16-bit silence
        return b"\x00\x00" * 2400

    def reset(self):
        """Reset mock state (useful for testing)"""
        self.calls.clear()
        self.jobs.clear()
        self.generation_count = 0
