"""
Base agent class for Storyboard Studio

Agents turn studio objects into generation requests and parse the replies.
They talk to backends only through the ModelRouter and wrap every content
call in retry_with_backoff.
"""

import json
import logging
import re
from typing import Any, Awaitable, Callable, Optional, TypeVar

from core.config import Settings
from core.models.storyboard import GlobalStyle
from core.model_router import ModelRole, ModelRouter
from core.providers import Content, ContentOptions, ContentResponse
from core.retry import retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")

DNA_SCHEMA = {"type": "object", "properties": {"visual_dna": {"type": "string"}}}


def dna_instruction(work_style: str, texture_style: str, language: str) -> str:
    return (
        "You are a visual development lead. Summarize the visual DNA (palette, lighting, "
        "lens, texture) implied by these references as one dense line.\n"
        f"Reference work: {work_style or 'none'}\nTexture: {texture_style or 'none'}\n"
        f"Answer in {language}. Return JSON: {{\"visual_dna\": string}}"
    )


class JSONExtractor:
    """Utility to extract JSON from model responses"""

    @staticmethod
    def extract(response: str) -> Any:
        """
        Extract JSON from a response, handling code fences and chatter.

        Raises:
            ValueError: If no valid JSON found
        """
        if not response or not response.strip():
            raise ValueError("Empty response")
        response = response.strip()

        # Markdown code blocks first
        fence = re.search(r"```(?:json)?\s*(.*?)```", response, re.DOTALL | re.IGNORECASE)
        if fence:
            try:
                return json.loads(fence.group(1).strip())
            except json.JSONDecodeError:
                pass

        # Outermost object or array, whichever opens first
        first_obj, first_arr = response.find("{"), response.find("[")
        if first_obj != -1 and (first_arr == -1 or first_obj < first_arr):
            start, end = first_obj, response.rfind("}")
        else:
            start, end = first_arr, response.rfind("]")
        if start != -1 and end > start:
            try:
                return json.loads(response[start:end + 1])
            except json.JSONDecodeError:
                pass

        cleaned = response.replace("```json", "").replace("```", "").strip()
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ValueError(f"No valid JSON found: {e}") from e

    @classmethod
    def safe_parse(cls, response: Optional[str], fallback: T) -> Any:
        """extract() that logs and returns fallback instead of raising"""
        try:
            return cls.extract(response or "")
        except ValueError:
            logger.warning(f"JSON parse failed, raw text: {(response or '')[:200]}")
            return fallback


class StudioAgent:
    """
    Base class for all Storyboard Studio agents.

    Provides:
    - Router and settings access
    - Retried content calls
    - Shared text helpers
    """

    def __init__(self, router: ModelRouter, settings: Optional[Settings] = None):
        self.router = router
        self.settings = settings or Settings()

    async def _with_retry(
        self,
        call: Callable[[], Awaitable[T]],
        label: str,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> T:
        return await retry_with_backoff(
            call,
            max_retries=self.settings.content_max_retries if max_retries is None else max_retries,
            initial_delay=self.settings.content_initial_delay,
            timeout=timeout or self.settings.content_timeout,
            label=label,
        )

    async def _generate(
        self,
        role: ModelRole,
        content: Content,
        options: Optional[ContentOptions] = None,
        label: str = "generate",
        max_retries: Optional[int] = None,
    ) -> ContentResponse:
        return await self._with_retry(
            lambda: self.router.generate_content(role, content, options),
            label=label,
            max_retries=max_retries,
        )

    async def _query_json(
        self,
        content: Content,
        system_instruction: str,
        schema: dict,
        fallback: Any,
        label: str,
    ) -> Any:
        """Ask the text model for JSON matching schema; fallback on bad JSON"""
        response = await self._generate(
            ModelRole.TEXT,
            content,
            ContentOptions(
                json_response=True,
                response_schema=schema,
                system_instruction=system_instruction,
            ),
            label=label,
        )
        return JSONExtractor.safe_parse(response.text, fallback)

    async def _analyze_visual_dna(self, style: GlobalStyle, language: str) -> str:
        """
        Summarize the style references as a visual DNA line.

        Returns "" when no reference is selected or the call fails; the
        caller keeps the current style in that case.
        """
        work, texture = style.work.effective or "", style.texture.effective or ""
        if not (work or texture):
            return ""
        try:
            data = await self._query_json(
                "Analyze the visual style based on the provided style and texture references.",
                dna_instruction(work, texture, language),
                DNA_SCHEMA,
                fallback={},
                label="visual DNA",
            )
        except Exception as e:
            logger.warning(f"Visual DNA analysis failed, keeping current style: {e}")
            return ""
        if isinstance(data, dict):
            return str(data.get("visual_dna") or "")
        return ""

    def _truncate_text(self, text: str, max_length: int = 100) -> str:
        """Truncate text to max length with ellipsis"""
        if len(text) <= max_length:
            return text
        return text[:max_length - 3] + "..."
