"""
Polo Provider

Chat-completions gateway for text and image models plus a video job API.

Video call shapes:
- "veo3-*" models (veo3-fast, veo3-pro, ...) answer a chat request with the
  finished video URL embedded in the reply text, so the operation comes back
  already terminal.
- Every other model is submitted as a multipart form to /v1/videos and
  polled at /v1/videos/{id} ("completed" / anything else).

Polo has no speech endpoint.
"""

import logging
from typing import Any, Dict, Optional

from .base import (
    Content,
    ContentOptions,
    ContentPart,
    ContentResponse,
    InlineMedia,
    OperationStatus,
    ProviderError,
    ProviderType,
    VideoOperation,
    VideoOptions,
)
from .http import HTTPGenerationProvider
from .parsing import (
    HTTP_URL_RE,
    build_extra_body,
    build_messages,
    collect_text,
    decode_media,
    find_first_http_url,
    is_http_url,
    parse_chat_response,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://work.poloapi.com"
CHAT_VIDEO_PREFIX = "veo3-"
CHAT_DONE_ID = "chat-done"

FAILED_STATUSES = {"failed", "failure", "error", "cancelled"}


def _auth(key: Optional[str]) -> str:
    # Polo accepts raw keys; a "Bearer " prefix is passed through untouched
    return key or ""


def map_video_model(model: str, aspect_ratio: str) -> str:
    """Expand the generic veo3.1 names into Polo's orientation specific models"""
    if model not in ("veo3.1", "veo3.1-components"):
        return model
    orientation = "portrait" if aspect_ratio == "9:16" else "landscape"
    suffix = "-fl" if model == "veo3.1" else ""
    return f"veo_3_1-{orientation}-hd{suffix}"


def video_size(aspect_ratio: str) -> str:
    return "720x1280" if aspect_ratio == "9:16" else "1280x720"


class PoloProvider(HTTPGenerationProvider):
    """
    Polo gateway backend.

    Keys are chosen per request kind: the image key for image mode (or
    image model names), the text key otherwise, the video key for jobs.
    """

    provider_type = ProviderType.POLO

    @property
    def base_url(self) -> str:
        return self.config.base_url or DEFAULT_BASE_URL

    def _content_auth(self, model: str, options: ContentOptions) -> str:
        lowered = model.lower()
        if options.wants_image or "image" in lowered or "imagen" in lowered:
            return _auth(self.config.image_api_key or self.config.text_api_key)
        return _auth(self.config.text_api_key)

    async def generate_content(
        self,
        model: str,
        content: Content,
        options: Optional[ContentOptions] = None,
    ) -> ContentResponse:
        options = options or ContentOptions()
        body: Dict[str, Any] = {
            "model": model,
            "stream": False,
            "messages": build_messages(content, options),
        }
        extra_body = build_extra_body(options)
        if extra_body:
            body["extra_body"] = extra_body

        data = await self._post_json(
            self._url(self.base_url, "/v1/chat/completions"),
            body,
            self._content_auth(model, options),
        )
        return parse_chat_response(data)

    async def generate_videos(
        self,
        model: str,
        prompt: str,
        image: Optional[InlineMedia] = None,
        options: Optional[VideoOptions] = None,
    ) -> VideoOperation:
        options = options or VideoOptions()
        if model.startswith(CHAT_VIDEO_PREFIX):
            return await self._generate_video_via_chat(model, prompt, image, options)

        final_model = map_video_model(model, options.aspect_ratio)
        form = {
            "model": final_model,
            "prompt": prompt,
            "seconds": str(options.seconds),
            "size": video_size(options.aspect_ratio),
        }
        files = None
        if image is not None:
            files = {"input_reference": ("input.png", decode_media(image), image.mime_type)}
        elif options.reference_images and is_http_url(options.reference_images[0]):
            form["input_reference"] = options.reference_images[0]

        data = await self._post_form(
            self._url(self.base_url, "/v1/videos"),
            form,
            files,
            _auth(self.config.video_api_key),
        )
        job_id = (data or {}).get("id") or (data or {}).get("task_id")
        if not job_id:
            raise ProviderError(f"No job id returned: {str(data)[:200]}")

        logger.info(f"Polo video job submitted: {job_id} ({final_model})")
        return VideoOperation(
            operation_id=str(job_id),
            status=OperationStatus.SUBMITTED,
            provider=self.provider_type,
            model=final_model,
        )

    async def _generate_video_via_chat(
        self,
        model: str,
        prompt: str,
        image: Optional[InlineMedia],
        options: VideoOptions,
    ) -> VideoOperation:
        parts = [ContentPart.of_text(prompt)]
        if image is not None:
            parts.append(ContentPart(image=image))
        elif options.reference_images:
            parts.append(ContentPart.of_image_url(options.reference_images[0]))

        body = {"model": model, "stream": False, "messages": build_messages(parts)}
        data = await self._post_json(
            self._url(self.base_url, "/v1/chat/completions"),
            body,
            _auth(self.config.video_api_key),
        )
        choices = (data or {}).get("choices") or [{}]
        text = collect_text((choices[0].get("message") or {}).get("content"))
        match = HTTP_URL_RE.search(text)

        if match:
            return VideoOperation(
                operation_id=CHAT_DONE_ID,
                status=OperationStatus.SUCCEEDED,
                result_uri=match.group(0),
                provider=self.provider_type,
                model=model,
            )
        return VideoOperation(
            operation_id=CHAT_DONE_ID,
            status=OperationStatus.FAILED,
            error=f"No video URL found in response: {text[:100]}",
            provider=self.provider_type,
            model=model,
        )

    async def get_operation(self, operation: VideoOperation) -> VideoOperation:
        if operation.done or not operation.operation_id:
            return operation

        data = await self._get_json(
            self._url(self.base_url, f"/v1/videos/{operation.operation_id}"),
            _auth(self.config.video_api_key),
        ) or {}
        raw_status = str(data.get("status") or "").lower()
        uri = data.get("video_url") or data.get("url")
        if not uri and raw_status == "completed":
            uri = find_first_http_url(data)

        if raw_status == "completed" and uri:
            status = OperationStatus.SUCCEEDED
        elif raw_status in FAILED_STATUSES or data.get("error"):
            status = OperationStatus.FAILED
        else:
            status = OperationStatus.IN_PROGRESS

        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message") or str(error)
        if status == OperationStatus.FAILED and not error:
            error = f"Video job {operation.operation_id} {raw_status}"

        return VideoOperation(
            operation_id=operation.operation_id,
            status=status,
            result_uri=uri if status == OperationStatus.SUCCEEDED else None,
            error=error if status == OperationStatus.FAILED else None,
            provider=self.provider_type,
            model=operation.model,
            provider_metadata={"vendor_status": raw_status},
        )
