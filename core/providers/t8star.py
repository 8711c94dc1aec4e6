"""
T8Star Provider

OpenAI-compatible gateway with two hosts:
- text host: chat completions for the gateway's own text models (optionally
  streamed as server-sent events) and /v1/audio/speech
- media host: chat completions for every other model (image generation) and
  the video job APIs

Video call shapes:
- models containing "veo" go to the v2 job API (JSON body with up to a few
  reference images) and are polled at /v2/videos/generations/{id} with the
  SUCCESS / FAILURE / IN_PROGRESS vocabulary
- other models are submitted as a multipart form to /v1/videos and polled
  at /v1/videos/{id}
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from .base import (
    Content,
    ContentOptions,
    ContentResponse,
    InlineMedia,
    OperationStatus,
    ProviderError,
    ProviderHTTPError,
    ProviderType,
    VideoOperation,
    VideoOptions,
)
from .http import HTTPGenerationProvider
from .parsing import (
    base64_byte_size,
    build_extra_body,
    build_messages,
    compress_to_jpeg_base64,
    decode_media,
    find_first_http_url,
    is_http_url,
    normalize_image_to_data_url,
    parse_chat_response,
    parse_data_url,
    parse_sse_stream,
    to_bearer,
)
from .polo import video_size

logger = logging.getLogger(__name__)

DEFAULT_TEXT_BASE_URL = "https://ai.t8star.cn"

# Models served from the text host; everything else goes to the media host
TEXT_HOST_MODELS = frozenset({"gemini-3-flash-preview", "nano-banana-2-2k"})

MAX_SINGLE_IMAGE_BYTES = 3 * 1024 * 1024
MAX_TOTAL_IMAGE_BYTES = 6 * 1024 * 1024

# (max side in px, jpeg quality) tried in order when an image is too large
COMPRESSION_STEPS = ((1024, 0.82), (768, 0.76), (512, 0.7))

V1_API = "v1"
V2_API = "v2"


def extract_task_id(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    for source in (data, data.get("data") if isinstance(data.get("data"), dict) else {}):
        for key in ("task_id", "taskId", "id"):
            if source.get(key):
                return str(source[key])
    return None


def prepare_video_image(value: str, max_bytes: int) -> Tuple[str, int]:
    """
    Normalize one reference image for the v2 API.

    http URLs pass through and count as zero bytes. Oversized inline images
    are re-encoded as progressively smaller JPEGs.
    """
    if not value:
        return "", 0
    if is_http_url(value):
        return value, 0

    data_url = normalize_image_to_data_url(value)
    media = parse_data_url(data_url)
    payload = "".join((media.data if media else "").split())
    size = base64_byte_size(payload) if payload else 0
    if size <= max_bytes:
        return data_url, size

    last = None
    for max_side, quality in COMPRESSION_STEPS:
        compressed = compress_to_jpeg_base64(data_url, max_side, quality)
        if compressed is None:
            break
        last = compressed
        if base64_byte_size(compressed) <= max_bytes:
            return f"data:image/jpeg;base64,{compressed}", base64_byte_size(compressed)
    if last is not None:
        return f"data:image/jpeg;base64,{last}", base64_byte_size(last)
    return data_url, size


def limit_images(images: List[Tuple[str, int]], max_total: int) -> List[Tuple[str, int]]:
    """Drop leading images until the inline payload fits (keeping at least one)"""
    def total(items):
        return sum(size for value, size in items if not is_http_url(value))

    kept = list(images)
    while total(kept) > max_total and len(kept) > 1:
        kept = kept[1:]
    if len(kept) == 1 and total(kept) > max_total:
        kept = [prepare_video_image(kept[0][0], max_total)]
    return kept


class T8StarProvider(HTTPGenerationProvider):
    """T8Star gateway backend; the only one with speech synthesis"""

    provider_type = ProviderType.T8STAR

    @property
    def text_base_url(self) -> str:
        return self.config.base_url or DEFAULT_TEXT_BASE_URL

    @property
    def media_base_url(self) -> str:
        return self.config.media_base_url or self.text_base_url

    # =========================================================================
    # CONTENT
    # =========================================================================

    async def generate_content(
        self,
        model: str,
        content: Content,
        options: Optional[ContentOptions] = None,
    ) -> ContentResponse:
        options = options or ContentOptions()
        messages = build_messages(content, options)
        extra_body = build_extra_body(options)

        if model in TEXT_HOST_MODELS:
            body: Dict[str, Any] = {"model": model, "stream": options.stream, "messages": messages}
            if options.json_response or options.response_schema:
                body["response_format"] = {"type": "json_object"}
            if extra_body:
                body["extra_body"] = extra_body
            url = self._url(self.text_base_url, "/v1/chat/completions")
            auth = to_bearer(self.config.text_api_key)

            if options.stream:
                response = await self._send("POST", url, auth, accept="text/event-stream", json=body)
                return ContentResponse(text=parse_sse_stream(response.text))
            return parse_chat_response(await self._post_json(url, body, auth))

        body = {"model": model, "stream": False, "messages": messages}
        if extra_body:
            body["extra_body"] = extra_body
        data = await self._post_json(
            self._url(self.media_base_url, "/v1/chat/completions"),
            body,
            to_bearer(self.config.image_api_key or self.config.text_api_key),
        )
        return parse_chat_response(data)

    # =========================================================================
    # VIDEO
    # =========================================================================

    async def generate_videos(
        self,
        model: str,
        prompt: str,
        image: Optional[InlineMedia] = None,
        options: Optional[VideoOptions] = None,
    ) -> VideoOperation:
        options = options or VideoOptions()
        if "veo" not in model:
            return await self._submit_form_job(model, prompt, image, options)

        images = list(options.reference_images)
        if not images and image is not None:
            images.append(image.to_data_url())

        prepared = [prepare_video_image(img, MAX_SINGLE_IMAGE_BYTES) for img in images]
        prepared = limit_images([p for p in prepared if p[0]], MAX_TOTAL_IMAGE_BYTES)

        body = {
            "prompt": prompt,
            "model": model,
            "enhance_prompt": options.enhance_prompt,
            "images": [value for value, _ in prepared],
            "aspect_ratio": options.aspect_ratio or "16:9",
        }
        data = await self._post_json(
            self._url(self.media_base_url, "/v2/videos/generations"),
            body,
            to_bearer(self.config.video_api_key),
        )
        task_id = extract_task_id(data)
        if not task_id:
            raise ProviderError(f"No task_id returned: {str(data)[:200]}")

        logger.info(f"T8Star video task submitted: {task_id} ({model}, {len(prepared)} images)")
        return VideoOperation(
            operation_id=task_id,
            status=OperationStatus.SUBMITTED,
            provider=self.provider_type,
            model=model,
            provider_metadata={"api": V2_API},
        )

    async def _submit_form_job(
        self,
        model: str,
        prompt: str,
        image: Optional[InlineMedia],
        options: VideoOptions,
    ) -> VideoOperation:
        form = {
            "model": model,
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
            self._url(self.media_base_url, "/v1/videos"),
            form,
            files,
            to_bearer(self.config.video_api_key),
        )
        task_id = extract_task_id(data)
        if not task_id:
            raise ProviderError(f"No job id returned: {str(data)[:200]}")
        return VideoOperation(
            operation_id=task_id,
            status=OperationStatus.SUBMITTED,
            provider=self.provider_type,
            model=model,
            provider_metadata={"api": V1_API},
        )

    async def get_operation(self, operation: VideoOperation) -> VideoOperation:
        if operation.done or not operation.operation_id:
            return operation

        if operation.provider_metadata.get("api") != V1_API:
            try:
                return await self._poll_v2(operation)
            except ProviderHTTPError as e:
                if e.status_code != 404:
                    raise
                logger.debug(f"v2 status unknown for {operation.operation_id}, trying v1")
        return await self._poll_v1(operation)

    async def _poll_v2(self, operation: VideoOperation) -> VideoOperation:
        data = await self._get_json(
            self._url(self.media_base_url, f"/v2/videos/generations/{operation.operation_id}"),
            to_bearer(self.config.video_api_key),
        ) or {}
        raw_status = str(data.get("status") or "IN_PROGRESS")
        nested = data.get("data") if isinstance(data.get("data"), dict) else {}

        if raw_status == "FAILURE":
            return self._with_status(operation, OperationStatus.FAILED, raw_status, V2_API,
                                  error=data.get("fail_reason") or "Video generation failed")
        if raw_status == "SUCCESS":
            uri = nested.get("output") or data.get("output")
            if not uri:
                return self._with_status(operation, OperationStatus.FAILED, raw_status, V2_API,
                                      error="Task succeeded without an output URL")
            return self._with_status(operation, OperationStatus.SUCCEEDED, raw_status, V2_API, uri=uri)
        return self._with_status(operation, OperationStatus.IN_PROGRESS, raw_status, V2_API)

    async def _poll_v1(self, operation: VideoOperation) -> VideoOperation:
        data = await self._get_json(
            self._url(self.media_base_url, f"/v1/videos/{operation.operation_id}"),
            to_bearer(self.config.video_api_key),
        ) or {}
        raw_status = str(data.get("status") or "").lower()
        uri = data.get("video_url") or data.get("url")
        if not uri and raw_status == "completed":
            uri = find_first_http_url(data)

        if raw_status == "completed" and uri:
            return self._with_status(operation, OperationStatus.SUCCEEDED, raw_status, V1_API, uri=uri)
        if raw_status in ("failed", "error") or data.get("error"):
            error = data.get("error") or f"Video job {operation.operation_id} {raw_status}"
            return self._with_status(operation, OperationStatus.FAILED, raw_status, V1_API, error=str(error))
        return self._with_status(operation, OperationStatus.IN_PROGRESS, raw_status, V1_API)

    def _with_status(self, operation: VideoOperation, status: OperationStatus, vendor_status: str,
                  api: str, uri: Optional[str] = None, error: Optional[str] = None) -> VideoOperation:
        return VideoOperation(
            operation_id=operation.operation_id,
            status=status,
            result_uri=uri,
            error=error,
            provider=self.provider_type,
            model=operation.model,
            provider_metadata={"api": api, "vendor_status": vendor_status},
        )

    # =========================================================================
    # SPEECH
    # =========================================================================

    async def speech(self, text: str, voice: str, model: Optional[str] = None) -> bytes:
        body = {
            "model": model or "tts-1",
            "input": text,
            "voice": voice,
            "response_format": "pcm",
        }
        response = await self._send(
            "POST",
            self._url(self.text_base_url, "/v1/audio/speech"),
            to_bearer(self.config.audio_api_key or self.config.text_api_key),
            accept="application/octet-stream",
            json=body,
        )
        return response.content
