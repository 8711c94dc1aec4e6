"""
Request building and response normalization shared by the chat-style backends.

Backends wrap generated media in different envelopes: a data URL inside the
message text, a JSON document serialized into the text, a list of typed parts,
or vendor specific base64 keys. extract_inline_media() walks all of them and
returns the first payload it finds.
"""

import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Optional

from .base import Content, ContentOptions, ContentResponse, InlineMedia

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"data:((?:image|audio)/[a-zA-Z0-9.+-]+);base64,([A-Za-z0-9+/=]+)")
HTTP_URL_RE = re.compile(r"https?://[^\s)\"'<>\]]+")
MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*\]\((https?://[^\s)]+)\)")

# Keys that hold a bare base64 payload
BASE64_KEYS = ("b64_json", "image_base64", "audio_base64", "base64", "b64")
MIME_KEYS = ("mimeType", "mime_type")
# Generic "data" values shorter than this are ids or flags, not payloads
MIN_GENERIC_DATA_LENGTH = 100
MAX_DEPTH = 16

_MIME_SIGNATURES = (
    ("/9j/", "image/jpeg"),
    ("iVBORw0KGgo", "image/png"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
    ("Qk", "image/bmp"),
)


# ============================================================
# Small helpers
# ============================================================

def is_http_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def is_data_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def parse_data_url(value: str) -> Optional[InlineMedia]:
    """Split a data:<mime>;base64,<payload> URL"""
    match = DATA_URL_RE.search(value or "")
    if not match:
        return None
    return InlineMedia(mime_type=match.group(1), data=match.group(2))


def guess_image_mime(b64: str) -> str:
    """Guess an image mime type from the leading bytes of its base64 text"""
    for prefix, mime in _MIME_SIGNATURES:
        if b64.startswith(prefix):
            return mime
    return "image/png"


def base64_byte_size(b64: str) -> int:
    """Decoded size of a base64 string without decoding it"""
    payload = b64.split(",", 1)[1] if b64.startswith("data:") else b64
    payload = payload.strip()
    padding = payload.count("=", max(len(payload) - 2, 0))
    return (len(payload) * 3) // 4 - padding


def normalize_image_to_data_url(value: str, mime_type: Optional[str] = None) -> str:
    """Return a data URL for raw base64, leaving data and http URLs untouched"""
    if is_data_url(value) or is_http_url(value):
        return value
    payload = value.strip()
    return f"data:{mime_type or guess_image_mime(payload)};base64,{payload}"


def decode_media(media: InlineMedia) -> bytes:
    try:
        return base64.b64decode(media.data)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload for {media.mime_type}: {e}") from e


def to_bearer(key: Optional[str]) -> str:
    if not key:
        return ""
    return key if key.lower().startswith("bearer ") else f"Bearer {key}"


# ============================================================
# Inline media extraction
# ============================================================

def _media_from_mapping(obj: Dict[str, Any]) -> Optional[InlineMedia]:
    mime = next((obj[k] for k in MIME_KEYS if isinstance(obj.get(k), str)), None)

    for key in BASE64_KEYS:
        value = obj.get(key)
        if isinstance(value, str) and value:
            if is_data_url(value):
                return parse_data_url(value)
            default = "audio/wav" if key.startswith("audio") else guess_image_mime(value)
            return InlineMedia(mime_type=mime or default, data=value)

    for key in ("image_url", "audio_url"):
        value = obj.get(key)
        url = value.get("url") if isinstance(value, dict) else value
        if isinstance(url, str) and is_data_url(url):
            media = parse_data_url(url)
            if media:
                return media

    data = obj.get("data")
    if isinstance(data, str) and data:
        if is_data_url(data):
            return parse_data_url(data)
        if mime or len(data) > MIN_GENERIC_DATA_LENGTH:
            return InlineMedia(mime_type=mime or guess_image_mime(data), data=data)
    return None


def extract_inline_media(value: Any, _depth: int = 0) -> Optional[InlineMedia]:
    """
    Recursively search a response value for the first base64 media payload.

    Handles plain strings (data URL anywhere in the text), JSON-encoded
    strings, lists of typed parts and nested dicts with vendor specific keys.
    """
    if value is None or _depth > MAX_DEPTH:
        return None

    if isinstance(value, str):
        media = parse_data_url(value)
        if media:
            return media
        stripped = value.strip()
        if stripped[:1] in ("{", "["):
            try:
                decoded = json.loads(stripped)
            except json.JSONDecodeError:
                return None
            return extract_inline_media(decoded, _depth + 1)
        return None

    if isinstance(value, dict):
        media = _media_from_mapping(value)
        if media:
            return media
        for nested in value.values():
            media = extract_inline_media(nested, _depth + 1)
            if media:
                return media
        return None

    if isinstance(value, (list, tuple)):
        for item in value:
            media = extract_inline_media(item, _depth + 1)
            if media:
                return media
    return None


def collect_text(content: Any) -> str:
    """Flatten message content (string or list of typed parts) to text"""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
        return "".join(texts)
    return str(content)


def find_first_http_url(value: Any, _depth: int = 0) -> Optional[str]:
    """Depth-first search for the first http(s) URL in any nested value"""
    if _depth > MAX_DEPTH:
        return None
    if isinstance(value, str):
        match = HTTP_URL_RE.search(value)
        return match.group(0) if match else None
    if isinstance(value, dict):
        for nested in value.values():
            url = find_first_http_url(nested, _depth + 1)
            if url:
                return url
    elif isinstance(value, (list, tuple)):
        for item in value:
            url = find_first_http_url(item, _depth + 1)
            if url:
                return url
    return None


def find_image_url_in_text(text: str) -> Optional[str]:
    """Markdown image link first, then any bare URL"""
    if not text:
        return None
    match = MARKDOWN_IMAGE_RE.search(text)
    if match:
        return match.group(1)
    match = HTTP_URL_RE.search(text)
    return match.group(0) if match else None


# ============================================================
# Chat wire format
# ============================================================

def build_messages(content: Content, options: Optional[ContentOptions] = None) -> List[Dict[str, Any]]:
    options = options or ContentOptions()
    messages: List[Dict[str, Any]] = []
    if options.system_instruction:
        messages.append({"role": "system", "content": options.system_instruction})

    if isinstance(content, str):
        messages.append({"role": "user", "content": content})
        return messages

    parts = []
    for part in content:
        if part.image is not None:
            parts.append({"type": "image_url", "image_url": {"url": part.image.to_data_url()}})
        elif part.image_url:
            parts.append({"type": "image_url", "image_url": {"url": part.image_url}})
        elif part.text is not None:
            parts.append({"type": "text", "text": part.text})
    messages.append({"role": "user", "content": parts})
    return messages


def build_extra_body(options: Optional[ContentOptions]) -> Dict[str, Any]:
    """Vendor extension block for image, speech and schema options"""
    if options is None:
        return {}
    google: Dict[str, Any] = {}
    if options.aspect_ratio:
        google["image_config"] = {"aspect_ratio": options.aspect_ratio}
    if options.speech_config:
        google["speech_config"] = options.speech_config
    if options.response_modalities:
        google["response_modalities"] = list(options.response_modalities)
    if options.response_schema:
        google["response_schema"] = options.response_schema
    return {"google": google} if google else {}


def parse_chat_response(payload: Any) -> ContentResponse:
    """Normalize a chat-completion JSON body into a ContentResponse"""
    message: Any = {}
    if isinstance(payload, dict):
        choices = payload.get("choices") or []
        if choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or choices[0].get("delta") or {}
    content = message.get("content") if isinstance(message, dict) else None

    media = extract_inline_media(content)
    if media is None and isinstance(message, dict):
        media = extract_inline_media({k: v for k, v in message.items() if k != "content"})
    if media is None and isinstance(payload, dict) and "data" in payload:
        media = extract_inline_media(payload["data"])

    if media is not None:
        return ContentResponse(inline_media=media, raw=payload)
    return ContentResponse(text=collect_text(content), raw=payload)


def parse_sse_stream(body: str) -> str:
    """Concatenate delta contents of a server-sent-events chat stream"""
    chunks = []
    for line in body.splitlines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            break
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed stream event: {data[:80]}")
            continue
        for choice in event.get("choices", []):
            delta = choice.get("delta") or {}
            chunks.append(collect_text(delta.get("content")))
    return "".join(chunks)


# ============================================================
# Image downsizing
# ============================================================

def compress_to_jpeg_base64(data_url: str, max_side: int, quality: float) -> Optional[str]:
    """Re-encode an image data URL as a downscaled JPEG; None if undecodable"""
    from io import BytesIO
    from PIL import Image, UnidentifiedImageError

    media = parse_data_url(data_url)
    if media is None:
        return None
    try:
        raw = base64.b64decode(media.data)
        with Image.open(BytesIO(raw)) as img:
            img = img.convert("RGB")
            img.thumbnail((max_side, max_side))
            out = BytesIO()
            img.save(out, format="JPEG", quality=int(quality * 100))
    except (binascii.Error, ValueError, OSError, UnidentifiedImageError) as e:
        logger.warning(f"Could not compress reference image: {e}")
        return None
    return base64.b64encode(out.getvalue()).decode("ascii")
