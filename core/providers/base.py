"""Abstract base classes and wire-neutral types for generation providers"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Union
from enum import Enum


class ProviderType(Enum):
    """Available generation backends"""
    MOCK = "mock"
    POLO = "polo"
    T8STAR = "t8star"


def _mask_secret(value: Optional[str]) -> str:
    """Mask a secret value for safe display in logs/repr."""
    if value is None:
        return "None"
    if len(value) <= 8:
        return "'***'"
    return f"'{value[:4]}...{value[-4:]}'"


@dataclass
class ProviderConfig:
    """Connection settings for one backend"""
    provider_type: ProviderType
    base_url: Optional[str] = None
    media_base_url: Optional[str] = None
    text_api_key: Optional[str] = None
    image_api_key: Optional[str] = None
    video_api_key: Optional[str] = None
    audio_api_key: Optional[str] = None
    timeout: float = 300.0  # seconds
    extra_params: Dict[str, Any] = None

    def __post_init__(self):
        if self.extra_params is None:
            self.extra_params = {}

    def __repr__(self) -> str:
        """Safe repr that masks API keys to prevent accidental exposure in logs."""
        return (
            f"ProviderConfig(provider_type={self.provider_type}, "
            f"base_url={self.base_url!r}, media_base_url={self.media_base_url!r}, "
            f"text_api_key={_mask_secret(self.text_api_key)}, "
            f"image_api_key={_mask_secret(self.image_api_key)}, "
            f"video_api_key={_mask_secret(self.video_api_key)}, "
            f"audio_api_key={_mask_secret(self.audio_api_key)}, "
            f"timeout={self.timeout})"
        )


# ============================================================
# Content (chat) calls
# ============================================================

@dataclass
class InlineMedia:
    """Base64 payload returned inline by a content call"""
    mime_type: str
    data: str  # base64, no data: prefix

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass
class ContentPart:
    """One element of a multi-part prompt: text, an inline image or an image URL"""
    text: Optional[str] = None
    image: Optional[InlineMedia] = None
    image_url: Optional[str] = None

    @classmethod
    def of_text(cls, text: str) -> "ContentPart":
        return cls(text=text)

    @classmethod
    def of_image(cls, mime_type: str, data: str) -> "ContentPart":
        return cls(image=InlineMedia(mime_type=mime_type, data=data))

    @classmethod
    def of_image_url(cls, url: str) -> "ContentPart":
        return cls(image_url=url)


Content = Union[str, List[ContentPart]]


@dataclass
class ContentOptions:
    """Options for generate_content"""
    json_response: bool = False
    response_schema: Optional[Dict[str, Any]] = None
    system_instruction: Optional[str] = None
    aspect_ratio: Optional[str] = None  # image mode when set
    response_modalities: List[str] = field(default_factory=list)
    speech_config: Optional[Dict[str, Any]] = None
    stream: bool = False

    @property
    def wants_image(self) -> bool:
        return bool(self.aspect_ratio) or "IMAGE" in self.response_modalities


@dataclass
class ContentResponse:
    """Normalized reply: either inline media or text"""
    text: Optional[str] = None
    inline_media: Optional[InlineMedia] = None
    raw: Any = None

    @property
    def has_media(self) -> bool:
        return self.inline_media is not None


# ============================================================
# Long-running video operations
# ============================================================

class OperationStatus(Enum):
    """Uniform status of a video job across backends"""
    SUBMITTED = "submitted"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.SUCCEEDED, OperationStatus.FAILED)


@dataclass
class VideoOptions:
    """Options for generate_videos"""
    aspect_ratio: str = "16:9"
    seconds: int = 8
    enhance_prompt: bool = False
    # Extra reference images as data URLs or http URLs
    reference_images: List[str] = field(default_factory=list)


@dataclass
class VideoOperation:
    """Opaque handle to a video job"""
    operation_id: str
    status: OperationStatus = OperationStatus.SUBMITTED
    result_uri: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[ProviderType] = None
    model: Optional[str] = None
    provider_metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.provider_metadata is None:
            self.provider_metadata = {}

    @property
    def done(self) -> bool:
        return self.status.is_terminal


# ============================================================
# Errors
# ============================================================

class ProviderError(Exception):
    """Base error for provider calls"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderHTTPError(ProviderError):
    """Non-2xx response from a backend"""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"HTTP Error: {status_code} {body}".strip(), status_code=status_code)
        self.body = body


class UnsupportedCapabilityError(ProviderError):
    """The backend does not implement the requested capability"""


# ============================================================
# Provider contract
# ============================================================

class GenerationProvider(ABC):
    """
    Abstract base class for generation backends.

    Every backend (Polo, T8Star, Mock) exposes the same four calls. Adapters
    only translate request and response shapes: they never cache and never
    retry. Retry policy lives in core.retry and core.lro.
    """

    provider_type: ProviderType = ProviderType.MOCK

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.provider_type.value

    @abstractmethod
    async def generate_content(
        self,
        model: str,
        content: Content,
        options: Optional[ContentOptions] = None,
    ) -> ContentResponse:
        """
        Run one chat-style request.

        Args:
            model: Backend model name
            content: Plain text or an ordered list of text/image parts
            options: JSON mode, image mode (aspect ratio) or response modalities

        Returns:
            ContentResponse with inline_media when the reply carried a
            base64 payload anywhere in its envelope, otherwise text
        """
        pass

    @abstractmethod
    async def generate_videos(
        self,
        model: str,
        prompt: str,
        image: Optional[InlineMedia] = None,
        options: Optional[VideoOptions] = None,
    ) -> VideoOperation:
        """
        Submit a video job.

        Returns an already terminal operation when the backend answered
        synchronously with a playable URL.
        """
        pass

    @abstractmethod
    async def get_operation(self, operation: VideoOperation) -> VideoOperation:
        """Poll a job and map the vendor status onto OperationStatus"""
        pass

    async def speech(self, text: str, voice: str, model: Optional[str] = None) -> bytes:
        """Synthesize speech; backends without TTS report it explicitly"""
        raise UnsupportedCapabilityError(f"{self.name} does not support speech synthesis")

    async def aclose(self) -> None:
        """Release network resources"""
        return None
