"""Generation provider gateway.

Providers turn the input photo plus job type and style into encoded image
bytes. The OpenAI provider is the production path; the tint provider is a
local stand-in that needs no credentials (emulators, smoke tests).
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from typing import Protocol

import openai
from openai import AsyncOpenAI
from PIL import ImageOps

from petstyle.generation.normalize import detect_mime_type, encode_png_bytes, open_image
from petstyle.generation.prompts import build_prompt
from petstyle.logging.config import get_logger
from petstyle.pipeline.errors import ErrorCode, PipelineError
from petstyle.pipeline.state import JobType

logger = get_logger(__name__)

MODEL_DEFAULT = "gpt-image-1"


class GenerationError(PipelineError):
    """Base class for generation provider failures."""


class ProviderConfigurationError(GenerationError):
    """Provider credentials are missing or rejected."""

    error_code = ErrorCode.OPENAI_API_KEY_MISSING


class GenerationTimeoutError(GenerationError):
    """The provider did not answer in time."""


class GenerationProvider(Protocol):
    """The only contract the pipeline needs from an image model."""

    async def generate(self, input_bytes: bytes, job_type: JobType, style: str) -> bytes:
        ...


@dataclass(frozen=True)
class OpenAIGenerationConfig:
    model: str = MODEL_DEFAULT
    size: str = "1024x1024"
    timeout_s: float | None = None


class OpenAIGenerationProvider:
    """OpenAI image-edit backed provider."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        config: OpenAIGenerationConfig | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the provider.

        The API key is only checked on first use so a misconfigured worker
        still starts and reports the problem on the job itself.
        """
        self._api_key = api_key
        self._config = config or OpenAIGenerationConfig()
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ProviderConfigurationError("Missing OPENAI_API_KEY environment variable.")
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._config.timeout_s)
        return self._client

    async def generate(self, input_bytes: bytes, job_type: JobType, style: str) -> bytes:
        job_type = JobType(job_type)
        payload = build_prompt(job_type, style)

        mime_type = detect_mime_type(input_bytes)
        extension = mime_type.rsplit("/", 1)[-1]
        request: dict = {
            "model": self._config.model,
            "image": (f"input.{extension}", input_bytes, mime_type),
            "prompt": payload.full_prompt,
            "size": self._config.size,
        }
        if job_type == JobType.STICKER:
            request["background"] = "transparent"

        client = self.client
        logger.info("Requesting image edit", model=self._config.model, job_type=job_type.value, style=style)

        try:
            result = await client.images.edit(**request)
        except openai.AuthenticationError as e:
            raise ProviderConfigurationError(f"OPENAI_API_KEY rejected by provider: {e}") from e
        except openai.APITimeoutError as e:
            raise GenerationTimeoutError(f"Image generation timed out: {e}") from e
        except openai.OpenAIError as e:
            raise GenerationError(f"Image generation failed: {e}") from e

        try:
            image_base64 = result.data[0].b64_json
            return base64.b64decode(image_base64)
        except (AttributeError, IndexError, TypeError, ValueError) as e:
            raise GenerationError("Invalid image response from provider") from e


# Tints applied by the offline provider; unknown styles fall back to slate.
STYLE_TINTS: dict[str, str] = {
    "Sticker": "#f472b6",
    "Cartoon": "#60a5fa",
    "Oil Painting": "#fbbf24",
    "Line Art": "#a78bfa",
}
DEFAULT_TINT = "#94a3b8"


class TintGenerationProvider:
    """Deterministic offline provider: grayscale the photo and tint it per style."""

    def __init__(self, max_size: int = 1024) -> None:
        self._max_size = max_size

    def _stylize(self, input_bytes: bytes, job_type: JobType, style: str) -> bytes:
        img = open_image(input_bytes)
        img = ImageOps.exif_transpose(img)
        img.thumbnail((self._max_size, self._max_size))

        tint = STYLE_TINTS.get(style, DEFAULT_TINT)
        tinted = ImageOps.colorize(img.convert("L"), black="#000000", white=tint)

        if job_type == JobType.STICKER:
            tinted = tinted.convert("RGBA")
            if img.mode in ("RGBA", "LA"):
                tinted.putalpha(img.getchannel("A"))
        return encode_png_bytes(tinted)

    async def generate(self, input_bytes: bytes, job_type: JobType, style: str) -> bytes:
        return await asyncio.to_thread(self._stylize, input_bytes, JobType(job_type), style)


def create_provider(name: str | None = None) -> GenerationProvider:
    """Build the provider selected by ``PIPELINE_PROVIDER``."""
    from petstyle.config import get_settings

    settings = get_settings()
    name = name or settings.pipeline.provider
    if name == "tint":
        return TintGenerationProvider(max_size=settings.pipeline.output_max_size)
    if name == "openai":
        return OpenAIGenerationProvider(
            api_key=settings.openai.api_key or None,
            config=OpenAIGenerationConfig(
                model=settings.openai.image_model,
                size=settings.openai.image_size,
                timeout_s=settings.openai.timeout_seconds,
            ),
        )
    raise ValueError(f"Unknown generation provider: {name}")
