"""Tests for prompts and generation providers."""

import base64
import io
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from PIL import Image

from petstyle.generation.prompts import STYLES_BY_TYPE, build_prompt, is_known_style
from petstyle.generation.provider import (
    GenerationError,
    GenerationTimeoutError,
    OpenAIGenerationConfig,
    OpenAIGenerationProvider,
    ProviderConfigurationError,
    TintGenerationProvider,
    create_provider,
)
from petstyle.pipeline.errors import ErrorCode, classify_error
from petstyle.pipeline.state import JobType

from conftest import make_image_bytes


OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/images/edits")


def image_response(data: bytes):
    item = MagicMock()
    item.b64_json = base64.b64encode(data).decode("ascii")
    response = MagicMock()
    response.data = [item]
    return response


@pytest.fixture
def mock_openai():
    client = MagicMock()
    client.images.edit = AsyncMock(return_value=image_response(make_image_bytes((1024, 1024))))
    return client


# =============================================================================
# Prompts
# =============================================================================


class TestPrompts:
    """Tests for build_prompt."""

    def test_sticker_prompt(self):
        payload = build_prompt("sticker", "Kawaii")

        assert payload.job_type == JobType.STICKER
        assert "Kawaii" in payload.full_prompt
        assert "transparent background" in payload.full_prompt
        assert "big sparkling eyes" in payload.full_prompt

    def test_image_prompt(self):
        payload = build_prompt(JobType.IMAGE, "Oil Painting")

        assert "brush strokes" in payload.full_prompt
        assert "transparent" not in payload.full_prompt

    def test_unknown_style_gets_generic_hint(self):
        payload = build_prompt("image", "Watercolor")

        assert "Watercolor" in payload.full_prompt
        assert "faithful, polished rendition" in payload.full_prompt

    def test_blank_style_defaults_to_cartoon(self):
        assert build_prompt("sticker", "  ").style == "Cartoon"

    def test_catalogue(self):
        assert is_known_style("sticker", "Kawaii")
        assert not is_known_style("image", "Kawaii")
        assert "Oil Painting" in STYLES_BY_TYPE[JobType.IMAGE]


# =============================================================================
# OpenAI provider
# =============================================================================


class TestOpenAIGenerationProvider:
    """Tests for OpenAIGenerationProvider with a mocked client."""

    @pytest.mark.asyncio
    async def test_sticker_request(self, mock_openai):
        provider = OpenAIGenerationProvider(
            config=OpenAIGenerationConfig(model="gpt-image-1", size="1024x1024"),
            client=mock_openai,
        )
        photo = make_image_bytes((200, 200), fmt="JPEG")

        result = await provider.generate(photo, JobType.STICKER, "Cartoon")

        assert Image.open(io.BytesIO(result)).size == (1024, 1024)
        kwargs = mock_openai.images.edit.call_args.kwargs
        assert kwargs["model"] == "gpt-image-1"
        assert kwargs["size"] == "1024x1024"
        assert kwargs["background"] == "transparent"
        assert kwargs["image"] == ("input.jpeg", photo, "image/jpeg")
        assert "Cartoon" in kwargs["prompt"]

    @pytest.mark.asyncio
    async def test_image_request_keeps_background(self, mock_openai):
        provider = OpenAIGenerationProvider(client=mock_openai)

        await provider.generate(make_image_bytes(), JobType.IMAGE, "Line Art")

        kwargs = mock_openai.images.edit.call_args.kwargs
        assert "background" not in kwargs
        assert kwargs["image"][2] == "image/png"

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        provider = OpenAIGenerationProvider(api_key=None)

        with pytest.raises(ProviderConfigurationError) as exc_info:
            await provider.generate(make_image_bytes(), JobType.STICKER, "Cartoon")

        assert str(exc_info.value) == "Missing OPENAI_API_KEY environment variable."
        assert classify_error(exc_info.value) == ErrorCode.OPENAI_API_KEY_MISSING

    @pytest.mark.asyncio
    async def test_rejected_api_key(self, mock_openai):
        response = httpx.Response(401, request=OPENAI_REQUEST)
        mock_openai.images.edit.side_effect = openai.AuthenticationError(
            "Incorrect API key provided", response=response, body=None
        )
        provider = OpenAIGenerationProvider(client=mock_openai)

        with pytest.raises(ProviderConfigurationError) as exc_info:
            await provider.generate(make_image_bytes(), JobType.STICKER, "Cartoon")

        assert classify_error(exc_info.value) == ErrorCode.OPENAI_API_KEY_MISSING

    @pytest.mark.asyncio
    async def test_timeout(self, mock_openai):
        mock_openai.images.edit.side_effect = openai.APITimeoutError(request=OPENAI_REQUEST)
        provider = OpenAIGenerationProvider(client=mock_openai)

        with pytest.raises(GenerationTimeoutError):
            await provider.generate(make_image_bytes(), JobType.IMAGE, "Cartoon")

    @pytest.mark.asyncio
    async def test_api_error(self, mock_openai):
        response = httpx.Response(500, request=OPENAI_REQUEST)
        mock_openai.images.edit.side_effect = openai.InternalServerError(
            "server error", response=response, body=None
        )
        provider = OpenAIGenerationProvider(client=mock_openai)

        with pytest.raises(GenerationError) as exc_info:
            await provider.generate(make_image_bytes(), JobType.IMAGE, "Cartoon")

        assert classify_error(exc_info.value) == ErrorCode.JOB_PROCESSING_ERROR

    @pytest.mark.asyncio
    async def test_empty_response(self, mock_openai):
        response = MagicMock()
        response.data = []
        mock_openai.images.edit.return_value = response
        provider = OpenAIGenerationProvider(client=mock_openai)

        with pytest.raises(GenerationError, match="Invalid image response"):
            await provider.generate(make_image_bytes(), JobType.IMAGE, "Cartoon")


# =============================================================================
# Tint provider
# =============================================================================


class TestTintGenerationProvider:
    """Tests for the offline tint provider."""

    @pytest.mark.asyncio
    async def test_image_output(self):
        provider = TintGenerationProvider(max_size=256)

        result = await provider.generate(make_image_bytes((512, 256), fmt="JPEG"), JobType.IMAGE, "Cartoon")

        img = Image.open(io.BytesIO(result))
        assert img.format == "PNG"
        assert img.size == (256, 128)
        assert img.mode == "RGB"

    @pytest.mark.asyncio
    async def test_sticker_keeps_alpha(self):
        provider = TintGenerationProvider()
        photo = make_image_bytes((64, 64), mode="RGBA", color=(200, 100, 50, 0))

        result = await provider.generate(photo, JobType.STICKER, "Sticker")

        img = Image.open(io.BytesIO(result))
        assert img.mode == "RGBA"
        assert img.getpixel((10, 10))[3] == 0

    @pytest.mark.asyncio
    async def test_styles_are_tinted_differently(self):
        provider = TintGenerationProvider()
        photo = make_image_bytes(color="white")

        cartoon = await provider.generate(photo, JobType.IMAGE, "Cartoon")
        oil = await provider.generate(photo, JobType.IMAGE, "Oil Painting")

        assert Image.open(io.BytesIO(cartoon)).getpixel((0, 0)) != Image.open(io.BytesIO(oil)).getpixel((0, 0))


class TestCreateProvider:
    """Tests for create_provider."""

    def test_tint(self):
        assert isinstance(create_provider("tint"), TintGenerationProvider)

    def test_openai(self):
        assert isinstance(create_provider("openai"), OpenAIGenerationProvider)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown generation provider"):
            create_provider("dall-e-9000")
