"""Image generation gateway and output normalization."""

from .normalize import OUTPUT_CONTENT_TYPE, NormalizationError, normalize_output
from .prompts import STYLES_BY_TYPE, build_prompt, is_known_style
from .provider import (
    GenerationError,
    GenerationProvider,
    GenerationTimeoutError,
    OpenAIGenerationConfig,
    OpenAIGenerationProvider,
    ProviderConfigurationError,
    TintGenerationProvider,
    create_provider,
)

__all__ = [
    "GenerationError",
    "GenerationProvider",
    "GenerationTimeoutError",
    "NormalizationError",
    "OUTPUT_CONTENT_TYPE",
    "OpenAIGenerationConfig",
    "OpenAIGenerationProvider",
    "ProviderConfigurationError",
    "STYLES_BY_TYPE",
    "TintGenerationProvider",
    "build_prompt",
    "create_provider",
    "is_known_style",
    "normalize_output",
]
