"""Prompt templates for pet stylization."""

from dataclasses import dataclass

from petstyle.pipeline.state import JobType

# Style catalogue offered by the app, per job type.
STYLES_BY_TYPE: dict[JobType, tuple[str, ...]] = {
    JobType.STICKER: ("Cartoon", "Kawaii", "Line Art", "Vector Art", "Pixel Art"),
    JobType.IMAGE: ("Cartoon", "Oil Painting", "Line Art", "Vector Art", "Pixel Art"),
}

STYLE_HINTS: dict[str, str] = {
    "Cartoon": "bold outlines, flat vibrant colors and friendly exaggerated features",
    "Kawaii": "a chibi proportioned body, big sparkling eyes and soft pastel colors",
    "Line Art": "clean black ink lines on white with minimal shading",
    "Vector Art": "crisp geometric shapes, smooth gradients and a limited palette",
    "Pixel Art": "a 64x64 retro pixel grid with a small 16 color palette",
    "Oil Painting": "visible brush strokes, rich textures and warm classical lighting",
}

STICKER_TEMPLATE = (
    "Turn the pet in this photo into a die-cut sticker in {style} style: {hint}. "
    "Keep the animal recognizable (breed, fur pattern, eye color). "
    "Show only the pet with a thick white outline on a fully transparent background. "
    "No text, no frame, no shadow outside the outline."
)

IMAGE_TEMPLATE = (
    "Repaint this pet photo as a {style} illustration: {hint}. "
    "Keep the animal recognizable (breed, fur pattern, eye color) and keep the "
    "original pose and composition. No text or watermark."
)

GENERIC_HINT = "a faithful, polished rendition of that style"


@dataclass(frozen=True)
class PromptPayload:
    job_type: JobType
    style: str
    full_prompt: str


def is_known_style(job_type: JobType | str, style: str) -> bool:
    return style in STYLES_BY_TYPE[JobType(job_type)]


def build_prompt(job_type: JobType | str, style: str) -> PromptPayload:
    """Build the provider prompt for a job.

    Styles outside the catalogue still get a prompt; the catalogue is owned
    by the client app and may move ahead of this service.
    """
    job_type = JobType(job_type)
    style = style.strip() or "Cartoon"
    hint = STYLE_HINTS.get(style, GENERIC_HINT)
    template = STICKER_TEMPLATE if job_type == JobType.STICKER else IMAGE_TEMPLATE
    return PromptPayload(
        job_type=job_type,
        style=style,
        full_prompt=template.format(style=style, hint=hint),
    )
