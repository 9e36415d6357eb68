"""Prompt construction shared by every provider."""

from __future__ import annotations

from typing import Any

from headshot_engine.models.generation import PersonalInfo

NEGATIVE_PROMPT = (
    "blurry, low quality, distorted, deformed, bad anatomy, bad proportions, extra limbs, "
    "cloned face, disfigured, gross proportions, malformed limbs, missing arms, missing legs, "
    "extra arms, extra legs, mutated hands, poorly drawn hands, poorly drawn face, mutation, "
    "deformed, ugly, bad hands, bad fingers, watermark, signature"
)

_PROMPT_PREFIX = "Professional headshot, studio lighting"
_PROMPT_SUFFIX = "high quality, detailed, sharp focus, professional photography, 8k resolution"

# Sampler settings sent to both providers.
SAMPLER_PARAMETERS: dict[str, Any] = {
    "width": 1024,
    "height": 1024,
    "guidance_scale": 7.5,
    "num_inference_steps": 50,
    "scheduler": "K_EULER",
    "num_outputs": 1,
    "quality": 100,
    "lora_scale": 0.6,
}


def build_headshot_prompt(style: str, personal_info: PersonalInfo) -> str:
    """Compose the positive prompt from the chosen style and personal attributes."""
    parts = [_PROMPT_PREFIX]
    if style:
        parts.append(f"{style} style")
    if personal_info.gender:
        parts.append(personal_info.gender)
    if personal_info.age:
        parts.append(f"{personal_info.age} years old")
    if personal_info.ethnicity:
        parts.append(personal_info.ethnicity)
    if personal_info.hair_color:
        parts.append(f"{personal_info.hair_color} hair")
    if personal_info.eye_color:
        parts.append(f"{personal_info.eye_color} eyes")
    parts.extend(p for p in personal_info.preferences if p)
    parts.append(_PROMPT_SUFFIX)
    return ", ".join(parts)
