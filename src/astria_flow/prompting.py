"""Compose generation prompts that apply LoRA adapters."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from astria_flow.client import AstriaClient
from astria_flow.config import AstriaSettings
from astria_flow.errors import ClassifiedError, ErrorKind, classify
from astria_flow.models import LoraReference, TuneRecord
from astria_flow.tunes import validate_tune

logger = logging.getLogger(__name__)

LORA_ISSUES_HINT = (
    "\n\nCommon LoRA issues:\n"
    "- The LoRA ID may not exist or you don't have access to it\n"
    "- The LoRA may still be training and not ready for use\n"
    "- The tune might not be a LoRA type (only LoRAs can be used here)\n"
    "- Some LoRAs require specific tokens in your prompt"
)


class ComposedPrompt(BaseModel):
    """Final prompt text plus the tune metadata validated while building it."""

    text: str
    loras: list[tuple[LoraReference, TuneRecord]] = Field(default_factory=list)


def _coerce_references(refs: Iterable[LoraReference | Mapping[str, Any]]) -> list[LoraReference]:
    try:
        return [ref if isinstance(ref, LoraReference) else LoraReference.model_validate(ref) for ref in refs]
    except ValidationError as exc:
        raise classify(exc) from exc


def inject_token(prompt: str, token: str | None) -> str:
    """Prepend ``token`` unless it already occurs somewhere in ``prompt``."""
    if not token or token in prompt:
        return prompt
    return f"{token} {prompt}"


async def compose_prompt(
    client: AstriaClient,
    base_prompt: str,
    lora_refs: Iterable[LoraReference | Mapping[str, Any]],
    selected_model: str,
    settings: AstriaSettings,
) -> ComposedPrompt:
    """Validate LoRA references in order and build the prompt that applies them.

    Validation is sequential and fail-fast: the first reference that fails
    aborts composition and later references are never fetched. Each validated
    tune contributes a ``<lora:id:weight>`` tag and, when it carries a trigger
    token missing from the prompt, that token is prepended once.

    Tune metadata is fetched once per distinct tune id during a call and kept on
    the result, so summaries can be rendered without fetching again.

    Raises:
        ClassifiedError: VALIDATION for malformed references or a model that
            cannot take LoRAs, or the validator's error annotated with the
            failing tune id.
    """
    refs = _coerce_references(lora_refs)
    if not refs:
        return ComposedPrompt(text=base_prompt)

    if selected_model != settings.lora_model:
        raise ClassifiedError(
            "LoRA fine-tunes can only be used with their compatible base models. "
            f"The selected LoRA(s) are {settings.lora_model} LoRAs and can only be used with the "
            f"{settings.lora_model} model. Please change the model to '{settings.lora_model}' "
            "or remove the LoRA tunes.",
            ErrorKind.VALIDATION,
            details={"model": selected_model, "compatible_model": settings.lora_model},
        )

    prompt_text = base_prompt
    prefix = ""
    validated: dict[int, TuneRecord] = {}
    loras: list[tuple[LoraReference, TuneRecord]] = []

    for index, ref in enumerate(refs):
        tune = validated.get(ref.tune_id)
        if tune is None:
            try:
                tune = await validate_tune(client, ref.tune_id)
            except ClassifiedError as exc:
                logger.info("LoRA reference #%d (tune %s) rejected: %s", index, ref.tune_id, exc.kind.value)
                raise exc.annotate(
                    prefix=f"Invalid LoRA tune ID {ref.tune_id}: ",
                    suffix=LORA_ISSUES_HINT,
                    tune_id=ref.tune_id,
                    reference_index=index,
                ) from None
            validated[ref.tune_id] = tune

        prefix += ref.tag
        updated = inject_token(prompt_text, tune.token)
        if updated != prompt_text:
            logger.debug("Added required token %r for LoRA %s", tune.token, ref.tune_id)
            prompt_text = updated
        loras.append((ref, tune))

    logger.debug("Using LoRAs in prompt: %s", prefix)
    return ComposedPrompt(text=f"{prefix} {prompt_text}", loras=loras)


def format_lora_summary(composed: ComposedPrompt) -> str:
    """Describe the LoRAs applied to a composed prompt."""
    if not composed.loras:
        return ""
    lines = ["- LoRAs used:"]
    for ref, tune in composed.loras:
        lines.append(f"  - ID {ref.tune_id}: {tune.title} ({tune.name} type, weight: {ref.weight})")
        if tune.token:
            lines.append(f'    Required token: "{tune.token}" (automatically added to prompt)')
    lines.append("")
    lines.append("Note: LoRAs are applied using the syntax <lora:id:weight> in the prompt text.")
    return "\n".join(lines)
