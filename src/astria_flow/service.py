"""End-to-end image generation: compose, submit, poll."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from astria_flow.client import AstriaClient
from astria_flow.config import AstriaSettings
from astria_flow.errors import ClassifiedError, ErrorKind
from astria_flow.models import GenerateImageRequest, Job
from astria_flow.polling import JobPoller
from astria_flow.prompting import ComposedPrompt, compose_prompt, format_lora_summary

logger = logging.getLogger(__name__)


class GenerationResult(BaseModel):
    """Outcome of a successful generation run."""

    model: str
    job: Job
    composed: ComposedPrompt

    @property
    def images(self) -> list[str]:
        return self.job.images


async def generate_image(
    client: AstriaClient,
    request: GenerateImageRequest,
    settings: AstriaSettings,
    *,
    timeout: float | None = None,
) -> GenerationResult:
    """Generate images for ``request``.

    Raises:
        ClassifiedError: For an unknown model, a rejected LoRA, a polling
            timeout, or a job the service marked as failed.
    """
    model_id = settings.model_id(request.model)

    if request.negative_prompt and request.model == "flux":
        logger.warning("Negative prompt provided but not supported by the Flux model. It will be ignored.")

    composed = await compose_prompt(client, request.prompt, request.lora_tunes, request.model, settings)
    poller = JobPoller(client, settings)
    job = await poller.run(model_id, request.prompt_params(composed.text), timeout=timeout)

    if not job.images:
        raise ClassifiedError(
            f"Image generation failed: {job.error or 'no images were returned'}",
            ErrorKind.API_ERROR,
            details=job.model_dump(mode="json"),
            context={"job_id": job.id},
        )

    return GenerationResult(model=request.model, job=job, composed=composed)


def format_generation_summary(request: GenerateImageRequest, result: GenerationResult) -> str:
    lines = ["Image generated successfully!", "", "Generation details:", f"- Model: {result.model}"]
    lora_summary = format_lora_summary(result.composed)
    if lora_summary:
        lines.append(lora_summary)
    lines.append(f'- Prompt: "{request.prompt}"')
    if request.negative_prompt:
        lines.append(f'- Negative prompt: "{request.negative_prompt}"')
    lines.append(f"- Dimensions: {request.width}x{request.height}")
    lines.append("")
    for index, url in enumerate(result.images, start=1):
        lines.append(f"{index}. Image URL: {url}")
    return "\n".join(lines)
