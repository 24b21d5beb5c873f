from __future__ import annotations

import json

import pytest

from astria_flow.errors import ClassifiedError, ErrorKind
from astria_flow.models import GenerateImageRequest
from astria_flow.service import format_generation_summary, generate_image

PROMPTS = "/tunes/1504944/prompts"


@pytest.mark.anyio
async def test_generate_image_given_lora_when_generated_then_composed_text_is_submitted(
    client, fake_api, make_tune, settings
) -> None:
    # Given
    fake_api.add("GET", "/tunes/1", make_tune(1, title="Ink", token="ohwx"))
    fake_api.add("POST", PROMPTS, {"id": 42, "images": []})
    fake_api.add("GET", f"{PROMPTS}/42", {"id": 42, "images": ["https://x/1.png", "https://x/2.png"]})
    request = GenerateImageRequest(prompt="a cat", lora_tunes=[{"tune_id": 1, "weight": 0.5}], num_images=2)

    # When
    result = await generate_image(client, request, settings)

    # Then
    assert result.images == ["https://x/1.png", "https://x/2.png"]
    assert result.composed.text == "<lora:1:0.5> ohwx a cat"
    posted = json.loads(next(r for r in fake_api.requests if r.method == "POST").content)
    assert posted["prompt"]["text"] == "<lora:1:0.5> ohwx a cat"
    assert posted["prompt"]["num_images"] == 2


@pytest.mark.anyio
async def test_generate_image_given_failed_job_when_generated_then_api_error_is_raised(
    client, fake_api, settings
) -> None:
    # Given
    fake_api.add("POST", PROMPTS, {"id": 42, "images": [], "error": "NSFW content detected"})
    request = GenerateImageRequest(prompt="a cat")

    # When
    with pytest.raises(ClassifiedError) as excinfo:
        await generate_image(client, request, settings)

    # Then
    assert excinfo.value.kind is ErrorKind.API_ERROR
    assert excinfo.value.message == "Image generation failed: NSFW content detected"
    assert excinfo.value.context == {"job_id": 42}


@pytest.mark.anyio
async def test_generate_image_given_unknown_model_when_generated_then_rejected_without_requests(
    client, fake_api, settings
) -> None:
    # Given
    request = GenerateImageRequest(prompt="a cat", model="sd15")

    # When
    with pytest.raises(ClassifiedError) as excinfo:
        await generate_image(client, request, settings)

    # Then
    assert excinfo.value.kind is ErrorKind.VALIDATION
    assert excinfo.value.details == {"available_models": ["flux"]}
    assert fake_api.requests == []


@pytest.mark.anyio
async def test_format_generation_summary_given_result_when_formatted_then_no_extra_tune_fetch_happens(
    client, fake_api, make_tune, settings
) -> None:
    # Given
    fake_api.add("GET", "/tunes/1", make_tune(1, title="Ink", token="ohwx"))
    fake_api.add("POST", PROMPTS, {"id": 42, "images": ["https://x/1.png"]})
    request = GenerateImageRequest(prompt="a cat", lora_tunes=[{"tune_id": 1}], negative_prompt="blurry")
    result = await generate_image(client, request, settings)

    # When
    summary = format_generation_summary(request, result)

    # Then
    assert summary.startswith("Image generated successfully!")
    assert "- Model: flux" in summary
    assert "ID 1: Ink (style type, weight: 1.0)" in summary
    assert '- Negative prompt: "blurry"' in summary
    assert "1. Image URL: https://x/1.png" in summary
    assert fake_api.count("GET", "/tunes/1") == 1
