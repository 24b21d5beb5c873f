"""Typer-based CLI for Astria tunes and LoRA image generation."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from pydantic import ValidationError

from astria_flow.client import AstriaClient
from astria_flow.config import AstriaSettings
from astria_flow.errors import ClassifiedError, classify
from astria_flow.models import CreateTuneRequest, GenerateImageRequest, TuneImage, TuneRecord
from astria_flow.service import format_generation_summary, generate_image
from astria_flow.tunes import list_lora_tunes

app = typer.Typer(add_completion=False, help="astria-flow: Astria tunes and LoRA image generation")

T = TypeVar("T")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _echo_step(step: int, total: int, message: str) -> None:
    """Print a normalized progress step line."""
    typer.echo(f"[{step}/{total}] {message}")


def _load_settings() -> AstriaSettings:
    try:
        return AstriaSettings.from_env()
    except RuntimeError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _run(action: Callable[[AstriaClient], Awaitable[T]]) -> T:
    """Run one async action against a fresh client, reporting classified errors."""
    settings = _load_settings()

    async def _with_client() -> T:
        async with AstriaClient(settings) as client:
            return await action(client)

    try:
        return asyncio.run(_with_client())
    except (ClassifiedError, ValidationError) as exc:
        error = classify(exc)
        typer.echo(f"Error [{error.kind.value}]: {error.to_user_message()}", err=True)
        raise typer.Exit(code=1) from exc


def _tune_row(tune: TuneRecord) -> dict[str, Any]:
    return {
        "id": tune.id,
        "title": tune.title,
        "name": tune.name,
        "status": tune.status,
        "model_type": tune.model_type or "N/A",
        "branch": tune.branch or "N/A",
        "token": tune.token or "None",
        "created_at": tune.created_at.date().isoformat() if tune.created_at else "N/A",
    }


def _parse_lora(value: str) -> dict[str, Any]:
    """Parse ``ID`` or ``ID:WEIGHT`` into a LoRA reference payload."""
    tune_id, _, weight = value.partition(":")
    try:
        ref: dict[str, Any] = {"tune_id": int(tune_id)}
        if weight:
            ref["weight"] = float(weight)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid --lora value '{value}', expected ID or ID:WEIGHT") from exc
    return ref


@app.command("doctor")
def doctor() -> None:
    """Print local environment diagnostics used by the CLI."""
    api_key = AstriaSettings.lookup_api_key()
    typer.echo(f"ASTRIA_API_KEY set: {bool(api_key)}")
    if api_key:
        settings = AstriaSettings.from_env()
        typer.echo(f"Base URL: {settings.base_url}")
        typer.echo(f"Models: {', '.join(settings.available_models)}")


@app.command("tunes")
def tunes(
    offset: int | None = typer.Option(None, min=0, help="Starting offset (page size is 20)"),
    lora_only: bool = typer.Option(False, "--lora-only", help="Only show trained LoRA tunes"),
) -> None:
    """List tunes on the account."""

    async def action(client: AstriaClient) -> list[TuneRecord]:
        if lora_only:
            return await list_lora_tunes(client, offset=offset)
        return await client.list_tunes(offset=offset)

    found = _run(action)
    typer.echo(f"Found {len(found)} tunes:\n")
    typer.echo(json.dumps([_tune_row(tune) for tune in found], indent=2))


@app.command("tune")
def tune(tune_id: int = typer.Argument(..., help="Tune ID")) -> None:
    """Show one tune."""
    record = _run(lambda client: client.retrieve_tune(tune_id))
    if record is None:
        raise typer.BadParameter(f"Tune not found: {tune_id}")
    payload = _tune_row(record)
    payload.update(
        {
            "trained_at": record.trained_at.isoformat() if record.trained_at else None,
            "expires_at": record.expires_at.isoformat() if record.expires_at else None,
            "image_count": len(record.orig_images),
        }
    )
    typer.echo(json.dumps(payload, indent=2))


@app.command("create-tune")
def create_tune(
    title: str = typer.Argument(..., help="Unique title for the tune"),
    name: str = typer.Argument(..., help="Subject class name (man, woman, cat, dog, boy, girl, style)"),
    image_url: list[str] = typer.Option([], "--image-url", help="Training image URL (repeatable)"),
    image_file: list[Path] = typer.Option([], "--image-file", exists=True, dir_okay=False, help="Training image file"),
    preset: str = typer.Option("flux-lora-portrait", help="Flux training preset"),
    branch: str | None = typer.Option(None, help="Model branch (sd15, sdxl1, fast)"),
    callback: str | None = typer.Option(None, help="Webhook URL called when training finishes"),
) -> None:
    """Start training a new tune from at least four images."""
    try:
        request = CreateTuneRequest(
            title=title,
            name=name,
            image_urls=image_url,
            images=[TuneImage(filename=path.name, content=path.read_bytes()) for path in image_file],
            preset=preset,
            branch=branch,
            callback=callback,
        )
    except ValidationError as exc:
        raise typer.BadParameter(classify(exc).message) from exc

    record = _run(lambda client: client.create_tune(request))
    typer.echo(json.dumps(record.model_dump(mode="json"), indent=2))


@app.command("generate")
def generate(
    prompt: str = typer.Argument(..., help="Text description of the desired image"),
    lora: list[str] = typer.Option([], "--lora", help="LoRA tune as ID or ID:WEIGHT (repeatable)"),
    model: str = typer.Option("flux", help="Model to use"),
    negative_prompt: str | None = typer.Option(None, help="What to avoid (ignored by Flux)"),
    width: int = typer.Option(1024, min=512, max=2048),
    height: int = typer.Option(1024, min=512, max=2048),
    num_images: int = typer.Option(1, min=1, max=4),
    guidance_scale: float | None = typer.Option(None, min=1, max=20),
    seed: int | None = typer.Option(None, help="Random seed"),
    timeout: float | None = typer.Option(None, help="Overall deadline in seconds"),
) -> None:
    """Generate images, applying LoRA tunes when given."""
    try:
        request = GenerateImageRequest(
            prompt=prompt,
            model=model,
            lora_tunes=[_parse_lora(value) for value in lora],
            negative_prompt=negative_prompt,
            width=width,
            height=height,
            num_images=num_images,
            guidance_scale=guidance_scale,
            seed=seed,
        )
    except ValidationError as exc:
        raise typer.BadParameter(classify(exc).message) from exc

    _echo_step(1, 2, "Validating LoRAs and generating images")

    async def action(client: AstriaClient):
        return await generate_image(client, request, client.settings, timeout=timeout)

    result = _run(action)
    _echo_step(2, 2, "Done")
    typer.echo(format_generation_summary(request, result))


@app.command("prompt")
def prompt(
    tune_id: int = typer.Argument(..., help="Tune ID the prompt belongs to"),
    prompt_id: int = typer.Argument(..., help="Prompt ID"),
) -> None:
    """Show the state of one generation job."""
    job = _run(lambda client: client.retrieve_prompt(tune_id, prompt_id))
    typer.echo(f"Prompt ID: {job.id}")
    typer.echo(f"Tune ID: {tune_id}")
    typer.echo(f"Text: {job.text or 'N/A'}")
    typer.echo(f"Status: {job.state.value}")
    typer.echo(f"Images: {len(job.images)}")
    if job.error:
        typer.echo(f"Error: {job.error}")
    for index, url in enumerate(job.images, start=1):
        typer.echo(f"{index}. {url}")


if __name__ == "__main__":
    app()
