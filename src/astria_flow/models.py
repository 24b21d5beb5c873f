"""Pydantic models shared across the client, composer, and polling layers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from astria_flow.config import LORA_MODEL_TYPE, MAX_TUNE_IMAGES, MIN_TUNE_IMAGES

SubjectType = Literal["man", "woman", "cat", "dog", "boy", "girl", "style"]
TunePreset = Literal["flux-lora-focus", "flux-lora-portrait", "flux-lora-fast"]
TuneBranch = Literal["sd15", "sdxl1", "fast"]


class TuneRecord(BaseModel):
    """A fine-tuned model adapter as reported by the service."""

    id: int
    title: str | None = None
    name: str | None = None
    model_type: str | None = None
    trained_at: datetime | None = None
    started_training_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None
    token: str | None = None
    branch: str | None = None
    base_tune_id: int | None = None
    orig_images: list[str] = Field(default_factory=list)

    @property
    def is_usable(self) -> bool:
        return self.model_type == LORA_MODEL_TYPE and self.trained_at is not None

    @property
    def status(self) -> str:
        if self.trained_at:
            return "Trained"
        if self.started_training_at:
            return "Training"
        return "Queued"


class LoraReference(BaseModel):
    """A (tune id, weight) pair to blend into one generation request."""

    tune_id: int = Field(gt=0)
    weight: float = Field(default=1.0, ge=0.1, le=1.0)

    @property
    def tag(self) -> str:
        return f"<lora:{self.tune_id}:{self.weight}>"


class JobState(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    """Read-only projection of one generation request (a "prompt" upstream)."""

    id: int
    text: str | None = None
    images: list[str] = Field(default_factory=list)
    error: str | None = None
    status: str | None = None
    tune_id: int | None = None
    created_at: datetime | None = None

    @field_validator("images", mode="before")
    @classmethod
    def _null_images_mean_processing(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def state(self) -> JobState:
        if self.images:
            return JobState.COMPLETED
        if self.error:
            return JobState.FAILED
        return JobState.PROCESSING


class PromptParams(BaseModel):
    """Generation knobs sent under the ``prompt`` key."""

    text: str = Field(min_length=1)
    super_resolution: bool = True
    inpaint_faces: bool = True
    negative_prompt: str | None = None
    width: int = Field(default=1024, ge=512, le=2048)
    height: int = Field(default=1024, ge=512, le=2048)
    num_images: int = Field(default=1, ge=1, le=4)
    guidance_scale: float | None = Field(default=None, ge=1, le=20)
    seed: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"prompt": self.model_dump(exclude_none=True)}


class GenerateImageRequest(BaseModel):
    """Caller-facing request for one image generation run."""

    prompt: str = Field(min_length=1)
    model: str = "flux"
    lora_tunes: list[LoraReference] = Field(default_factory=list)
    negative_prompt: str | None = None
    width: int = Field(default=1024, ge=512, le=2048)
    height: int = Field(default=1024, ge=512, le=2048)
    num_images: int = Field(default=1, ge=1, le=4)
    super_resolution: bool = True
    inpaint_faces: bool = True
    guidance_scale: float | None = Field(default=None, ge=1, le=20)
    seed: int | None = None

    def prompt_params(self, text: str) -> PromptParams:
        return PromptParams(
            text=text,
            super_resolution=self.super_resolution,
            inpaint_faces=self.inpaint_faces,
            negative_prompt=self.negative_prompt,
            width=self.width,
            height=self.height,
            num_images=self.num_images,
            guidance_scale=self.guidance_scale,
            seed=self.seed,
        )


class TuneImage(BaseModel):
    """Inline training image uploaded as a multipart file part."""

    filename: str
    content: bytes
    content_type: str = "image/jpeg"


class CreateTuneRequest(BaseModel):
    """Parameters for training a new tune."""

    title: str = Field(min_length=1)
    name: SubjectType
    image_urls: list[str] = Field(default_factory=list)
    images: list[TuneImage] = Field(default_factory=list)
    preset: TunePreset = "flux-lora-portrait"
    callback: str | None = None
    characteristics: dict[str, str] = Field(default_factory=dict)
    branch: TuneBranch | None = None

    @model_validator(mode="after")
    def _check_image_count(self) -> CreateTuneRequest:
        total = len(self.image_urls) + len(self.images)
        if total < MIN_TUNE_IMAGES:
            raise ValueError(f"At least {MIN_TUNE_IMAGES} images must be provided via image_urls or images")
        if total > MAX_TUNE_IMAGES:
            raise ValueError(f"At most {MAX_TUNE_IMAGES} images can be provided")
        return self
