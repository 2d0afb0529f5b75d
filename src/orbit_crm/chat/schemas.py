"""Pydantic schemas for the AI chat endpoints."""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from orbit_crm.pricing import MODELS
from orbit_crm.pricing.tiers import DEFAULT_MODEL


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: list[ChatMessageIn] = Field(..., min_length=1)
    model: str = DEFAULT_MODEL
    conversation_id: Optional[str] = Field(default=None, max_length=64, alias="conversationId")

    model_config = {"populate_by_name": True}

    @field_validator("model")
    @classmethod
    def known_model(cls, v: str) -> str:
        if v not in MODELS:
            raise ValueError(f"Unknown model: {v}")
        return v


class ModelInfo(BaseModel):
    id: str
    name: str
    provider: str
    minimum_tier: str
    token_multiplier: float
    description: str

    model_config = {"from_attributes": True}


class AvailableModelsResponse(BaseModel):
    tier: str
    models: list[ModelInfo]
