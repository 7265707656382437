"""
Webhook payload schemas - raw input from each provider.
Each source has its own model; parse_webhook_payload validates the required
fields before anything is recorded or dispatched.
"""
from dataclasses import dataclass
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: dict


class StripeEventPayload(BaseModel):
    """Stripe event envelope (data.object carries the resource)."""
    model_config = ConfigDict(extra="allow")

    source: Literal["stripe"] = "stripe"
    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    data: StripeEventData
    created: Optional[int] = None
    livemode: bool = False


class FalTrainingOutput(BaseModel):
    model_config = ConfigDict(extra="allow")

    lora_url: Optional[str] = None
    trigger_word: Optional[str] = None


class FalTrainingPayload(BaseModel):
    """fal.ai LoRA training status callback."""
    model_config = ConfigDict(extra="allow")

    source: Literal["fal"] = "fal"
    request_id: str = Field(min_length=1)
    status: str = Field(min_length=1)  # COMPLETED, FAILED
    output: Optional[FalTrainingOutput] = None
    error: Optional[str] = None
    event_type: Optional[str] = None  # provider label, kept in the payload only


class ReplicatePredictionPayload(BaseModel):
    """Replicate prediction callback."""
    model_config = ConfigDict(extra="allow")

    source: Literal["replicate"] = "replicate"
    id: str = Field(min_length=1)
    status: str = Field(min_length=1)  # starting, processing, succeeded, failed, canceled
    output: Optional[Union[list[Any], str]] = None
    error: Optional[str] = None

    def first_output_url(self) -> Optional[str]:
        if isinstance(self.output, str):
            return self.output or None
        if self.output:
            first = self.output[0]
            return first if isinstance(first, str) else None
        return None


# Dispatch keys: every callback of a source runs the same handler
FAL_EVENT_TYPE = "training_update"
REPLICATE_EVENT_TYPE = "prediction_update"

WebhookPayload = Union[StripeEventPayload, FalTrainingPayload, ReplicatePredictionPayload]

PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "stripe": StripeEventPayload,
    "fal": FalTrainingPayload,
    "replicate": ReplicatePredictionPayload,
}


@dataclass(frozen=True)
class ParsedWebhook:
    source: str
    event_type: str
    provider_event_id: Optional[str]
    payload: dict  # what gets persisted and handed to the handler


def parse_webhook_payload(source: str, data: dict) -> ParsedWebhook:
    """
    Validate a decoded body for its source.
    Raises pydantic.ValidationError for missing fields, ValueError for unknown sources.
    """
    model = PAYLOAD_MODELS.get(source)
    if model is None:
        raise ValueError(f"Unknown webhook source: {source}")
    if not isinstance(data, dict):
        raise ValueError("Webhook body must be a JSON object")

    parsed = model.model_validate({**data, "source": source})

    if isinstance(parsed, StripeEventPayload):
        return ParsedWebhook(
            source=source,
            event_type=parsed.type,
            provider_event_id=parsed.id,
            payload=data["data"]["object"],
        )
    if isinstance(parsed, FalTrainingPayload):
        return ParsedWebhook(
            source=source,
            event_type=FAL_EVENT_TYPE,
            provider_event_id=f"{parsed.request_id}:{parsed.status}",
            payload=data,
        )
    return ParsedWebhook(
        source=source,
        event_type=REPLICATE_EVENT_TYPE,
        provider_event_id=f"{parsed.id}:{parsed.status}",
        payload=data,
    )
