from __future__ import annotations

from typing import Literal, Union
from pydantic import BaseModel, Field


# ---- Base ----

class BaseEvent(BaseModel):
    event_type: str
    ts: int


# ---- Event types ----

class ServiceRegistered(BaseEvent):
    event_type: Literal["service_registered"] = "service_registered"
    service_id: int
    provider: str
    name: str
    price_per_call: int


class ServiceSubscribed(BaseEvent):
    event_type: Literal["service_subscribed"] = "service_subscribed"
    subscription_id: int
    consumer: str
    service_id: int
    call_count: int


class APICallMade(BaseEvent):
    event_type: Literal["api_call_made"] = "api_call_made"
    subscription_id: int
    consumer: str
    service_id: int
    calls_remaining: int


class ServiceDeactivated(BaseEvent):
    event_type: Literal["service_deactivated"] = "service_deactivated"
    service_id: int


class PlatformFeeUpdated(BaseEvent):
    event_type: Literal["platform_fee_updated"] = "platform_fee_updated"
    old_fee_bps: int
    new_fee_bps: int


class PlatformFeesWithdrawn(BaseEvent):
    event_type: Literal["platform_fees_withdrawn"] = "platform_fees_withdrawn"
    owner: str
    amount: int


class OwnershipTransferred(BaseEvent):
    event_type: Literal["ownership_transferred"] = "ownership_transferred"
    previous_owner: str
    new_owner: str


AnyEvent = Union[
    ServiceRegistered,
    ServiceSubscribed,
    APICallMade,
    ServiceDeactivated,
    PlatformFeeUpdated,
    PlatformFeesWithdrawn,
    OwnershipTransferred,
]


# ---- Envelope ----

class EventEnvelope(BaseModel):
    schema_version: str = "v1"
    correlation_id: str
    sequence: int = 0
    event: AnyEvent = Field(discriminator="event_type")
