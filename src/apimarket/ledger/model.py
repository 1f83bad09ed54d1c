from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

SCHEMA_VERSION = 1
SECONDS_PER_DAY = 86_400
BPS_DENOMINATOR = 10_000
MAX_PLATFORM_FEE_BPS = 1_000
DEFAULT_PLATFORM_FEE_BPS = 250
NULL_IDENTITY = "0x0000000000000000000000000000000000000000"


def is_null_identity(identity: str | None) -> bool:
    if identity is None:
        return True
    value = str(identity).strip()
    return not value or value.lower() == NULL_IDENTITY


@dataclass
class Service:
    id: int
    provider: str
    name: str
    description: str
    price_per_call: int
    total_calls: int
    is_active: bool
    created_at: int


@dataclass
class Subscription:
    id: int
    consumer: str
    service_id: int
    calls_remaining: int
    expires_at: int
    is_active: bool


@dataclass
class Quote:
    total_cost: int
    platform_fee: int
    provider_payment: int


@dataclass
class LedgerState:
    owner: str
    platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS
    services: Dict[int, Service] = field(default_factory=dict)
    subscriptions: Dict[int, Subscription] = field(default_factory=dict)
    provider_services: Dict[str, List[int]] = field(default_factory=dict)
    consumer_subscriptions: Dict[str, List[int]] = field(default_factory=dict)
    next_service_id: int = 1
    next_subscription_id: int = 1
    # platform fees held until the owner withdraws them
    balance: int = 0
    schema_version: int = SCHEMA_VERSION


def split_fee(total_cost: int, fee_bps: int) -> Quote:
    platform_fee = (total_cost * fee_bps) // BPS_DENOMINATOR
    return Quote(total_cost=total_cost, platform_fee=platform_fee, provider_payment=total_cost - platform_fee)
