"""
HTTP gateway for the marketplace ledger.

Every mutating route takes the caller identity from the `X-Principal` header
and forwards it to the ledger as the authenticated principal. Ledger errors
are mapped to status codes by kind; the body is `{"error": kind, "detail": msg}`.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from ..ledger import Ledger
from ..ledger.errors import LedgerError
from .sse import event_stream

STATUS_BY_KIND = {
    "not_found": 404,
    "unauthorized": 403,
    "invalid_argument": 400,
    "inactive": 409,
    "exhausted": 409,
    "expired": 410,
    "insufficient_funds": 402,
    "transfer_rejected": 502,
}


class ServiceCreate(BaseModel):
    name: str
    description: str = ""
    price_per_call: int


class SubscriptionCreate(BaseModel):
    call_count: int
    duration_days: int
    paid_amount: int


class FeeUpdate(BaseModel):
    fee_bps: int


class OwnerUpdate(BaseModel):
    new_owner: str


def principal(x_principal: Optional[str] = Header(default=None)) -> str:
    if not x_principal or not x_principal.strip():
        raise HTTPException(status_code=401, detail="X-Principal header required")
    return x_principal.strip()


def create_app(ledger: Ledger) -> FastAPI:
    app = FastAPI(title="apimarket ledger gateway")
    app.state.ledger = ledger

    @app.exception_handler(LedgerError)
    async def _ledger_error(request: Request, exc: LedgerError):
        return JSONResponse(
            status_code=STATUS_BY_KIND.get(exc.kind, 400),
            content={"error": exc.kind, "detail": exc.message},
        )

    @app.post("/services", status_code=201)
    def register_service(body: ServiceCreate, caller: str = Depends(principal)):
        service_id = ledger.register_service(body.name, body.description, body.price_per_call, caller)
        return {"service_id": service_id}

    @app.get("/services/{service_id}")
    def get_service(service_id: int):
        return asdict(ledger.get_service(service_id))

    @app.post("/services/{service_id}/subscriptions", status_code=201)
    def subscribe(service_id: int, body: SubscriptionCreate, caller: str = Depends(principal)):
        subscription_id = ledger.subscribe_to_service(
            service_id, body.call_count, body.duration_days, caller, body.paid_amount
        )
        return {"subscription_id": subscription_id}

    @app.post("/services/{service_id}/deactivate")
    def deactivate(service_id: int, caller: str = Depends(principal)):
        ledger.deactivate_service(service_id, caller)
        return {"service_id": service_id, "is_active": False}

    @app.get("/subscriptions/{subscription_id}")
    def get_subscription(subscription_id: int):
        return asdict(ledger.get_subscription(subscription_id))

    @app.post("/subscriptions/{subscription_id}/calls")
    def make_call(subscription_id: int, caller: str = Depends(principal)):
        return {"calls_remaining": ledger.make_api_call(subscription_id, caller)}

    @app.get("/providers/{provider}/services")
    def provider_services(provider: str):
        return {"service_ids": ledger.get_provider_services(provider)}

    @app.get("/consumers/{consumer}/subscriptions")
    def consumer_subscriptions(consumer: str):
        return {"subscription_ids": ledger.get_consumer_subscriptions(consumer)}

    @app.get("/platform")
    def platform():
        return {"owner": ledger.owner, "fee_bps": ledger.platform_fee_bps, "balance": ledger.balance}

    @app.put("/platform/fee")
    def update_fee(body: FeeUpdate, caller: str = Depends(principal)):
        ledger.update_platform_fee(body.fee_bps, caller)
        return {"fee_bps": ledger.platform_fee_bps}

    @app.post("/platform/withdraw")
    def withdraw(caller: str = Depends(principal)):
        return {"amount": ledger.withdraw_platform_fees(caller)}

    @app.put("/platform/owner")
    def transfer_owner(body: OwnerUpdate, caller: str = Depends(principal)):
        ledger.transfer_ownership(body.new_owner, caller)
        return {"owner": ledger.owner}

    @app.get("/events")
    async def sse(types: Optional[str] = None, service_ids: Optional[str] = None):
        ty = types.split(",") if types else None
        ids = [int(s) for s in service_ids.split(",") if s.strip()] if service_ids else None
        return StreamingResponse(event_stream(ty, ids), media_type="text/event-stream")

    return app
