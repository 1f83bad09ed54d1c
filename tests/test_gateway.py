import pytest
from fastapi.testclient import TestClient

from apimarket.gateway import create_app
from apimarket.gateway.sse import match_filters

CONSUMER = "0x00000000000000000000000000000000000000c1"
OWNER = "0x00000000000000000000000000000000000000aa"
PROVIDER = "0x00000000000000000000000000000000000000b1"
STRANGER = "0x00000000000000000000000000000000000000d1"


@pytest.fixture
def client(ledger):
    return TestClient(create_app(ledger))


def _as(identity):
    return {"X-Principal": identity}


def test_marketplace_flow_over_http(client, treasury):
    r = client.post("/services", json={"name": "geo", "description": "d", "price_per_call": 100}, headers=_as(PROVIDER))
    assert r.status_code == 201
    service_id = r.json()["service_id"]

    r = client.post(
        f"/services/{service_id}/subscriptions",
        json={"call_count": 2, "duration_days": 30, "paid_amount": 250},
        headers=_as(CONSUMER),
    )
    assert r.status_code == 201
    sub_id = r.json()["subscription_id"]
    assert treasury.balance_of(CONSUMER) == 50

    assert client.post(f"/subscriptions/{sub_id}/calls", headers=_as(CONSUMER)).json() == {"calls_remaining": 1}
    assert client.post(f"/subscriptions/{sub_id}/calls", headers=_as(CONSUMER)).json() == {"calls_remaining": 0}
    r = client.post(f"/subscriptions/{sub_id}/calls", headers=_as(CONSUMER))
    assert r.status_code == 409
    assert r.json()["error"] == "exhausted"

    assert client.get(f"/subscriptions/{sub_id}").json()["is_active"] is False
    assert client.get(f"/services/{service_id}").json()["total_calls"] == 2
    assert client.get(f"/providers/{PROVIDER}/services").json() == {"service_ids": [service_id]}
    assert client.get(f"/consumers/{CONSUMER}/subscriptions").json() == {"subscription_ids": [sub_id]}

    assert client.get("/platform").json() == {"owner": OWNER, "fee_bps": 250, "balance": 5}
    assert client.post("/platform/withdraw", headers=_as(OWNER)).json() == {"amount": 5}


def test_error_mapping(client):
    assert client.post("/services", json={"name": "geo", "price_per_call": 1}).status_code == 401
    assert client.get("/services/9").status_code == 404
    r = client.post("/services", json={"name": "", "price_per_call": 1}, headers=_as(PROVIDER))
    assert r.status_code == 400
    assert r.json() == {"error": "invalid_argument", "detail": "service name must not be empty"}

    r = client.put("/platform/fee", json={"fee_bps": 10}, headers=_as(STRANGER))
    assert r.status_code == 403
    r = client.post("/platform/withdraw", headers=_as(OWNER))
    assert r.status_code == 402

    client.post("/services", json={"name": "geo", "price_per_call": 100}, headers=_as(PROVIDER))
    r = client.post(
        "/services/1/subscriptions",
        json={"call_count": 2, "duration_days": 1, "paid_amount": 10},
        headers=_as(CONSUMER),
    )
    assert r.status_code == 402
    client.post("/services/1/deactivate", headers=_as(PROVIDER))
    r = client.post(
        "/services/1/subscriptions",
        json={"call_count": 2, "duration_days": 1, "paid_amount": 200},
        headers=_as(CONSUMER),
    )
    assert r.status_code == 409
    assert r.json()["error"] == "inactive"


def test_owner_and_fee_routes(client, ledger):
    assert client.put("/platform/fee", json={"fee_bps": 1001}, headers=_as(OWNER)).status_code == 400
    assert client.put("/platform/fee", json={"fee_bps": 500}, headers=_as(OWNER)).json() == {"fee_bps": 500}
    assert client.put("/platform/owner", json={"new_owner": STRANGER}, headers=_as(OWNER)).json() == {"owner": STRANGER}
    assert ledger.owner == STRANGER


def test_sse_filters():
    js = '{"event":{"event_type":"api_call_made","service_id":3}}'
    assert match_filters(js, None, None)
    assert match_filters(js, ["api_call_made"], [3])
    assert not match_filters(js, ["service_registered"], None)
    assert not match_filters(js, None, [4])
    assert not match_filters("not json", None, None)
