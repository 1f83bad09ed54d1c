import pytest

from apimarket.ledger import Ledger
from apimarket.ledger.errors import InactiveResource, InsufficientFunds, InvalidArgument, NotFound
from apimarket.ledger.model import SECONDS_PER_DAY

CONSUMER = "0x00000000000000000000000000000000000000c1"
OWNER = "0x00000000000000000000000000000000000000aa"
PROVIDER = "0x00000000000000000000000000000000000000b1"
STRANGER = "0x00000000000000000000000000000000000000d1"
T0 = 1_700_000_000


def test_ledger_requires_valid_owner():
    with pytest.raises(InvalidArgument):
        Ledger(owner="")
    with pytest.raises(InvalidArgument):
        Ledger(owner="0x0000000000000000000000000000000000000000")
    with pytest.raises(InvalidArgument):
        Ledger(owner=OWNER, platform_fee_bps=1001)


def test_register_service_ids_strictly_increase(ledger):
    ids = [ledger.register_service(f"svc{i}", "d", 10 + i, PROVIDER) for i in range(5)]
    assert ids == sorted(set(ids))
    assert ids[0] == 1
    assert ledger.get_provider_services(PROVIDER) == ids

    svc = ledger.get_service(ids[2])
    assert svc.provider == PROVIDER
    assert svc.price_per_call == 12
    assert svc.total_calls == 0
    assert svc.is_active is True
    assert svc.created_at == T0


def test_register_service_rejects_bad_input(ledger):
    with pytest.raises(InvalidArgument):
        ledger.register_service("", "d", 10, PROVIDER)
    with pytest.raises(InvalidArgument):
        ledger.register_service("   ", "d", 10, PROVIDER)
    with pytest.raises(InvalidArgument):
        ledger.register_service("svc", "d", 0, PROVIDER)
    assert ledger.get_provider_services(PROVIDER) == []
    assert ledger.events == []
    # failed attempts do not burn ids
    assert ledger.register_service("svc", "d", 1, PROVIDER) == 1


def test_subscribe_scenario_fee_split(ledger, treasury):
    service_id = ledger.register_service("weather", "forecasts", 100, PROVIDER)
    sub_id = ledger.subscribe_to_service(service_id, 10, 30, CONSUMER, 1000)

    assert treasury.balance_of(PROVIDER) == 975
    assert treasury.balance_of(CONSUMER) == 0
    assert ledger.balance == 25

    sub = ledger.get_subscription(sub_id)
    assert sub.consumer == CONSUMER
    assert sub.service_id == service_id
    assert sub.calls_remaining == 10
    assert sub.is_active is True
    assert sub.expires_at == T0 + 30 * SECONDS_PER_DAY
    assert ledger.get_consumer_subscriptions(CONSUMER) == [sub_id]


def test_subscribe_overpayment_refunds_excess(ledger, treasury):
    service_id = ledger.register_service("geo", "d", 333, PROVIDER)
    ledger.subscribe_to_service(service_id, 3, 1, CONSUMER, 1500)
    total = 999
    fee = total * 250 // 10_000
    assert fee == 24
    assert treasury.balance_of(PROVIDER) == total - fee
    assert treasury.balance_of(CONSUMER) == 1500 - total
    assert ledger.balance == fee


def test_subscribe_underpayment_leaves_nothing_behind(ledger, treasury):
    service_id = ledger.register_service("geo", "d", 100, PROVIDER)
    with pytest.raises(InsufficientFunds):
        ledger.subscribe_to_service(service_id, 10, 30, CONSUMER, 999)
    assert ledger.get_consumer_subscriptions(CONSUMER) == []
    assert ledger.state.subscriptions == {}
    assert ledger.state.next_subscription_id == 1
    assert treasury.balance_of(PROVIDER) == 0
    assert ledger.balance == 0


def test_subscribe_precondition_errors(ledger):
    with pytest.raises(NotFound):
        ledger.subscribe_to_service(42, 1, 1, CONSUMER, 100)
    service_id = ledger.register_service("geo", "d", 100, PROVIDER)
    with pytest.raises(InvalidArgument):
        ledger.subscribe_to_service(service_id, 0, 1, CONSUMER, 100)
    with pytest.raises(InvalidArgument):
        ledger.subscribe_to_service(service_id, 1, 0, CONSUMER, 100)


def test_deactivation_is_one_way_and_blocks_new_subscriptions(ledger):
    service_id = ledger.register_service("geo", "d", 100, PROVIDER)
    ledger.deactivate_service(service_id, PROVIDER)
    assert ledger.get_service(service_id).is_active is False
    with pytest.raises(InactiveResource):
        ledger.subscribe_to_service(service_id, 1, 1, CONSUMER, 100)
    ledger.deactivate_service(service_id, PROVIDER)
    assert ledger.get_service(service_id).is_active is False


def test_deactivate_requires_provider(ledger):
    from apimarket.ledger.errors import Unauthorized

    service_id = ledger.register_service("geo", "d", 100, PROVIDER)
    with pytest.raises(Unauthorized):
        ledger.deactivate_service(service_id, STRANGER)
    with pytest.raises(NotFound):
        ledger.deactivate_service(99, PROVIDER)
    assert ledger.get_service(service_id).is_active is True


def test_read_accessors_return_copies(ledger):
    service_id = ledger.register_service("geo", "d", 100, PROVIDER)
    svc = ledger.get_service(service_id)
    svc.is_active = False
    ids = ledger.get_provider_services(PROVIDER)
    ids.append(99)
    assert ledger.get_service(service_id).is_active is True
    assert ledger.get_provider_services(PROVIDER) == [service_id]
    with pytest.raises(NotFound):
        ledger.get_subscription(1)
    assert ledger.get_consumer_subscriptions(OWNER) == []


def test_quote_uses_current_fee(ledger):
    service_id = ledger.register_service("geo", "d", 100, PROVIDER)
    q = ledger.quote(service_id, 10)
    assert (q.total_cost, q.platform_fee, q.provider_payment) == (1000, 25, 975)
    with pytest.raises(InvalidArgument):
        ledger.quote(service_id, 0)


def test_non_integer_amounts_rejected(ledger, treasury):
    with pytest.raises(InvalidArgument):
        ledger.register_service("geo", "d", 1.9, PROVIDER)
    with pytest.raises(InvalidArgument):
        ledger.register_service("geo", "d", True, PROVIDER)
    assert ledger.state.services == {}
    assert ledger.state.next_service_id == 1

    service_id = ledger.register_service("geo", "d", 100, PROVIDER)
    with pytest.raises(InvalidArgument):
        ledger.subscribe_to_service(service_id, 2.5, 30, CONSUMER, 1000)
    with pytest.raises(InvalidArgument):
        ledger.subscribe_to_service(service_id, 10, 30.0, CONSUMER, 1000)
    with pytest.raises(InvalidArgument):
        ledger.subscribe_to_service(service_id, 10, 30, CONSUMER, 1000.5)
    assert ledger.state.subscriptions == {}
    assert treasury.balance_of(PROVIDER) == 0
    assert ledger.balance == 0

    with pytest.raises(InvalidArgument):
        ledger.update_platform_fee(2.5, OWNER)
    assert ledger.platform_fee_bps == 250
    with pytest.raises(InvalidArgument):
        ledger.quote(service_id, 1.5)
