from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import (
    Exhausted,
    Expired,
    InactiveResource,
    InsufficientFunds,
    InvalidArgument,
    LedgerError,
    NotFound,
    Unauthorized,
)
from .model import (
    DEFAULT_PLATFORM_FEE_BPS,
    MAX_PLATFORM_FEE_BPS,
    SECONDS_PER_DAY,
    LedgerState,
    Quote,
    Service,
    Subscription,
    is_null_identity,
    split_fee,
)
from .treasury import Treasury
from ..events.schema import (
    APICallMade,
    AnyEvent,
    EventEnvelope,
    OwnershipTransferred,
    PlatformFeesWithdrawn,
    PlatformFeeUpdated,
    ServiceDeactivated,
    ServiceRegistered,
    ServiceSubscribed,
)
from ..metrics.market import (
    get_api_calls_total,
    get_platform_fees_retained_total,
    get_platform_fees_withdrawn_total,
    get_provider_payments_total,
    get_refunds_total,
    get_services_registered_total,
    get_subscriptions_total,
    record_operation,
    record_rejection,
    set_retained_balance,
)

log = logging.getLogger("apimarket.ledger")

Publisher = Callable[[EventEnvelope], None]


def _whole(value: Any, name: str) -> int:
    # amounts are integer currency units; floats would be silently truncated
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{name} must be an integer, got {value!r}")
    return value


class _Tx:
    """Undo log for one ledger operation.

    Mutations are applied to the live state through `set`/`insert`/`append`
    and credits through `transfer`; each records how to reverse itself, so a
    rollback only touches what the operation touched.
    """

    def __init__(self, state: LedgerState, treasury: Treasury, now: int):
        self.state = state
        self.treasury = treasury
        self.now = now
        self.pending: List[tuple] = []
        self._undo: List[Callable[[], None]] = []

    def set(self, obj: Any, attr: str, value: Any) -> None:
        old = getattr(obj, attr)
        self._undo.append(lambda: setattr(obj, attr, old))
        setattr(obj, attr, value)

    def insert(self, table: Dict, key: Any, value: Any) -> None:
        self._undo.append(lambda: table.pop(key, None))
        table[key] = value

    def append(self, index: Dict[str, List[int]], key: str, item: int) -> None:
        ids = index.get(key)
        if ids is None:
            index[key] = [item]
            self._undo.append(lambda: index.pop(key, None))
        else:
            ids.append(item)
            self._undo.append(ids.pop)

    def transfer(self, recipient: str, amount: int) -> None:
        self.treasury.transfer(recipient, amount)
        if amount > 0:
            self._undo.append(lambda: self.treasury.revert(recipient, amount))

    def emit(self, correlation_id: str, event: AnyEvent) -> None:
        self.pending.append((correlation_id, event))

    def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()
        self.pending.clear()


class Ledger:
    """Marketplace ledger: services, prepaid subscriptions and metered calls.

    All mutating operations take the caller identity explicitly and run inside
    `_transaction`, which holds the ledger lock, logs every mutation and
    credit, and replays that log backwards if any step fails. Notifications
    are numbered and appended to `events` under the lock, then handed to the
    publisher once the lock is released.
    """

    def __init__(
        self,
        owner: Optional[str] = None,
        platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS,
        treasury: Optional[Treasury] = None,
        clock: Optional[Callable[[], int]] = None,
        publisher: Optional[Publisher] = None,
        state: Optional[LedgerState] = None,
    ):
        if state is None:
            if is_null_identity(owner):
                raise InvalidArgument("ledger owner must be a valid identity")
            if not 0 <= _whole(platform_fee_bps, "platform fee") <= MAX_PLATFORM_FEE_BPS:
                raise InvalidArgument(f"platform fee {platform_fee_bps} bps exceeds {MAX_PLATFORM_FEE_BPS}")
            state = LedgerState(owner=str(owner), platform_fee_bps=platform_fee_bps)
        self.state = state
        self.treasury = treasury or Treasury()
        self.clock = clock or (lambda: int(time.time()))
        self.publisher = publisher
        self.events: List[EventEnvelope] = []
        self._sequence = 0
        self._lock = threading.RLock()
        set_retained_balance(self.state.balance)

    # ---- transaction plumbing ----

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[_Tx]:
        with self._lock:
            tx = _Tx(self.state, self.treasury, int(self.clock()))
            try:
                yield tx
            except LedgerError as e:
                tx.rollback()
                record_rejection(operation, e.kind)
                log.warning(f"{operation} rejected ({e.kind}): {e.message}")
                raise
            except Exception:
                tx.rollback()
                log.exception(f"{operation} failed; state reverted")
                raise
            record_operation(operation)
            set_retained_balance(self.state.balance)
            committed = self._append_events(tx)
        self._publish(committed)

    def _append_events(self, tx: _Tx) -> List[EventEnvelope]:
        committed = []
        for correlation_id, event in tx.pending:
            self._sequence += 1
            env = EventEnvelope(correlation_id=correlation_id, sequence=self._sequence, event=event)
            self.events.append(env)
            committed.append(env)
        return committed

    def _publish(self, committed: List[EventEnvelope]) -> None:
        if self.publisher is None:
            return
        for env in committed:
            try:
                self.publisher(env)
            except Exception as e:
                # already committed; a broken publisher must not undo the ledger
                log.warning(f"publisher failed for {env.event.event_type} seq={env.sequence}: {e}")

    # ---- internal lookups ----

    @staticmethod
    def _service(state: LedgerState, service_id: int) -> Service:
        svc = state.services.get(service_id)
        if svc is None:
            raise NotFound(f"service {service_id} not found")
        return svc

    @staticmethod
    def _subscription(state: LedgerState, subscription_id: int) -> Subscription:
        sub = state.subscriptions.get(subscription_id)
        if sub is None:
            raise NotFound(f"subscription {subscription_id} not found")
        return sub

    def _require_owner(self, state: LedgerState, caller: str) -> None:
        if caller != state.owner:
            raise Unauthorized(f"{caller} is not the ledger owner")

    # ---- operations ----

    def register_service(self, name: str, description: str, price_per_call: int, caller: str) -> int:
        with self._transaction("register_service") as tx:
            if not name or not str(name).strip():
                raise InvalidArgument("service name must not be empty")
            if _whole(price_per_call, "price per call") <= 0:
                raise InvalidArgument("price per call must be greater than zero")
            st = tx.state
            service_id = st.next_service_id
            tx.set(st, "next_service_id", service_id + 1)
            tx.insert(st.services, service_id, Service(
                id=service_id,
                provider=caller,
                name=name,
                description=description or "",
                price_per_call=price_per_call,
                total_calls=0,
                is_active=True,
                created_at=tx.now,
            ))
            tx.append(st.provider_services, caller, service_id)
            tx.emit(
                f"service:{service_id}",
                ServiceRegistered(ts=tx.now, service_id=service_id, provider=caller, name=name, price_per_call=price_per_call),
            )
        get_services_registered_total().inc()
        log.info(f"service registered: id={service_id} provider={caller} price={price_per_call}")
        return service_id

    def subscribe_to_service(
        self,
        service_id: int,
        call_count: int,
        duration_days: int,
        caller: str,
        paid_amount: int,
    ) -> int:
        with self._transaction("subscribe_to_service") as tx:
            st = tx.state
            svc = self._service(st, service_id)
            if not svc.is_active:
                raise InactiveResource(f"service {service_id} is not active")
            if _whole(call_count, "call count") <= 0:
                raise InvalidArgument("call count must be greater than zero")
            if _whole(duration_days, "duration") <= 0:
                raise InvalidArgument("duration must be greater than zero days")
            if _whole(paid_amount, "paid amount") < 0:
                raise InvalidArgument("paid amount must not be negative")
            quote = split_fee(svc.price_per_call * call_count, st.platform_fee_bps)
            if paid_amount < quote.total_cost:
                raise InsufficientFunds(f"paid {paid_amount} but {quote.total_cost} is required")

            subscription_id = st.next_subscription_id
            tx.set(st, "next_subscription_id", subscription_id + 1)
            tx.insert(st.subscriptions, subscription_id, Subscription(
                id=subscription_id,
                consumer=caller,
                service_id=service_id,
                calls_remaining=call_count,
                expires_at=tx.now + duration_days * SECONDS_PER_DAY,
                is_active=True,
            ))
            tx.append(st.consumer_subscriptions, caller, subscription_id)

            # attached payment lands in the ledger; everything but the fee goes back out
            refund = paid_amount - quote.total_cost
            tx.set(st, "balance", st.balance + paid_amount)
            tx.transfer(svc.provider, quote.provider_payment)
            tx.set(st, "balance", st.balance - quote.provider_payment)
            if refund > 0:
                tx.transfer(caller, refund)
                tx.set(st, "balance", st.balance - refund)

            tx.emit(
                f"subscription:{subscription_id}",
                ServiceSubscribed(
                    ts=tx.now,
                    subscription_id=subscription_id,
                    consumer=caller,
                    service_id=service_id,
                    call_count=call_count,
                ),
            )
        get_subscriptions_total().inc()
        get_provider_payments_total().inc(quote.provider_payment)
        get_platform_fees_retained_total().inc(quote.platform_fee)
        if refund > 0:
            get_refunds_total().inc(refund)
        log.info(
            f"subscription created: id={subscription_id} service={service_id} consumer={caller} "
            f"calls={call_count} cost={quote.total_cost} fee={quote.platform_fee} refund={refund}"
        )
        return subscription_id

    def make_api_call(self, subscription_id: int, caller: str) -> int:
        """Meter one call against a subscription and return the calls left.

        The referenced service's active flag is deliberately not consulted:
        subscriptions bought before a deactivation keep working until they
        run out or expire.
        """
        with self._transaction("make_api_call") as tx:
            st = tx.state
            sub = self._subscription(st, subscription_id)
            if sub.consumer != caller:
                raise Unauthorized(f"{caller} does not hold subscription {subscription_id}")
            if sub.calls_remaining <= 0:
                raise Exhausted(f"subscription {subscription_id} has no calls remaining")
            if not sub.is_active:
                raise InactiveResource(f"subscription {subscription_id} is not active")
            if tx.now > sub.expires_at:
                raise Expired(f"subscription {subscription_id} expired at {sub.expires_at}")
            svc = st.services[sub.service_id]
            tx.set(sub, "calls_remaining", sub.calls_remaining - 1)
            tx.set(svc, "total_calls", svc.total_calls + 1)
            if sub.calls_remaining == 0:
                tx.set(sub, "is_active", False)
            remaining = sub.calls_remaining
            service_id = sub.service_id
            tx.emit(
                f"subscription:{subscription_id}",
                APICallMade(
                    ts=tx.now,
                    subscription_id=subscription_id,
                    consumer=caller,
                    service_id=service_id,
                    calls_remaining=remaining,
                ),
            )
        try:
            get_api_calls_total().labels(str(service_id)).inc()
        except Exception:
            pass
        return remaining

    def deactivate_service(self, service_id: int, caller: str) -> None:
        with self._transaction("deactivate_service") as tx:
            svc = self._service(tx.state, service_id)
            if svc.provider != caller:
                raise Unauthorized(f"{caller} is not the provider of service {service_id}")
            tx.set(svc, "is_active", False)
            tx.emit(f"service:{service_id}", ServiceDeactivated(ts=tx.now, service_id=service_id))
        log.info(f"service deactivated: id={service_id}")

    def update_platform_fee(self, new_fee_bps: int, caller: str) -> None:
        with self._transaction("update_platform_fee") as tx:
            st = tx.state
            self._require_owner(st, caller)
            if not 0 <= _whole(new_fee_bps, "platform fee") <= MAX_PLATFORM_FEE_BPS:
                raise InvalidArgument(f"platform fee must be between 0 and {MAX_PLATFORM_FEE_BPS} bps")
            old = st.platform_fee_bps
            tx.set(st, "platform_fee_bps", new_fee_bps)
            tx.emit("platform", PlatformFeeUpdated(ts=tx.now, old_fee_bps=old, new_fee_bps=new_fee_bps))
        log.info(f"platform fee updated: {old} -> {new_fee_bps} bps")

    def withdraw_platform_fees(self, caller: str) -> int:
        with self._transaction("withdraw_platform_fees") as tx:
            st = tx.state
            self._require_owner(st, caller)
            amount = st.balance
            if amount <= 0:
                raise InsufficientFunds("no platform fees to withdraw")
            tx.set(st, "balance", 0)
            tx.transfer(st.owner, amount)
            tx.emit("platform", PlatformFeesWithdrawn(ts=tx.now, owner=st.owner, amount=amount))
        get_platform_fees_withdrawn_total().inc(amount)
        log.info(f"platform fees withdrawn: amount={amount}")
        return amount

    def transfer_ownership(self, new_owner: str, caller: str) -> None:
        with self._transaction("transfer_ownership") as tx:
            st = tx.state
            self._require_owner(st, caller)
            if is_null_identity(new_owner):
                raise InvalidArgument("new owner must be a valid identity")
            previous = st.owner
            tx.set(st, "owner", new_owner)
            tx.emit("platform", OwnershipTransferred(ts=tx.now, previous_owner=previous, new_owner=new_owner))
        log.info(f"ownership transferred: {previous} -> {new_owner}")

    # ---- read accessors ----

    def get_service(self, service_id: int) -> Service:
        with self._lock:
            return replace(self._service(self.state, service_id))

    def get_subscription(self, subscription_id: int) -> Subscription:
        with self._lock:
            return replace(self._subscription(self.state, subscription_id))

    def get_provider_services(self, provider: str) -> List[int]:
        with self._lock:
            return list(self.state.provider_services.get(provider, []))

    def get_consumer_subscriptions(self, consumer: str) -> List[int]:
        with self._lock:
            return list(self.state.consumer_subscriptions.get(consumer, []))

    def quote(self, service_id: int, call_count: int) -> Quote:
        """Price `call_count` calls of a service at the current fee rate."""
        with self._lock:
            svc = self._service(self.state, service_id)
            if _whole(call_count, "call count") <= 0:
                raise InvalidArgument("call count must be greater than zero")
            return split_fee(svc.price_per_call * call_count, self.state.platform_fee_bps)

    @property
    def owner(self) -> str:
        return self.state.owner

    @property
    def platform_fee_bps(self) -> int:
        return self.state.platform_fee_bps

    @property
    def balance(self) -> int:
        return self.state.balance
