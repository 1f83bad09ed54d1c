"""
Main entrypoint for apimarket.

What it does:
- Loads runtime settings from `config/config.yaml` and environment variables.
- Starts the Prometheus exporter (bind failures are tolerated).
- Restores the ledger from its SQLite snapshot when one exists, wires the
  Redis event publisher, and serves the HTTP gateway with uvicorn. The
  snapshot is written back on shutdown.
- With `OFFLINE_DEMO=1` it instead runs a scripted marketplace session on a
  fresh ledger (register, subscribe, meter calls until exhausted, withdraw
  fees), writes a snapshot and parquet tables under `DEMO_OUTPUT_DIR`, and exits.

Where it is used:
- Invoked by `python -m apimarket.main` (or the `apimarket` console script).
"""
import json
import logging
import os

from apimarket.config.loader import load_settings
from apimarket.events import bus
from apimarket.ledger import Ledger
from apimarket.ledger.errors import LedgerError
from apimarket.metrics.market import start_exporter
from apimarket.store.export import write_parquet
from apimarket.store.sqlite_store import SQLiteStore


def run_demo(ledger: Ledger, out_dir: str) -> None:
    provider = "0x00000000000000000000000000000000000000b1"
    consumer = "0x00000000000000000000000000000000000000c1"
    service_id = ledger.register_service("weather", "Hourly forecasts", 100, provider)
    logging.info(f"service registered: {json.dumps({'service_id': service_id, 'provider': provider})}")
    quote = ledger.quote(service_id, 10)
    subscription_id = ledger.subscribe_to_service(service_id, 10, 30, consumer, quote.total_cost + 50)
    logging.info(
        "subscription: " + json.dumps({
            "subscription_id": subscription_id,
            "total_cost": quote.total_cost,
            "platform_fee": quote.platform_fee,
            "provider_payment": quote.provider_payment,
        })
    )
    remaining = None
    while True:
        try:
            remaining = ledger.make_api_call(subscription_id, consumer)
        except LedgerError as e:
            logging.info(f"call refused: {json.dumps({'reason': e.kind, 'calls_remaining': remaining})}")
            break
    withdrawn = ledger.withdraw_platform_fees(ledger.owner)
    logging.info(f"fees withdrawn: {json.dumps({'owner': ledger.owner, 'amount': withdrawn})}")
    SQLiteStore(os.path.join(out_dir, "ledger.sqlite")).save(ledger.state)
    write_parquet(ledger.state, out_dir)
    logging.info(f"marketplace demo complete: events={len(ledger.events)}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    settings = load_settings(os.getenv("APIMARKET_CONFIG", "config/config.yaml"))
    logging.info(f"Ledger owner: {settings.owner}, platform fee: {settings.platform_fee_bps} bps")

    start_exporter(settings.metrics_port)
    bus.configure(settings.events.stream, settings.events.dlq, settings.events.redis_url)

    if os.getenv("OFFLINE_DEMO", "0") == "1":
        logging.info("OFFLINE_DEMO=1: running scripted marketplace session")
        ledger = Ledger(owner=settings.owner, platform_fee_bps=settings.platform_fee_bps, publisher=bus.publish)
        run_demo(ledger, os.getenv("DEMO_OUTPUT_DIR", "data"))
        return

    store = SQLiteStore(settings.state_path) if settings.state_path else None
    if store is not None and store.exists():
        ledger = Ledger(state=store.load(), publisher=bus.publish)
        logging.info(f"Restored ledger snapshot from {settings.state_path}")
    else:
        ledger = Ledger(owner=settings.owner, platform_fee_bps=settings.platform_fee_bps, publisher=bus.publish)

    import uvicorn
    from apimarket.gateway import create_app

    try:
        uvicorn.run(create_app(ledger), host=settings.gateway.host, port=settings.gateway.port)
    finally:
        if store is not None:
            store.save(ledger.state)
            logging.info(f"Ledger snapshot written to {settings.state_path}")


if __name__ == "__main__":
    main()
