from __future__ import annotations

import os
import sqlite3
from typing import Dict, List

from ..ledger.model import SCHEMA_VERSION, LedgerState, Service, Subscription


DDL = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT
);
CREATE TABLE IF NOT EXISTS services (
  id INTEGER PRIMARY KEY,
  provider TEXT,
  name TEXT,
  description TEXT,
  price_per_call INTEGER,
  total_calls INTEGER,
  is_active INTEGER,
  created_at INTEGER
);
CREATE TABLE IF NOT EXISTS subscriptions (
  id INTEGER PRIMARY KEY,
  consumer TEXT,
  service_id INTEGER,
  calls_remaining INTEGER,
  expires_at INTEGER,
  is_active INTEGER
);
CREATE TABLE IF NOT EXISTS provider_services (
  provider TEXT,
  position INTEGER,
  service_id INTEGER,
  PRIMARY KEY (provider, position)
);
CREATE TABLE IF NOT EXISTS consumer_subscriptions (
  consumer TEXT,
  position INTEGER,
  subscription_id INTEGER,
  PRIMARY KEY (consumer, position)
);
"""


class SQLiteStore:
    """Snapshot persistence for a LedgerState: four tables plus a meta table for the scalars."""

    def __init__(self, path: str = "data/ledger.sqlite"):
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.path = path
        with sqlite3.connect(self.path) as con:
            con.executescript(DDL)

    def exists(self) -> bool:
        with sqlite3.connect(self.path) as con:
            row = con.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
        return row is not None

    def save(self, state: LedgerState) -> None:
        with sqlite3.connect(self.path) as con:
            for table in ("meta", "services", "subscriptions", "provider_services", "consumer_subscriptions"):
                con.execute(f"DELETE FROM {table}")
            con.executemany(
                "INSERT INTO meta(key,value) VALUES (?,?)",
                [
                    ("schema_version", str(state.schema_version)),
                    ("owner", state.owner),
                    ("platform_fee_bps", str(state.platform_fee_bps)),
                    ("next_service_id", str(state.next_service_id)),
                    ("next_subscription_id", str(state.next_subscription_id)),
                    ("balance", str(state.balance)),
                ],
            )
            con.executemany(
                "INSERT INTO services(id,provider,name,description,price_per_call,total_calls,is_active,created_at) VALUES (?,?,?,?,?,?,?,?)",
                [
                    (s.id, s.provider, s.name, s.description, s.price_per_call, s.total_calls, int(s.is_active), s.created_at)
                    for s in state.services.values()
                ],
            )
            con.executemany(
                "INSERT INTO subscriptions(id,consumer,service_id,calls_remaining,expires_at,is_active) VALUES (?,?,?,?,?,?)",
                [
                    (s.id, s.consumer, s.service_id, s.calls_remaining, s.expires_at, int(s.is_active))
                    for s in state.subscriptions.values()
                ],
            )
            con.executemany(
                "INSERT INTO provider_services(provider,position,service_id) VALUES (?,?,?)",
                [(p, i, sid) for p, ids in state.provider_services.items() for i, sid in enumerate(ids)],
            )
            con.executemany(
                "INSERT INTO consumer_subscriptions(consumer,position,subscription_id) VALUES (?,?,?)",
                [(c, i, sid) for c, ids in state.consumer_subscriptions.items() for i, sid in enumerate(ids)],
            )

    def load(self) -> LedgerState:
        with sqlite3.connect(self.path) as con:
            meta = dict(con.execute("SELECT key, value FROM meta").fetchall())
            if "schema_version" not in meta:
                raise ValueError(f"no ledger snapshot in {self.path}")
            version = int(meta["schema_version"])
            if version != SCHEMA_VERSION:
                raise ValueError(f"unsupported ledger snapshot schema version {version}")
            services = {
                row[0]: Service(
                    id=row[0], provider=row[1], name=row[2], description=row[3],
                    price_per_call=row[4], total_calls=row[5], is_active=bool(row[6]), created_at=row[7],
                )
                for row in con.execute("SELECT * FROM services ORDER BY id")
            }
            subscriptions = {
                row[0]: Subscription(
                    id=row[0], consumer=row[1], service_id=row[2],
                    calls_remaining=row[3], expires_at=row[4], is_active=bool(row[5]),
                )
                for row in con.execute("SELECT * FROM subscriptions ORDER BY id")
            }
            provider_services: Dict[str, List[int]] = {}
            for provider, service_id in con.execute(
                "SELECT provider, service_id FROM provider_services ORDER BY provider, position"
            ):
                provider_services.setdefault(provider, []).append(service_id)
            consumer_subscriptions: Dict[str, List[int]] = {}
            for consumer, subscription_id in con.execute(
                "SELECT consumer, subscription_id FROM consumer_subscriptions ORDER BY consumer, position"
            ):
                consumer_subscriptions.setdefault(consumer, []).append(subscription_id)
        return LedgerState(
            owner=meta["owner"],
            platform_fee_bps=int(meta["platform_fee_bps"]),
            services=services,
            subscriptions=subscriptions,
            provider_services=provider_services,
            consumer_subscriptions=consumer_subscriptions,
            next_service_id=int(meta["next_service_id"]),
            next_subscription_id=int(meta["next_subscription_id"]),
            balance=int(meta["balance"]),
            schema_version=version,
        )
