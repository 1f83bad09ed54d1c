from __future__ import annotations

import os
from dataclasses import asdict

import pandas as pd

from ..ledger.model import LedgerState


def write_parquet(state: LedgerState, base_dir: str = "data") -> None:
    """Dump the service and subscription tables for offline inspection."""
    os.makedirs(base_dir, exist_ok=True)
    services_df = pd.DataFrame([asdict(s) for s in state.services.values()])
    subscriptions_df = pd.DataFrame([asdict(s) for s in state.subscriptions.values()])
    services_df.to_parquet(os.path.join(base_dir, "services.parquet"))
    subscriptions_df.to_parquet(os.path.join(base_dir, "subscriptions.parquet"))
