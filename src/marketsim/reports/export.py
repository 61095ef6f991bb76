"""
Tabular exports of ledger and marketplace state.

Usage (venv):
  marketsim report --out reports

Writes `ledger.csv`, `orders.csv` and `items.csv` into the target directory.
"""

from __future__ import annotations

import os
from typing import Dict

import pandas as pd

from ..ledger.bank import Bank
from ..store.market import Marketplace

LEDGER_COLUMNS = ["account_id", "owner", "date", "amount", "note"]
ORDER_COLUMNS = ["order_id", "date", "buyer_id", "seller_id", "item_id", "item_name",
                 "quantity", "total_price", "status"]
ITEM_COLUMNS = ["item_id", "name", "seller_id", "price", "stock", "sold_count"]


def ledger_frame(bank: Bank) -> pd.DataFrame:
    rows = []
    for aid in sorted(bank.accounts):
        acc = bank.accounts[aid]
        for e in acc.entries:
            rows.append({"account_id": aid, "owner": acc.owner_name, "date": e.date,
                         "amount": str(e.amount), "note": e.note})
    return pd.DataFrame(rows, columns=LEDGER_COLUMNS)


def orders_frame(market: Marketplace) -> pd.DataFrame:
    rows = []
    for oid in sorted(market.orders):
        o = market.orders[oid]
        rows.append({"order_id": o.order_id, "date": o.date, "buyer_id": o.buyer_id,
                     "seller_id": o.seller_id, "item_id": o.item_id, "item_name": o.item_name,
                     "quantity": o.quantity, "total_price": str(o.total_price),
                     "status": o.status.name})
    return pd.DataFrame(rows, columns=ORDER_COLUMNS)


def items_frame(market: Marketplace) -> pd.DataFrame:
    rows = [{"item_id": it.item_id, "name": it.name, "seller_id": market.owner_of(it.item_id) or "",
             "price": str(it.price), "stock": it.stock, "sold_count": it.sold_count}
            for it in market.list_items()]
    return pd.DataFrame(rows, columns=ITEM_COLUMNS)


def write_reports(market: Marketplace, base_dir: str = "reports") -> Dict[str, str]:
    """Write the three CSV exports and return name -> path."""
    os.makedirs(base_dir, exist_ok=True)
    frames = {
        "ledger": ledger_frame(market.bank),
        "orders": orders_frame(market),
        "items": items_frame(market),
    }
    paths: Dict[str, str] = {}
    for name, df in frames.items():
        path = os.path.join(base_dir, f"{name}.csv")
        df.to_csv(path, index=False)
        paths[name] = path
    return paths
