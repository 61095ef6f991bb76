"""
Save and load marketplace + ledger state as a directory of flat text files.

What it does:
- `save_state` renders every account (with its full entry history), item,
  buyer, seller and order while holding the marketplace lock, writes the
  files into a staging directory and only then moves them into place.
- `load_state` parses every file into a fresh `Bank` and `Marketplace` and
  hands them back only when all of it parsed and cross-checked.

Failures come back as a failed `Result` (`io_error` for OS errors,
`corrupt_record` for content that does not parse or does not add up);
nothing is partially applied.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import Failure, MarketError, Result
from ..events.bus import publish as publish_event
from ..events.schema import EventEnvelope, StateLoaded, StateSaved
from ..ledger.bank import Bank
from ..ledger.model import Account, LedgerEntry
from ..logs.activity_log import log_market_event
from ..metrics.market import get_persistence_ops_total
from ..store.ids import OrderIdGenerator
from ..store.market import Marketplace
from ..store.model import Buyer, Seller
from . import codec

log = logging.getLogger("marketsim.persistence")

Lines = List[Tuple[int, str]]


# ---- save ----

def render(market: Marketplace, bank: Bank) -> Dict[str, str]:
    """Encode the whole state into file name -> file text, ordered by id."""
    accounts: List[str] = []
    for aid in sorted(bank.accounts):
        accounts.extend(codec.encode_account(bank.accounts[aid]))
    items = [codec.encode_item(market.items[i]) for i in sorted(market.items)]
    buyers: List[str] = []
    for bid in sorted(market.buyers):
        buyers.extend(codec.encode_buyer(market.buyers[bid]))
    sellers: List[str] = []
    for sid in sorted(market.sellers):
        sellers.extend(codec.encode_seller(market.sellers[sid]))
    orders = [codec.encode_order(market.orders[o]) for o in sorted(market.orders)]

    def _text(lines: List[str]) -> str:
        return "".join(line + "\n" for line in lines)

    return {
        codec.ACCOUNTS_FILE: _text(accounts),
        codec.ITEMS_FILE: _text(items),
        codec.BUYERS_FILE: _text(buyers),
        codec.SELLERS_FILE: _text(sellers),
        codec.TRANSACTIONS_FILE: _text(orders),
    }


def _write_staged(directory: str, contents: Dict[str, str]) -> None:
    os.makedirs(directory, exist_ok=True)
    staging = tempfile.mkdtemp(prefix=".staging-", dir=directory)
    try:
        for name, text in contents.items():
            with open(os.path.join(staging, name), "w", encoding="utf-8", newline="\n") as f:
                f.write(text)
        for name in contents:
            os.replace(os.path.join(staging, name), os.path.join(directory, name))
    finally:
        shutil.rmtree(staging, ignore_errors=True)


def save_state(market: Marketplace, bank: Bank, directory: str) -> Result:
    ops = get_persistence_ops_total()
    with market.lock:
        contents = render(market, bank)
        n_accounts, n_orders = len(bank.accounts), len(market.orders)
    try:
        _write_staged(directory, contents)
    except OSError as e:
        ops.labels("save", "error").inc()
        log_market_event("state_save_failed", "persistence", severity="ERROR",
                         directory=directory, error=str(e))
        return Result.fail(Failure.IO_ERROR, f"save to {directory} failed: {e}")
    ops.labels("save", "ok").inc()
    _announce(StateSaved, directory, n_accounts, n_orders)
    return Result.success(directory)


# ---- load ----

def _read_lines(directory: str, name: str) -> Lines:
    path = os.path.join(directory, name)
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8", newline="") as f:
        raw = f.read().split("\n")
    out: Lines = []
    for lineno, line in enumerate(raw, start=1):
        line = line.rstrip("\r")
        if line:
            out.append((lineno, line))
    return out


def _corrupt(source: str, lineno: int, why: str) -> MarketError:
    return MarketError(Failure.CORRUPT_RECORD, f"{source}:{lineno}: {why}")


def _restore_accounts(bank: Bank, lines: Lines) -> None:
    src = codec.ACCOUNTS_FILE
    pending: Dict[str, Tuple[int, str, Decimal, List[LedgerEntry]]] = {}
    for lineno, line in lines:
        if codec.is_header(line):
            aid, owner, balance = codec.split_fields(line, "|", 3, src, lineno)
            if aid in pending:
                raise _corrupt(src, lineno, f"duplicate account {aid}")
            pending[aid] = (lineno, owner, codec.parse_decimal(balance, src, lineno), [])
        else:
            aid, entry = codec.decode_entry(line, src, lineno)
            if aid not in pending:
                raise _corrupt(src, lineno, f"entry for unknown account {aid}")
            pending[aid][3].append(entry)
    for aid, (lineno, owner, balance, entries) in pending.items():
        acc = Account.restore(aid, owner, entries)
        if acc.balance != balance:
            raise _corrupt(src, lineno, f"balance {balance} of {aid} != sum of entries {acc.balance}")
        bank.adopt(acc)


def _restore_items(market: Marketplace, lines: Lines) -> None:
    src = codec.ITEMS_FILE
    for lineno, line in lines:
        item = codec.decode_item(line, src, lineno)
        if item.price < 0 or item.stock < 0 or item.sold_count < 0:
            raise _corrupt(src, lineno, f"negative price, stock or sold count for item {item.item_id}")
        if item.item_id in market.items:
            raise _corrupt(src, lineno, f"duplicate item {item.item_id}")
        market.items[item.item_id] = item


def _restore_buyers(market: Marketplace, lines: Lines) -> None:
    src = codec.BUYERS_FILE
    for lineno, line in lines:
        if codec.is_header(line):
            uid, uname, cred = codec.split_fields(line, "|", 3, src, lineno)
            if uid in market.buyers:
                raise _corrupt(src, lineno, f"duplicate buyer {uid}")
            market.buyers[uid] = Buyer(user_id=uid, username=uname, credential=cred)
        else:
            uid, oid = codec.split_fields(line, ",", 2, src, lineno)
            if uid not in market.buyers:
                raise _corrupt(src, lineno, f"order link for unknown buyer {uid}")
            market.buyers[uid].order_ids.append(oid)


def _restore_sellers(market: Marketplace, lines: Lines) -> None:
    src = codec.SELLERS_FILE
    for lineno, line in lines:
        if codec.is_header(line):
            uid, uname, cred = codec.split_fields(line, "|", 3, src, lineno)
            if uid in market.sellers:
                raise _corrupt(src, lineno, f"duplicate seller {uid}")
            market.sellers[uid] = Seller(user_id=uid, username=uname, credential=cred)
            continue
        if line.count(",") == 1:
            # untagged legacy line: always an owned item
            uid, ref = codec.split_fields(line, ",", 2, src, lineno)
            tag = codec.SELLER_ITEM_TAG
        else:
            uid, tag, ref = codec.split_fields(line, ",", 3, src, lineno)
        seller = market.sellers.get(uid)
        if seller is None:
            raise _corrupt(src, lineno, f"link for unknown seller {uid}")
        if tag == codec.SELLER_ITEM_TAG:
            owner = market.owner_of(ref)
            if owner is not None and owner != uid:
                raise _corrupt(src, lineno, f"item {ref} listed by both {owner} and {uid}")
            seller.item_ids.append(ref)
            market.index_item(uid, ref)
        elif tag == codec.SELLER_SALE_TAG:
            seller.sale_ids.append(ref)
        else:
            raise _corrupt(src, lineno, f"unknown seller link tag {tag!r}")


def _restore_orders(market: Marketplace, lines: Lines) -> None:
    src = codec.TRANSACTIONS_FILE
    for lineno, line in lines:
        order = codec.decode_order(line, src, lineno)
        if order.order_id in market.orders:
            raise _corrupt(src, lineno, f"duplicate order {order.order_id}")
        market.orders[order.order_id] = order
        market.ids.observe(order.order_id)


def _ensure_principal_accounts(market: Marketplace, bank: Bank) -> None:
    principals: List[Tuple[str, str]] = [(b.user_id, b.username) for b in market.buyers.values()]
    principals += [(s.user_id, s.username) for s in market.sellers.values()]
    for uid, uname in principals:
        if bank.get_account(uid) is None:
            bank.open_account(uid, uname, 0)
            log.info(f"created missing ledger account for {uid}")


def load_state(
    directory: str,
    clock: Optional[Callable[[], str]] = None,
    journal_path: Optional[str] = None,
    order_id_prefix: str = "TX",
) -> Result:
    """Load a saved directory into a fresh (Marketplace, Bank) pair."""
    ops = get_persistence_ops_total()
    if not os.path.isdir(directory):
        ops.labels("load", "error").inc()
        return Result.fail(Failure.IO_ERROR, f"no saved state at {directory}")
    bank = Bank(clock=clock)
    market = Marketplace(bank, OrderIdGenerator(order_id_prefix), journal_path=journal_path)
    try:
        files = {name: _read_lines(directory, name) for name in codec.ALL_FILES}
        with market.lock:
            _restore_accounts(bank, files[codec.ACCOUNTS_FILE])
            _restore_items(market, files[codec.ITEMS_FILE])
            _restore_buyers(market, files[codec.BUYERS_FILE])
            _restore_sellers(market, files[codec.SELLERS_FILE])
            _restore_orders(market, files[codec.TRANSACTIONS_FILE])
            _ensure_principal_accounts(market, bank)
    except MarketError as e:
        ops.labels("load", "corrupt").inc()
        log_market_event("state_load_failed", "persistence", severity="ERROR",
                         directory=directory, error=e.message)
        return e.to_result()
    except OSError as e:
        ops.labels("load", "error").inc()
        log_market_event("state_load_failed", "persistence", severity="ERROR",
                         directory=directory, error=str(e))
        return Result.fail(Failure.IO_ERROR, f"load from {directory} failed: {e}")
    ops.labels("load", "ok").inc()
    _announce(StateLoaded, directory, len(bank.accounts), len(market.orders))
    return Result.success((market, bank))


def _announce(event_cls, directory: str, accounts: int, orders: int) -> None:
    ts = int(time.time() * 1000)
    log_market_event(event_cls.model_fields["event_type"].default, "persistence", ts=ts,
                     directory=directory, accounts=accounts, orders=orders)
    try:
        evt = event_cls(ts=ts, actor="system", subject=directory,
                        directory=directory, accounts=accounts, orders=orders)
        publish_event(EventEnvelope(correlation_id=f"state:{directory}", event=evt))
    except Exception as e:
        log.warning(f"state event not published: {e}")
