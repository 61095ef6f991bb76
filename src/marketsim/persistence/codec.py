"""Flat-text record codec for saved marketplace state.

Layout, one file per record type:
  accounts.txt      id|owner|balance            then  id,date,amount,note
  items.txt         id|name|price|stock|sold
  buyers.txt        id|username|credential      then  id,orderID
  sellers.txt       id|username|credential      then  id,item,itemID / id,sale,orderID
  transactions.txt  id|date|buyer|seller|item|itemName|qty|total|statusCode

Header lines use `|`, detail lines use `,`. Field text is escaped so that
neither delimiter nor a line break can appear inside a field; `%`, `|`, `,`,
CR and LF become `%25`, `%7C`, `%2C`, `%0D`, `%0A`.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import List

from ..errors import Failure, MarketError
from ..ledger.model import Account, LedgerEntry
from ..store.model import Buyer, Item, Order, OrderStatus, Seller

ACCOUNTS_FILE = "accounts.txt"
ITEMS_FILE = "items.txt"
BUYERS_FILE = "buyers.txt"
SELLERS_FILE = "sellers.txt"
TRANSACTIONS_FILE = "transactions.txt"

ALL_FILES = (ACCOUNTS_FILE, ITEMS_FILE, BUYERS_FILE, SELLERS_FILE, TRANSACTIONS_FILE)

SELLER_ITEM_TAG = "item"
SELLER_SALE_TAG = "sale"

_ESCAPES = {"%": "%25", "|": "%7C", ",": "%2C", "\r": "%0D", "\n": "%0A"}
_UNESCAPE = re.compile(r"%(25|7C|2C|0D|0A)")


def escape(text: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in text)


def unescape(text: str) -> str:
    return _UNESCAPE.sub(lambda m: chr(int(m.group(1), 16)), text)


def header(*fields: object) -> str:
    return "|".join(escape(str(f)) for f in fields)


def detail(*fields: object) -> str:
    return ",".join(escape(str(f)) for f in fields)


def is_header(line: str) -> bool:
    return "|" in line


def split_fields(line: str, sep: str, expected: int, source: str, lineno: int) -> List[str]:
    parts = line.split(sep)
    if len(parts) != expected:
        raise MarketError(
            Failure.CORRUPT_RECORD,
            f"{source}:{lineno}: expected {expected} fields, got {len(parts)}",
        )
    return [unescape(p) for p in parts]


def parse_decimal(value: str, source: str, lineno: int) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise MarketError(Failure.CORRUPT_RECORD, f"{source}:{lineno}: bad amount {value!r}")
    if not amount.is_finite():
        raise MarketError(Failure.CORRUPT_RECORD, f"{source}:{lineno}: non-finite amount {value!r}")
    return amount


def parse_int(value: str, source: str, lineno: int) -> int:
    try:
        return int(value)
    except ValueError:
        raise MarketError(Failure.CORRUPT_RECORD, f"{source}:{lineno}: bad integer {value!r}")


# ---- encoders ----

def encode_account(acc: Account) -> List[str]:
    lines = [header(acc.account_id, acc.owner_name, acc.balance)]
    for e in acc.entries:
        lines.append(detail(acc.account_id, e.date, e.amount, e.note))
    return lines


def encode_item(item: Item) -> str:
    return header(item.item_id, item.name, item.price, item.stock, item.sold_count)


def encode_buyer(b: Buyer) -> List[str]:
    lines = [header(b.user_id, b.username, b.credential)]
    lines.extend(detail(b.user_id, oid) for oid in b.order_ids)
    return lines


def encode_seller(s: Seller) -> List[str]:
    lines = [header(s.user_id, s.username, s.credential)]
    lines.extend(detail(s.user_id, SELLER_ITEM_TAG, iid) for iid in s.item_ids)
    lines.extend(detail(s.user_id, SELLER_SALE_TAG, oid) for oid in s.sale_ids)
    return lines


def encode_order(o: Order) -> str:
    return header(
        o.order_id, o.date, o.buyer_id, o.seller_id, o.item_id, o.item_name,
        o.quantity, o.total_price, int(o.status),
    )


# ---- decoders ----

def decode_entry(line: str, source: str, lineno: int):
    account_id, date, amount, note = split_fields(line, ",", 4, source, lineno)
    return account_id, LedgerEntry(date=date, amount=parse_decimal(amount, source, lineno), note=note)


def decode_item(line: str, source: str, lineno: int) -> Item:
    item_id, name, price, stock, sold = split_fields(line, "|", 5, source, lineno)
    return Item(
        item_id=item_id,
        name=name,
        price=parse_decimal(price, source, lineno),
        stock=parse_int(stock, source, lineno),
        sold_count=parse_int(sold, source, lineno),
    )


def decode_order(line: str, source: str, lineno: int) -> Order:
    (oid, date, buyer_id, seller_id, item_id, item_name,
     qty, total, status) = split_fields(line, "|", 9, source, lineno)
    code = parse_int(status, source, lineno)
    try:
        status_value = OrderStatus(code)
    except ValueError:
        raise MarketError(Failure.CORRUPT_RECORD, f"{source}:{lineno}: unknown status code {code}")
    return Order(
        order_id=oid,
        date=date,
        buyer_id=buyer_id,
        seller_id=seller_id,
        item_id=item_id,
        item_name=item_name,
        quantity=parse_int(qty, source, lineno),
        total_price=parse_decimal(total, source, lineno),
        status=status_value,
    )
