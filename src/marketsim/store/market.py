"""
Marketplace: registration, catalog mutation, purchase settlement and reports.

What it does:
- Keeps buyers, sellers, items and orders keyed by id, plus an item -> seller
  index maintained on `add_item`.
- Settles purchases against the `Bank` it holds: validate everything first,
  then commit the fund transfer, the stock change and the order together
  while holding the marketplace lock.
- Emits purchase events on the event bus, counts outcomes in Prometheus and
  optionally appends an audit record to a JSONL journal.

Every operation returns a `Result`; a failed operation changes nothing.
Rankings sort by count descending, then by id ascending.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from ..errors import Failure, Result
from ..events.bus import publish as publish_event
from ..events.schema import EventEnvelope, OrderCompleted, PurchaseRejected, PurchaseSettled
from ..ledger.bank import Bank
from ..ledger.calendar import days_between
from ..ledger.model import Amount, finite_amount
from ..logs.activity_log import append_jsonl, log_market_event
from ..metrics.market import get_sales_value_total, inc_purchase
from .ids import OrderIdGenerator
from .model import Buyer, Item, Order, OrderStatus, Seller

logger = logging.getLogger(__name__)

Principal = Union[Buyer, Seller]


@dataclass
class _PurchasePlan:
    buyer: Buyer
    seller: Seller
    item: Item
    quantity: int
    total: Decimal
    date: str


class Marketplace:
    def __init__(
        self,
        bank: Bank,
        id_generator: Optional[OrderIdGenerator] = None,
        journal_path: Optional[str] = None,
    ):
        self.bank = bank
        self.buyers: Dict[str, Buyer] = {}
        self.sellers: Dict[str, Seller] = {}
        self.items: Dict[str, Item] = {}
        self.orders: Dict[str, Order] = {}
        self.ids = id_generator or OrderIdGenerator()
        self.journal_path = journal_path
        # Guards every mutation; persistence holds it for the whole save/load.
        self.lock = threading.RLock()
        self._item_owner: Dict[str, str] = {}
        self._sales_value = get_sales_value_total()

    def today(self) -> str:
        return self.bank.today()

    # ---- registration ----

    def _register_conflict(self, user_id: str) -> Optional[Result]:
        if user_id in self.buyers:
            return Result.fail(Failure.BUYER_EXISTS, f"id already registered as buyer: {user_id}")
        if user_id in self.sellers:
            return Result.fail(Failure.SELLER_EXISTS, f"id already registered as seller: {user_id}")
        if self.bank.get_account(user_id) is not None:
            return Result.fail(Failure.ACCOUNT_EXISTS, f"ledger account already exists: {user_id}")
        return None

    def register_buyer(self, user_id: str, username: str, credential: str) -> Result:
        with self.lock:
            conflict = self._register_conflict(user_id)
            if conflict is not None:
                return conflict
            opened = self.bank.open_account(user_id, username, 0)
            if not opened:
                return opened
            buyer = Buyer(user_id=user_id, username=username, credential=credential)
            self.buyers[user_id] = buyer
        log_market_event("buyer_registered", "market", user_id=user_id)
        return Result.success(buyer)

    def register_seller(self, user_id: str, username: str, credential: str) -> Result:
        with self.lock:
            conflict = self._register_conflict(user_id)
            if conflict is not None:
                return conflict
            opened = self.bank.open_account(user_id, username, 0)
            if not opened:
                return opened
            seller = Seller(user_id=user_id, username=username, credential=credential)
            self.sellers[user_id] = seller
        log_market_event("seller_registered", "market", user_id=user_id)
        return Result.success(seller)

    def login(self, username: str, credential: str) -> Result:
        """Exact, case-sensitive match on both fields; buyers are checked before sellers."""
        for key in sorted(self.buyers):
            b = self.buyers[key]
            if b.username == username and b.credential == credential:
                return Result.success(b)
        for key in sorted(self.sellers):
            s = self.sellers[key]
            if s.username == username and s.credential == credential:
                return Result.success(s)
        return Result.fail(Failure.ACCOUNT_NOT_FOUND, "no principal with these credentials")

    # ---- catalog ----

    def owner_of(self, item_id: str) -> Optional[str]:
        return self._item_owner.get(item_id)

    def index_item(self, seller_id: str, item_id: str) -> None:
        self._item_owner[item_id] = seller_id

    def add_item(self, seller_id: str, item_id: str, name: str, price: Amount, stock: int) -> Result:
        amount = finite_amount(price)
        if amount is None or amount < 0:
            return Result.fail(Failure.INVALID_PRICE, f"price must be finite and non-negative, got {price!r}")
        if stock < 0:
            return Result.fail(Failure.INVALID_QUANTITY, f"stock must be non-negative, got {stock}")
        with self.lock:
            seller = self.sellers.get(seller_id)
            if seller is None:
                return Result.fail(Failure.SELLER_NOT_FOUND, f"seller not found: {seller_id}")
            if item_id in self.items:
                return Result.fail(Failure.ITEM_EXISTS, f"item already exists: {item_id}")
            item = Item(item_id=item_id, name=name, price=amount, stock=int(stock))
            self.items[item_id] = item
            seller.item_ids.append(item_id)
            self.index_item(seller_id, item_id)
        log_market_event("item_added", "market", seller_id=seller_id, item_id=item_id,
                         price=str(amount), stock=int(stock))
        return Result.success(item)

    def _owned_item(self, seller_id: str, item_id: str) -> Result:
        if seller_id not in self.sellers:
            return Result.fail(Failure.SELLER_NOT_FOUND, f"seller not found: {seller_id}")
        item = self.items.get(item_id)
        if item is None or self._item_owner.get(item_id) != seller_id:
            return Result.fail(Failure.ITEM_NOT_FOUND, f"item {item_id} not listed by {seller_id}")
        return Result.success(item)

    def replenish_item(self, seller_id: str, item_id: str, qty: int) -> Result:
        if qty < 0:
            return Result.fail(Failure.INVALID_QUANTITY, f"quantity must be non-negative, got {qty}")
        with self.lock:
            found = self._owned_item(seller_id, item_id)
            if not found:
                return found
            found.value.replenish(qty)
        return Result.success(found.value)

    def discard_item(self, seller_id: str, item_id: str, qty: int) -> Result:
        if qty < 0:
            return Result.fail(Failure.INVALID_QUANTITY, f"quantity must be non-negative, got {qty}")
        with self.lock:
            found = self._owned_item(seller_id, item_id)
            if not found:
                return found
            found.value.discard(qty)
        return Result.success(found.value)

    def set_item_price(self, seller_id: str, item_id: str, price: Amount) -> Result:
        amount = finite_amount(price)
        if amount is None or amount < 0:
            return Result.fail(Failure.INVALID_PRICE, f"price must be finite and non-negative, got {price!r}")
        with self.lock:
            found = self._owned_item(seller_id, item_id)
            if not found:
                return found
            found.value.price = amount
        return Result.success(found.value)

    # ---- purchase ----

    def _plan_purchase(self, buyer_id: str, item_id: str, qty: int, date: str) -> Result:
        if qty <= 0:
            return Result.fail(Failure.INVALID_QUANTITY, f"quantity must be positive, got {qty}")
        buyer = self.buyers.get(buyer_id)
        if buyer is None:
            return Result.fail(Failure.BUYER_NOT_FOUND, f"buyer not found: {buyer_id}")
        item = self.items.get(item_id)
        if item is None:
            return Result.fail(Failure.ITEM_NOT_FOUND, f"item not found: {item_id}")
        if not item.can_sell(qty):
            return Result.fail(Failure.INSUFFICIENT_STOCK, f"{item_id}: stock {item.stock}, requested {qty}")
        total = item.price * qty
        seller = self.sellers.get(self._item_owner.get(item_id, ""))
        if seller is None or item_id not in seller.item_ids:
            return Result.fail(Failure.NO_OWNING_SELLER, f"no seller lists item {item_id}")
        buyer_acc = self.bank.get_account(buyer_id)
        if buyer_acc is None:
            return Result.fail(Failure.BUYER_ACCOUNT_MISSING, f"no ledger account for buyer {buyer_id}")
        if self.bank.get_account(seller.user_id) is None:
            return Result.fail(Failure.SELLER_ACCOUNT_MISSING, f"no ledger account for seller {seller.user_id}")
        if not buyer_acc.can_cover(total):
            return Result.fail(
                Failure.INSUFFICIENT_FUNDS,
                f"{buyer_id}: balance {buyer_acc.balance}, required {total}",
            )
        return Result.success(_PurchasePlan(buyer=buyer, seller=seller, item=item,
                                            quantity=qty, total=total, date=date))

    def _next_order_id(self) -> str:
        oid = self.ids.next_id()
        while oid in self.orders:
            oid = self.ids.next_id()
        return oid

    def _commit_purchase(self, plan: _PurchasePlan) -> Result:
        settled = self.bank.transfer(
            plan.buyer.user_id,
            plan.seller.user_id,
            plan.total,
            plan.date,
            debit_note=f"purchase {plan.item.item_id}",
            credit_note=f"sale {plan.item.item_id}",
        )
        if not settled:
            return settled
        plan.item.sell(plan.quantity)
        order = Order(
            order_id=self._next_order_id(),
            date=plan.date,
            buyer_id=plan.buyer.user_id,
            seller_id=plan.seller.user_id,
            item_id=plan.item.item_id,
            item_name=plan.item.name,
            quantity=plan.quantity,
            total_price=plan.total,
            status=OrderStatus.PAID,
        )
        self.orders[order.order_id] = order
        plan.buyer.order_ids.append(order.order_id)
        plan.seller.sale_ids.append(order.order_id)
        return Result.success(order)

    def purchase(self, buyer_id: str, item_id: str, qty: int, date: Optional[str] = None) -> Result:
        """Buy `qty` units of `item_id` for `buyer_id`; returns the new order id.

        All checks run before anything is written. On success the buyer's
        ledger is debited, the seller's credited, stock and sold count move
        by `qty`, and a PAID order is linked from both principals.
        """
        date = date or self.today()
        with self.lock:
            planned = self._plan_purchase(buyer_id, item_id, qty, date)
            committed = self._commit_purchase(planned.value) if planned else planned
        if not committed:
            self._on_rejected(buyer_id, item_id, qty, committed)
            return committed
        self._on_settled(committed.value)
        return Result.success(committed.value.order_id)

    def _on_settled(self, order: Order) -> None:
        inc_purchase("settled")
        self._sales_value.inc(float(order.total_price))
        ts = int(time.time() * 1000)
        log_market_event("purchase_settled", "market", ts=ts, order_id=order.order_id,
                         buyer_id=order.buyer_id, seller_id=order.seller_id,
                         item_id=order.item_id, quantity=order.quantity,
                         total=str(order.total_price))
        try:
            evt = PurchaseSettled(
                ts=ts,
                actor=order.buyer_id,
                subject=order.item_id,
                order_id=order.order_id,
                seller_id=order.seller_id,
                item_id=order.item_id,
                quantity=order.quantity,
                total=order.total_price,
                date=order.date,
            )
            publish_event(EventEnvelope(correlation_id=order.order_id, event=evt))
        except Exception as e:
            logger.warning(f"purchase event not published: {e}")
        self._journal(ts, "purchase", order.buyer_id, order.order_id, "settled",
                      total=str(order.total_price), quantity=order.quantity)

    def _on_rejected(self, buyer_id: str, item_id: str, qty: int, result: Result) -> None:
        reason = result.failure.value if result.failure is not None else "unknown"
        inc_purchase(reason)
        ts = int(time.time() * 1000)
        log_market_event("purchase_rejected", "market", severity="WARNING", ts=ts,
                         buyer_id=buyer_id, item_id=item_id, quantity=qty,
                         reason=reason, detail=result.detail)
        try:
            evt = PurchaseRejected(ts=ts, actor=buyer_id, subject=item_id,
                                   item_id=item_id, quantity=qty, reason=reason)
            publish_event(EventEnvelope(correlation_id=f"{buyer_id}:{item_id}", event=evt))
        except Exception as e:
            logger.warning(f"rejection event not published: {e}")
        self._journal(ts, "purchase", buyer_id, item_id, reason, quantity=qty)

    def _journal(self, ts: int, event: str, actor: str, subject: str, outcome: str, **extra) -> None:
        if not self.journal_path:
            return
        rec = {"ts": ts, "event": event, "actor": actor, "subject": subject, "outcome": outcome}
        rec.update(extra)
        append_jsonl(self.journal_path, rec)

    # ---- order lifecycle ----

    def complete_order(self, seller_id: str, order_id: str) -> Result:
        """Mark a PAID order as COMPLETED. Only the order's seller may do this."""
        with self.lock:
            if seller_id not in self.sellers:
                return Result.fail(Failure.SELLER_NOT_FOUND, f"seller not found: {seller_id}")
            order = self.orders.get(order_id)
            if order is None or order.seller_id != seller_id:
                return Result.fail(Failure.ORDER_NOT_FOUND, f"order {order_id} not sold by {seller_id}")
            if order.status != OrderStatus.PAID:
                return Result.fail(Failure.INVALID_STATUS, f"order {order_id} is {order.status.name}")
            done = replace(order, status=OrderStatus.COMPLETED)
            self.orders[order_id] = done
        try:
            evt = OrderCompleted(ts=int(time.time() * 1000), actor=seller_id, subject=order_id, order_id=order_id)
            publish_event(EventEnvelope(correlation_id=order_id, event=evt))
        except Exception as e:
            logger.warning(f"completion event not published: {e}")
        return Result.success(done)

    # ---- views ----

    def list_items(self) -> List[Item]:
        return [self.items[k] for k in sorted(self.items)]

    def seller_items(self, seller_id: str) -> List[Item]:
        seller = self.sellers.get(seller_id)
        if seller is None:
            return []
        return [self.items[i] for i in seller.item_ids if i in self.items]

    def buyer_orders(self, buyer_id: str) -> List[Order]:
        buyer = self.buyers.get(buyer_id)
        if buyer is None:
            return []
        return [self.orders[o] for o in buyer.order_ids if o in self.orders]

    def seller_sales(self, seller_id: str) -> List[Order]:
        seller = self.sellers.get(seller_id)
        if seller is None:
            return []
        return [self.orders[o] for o in seller.sale_ids if o in self.orders]

    def buyer_spending_within_last_days(self, buyer_id: str, k: int) -> Decimal:
        today = self.today()
        return sum(
            (o.total_price for o in self.buyer_orders(buyer_id) if days_between(today, o.date) <= k),
            Decimal("0"),
        )

    def list_orders_within_last_days(self, k: int) -> List[Order]:
        today = self.today()
        return [self.orders[o] for o in sorted(self.orders) if days_between(today, self.orders[o].date) <= k]

    def list_paid_orders(self) -> List[Order]:
        return [self.orders[o] for o in sorted(self.orders) if self.orders[o].status == OrderStatus.PAID]

    def most_sold_items(self, m: int) -> List[Tuple[str, int]]:
        ranked = sorted(self.items.values(), key=lambda it: (-it.sold_count, it.item_id))
        return [(it.name, it.sold_count) for it in ranked[: max(0, m)]]

    def _rank_today(self, attr: str, n: int) -> List[Tuple[str, int]]:
        today = self.today()
        counts: Dict[str, int] = {}
        for order in self.orders.values():
            if order.date == today:
                key = getattr(order, attr)
                counts[key] = counts.get(key, 0) + 1
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return ranked[: max(0, n)]

    def most_active_buyers_today(self, n: int) -> List[Tuple[str, int]]:
        return self._rank_today("buyer_id", n)

    def most_active_sellers_today(self, n: int) -> List[Tuple[str, int]]:
        return self._rank_today("seller_id", n)
