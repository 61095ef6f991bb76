"""
Interactive operator menus for the marketplace.

Reads operator input, calls the marketplace/bank, prints outcomes. Input and
output functions are injectable so scripted sessions can drive it.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Optional

from .config.loader import Settings
from .ledger.model import finite_amount
from .persistence import save_state
from .store.market import Marketplace, Principal
from .store.model import Buyer, Seller

logger = logging.getLogger(__name__)


def seed_demo(market: Marketplace) -> None:
    """Demo data: one seller with two items and a buyer holding 200."""
    market.register_seller("S1", "alice_seller", "123")
    market.register_buyer("B1", "bob_buyer", "123")
    market.add_item("S1", "I1", "Sword", Decimal("50"), 10)
    market.add_item("S1", "I2", "Shield", Decimal("30"), 5)
    today = market.today()
    market.bank.deposit("B1", Decimal("200"), today, "topup demo")
    market.bank.deposit("S1", Decimal("0"), today, "seller start")


class Shell:
    def __init__(
        self,
        market: Marketplace,
        settings: Settings,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ):
        self.market = market
        self.settings = settings
        self._input = input_fn
        self._out = output_fn

    # ---- input helpers ----

    def _ask(self, prompt: str) -> str:
        return self._input(prompt).strip()

    def _ask_int(self, prompt: str) -> Optional[int]:
        raw = self._ask(prompt)
        try:
            return int(raw)
        except ValueError:
            self._out(f"Not a whole number: {raw!r}")
            return None

    def _ask_amount(self, prompt: str, allow_zero: bool = False) -> Decimal:
        """Ask until the answer is a finite amount above zero (or zero, with `allow_zero`)."""
        while True:
            raw = self._ask(prompt)
            amount = finite_amount(raw)
            if amount is not None and (amount > 0 or (allow_zero and amount == 0)):
                return amount
            self._out(f"Not an amount: {raw!r}")

    def _report(self, result, ok_message: str) -> None:
        self._out(ok_message if result else f"Failed: {result.detail}")

    # ---- main menu ----

    def run(self) -> bool:
        """Run until save-and-exit (returns True) or end of input (returns False)."""
        try:
            while True:
                self._out("\n1) Register Buyer\n2) Register Seller\n3) Login\n"
                          "4) Seed demo data\n5) Save & Exit\n6) Reports")
                choice = self._ask("Choice: ")
                if choice == "1":
                    self._register(self.market.register_buyer, "Buyer")
                elif choice == "2":
                    self._register(self.market.register_seller, "Seller")
                elif choice == "3":
                    self._login()
                elif choice == "4":
                    seed_demo(self.market)
                    self._out("Demo data created.")
                elif choice == "5":
                    res = save_state(self.market, self.market.bank, self.settings.data_dir)
                    self._report(res, "Saved data and exit.")
                    if res:
                        return True
                elif choice == "6":
                    self._reports()
                else:
                    self._out("Invalid choice.")
        except EOFError:
            logger.info("input closed; leaving without saving")
            return False

    def _register(self, register, role: str) -> None:
        user_id = self._ask(f"{role} ID: ")
        username = self._ask("Username: ")
        credential = self._ask("Password: ")
        self._report(register(user_id, username, credential), f"{role} registered.")

    def _login(self) -> None:
        username = self._ask("Username: ")
        credential = self._ask("Password: ")
        res = self.market.login(username, credential)
        if not res:
            self._out("Login failed.")
            return
        user: Principal = res.value
        self._out(f"Welcome, {user.username}!")
        if isinstance(user, Buyer):
            self.buyer_menu(user)
        elif isinstance(user, Seller):
            self.seller_menu(user)

    def _reports(self) -> None:
        bank, market, cfg = self.market.bank, self.market, self.settings
        self._out(f"-- Entries in last {cfg.recent_days} days --")
        for label, amount in bank.entries_within_last_days(cfg.recent_days):
            self._out(f"{label} | {amount}")
        self._out(f"-- Dormant accounts (> {cfg.dormancy_days} days) --")
        for label in bank.accounts_without_recent_activity(cfg.dormancy_days):
            self._out(label)
        self._out("-- Most active accounts today --")
        for label, count in bank.top_active_accounts_today(cfg.top_n):
            self._out(f"{label}: {count}")
        self._out("-- Most sold items --")
        for name, sold in market.most_sold_items(cfg.top_n):
            self._out(f"{name}: {sold}")
        self._out("-- Most active buyers today --")
        for uid, count in market.most_active_buyers_today(cfg.top_n):
            self._out(f"{uid}: {count}")
        self._out("-- Most active sellers today --")
        for uid, count in market.most_active_sellers_today(cfg.top_n):
            self._out(f"{uid}: {count}")
        self._out("-- Paid orders awaiting completion --")
        for o in market.list_paid_orders():
            self._out(f"{o.order_id} | {o.date} | {o.buyer_id} -> {o.seller_id} | {o.item_name} x{o.quantity}")

    # ---- buyer ----

    def buyer_menu(self, buyer: Buyer) -> None:
        bank = self.market.bank
        while True:
            self._out(f"\n=== Buyer Menu === ({buyer.username})\n1) View items\n2) Purchase item\n"
                      "3) View orders\n4) View spending (last k days)\n5) Top-up\n6) Withdraw\n0) Logout")
            c = self._ask("Choice: ")
            if c == "0":
                return
            if c == "1":
                for item in self.market.list_items():
                    self._out(f"{item.item_id} | {item.name} | Price: {item.price} | Stock: {item.stock}")
            elif c == "2":
                item_id = self._ask("Item ID: ")
                qty = self._ask_int("Quantity: ")
                if qty is not None:
                    res = self.market.purchase(buyer.user_id, item_id, qty)
                    self._report(res, f"Purchase successful. Order {res.value}")
            elif c == "3":
                for o in self.market.buyer_orders(buyer.user_id):
                    self._out(f"{o.order_id} | {o.item_name} | {o.total_price} | {o.status.name}")
            elif c == "4":
                k = self._ask_int("Days: ")
                if k is not None:
                    total = self.market.buyer_spending_within_last_days(buyer.user_id, k)
                    self._out(f"Total spending in last {k} days: {total}")
            elif c == "5":
                amount = self._ask_amount("Top-up amount: ")
                res = bank.deposit(buyer.user_id, amount, bank.today(), "topup")
                self._report(res, f"Balance: {bank.get_account(buyer.user_id).balance}")
            elif c == "6":
                amount = self._ask_amount("Withdraw amount: ")
                res = bank.withdraw(buyer.user_id, amount, bank.today(), "withdraw")
                if res:
                    self._out(f"Done. Balance: {bank.get_account(buyer.user_id).balance}")
                else:
                    self._out("Not enough balance.")
            else:
                self._out("Invalid choice.")

    # ---- seller ----

    def seller_menu(self, seller: Seller) -> None:
        market = self.market
        while True:
            self._out(f"\n=== Seller Menu === ({seller.username})\n1) Add item\n2) Replenish item\n"
                      "3) Discard item\n4) Set price\n5) View my items\n6) View sales\n"
                      "7) Complete order\n0) Logout")
            c = self._ask("Choice: ")
            if c == "0":
                return
            if c == "1":
                item_id = self._ask("Item ID: ")
                name = self._ask("Item name: ")
                price = self._ask_amount("Price: ", allow_zero=True)
                stock = self._ask_int("Stock: ")
                if stock is not None:
                    self._report(market.add_item(seller.user_id, item_id, name, price, stock), "Item added.")
            elif c in ("2", "3"):
                item_id = self._ask("Item ID: ")
                qty = self._ask_int("Qty: " if c == "2" else "Discard qty: ")
                if qty is not None:
                    if c == "2":
                        self._report(market.replenish_item(seller.user_id, item_id, qty), "Replenished.")
                    else:
                        self._report(market.discard_item(seller.user_id, item_id, qty), "Discarded.")
            elif c == "4":
                item_id = self._ask("Item ID: ")
                price = self._ask_amount("New price: ", allow_zero=True)
                self._report(market.set_item_price(seller.user_id, item_id, price), "Updated.")
            elif c == "5":
                for item in market.seller_items(seller.user_id):
                    self._out(f"{item.item_id} | {item.name} | Price: {item.price} | Stock: {item.stock}")
            elif c == "6":
                for o in market.seller_sales(seller.user_id):
                    self._out(f"{o.order_id} | {o.buyer_id} | {o.item_name} x{o.quantity} | "
                              f"{o.total_price} | {o.status.name}")
            elif c == "7":
                order_id = self._ask("Order ID: ")
                self._report(market.complete_order(seller.user_id, order_id), "Order completed.")
            else:
                self._out("Invalid choice.")
