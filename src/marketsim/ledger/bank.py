from __future__ import annotations

import threading
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import Failure, Result
from ..logs.activity_log import log_market_event
from ..metrics.market import (
    get_ledger_entries_total,
    get_ledger_rejections_total,
    get_open_accounts,
)
from .calendar import days_between, today_date
from .model import Account, Amount, LedgerEntry, finite_amount


class Bank:
    """Mapping of account id to `Account` with balance-checked movements.

    `clock` returns today's date as `YYYY-MM-DD`; every "today"-relative view
    (dormancy, recent entries, activity ranking) reads it.
    """

    def __init__(self, clock: Optional[Callable[[], str]] = None):
        self.accounts: Dict[str, Account] = {}
        self._clock = clock or today_date
        self._lock = threading.RLock()
        self._entries_counter = get_ledger_entries_total()
        self._rejections = get_ledger_rejections_total()
        self._open_gauge = get_open_accounts()

    def today(self) -> str:
        return self._clock()

    def get_account(self, account_id: str) -> Optional[Account]:
        return self.accounts.get(account_id)

    def _sorted_accounts(self) -> List[Account]:
        return [self.accounts[k] for k in sorted(self.accounts)]

    def _count_entry(self, entry: LedgerEntry) -> None:
        self._entries_counter.labels("credit" if entry.amount >= 0 else "debit").inc()

    def _reject(self, failure: Failure, account_id: str, detail: str = "") -> Result:
        self._rejections.labels(failure.value).inc()
        log_market_event("ledger_rejected", "ledger", severity="WARNING",
                         account_id=account_id, reason=failure.value)
        return Result.fail(failure, detail or f"{failure.value}: {account_id}")

    def _invalid_amount(self, account_id: str, amount: Amount) -> Result:
        return self._reject(Failure.INVALID_AMOUNT, account_id, f"not a finite amount: {amount!r}")

    def open_account(self, account_id: str, owner_name: str, initial_balance: Amount = 0) -> Result:
        initial = finite_amount(initial_balance)
        if initial is None:
            return self._invalid_amount(account_id, initial_balance)
        with self._lock:
            if account_id in self.accounts:
                return self._reject(Failure.ACCOUNT_EXISTS, account_id)
            acc = Account(account_id=account_id, owner_name=owner_name)
            if initial != 0:
                self._count_entry(acc.deposit(initial, self.today(), "initial"))
            self.accounts[account_id] = acc
            self._open_gauge.set(len(self.accounts))
        return Result.success(acc)

    def adopt(self, account: Account) -> Result:
        """Register an already-built account (used when restoring saved state)."""
        with self._lock:
            if account.account_id in self.accounts:
                return Result.fail(Failure.ACCOUNT_EXISTS, account.account_id)
            self.accounts[account.account_id] = account
            self._open_gauge.set(len(self.accounts))
        return Result.success(account)

    def deposit(self, account_id: str, amount: Amount, date: str, note: str = "") -> Result:
        value = finite_amount(amount)
        if value is None:
            return self._invalid_amount(account_id, amount)
        with self._lock:
            acc = self.accounts.get(account_id)
            if acc is None:
                return self._reject(Failure.ACCOUNT_NOT_FOUND, account_id)
            entry = acc.deposit(value, date, note)
        self._count_entry(entry)
        return Result.success(entry)

    def withdraw(self, account_id: str, amount: Amount, date: str, note: str = "") -> Result:
        value = finite_amount(amount)
        if value is None:
            return self._invalid_amount(account_id, amount)
        with self._lock:
            acc = self.accounts.get(account_id)
            if acc is None:
                return self._reject(Failure.ACCOUNT_NOT_FOUND, account_id)
            entry = acc.withdraw(value, date, note)
            if entry is None:
                return self._reject(
                    Failure.INSUFFICIENT_FUNDS,
                    account_id,
                    f"insufficient funds in {account_id}: balance {acc.balance}, requested {value}",
                )
        self._count_entry(entry)
        return Result.success(entry)

    def transfer(
        self,
        source_id: str,
        target_id: str,
        amount: Amount,
        date: str,
        debit_note: str = "",
        credit_note: str = "",
    ) -> Result:
        """Move `amount` from source to target as one unit: both entries or neither.

        Returns the (debit, credit) entry pair on success.
        """
        value = finite_amount(amount)
        if value is None or value < 0:
            return self._reject(Failure.INVALID_AMOUNT, source_id,
                                f"transfer amount must be finite and non-negative: {amount!r}")
        with self._lock:
            src = self.accounts.get(source_id)
            dst = self.accounts.get(target_id)
            if src is None:
                return self._reject(Failure.ACCOUNT_NOT_FOUND, source_id)
            if dst is None:
                return self._reject(Failure.ACCOUNT_NOT_FOUND, target_id)
            if not src.can_cover(value):
                return self._reject(Failure.INSUFFICIENT_FUNDS, source_id)
            debit = src.withdraw(value, date, debit_note)
            credit = dst.deposit(value, date, credit_note)
        self._count_entry(debit)
        self._count_entry(credit)
        return Result.success((debit, credit))

    def list_customers(self) -> List[str]:
        return [acc.label for acc in self._sorted_accounts()]

    def entries_within_last_days(self, window: int = 7) -> List[Tuple[str, Decimal]]:
        """Entries no older than `window` days as ("<date> | <owner>", amount).

        Sorted by the composed label, descending. The label starts with the
        date, so this is roughly newest first, but same-day entries order by
        owner name rather than by time.
        """
        today = self.today()
        out: List[Tuple[str, Decimal]] = []
        for acc in self._sorted_accounts():
            for entry in acc.entries:
                if days_between(today, entry.date) <= window:
                    out.append((f"{entry.date} | {acc.owner_name}", entry.amount))
        out.sort(key=lambda pair: pair[0], reverse=True)
        return out

    def accounts_without_recent_activity(self, threshold_days: int = 30) -> List[str]:
        """Accounts with no entries, or whose last entry is more than `threshold_days` old."""
        today = self.today()
        out: List[str] = []
        for acc in self._sorted_accounts():
            if not acc.entries:
                out.append(acc.label)
            elif days_between(today, acc.last_entry_date()) > threshold_days:
                out.append(acc.label)
        return out

    def top_active_accounts_today(self, n: int) -> List[Tuple[str, int]]:
        today = self.today()
        counts: List[Tuple[str, str, int]] = []
        for acc in self._sorted_accounts():
            c = sum(1 for e in acc.entries if e.date == today)
            if c > 0:
                counts.append((acc.account_id, acc.label, c))
        counts.sort(key=lambda t: (-t[2], t[0]))
        return [(label, c) for _id, label, c in counts[: max(0, n)]]
