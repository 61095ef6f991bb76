from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union

Amount = Union[Decimal, int, float, str]


def to_amount(value: Amount) -> Decimal:
    """Coerce to Decimal; floats go through their shortest repr, not binary expansion."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def finite_amount(value: Amount) -> Optional[Decimal]:
    """`to_amount`, or None when the value does not parse or is NaN/Infinity."""
    try:
        amount = to_amount(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    return amount if amount.is_finite() else None


@dataclass(frozen=True)
class LedgerEntry:
    date: str
    amount: Decimal  # + deposit, - withdraw
    note: str = ""


@dataclass
class Account:
    """A balance plus its append-only entry history.

    `balance` always equals the sum of `entries`; entries are only ever added
    through `deposit`/`withdraw` and never edited afterwards.
    """

    account_id: str
    owner_name: str
    balance: Decimal = Decimal("0")
    entries: List[LedgerEntry] = field(default_factory=list)

    @classmethod
    def restore(cls, account_id: str, owner_name: str, entries: Iterable[LedgerEntry]) -> "Account":
        acc = cls(account_id=account_id, owner_name=owner_name)
        for entry in entries:
            acc._append(entry)
        return acc

    @property
    def label(self) -> str:
        return f"{self.owner_name} ({self.account_id})"

    def _append(self, entry: LedgerEntry) -> LedgerEntry:
        self.entries.append(entry)
        self.balance += entry.amount
        return entry

    def deposit(self, amount: Amount, date: str, note: str = "") -> LedgerEntry:
        # Sign is not checked: a negative deposit acts as an uncapped withdrawal.
        return self._append(LedgerEntry(date=date, amount=to_amount(amount), note=note))

    def withdraw(self, amount: Amount, date: str, note: str = "") -> Optional[LedgerEntry]:
        amount = to_amount(amount)
        if amount > self.balance:
            return None
        return self._append(LedgerEntry(date=date, amount=-amount, note=note))

    def can_cover(self, amount: Amount) -> bool:
        return to_amount(amount) <= self.balance

    def last_entry_date(self) -> str:
        """Date of the most recent entry, or "" when there is none."""
        if not self.entries:
            return ""
        return self.entries[-1].date

    def recomputed_balance(self) -> Decimal:
        return sum((e.amount for e in self.entries), Decimal("0"))
