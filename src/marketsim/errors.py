"""Failure taxonomy and the result type returned by core operations.

Kinds:
  not_found / already_exists: identifier lookups on create or reference
  insufficient_funds / insufficient_stock: purchase and withdraw preconditions
  data_integrity: records that contradict each other (e.g. orphan items)
  invalid_argument: quantities or prices outside their domain
  io_failure: persistence read/write errors

Core operations report failures through `Result` instead of raising, so the
caller can print an outcome without unwinding anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_STOCK = "insufficient_stock"
    DATA_INTEGRITY = "data_integrity"
    INVALID_ARGUMENT = "invalid_argument"
    IO_FAILURE = "io_failure"


class Failure(str, Enum):
    ACCOUNT_NOT_FOUND = "account_not_found"
    BUYER_NOT_FOUND = "buyer_not_found"
    SELLER_NOT_FOUND = "seller_not_found"
    ITEM_NOT_FOUND = "item_not_found"
    ORDER_NOT_FOUND = "order_not_found"
    ACCOUNT_EXISTS = "account_exists"
    BUYER_EXISTS = "buyer_exists"
    SELLER_EXISTS = "seller_exists"
    ITEM_EXISTS = "item_exists"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_STOCK = "insufficient_stock"
    NO_OWNING_SELLER = "no_owning_seller"
    BUYER_ACCOUNT_MISSING = "buyer_account_missing"
    SELLER_ACCOUNT_MISSING = "seller_account_missing"
    CORRUPT_RECORD = "corrupt_record"
    INVALID_QUANTITY = "invalid_quantity"
    INVALID_PRICE = "invalid_price"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_STATUS = "invalid_status"
    IO_ERROR = "io_error"

    @property
    def kind(self) -> ErrorKind:
        return _KIND_BY_FAILURE[self]


_KIND_BY_FAILURE = {
    Failure.ACCOUNT_NOT_FOUND: ErrorKind.NOT_FOUND,
    Failure.BUYER_NOT_FOUND: ErrorKind.NOT_FOUND,
    Failure.SELLER_NOT_FOUND: ErrorKind.NOT_FOUND,
    Failure.ITEM_NOT_FOUND: ErrorKind.NOT_FOUND,
    Failure.ORDER_NOT_FOUND: ErrorKind.NOT_FOUND,
    Failure.ACCOUNT_EXISTS: ErrorKind.ALREADY_EXISTS,
    Failure.BUYER_EXISTS: ErrorKind.ALREADY_EXISTS,
    Failure.SELLER_EXISTS: ErrorKind.ALREADY_EXISTS,
    Failure.ITEM_EXISTS: ErrorKind.ALREADY_EXISTS,
    Failure.INSUFFICIENT_FUNDS: ErrorKind.INSUFFICIENT_FUNDS,
    Failure.INSUFFICIENT_STOCK: ErrorKind.INSUFFICIENT_STOCK,
    Failure.NO_OWNING_SELLER: ErrorKind.DATA_INTEGRITY,
    Failure.BUYER_ACCOUNT_MISSING: ErrorKind.DATA_INTEGRITY,
    Failure.SELLER_ACCOUNT_MISSING: ErrorKind.DATA_INTEGRITY,
    Failure.CORRUPT_RECORD: ErrorKind.DATA_INTEGRITY,
    Failure.INVALID_QUANTITY: ErrorKind.INVALID_ARGUMENT,
    Failure.INVALID_PRICE: ErrorKind.INVALID_ARGUMENT,
    Failure.INVALID_AMOUNT: ErrorKind.INVALID_ARGUMENT,
    Failure.INVALID_STATUS: ErrorKind.INVALID_ARGUMENT,
    Failure.IO_ERROR: ErrorKind.IO_FAILURE,
}


@dataclass(frozen=True)
class Result:
    """Outcome of a core operation. Truthy when the operation succeeded."""

    ok: bool
    value: Any = None
    failure: Optional[Failure] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.ok

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.failure.kind if self.failure is not None else None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def fail(cls, failure: Failure, detail: str = "") -> "Result":
        return cls(ok=False, failure=failure, detail=detail or failure.value)


class MarketError(Exception):
    """Raised inside the persistence layer; converted to a `Result` at its boundary."""

    def __init__(self, failure: Failure, message: str) -> None:
        self.failure = failure
        self.message = message
        super().__init__(message)

    def to_result(self) -> Result:
        return Result.fail(self.failure, self.message)
