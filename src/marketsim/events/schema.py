from __future__ import annotations

from decimal import Decimal
from typing import List, Literal, Optional, Union
from pydantic import BaseModel, Field


# ---- Base ----

class BaseEvent(BaseModel):
    event_type: str
    ts: int
    actor: str
    subject: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


# ---- Event types ----

class PurchaseSettled(BaseEvent):
    event_type: Literal["purchase_settled"] = "purchase_settled"
    order_id: str
    seller_id: str
    item_id: str
    quantity: int
    total: Decimal
    date: str


class PurchaseRejected(BaseEvent):
    event_type: Literal["purchase_rejected"] = "purchase_rejected"
    item_id: str
    quantity: int
    reason: str


class OrderCompleted(BaseEvent):
    event_type: Literal["order_completed"] = "order_completed"
    order_id: str


class StateSaved(BaseEvent):
    event_type: Literal["state_saved"] = "state_saved"
    directory: str
    accounts: int
    orders: int


class StateLoaded(BaseEvent):
    event_type: Literal["state_loaded"] = "state_loaded"
    directory: str
    accounts: int
    orders: int


AnyEvent = Union[
    PurchaseSettled,
    PurchaseRejected,
    OrderCompleted,
    StateSaved,
    StateLoaded,
]


# ---- Envelope ----

class EventEnvelope(BaseModel):
    schema_version: str = "v1"
    correlation_id: str
    sequence: int = 0
    event: AnyEvent
