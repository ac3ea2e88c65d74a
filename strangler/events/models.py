"""Pydantic models for the event payloads.

The same model is used to decode the HTTP body and to serialize the Kafka
message, so the topic always carries exactly the fields declared here.

Validation is strict about JSON types (a quoted number is not an int) but
deliberately permissive about values: free-form actions and statuses,
negative amounts and empty titles all pass. Unknown fields are dropped.

Every field is required: a body such as {"movie_id": 1} is answered with
400 rather than published with zero-valued defaults for the missing fields.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from .config import MOVIE_TOPIC, PAYMENT_TOPIC, USER_TOPIC


class Event(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")


class MovieEvent(Event):
    movie_id: int
    title: str
    action: str
    user_id: int


class UserEvent(Event):
    """User activity; `timestamp` is set by the caller, not by this service."""

    user_id: int
    username: str
    action: str
    timestamp: datetime


class PaymentEvent(Event):
    payment_id: int
    user_id: int
    amount: float
    status: str
    timestamp: datetime


EVENT_TOPICS: dict[type[Event], str] = {
    MovieEvent: MOVIE_TOPIC,
    UserEvent: USER_TOPIC,
    PaymentEvent: PAYMENT_TOPIC,
}
