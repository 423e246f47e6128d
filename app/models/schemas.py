from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, EmailStr, Field


class HealthResponse(BaseModel):
    status: str
    time: datetime


class MigrationRunResponse(BaseModel):
    status: str
    applied_at: datetime


class BuyerIdentity(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str = Field(..., min_length=10, max_length=50)


class PaymentCredential(BaseModel):
    token: str = Field(..., min_length=1, max_length=255)
    expiry: str = Field(..., pattern=r"^\d{4}$", description="MMYY")
    cvv: str = Field(..., pattern=r"^\d{3,4}$")
    postal: Optional[str] = Field(None, max_length=20)

    @property
    def last_four(self) -> str:
        return self.token[-4:]


class OpaqueCredential(BaseModel):
    """Accept.js payment nonce; the card itself never reaches this service."""

    data_descriptor: str = Field(..., min_length=1, max_length=255)
    data_value: str = Field(..., min_length=1)

    @property
    def last_four(self) -> Optional[str]:
        return None


Credential = Union[PaymentCredential, OpaqueCredential]


class EntryRequest(BaseModel):
    buyer: BuyerIdentity
    payment: Credential


class EntryResponse(BaseModel):
    ticket_number: int
    amount_charged: int
    payment_reference: str


class EntryErrorResponse(BaseModel):
    error_kind: str
    message: str
    blocked: Optional[bool] = None
    remaining_attempts: Optional[int] = None


class InitializeRequest(BaseModel):
    size: Optional[int] = Field(None, gt=0, le=100000)


class InitializeResponse(BaseModel):
    already_initialized: bool
    count: int
    message: str


class TicketOut(BaseModel):
    number: int
    state: str


class TicketStats(BaseModel):
    total: int
    sold: int
    reserved: int
    available: int


class TicketBoardResponse(BaseModel):
    tickets: list[TicketOut]
    stats: TicketStats


class SweepResponse(BaseModel):
    released: list[int]
