"""Pydantic schemas for API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StringConstraints, field_validator

from .ledger import as_utc
from .models import MovementType, ReleaseMode
from .records import PRODUCT_ID_PATTERN

ProductId = Annotated[str, StringConstraints(min_length=1, max_length=64, pattern=PRODUCT_ID_PATTERN.pattern)]


class InventoryCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_id: ProductId
    initial_on_hand: StrictInt = Field(0, ge=0)
    location: Optional[str] = Field(None, max_length=128)
    reorder_level: StrictInt = Field(0, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)


class InventoryUpdate(BaseModel):
    """Descriptive fields only; quantities are rejected as unknown fields."""

    model_config = ConfigDict(extra="forbid")

    location: Optional[str] = Field(None, max_length=128)
    reorder_level: Optional[StrictInt] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)
    is_active: Optional[StrictBool] = None


class InventoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: str
    quantity_on_hand: int
    quantity_reserved: int
    available: int
    version: int
    is_active: bool
    location: Optional[str] = None
    reorder_level: int
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _normalise(cls, value: datetime) -> datetime:
        return as_utc(value)


class AdjustRequest(BaseModel):
    product_id: ProductId
    delta: StrictInt = Field(..., description="Positive adds units, negative removes them")
    reason: str = Field(..., min_length=1, max_length=128)
    reference: Optional[str] = Field(
        None, min_length=1, max_length=128, description="Optional idempotency key"
    )

    @field_validator("delta")
    @classmethod
    def _non_zero(cls, value: int) -> int:
        if value == 0:
            raise ValueError("delta must not be zero")
        return value


class ReserveRequest(BaseModel):
    product_id: ProductId
    quantity: StrictInt = Field(..., gt=0)
    reservation_ref: str = Field(..., min_length=1, max_length=128)
    strict: Optional[StrictBool] = Field(
        None, description="Fail with DUPLICATE_RESERVATION instead of replaying a known reference"
    )


class ReleaseRequest(BaseModel):
    product_id: ProductId
    reservation_ref: str = Field(..., min_length=1, max_length=128)
    mode: ReleaseMode


class MovementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: str
    movement_type: MovementType
    quantity: int
    reference: Optional[str] = None
    reason: Optional[str] = None
    resulting_on_hand: int
    resulting_reserved: int
    record_version: int
    actor: str
    created_at: datetime

    @field_validator("created_at", mode="after")
    @classmethod
    def _normalise(cls, value: datetime) -> datetime:
        return as_utc(value)


class OperationRead(BaseModel):
    record: InventoryRead
    movement: Optional[MovementRead] = None
    replayed: bool = False


class MovementPageRead(BaseModel):
    items: list[MovementRead]
    next_cursor: Optional[str] = None


class ReconciliationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    on_hand: int
    reserved: int
    ledger_on_hand: int
    ledger_reserved: int
    movement_count: int
    consistent: bool


class ErrorRead(BaseModel):
    detail: str
    code: str
    retryable: bool = False
