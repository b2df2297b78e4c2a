"""Database models."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MovementType(str, enum.Enum):
    ADJUSTMENT_IN = "ADJUSTMENT_IN"
    ADJUSTMENT_OUT = "ADJUSTMENT_OUT"
    RESERVE = "RESERVE"
    RELEASE_CANCEL = "RELEASE_CANCEL"
    RELEASE_CONSUME = "RELEASE_CONSUME"

    @property
    def on_hand_sign(self) -> int:
        return _ON_HAND_SIGN[self]

    @property
    def reserved_sign(self) -> int:
        return _RESERVED_SIGN[self]


_ON_HAND_SIGN = {
    MovementType.ADJUSTMENT_IN: 1,
    MovementType.ADJUSTMENT_OUT: -1,
    MovementType.RESERVE: 0,
    MovementType.RELEASE_CANCEL: 0,
    MovementType.RELEASE_CONSUME: -1,
}

_RESERVED_SIGN = {
    MovementType.ADJUSTMENT_IN: 0,
    MovementType.ADJUSTMENT_OUT: 0,
    MovementType.RESERVE: 1,
    MovementType.RELEASE_CANCEL: -1,
    MovementType.RELEASE_CONSUME: -1,
}

RELEASE_TYPES = (MovementType.RELEASE_CANCEL, MovementType.RELEASE_CONSUME)
ADJUSTMENT_TYPES = (MovementType.ADJUSTMENT_IN, MovementType.ADJUSTMENT_OUT)


class ReleaseMode(str, enum.Enum):
    CANCEL = "CANCEL"
    CONSUME = "CONSUME"

    @property
    def movement_type(self) -> MovementType:
        if self is ReleaseMode.CANCEL:
            return MovementType.RELEASE_CANCEL
        return MovementType.RELEASE_CONSUME


class InventoryRecord(Base):
    """Current quantity state of one product."""

    __tablename__ = "inventory_records"
    __table_args__ = (
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint("quantity_reserved <= quantity_on_hand", name="ck_inventory_reserved_within_on_hand"),
        CheckConstraint("reorder_level >= 0", name="ck_inventory_reorder_level_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def available(self) -> int:
        return self.quantity_on_hand - self.quantity_reserved

    @property
    def is_low_stock(self) -> bool:
        return self.available <= self.reorder_level

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return (
            f"<InventoryRecord product_id={self.product_id!r} on_hand={self.quantity_on_hand} "
            f"reserved={self.quantity_reserved} v{self.version}>"
        )


class StockMovement(Base):
    """Immutable ledger entry for one quantity-changing event."""

    __tablename__ = "stock_movements"
    __table_args__ = (
        UniqueConstraint("product_id", "movement_type", "reference", name="uq_movement_reference"),
        CheckConstraint("quantity > 0", name="ck_movement_quantity_positive"),
        Index("ix_movement_product_created", "product_id", "created_at", "id"),
        Index("ix_movement_created", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    movement_type: Mapped[MovementType] = mapped_column(
        Enum(MovementType, native_enum=False, length=32), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    reason: Mapped[str | None] = mapped_column(String(128), nullable=True)
    resulting_on_hand: Mapped[int] = mapped_column(Integer, nullable=False)
    resulting_reserved: Mapped[int] = mapped_column(Integer, nullable=False)
    record_version: Mapped[int] = mapped_column(Integer, nullable=False)
    actor: Mapped[str] = mapped_column(String(256), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def on_hand_delta(self) -> int:
        return self.movement_type.on_hand_sign * self.quantity

    @property
    def reserved_delta(self) -> int:
        return self.movement_type.reserved_sign * self.quantity

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<StockMovement #{self.id} {self.movement_type.value} {self.product_id} x{self.quantity}>"
