"""Inventory record store.

Durable mapping of product id to its current quantity state. Writes go
through :func:`compare_and_swap`, which only succeeds against the version the
caller read, so a writer that lost a race finds out instead of overwriting.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .exceptions import AlreadyExistsError, NotFoundError, ValidationError, VersionConflictError

PRODUCT_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,63}$")

# Fields compare_and_swap may write. Never the identity columns.
_MUTABLE_FIELDS = frozenset(
    {
        "quantity_on_hand",
        "quantity_reserved",
        "is_active",
        "location",
        "reorder_level",
        "notes",
        "updated_at",
    }
)


def validate_product_id(product_id: str) -> str:
    """Check the format of *product_id*; existence is the catalog's concern."""

    if not isinstance(product_id, str) or not PRODUCT_ID_PATTERN.match(product_id):
        raise ValidationError(
            f"Invalid product id {product_id!r}: expected 1-64 characters of letters, digits, '_', '.', ':' or '-'"
        )
    return product_id


def find(db: Session, product_id: str) -> Optional[models.InventoryRecord]:
    statement = select(models.InventoryRecord).where(models.InventoryRecord.product_id == product_id)
    return db.scalars(statement).first()


def get(db: Session, product_id: str) -> models.InventoryRecord:
    record = find(db, product_id)
    if record is None:
        raise NotFoundError(f"No inventory record for product {product_id}")
    return record


def get_by_id(db: Session, record_id: int) -> models.InventoryRecord:
    record = db.get(models.InventoryRecord, record_id)
    if record is None:
        raise NotFoundError(f"No inventory record with id {record_id}")
    return record


def create(
    db: Session,
    product_id: str,
    initial_on_hand: int,
    *,
    now: datetime,
    location: str | None = None,
    reorder_level: int = 0,
    notes: str | None = None,
) -> models.InventoryRecord:
    validate_product_id(product_id)
    if initial_on_hand < 0:
        raise ValidationError("initial_on_hand must be zero or positive")
    if reorder_level < 0:
        raise ValidationError("reorder_level must be zero or positive")
    if find(db, product_id) is not None:
        raise AlreadyExistsError(product_id)

    record = models.InventoryRecord(
        product_id=product_id,
        quantity_on_hand=initial_on_hand,
        quantity_reserved=0,
        version=1,
        is_active=True,
        location=location,
        reorder_level=reorder_level,
        notes=notes,
        created_at=now,
        updated_at=now,
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError as exc:
        # Lost a race with another creator of the same product.
        raise AlreadyExistsError(product_id) from exc
    return record


def compare_and_swap(
    db: Session, record: models.InventoryRecord, expected_version: int, **changes: Any
) -> models.InventoryRecord:
    """Write *changes* only if the stored version still equals *expected_version*.

    The version is bumped by one in the same statement. Raises
    :class:`VersionConflictError` when another writer got there first.
    """

    unknown = set(changes) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not writable through compare_and_swap: {sorted(unknown)}")

    statement = (
        update(models.InventoryRecord)
        .where(
            models.InventoryRecord.id == record.id,
            models.InventoryRecord.version == expected_version,
        )
        .values(version=models.InventoryRecord.version + 1, **changes)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(statement)
    if result.rowcount != 1:
        raise VersionConflictError(record.product_id, expected_version)
    db.refresh(record)
    return record


def list_records(
    db: Session,
    *,
    active: bool | None = None,
    low_stock: bool = False,
    skip: int = 0,
    limit: int = 50,
) -> list[models.InventoryRecord]:
    statement = select(models.InventoryRecord)
    if active is not None:
        statement = statement.where(models.InventoryRecord.is_active.is_(active))
    if low_stock:
        statement = statement.where(
            models.InventoryRecord.quantity_on_hand - models.InventoryRecord.quantity_reserved
            <= models.InventoryRecord.reorder_level
        )
    statement = statement.order_by(models.InventoryRecord.product_id).offset(skip).limit(limit)
    return list(db.scalars(statement))


def count_records(db: Session, *, active: bool | None = None) -> int:
    statement = select(func.count()).select_from(models.InventoryRecord)
    if active is not None:
        statement = statement.where(models.InventoryRecord.is_active.is_(active))
    return db.scalar(statement) or 0
