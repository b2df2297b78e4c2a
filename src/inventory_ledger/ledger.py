"""Append-only movement ledger.

Every quantity change is written here in the same transaction as the record
update it describes. The ledger doubles as the idempotency index: a retried
reserve or release is recognised by looking up its reference.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .exceptions import ValidationError, VersionConflictError


@dataclass(slots=True)
class MovementPage:
    items: list[models.StockMovement]
    next_cursor: str | None


@dataclass(slots=True, frozen=True)
class MovementFilter:
    product_id: str | None = None
    types: tuple[models.MovementType, ...] = ()
    since: datetime | None = None
    until: datetime | None = None
    reference: str | None = None


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def encode_cursor(movement: models.StockMovement) -> str:
    raw = f"{as_utc(movement.created_at).isoformat()}|{movement.id}".encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_cursor(cursor: str) -> tuple[datetime, int]:
    padding = "=" * (-len(cursor) % 4)
    try:
        created_raw, id_raw = base64.urlsafe_b64decode(cursor + padding).decode().split("|", 1)
        return as_utc(datetime.fromisoformat(created_raw)), int(id_raw)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ValidationError(f"Malformed pagination cursor {cursor!r}") from exc


def append(db: Session, movement: models.StockMovement) -> models.StockMovement:
    """Add *movement* to the ledger and return it with its id assigned."""

    db.add(movement)
    try:
        db.flush()
    except IntegrityError as exc:
        # The (product, type, reference) index caught a concurrent duplicate;
        # the guard re-reads and will find the winner's entry.
        raise VersionConflictError(movement.product_id) from exc
    return movement


def find_by_reference(
    db: Session,
    product_id: str,
    reference: str,
    types: Sequence[models.MovementType],
) -> Optional[models.StockMovement]:
    statement = (
        select(models.StockMovement)
        .where(
            models.StockMovement.product_id == product_id,
            models.StockMovement.reference == reference,
            models.StockMovement.movement_type.in_(list(types)),
        )
        .order_by(models.StockMovement.created_at.desc(), models.StockMovement.id.desc())
    )
    return db.scalars(statement).first()


def _filtered(criteria: MovementFilter):
    statement = select(models.StockMovement)
    if criteria.product_id:
        statement = statement.where(models.StockMovement.product_id == criteria.product_id)
    if criteria.types:
        statement = statement.where(models.StockMovement.movement_type.in_(list(criteria.types)))
    if criteria.since is not None:
        statement = statement.where(models.StockMovement.created_at >= as_utc(criteria.since))
    if criteria.until is not None:
        statement = statement.where(models.StockMovement.created_at < as_utc(criteria.until))
    if criteria.reference:
        statement = statement.where(models.StockMovement.reference == criteria.reference)
    return statement


def query(
    db: Session,
    criteria: MovementFilter = MovementFilter(),
    *,
    limit: int = 50,
    cursor: str | None = None,
) -> MovementPage:
    """Return one page of movements in ascending ``(created_at, id)`` order."""

    if limit < 1:
        raise ValidationError("limit must be at least 1")
    if criteria.since is not None and criteria.until is not None and as_utc(criteria.since) >= as_utc(criteria.until):
        raise ValidationError("'since' must be earlier than 'until'")

    statement = _filtered(criteria)
    if cursor:
        created_at, last_id = decode_cursor(cursor)
        statement = statement.where(
            or_(
                models.StockMovement.created_at > created_at,
                and_(models.StockMovement.created_at == created_at, models.StockMovement.id > last_id),
            )
        )
    statement = statement.order_by(models.StockMovement.created_at, models.StockMovement.id).limit(limit + 1)
    rows = list(db.scalars(statement))
    has_more = len(rows) > limit
    items = rows[:limit]
    next_cursor = encode_cursor(items[-1]) if has_more and items else None
    return MovementPage(items=items, next_cursor=next_cursor)


def iter_movements(
    db: Session,
    criteria: MovementFilter = MovementFilter(),
    *,
    page_size: int = 500,
    cursor: str | None = None,
) -> Iterator[models.StockMovement]:
    """Lazily walk every matching movement, one page at a time."""

    while True:
        page = query(db, criteria, limit=page_size, cursor=cursor)
        yield from page.items
        if page.next_cursor is None:
            return
        cursor = page.next_cursor


def replay(movements: Iterable[models.StockMovement]) -> tuple[int, int, int]:
    """Sum signed deltas; returns ``(on_hand, reserved, movement_count)``."""

    on_hand = reserved = count = 0
    for movement in movements:
        on_hand += movement.on_hand_delta
        reserved += movement.reserved_delta
        count += 1
    return on_hand, reserved, count
