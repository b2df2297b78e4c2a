"""Read-only views over inventory records and the movement ledger."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from sqlalchemy.orm import Session

from . import ledger, models, records


@dataclass(slots=True, frozen=True)
class ReconciliationReport:
    product_id: str
    on_hand: int
    reserved: int
    ledger_on_hand: int
    ledger_reserved: int
    movement_count: int

    @property
    def consistent(self) -> bool:
        return self.on_hand == self.ledger_on_hand and self.reserved == self.ledger_reserved


def list_inventory(
    db: Session,
    *,
    active: bool | None = None,
    low_stock: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> list[models.InventoryRecord]:
    return records.list_records(db, active=active, low_stock=low_stock, skip=offset, limit=limit)


def low_stock(db: Session, *, limit: int = 50, offset: int = 0) -> list[models.InventoryRecord]:
    """Active records whose available quantity is at or below their reorder level."""

    return records.list_records(db, active=True, low_stock=True, skip=offset, limit=limit)


def get_inventory(db: Session, product_id: str) -> models.InventoryRecord:
    return records.get(db, product_id)


def get_inventory_by_id(db: Session, record_id: int) -> models.InventoryRecord:
    return records.get_by_id(db, record_id)


def list_movements(
    db: Session,
    criteria: ledger.MovementFilter = ledger.MovementFilter(),
    *,
    limit: int = 50,
    cursor: str | None = None,
) -> ledger.MovementPage:
    return ledger.query(db, criteria, limit=limit, cursor=cursor)


def reconcile(db: Session, product_id: str) -> ReconciliationReport:
    """Replay a product's movements and compare the totals with its record."""

    record = records.get(db, product_id)
    on_hand, reserved, count = ledger.replay(
        ledger.iter_movements(db, ledger.MovementFilter(product_id=product_id))
    )
    return ReconciliationReport(
        product_id=product_id,
        on_hand=record.quantity_on_hand,
        reserved=record.quantity_reserved,
        ledger_on_hand=on_hand,
        ledger_reserved=reserved,
        movement_count=count,
    )


def reconcile_all(db: Session, *, page_size: int = 200) -> Iterator[ReconciliationReport]:
    offset = 0
    while True:
        batch = records.list_records(db, skip=offset, limit=page_size)
        if not batch:
            return
        for record in batch:
            yield reconcile(db, record.product_id)
        offset += len(batch)
