"""HTTP routes for the inventory ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from . import queries
from .auth import ADJUST_ROLES, MANAGE_ROLES, RESERVATION_ROLES, require_roles
from .dependencies import get_db, get_stock_service, pagination_params
from .identity import Actor
from .ledger import MovementFilter
from .models import MovementType
from .operations import OperationResult, StockService
from .schemas import (
    AdjustRequest,
    InventoryCreate,
    InventoryRead,
    InventoryUpdate,
    MovementPageRead,
    MovementRead,
    OperationRead,
    ReconciliationRead,
    ReleaseRequest,
    ReserveRequest,
)

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _operation(result: OperationResult) -> OperationRead:
    return OperationRead(
        record=InventoryRead.model_validate(result.record),
        movement=MovementRead.model_validate(result.movement) if result.movement else None,
        replayed=result.replayed,
    )


def _movement_page(
    db: Session,
    request: Request,
    criteria: MovementFilter,
    limit: Optional[int],
    cursor: Optional[str],
) -> MovementPageRead:
    page = queries.list_movements(
        db,
        criteria,
        limit=request.app.state.settings.clamp_page_size(limit),
        cursor=cursor,
    )
    return MovementPageRead(
        items=[MovementRead.model_validate(item) for item in page.items],
        next_cursor=page.next_cursor,
    )


@router.post("", response_model=InventoryRead, status_code=status.HTTP_201_CREATED)
def create_inventory(
    payload: InventoryCreate,
    service: StockService = Depends(get_stock_service),
    actor: Actor = Depends(require_roles(MANAGE_ROLES)),
) -> InventoryRead:
    result = service.create(
        payload.product_id,
        payload.initial_on_hand,
        actor,
        location=payload.location,
        reorder_level=payload.reorder_level,
        notes=payload.notes,
    )
    return InventoryRead.model_validate(result.record)


@router.get("", response_model=list[InventoryRead])
def list_inventory(
    active: Optional[bool] = None,
    low_stock: bool = False,
    pagination: tuple[int, int] = Depends(pagination_params),
    db: Session = Depends(get_db),
) -> list[InventoryRead]:
    limit, offset = pagination
    items = queries.list_inventory(db, active=active, low_stock=low_stock, limit=limit, offset=offset)
    return [InventoryRead.model_validate(item) for item in items]


@router.get("/movements", response_model=MovementPageRead)
def list_movements(
    request: Request,
    product_id: Optional[str] = None,
    movement_type: Optional[list[MovementType]] = Query(None, alias="type"),
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    reference: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = None,
    db: Session = Depends(get_db),
) -> MovementPageRead:
    criteria = MovementFilter(
        product_id=product_id,
        types=tuple(movement_type or ()),
        since=since,
        until=until,
        reference=reference,
    )
    return _movement_page(db, request, criteria, limit, cursor)


@router.get("/movements/product/{product_id}", response_model=MovementPageRead)
def list_product_movements(
    product_id: str,
    request: Request,
    movement_type: Optional[list[MovementType]] = Query(None, alias="type"),
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = None,
    db: Session = Depends(get_db),
) -> MovementPageRead:
    criteria = MovementFilter(product_id=product_id, types=tuple(movement_type or ()))
    return _movement_page(db, request, criteria, limit, cursor)


@router.get("/product/{product_id}", response_model=InventoryRead)
def get_inventory_by_product(product_id: str, db: Session = Depends(get_db)) -> InventoryRead:
    return InventoryRead.model_validate(queries.get_inventory(db, product_id))


@router.get("/product/{product_id}/reconcile", response_model=ReconciliationRead)
def reconcile_product(product_id: str, db: Session = Depends(get_db)) -> ReconciliationRead:
    return ReconciliationRead.model_validate(queries.reconcile(db, product_id))


@router.put("/product/{product_id}", response_model=InventoryRead)
def update_inventory(
    product_id: str,
    payload: InventoryUpdate,
    service: StockService = Depends(get_stock_service),
    actor: Actor = Depends(require_roles(MANAGE_ROLES)),
) -> InventoryRead:
    result = service.update_metadata(product_id, actor, **payload.model_dump(exclude_unset=True))
    return InventoryRead.model_validate(result.record)


@router.delete("/product/{product_id}", response_model=InventoryRead)
def delete_inventory(
    product_id: str,
    service: StockService = Depends(get_stock_service),
    actor: Actor = Depends(require_roles(MANAGE_ROLES)),
) -> InventoryRead:
    return InventoryRead.model_validate(service.deactivate(product_id, actor).record)


@router.post("/adjust", response_model=OperationRead)
def adjust_stock(
    payload: AdjustRequest,
    service: StockService = Depends(get_stock_service),
    actor: Actor = Depends(require_roles(ADJUST_ROLES)),
) -> OperationRead:
    result = service.adjust(payload.product_id, payload.delta, payload.reason, actor, reference=payload.reference)
    return _operation(result)


@router.post("/reserve", response_model=OperationRead)
def reserve_stock(
    payload: ReserveRequest,
    service: StockService = Depends(get_stock_service),
    actor: Actor = Depends(require_roles(RESERVATION_ROLES)),
) -> OperationRead:
    result = service.reserve(
        payload.product_id, payload.quantity, payload.reservation_ref, actor, strict=payload.strict
    )
    return _operation(result)


@router.post("/release", response_model=OperationRead)
def release_stock(
    payload: ReleaseRequest,
    service: StockService = Depends(get_stock_service),
    actor: Actor = Depends(require_roles(RESERVATION_ROLES)),
) -> OperationRead:
    result = service.release(payload.product_id, payload.reservation_ref, payload.mode, actor)
    return _operation(result)


@router.get("/{record_id}", response_model=InventoryRead)
def get_inventory_by_id(record_id: int, db: Session = Depends(get_db)) -> InventoryRead:
    return InventoryRead.model_validate(queries.get_inventory_by_id(db, record_id))
