"""Stock operations: create, adjust, reserve, release, deactivate.

Each mutation runs under the :class:`~inventory_ledger.guard.ConsistencyGuard`
for its product and inside a single database transaction that both
compare-and-swaps the inventory record and appends the movement describing
the change. Either both are committed or neither is.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator

import structlog
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import database, ledger, records
from .config import Settings
from .exceptions import (
    DuplicateReservationError,
    InsufficientStockError,
    InventoryInactiveError,
    LockTimeoutError,
    NotFoundError,
    ReservedStockError,
    StockLedgerError,
    StorageError,
    ValidationError,
)
from .guard import ConsistencyGuard
from .identity import Actor
from .models import (
    ADJUSTMENT_TYPES,
    RELEASE_TYPES,
    InventoryRecord,
    MovementType,
    ReleaseMode,
    StockMovement,
    utcnow,
)

logger = structlog.get_logger(__name__)

MAX_REFERENCE_LENGTH = 128


@dataclass(slots=True)
class OperationResult:
    """Record state after an operation and the movement it wrote.

    ``replayed`` is set when the call matched an earlier one and nothing was
    applied; ``movement`` is then the original entry.
    """

    record: InventoryRecord
    movement: StockMovement | None = None
    replayed: bool = False


def _require_positive_int(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value <= 0:
        raise ValidationError(f"{name} must be greater than zero")
    return value


def _require_text(name: str, value: str | None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    value = value.strip()
    if len(value) > MAX_REFERENCE_LENGTH:
        raise ValidationError(f"{name} must be at most {MAX_REFERENCE_LENGTH} characters")
    return value


class StockService:
    """Entry point for every quantity-changing operation."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        guard: ConsistencyGuard | None = None,
        *,
        strict_reservations: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.guard = guard or ConsistencyGuard()
        self.strict_reservations = strict_reservations
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: sessionmaker[Session]) -> "StockService":
        return cls(
            session_factory,
            ConsistencyGuard.from_settings(settings),
            strict_reservations=settings.strict_reservations,
        )

    @contextmanager
    def _unit_of_work(self, product_id: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            database.begin_write(session)
            yield session
            session.commit()
        except StockLedgerError:
            session.rollback()
            raise
        except OperationalError as exc:
            session.rollback()
            if database.is_lock_contention(exc):
                logger.warning("storage_lock_timeout", product_id=product_id)
                raise LockTimeoutError(product_id, database.SQLITE_BUSY_TIMEOUT) from exc
            logger.error("storage_failure", error=str(exc))
            raise StorageError(f"Storage failure: {exc.__class__.__name__}") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("storage_failure", error=str(exc))
            raise StorageError(f"Storage failure: {exc.__class__.__name__}") from exc
        finally:
            session.close()

    def _guarded(self, product_id: str, step: Callable[[Session], OperationResult]) -> OperationResult:
        def attempt() -> OperationResult:
            with self._unit_of_work(product_id) as db:
                return step(db)

        return self.guard.run(product_id, attempt)

    def _movement(
        self,
        record: InventoryRecord,
        movement_type: MovementType,
        quantity: int,
        actor: Actor,
        now: datetime,
        *,
        reference: str | None = None,
        reason: str | None = None,
    ) -> StockMovement:
        return StockMovement(
            product_id=record.product_id,
            movement_type=movement_type,
            quantity=quantity,
            reference=reference,
            reason=reason,
            resulting_on_hand=record.quantity_on_hand,
            resulting_reserved=record.quantity_reserved,
            record_version=record.version,
            actor=actor.identifier,
            created_at=now,
        )

    # ------------------------------------------------------------------
    # Record lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        product_id: str,
        initial_on_hand: int,
        actor: Actor,
        *,
        location: str | None = None,
        reorder_level: int = 0,
        notes: str | None = None,
    ) -> OperationResult:
        records.validate_product_id(product_id)
        if isinstance(initial_on_hand, bool) or not isinstance(initial_on_hand, int):
            raise ValidationError("initial_on_hand must be an integer")

        def step(db: Session) -> OperationResult:
            now = self._clock()
            record = records.create(
                db,
                product_id,
                initial_on_hand,
                now=now,
                location=location,
                reorder_level=reorder_level,
                notes=notes,
            )
            movement = None
            if initial_on_hand > 0:
                # Opening balance goes through the ledger so replay starts from zero.
                movement = ledger.append(
                    db,
                    self._movement(
                        record, MovementType.ADJUSTMENT_IN, initial_on_hand, actor, now, reason="initial_stock"
                    ),
                )
            return OperationResult(record=record, movement=movement)

        result = self._guarded(product_id, step)
        logger.info(
            "inventory_created",
            product_id=product_id,
            on_hand=initial_on_hand,
            actor=actor.identifier,
        )
        return result

    def _apply_metadata(self, product_id: str, changes: dict[str, object]) -> OperationResult:
        def step(db: Session) -> OperationResult:
            record = records.get(db, product_id)
            pending = {name: value for name, value in changes.items() if getattr(record, name) != value}
            if not pending:
                return OperationResult(record=record, replayed=True)
            if pending.get("is_active") is False and record.quantity_reserved > 0:
                raise ReservedStockError(product_id, record.quantity_reserved)
            record = records.compare_and_swap(db, record, record.version, updated_at=self._clock(), **pending)
            return OperationResult(record=record)

        return self._guarded(product_id, step)

    def deactivate(self, product_id: str, actor: Actor) -> OperationResult:
        result = self._apply_metadata(product_id, {"is_active": False})
        if not result.replayed:
            logger.info("inventory_deactivated", product_id=product_id, actor=actor.identifier)
        return result

    def update_metadata(
        self,
        product_id: str,
        actor: Actor,
        *,
        location: str | None = None,
        reorder_level: int | None = None,
        notes: str | None = None,
        is_active: bool | None = None,
    ) -> OperationResult:
        """Change descriptive fields. Quantities are only changed by movements.

        Deactivating (``is_active=False``) is refused while units are reserved,
        and then none of the other fields are written either.
        """

        if reorder_level is not None and reorder_level < 0:
            raise ValidationError("reorder_level must be zero or positive")

        changes: dict[str, object] = {}
        if location is not None:
            changes["location"] = location
        if reorder_level is not None:
            changes["reorder_level"] = reorder_level
        if notes is not None:
            changes["notes"] = notes
        if is_active is not None:
            changes["is_active"] = is_active

        result = self._apply_metadata(product_id, changes)
        if not result.replayed:
            logger.info(
                "inventory_metadata_updated",
                product_id=product_id,
                fields=sorted(changes),
                is_active=result.record.is_active,
                actor=actor.identifier,
            )
        return result

    # ------------------------------------------------------------------
    # Quantity operations
    # ------------------------------------------------------------------

    def adjust(
        self,
        product_id: str,
        delta: int,
        reason: str,
        actor: Actor,
        *,
        reference: str | None = None,
    ) -> OperationResult:
        """Add (``delta > 0``) or remove (``delta < 0``) on-hand units.

        Without a *reference* every call applies. With one, a second call
        carrying the same reference and delta returns the first result.
        """

        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("delta must be an integer")
        if delta == 0:
            raise ValidationError("delta must not be zero")
        reason = _require_text("reason", reason)
        if reference is not None:
            reference = _require_text("reference", reference)
        movement_type = MovementType.ADJUSTMENT_IN if delta > 0 else MovementType.ADJUSTMENT_OUT

        def step(db: Session) -> OperationResult:
            record = records.get(db, product_id)
            if reference is not None:
                prior = ledger.find_by_reference(db, product_id, reference, ADJUSTMENT_TYPES)
                if prior is not None:
                    if prior.movement_type is not movement_type or prior.quantity != abs(delta):
                        raise ValidationError(
                            f"Reference {reference} was already used for a different adjustment of {product_id}"
                        )
                    return OperationResult(record=record, movement=prior, replayed=True)

            if not record.is_active:
                raise InventoryInactiveError(product_id)
            new_on_hand = record.quantity_on_hand + delta
            if new_on_hand < 0:
                raise InsufficientStockError(product_id, requested=-delta, available=record.quantity_on_hand)
            if new_on_hand < record.quantity_reserved:
                raise InsufficientStockError(
                    product_id,
                    requested=-delta,
                    available=record.available,
                    message=(
                        f"Adjustment of {delta} would leave product {product_id} with {new_on_hand} on hand "
                        f"but {record.quantity_reserved} reserved"
                    ),
                )

            now = self._clock()
            record = records.compare_and_swap(
                db, record, record.version, quantity_on_hand=new_on_hand, updated_at=now
            )
            movement = ledger.append(
                db,
                self._movement(record, movement_type, abs(delta), actor, now, reference=reference, reason=reason),
            )
            return OperationResult(record=record, movement=movement)

        try:
            result = self._guarded(product_id, step)
        except InsufficientStockError as exc:
            logger.info("adjustment_rejected", product_id=product_id, delta=delta, code=exc.code)
            raise
        self._log_result("stock_adjusted", result, actor, delta=delta, reason=reason)
        return result

    def reserve(
        self,
        product_id: str,
        quantity: int,
        reservation_ref: str,
        actor: Actor,
        *,
        strict: bool | None = None,
    ) -> OperationResult:
        """Hold *quantity* units against *reservation_ref*, all or nothing."""

        quantity = _require_positive_int("quantity", quantity)
        reservation_ref = _require_text("reservation_ref", reservation_ref)
        strict = self.strict_reservations if strict is None else strict

        def step(db: Session) -> OperationResult:
            record = records.get(db, product_id)
            prior = ledger.find_by_reference(db, product_id, reservation_ref, (MovementType.RESERVE,))
            if prior is not None:
                if prior.quantity != quantity:
                    raise DuplicateReservationError(
                        product_id,
                        reservation_ref,
                        message=(
                            f"Reservation {reservation_ref} already holds {prior.quantity} unit(s) of "
                            f"{product_id}; refusing a retry for {quantity}"
                        ),
                    )
                if strict:
                    raise DuplicateReservationError(product_id, reservation_ref)
                return OperationResult(record=record, movement=prior, replayed=True)

            if not record.is_active:
                raise InventoryInactiveError(product_id)
            if quantity > record.available:
                raise InsufficientStockError(product_id, requested=quantity, available=record.available)

            now = self._clock()
            record = records.compare_and_swap(
                db,
                record,
                record.version,
                quantity_reserved=record.quantity_reserved + quantity,
                updated_at=now,
            )
            movement = ledger.append(
                db,
                self._movement(record, MovementType.RESERVE, quantity, actor, now, reference=reservation_ref),
            )
            return OperationResult(record=record, movement=movement)

        try:
            result = self._guarded(product_id, step)
        except InsufficientStockError as exc:
            logger.info(
                "reservation_rejected",
                product_id=product_id,
                reference=reservation_ref,
                requested=quantity,
                available=exc.available,
            )
            raise
        self._log_result("stock_reserved", result, actor, reference=reservation_ref)
        return result

    def release(
        self,
        product_id: str,
        reservation_ref: str,
        mode: ReleaseMode | str,
        actor: Actor,
    ) -> OperationResult:
        """Resolve an open reservation.

        ``CANCEL`` returns the held units to availability; ``CONSUME`` removes
        them from on-hand as well (the goods left the building). Releasing the
        same reservation again with the same mode is a no-op that returns the
        original movement.
        """

        reservation_ref = _require_text("reservation_ref", reservation_ref)
        try:
            mode = mode if isinstance(mode, ReleaseMode) else ReleaseMode(str(mode).upper())
        except ValueError as exc:
            raise ValidationError(f"mode must be one of {[m.value for m in ReleaseMode]}") from exc
        movement_type = mode.movement_type

        def step(db: Session) -> OperationResult:
            record = records.get(db, product_id)
            reservation = ledger.find_by_reference(db, product_id, reservation_ref, (MovementType.RESERVE,))
            if reservation is None:
                raise NotFoundError(f"Reservation {reservation_ref} not found for product {product_id}")

            resolved = ledger.find_by_reference(db, product_id, reservation_ref, RELEASE_TYPES)
            if resolved is not None:
                if resolved.movement_type is movement_type:
                    return OperationResult(record=record, movement=resolved, replayed=True)
                raise NotFoundError(
                    f"Reservation {reservation_ref} for product {product_id} was already resolved "
                    f"as {resolved.movement_type.value}"
                )

            quantity = reservation.quantity
            if quantity > record.quantity_reserved:
                raise InsufficientStockError(
                    product_id,
                    requested=quantity,
                    available=record.quantity_reserved,
                    message=(
                        f"Reservation {reservation_ref} holds {quantity} unit(s) but product {product_id} "
                        f"only has {record.quantity_reserved} reserved"
                    ),
                )

            changes: dict[str, int] = {"quantity_reserved": record.quantity_reserved - quantity}
            if mode is ReleaseMode.CONSUME:
                changes["quantity_on_hand"] = record.quantity_on_hand - quantity

            now = self._clock()
            record = records.compare_and_swap(db, record, record.version, updated_at=now, **changes)
            movement = ledger.append(
                db,
                self._movement(record, movement_type, quantity, actor, now, reference=reservation_ref),
            )
            return OperationResult(record=record, movement=movement)

        result = self._guarded(product_id, step)
        self._log_result("stock_released", result, actor, reference=reservation_ref, mode=mode.value)
        return result

    def _log_result(self, event: str, result: OperationResult, actor: Actor, **fields: object) -> None:
        if result.replayed:
            logger.info(f"{event}_replayed", product_id=result.record.product_id, actor=actor.identifier, **fields)
            return
        movement = result.movement
        logger.info(
            event,
            product_id=result.record.product_id,
            movement_id=movement.id if movement else None,
            quantity=movement.quantity if movement else None,
            on_hand=result.record.quantity_on_hand,
            reserved=result.record.quantity_reserved,
            version=result.record.version,
            actor=actor.identifier,
            **fields,
        )
