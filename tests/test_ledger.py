import itertools
from datetime import datetime, timedelta, timezone

import pytest

from inventory_ledger import ledger
from inventory_ledger.exceptions import ValidationError
from inventory_ledger.guard import ConsistencyGuard
from inventory_ledger.ledger import MovementFilter
from inventory_ledger.models import MovementType, ReleaseMode
from inventory_ledger.operations import StockService

START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(name="clocked_service")
def clocked_service_fixture(session_factory) -> StockService:  # type: ignore[no-untyped-def]
    ticks = itertools.count()
    guard = ConsistencyGuard(base_delay=0.001, max_delay=0.01)
    return StockService(session_factory, guard, clock=lambda: START + timedelta(minutes=next(ticks)))


@pytest.fixture(name="history")
def history_fixture(clocked_service, actor):  # type: ignore[no-untyped-def]
    clocked_service.create("P1", 10, actor)  # 12:00
    clocked_service.create("P2", 5, actor)  # 12:01
    clocked_service.adjust("P1", 3, "purchase", actor)  # 12:02
    clocked_service.reserve("P1", 4, "R1", actor)  # 12:03
    clocked_service.reserve("P2", 2, "R2", actor)  # 12:04
    clocked_service.release("P1", "R1", ReleaseMode.CONSUME, actor)  # 12:05
    clocked_service.adjust("P1", -1, "damage", actor)  # 12:06
    return clocked_service


def test_pages_follow_cursor_without_gaps(session_factory, history) -> None:
    seen = []
    cursor = None
    with session_factory() as db:
        while True:
            page = ledger.query(db, MovementFilter(), limit=3, cursor=cursor)
            seen.extend(page.items)
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

    assert len(seen) == 7
    assert [m.id for m in seen] == sorted(m.id for m in seen)
    assert len({m.id for m in seen}) == 7


def test_exact_last_page_has_no_cursor(session_factory, history) -> None:
    with session_factory() as db:
        page = ledger.query(db, MovementFilter(), limit=7)
    assert len(page.items) == 7
    assert page.next_cursor is None


def test_filter_by_product_and_type(session_factory, history) -> None:
    with session_factory() as db:
        page = ledger.query(db, MovementFilter(product_id="P1"))
        assert [m.movement_type for m in page.items] == [
            MovementType.ADJUSTMENT_IN,
            MovementType.ADJUSTMENT_IN,
            MovementType.RESERVE,
            MovementType.RELEASE_CONSUME,
            MovementType.ADJUSTMENT_OUT,
        ]

        reserves = ledger.query(db, MovementFilter(types=(MovementType.RESERVE,)))
        assert {m.reference for m in reserves.items} == {"R1", "R2"}


def test_filter_by_time_range_is_half_open(session_factory, history) -> None:
    criteria = MovementFilter(since=START + timedelta(minutes=2), until=START + timedelta(minutes=5))
    with session_factory() as db:
        page = ledger.query(db, criteria)
    assert [m.movement_type for m in page.items] == [
        MovementType.ADJUSTMENT_IN,
        MovementType.RESERVE,
        MovementType.RESERVE,
    ]


def test_naive_bounds_are_treated_as_utc(session_factory, history) -> None:
    criteria = MovementFilter(since=datetime(2024, 1, 1, 12, 5))
    with session_factory() as db:
        page = ledger.query(db, criteria)
    assert len(page.items) == 2


def test_inverted_time_range_is_rejected(session_factory, history) -> None:
    criteria = MovementFilter(since=START + timedelta(hours=1), until=START)
    with session_factory() as db, pytest.raises(ValidationError):
        ledger.query(db, criteria)


def test_malformed_cursor_is_rejected(session_factory, history) -> None:
    with session_factory() as db:
        with pytest.raises(ValidationError):
            ledger.query(db, MovementFilter(), cursor="not-a-cursor")
        with pytest.raises(ValidationError):
            ledger.decode_cursor("%%%")


def test_cursor_round_trips_position(session_factory, history) -> None:
    with session_factory() as db:
        first = ledger.query(db, MovementFilter(), limit=1).items[0]
        created_at, movement_id = ledger.decode_cursor(ledger.encode_cursor(first))
    assert movement_id == first.id
    assert created_at == START


def test_iter_movements_walks_every_page(session_factory, history) -> None:
    with session_factory() as db:
        movements = list(ledger.iter_movements(db, MovementFilter(product_id="P1"), page_size=2))
    assert len(movements) == 5


def test_replay_sums_signed_deltas(session_factory, history) -> None:
    with session_factory() as db:
        p1 = ledger.replay(ledger.iter_movements(db, MovementFilter(product_id="P1")))
        p2 = ledger.replay(ledger.iter_movements(db, MovementFilter(product_id="P2")))
    # P1: 10 + 3 - 4 (consumed) - 1
    assert p1 == (8, 0, 5)
    assert p2 == (5, 2, 2)


def test_movement_snapshots_match_record(session_factory, history) -> None:
    with session_factory() as db:
        last = ledger.query(db, MovementFilter(product_id="P1")).items[-1]
    assert last.movement_type is MovementType.ADJUSTMENT_OUT
    assert (last.resulting_on_hand, last.resulting_reserved) == (8, 0)
    assert last.reason == "damage"
    assert last.on_hand_delta == -1
    assert last.reserved_delta == 0


def test_empty_page_size_is_rejected(session_factory, history) -> None:
    with session_factory() as db:
        with pytest.raises(ValidationError):
            ledger.query(db, MovementFilter(), limit=0)
        with pytest.raises(ValidationError):
            list(ledger.iter_movements(db, MovementFilter(), page_size=-1))
