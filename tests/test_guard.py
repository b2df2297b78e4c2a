import threading

import pytest

from inventory_ledger.exceptions import ConflictError, LockTimeoutError, NotFoundError, VersionConflictError
from inventory_ledger.guard import ConsistencyGuard, KeyedLock


def _guard(**kwargs):  # type: ignore[no-untyped-def]
    delays: list[float] = []
    guard = ConsistencyGuard(base_delay=0.01, max_delay=0.05, sleep=delays.append, **kwargs)
    return guard, delays


def test_backoff_doubles_and_caps() -> None:
    guard, _ = _guard()
    assert [guard.backoff(n) for n in range(1, 6)] == [0.01, 0.02, 0.04, 0.05, 0.05]


def test_retries_version_conflicts_until_success() -> None:
    guard, delays = _guard()
    calls = {"n": 0}

    def step() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise VersionConflictError("P1", calls["n"])
        return "done"

    assert guard.run("P1", step) == "done"
    assert calls["n"] == 3
    assert delays == [0.01, 0.02]


def test_gives_up_after_max_attempts() -> None:
    guard, delays = _guard(max_attempts=5)
    calls = {"n": 0}

    def step() -> None:
        calls["n"] += 1
        raise VersionConflictError("P1")

    with pytest.raises(ConflictError) as excinfo:
        guard.run("P1", step)

    assert calls["n"] == 5
    assert len(delays) == 4
    assert excinfo.value.retryable is True
    assert excinfo.value.status_code == 409


def test_other_errors_are_not_retried() -> None:
    guard, delays = _guard()
    calls = {"n": 0}

    def step() -> None:
        calls["n"] += 1
        raise NotFoundError("missing")

    with pytest.raises(NotFoundError):
        guard.run("P1", step)
    assert calls["n"] == 1
    assert delays == []


def test_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        ConsistencyGuard(max_attempts=0)


def test_lock_timeout_when_key_is_busy() -> None:
    guard = ConsistencyGuard(lock_timeout=0.05)
    entered = threading.Event()
    finish = threading.Event()

    def slow_step() -> None:
        entered.set()
        finish.wait(5)

    worker = threading.Thread(target=guard.run, args=("P1", slow_step))
    worker.start()
    try:
        assert entered.wait(5)
        with pytest.raises(LockTimeoutError) as excinfo:
            guard.run("P1", lambda: None)
        assert excinfo.value.code == "LOCK_TIMEOUT"
        assert excinfo.value.retryable is True
    finally:
        finish.set()
        worker.join(5)


def test_different_keys_do_not_block_each_other() -> None:
    guard = ConsistencyGuard(lock_timeout=0.05)
    entered = threading.Event()
    finish = threading.Event()

    def slow_step() -> None:
        entered.set()
        finish.wait(5)

    worker = threading.Thread(target=guard.run, args=("P1", slow_step))
    worker.start()
    try:
        assert entered.wait(5)
        assert guard.run("P2", lambda: "free") == "free"
    finally:
        finish.set()
        worker.join(5)


def test_keyed_lock_drops_idle_entries() -> None:
    locks = KeyedLock()
    with locks.hold("A", timeout=1):
        with locks.hold("B", timeout=1):
            assert len(locks) == 2
        assert len(locks) == 1
    assert len(locks) == 0


def test_keyed_lock_releases_on_error() -> None:
    locks = KeyedLock()
    with pytest.raises(RuntimeError):
        with locks.hold("A", timeout=1):
            raise RuntimeError("boom")
    with locks.hold("A", timeout=0.01):
        pass
    assert len(locks) == 0
