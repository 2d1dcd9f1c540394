from __future__ import annotations

import threading
import time

import pytest

from feeding_tube.engine import BoundedExecutor


def test_executor_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        BoundedExecutor(0)


def test_executor_never_exceeds_concurrency_limit() -> None:
    lock = threading.Lock()
    active = 0
    peak = 0
    finished: list[int] = []

    def task(index: int) -> int:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.01)
        with lock:
            active -= 1
            finished.append(index)
        return index

    with BoundedExecutor(5) as executor:
        futures = [executor.submit(task, index) for index in range(20)]
        assert executor.drain(timeout=10)
    assert peak <= 5
    assert sorted(finished) == list(range(20))
    assert [future.result() for future in futures] == list(range(20))


def test_failing_task_does_not_affect_siblings() -> None:
    def task(value: int) -> int:
        if value == 3:
            raise ValueError("boom")
        return value * 2

    with BoundedExecutor(2) as executor:
        futures = [executor.submit(task, value) for value in range(6)]
        assert executor.drain(timeout=10)
        assert isinstance(futures[3].exception(), ValueError)
        assert [f.result() for i, f in enumerate(futures) if i != 3] == [0, 2, 4, 8, 10]
        assert executor.outstanding == 0


def test_queued_tasks_start_in_submission_order() -> None:
    gate = threading.Event()
    order: list[int] = []

    with BoundedExecutor(1) as executor:
        executor.submit(gate.wait, 5)
        for index in range(5):
            executor.submit(order.append, index)
        gate.set()
        assert executor.drain(timeout=10)
    assert order == [0, 1, 2, 3, 4]


def test_drain_blocks_until_running_tasks_finish() -> None:
    gate = threading.Event()
    drained = threading.Event()

    with BoundedExecutor(2) as executor:
        executor.submit(gate.wait, 5)

        def waiter() -> None:
            executor.drain()
            drained.set()

        thread = threading.Thread(target=waiter)
        thread.start()
        assert not drained.wait(0.05)
        gate.set()
        thread.join(timeout=5)
        assert drained.is_set()


def test_drain_tolerates_concurrent_submissions() -> None:
    results: list[int] = []

    with BoundedExecutor(3) as executor:

        def submitter() -> None:
            for index in range(30):
                executor.submit(results.append, index)
                time.sleep(0.001)

        thread = threading.Thread(target=submitter)
        thread.start()
        assert executor.drain(timeout=10) in (True, False)
        thread.join(timeout=10)
        assert executor.drain(timeout=10)
        assert executor.outstanding == 0
    assert sorted(results) == list(range(30))


def test_drain_times_out_while_work_is_pending() -> None:
    gate = threading.Event()
    with BoundedExecutor(1) as executor:
        executor.submit(gate.wait, 5)
        assert executor.drain(timeout=0.01) is False
        gate.set()
        assert executor.drain(timeout=5)
