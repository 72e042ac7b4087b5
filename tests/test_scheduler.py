import threading

import pytest

from faceguard.scheduler import PeriodicTask


def test_busy_tick_is_skipped_not_queued():
    started, release = threading.Event(), threading.Event()

    def slow():
        started.set()
        release.wait(2)

    task = PeriodicTask('detection', 1.0, slow, allow_overlap=False)
    worker = threading.Thread(target=task.tick)
    worker.start()
    assert started.wait(2)

    assert task.tick() is False
    release.set()
    worker.join(2)

    assert task.skipped == 1
    assert task.runs == 1
    assert task.tick() is True


def test_overlapping_ticks_run_when_allowed():
    barrier = threading.Barrier(2, timeout=2)
    task = PeriodicTask('sync', 1.0, barrier.wait, allow_overlap=True)

    workers = [threading.Thread(target=task.tick) for _ in range(2)]
    for w in workers:
        w.start()
    for w in workers:
        w.join(3)

    assert task.runs == 2
    assert task.failures == 0


def test_failures_are_counted_and_do_not_propagate():
    def broken():
        raise RuntimeError('store unreachable')

    task = PeriodicTask('sync', 1.0, broken)

    assert task.tick() is True
    assert task.failures == 1
    assert task.runs == 1


def test_timer_fires_until_cancelled():
    fired = threading.Event()
    task = PeriodicTask('detection', 0.01, fired.set)

    task.start()
    assert task.is_alive()
    assert fired.wait(2)

    task.cancel()
    assert not task.is_alive()


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicTask('detection', 0, lambda: None)
