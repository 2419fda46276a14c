"""Tests for the per-configuration run lease."""

import threading

import pytest

from fieldsync.services.errors import SyncInProgressError
from fieldsync.services.run_registry import RunRegistry


def test_second_acquire_is_rejected():
    registry = RunRegistry()
    registry.acquire(1)

    with pytest.raises(SyncInProgressError, match="already in progress"):
        registry.acquire(1)


def test_configurations_are_independent():
    registry = RunRegistry()
    registry.acquire(1)
    registry.acquire(2)

    assert set(registry.active()) == {1, 2}


def test_release_frees_the_lease():
    registry = RunRegistry()
    token = registry.acquire(1)
    registry.attach(1, token, "run")

    assert registry.runs() == ["run"]
    assert registry.release(1, token) is True
    assert not registry.is_active(1)
    assert registry.runs() == []
    registry.acquire(1)


def test_stale_token_cannot_release_newer_lease():
    registry = RunRegistry()
    old = registry.acquire(1)
    registry.release(1, old)
    registry.acquire(1)

    assert registry.release(1, old) is False
    assert registry.is_active(1)


def test_concurrent_acquire_admits_one():
    registry = RunRegistry()
    admitted = []
    barrier = threading.Barrier(8)

    def attempt():
        barrier.wait()
        try:
            admitted.append(registry.acquire(7))
        except SyncInProgressError:
            pass

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(admitted) == 1
