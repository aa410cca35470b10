import threading
import time

import pytest

from tera.engine.model_handle import SharedModelHandle
from tests.engine._fakes import FakeAdapter


def test_concurrent_first_access_loads_once():
    calls = 0
    calls_lock = threading.Lock()

    def loader():
        nonlocal calls
        with calls_lock:
            calls += 1
        time.sleep(0.05)
        return FakeAdapter()

    handle = SharedModelHandle(loader)
    barrier = threading.Barrier(8)
    results = []

    def worker():
        barrier.wait()
        results.append(handle.get())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert calls == 1
    assert len(results) == 8
    assert all(r is results[0] for r in results)
    assert handle.loaded


def test_failed_load_is_retried():
    attempts = []

    def loader():
        attempts.append(1)
        if len(attempts) == 1:
            raise OSError("download failed")
        return FakeAdapter()

    handle = SharedModelHandle(loader)
    with pytest.raises(OSError):
        handle.get()
    assert not handle.loaded

    adapter = handle.get()
    assert isinstance(adapter, FakeAdapter)
    assert len(attempts) == 2


def test_of_wraps_loaded_adapter_and_unload_releases_it():
    adapter = FakeAdapter()
    handle = SharedModelHandle.of(adapter)

    assert handle.loaded
    assert handle.get() is adapter

    handle.unload()
    assert adapter.unloaded
    assert not handle.loaded
