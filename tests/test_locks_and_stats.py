import threading
import time

import pytest

from metrics_proxy.infrastructure.locks import ReadWriteLock
from metrics_proxy.infrastructure.stats import StatsCollector, StatsSnapshot

pytestmark = [pytest.mark.unit]


class TestReadWriteLock:
    def test_readers_share_the_lock(self):
        lock = ReadWriteLock()
        both_inside = threading.Barrier(2, timeout=2)
        errors = []

        def reader():
            with lock.read():
                try:
                    both_inside.wait()
                except threading.BrokenBarrierError as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert errors == []

    def test_writer_waits_for_reader(self):
        lock = ReadWriteLock()
        writer_done = threading.Event()

        def writer():
            with lock.write():
                writer_done.set()

        lock.acquire_read()
        thread = threading.Thread(target=writer)
        thread.start()
        try:
            assert not writer_done.wait(0.1)
        finally:
            lock.release_read()
        thread.join(timeout=5)
        assert writer_done.is_set()

    def test_waiting_writer_blocks_new_readers(self):
        lock = ReadWriteLock()
        order = []

        lock.acquire_read()

        def writer():
            with lock.write():
                order.append("writer")

        def late_reader():
            with lock.read():
                order.append("reader")

        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        deadline = time.monotonic() + 2
        while lock._waiting_writers == 0 and time.monotonic() < deadline:
            time.sleep(0.005)

        reader_thread = threading.Thread(target=late_reader)
        reader_thread.start()
        time.sleep(0.05)
        assert order == []

        lock.release_read()
        writer_thread.join(timeout=5)
        reader_thread.join(timeout=5)
        assert order == ["writer", "reader"]

    def test_lock_is_released_on_error(self):
        lock = ReadWriteLock()
        with pytest.raises(RuntimeError):
            with lock.write():
                raise RuntimeError("boom")

        with lock.read():
            pass
        assert lock._writer is False
        assert lock._readers == 0


class TestStatsCollector:
    def test_counts_and_hit_rate(self):
        stats = StatsCollector()
        stats.record_hit()
        stats.record_hit()
        stats.record_hit()
        stats.record_miss()
        stats.record_evictions(2)
        stats.record_expired()
        stats.record_cleanup_run()

        snapshot = stats.snapshot()
        assert snapshot == StatsSnapshot(hits=3, misses=1, evictions=2, cleanup_runs=1, expired=1)
        assert snapshot.hit_rate == 0.75
        assert snapshot.as_dict()["hit_rate"] == 0.75

    def test_hit_rate_without_lookups(self):
        assert StatsSnapshot().hit_rate == 0.0

    def test_disabled_collector_ignores_events(self):
        stats = StatsCollector(enabled=False)
        stats.record_hit()
        stats.record_miss()
        assert stats.snapshot() == StatsSnapshot()

        stats.enable()
        stats.record_miss()
        assert stats.snapshot().misses == 1

    def test_reset(self):
        stats = StatsCollector()
        stats.record_hit()
        stats.record_evictions(4)
        stats.reset()
        assert stats.snapshot() == StatsSnapshot()
        assert stats.enabled is True
