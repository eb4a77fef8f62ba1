"""Tests for the batched async runner."""

import asyncio
import random

import pytest

from mofa_stances.ingest.pool import BatchRunner, chunked


class TestChunked:
    """Tests for chunked."""

    def test_even_and_remainder(self):
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert chunked([], 3) == []

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError):
            chunked([1], 0)


class TestBatchRunner:
    """Tests for batch ordering, failure isolation and jitter."""

    def test_results_in_input_order(self):
        async def worker(n):
            await asyncio.sleep(0.001 * (5 - n))
            return n * 10

        results = asyncio.run(BatchRunner(batch_size=3).run([1, 2, 3, 4, 5], worker))
        assert results == [10, 20, 30, 40, 50]

    def test_failure_does_not_abort_batch(self):
        async def worker(n):
            if n == 2:
                raise RuntimeError("boom")
            return n

        results = asyncio.run(BatchRunner(batch_size=3).run([1, 2, 3, 4], worker))

        assert results[0] == 1
        assert isinstance(results[1], RuntimeError)
        assert results[2:] == [3, 4]

    def test_next_batch_waits_for_slowest_task(self):
        events = []

        async def worker(n):
            events.append(("start", n))
            # The first item of each batch is the slow one
            await asyncio.sleep(0.02 if n in (1, 3) else 0)
            events.append(("end", n))
            return n

        asyncio.run(BatchRunner(batch_size=2).run([1, 2, 3, 4], worker))

        first_batch_done = max(events.index(("end", 1)), events.index(("end", 2)))
        second_batch_start = min(events.index(("start", 3)), events.index(("start", 4)))
        assert first_batch_done < second_batch_start

    def test_batch_runs_concurrently(self):
        in_flight = []
        peak = []

        async def worker(n):
            in_flight.append(n)
            peak.append(len(in_flight))
            await asyncio.sleep(0.01)
            in_flight.remove(n)
            return n

        asyncio.run(BatchRunner(batch_size=3).run(list(range(7)), worker))
        assert max(peak) == 3

    def test_jitter_bounded_by_max_delay(self):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        async def worker(n):
            return n

        runner = BatchRunner(batch_size=4, max_jitter_seconds=5.0, sleep=fake_sleep, rand=random.Random(42))
        asyncio.run(runner.run(list(range(8)), worker))

        assert len(delays) == 8
        assert all(0 <= d <= 5.0 for d in delays)

    def test_no_jitter_when_delay_zero(self):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        async def worker(n):
            return n

        asyncio.run(BatchRunner(batch_size=2, sleep=fake_sleep).run([1, 2], worker))
        assert delays == []

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            BatchRunner(batch_size=0)
