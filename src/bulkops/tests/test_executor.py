"""Tests for BatchExecutor: partition, bounds, retries, cancellation, and edge cases."""

import asyncio

import pytest

from bulkops.foundation.errors import ConfigurationError, ErrorCode, OperationError, PermanentError, TransientError
from bulkops.runtime.batch import BatchExecutor, BatchOperationConfig, BatchResult, run_batch, run_batch_sync
from bulkops.runtime.concurrency import CancelToken
from bulkops.runtime.observability import BoundLogger, CaptureRenderer
from bulkops.runtime.progress import OperationProgress


def fast_config(**overrides: object) -> BatchOperationConfig:
    """No spacing and near-zero backoff, so tests run in milliseconds."""
    return BatchOperationConfig(**{"request_delay": 0.0, "retry_delay": 0.001, **overrides})


async def echo(x: int) -> int:
    return x


class TestPartition:
    @pytest.mark.asyncio
    async def test_all_succeed(self) -> None:
        result = await BatchExecutor(fast_config()).run(range(10), echo)
        assert sorted(result.successful) == list(range(10))
        assert result.failed == []
        assert result.all_ok
        assert result.summary.success_count == 10
        assert result.summary.success_rate == 100.0
        assert result.metrics.error_rate == 0.0
        assert result.metrics.total_requests == 10

    @pytest.mark.asyncio
    async def test_mixed_results_partition_input(self) -> None:
        async def even_only(x: int) -> int:
            if x % 2:
                raise PermanentError(f"odd {x}")
            return x

        result = await BatchExecutor(fast_config()).run(range(9), even_only)
        assert sorted(result.successful) == [0, 2, 4, 6, 8]
        assert sorted(f.index for f in result.failed) == [1, 3, 5, 7]
        assert len(result) == 9
        assert not result.unprocessed
        assert result.summary.failure_count == 4
        assert result.metrics.error_rate == pytest.approx(400 / 9)

    @pytest.mark.asyncio
    async def test_ids_from_id_of(self) -> None:
        async def fail(x: str) -> str:
            raise PermanentError("rejected")

        result = await BatchExecutor(fast_config()).run(["a@x.io", "b@x.io"], fail, id_of=str.upper)
        assert {f.item_id for f in result.failed} == {"A@X.IO", "B@X.IO"}

    @pytest.mark.asyncio
    async def test_outcomes_in_input_order(self) -> None:
        async def varied(x: int) -> int:
            await asyncio.sleep(0.001 * (5 - x))
            return x

        result = await BatchExecutor(fast_config(concurrency=5)).run(range(5), varied)
        assert [o.task.index for o in result.in_input_order()] == [0, 1, 2, 3, 4]
        assert set(result.by_id()) == {"0", "1", "2", "3", "4"}


class TestBounds:
    @pytest.mark.asyncio
    async def test_concurrency_never_exceeded(self) -> None:
        running = 0
        peak = 0

        async def slow(x: int) -> int:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.003)
            running -= 1
            return x

        await BatchExecutor(fast_config(concurrency=4, batch_size=3)).run(range(20), slow)
        assert peak == 4

    @pytest.mark.asyncio
    async def test_dispatches_are_spaced(self) -> None:
        loop = asyncio.get_running_loop()
        starts: list[float] = []

        async def stamp(x: int) -> int:
            starts.append(loop.time())
            return x

        await BatchExecutor(fast_config(concurrency=3, request_delay=0.02)).run(range(5), stamp)
        starts.sort()
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(g >= 0.015 for g in gaps)


class TestRetries:
    @pytest.mark.asyncio
    async def test_recovers_within_retries(self) -> None:
        calls: dict[int, int] = {}

        async def flaky(x: int) -> int:
            calls[x] = calls.get(x, 0) + 1
            if calls[x] <= 2:
                raise TransientError("busy", status_code=503)
            return x

        result = await BatchExecutor(fast_config(max_retries=3)).run(range(4), flaky)
        assert sorted(result.successful) == [0, 1, 2, 3]
        assert result.metrics.total_retries == 8
        assert result.metrics.total_requests == 12
        assert all(n == 3 for n in calls.values())

    @pytest.mark.asyncio
    async def test_exhausted_retries_recorded(self) -> None:
        calls = 0

        async def down(x: int) -> int:
            nonlocal calls
            calls += 1
            raise TransientError("upstream unavailable", status_code=503)

        result = await BatchExecutor(fast_config(max_retries=2)).run([7], down)
        [failure] = result.failed
        assert calls == 3
        assert failure.item_id == "0"
        assert failure.retry_attempts == 2
        assert failure.error == "upstream unavailable"
        assert failure.error_type == "TransientError"
        assert failure.status_code == 503
        assert failure.error_code == ErrorCode.EXTERNAL_SERVICE_ERROR

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self) -> None:
        calls = 0

        async def taken(x: int) -> int:
            nonlocal calls
            calls += 1
            raise PermanentError("address already used", status_code=422)

        result = await BatchExecutor(fast_config(max_retries=3)).run([1], taken)
        assert calls == 1
        assert result.failed[0].retry_attempts == 0
        assert result.failed[0].error_code == ErrorCode.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_zero_retries(self) -> None:
        async def fail(x: int) -> int:
            raise ValueError("bad input")

        result = await BatchExecutor(fast_config(max_retries=0)).run(range(3), fail)
        assert [f.retry_attempts for f in result.failed] == [0, 0, 0]
        assert result.failed[0].error_type == "ValueError"

    @pytest.mark.asyncio
    async def test_worker_context_carried(self) -> None:
        async def fail(x: int) -> int:
            raise OperationError("rejected", context={"details": "quota exhausted"})

        result = await BatchExecutor(fast_config(max_retries=0)).run([1], fail)
        assert result.failed[0].context == {"details": "quota exhausted"}


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_run(self) -> None:
        token = CancelToken()

        def on_progress(p: OperationProgress) -> None:
            if p.completed >= 10:
                token.cancel("enough")

        async def work(x: int) -> int:
            await asyncio.sleep(0.001)
            return x

        result = await BatchExecutor(fast_config(concurrency=2, batch_size=5)).run(
            range(30), work, on_progress=on_progress, cancel=token
        )
        assert result.cancelled
        assert not result.all_ok
        assert 10 <= len(result.successful) <= 12
        assert len(result.successful) + len(result.failed) + len(result.unprocessed) == 30
        assert result.summary.unprocessed_count == len(result.unprocessed)
        assert result.unprocessed == sorted(result.unprocessed, key=int)

    @pytest.mark.asyncio
    async def test_cancel_before_start(self) -> None:
        token = CancelToken()
        token.cancel()
        result = await BatchExecutor(fast_config()).run(range(3), echo, cancel=token)
        assert result.cancelled
        assert result.successful == []
        assert result.unprocessed == ["0", "1", "2"]

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        async def slow(x: int) -> int:
            await asyncio.sleep(0.02)
            return x

        result = await BatchExecutor(fast_config(concurrency=1, timeout=0.05)).run(range(20), slow)
        assert result.cancelled
        assert 1 <= len(result.successful) < 20
        assert len(result.successful) + len(result.unprocessed) == 20

    @pytest.mark.asyncio
    async def test_timeout_wakes_workers_waiting_for_slots(self) -> None:
        loop = asyncio.get_running_loop()
        start = loop.time()
        result = await BatchExecutor(fast_config(concurrency=4, request_delay=1.0, timeout=0.2)).run(
            range(20), echo
        )
        assert loop.time() - start < 1.0
        assert result.cancelled
        assert len(result.successful) == 1
        assert len(result.unprocessed) == 19

    @pytest.mark.asyncio
    async def test_cancel_wakes_workers_waiting_for_slots(self) -> None:
        token = CancelToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.1, token.cancel)
        start = loop.time()
        result = await BatchExecutor(fast_config(concurrency=3, request_delay=1.0)).run(
            range(10), echo, cancel=token
        )
        assert loop.time() - start < 1.0
        assert result.cancelled
        assert len(result.successful) + len(result.unprocessed) == 10

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self) -> None:
        token = CancelToken()

        async def down(x: int) -> int:
            raise TransientError("unavailable")

        asyncio.get_running_loop().call_later(0.02, token.cancel)
        result = await asyncio.wait_for(
            BatchExecutor(fast_config(retry_delay=10.0)).run([1], down, cancel=token), timeout=2.0
        )
        [failure] = result.failed
        assert result.cancelled
        assert failure.context == {"cancelled": True}
        assert failure.retry_attempts == 0


class TestProgress:
    @pytest.mark.asyncio
    async def test_monotonic_and_final(self) -> None:
        seen: list[OperationProgress] = []

        async def sometimes(x: int) -> int:
            if x == 3:
                raise PermanentError("no")
            return x

        await BatchExecutor(fast_config(batch_size=4)).run(range(10), sometimes, on_progress=seen.append)
        completed = [p.completed for p in seen]
        assert completed == sorted(completed)
        assert seen[0].completed == 0
        assert seen[-1].is_complete
        assert seen[-1].error_count == 1
        assert seen[-1].current_step == "completed"
        assert any(p.current_step == "processing batch 3 of 3" for p in seen)

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_abort(self) -> None:
        def broken(_: OperationProgress) -> None:
            raise RuntimeError("listener down")

        result = await BatchExecutor(fast_config()).run(range(5), echo, on_progress=broken)
        assert len(result.successful) == 5

    @pytest.mark.asyncio
    async def test_tracking_disabled(self) -> None:
        seen: list[OperationProgress] = []
        await BatchExecutor(fast_config(enable_progress_tracking=False)).run(range(3), echo, on_progress=seen.append)
        assert seen == []


class TestEdgeCases:
    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        called = False

        async def never(x: int) -> int:
            nonlocal called
            called = True
            return x

        seen: list[OperationProgress] = []
        result = await BatchExecutor(fast_config()).run([], never, on_progress=seen.append)
        assert result == BatchResult.empty()
        assert result.summary.total_attempted == 0
        assert not called
        assert seen == []

    def test_clamps_batch_and_concurrency(self) -> None:
        config = BatchOperationConfig(batch_size=0, concurrency=-2)
        assert (config.batch_size, config.concurrency) == (1, 1)

    @pytest.mark.asyncio
    async def test_invalid_config(self) -> None:
        with pytest.raises(ConfigurationError):
            await BatchExecutor().run([1], echo, {"request_delay": -1})
        with pytest.raises(ConfigurationError):
            BatchExecutor({"unknown_option": True})

    @pytest.mark.asyncio
    async def test_duplicate_ids(self) -> None:
        with pytest.raises(ConfigurationError, match="duplicate"):
            await BatchExecutor(fast_config()).run(["a", "b", "a"], echo, id_of=lambda s: s)

    @pytest.mark.asyncio
    async def test_worker_must_be_callable(self) -> None:
        with pytest.raises(ConfigurationError):
            await BatchExecutor(fast_config()).run([1], "not a function")  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_sync_worker(self) -> None:
        result = await BatchExecutor(fast_config()).run(range(4), lambda x: x * 10)
        assert sorted(result.successful) == [0, 10, 20, 30]

    @pytest.mark.asyncio
    async def test_metrics_disabled(self) -> None:
        result = await BatchExecutor(fast_config(enable_performance_metrics=False)).run(range(3), echo)
        assert result.metrics.api_time_ms == 0.0
        assert result.metrics.total_time_ms > 0


class TestObservability:
    @pytest.mark.asyncio
    async def test_lifecycle_logged(self, capture: CaptureRenderer, capture_logger: BoundLogger) -> None:
        async def fail(x: int) -> int:
            raise PermanentError("no")

        await BatchExecutor(fast_config(), logger=capture_logger).run([1, 2], fail)
        events = capture.events()
        assert events[0] == "batch started"
        assert events[-1] == "batch completed"
        assert events.count("task failed") == 2
        batch_ids = {e.context["batch_id"] for e in capture.entries}
        assert len(batch_ids) == 1


class TestConvenience:
    @pytest.mark.asyncio
    async def test_run_batch(self) -> None:
        result = await run_batch(range(3), echo, {"request_delay": 0})
        assert sorted(result.successful) == [0, 1, 2]

    def test_run_batch_sync(self) -> None:
        result = run_batch_sync(["a", "b"], str.upper, fast_config())
        assert sorted(result.successful) == ["A", "B"]
