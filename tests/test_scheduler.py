"""Tests for the BackgroundScheduler lifecycle."""

import asyncio

import pytest

from app.services.scheduler import BackgroundScheduler


def test_jobs_run_on_interval_and_stop_cancels_them() -> None:
    calls: list[str] = []

    async def scenario() -> None:
        scheduler = BackgroundScheduler()
        scheduler.add_interval_job("tick", 0.01, lambda: calls.append("tick"))

        await scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.running is False
        seen = len(calls)
        await asyncio.sleep(0.03)
        assert len(calls) == seen

    asyncio.run(scenario())

    assert len(calls) >= 1


def test_failing_job_keeps_its_schedule() -> None:
    attempts: list[int] = []

    def flaky() -> None:
        attempts.append(1)
        raise RuntimeError("boom")

    async def scenario() -> None:
        scheduler = BackgroundScheduler()
        scheduler.add_interval_job("flaky", 0.01, flaky)
        await scheduler.start()
        await asyncio.sleep(0.06)
        await scheduler.stop()

    asyncio.run(scenario())

    assert len(attempts) >= 2


def test_coroutine_jobs_are_awaited() -> None:
    done: list[bool] = []

    async def job() -> None:
        done.append(True)

    async def scenario() -> None:
        scheduler = BackgroundScheduler()
        scheduler.add_interval_job("async", 60, job)
        await scheduler.run_job("async")

    asyncio.run(scenario())

    assert done == [True]


def test_stop_without_start_is_noop() -> None:
    asyncio.run(BackgroundScheduler().stop())


def test_add_job_validation() -> None:
    scheduler = BackgroundScheduler()
    scheduler.add_interval_job("a", 1, lambda: None)

    with pytest.raises(ValueError):
        scheduler.add_interval_job("a", 1, lambda: None)
    with pytest.raises(ValueError):
        scheduler.add_interval_job("b", 0, lambda: None)

    async def add_while_running() -> None:
        await scheduler.start()
        try:
            with pytest.raises(RuntimeError):
                scheduler.add_interval_job("c", 1, lambda: None)
        finally:
            await scheduler.stop()

    asyncio.run(add_while_running())
